"""Deploy the Lens protocol plan on an in-process EVM.

The contracts are stand-ins with empty code, so we test nonces, addresses,
confirmations and whitelisting against a real chain, not the protocol itself.
"""

import datetime
from pathlib import Path

import pytest
from eth_typing import HexAddress
from web3 import EthereumTesterProvider, Web3

from eth_deploy.address import predict_contract_address
from eth_deploy.chain_client import Web3ChainClient
from eth_deploy.confirmation import TransactionRejected
from eth_deploy.hotwallet import HotWallet
from eth_deploy.lens.deployment import HUB_PROXY, INTERACTION_LOGIC_LIB, PUBLISHING_LOGIC_LIB, deploy_lens
from eth_deploy.manifest import read_manifest
from eth_deploy.report import OutcomeStatus
from eth_deploy.testing import EmptyContractFactory


@pytest.fixture
def tester_provider():
    # https://web3py.readthedocs.io/en/stable/examples.html#contract-unit-tests-in-python
    return EthereumTesterProvider()


@pytest.fixture
def web3(tester_provider):
    """Set up a local unit testing blockchain."""
    return Web3(tester_provider)


@pytest.fixture()
def treasury(web3) -> HexAddress:
    return web3.eth.accounts[2]


@pytest.fixture()
def deployer(web3) -> HotWallet:
    """Deployer with some history, so the run does not start from nonce 0."""
    wallet = HotWallet.create_for_testing(web3, eth_amount=10)
    client = Web3ChainClient(web3, wallet, poll_delay=datetime.timedelta(seconds=0.01))
    for _ in range(3):
        pending = client.submit_call(web3.eth.accounts[3], b"")
        client.await_confirmation(pending, datetime.timedelta(seconds=10))
    assert wallet.current_nonce == 3
    return wallet


@pytest.fixture()
def governance(web3) -> HotWallet:
    return HotWallet.create_for_testing(web3, test_account_n=1)


def test_deploy_lens(web3: Web3, deployer: HotWallet, governance: HotWallet, treasury: HexAddress, tmp_path: Path):
    """All contracts land on their predicted addresses and everything gets whitelisted."""

    factory = EmptyContractFactory()
    manifest_path = tmp_path / "addresses.json"

    report = deploy_lens(
        web3,
        deployer,
        governance,
        factory,
        manifest_path,
        treasury=treasury,
        poll_delay=datetime.timedelta(seconds=0.01),
    )

    assert report.exit_code == 0, report.pformat()
    assert report.start_nonce == 3
    assert len(report.whitelist) == 10

    manifest = read_manifest(manifest_path)
    assert len(manifest) == 17
    assert list(manifest.keys())[0:8] == [
        "module globals",
        "publishing logic lib",
        "interaction logic lib",
        "lensHub impl",
        "follow NFT impl",
        "collect NFT impl",
        "lensHub proxy",
        "currency",
    ]

    # Every entry is where the nonce says
    for offset, address in enumerate(manifest.values(), start=1):
        assert address == predict_contract_address(deployer.address, 3 + offset - 1).lower()

    hub_proxy = Web3.to_checksum_address(manifest[HUB_PROXY])
    assert factory.get_deploy_args("LensHub") == [
        Web3.to_checksum_address(manifest["follow NFT impl"]),
        Web3.to_checksum_address(manifest["collect NFT impl"]),
    ]
    assert factory.get_deploy_args("FollowNFT") == [hub_proxy]
    assert factory.get_deploy_args("CollectNFT") == [hub_proxy]
    assert factory.get_deploy_args("ModuleGlobals") == [governance.address, treasury, 50]

    # Hub linked against both libraries
    _, _, libraries = factory.deploys[3]
    assert libraries == {
        PUBLISHING_LOGIC_LIB: Web3.to_checksum_address(manifest["publishing logic lib"]),
        INTERACTION_LOGIC_LIB: Web3.to_checksum_address(manifest["interaction logic lib"]),
    }

    # Proxy initialised in the constructor with the hub payload
    proxy_args = factory.get_deploy_args("TransparentUpgradeableProxy")
    assert proxy_args[1] == deployer.address
    assert ("LensHub", "initialize", ["Various Vegetables", "VVGT", governance.address]) in factory.calls

    # Whitelisting was signed by the governance
    assert web3.eth.get_transaction_count(governance.address) == 10
    assert web3.eth.get_transaction_count(deployer.address) == 3 + 17
    whitelisted = [(w.category, w.label) for w in report.whitelist]
    assert whitelisted[0] == ("collect module", "fee collect module")
    assert whitelisted[-1] == ("currency", "currency")


def test_deploy_lens_deployer_cannot_govern(web3: Web3, deployer: HotWallet, tmp_path: Path):
    """The deployer is the hub proxy admin, so it cannot whitelist through the proxy."""
    manifest_path = tmp_path / "addresses.json"

    with pytest.raises(AssertionError, match="cannot be the deployer"):
        deploy_lens(
            web3,
            deployer,
            deployer,
            EmptyContractFactory(),
            manifest_path,
            poll_delay=datetime.timedelta(seconds=0.01),
        )

    # Nothing was sent
    assert web3.eth.get_transaction_count(deployer.address) == 3
    assert not manifest_path.exists()


def test_deploy_lens_reverted_contract(web3: Web3, deployer: HotWallet, governance: HotWallet, tmp_path: Path):
    """A reverting constructor stops the run before the later contracts and the manifest."""

    manifest_path = tmp_path / "addresses.json"

    report = deploy_lens(
        web3,
        deployer,
        governance,
        EmptyContractFactory(reverting={"CollectNFT"}),
        manifest_path,
        poll_delay=datetime.timedelta(seconds=0.01),
    )

    assert report.exit_code == 1
    assert isinstance(report.fatal_error, TransactionRejected)
    assert report.fatal_error.label == "collect NFT impl"
    assert not manifest_path.exists()
    assert report.whitelist == []

    statuses = [s.status for s in report.steps]
    assert statuses[0:5] == [OutcomeStatus.confirmed] * 5
    assert statuses[5] == OutcomeStatus.failed
    assert set(statuses[6:]) == {OutcomeStatus.not_run}

    # Gas estimation caught the revert, the transaction was never signed
    assert web3.eth.get_transaction_count(deployer.address) == 3 + 5
    assert deployer.current_nonce == 3 + 5
