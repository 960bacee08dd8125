"""Contract address prediction tests."""

import pytest
from eth_typing import HexAddress
from web3 import EthereumTesterProvider, Web3

from eth_deploy.address import predict_contract_address, predict_future_address
from eth_deploy.hotwallet import HotWallet
from eth_deploy.testing import EMPTY_INIT_CODE

#: Well-known vectors
SENDER = "0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0"


@pytest.fixture
def tester_provider():
    # https://web3py.readthedocs.io/en/stable/examples.html#contract-unit-tests-in-python
    return EthereumTesterProvider()


@pytest.fixture
def web3(tester_provider):
    """Set up a local unit testing blockchain."""
    return Web3(tester_provider)


@pytest.fixture()
def deployer(web3) -> HexAddress:
    return web3.eth.accounts[0]


@pytest.mark.parametrize(
    "nonce,expected",
    [
        (0, "0xcd234a471b72ba2f1ccf0a70fcaba648a5eecd8d"),
        (1, "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"),
        (2, "0xf778b86fa74e846c4f0a1fbd1335fe81c00a0c91"),
        (3, "0xfffd933a0bc612844eaf0c6fe3e5b8e9b6c1d19c"),
    ],
)
def test_predict_known_addresses(nonce: int, expected: str):
    """Nonce 0 is encoded as an empty string, others as minimal big endian."""
    address = predict_contract_address(SENDER, nonce)
    assert address.lower() == expected
    assert Web3.is_checksum_address(address)


def test_predict_is_pure():
    """Same input, same output, checksum or not."""
    a = predict_contract_address(SENDER, 1_000_000)
    b = predict_contract_address(Web3.to_checksum_address(SENDER), 1_000_000)
    assert a == b
    assert predict_contract_address(SENDER, 127) != predict_contract_address(SENDER, 128)


def test_predict_future_address_offset():
    """Offset 1 is the next transaction."""
    assert predict_future_address(SENDER, 0, 1) == predict_contract_address(SENDER, 0)
    assert predict_future_address(SENDER, 5, 4) == predict_contract_address(SENDER, 8)

    with pytest.raises(AssertionError):
        predict_future_address(SENDER, 5, 0)


def test_predict_negative_nonce():
    with pytest.raises(AssertionError):
        predict_contract_address(SENDER, -1)


def test_predicted_matches_evm(web3: Web3, deployer: HexAddress):
    """Send a series of contract creations and check they land where predicted."""
    hot_wallet = HotWallet.create_for_testing(web3)
    start_nonce = hot_wallet.current_nonce
    assert start_nonce == 0

    for k in range(1, 4):
        expected = predict_future_address(hot_wallet.address, start_nonce, k)

        tx = {
            "from": hot_wallet.address,
            "chainId": web3.eth.chain_id,
            "data": EMPTY_INIT_CODE,
            "gas": 100_000,
        }
        hot_wallet.fill_in_gas_price(web3, tx)
        signed = hot_wallet.sign_transaction_with_new_nonce(tx)
        tx_hash = web3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = web3.eth.wait_for_transaction_receipt(tx_hash)

        assert receipt["status"] == 1
        assert receipt["contractAddress"] == expected
