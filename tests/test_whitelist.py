"""Whitelisting after the deployment."""

from pathlib import Path

import pytest

from eth_deploy.address import predict_contract_address
from eth_deploy.deploy import run_deployment
from eth_deploy.manifest import read_manifest
from eth_deploy.plan import DeploymentPlan, DeploymentStep, Realized, WhitelistCategory, WhitelistEntry
from eth_deploy.report import OutcomeStatus
from eth_deploy.testing import FakeChainClient, FakeContractFactory
from eth_deploy.whitelist import WhitelistEntryFailed, WhitelistRegistrar, WhitelistTarget

DEPLOYER = "0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0"
GOVERNANCE = "0x1111111111111111111111111111111111111111"


@pytest.fixture()
def client() -> FakeChainClient:
    return FakeChainClient(DEPLOYER, nonce=0)


@pytest.fixture()
def governance() -> FakeChainClient:
    return FakeChainClient(GOVERNANCE, nonce=12)


@pytest.fixture()
def factory() -> FakeContractFactory:
    return FakeContractFactory()


@pytest.fixture()
def plan() -> DeploymentPlan:
    """A hub, a configuration contract, three modules and a currency."""
    return DeploymentPlan(
        [
            DeploymentStep("globals", "Globals"),
            DeploymentStep("hub", "Hub", (Realized("globals"),)),
            DeploymentStep("module 1", "Module", (Realized("hub"),)),
            DeploymentStep("module 2", "Module", (Realized("hub"),)),
            DeploymentStep("module 3", "Module", (Realized("hub"),)),
            DeploymentStep("currency", "Currency"),
        ],
        whitelist=[
            # Declared out of category order on purpose
            WhitelistEntry(WhitelistCategory.currency, "currency"),
            WhitelistEntry(WhitelistCategory.collect_module, "module 1"),
            WhitelistEntry(WhitelistCategory.collect_module, "module 2"),
            WhitelistEntry(WhitelistCategory.collect_module, "module 3"),
        ],
    )


@pytest.fixture()
def registrar(factory: FakeContractFactory, governance: FakeChainClient) -> WhitelistRegistrar:
    return WhitelistRegistrar(
        factory,
        [
            WhitelistTarget(WhitelistCategory.collect_module, "hub", "Hub", "whitelistCollectModule", governance),
            WhitelistTarget(WhitelistCategory.currency, "globals", "Globals", "whitelistCurrency", governance),
        ],
    )


def test_whitelist_all(client, governance, factory, plan, registrar, tmp_path: Path):
    """Entries go out in category order, signed by the governance."""
    report = run_deployment(client, factory, plan, tmp_path / "addresses.json", registrar=registrar)

    assert report.exit_code == 0
    assert [w.label for w in report.whitelist] == ["module 1", "module 2", "module 3", "currency"]
    assert all(w.status == OutcomeStatus.confirmed for w in report.whitelist)

    # Deployer sent only the deployments
    assert len(client.get_calls()) == 0
    calls = governance.get_calls()
    assert [c.nonce for c in calls] == [12, 13, 14, 15]
    hub = predict_contract_address(DEPLOYER, 1)
    module_globals = predict_contract_address(DEPLOYER, 0)
    assert [c.to for c in calls] == [hub, hub, hub, module_globals]

    assert factory.calls[0] == ("Hub", "whitelistCollectModule", [predict_contract_address(DEPLOYER, 2), True])
    assert factory.calls[-1] == ("Globals", "whitelistCurrency", [predict_contract_address(DEPLOYER, 5), True])

    # The operator sees the addresses, not only the file name
    text = report.pformat()
    assert f'"hub": "{hub.lower()}"' in text
    assert f'"currency": "{predict_contract_address(DEPLOYER, 5).lower()}"' in text


def test_whitelist_entry_fails(client, governance, factory, plan, registrar, tmp_path: Path):
    """Entry 2 of 3 reverts: entries 1 and 3 still go out, the manifest stays on disk."""

    module_2 = predict_contract_address(DEPLOYER, 3)
    failing_data = FakeContractFactory().encode_call("Hub", "whitelistCollectModule", [module_2, True])
    governance.revert_data.add(bytes(failing_data))

    manifest_path = tmp_path / "addresses.json"
    report = run_deployment(client, factory, plan, manifest_path, registrar=registrar)

    statuses = {w.label: w.status for w in report.whitelist}
    assert statuses == {
        "module 1": OutcomeStatus.confirmed,
        "module 2": OutcomeStatus.failed,
        "module 3": OutcomeStatus.confirmed,
        "currency": OutcomeStatus.confirmed,
    }
    assert len(governance.get_calls()) == 4

    assert report.deployment_succeeded
    assert not report.success
    assert report.exit_code == 2
    assert [w.label for w in report.whitelist_failures] == ["module 2"]

    assert len(registrar.failures) == 1
    failure = registrar.failures[0]
    assert isinstance(failure, WhitelistEntryFailed)
    assert failure.category == WhitelistCategory.collect_module
    assert failure.address == module_2

    # Written before whitelisting, not removed after
    assert manifest_path.exists()
    assert len(read_manifest(manifest_path)) == 6


def test_whitelist_rejected_broadcast(client, governance, factory, plan, registrar, tmp_path: Path):
    """The node refuses the currency whitelisting, the nonce is not consumed."""

    currency = predict_contract_address(DEPLOYER, 5)
    failing_data = FakeContractFactory().encode_call("Globals", "whitelistCurrency", [currency, True])
    governance.reject_data.add(bytes(failing_data))

    report = run_deployment(client, factory, plan, tmp_path / "addresses.json", registrar=registrar)

    assert report.whitelist[-1].label == "currency"
    assert report.whitelist[-1].status == OutcomeStatus.failed
    assert "rejected" in report.whitelist[-1].error
    assert governance.nonce == 15
    assert report.exit_code == 2


def test_whitelist_connection_lost(client, governance, factory, plan, registrar, tmp_path: Path):
    """A node error on one entry does not stop the remaining entries."""

    module_2 = predict_contract_address(DEPLOYER, 3)
    failing_data = FakeContractFactory().encode_call("Hub", "whitelistCollectModule", [module_2, True])
    governance.disconnect_data.add(bytes(failing_data))

    manifest_path = tmp_path / "addresses.json"
    report = run_deployment(client, factory, plan, manifest_path, registrar=registrar)

    assert [(w.label, w.status) for w in report.whitelist] == [
        ("module 1", OutcomeStatus.confirmed),
        ("module 2", OutcomeStatus.failed),
        ("module 3", OutcomeStatus.confirmed),
        ("currency", OutcomeStatus.confirmed),
    ]
    assert "node connection reset" in report.whitelist[1].error
    assert [c.nonce for c in governance.get_calls()] == [12, 13, 14]
    assert report.exit_code == 2
    assert manifest_path.exists()

    failure = registrar.failures[0]
    assert failure.label == "module 2"
    assert isinstance(failure.__cause__, ConnectionError)


def test_whitelist_skipped_without_registrar(client, factory, plan, tmp_path: Path):
    report = run_deployment(client, factory, plan, tmp_path / "addresses.json")
    assert report.whitelist == []
    assert report.exit_code == 0


def test_whitelist_missing_target(governance, factory, plan):
    """Every category in the plan needs a registry."""
    registrar = WhitelistRegistrar(
        factory,
        [WhitelistTarget(WhitelistCategory.collect_module, "hub", "Hub", "whitelistCollectModule", governance)],
    )

    with pytest.raises(AssertionError, match="No whitelist target"):
        registrar.register(plan.whitelist, {})

    assert governance.transactions == []
