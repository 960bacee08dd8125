"""Deploy the full Lens protocol.

The hub implementation needs the addresses of the follow and collect NFT implementations,
and those need the address of the hub proxy, which is deployed last.
The cycle is broken by predicting the addresses from the deployer nonce:

.. code-block:: text

    lensHub impl     LensHub(Predicted(follow NFT impl), Predicted(collect NFT impl))
    follow NFT impl  FollowNFT(Predicted(lensHub proxy))
    collect NFT impl CollectNFT(Predicted(lensHub proxy))
    lensHub proxy    TransparentUpgradeableProxy(Realized(lensHub impl), deployer, initialize(...))

After the contracts, the modules and the currency are whitelisted by the governance.

Example:

.. code-block:: python

    web3 = Web3(HTTPProvider(json_rpc_url))
    deployer = HotWallet.from_private_key(os.environ["PRIVATE_KEY"])
    governance = HotWallet.from_private_key(os.environ["GOVERNANCE_PRIVATE_KEY"])

    report = deploy_lens(
        web3,
        deployer,
        governance,
        ArtifactContractFactory(Path("artifacts")),
        Path("addresses.json"),
    )
    print(report.pformat())
"""

import datetime
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from eth_typing import HexAddress
from web3 import Web3

from eth_deploy.abi import ContractFactory
from eth_deploy.chain_client import ChainClient, Web3ChainClient
from eth_deploy.deploy import run_deployment
from eth_deploy.hotwallet import HotWallet
from eth_deploy.plan import DeployerAddress, DeploymentPlan, DeploymentStep, EncodedCall, Predicted, Realized, WhitelistCategory, WhitelistEntry
from eth_deploy.report import DeploymentReport
from eth_deploy.whitelist import WhitelistRegistrar, WhitelistTarget

logger = logging.getLogger(__name__)


#: Protocol fee, 0.5%
TREASURY_FEE_BPS = 50

LENS_HUB_NFT_NAME = "Various Vegetables"

LENS_HUB_NFT_SYMBOL = "VVGT"

#: Label of the hub proxy, the address everybody uses
HUB_PROXY = "lensHub proxy"

#: Label of the global module configuration
MODULE_GLOBALS = "module globals"

#: Library keys as they appear in the hub ``linkReferences``
PUBLISHING_LOGIC_LIB = "contracts/libraries/PublishingLogic.sol:PublishingLogic"
INTERACTION_LOGIC_LIB = "contracts/libraries/InteractionLogic.sol:InteractionLogic"


#: Collect modules: label, contract, takes module globals
COLLECT_MODULES = [
    ("fee collect module", "FeeCollectModule", True),
    ("limited fee collect module", "LimitedFeeCollectModule", True),
    ("timed fee collect module", "TimedFeeCollectModule", True),
    ("limited timed fee collect module", "LimitedTimedFeeCollectModule", True),
    ("revert collect module", "RevertCollectModule", None),
    ("empty collect module", "EmptyCollectModule", False),
]

#: Follow modules: label, contract, takes module globals
FOLLOW_MODULES = [
    ("fee follow module", "FeeFollowModule", True),
    ("approval follow module", "ApprovalFollowModule", False),
]

REFERENCE_MODULES = [
    ("follower only reference module", "FollowerOnlyReferenceModule", False),
]

#: Category -> (registry label, registry contract, whitelist function)
WHITELIST_FUNCTIONS = {
    WhitelistCategory.collect_module: (HUB_PROXY, "LensHub", "whitelistCollectModule"),
    WhitelistCategory.follow_module: (HUB_PROXY, "LensHub", "whitelistFollowModule"),
    WhitelistCategory.reference_module: (HUB_PROXY, "LensHub", "whitelistReferenceModule"),
    WhitelistCategory.currency: (MODULE_GLOBALS, "ModuleGlobals", "whitelistCurrency"),
}


@dataclass(slots=True, frozen=True)
class LensDeploymentParameters:
    """Protocol parameters set at the deployment."""

    #: Governance, can whitelist modules and currencies
    governance: HexAddress

    #: Receives the protocol fees
    treasury: HexAddress

    treasury_fee_bps: int = TREASURY_FEE_BPS

    #: Profile NFT name of the hub
    hub_name: str = LENS_HUB_NFT_NAME

    hub_symbol: str = LENS_HUB_NFT_SYMBOL


def _module_step(label: str, contract_id: str, with_globals: bool | None) -> DeploymentStep:
    if with_globals is None:
        args = ()
    elif with_globals:
        args = (Realized(HUB_PROXY), Realized(MODULE_GLOBALS))
    else:
        args = (Realized(HUB_PROXY),)
    return DeploymentStep(label, contract_id, args)


def build_lens_plan(params: LensDeploymentParameters) -> DeploymentPlan:
    """Create the deployment plan of the protocol.

    17 contracts, 10 whitelist entries.
    """
    assert params.treasury_fee_bps >= 0, f"Bad fee {params.treasury_fee_bps}"

    steps = [
        DeploymentStep(MODULE_GLOBALS, "ModuleGlobals", (params.governance, params.treasury, params.treasury_fee_bps)),
        DeploymentStep("publishing logic lib", "PublishingLogic"),
        DeploymentStep("interaction logic lib", "InteractionLogic"),
        DeploymentStep(
            "lensHub impl",
            "LensHub",
            (Predicted("follow NFT impl"), Predicted("collect NFT impl")),
            libraries={
                PUBLISHING_LOGIC_LIB: Realized("publishing logic lib"),
                INTERACTION_LOGIC_LIB: Realized("interaction logic lib"),
            },
        ),
        DeploymentStep("follow NFT impl", "FollowNFT", (Predicted(HUB_PROXY),)),
        DeploymentStep("collect NFT impl", "CollectNFT", (Predicted(HUB_PROXY),)),
        # The deployer becomes the proxy admin,
        # so the initializer must be run by the constructor
        DeploymentStep(
            HUB_PROXY,
            "TransparentUpgradeableProxy",
            (
                Realized("lensHub impl"),
                DeployerAddress(),
                EncodedCall("LensHub", "initialize", (params.hub_name, params.hub_symbol, params.governance)),
            ),
        ),
        DeploymentStep("currency", "Currency"),
    ]

    whitelist = []

    for modules, category in (
        (COLLECT_MODULES, WhitelistCategory.collect_module),
        (FOLLOW_MODULES, WhitelistCategory.follow_module),
        (REFERENCE_MODULES, WhitelistCategory.reference_module),
    ):
        for label, contract_id, with_globals in modules:
            steps.append(_module_step(label, contract_id, with_globals))
            whitelist.append(WhitelistEntry(category, label))

    whitelist.append(WhitelistEntry(WhitelistCategory.currency, "currency"))

    return DeploymentPlan(steps, whitelist)


def create_lens_registrar(
    factory: ContractFactory,
    governance_client: ChainClient,
    confirmation_timeout=datetime.timedelta(minutes=5),
) -> WhitelistRegistrar:
    """Whitelisting of modules and currencies, all signed by the governance."""
    targets = [
        WhitelistTarget(
            category=category,
            registry_label=registry_label,
            contract_id=contract_id,
            function=function,
            client=governance_client,
        )
        for category, (registry_label, contract_id, function) in WHITELIST_FUNCTIONS.items()
    ]
    return WhitelistRegistrar(factory, targets, confirmation_timeout=confirmation_timeout)


def deploy_lens(
    web3: Web3,
    deployer: HotWallet,
    governance: HotWallet,
    factory: ContractFactory,
    manifest_path: Path,
    treasury: HexAddress | None = None,
    confirmation_timeout=datetime.timedelta(minutes=5),
    poll_delay=datetime.timedelta(seconds=1),
    gas_limit: int | None = None,
    should_abort: Callable[[], bool] | None = None,
) -> DeploymentReport:
    """Deploy and whitelist the whole protocol.

    :param deployer:
        Pays for the deployment and becomes the proxy admin.

        Must not be used by anyone else during the deployment.

    :param governance:
        Protocol governance, signs the whitelist transactions.

        Must be a different account than the deployer. The deployer is the hub proxy admin,
        and a transparent proxy does not forward the calls of its admin to the hub.

    :param treasury:
        Fee receiver. Defaults to the governance.

    :param gas_limit:
        Fixed gas limit instead of estimating each transaction

    :return:
        Report of the run. See :py:attr:`DeploymentReport.exit_code`.
    """

    assert governance.address != deployer.address, f"Governance {governance.address} cannot be the deployer, the proxy admin cannot whitelist through the hub proxy"

    deployer_client = Web3ChainClient(web3, deployer, gas_limit=gas_limit, poll_delay=poll_delay)
    governance_client = Web3ChainClient(web3, governance, gas_limit=gas_limit, poll_delay=poll_delay)

    params = LensDeploymentParameters(
        governance=governance.address,
        treasury=treasury or governance.address,
    )

    plan = build_lens_plan(params)

    logger.info(
        "Deploying Lens protocol, deployer %s, governance %s, treasury %s, %d steps",
        deployer.address,
        params.governance,
        params.treasury,
        len(plan),
    )

    registrar = create_lens_registrar(factory, governance_client, confirmation_timeout)

    return run_deployment(
        deployer_client,
        factory,
        plan,
        manifest_path,
        registrar=registrar,
        confirmation_timeout=confirmation_timeout,
        should_abort=should_abort,
    )
