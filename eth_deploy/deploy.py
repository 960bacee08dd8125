"""Run a complete deployment: contracts, manifest, whitelisting.

The stages run in order:

1. Deploy every step of the plan with :py:class:`eth_deploy.orchestrator.DeploymentOrchestrator`.
   Any failure here aborts the run and no manifest is written.

2. Write the address manifest.

3. Whitelist the deployed components with :py:class:`eth_deploy.whitelist.WhitelistRegistrar`.
   Failures here are collected, the manifest stays on disk.

The result is a :py:class:`eth_deploy.report.DeploymentReport` with every outcome and the exit code.
"""

import datetime
import logging
from pathlib import Path
from typing import Callable

from eth_deploy.abi import ContractFactory
from eth_deploy.chain_client import ChainClient
from eth_deploy.confirmation import ConfirmationTimeout, TransactionRejected
from eth_deploy.manifest import build_manifest, write_manifest
from eth_deploy.orchestrator import DeploymentCancelled, DeploymentOrchestrator, PredictionMismatch
from eth_deploy.plan import DeploymentPlan
from eth_deploy.report import DeploymentReport
from eth_deploy.whitelist import WhitelistRegistrar

logger = logging.getLogger(__name__)


def run_deployment(
    client: ChainClient,
    factory: ContractFactory,
    plan: DeploymentPlan,
    manifest_path: Path,
    registrar: WhitelistRegistrar | None = None,
    confirmation_timeout=datetime.timedelta(minutes=5),
    should_abort: Callable[[], bool] | None = None,
) -> DeploymentReport:
    """Deploy, write the manifest and whitelist.

    :param client:
        Chain client of the deployer account.
        Nobody else may send transactions from this account during the run.

    :param manifest_path:
        Where to write the address manifest

    :param registrar:
        Whitelist the entries of the plan after the deployment.

        If not given, whitelisting is skipped.

    :param should_abort:
        Checked between deployment steps

    :raise InvalidPlan:
        The plan is broken, nothing was sent

    :return:
        Report of all outcomes. Check :py:attr:`DeploymentReport.exit_code`.
    """

    orchestrator = DeploymentOrchestrator(
        client,
        factory,
        plan,
        confirmation_timeout=confirmation_timeout,
        should_abort=should_abort,
    )

    report = DeploymentReport(deployer=client.address, steps=orchestrator.outcomes)

    try:
        deployed = orchestrator.run()
    except (PredictionMismatch, TransactionRejected, ConfirmationTimeout, DeploymentCancelled) as e:
        report.start_nonce = orchestrator.start_nonce
        report.fatal_error = e
        logger.error("Deployment aborted, %d contracts were deployed before the failure. Manifest not written.", len(orchestrator.deployed))
        return report

    report.start_nonce = orchestrator.start_nonce
    report.manifest = build_manifest(plan, deployed)
    report.manifest_path = write_manifest(manifest_path, report.manifest)

    if registrar is not None and plan.whitelist:
        report.whitelist = registrar.register(plan.whitelist, deployed)
    else:
        logger.info("Whitelisting skipped")

    return report
