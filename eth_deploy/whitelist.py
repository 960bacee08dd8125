"""Whitelist the deployed modules and currencies.

After the contracts are deployed, the protocol must authorize them.
Each category of components is whitelisted against its own registry contract,
possibly with a different signer:

- collect, follow and reference modules against the hub

- currencies against the global module configuration

Entries are sent one by one in the category order and, inside a category,
in the deployment order. A failed entry does not stop the pass.
It is recorded and the run is reported failed after all entries have been tried.
"""

import datetime
import logging
from dataclasses import dataclass

from eth_typing import HexAddress

from eth_deploy.abi import ContractFactory
from eth_deploy.chain_client import ChainClient
from eth_deploy.orchestrator import DeployedContract
from eth_deploy.plan import WhitelistCategory, WhitelistEntry
from eth_deploy.report import OutcomeStatus, WhitelistOutcome

logger = logging.getLogger(__name__)


class WhitelistEntryFailed(Exception):
    """An authorization transaction did not go through."""

    def __init__(self, msg: str, category: WhitelistCategory, label: str, address: HexAddress):
        super().__init__(msg)
        self.category = category
        self.label = label
        self.address = address


@dataclass(slots=True, frozen=True)
class WhitelistTarget:
    """How a category of components is whitelisted."""

    category: WhitelistCategory

    #: Label of the deployed registry contract receiving the whitelist calls
    registry_label: str

    #: ABI of the registry
    contract_id: str

    #: Function taking ``(address, bool)``
    function: str

    #: Authorized signer
    client: ChainClient


class WhitelistRegistrar:
    """Send the whitelist transactions of a deployment, best-effort."""

    def __init__(
        self,
        factory: ContractFactory,
        targets: list[WhitelistTarget],
        confirmation_timeout=datetime.timedelta(minutes=5),
    ):
        self.factory = factory
        self.targets = {t.category: t for t in targets}
        assert len(self.targets) == len(targets), "One target per category"
        self.confirmation_timeout = confirmation_timeout

        #: Every entry that failed in the last :py:meth:`register` pass
        self.failures: list[WhitelistEntryFailed] = []

    def register(self, entries: list[WhitelistEntry], deployed: dict[str, DeployedContract]) -> list[WhitelistOutcome]:
        """Whitelist all entries.

        :param entries:
            What to whitelist

        :param deployed:
            Output of :py:meth:`eth_deploy.orchestrator.DeploymentOrchestrator.run`

        :return:
            Outcome of each entry, in the order they were sent
        """

        for entry in entries:
            assert entry.category in self.targets, f"No whitelist target configured for {entry.category.value}"
            assert entry.label in deployed, f"{entry.label} was not deployed"
            assert self.targets[entry.category].registry_label in deployed, f"Registry of {entry.category.value} was not deployed"

        self.failures = []
        outcomes = []

        for category in WhitelistCategory:
            category_entries = sorted(
                (e for e in entries if e.category == category),
                key=lambda e: deployed[e.label].nonce,
            )

            if not category_entries:
                continue

            target = self.targets[category]
            registry = deployed[target.registry_label]

            logger.info("Whitelisting %d entries of %s at %s", len(category_entries), category.value, registry.address)

            for entry in category_entries:
                address = deployed[entry.label].address
                outcome = WhitelistOutcome(category=category.value, label=entry.label, address=address)
                outcomes.append(outcome)

                try:
                    self.whitelist_entry(target, registry.address, entry, address, outcome)
                except Exception as e:
                    # Whatever broke this entry, the pass goes on
                    if isinstance(e, WhitelistEntryFailed):
                        failure = e
                    else:
                        failure = WhitelistEntryFailed(f"Whitelisting {entry.label} failed: {e}", category, entry.label, address)
                        failure.__cause__ = e
                    self.failures.append(failure)
                    outcome.status = OutcomeStatus.failed
                    outcome.error = str(failure)
                    logger.error("Could not whitelist %s %s at %s: %s", category.value, entry.label, address, e)
                    continue

                outcome.status = OutcomeStatus.confirmed

        if self.failures:
            logger.error("Whitelisting finished with %d failed entries out of %d", len(self.failures), len(outcomes))
        else:
            logger.info("Whitelisted %d entries", len(outcomes))

        return outcomes

    def whitelist_entry(
        self,
        target: WhitelistTarget,
        registry_address: HexAddress,
        entry: WhitelistEntry,
        address: HexAddress,
        outcome: WhitelistOutcome,
    ):
        """Send and confirm one whitelist transaction."""
        logger.info("Whitelisting %s %s at %s", entry.category.value, entry.label, address)
        data = self.factory.encode_call(target.contract_id, target.function, [address, True])
        pending = target.client.submit_call(registry_address, data)
        outcome.tx_hash = pending.tx_hash
        result = target.client.await_confirmation(pending, self.confirmation_timeout)
        if not result.success:
            raise WhitelistEntryFailed(f"{target.function}({address}) reverted, tx {pending.tx_hash.hex()}", entry.category, entry.label, address)
