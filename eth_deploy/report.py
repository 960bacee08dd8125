"""Deployment run report.

Every step and every whitelist entry gets an outcome, also when the run aborted,
so the operator can see how far the run got and which transactions are on chain.
"""

import enum
import json
from dataclasses import dataclass, field
from io import StringIO
from pathlib import Path

from eth_typing import HexAddress
from hexbytes import HexBytes


class OutcomeStatus(enum.Enum):
    """What happened to a step or a whitelist entry."""

    #: Transaction confirmed and checked
    confirmed = "confirmed"

    #: Transaction not sent, reverted, timed out or the address was wrong
    failed = "failed"

    #: Never reached, because the run aborted before
    not_run = "not run"


@dataclass(slots=True)
class StepOutcome:
    """Outcome of one deployment or call step."""

    label: str

    #: ``create`` or ``call``
    kind: str

    #: Nonce the step was sent with
    nonce: int | None = None

    status: OutcomeStatus = OutcomeStatus.not_run

    address: HexAddress | None = None

    tx_hash: HexBytes | None = None

    error: str | None = None


@dataclass(slots=True)
class WhitelistOutcome:
    """Outcome of one whitelist authorization transaction."""

    category: str

    label: str

    address: HexAddress

    status: OutcomeStatus = OutcomeStatus.not_run

    tx_hash: HexBytes | None = None

    error: str | None = None


@dataclass(slots=True)
class DeploymentReport:
    """The final report of a deployment run."""

    #: Deployer account
    deployer: HexAddress

    #: Account nonce when the run started
    start_nonce: int | None = None

    steps: list[StepOutcome] = field(default_factory=list)

    whitelist: list[WhitelistOutcome] = field(default_factory=list)

    #: Label -> address, ``None`` if the deployment did not complete
    manifest: dict[str, str] | None = None

    #: Where the manifest was written, ``None`` if it was not
    manifest_path: Path | None = None

    #: The exception that aborted the contract creation stage
    fatal_error: Exception | None = None

    @property
    def deployment_succeeded(self) -> bool:
        """All deployment steps confirmed with the predicted addresses."""
        return self.fatal_error is None and all(s.status == OutcomeStatus.confirmed for s in self.steps)

    @property
    def whitelist_failures(self) -> list[WhitelistOutcome]:
        return [w for w in self.whitelist if w.status != OutcomeStatus.confirmed]

    @property
    def success(self) -> bool:
        """Everything deployed and whitelisted."""
        return self.deployment_succeeded and not self.whitelist_failures

    @property
    def exit_code(self) -> int:
        """Process exit code for command line use.

        - 0: full success

        - 1: contract creation failed, no manifest

        - 2: contracts deployed and manifest written, but some whitelist entries failed
        """
        if not self.deployment_succeeded:
            return 1
        if self.whitelist_failures:
            return 2
        return 0

    def pformat(self) -> str:
        """Human readable table of all outcomes."""
        io = StringIO()
        print(f"Deployer: {self.deployer}, start nonce: {self.start_nonce}", file=io)
        print("{:<36} {:<6} {:<6} {:<10} {:<44}".format("Step", "Kind", "Nonce", "Status", "Address"), file=io)
        for s in self.steps:
            nonce = "-" if s.nonce is None else s.nonce
            print("{:<36} {:<6} {:<6} {:<10} {:<44}".format(s.label, s.kind, nonce, s.status.value, s.address or "-"), file=io)
            if s.error:
                print(f"    {s.error}", file=io)

        if self.whitelist:
            print("{:<36} {:<18} {:<10}".format("Whitelisted", "Category", "Status"), file=io)
            for w in self.whitelist:
                print("{:<36} {:<18} {:<10}".format(w.label, w.category, w.status.value), file=io)
                if w.error:
                    print(f"    {w.error}", file=io)

        print(f"Manifest: {self.manifest_path or 'not written'}", file=io)
        if self.manifest:
            print(json.dumps(self.manifest, indent=2), file=io)
        if self.fatal_error:
            print(f"Aborted: {self.fatal_error.__class__.__name__}: {self.fatal_error}", file=io)
        print(f"Result: {'success' if self.success else 'FAILED'}", file=io)
        return io.getvalue()
