"""Execute a deployment plan against a chain, one transaction at a time.

The contract addresses of the whole run are calculated from the deployer nonce
before the first transaction is sent. Some contracts get these predicted addresses
baked into their constructor arguments, so the transactions must land on chain
with exactly the nonces the predictions were made with:

- steps are sent strictly in the plan order

- a step is sent only after the previous one has been confirmed

- a sent transaction is never resubmitted

- any failure aborts the run, because a retry would use a different nonce

After each creation step the realized address is compared with the prediction.
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Callable

from eth_typing import ChecksumAddress, HexAddress
from hexbytes import HexBytes

from eth_deploy.abi import ContractFactory
from eth_deploy.address import predict_future_address
from eth_deploy.chain_client import ChainClient
from eth_deploy.confirmation import ConfirmationTimeout, TransactionRejected
from eth_deploy.plan import CallStep, DeployerAddress, DeploymentPlan, DeploymentStep, EncodedCall, Predicted, Realized, Step
from eth_deploy.report import OutcomeStatus, StepOutcome

logger = logging.getLogger(__name__)


class PredictionMismatch(Exception):
    """A contract was deployed at a different address than we calculated.

    Contracts deployed earlier may carry the wrong address forever.
    """

    def __init__(self, msg: str, label: str, predicted: HexAddress, realized: HexAddress | None):
        super().__init__(msg)
        self.label = label
        self.predicted = predicted
        self.realized = realized


class DeploymentCancelled(Exception):
    """The run was stopped between steps."""


@dataclass(slots=True, frozen=True)
class DeployedContract:
    """A confirmed contract creation step."""

    label: str

    contract_id: str

    address: ChecksumAddress

    tx_hash: HexBytes

    nonce: int

    block_number: int | None = None


class DeploymentOrchestrator:
    """Run the creation and call steps of a :py:class:`DeploymentPlan`.

    Example:

    .. code-block:: python

        orchestrator = DeploymentOrchestrator(client, factory, plan)
        deployed = orchestrator.run()
        print(deployed["lensHub proxy"].address)
    """

    def __init__(
        self,
        client: ChainClient,
        factory: ContractFactory,
        plan: DeploymentPlan,
        confirmation_timeout=datetime.timedelta(minutes=5),
        should_abort: Callable[[], bool] | None = None,
    ):
        """
        :param client:
            Client of the deployer account

        :param confirmation_timeout:
            How long we wait for a single transaction receipt

        :param should_abort:
            Checked before each step. Return ``True`` to stop the run.
        """
        assert isinstance(plan, DeploymentPlan), f"Got {type(plan)}"
        assert isinstance(confirmation_timeout, datetime.timedelta)
        self.client = client
        self.factory = factory
        self.plan = plan
        self.confirmation_timeout = confirmation_timeout
        self.should_abort = should_abort

        #: Deployer nonce read at the start of the run
        self.start_nonce: int | None = None

        #: Label -> address calculated before anything was sent
        self.predicted: dict[str, ChecksumAddress] = {}

        #: Label -> confirmed deployment
        self.deployed: dict[str, DeployedContract] = {}

        #: Outcome of every step, in plan order
        self.outcomes: list[StepOutcome] = [StepOutcome(label=s.label, kind="create" if isinstance(s, DeploymentStep) else "call") for s in plan.steps]

    def predict_addresses(self, start_nonce: int) -> dict[str, ChecksumAddress]:
        """Calculate the address of every creation step of the plan."""
        deployer = self.client.address
        return {step.label: predict_future_address(deployer, start_nonce, self.plan.get_offset(step.label)) for step in self.plan.get_deployment_steps()}

    def resolve(self, value: Any) -> Any:
        """Replace slots in an argument value with addresses and call data."""
        if isinstance(value, Predicted):
            return self.predicted[value.label]
        elif isinstance(value, Realized):
            deployed = self.deployed.get(value.label)
            assert deployed, f"{value.label} has not been deployed yet"
            return deployed.address
        elif isinstance(value, DeployerAddress):
            return self.client.address
        elif isinstance(value, EncodedCall):
            return bytes(self.factory.encode_call(value.contract_id, value.function, [self.resolve(a) for a in value.args]))
        elif isinstance(value, tuple):
            return tuple(self.resolve(v) for v in value)
        elif isinstance(value, list):
            return [self.resolve(v) for v in value]
        elif isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        return value

    def run(self) -> dict[str, DeployedContract]:
        """Execute all steps.

        :raise InvalidPlan:
            Before anything is sent

        :raise PredictionMismatch:
            A contract did not land on its predicted address

        :raise TransactionRejected:
            A transaction was refused by the node or reverted

        :raise ConfirmationTimeout:
            A transaction did not confirm in time

        :raise DeploymentCancelled:
            ``should_abort`` asked to stop

        :return:
            Label -> deployed contract, in plan order
        """
        self.plan.validate()

        self.start_nonce = self.client.get_nonce()
        self.predicted = self.predict_addresses(self.start_nonce)

        logger.info(
            "Starting deployment of %d steps from %s, nonce %d",
            len(self.plan),
            self.client.address,
            self.start_nonce,
        )

        for step, outcome in zip(self.plan.steps, self.outcomes):
            if self.should_abort is not None and self.should_abort():
                raise DeploymentCancelled(f"Deployment cancelled before step {step.label}, {len(self.deployed)} contracts already deployed")

            nonce = self.start_nonce + self.plan.get_offset(step.label) - 1
            self.execute_step(step, nonce, outcome)

        logger.info("All %d steps confirmed, %d contracts deployed", len(self.plan), len(self.deployed))
        return dict(self.deployed)

    def execute_step(self, step: Step, nonce: int, outcome: StepOutcome):
        """Send one step, wait for it, check the result."""
        outcome.nonce = nonce

        try:
            if isinstance(step, DeploymentStep):
                self._deploy(step, nonce, outcome)
            else:
                self._call(step, nonce, outcome)
        except (TransactionRejected, ConfirmationTimeout, PredictionMismatch) as e:
            if getattr(e, "label", None) is None:
                e.label = step.label
            outcome.status = OutcomeStatus.failed
            outcome.error = f"{e.__class__.__name__}: {e}"
            logger.error("Step %s with nonce %d failed: %s", step.label, nonce, e)
            raise

        outcome.status = OutcomeStatus.confirmed

    def _deploy(self, step: DeploymentStep, nonce: int, outcome: StepOutcome):
        predicted = self.predicted[step.label]
        args = self.resolve(step.constructor_args)
        libraries = self.resolve(step.libraries)

        logger.info("Deploying %s (%s), nonce %d, expected address %s", step.label, step.contract_id, nonce, predicted)

        data = self.factory.build_deploy_data(step.contract_id, args, libraries)
        pending = self.client.submit_create(data, nonce)
        assert pending.nonce == nonce, f"Client sent {step.label} with nonce {pending.nonce}, expected {nonce}"
        outcome.tx_hash = pending.tx_hash

        result = self.client.await_confirmation(pending, self.confirmation_timeout)
        if not result.success:
            raise TransactionRejected(f"Deployment of {step.label} reverted, tx {pending.tx_hash.hex()}", tx_hash=pending.tx_hash, label=step.label)

        outcome.address = result.address

        if result.address is None or result.address.lower() != predicted.lower():
            raise PredictionMismatch(
                f"{step.label} was deployed at {result.address}, but we predicted {predicted} from nonce {nonce}. Contracts deployed in this run may hold a wrong address.",
                label=step.label,
                predicted=predicted,
                realized=result.address,
            )

        self.deployed[step.label] = DeployedContract(
            label=step.label,
            contract_id=step.contract_id,
            address=result.address,
            tx_hash=pending.tx_hash,
            nonce=nonce,
            block_number=result.block_number,
        )

        logger.info("Deployed %s at %s", step.label, result.address)

    def _call(self, step: CallStep, nonce: int, outcome: StepOutcome):
        to = self.resolve(step.target)
        args = self.resolve(step.args)

        logger.info("Calling %s.%s() at %s as %s, nonce %d", step.contract_id, step.function, to, step.label, nonce)

        data = self.factory.encode_call(step.contract_id, step.function, args)
        pending = self.client.submit_call(to, data, nonce)
        assert pending.nonce == nonce, f"Client sent {step.label} with nonce {pending.nonce}, expected {nonce}"
        outcome.tx_hash = pending.tx_hash

        result = self.client.await_confirmation(pending, self.confirmation_timeout)
        if not result.success:
            raise TransactionRejected(f"Call {step.label} reverted, tx {pending.tx_hash.hex()}", tx_hash=pending.tx_hash, label=step.label)

        outcome.address = to
