"""Deployment plan: the steps, their order and their address dependencies.

A plan is a fixed list of steps. Each step consumes exactly one nonce of the deployer account,
so the position of a step in the list tells which transaction of the run it is.

Constructor arguments can contain address slots:

- :py:class:`Predicted` - the address of a step that has not been sent yet,
  calculated from the deployer nonce

- :py:class:`Realized` - the address of a step that has already been confirmed

- :py:class:`DeployerAddress` - the account sending the transactions

- :py:class:`EncodedCall` - ABI encoded call data, e.g. a proxy initializer payload

The slots form a directed acyclic graph between the steps. :py:meth:`DeploymentPlan.validate`
checks that the graph has no cycles and that the fixed order of the plan is a valid topological order of it:
a step may predict only a later step and consume only the realized address of an earlier step.

Example:

.. code-block:: python

    plan = DeploymentPlan(
        [
            DeploymentStep("hub impl", "Hub", (Predicted("nft impl"),)),
            DeploymentStep("nft impl", "NFT", (Predicted("hub proxy"),)),
            DeploymentStep("hub proxy", "Proxy", (Realized("hub impl"), DeployerAddress(), b"")),
        ]
    )
    plan.validate()
"""

import enum
from collections import Counter
from dataclasses import dataclass, field
from graphlib import CycleError, TopologicalSorter
from typing import Any, Iterable, Iterator, TypeAlias


class InvalidPlan(Exception):
    """The plan cannot be executed without baking in wrong addresses."""


@dataclass(slots=True, frozen=True)
class Predicted:
    """Address of a step that is going to be deployed later in the same run."""

    label: str


@dataclass(slots=True, frozen=True)
class Realized:
    """Address of a step that has already been deployed in this run."""

    label: str


@dataclass(slots=True, frozen=True)
class DeployerAddress:
    """The address of the deployer account."""


@dataclass(slots=True, frozen=True)
class EncodedCall:
    """Call data encoded with the ABI of ``contract_id``.

    Resolved to bytes when the step is executed.
    Its arguments may contain other slots.
    """

    contract_id: str
    function: str
    args: tuple = ()


#: A slot referring to another step
AddressSlot: TypeAlias = Predicted | Realized


class WhitelistCategory(enum.Enum):
    """Categories of deployed components that need to be whitelisted.

    Processed in the order of declaration.
    """

    collect_module = "collect module"
    follow_module = "follow module"
    reference_module = "reference module"
    currency = "currency"


@dataclass(slots=True, frozen=True)
class WhitelistEntry:
    """A deployed step that needs an authorization transaction after the deployment."""

    category: WhitelistCategory
    label: str


@dataclass(slots=True, frozen=True)
class DeploymentStep:
    """Deploy one contract."""

    #: Human readable label, also used in the manifest
    label: str

    #: Contract identifier understood by the contract factory
    contract_id: str

    #: Constructor arguments, may contain slots
    constructor_args: tuple = ()

    #: Library name -> slot of the deployed library
    libraries: dict[str, Any] = field(default_factory=dict)

    #: Include the address in the output manifest
    in_manifest: bool = True

    def get_values(self) -> Iterable[Any]:
        yield from self.constructor_args
        yield from self.libraries.values()


@dataclass(slots=True, frozen=True)
class CallStep:
    """A contract call transaction executed as a part of the deployment stream.

    Consumes a nonce like the deployments do.
    """

    label: str

    #: Slot of the called contract, must be a :py:class:`Realized`
    target: Realized

    #: ABI used to encode the call
    contract_id: str

    function: str

    args: tuple = ()

    def get_values(self) -> Iterable[Any]:
        yield self.target
        yield from self.args


#: Any step of a plan
Step: TypeAlias = DeploymentStep | CallStep


def iter_slots(value: Any) -> Iterator[AddressSlot]:
    """Find all address slots inside a (nested) argument value."""
    if isinstance(value, (Predicted, Realized)):
        yield value
    elif isinstance(value, EncodedCall):
        for arg in value.args:
            yield from iter_slots(arg)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_slots(item)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_slots(item)


class DeploymentPlan:
    """An ordered list of deployment steps and the whitelist entries for the deployed contracts."""

    def __init__(self, steps: list[Step], whitelist: list[WhitelistEntry] | None = None):
        assert len(steps) > 0, "Empty deployment plan"
        self.steps = list(steps)
        self.whitelist = list(whitelist or [])
        self._index = {step.label: idx for idx, step in enumerate(self.steps)}

    def __repr__(self):
        return f"<DeploymentPlan with {len(self.steps)} steps and {len(self.whitelist)} whitelist entries>"

    def __len__(self):
        return len(self.steps)

    def get_step(self, label: str) -> Step:
        idx = self._index.get(label)
        if idx is None:
            raise KeyError(f"No step labelled {label!r} in the plan")
        return self.steps[idx]

    def get_offset(self, label: str) -> int:
        """Which transaction of the run this step is.

        1-indexed, 1 is the first transaction sent after the run started.
        """
        self.get_step(label)
        return self._index[label] + 1

    def get_deployment_steps(self) -> list[DeploymentStep]:
        """Steps that create a contract, in plan order."""
        return [s for s in self.steps if isinstance(s, DeploymentStep)]

    def get_slots(self, step: Step) -> list[AddressSlot]:
        """All address slots the step needs before it can be sent."""
        slots = []
        for value in step.get_values():
            slots.extend(iter_slots(value))
        return slots

    def get_dependency_graph(self) -> dict[str, set[str]]:
        """Build the graph of steps.

        - ``Realized(T)`` in step S: T must be sent before S

        - ``Predicted(T)`` in step S: S must be sent before T, or T would have already used the nonce

        :return:
            Label -> labels of the steps that must be sent before it,
            as :py:class:`graphlib.TopologicalSorter` wants it
        """
        graph = {step.label: set() for step in self.steps}
        for step in self.steps:
            for slot in self.get_slots(step):
                if isinstance(slot, Realized):
                    graph[step.label].add(slot.label)
                else:
                    graph[slot.label].add(step.label)
        return graph

    def validate(self):
        """Check the plan can be executed with the address predictions staying valid.

        :raise InvalidPlan:
            With the explanation of the first problem found
        """

        if len(self._index) != len(self.steps):
            counts = Counter(s.label for s in self.steps)
            duplicates = sorted(label for label, count in counts.items() if count > 1)
            raise InvalidPlan(f"Duplicate step labels: {duplicates}")

        for step in self.steps:
            if isinstance(step, CallStep) and not isinstance(step.target, Realized):
                raise InvalidPlan(f"Call step {step.label!r} must target a realized address, got {step.target}")

            for slot in self.get_slots(step):
                if slot.label not in self._index:
                    raise InvalidPlan(f"Step {step.label!r} refers to unknown step {slot.label!r}")

                if slot.label == step.label:
                    raise InvalidPlan(f"Step {step.label!r} refers to its own address")

                if not isinstance(self.get_step(slot.label), DeploymentStep):
                    raise InvalidPlan(f"Step {step.label!r} refers to {slot.label!r}, which does not create a contract")

        graph = self.get_dependency_graph()
        try:
            TopologicalSorter(graph).prepare()
        except CycleError as e:
            cycle = e.args[1]
            raise InvalidPlan(f"Circular address dependency: {' -> '.join(cycle)}") from e

        for step in self.steps:
            step_offset = self.get_offset(step.label)
            for slot in self.get_slots(step):
                slot_offset = self.get_offset(slot.label)
                if isinstance(slot, Predicted) and slot_offset < step_offset:
                    raise InvalidPlan(f"Step {step.label!r} predicts the address of {slot.label!r}, but {slot.label!r} is sent before it. Use Realized instead.")
                if isinstance(slot, Realized) and slot_offset > step_offset:
                    raise InvalidPlan(f"Step {step.label!r} needs the realized address of {slot.label!r}, which is sent after it")

        for entry in self.whitelist:
            if entry.label not in self._index or not isinstance(self.get_step(entry.label), DeploymentStep):
                raise InvalidPlan(f"Whitelist entry {entry.category.value} refers to {entry.label!r}, which is not a deployed contract")
