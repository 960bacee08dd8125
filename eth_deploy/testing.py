"""Deployment testing helpers.

- :py:class:`FakeChainClient` is an in-memory chain with fault injection,
  to test the failure paths of a run without a node

- :py:class:`FakeContractFactory` records what the orchestrator asks it to encode

- :py:class:`EmptyContractFactory` produces init code that really deploys on an EVM,
  so whole plans can be run against :py:class:`web3.EthereumTesterProvider`
  without compiled contracts
"""

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from eth_typing import HexAddress
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes

from eth_deploy.abi import ContractFactory
from eth_deploy.address import predict_contract_address
from eth_deploy.chain_client import ChainClient, ConfirmationResult, PendingTransaction
from eth_deploy.confirmation import ConfirmationTimeout, TransactionRejected

logger = logging.getLogger(__name__)


#: PUSH1 0 PUSH1 0 RETURN: creates a contract with empty runtime code.
#: Anything appended after it is never executed.
EMPTY_INIT_CODE = HexBytes("0x60006000f3")

#: PUSH1 0 PUSH1 0 REVERT
REVERTING_INIT_CODE = HexBytes("0x60006000fd")


@dataclass(slots=True)
class FakeTransaction:
    """A transaction the fake chain has accepted."""

    tx_hash: HexBytes
    nonce: int
    to: HexAddress | None
    data: bytes
    is_create: bool


@dataclass
class FakeChainClient(ChainClient):
    """In-memory chain of one account.

    Contract creations land on the address :py:func:`predict_contract_address`
    gives for the nonce, unless told otherwise.

    Example:

    .. code-block:: python

        client = FakeChainClient("0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0", nonce=5)
        client.timeout_nonces.add(7)
    """

    sender: HexAddress

    #: The next free nonce of the account
    nonce: int = 0

    #: Nonce -> address where the contract lands instead of the correct one
    realized_overrides: dict[int, HexAddress] = field(default_factory=dict)

    #: The node refuses these nonces at broadcast
    reject_nonces: set[int] = field(default_factory=set)

    #: These nonces never get a receipt
    timeout_nonces: set[int] = field(default_factory=set)

    #: These nonces are mined with status 0
    revert_nonces: set[int] = field(default_factory=set)

    #: Calls with this data are refused at broadcast
    reject_data: set[bytes] = field(default_factory=set)

    #: Calls with this data are mined with status 0
    revert_data: set[bytes] = field(default_factory=set)

    #: Sending calls with this data drops the node connection
    disconnect_data: set[bytes] = field(default_factory=set)

    #: Everything accepted, in order
    transactions: list[FakeTransaction] = field(default_factory=list)

    block_number: int = 1

    @property
    def address(self) -> HexAddress:
        return self.sender

    def get_nonce(self) -> int:
        return self.nonce

    def get_calls(self) -> list[FakeTransaction]:
        return [t for t in self.transactions if not t.is_create]

    def _accept(self, to: HexAddress | None, data: bytes, nonce: int | None) -> PendingTransaction:
        if nonce is None:
            nonce = self.nonce

        if nonce != self.nonce:
            raise TransactionRejected(f"Nonce mismatch, account is at {self.nonce}, transaction has {nonce}")

        if bytes(data) in self.disconnect_data:
            raise ConnectionError("node connection reset")

        if nonce in self.reject_nonces or bytes(data) in self.reject_data:
            raise TransactionRejected(f"Transaction with nonce {nonce} rejected by the fake node")

        tx_hash = HexBytes(keccak(bytes.fromhex(self.sender[2:]) + nonce.to_bytes(32, "big")))
        self.transactions.append(FakeTransaction(tx_hash=tx_hash, nonce=nonce, to=to, data=bytes(data), is_create=to is None))
        self.nonce += 1

        return PendingTransaction(tx_hash=tx_hash, nonce=nonce, sender=self.sender, is_create=to is None)

    def submit_create(self, data: bytes, nonce: int) -> PendingTransaction:
        return self._accept(None, data, nonce)

    def submit_call(self, to: HexAddress, data: bytes, nonce: int | None = None) -> PendingTransaction:
        return self._accept(to, data, nonce)

    def await_confirmation(self, pending: PendingTransaction, timeout: datetime.timedelta) -> ConfirmationResult:
        tx = next(t for t in self.transactions if t.tx_hash == pending.tx_hash)

        if tx.nonce in self.timeout_nonces:
            raise ConfirmationTimeout(f"No receipt for {tx.tx_hash.hex()} in {timeout}", tx_hash=tx.tx_hash)

        self.block_number += 1
        success = tx.nonce not in self.revert_nonces and tx.data not in self.revert_data

        address = None
        if tx.is_create and success:
            address = to_checksum_address(self.realized_overrides.get(tx.nonce) or predict_contract_address(self.sender, tx.nonce))

        return ConfirmationResult(
            success=success,
            tx_hash=tx.tx_hash,
            address=address,
            block_number=self.block_number,
            gas_used=21_000,
        )


class FakeContractFactory(ContractFactory):
    """Deterministic fake bytecode and call data.

    The same input always gives the same bytes, so tests can compute
    the data of a call they want to fail.
    """

    def __init__(self):
        #: (contract id, args, libraries) of each build
        self.deploys: list[tuple[str, list, dict]] = []

        #: (contract id, function, args) of each encoded call
        self.calls: list[tuple[str, str, list]] = []

    def build_deploy_data(self, contract_id: str, args: Sequence[Any], libraries: dict[str, HexAddress] | None = None) -> HexBytes:
        self.deploys.append((contract_id, list(args), dict(libraries or {})))
        return HexBytes(keccak(text=repr((contract_id, list(args), sorted((libraries or {}).items())))))

    def encode_call(self, contract_id: str, function: str, args: Sequence[Any]) -> HexBytes:
        self.calls.append((contract_id, function, list(args)))
        return HexBytes(keccak(text=function)[0:4] + keccak(text=repr((contract_id, list(args)))))

    def get_deploy_args(self, contract_id: str) -> list:
        """Constructor arguments of the first deployment of a contract."""
        for deployed_id, args, _ in self.deploys:
            if deployed_id == contract_id:
                return args
        raise KeyError(contract_id)


class EmptyContractFactory(FakeContractFactory):
    """Init code that deploys an empty contract on a real EVM.

    Calls to the deployed contracts always succeed, as there is no code to run.

    :param reverting:
        Contract ids whose deployment reverts
    """

    def __init__(self, reverting: set[str] | None = None):
        super().__init__()
        self.reverting = reverting or set()

    def build_deploy_data(self, contract_id: str, args: Sequence[Any], libraries: dict[str, HexAddress] | None = None) -> HexBytes:
        tag = super().build_deploy_data(contract_id, args, libraries)
        init_code = REVERTING_INIT_CODE if contract_id in self.reverting else EMPTY_INIT_CODE
        return HexBytes(init_code + tag)

