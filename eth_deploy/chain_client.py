"""Chain client used by the deployment.

The orchestrator and the whitelist registrar talk to the chain only through
:py:class:`ChainClient`. One client is bound to one sending account.

- :py:class:`Web3ChainClient` signs locally with a :py:class:`eth_deploy.hotwallet.HotWallet`
  and talks to a JSON-RPC node with web3.py

- :py:class:`eth_deploy.testing.FakeChainClient` is an in-memory chain for unit tests
"""

import datetime
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from eth_typing import ChecksumAddress, HexAddress
from hexbytes import HexBytes
from web3 import Web3

from eth_deploy.confirmation import TransactionRejected, broadcast_transaction, wait_transaction_to_complete
from eth_deploy.hotwallet import HotWallet

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PendingTransaction:
    """A broadcasted transaction we have not seen confirmed yet."""

    tx_hash: HexBytes

    #: Nonce the transaction was signed with
    nonce: int

    #: Sending account
    sender: HexAddress

    #: Contract creation transaction
    is_create: bool


@dataclass(slots=True, frozen=True)
class ConfirmationResult:
    """What happened to a transaction once it was included in a block."""

    #: Receipt status was 1
    success: bool

    tx_hash: HexBytes

    #: Address of the created contract, for creation transactions
    address: ChecksumAddress | None = None

    block_number: int | None = None

    gas_used: int | None = None


class ChainClient(ABC):
    """Send transactions from one account and wait them to complete."""

    @property
    @abstractmethod
    def address(self) -> HexAddress:
        """The sending account."""

    @abstractmethod
    def get_nonce(self) -> int:
        """Read the current nonce of the sending account from the chain."""

    @abstractmethod
    def submit_create(self, data: bytes, nonce: int) -> PendingTransaction:
        """Broadcast a contract creation transaction.

        :param data:
            Deployable bytecode with the encoded constructor arguments

        :param nonce:
            The nonce the transaction must use

        :raise TransactionRejected:
            The node did not accept the transaction
        """

    @abstractmethod
    def submit_call(self, to: HexAddress, data: bytes, nonce: int | None = None) -> PendingTransaction:
        """Broadcast a contract call transaction.

        :param nonce:
            The nonce the transaction must use, or ``None`` to use the next free one

        :raise TransactionRejected:
            The node did not accept the transaction
        """

    @abstractmethod
    def await_confirmation(self, pending: PendingTransaction, timeout: datetime.timedelta) -> ConfirmationResult:
        """Block until the transaction is in a block.

        :raise ConfirmationTimeout:
            No receipt within the timeout
        """


class Web3ChainClient(ChainClient):
    """Chain client for a JSON-RPC node.

    Example:

    .. code-block:: python

        web3 = Web3(HTTPProvider(os.environ["JSON_RPC_URL"]))
        deployer = HotWallet.from_private_key(os.environ["PRIVATE_KEY"])
        client = Web3ChainClient(web3, deployer)

        nonce = client.get_nonce()
        pending = client.submit_create(bytecode, nonce)
        result = client.await_confirmation(pending, datetime.timedelta(minutes=5))
        print(f"Deployed at {result.address}")
    """

    def __init__(
        self,
        web3: Web3,
        wallet: HotWallet,
        gas_limit: int | None = None,
        poll_delay=datetime.timedelta(seconds=1),
    ):
        """
        :param gas_limit:
            Use a fixed gas limit for all transactions.

            If not set, estimate each transaction with the node.

        :param poll_delay:
            How often we ask the node for a receipt
        """
        assert isinstance(wallet, HotWallet), f"Got {type(wallet)}"
        self.web3 = web3
        self.wallet = wallet
        self.gas_limit = gas_limit
        self.poll_delay = poll_delay
        self.chain_id = web3.eth.chain_id

    def __repr__(self):
        return f"<Web3ChainClient {self.wallet.address} chain:{self.chain_id}>"

    @property
    def address(self) -> HexAddress:
        return self.wallet.address

    def get_nonce(self) -> int:
        self.wallet.sync_nonce(self.web3)
        return self.wallet.current_nonce

    def _build_tx(self, data: bytes, to: HexAddress | None) -> dict:
        tx = {
            "from": self.wallet.address,
            "chainId": self.chain_id,
            "data": HexBytes(data),
            "value": 0,
        }
        if to is not None:
            tx["to"] = Web3.to_checksum_address(to)

        if self.gas_limit:
            tx["gas"] = self.gas_limit
        else:
            try:
                tx["gas"] = self.web3.eth.estimate_gas(tx)
            except Exception as e:
                # The transaction would revert, no point sending it
                raise TransactionRejected(f"Gas estimation failed for a transaction from {self.wallet.address} to {to or 'new contract'}: {e}") from e

        self.wallet.fill_in_gas_price(self.web3, tx)
        return tx

    def _sign_and_broadcast(self, tx: dict, nonce: int | None, is_create: bool) -> PendingTransaction:
        if nonce is None:
            if self.wallet.current_nonce is None:
                self.wallet.sync_nonce(self.web3)
            signed = self.wallet.sign_transaction_with_new_nonce(tx)
        else:
            signed = self.wallet.sign_transaction_with_nonce(tx, nonce)

        try:
            tx_hash = broadcast_transaction(self.web3, signed)
        except TransactionRejected:
            # The node never saw the transaction, the nonce is still free
            self.wallet.release_nonce(signed.nonce)
            raise

        return PendingTransaction(
            tx_hash=tx_hash,
            nonce=signed.nonce,
            sender=self.wallet.address,
            is_create=is_create,
        )

    def submit_create(self, data: bytes, nonce: int) -> PendingTransaction:
        tx = self._build_tx(data, to=None)
        return self._sign_and_broadcast(tx, nonce, is_create=True)

    def submit_call(self, to: HexAddress, data: bytes, nonce: int | None = None) -> PendingTransaction:
        tx = self._build_tx(data, to=to)
        return self._sign_and_broadcast(tx, nonce, is_create=False)

    def await_confirmation(self, pending: PendingTransaction, timeout: datetime.timedelta) -> ConfirmationResult:
        receipt = wait_transaction_to_complete(
            self.web3,
            pending.tx_hash,
            max_timeout=timeout,
            poll_delay=self.poll_delay,
        )

        success = receipt["status"] == 1
        if not success:
            logger.warning("Transaction %s with nonce %d reverted", pending.tx_hash.hex(), pending.nonce)

        address = None
        if pending.is_create and receipt.get("contractAddress"):
            address = Web3.to_checksum_address(receipt["contractAddress"])

        return ConfirmationResult(
            success=success,
            tx_hash=pending.tx_hash,
            address=address,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )
