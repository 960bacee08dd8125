"""Transaction broadcasting and confirmation.

- A transaction is broadcast exactly once. Resubmitting would use another nonce
  and move every address predicted after it.

- Waiting for the receipt is a read-only poll loop and is repeated until a timeout.
"""

import datetime
import logging
import time

from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from eth_deploy.hotwallet import SignedDeployTransaction

logger = logging.getLogger(__name__)


class TransactionRejected(Exception):
    """The node refused the transaction, or it reverted on-chain."""

    def __init__(self, msg: str, tx_hash: HexBytes | None = None, label: str | None = None):
        super().__init__(msg)
        self.tx_hash = tx_hash
        self.label = label


class ConfirmationTimeout(Exception):
    """We exceeded the transaction confirmation timeout."""

    def __init__(self, msg: str, tx_hash: HexBytes | None = None, label: str | None = None):
        super().__init__(msg)
        self.tx_hash = tx_hash
        self.label = label


def broadcast_transaction(web3: Web3, signed_tx: SignedDeployTransaction) -> HexBytes:
    """Send a signed transaction to the node, once.

    :raise TransactionRejected:
        The node refused it: bad nonce, not enough ETH for gas, underpriced
    """
    try:
        tx_hash = web3.eth.send_raw_transaction(signed_tx.raw_transaction)
    except (ValueError, Web3Exception) as e:
        # Local test nodes validate at broadcast, e.g.
        # {'code': -32003, 'message': 'Insufficient funds for gas * price + value'}
        raise TransactionRejected(
            f"Node refused {signed_tx.hash.hex()} from {signed_tx.sender} with nonce {signed_tx.nonce}: {e}\nTransaction: {signed_tx.source}",
            tx_hash=signed_tx.hash,
        ) from e

    logger.debug("Sent %s, nonce %d", HexBytes(tx_hash).hex(), signed_tx.nonce)
    return HexBytes(tx_hash)


def wait_transaction_to_complete(
    web3: Web3,
    tx_hash: HexBytes,
    max_timeout=datetime.timedelta(minutes=5),
    poll_delay=datetime.timedelta(seconds=1),
) -> dict:
    """Poll the node until the transaction has a receipt.

    Only reads, so this can be repeated safely until ``max_timeout``.

    :raise ConfirmationTimeout:
        No receipt in time. The transaction may still be mined later.

    :return:
        Transaction receipt
    """
    assert isinstance(poll_delay, datetime.timedelta)
    assert isinstance(max_timeout, datetime.timedelta)

    tx_hash = HexBytes(tx_hash)
    deadline = time.monotonic() + max_timeout.total_seconds()
    attempts = 0

    while True:
        attempts += 1
        try:
            receipt = web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            # Pending or unknown
            receipt = None

        if receipt:
            logger.debug("%s mined in block %d after %d polls", tx_hash.hex(), receipt["blockNumber"], attempts)
            return receipt

        if time.monotonic() > deadline:
            raise ConfirmationTimeout(
                f"No receipt for {tx_hash.hex()} after {max_timeout} ({attempts} polls every {poll_delay.total_seconds()}s)",
                tx_hash=tx_hash,
            )

        time.sleep(poll_delay.total_seconds())
