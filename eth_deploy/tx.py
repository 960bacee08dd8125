"""Signed transaction helpers.

web3.py 7 came with an eth-account release that renamed ``rawTransaction``
to ``raw_transaction`` and moved the typed transaction codec out of the private
modules. Both generations are supported.
"""

from importlib.metadata import version

from eth_account._utils.legacy_transactions import Transaction
from hexbytes import HexBytes
from packaging.version import Version

#: Running web3.py 7.x or later
WEB3_PY_V7 = Version(version("web3")) >= Version("7.0.0")

if WEB3_PY_V7:
    from eth_account.typed_transactions import TypedTransaction
else:
    from eth_account._utils.typed_transactions import TypedTransaction


class UndecodableTransaction(Exception):
    """Raw bytes are not a transaction we know."""


def get_raw_transaction(signed_tx) -> HexBytes:
    """Bytes to broadcast, from any eth-account signed transaction."""
    raw = getattr(signed_tx, "raw_transaction", None)
    if raw is None:
        raw = getattr(signed_tx, "rawTransaction", None)
    assert raw is not None, f"Not a signed transaction: {signed_tx}"
    return HexBytes(raw)


def decode_raw_transaction(raw: bytes | str) -> dict:
    """Turn signed transaction bytes back to a dict.

    Used to check what we are about to send and to explain broadcast failures.

    :raise UndecodableTransaction:
        Garbage in
    """
    raw = HexBytes(raw)
    assert len(raw) > 0, "Empty transaction"

    try:
        if raw[0] >= 0xC0:
            # RLP list, pre EIP-2718 transaction
            return dict(Transaction.from_bytes(raw).as_dict())

        typed = TypedTransaction.from_bytes(raw)
        if WEB3_PY_V7:
            return dict(typed.transaction.as_dict())
        return dict(typed.transaction.dictionary)
    except Exception as e:
        raise UndecodableTransaction(f"Could not decode transaction {raw.hex()}") from e
