"""Contract address prediction.

A contract created by a plain ``CREATE`` transaction gets its address from the
sender and the sender's nonce:

.. code-block:: text

    address = keccak256(rlp([sender, nonce]))[12:]

The RLP integer encoding is the one the consensus uses: nonce 0 is the empty
byte string, and no leading zero bytes are kept.

Example:

.. code-block:: python

    nonce = web3.eth.get_transaction_count(deployer)

    # The third transaction we send from now
    hub_proxy = predict_future_address(deployer, nonce, 3)
"""

import rlp
from eth_typing import ChecksumAddress, HexAddress
from eth_utils import keccak, to_canonical_address, to_checksum_address


def predict_contract_address(sender: HexAddress | str, nonce: int) -> ChecksumAddress:
    """Calculate the address of a contract created by ``sender`` with ``nonce``.

    Pure function, no network access.

    :param sender:
        Deployer address

    :param nonce:
        The nonce of the contract creation transaction

    :return:
        Checksummed contract address
    """
    assert type(nonce) == int, f"Nonce must be int, got {type(nonce)}"
    assert nonce >= 0, f"Nonce cannot be negative: {nonce}"
    encoded = rlp.encode([to_canonical_address(sender), nonce])
    return to_checksum_address(keccak(encoded)[12:])


def predict_future_address(sender: HexAddress | str, current_nonce: int, offset: int) -> ChecksumAddress:
    """Calculate the address of the contract created by the ``offset``-th transaction from now.

    :param current_nonce:
        The account nonce now, before any of the upcoming transactions have been sent

    :param offset:
        1-indexed: 1 is the next transaction we send
    """
    assert offset >= 1, f"Offset is 1-indexed, got {offset}"
    return predict_contract_address(sender, current_nonce + offset - 1)
