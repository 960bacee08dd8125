"""Gas pricing of deployment transactions.

We do not try to be clever about fees. Whatever the node suggests is applied
to each transaction just before it is signed.
"""

import enum
import logging
from dataclasses import dataclass

from web3 import Web3

logger = logging.getLogger(__name__)


class GasPriceMethod(enum.Enum):
    """How the transaction pays for gas."""

    #: ``gasPrice``
    legacy = "legacy"

    #: EIP-1559 ``maxFeePerGas`` and ``maxPriorityFeePerGas``
    london = "london"


@dataclass(slots=True, frozen=True)
class GasPriceSuggestion:
    """Fee fields for one transaction."""

    method: GasPriceMethod

    #: Legacy chains only
    gas_price: int | None = None

    #: Base fee of the latest block, EIP-1559 chains only
    base_fee: int | None = None

    max_priority_fee_per_gas: int | None = None

    max_fee_per_gas: int | None = None

    def get_tx_gas_params(self) -> dict:
        """Fee fields as they go into a transaction dict."""
        if self.method == GasPriceMethod.london:
            return {
                "maxFeePerGas": self.max_fee_per_gas,
                "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            }
        return {"gasPrice": self.gas_price}


def estimate_gas_price(web3: Web3, method: GasPriceMethod | None = None) -> GasPriceSuggestion:
    """Ask the node for the current fees.

    :param method:
        Force the pricing method.
        By default EIP-1559 is used when the latest block has a base fee.
    """
    latest = web3.eth.get_block("latest")
    base_fee = latest.get("baseFeePerGas")

    if method is None:
        method = GasPriceMethod.legacy if base_fee is None else GasPriceMethod.london

    if method == GasPriceMethod.legacy:
        return GasPriceSuggestion(method=method, gas_price=web3.eth.gas_price)

    assert base_fee is not None, "Chain has no base fee, cannot use EIP-1559 pricing"
    tip = web3.eth.max_priority_fee

    # Room for the base fee to double before the transaction gets stuck
    suggestion = GasPriceSuggestion(
        method=method,
        base_fee=base_fee,
        max_priority_fee_per_gas=tip,
        max_fee_per_gas=2 * base_fee + tip,
    )
    logger.debug("Gas price suggestion %s", suggestion)
    return suggestion


def apply_gas(tx: dict, suggestion: GasPriceSuggestion) -> dict:
    """Write the fee fields into a transaction dict.

    Fields of the other pricing method are removed.

    :return:
        The same dict, mutated
    """
    assert isinstance(tx, dict), f"Expected dict, got {type(tx)}"

    for key in ("gasPrice", "maxFeePerGas", "maxPriorityFeePerGas"):
        tx.pop(key, None)

    tx.update(suggestion.get_tx_gas_params())
    return tx
