"""Deployer wallet with a nonce counter we control.

Contract addresses of a deployment are calculated from nonces before anything
is sent. The wallet therefore signs with the nonce the caller asks for,
never with what the node happens to report at signing time.
"""

import logging
import secrets
from dataclasses import dataclass

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3

from eth_deploy.gas import apply_gas, estimate_gas_price
from eth_deploy.tx import decode_raw_transaction, get_raw_transaction

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True, eq=False)
class SignedDeployTransaction:
    """A signed transaction and the nonce it was signed with."""

    #: Bytes for ``eth_sendRawTransaction``
    raw_transaction: HexBytes

    hash: HexBytes

    nonce: int

    #: Signer
    sender: HexAddress

    #: The transaction dict before signing, for diagnostics
    source: dict

    def __repr__(self):
        return f"<SignedDeployTransaction {self.hash.hex()} nonce:{self.nonce} from:{self.sender}>"


class HotWallet:
    """Private key in memory and a local nonce counter.

    - :py:meth:`sign_transaction_with_nonce` signs with an explicit nonce,
      the deployment steps use this

    - :py:meth:`sign_transaction_with_new_nonce` takes the next nonce from the counter,
      the whitelist calls use this

    - :py:meth:`release_nonce` gives back the last nonce if the node never accepted the transaction

    Not thread safe. A wallet must be the only thing sending from its account.
    """

    def __init__(self, account: LocalAccount):
        assert isinstance(account, LocalAccount), f"Got {type(account)}"
        self.account = account

        #: Next nonce to use, ``None`` until synced
        self.current_nonce: int | None = None

    def __repr__(self):
        return f"<HotWallet {self.address} nonce:{self.current_nonce}>"

    @property
    def address(self) -> HexAddress:
        return self.account.address

    def sync_nonce(self, web3: Web3):
        """Read the account nonce from the chain.

        A chain value behind our counter is ignored: the node has not seen
        our latest transactions yet.
        """
        onchain = web3.eth.get_transaction_count(self.address)
        if self.current_nonce is not None and onchain < self.current_nonce:
            logger.warning("%s: node reports nonce %d, we are already at %d, keeping ours", self.address, onchain, self.current_nonce)
            return
        self.current_nonce = onchain
        logger.info("%s: nonce is %d", self.address, onchain)

    def release_nonce(self, nonce: int):
        """Undo the last nonce allocation."""
        assert self.current_nonce is not None and self.current_nonce == nonce + 1, f"Nonce {nonce} is not the last one signed, counter is at {self.current_nonce}"
        self.current_nonce = nonce

    def sign_transaction_with_nonce(self, tx: dict, nonce: int) -> SignedDeployTransaction:
        """Sign with a nonce chosen by the caller.

        The counter moves to ``nonce + 1``.

        :param tx:
            Transaction without a nonce. Gets the nonce added.
        """
        assert isinstance(tx, dict), f"Got {type(tx)}"
        assert "nonce" not in tx, f"Transaction already has a nonce: {tx}"
        assert isinstance(nonce, int) and nonce >= 0, f"Bad nonce {nonce}"

        tx["nonce"] = nonce
        signed = self.account.sign_transaction(tx)
        raw = get_raw_transaction(signed)

        decoded = decode_raw_transaction(raw)
        assert decoded["nonce"] == nonce, f"Signed nonce {decoded['nonce']}, wanted {nonce}"

        self.current_nonce = nonce + 1

        return SignedDeployTransaction(
            raw_transaction=raw,
            hash=HexBytes(signed.hash),
            nonce=nonce,
            sender=self.address,
            source=tx,
        )

    def sign_transaction_with_new_nonce(self, tx: dict) -> SignedDeployTransaction:
        """Sign with the next nonce of the counter."""
        assert self.current_nonce is not None, f"Call sync_nonce() first: {self}"
        return self.sign_transaction_with_nonce(tx, self.current_nonce)

    @staticmethod
    def fill_in_gas_price(web3: Web3, tx: dict) -> dict:
        """Set the fee fields of ``tx`` from the node suggestion."""
        return apply_gas(tx, estimate_gas_price(web3))

    @staticmethod
    def from_private_key(key: str) -> "HotWallet":
        """Create a wallet from a 0x prefixed hex private key."""
        assert isinstance(key, str), f"Private key must be a string, got {type(key)}"
        assert key.startswith("0x"), "Private key must be 0x prefixed"
        return HotWallet(Account.from_key(key))

    @staticmethod
    def create_for_testing(web3: Web3, test_account_n=0, eth_amount=1) -> "HotWallet":
        """Random wallet funded from one of the unlocked test node accounts."""
        wallet = HotWallet.from_private_key("0x" + secrets.token_hex(32))
        tx_hash = web3.eth.send_transaction(
            {
                "from": web3.eth.accounts[test_account_n],
                "to": wallet.address,
                "value": eth_amount * 10**18,
            }
        )
        web3.eth.wait_for_transaction_receipt(tx_hash)
        wallet.sync_nonce(web3)
        return wallet
