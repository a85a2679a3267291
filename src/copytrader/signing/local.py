"""Local signing backend.

Uses an in-memory private key. Suitable for a hot copy-trading wallet
holding small amounts.

WARNING: The private key is held in process memory.
"""

import logging
from typing import Optional

from eth_account import Account

from copytrader.config import Settings
from copytrader.errors import KeyParseFailure, SigningFailure, UnknownAccount
from copytrader.signing.base import SignedTransaction, TransactionSigner

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT = "default"


def _to_hex_hash(value) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


class LocalSigner(TransactionSigner):
    """Signer holding one private key in memory."""

    def __init__(self, private_key: str):
        try:
            self._account = Account.from_key(private_key)
        except Exception as e:
            # Never include the key material in the error
            raise KeyParseFailure("Private key is malformed") from e

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_transaction(self, tx: dict) -> SignedTransaction:
        """Sign a transaction with EIP-155 replay protection."""
        try:
            signed = self._account.sign_transaction(tx)
        except Exception as e:
            raise SigningFailure(
                f"Could not sign transaction: {e}",
                account=self.address,
                nonce=tx.get("nonce"),
            ) from e

        # eth-account renamed rawTransaction to raw_transaction
        raw = getattr(signed, "raw_transaction", None)
        if raw is None:
            raw = signed.rawTransaction

        return SignedTransaction(
            raw_transaction=bytes(raw),
            tx_hash=_to_hex_hash(signed.hash),
        )


class Keyring:
    """Account reference -> signer lookup."""

    def __init__(self):
        self._signers: dict[str, TransactionSigner] = {}

    def add(self, account: str, signer: TransactionSigner) -> None:
        self._signers[account] = signer
        logger.info(f"Loaded signer {account} ({signer.address})")

    def get(self, account: str) -> TransactionSigner:
        """Get the signer for an account reference.

        Raises:
            UnknownAccount: If no signer is registered
        """
        signer = self._signers.get(account)
        if signer is None:
            raise UnknownAccount(f"No signer for account: {account}", account=account)
        return signer

    def accounts(self) -> list[str]:
        return list(self._signers)

    def __contains__(self, account: str) -> bool:
        return account in self._signers

    @classmethod
    def from_settings(cls, settings: Settings, account: Optional[str] = None) -> "Keyring":
        """Build a keyring with the configured wallet key, if any."""
        keyring = cls()
        if settings.private_key:
            keyring.add(account or DEFAULT_ACCOUNT, LocalSigner(settings.private_key))
        else:
            logger.warning("No private key configured, keyring is empty")
        return keyring
