"""Transaction signing."""

from copytrader.signing.base import SignedTransaction, TransactionSigner
from copytrader.signing.local import DEFAULT_ACCOUNT, Keyring, LocalSigner

__all__ = [
    "SignedTransaction",
    "TransactionSigner",
    "LocalSigner",
    "Keyring",
    "DEFAULT_ACCOUNT",
]
