"""Transaction sequencing and swap execution."""

from copytrader.swap.executor import (
    ConfirmationStatus,
    PendingTransaction,
    SubmittedTransaction,
    SwapExecutor,
)
from copytrader.swap.nonce import NonceSequencer, NonceSnapshot

__all__ = [
    "ConfirmationStatus",
    "PendingTransaction",
    "SubmittedTransaction",
    "SwapExecutor",
    "NonceSequencer",
    "NonceSnapshot",
]
