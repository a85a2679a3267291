"""Error taxonomy for the trade execution engine.

Every failure handed back to the caller is a ``CopyTradeError``. The
``stage`` attribute names the step that failed so an operator can tell
"safe to retry" apart from "investigate first", and ``context`` carries
the chain, account and function that were being attempted.
"""

from enum import Enum
from typing import Optional


class Stage(str, Enum):
    """Pipeline step at which a trade failed."""

    CONFIG = "config"
    QUOTE = "quote"
    NONCE = "nonce"
    SIMULATE = "simulate"
    SIGN = "sign"
    BROADCAST = "broadcast"
    CONFIRM = "confirm"
    LEDGER = "ledger"


class CopyTradeError(Exception):
    """Base exception for all engine errors."""

    stage: Stage = Stage.CONFIG
    retryable: bool = False

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = {key: value for key, value in context.items() if value is not None}

    def __str__(self):
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"[{self.stage.value}] {self.message} [{ctx_str}]"
        return f"[{self.stage.value}] {self.message}"


# ======================
# Configuration
# ======================


class ConfigurationError(CopyTradeError):
    """Misconfiguration or malformed input. Fatal to the signal, never retried."""

    stage = Stage.CONFIG


class UnknownChain(ConfigurationError):
    """Chain name is not registered."""


UnsupportedChain = UnknownChain


class AlreadyRegistered(ConfigurationError):
    """A chain with the same name is already registered."""


class ChainIdMismatch(ConfigurationError):
    """RPC endpoint reports a different chain id than configured."""


class InvalidAddress(ConfigurationError):
    """Malformed EVM address."""


class InvalidAmount(ConfigurationError):
    """Non-positive or otherwise unusable trade amount."""


class InvalidSlippage(ConfigurationError):
    """Slippage tolerance outside [0, 100)."""


class UnboundedSlippage(ConfigurationError):
    """A swap without a minimum output was requested without explicit opt-in."""


class UnknownAccount(ConfigurationError):
    """No signer is registered under the account reference."""


# ======================
# Quote
# ======================


class QuoteError(CopyTradeError):
    """Quote could not be produced."""

    stage = Stage.QUOTE


class InsufficientLiquidity(QuoteError):
    """Pool is missing or its reserves cannot produce any output."""


class QuoteUnavailable(QuoteError):
    """Router could not be reached after bounded retries."""

    retryable = True


class InsufficientBalance(QuoteError):
    """Wallet holds less than the amount it was asked to sell."""


# ======================
# Nonce
# ======================


class NonceConflict(CopyTradeError):
    """Nonce bookkeeping disagrees with the caller or with the node."""

    stage = Stage.NONCE


class NonceUnavailable(CopyTradeError):
    """Nonce could not be seeded or the sequencer lock timed out."""

    stage = Stage.NONCE
    retryable = True


# ======================
# Simulation / signing
# ======================


class SimulationReverted(CopyTradeError):
    """Gas estimation shows the call would revert."""

    stage = Stage.SIMULATE

    def __init__(self, message: str, revert_reason: Optional[str] = None, **context):
        super().__init__(message, revert_reason=revert_reason, **context)
        self.revert_reason = revert_reason


class SimulationUnavailable(CopyTradeError):
    """Gas estimate or gas price could not be read after bounded retries."""

    stage = Stage.SIMULATE
    retryable = True


class KeyParseFailure(CopyTradeError):
    """Private key is malformed."""

    stage = Stage.SIGN


class ABIEncodingFailure(CopyTradeError):
    """Call data could not be encoded for the target function."""

    stage = Stage.SIGN


class SigningFailure(CopyTradeError):
    """Transaction could not be signed."""

    stage = Stage.SIGN


# ======================
# Broadcast / confirmation
# ======================


class BroadcastFailure(CopyTradeError):
    """Signed transaction could not be handed to the node.

    ``outcome_unknown`` is True when the node may have received the
    transaction (timeout, dropped connection). The nonce is burned in that
    case and ``pending`` holds the signed payload for ``rebroadcast``.
    """

    stage = Stage.BROADCAST

    def __init__(self, message: str, outcome_unknown: bool = False, pending=None, **context):
        super().__init__(message, outcome_unknown=outcome_unknown, **context)
        self.outcome_unknown = outcome_unknown
        self.pending = pending

    @property
    def retryable(self) -> bool:
        return not self.outcome_unknown


class ConfirmationError(CopyTradeError):
    """Post-broadcast failure."""

    stage = Stage.CONFIRM


class ApprovalFailed(ConfirmationError):
    """Approval receipt reports failure."""


class SwapReverted(ConfirmationError):
    """Swap receipt reports failure."""


class ConfirmationTimeout(ConfirmationError):
    """No receipt yet. Confirmation is an idempotent query and can be retried."""

    retryable = True


# ======================
# Ledger
# ======================


class LedgerError(CopyTradeError):
    """Ledger invariant violation."""

    stage = Stage.LEDGER


class DuplicateHash(LedgerError):
    """Transaction hash already recorded."""


class DuplicateContract(LedgerError):
    """Contract already has a buy on record."""


class NoOpenPosition(LedgerError):
    """Sell recorded for a contract without an open buy."""


class RecordNotFound(LedgerError):
    """No ledger row matches the lookup."""
