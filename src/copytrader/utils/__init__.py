"""Utility modules for the copy trader."""

from copytrader.utils.locks import KeyedLock, LockTimeoutError
from copytrader.utils.retry import retry_read

__all__ = ["KeyedLock", "LockTimeoutError", "retry_read"]
