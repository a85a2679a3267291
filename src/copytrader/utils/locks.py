"""Concurrency control utilities.

Provides per-key locking so that work on one key (a signing account on a
chain, a ledger contract address) is serialized while unrelated keys
proceed in parallel.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, Optional

logger = logging.getLogger(__name__)


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class KeyedLock:
    """Registry of asyncio locks, one per key.

    Example:
        locks = KeyedLock(name="nonce")
        async with locks.hold(("base", "0xabc...")):
            # Exclusive section for this key
            ...
    """

    def __init__(self, name: str = "keyed", timeout: Optional[float] = 30.0):
        """Initialize the registry.

        Args:
            name: Label used in log messages
            timeout: Default maximum wait for a lock (None = wait forever)
        """
        self.name = name
        self.timeout = timeout
        self._locks: dict[Hashable, asyncio.Lock] = {}

    def get(self, key: Hashable) -> asyncio.Lock:
        """Get or create the lock for a key."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def locked(self, key: Hashable) -> bool:
        """Check whether the lock for a key is currently held."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(
        self,
        key: Hashable,
        timeout: Optional[float] = None,
        operation: str = "operation",
    ) -> AsyncIterator[None]:
        """Hold the lock for a key.

        Args:
            key: Lock key
            timeout: Override of the registry default timeout
            operation: Description for logging

        Raises:
            LockTimeoutError: If the lock is not acquired in time
        """
        lock = self.get(key)
        wait = self.timeout if timeout is None else timeout

        try:
            if wait:
                await asyncio.wait_for(lock.acquire(), timeout=wait)
            else:
                await lock.acquire()
        except asyncio.TimeoutError:
            logger.warning(f"{self.name} lock timeout for {key} after {wait}s: {operation}")
            raise LockTimeoutError(f"Could not acquire {self.name} lock for {key} within {wait}s")

        logger.debug(f"{self.name} lock acquired for {key}: {operation}")
        try:
            yield
        finally:
            lock.release()
            logger.debug(f"{self.name} lock released for {key}: {operation}")

    def clear(self) -> None:
        """Forget all locks (useful for testing)."""
        self._locks.clear()
