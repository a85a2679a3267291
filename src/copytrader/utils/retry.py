"""Bounded retries for read-only RPC calls.

Only transport-level failures (timeouts, dropped connections, 5xx) are
retried. A JSON-RPC error object from the node is a definite answer and is
raised immediately. Never use this for ``eth_sendRawTransaction``.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from copytrader.rpc.base import RPCUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_read(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    backoff: float = 1.0,
    description: str = "rpc read",
) -> T:
    """Run a read-only coroutine with linear backoff on transport errors.

    Args:
        operation: Zero-argument coroutine factory
        attempts: Total attempts (at least one)
        backoff: Seconds multiplied by the attempt number between tries
        description: What is being read, for logging

    Raises:
        RPCUnavailable: The last transport error once attempts are exhausted
    """
    attempts = max(1, attempts)
    last_error: RPCUnavailable

    for attempt in range(attempts):
        try:
            return await operation()
        except RPCUnavailable as e:
            last_error = e
            if attempt < attempts - 1:
                logger.warning(f"RPC error during {description} (attempt {attempt + 1}): {e}")
                await asyncio.sleep(backoff * (attempt + 1))

    logger.error(f"{description} failed after {attempts} attempts: {last_error}")
    raise last_error
