"""Per-account nonce sequencing.

Nonces for one (chain, account) are handed out one at a time under an
asyncio lock so concurrent trades never sign with the same nonce. The
counter is seeded from ``eth_getTransactionCount(account, "pending")`` on
first use and then advanced locally.

Every reserved nonce ends in exactly one of:

- ``commit``: the transaction reached the node
- ``release``: the transaction was never broadcast, the nonce is reissued
  before any higher one
- ``burn``: the broadcast outcome is unknown, the nonce is never reused
"""

import heapq
import logging
from dataclasses import dataclass, field
from typing import Optional

from copytrader.chains import ChainRegistry
from copytrader.errors import NonceConflict, NonceUnavailable
from copytrader.rpc import RPCError, RPCUnavailable
from copytrader.utils.locks import KeyedLock, LockTimeoutError
from copytrader.utils.retry import retry_read

logger = logging.getLogger(__name__)


@dataclass
class _NonceState:
    next_nonce: Optional[int] = None
    reserved: set[int] = field(default_factory=set)
    released: list[int] = field(default_factory=list)  # min-heap
    burned: set[int] = field(default_factory=set)

    @property
    def seeded(self) -> bool:
        return self.next_nonce is not None


@dataclass(frozen=True)
class NonceSnapshot:
    """Read-only view of a nonce counter."""

    chain: str
    account: str
    seeded: bool
    next_nonce: Optional[int]
    reserved: tuple[int, ...]
    released: tuple[int, ...]
    burned: tuple[int, ...]


class NonceSequencer:
    """Issues strictly increasing nonces per (chain, account)."""

    def __init__(
        self,
        registry: ChainRegistry,
        lock_timeout: float = 30.0,
        read_retries: int = 3,
        retry_backoff: float = 1.0,
    ):
        self.registry = registry
        self.read_retries = read_retries
        self.retry_backoff = retry_backoff
        self._locks = KeyedLock(name="nonce", timeout=lock_timeout)
        self._states: dict[tuple[str, str], _NonceState] = {}

    def _key(self, chain: str, account: str) -> tuple[str, str]:
        return (self.registry.resolve(chain).name, account.lower())

    def _state(self, key: tuple[str, str]) -> _NonceState:
        state = self._states.get(key)
        if state is None:
            state = _NonceState()
            self._states[key] = state
        return state

    async def reserve(self, chain: str, account: str) -> int:
        """Reserve the next nonce for an account.

        Raises:
            NonceUnavailable: If the lock times out or the counter cannot be seeded
        """
        key = self._key(chain, account)
        try:
            async with self._locks.hold(key, operation="reserve"):
                state = self._state(key)
                if not state.seeded:
                    state.next_nonce = await self._seed(key[0], account)

                if state.released:
                    nonce = heapq.heappop(state.released)
                else:
                    nonce = state.next_nonce
                    state.next_nonce += 1
                state.reserved.add(nonce)
        except LockTimeoutError as e:
            raise NonceUnavailable(str(e), chain=key[0], account=account) from e

        logger.debug(f"Reserved nonce {nonce} for {account} on {key[0]}")
        return nonce

    async def _seed(self, chain: str, account: str) -> int:
        client = self.registry.client(chain)
        try:
            nonce = await retry_read(
                lambda: client.get_transaction_count(account, "pending"),
                attempts=self.read_retries,
                backoff=self.retry_backoff,
                description="eth_getTransactionCount",
            )
        except (RPCUnavailable, RPCError) as e:
            raise NonceUnavailable(
                f"Failed to get nonce after {self.read_retries} attempts: {e}",
                chain=chain,
                account=account,
            ) from e
        logger.info(f"Seeded nonce counter for {account} on {chain} at {nonce}")
        return nonce

    def _take(self, chain: str, account: str, nonce: int, action: str) -> _NonceState:
        key = self._key(chain, account)
        state = self._states.get(key)
        if state is None or nonce not in state.reserved:
            raise NonceConflict(
                f"Cannot {action} nonce {nonce}: not reserved",
                chain=key[0],
                account=account,
                nonce=nonce,
            )
        state.reserved.discard(nonce)
        return state

    def release(self, chain: str, account: str, nonce: int) -> None:
        """Return a never-broadcast nonce for reuse.

        Raises:
            NonceConflict: If the nonce is not currently reserved
        """
        state = self._take(chain, account, nonce, "release")
        # A reseeded counter already accounts for this nonce
        if state.seeded and nonce < state.next_nonce:
            heapq.heappush(state.released, nonce)
        logger.debug(f"Released nonce {nonce} for {account} on {chain}")

    def commit(self, chain: str, account: str, nonce: int) -> None:
        """Mark a nonce as broadcast.

        Raises:
            NonceConflict: If the nonce is not currently reserved
        """
        self._take(chain, account, nonce, "commit")
        logger.debug(f"Committed nonce {nonce} for {account} on {chain}")

    def burn(self, chain: str, account: str, nonce: int) -> None:
        """Consume a nonce whose broadcast outcome is unknown.

        Raises:
            NonceConflict: If the nonce is not currently reserved
        """
        state = self._take(chain, account, nonce, "burn")
        state.burned.add(nonce)
        logger.warning(f"Burned nonce {nonce} for {account} on {chain}")

    def invalidate(self, chain: str, account: str) -> None:
        """Drop the local counter so the next reservation reseeds from the chain.

        Nonces still reserved stay reserved and can be committed, burned or
        released as usual.
        """
        key = self._key(chain, account)
        state = self._states.get(key)
        if state is None:
            return
        state.next_nonce = None
        state.released.clear()
        logger.warning(f"Invalidated nonce counter for {account} on {key[0]}")

    def snapshot(self, chain: str, account: str) -> NonceSnapshot:
        key = self._key(chain, account)
        state = self._states.get(key) or _NonceState()
        return NonceSnapshot(
            chain=key[0],
            account=account,
            seeded=state.seeded,
            next_nonce=state.next_nonce,
            reserved=tuple(sorted(state.reserved)),
            released=tuple(sorted(state.released)),
            burned=tuple(sorted(state.burned)),
        )
