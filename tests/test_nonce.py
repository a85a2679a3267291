"""Tests for nonce sequencing."""

import asyncio

import pytest

from copytrader.errors import NonceConflict, NonceUnavailable, UnknownChain
from copytrader.rpc import RPCUnavailable
from copytrader.swap import NonceSequencer

from conftest import TEST_ADDRESS


class TestReserve:
    """Tests for nonce reservation."""

    @pytest.mark.asyncio
    async def test_seeds_from_pending_count(self, nonces, fake_client):
        fake_client.pending_nonce = 7

        assert await nonces.reserve("base", TEST_ADDRESS) == 7
        assert await nonces.reserve("base", TEST_ADDRESS) == 8
        assert fake_client.nonce_reads == 1

    @pytest.mark.asyncio
    async def test_concurrent_reservations_are_distinct_and_gap_free(self, nonces, fake_client):
        """N concurrent reservations yield N consecutive nonces."""
        fake_client.pending_nonce = 3

        issued = await asyncio.gather(*(nonces.reserve("base", TEST_ADDRESS) for _ in range(20)))

        assert sorted(issued) == list(range(3, 23))
        assert fake_client.nonce_reads == 1

    @pytest.mark.asyncio
    async def test_chain_name_is_case_insensitive(self, nonces):
        first = await nonces.reserve("BASE", TEST_ADDRESS)
        second = await nonces.reserve("base", TEST_ADDRESS.lower())
        assert second == first + 1

    @pytest.mark.asyncio
    async def test_unknown_chain(self, nonces):
        with pytest.raises(UnknownChain):
            await nonces.reserve("solana", TEST_ADDRESS)

    @pytest.mark.asyncio
    async def test_seed_failure(self, registry, fake_client):
        async def down(address, block="pending"):
            raise RPCUnavailable("connection refused")

        fake_client.get_transaction_count = down
        sequencer = NonceSequencer(registry, read_retries=2, retry_backoff=0)

        with pytest.raises(NonceUnavailable) as exc_info:
            await sequencer.reserve("base", TEST_ADDRESS)
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_lock_timeout(self, registry, fake_client):
        gate = asyncio.Event()

        async def stuck(address, block="pending"):
            await gate.wait()
            return 0

        fake_client.get_transaction_count = stuck
        sequencer = NonceSequencer(registry, lock_timeout=0.05)

        first = asyncio.create_task(sequencer.reserve("base", TEST_ADDRESS))
        await asyncio.sleep(0.01)
        with pytest.raises(NonceUnavailable):
            await sequencer.reserve("base", TEST_ADDRESS)

        gate.set()
        assert await first == 0


class TestLifecycle:
    """Tests for release, commit, burn and invalidate."""

    @pytest.mark.asyncio
    async def test_released_nonce_is_reissued_first(self, nonces):
        n0 = await nonces.reserve("base", TEST_ADDRESS)
        n1 = await nonces.reserve("base", TEST_ADDRESS)
        nonces.commit("base", TEST_ADDRESS, n1)

        nonces.release("base", TEST_ADDRESS, n0)

        assert await nonces.reserve("base", TEST_ADDRESS) == n0
        assert await nonces.reserve("base", TEST_ADDRESS) == n1 + 1

    @pytest.mark.asyncio
    async def test_lowest_released_nonce_comes_first(self, nonces):
        issued = [await nonces.reserve("base", TEST_ADDRESS) for _ in range(3)]
        nonces.release("base", TEST_ADDRESS, issued[2])
        nonces.release("base", TEST_ADDRESS, issued[0])

        assert await nonces.reserve("base", TEST_ADDRESS) == issued[0]
        assert await nonces.reserve("base", TEST_ADDRESS) == issued[2]

    @pytest.mark.asyncio
    async def test_burned_nonce_is_never_reissued(self, nonces):
        n0 = await nonces.reserve("base", TEST_ADDRESS)
        nonces.burn("base", TEST_ADDRESS, n0)

        following = [await nonces.reserve("base", TEST_ADDRESS) for _ in range(3)]

        assert n0 not in following
        assert nonces.snapshot("base", TEST_ADDRESS).burned == (n0,)

    @pytest.mark.asyncio
    async def test_commit_twice_is_a_conflict(self, nonces):
        n0 = await nonces.reserve("base", TEST_ADDRESS)
        nonces.commit("base", TEST_ADDRESS, n0)

        with pytest.raises(NonceConflict):
            nonces.commit("base", TEST_ADDRESS, n0)
        with pytest.raises(NonceConflict):
            nonces.release("base", TEST_ADDRESS, n0)

    def test_release_unreserved_is_a_conflict(self, nonces):
        with pytest.raises(NonceConflict):
            nonces.release("base", TEST_ADDRESS, 5)

    @pytest.mark.asyncio
    async def test_invalidate_reseeds(self, nonces, fake_client):
        n0 = await nonces.reserve("base", TEST_ADDRESS)
        nonces.commit("base", TEST_ADDRESS, n0)

        # Another wallet client used nonces behind our back
        fake_client.pending_nonce = 10
        nonces.invalidate("base", TEST_ADDRESS)

        assert await nonces.reserve("base", TEST_ADDRESS) == 10
        assert fake_client.nonce_reads == 2

    @pytest.mark.asyncio
    async def test_snapshot(self, nonces, fake_client):
        fake_client.pending_nonce = 4
        empty = nonces.snapshot("base", TEST_ADDRESS)
        assert not empty.seeded
        assert empty.next_nonce is None

        n0 = await nonces.reserve("base", TEST_ADDRESS)
        snapshot = nonces.snapshot("base", TEST_ADDRESS)

        assert snapshot.seeded
        assert snapshot.next_nonce == 5
        assert snapshot.reserved == (n0,)
        assert snapshot.chain == "base"
