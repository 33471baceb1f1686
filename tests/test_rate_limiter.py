"""Tests for the per-caller cooldown rate limiter."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from usagegate.app.core.store import InMemoryStateStore, StateStore
from usagegate.app.exceptions import StoreUnavailableError
from usagegate.app.services.models import RateState
from usagegate.app.services.rate_limiter import CooldownRateLimiter

T0 = 1_700_000_000


@pytest.fixture
def limiter(store):
    return CooldownRateLimiter(store, window_seconds=60, max_calls_per_window=1, key_prefix="t")


@pytest.fixture
def leaky_limiter(store):
    return CooldownRateLimiter(store, window_seconds=60, max_calls_per_window=2, key_prefix="t")


class TestRateState:

    def test_round_trip_through_mapping(self):
        state = RateState(block_until_offset=60, last_call_epoch=T0)
        assert state.to_mapping() == {
            "block_until_offset": "60",
            "last_call_epoch": str(T0),
        }
        assert RateState.from_mapping(state.to_mapping()) == state

    def test_empty_mapping_means_no_state(self):
        assert RateState.from_mapping({}) is None
        assert RateState.from_mapping({"block_until_offset": "60"}) is None

    def test_remaining_block(self):
        state = RateState(block_until_offset=60, last_call_epoch=T0)
        assert state.remaining_block(T0) == 61
        assert state.remaining_block(T0 + 10) == 51
        assert state.remaining_block(T0 + 60) == 1
        assert state.remaining_block(T0 + 61) == 0


class TestLimiterConfiguration:

    def test_rejects_non_positive_window(self, store):
        with pytest.raises(ValueError):
            CooldownRateLimiter(store, window_seconds=0)

    def test_rejects_unsupported_policy(self, store):
        with pytest.raises(ValueError):
            CooldownRateLimiter(store, max_calls_per_window=3)

    @pytest.mark.asyncio
    async def test_rejects_empty_caller(self, limiter):
        with pytest.raises(ValueError):
            await limiter.try_acquire("", now=T0)


class TestStrictCooldown:
    """One allowed call per window."""

    @pytest.mark.asyncio
    async def test_first_call_is_allowed(self, limiter):
        decision = await limiter.try_acquire("alice", now=T0)
        assert decision.allowed is True
        assert decision.retry_after == 0
        assert decision.state == RateState(block_until_offset=60, last_call_epoch=T0)

    @pytest.mark.asyncio
    async def test_call_inside_window_is_blocked(self, limiter):
        await limiter.try_acquire("alice", now=T0)
        decision = await limiter.try_acquire("alice", now=T0 + 10)
        assert decision.allowed is False
        assert decision.retry_after == 51

    @pytest.mark.asyncio
    async def test_call_after_window_is_allowed(self, limiter):
        await limiter.try_acquire("alice", now=T0)
        assert (await limiter.try_acquire("alice", now=T0 + 10)).allowed is False
        assert (await limiter.try_acquire("alice", now=T0 + 65)).allowed is True

    @pytest.mark.asyncio
    async def test_window_boundary(self, limiter):
        await limiter.try_acquire("alice", now=T0)
        at_boundary = await limiter.try_acquire("alice", now=T0 + 60)
        assert at_boundary.allowed is False
        assert at_boundary.retry_after == 1
        assert (await limiter.try_acquire("alice", now=T0 + 61)).allowed is True

    @pytest.mark.asyncio
    async def test_never_two_allowed_calls_within_a_window(self, limiter):
        allowed_at = []
        for offset in range(0, 300, 7):
            decision = await limiter.try_acquire("alice", now=T0 + offset)
            if decision.allowed:
                allowed_at.append(offset)
        gaps = [b - a for a, b in zip(allowed_at, allowed_at[1:])]
        assert allowed_at[0] == 0
        assert all(gap > 60 for gap in gaps)

    @pytest.mark.asyncio
    async def test_blocked_call_does_not_touch_state(self, limiter, store):
        await limiter.try_acquire("alice", now=T0)
        before = await store.hash_get_all("t:ratelimit:alice")
        await limiter.try_acquire("alice", now=T0 + 30)
        assert await store.hash_get_all("t:ratelimit:alice") == before

    @pytest.mark.asyncio
    async def test_callers_are_independent(self, limiter):
        assert (await limiter.try_acquire("alice", now=T0)).allowed is True
        assert (await limiter.try_acquire("bob", now=T0 + 1)).allowed is True
        assert (await limiter.try_acquire("alice", now=T0 + 2)).allowed is False

    @pytest.mark.asyncio
    async def test_uses_clock_when_now_is_omitted(self, store, clock):
        limiter = CooldownRateLimiter(
            store, window_seconds=60, max_calls_per_window=1, key_prefix="t", clock=clock
        )
        assert (await limiter.try_acquire("alice")).allowed is True
        clock.advance(30)
        assert (await limiter.try_acquire("alice")).retry_after == 31
        clock.advance(31)
        assert (await limiter.try_acquire("alice")).allowed is True


class TestRenewingWindow:
    """Two calls per window, block carried over from the previous call."""

    @pytest.mark.asyncio
    async def test_second_call_allowed_third_blocked(self, leaky_limiter):
        first = await leaky_limiter.try_acquire("alice", now=T0)
        assert first.allowed is True
        assert first.state.block_until_offset == 0

        second = await leaky_limiter.try_acquire("alice", now=T0 + 10)
        assert second.allowed is True
        assert second.state.block_until_offset == 50

        third = await leaky_limiter.try_acquire("alice", now=T0 + 20)
        assert third.allowed is False
        assert third.retry_after == 41

    @pytest.mark.asyncio
    async def test_block_is_clamped_at_zero(self, leaky_limiter):
        await leaky_limiter.try_acquire("alice", now=T0)
        decision = await leaky_limiter.try_acquire("alice", now=T0 + 500)
        assert decision.allowed is True
        assert decision.state.block_until_offset == 0

    @pytest.mark.asyncio
    async def test_at_most_two_calls_in_any_window(self, leaky_limiter):
        allowed_at = []
        for offset in range(0, 600, 3):
            decision = await leaky_limiter.try_acquire("alice", now=T0 + offset)
            if decision.allowed:
                allowed_at.append(offset)
        for i, start in enumerate(allowed_at):
            in_window = [t for t in allowed_at[i:] if t - start < 60]
            assert len(in_window) <= 2


class RacingStore(InMemoryStateStore):
    """Store where another process records a call just before each write."""

    def __init__(self, rival_offset: int = -1, rival_block: int | None = None):
        super().__init__()
        self.rival_offset = rival_offset
        self.rival_block = rival_block

    async def hash_compare_and_set(self, key, guard_field, expected, mapping):
        rival = dict(
            mapping,
            last_call_epoch=str(int(mapping["last_call_epoch"]) + self.rival_offset),
        )
        if self.rival_block is not None:
            rival["block_until_offset"] = str(self.rival_block)
        await super().hash_compare_and_set(key, guard_field, expected, rival)
        return await super().hash_compare_and_set(key, guard_field, expected, mapping)


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_lost_race_is_reported_blocked(self):
        store = RacingStore()
        limiter = CooldownRateLimiter(store, window_seconds=60, max_calls_per_window=1, key_prefix="t")

        decision = await limiter.try_acquire("alice", now=T0)

        assert decision.allowed is False
        assert decision.retry_after == 60
        assert decision.state == RateState(block_until_offset=60, last_call_epoch=T0 - 1)
        stored = await store.hash_get_all("t:ratelimit:alice")
        assert stored["last_call_epoch"] == str(T0 - 1)

    @pytest.mark.asyncio
    async def test_lost_race_retry_after_follows_winning_record(self):
        """Renewing mode plans a zero block; the wait comes from the winner."""
        store = RacingStore(rival_offset=-5, rival_block=30)
        limiter = CooldownRateLimiter(store, window_seconds=60, max_calls_per_window=2, key_prefix="t")

        decision = await limiter.try_acquire("alice", now=T0)

        assert decision.allowed is False
        assert decision.retry_after == 26

    @pytest.mark.asyncio
    async def test_lost_race_waits_at_least_one_second(self):
        store = RacingStore(rival_offset=0, rival_block=0)
        limiter = CooldownRateLimiter(store, window_seconds=60, max_calls_per_window=2, key_prefix="t")

        decision = await limiter.try_acquire("alice", now=T0)

        assert decision.allowed is False
        assert decision.retry_after == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_allow_exactly_one(self, limiter):
        decisions = await asyncio.gather(
            *(limiter.try_acquire("alice", now=T0) for _ in range(20))
        )
        assert sum(d.allowed for d in decisions) == 1

    @pytest.mark.asyncio
    async def test_concurrent_distinct_callers_all_allowed(self, limiter):
        decisions = await asyncio.gather(
            *(limiter.try_acquire(f"caller-{i}", now=T0) for i in range(20))
        )
        assert all(d.allowed for d in decisions)


class TestStoreFailures:

    @pytest.mark.asyncio
    async def test_read_failure_propagates_without_write(self):
        store = AsyncMock(spec=StateStore)
        store.hash_get_all.side_effect = StoreUnavailableError()
        limiter = CooldownRateLimiter(store, window_seconds=60, max_calls_per_window=1)

        with pytest.raises(StoreUnavailableError):
            await limiter.try_acquire("alice", now=T0)
        store.hash_compare_and_set.assert_not_called()

    @pytest.mark.asyncio
    async def test_write_failure_propagates(self):
        store = AsyncMock(spec=StateStore)
        store.hash_get_all.return_value = {}
        store.hash_compare_and_set.side_effect = StoreUnavailableError()
        limiter = CooldownRateLimiter(store, window_seconds=60, max_calls_per_window=1)

        with pytest.raises(StoreUnavailableError):
            await limiter.try_acquire("alice", now=T0)
