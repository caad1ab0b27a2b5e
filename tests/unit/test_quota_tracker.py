"""
Unit tests for ribbon.billing.quota_tracker.QuotaTracker.

Tests consumption counting, tier limits, lazy window reset, premium-only
refinement, persistence under both failure policies, and the atomicity of
check-and-record under concurrent tasks.
"""

import asyncio
import json

import pytest

from ribbon.billing.models import DenialReason, GenerationLimitResult
from ribbon.billing.quota_tracker import QuotaTracker
from ribbon.config import QuotaSettings
from ribbon.errors import StorageUnavailableError
from ribbon.storage.kv_store import InMemoryKeyValueStore

HOUR = 60 * 60
KEY = "@ribbon/generation_limits"


def _seed(user_id: str, generations: int, refinements: int, window_start: float) -> dict:
    return {
        KEY: json.dumps({
            user_id: {
                "user_id": user_id,
                "generations": generations,
                "refinements": refinements,
                "window_start": window_start,
            }
        })
    }


# ============================================================================
# Generation quota
# ============================================================================


class TestGenerationQuota:
    """Tests for generation checks and consumption."""

    @pytest.mark.asyncio
    async def test_free_user_consumes_five_then_denied(self, quota_tracker):
        """Free tier: remaining reads 4,3,2,1,0 then the 6th call is denied."""
        remaining = []
        for _ in range(5):
            result = await quota_tracker.check_and_record_generation("u1", False)
            assert result.allowed is True
            remaining.append(result.remaining)

        assert remaining == [4, 3, 2, 1, 0]

        sixth = await quota_tracker.check_and_record_generation("u1", False)
        assert sixth.allowed is False
        assert sixth.remaining == 0
        assert sixth.reason == DenialReason.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_allowed_calls_equal_used_count(self, quota_tracker):
        """After N allowed calls generations_used equals N; nothing beyond the limit is allowed."""
        allowed = 0
        for _ in range(60):
            result = await quota_tracker.check_and_record_generation("u1", True)
            allowed += int(result.allowed)

        stats = await quota_tracker.get_generation_stats("u1", True)
        assert allowed == 50
        assert stats.generations_used == 50
        assert stats.generations_remaining == 0

    @pytest.mark.asyncio
    async def test_tier_changes_limit_for_same_counter(self, quota_tracker):
        """The same five recorded generations exhaust free but not premium."""
        for _ in range(5):
            await quota_tracker.record_generation("u1")

        free = await quota_tracker.check_generation_allowed("u1", False)
        premium = await quota_tracker.check_generation_allowed("u1", True)

        assert free.allowed is False
        assert free.remaining == 0
        assert premium.allowed is True
        assert premium.remaining == 45

    @pytest.mark.asyncio
    async def test_downgrade_does_not_shrink_usage(self, quota_tracker):
        """Usage recorded as premium still counts after a downgrade."""
        for _ in range(3):
            await quota_tracker.check_and_record_generation("u1", True)

        result = await quota_tracker.check_generation_allowed("u1", False)
        assert result.allowed is True
        assert result.remaining == 2

        stats = await quota_tracker.get_generation_stats("u1", False)
        assert stats.generations_used == 3

    @pytest.mark.asyncio
    async def test_check_is_idempotent(self, quota_tracker):
        """Repeated checks without recording never change usage."""
        await quota_tracker.check_and_record_generation("u1", False)

        for _ in range(10):
            result = await quota_tracker.check_generation_allowed("u1", False)
            assert result.remaining == 4

        stats = await quota_tracker.get_generation_stats("u1", False)
        assert stats.generations_used == 1

    @pytest.mark.asyncio
    async def test_record_generation_ignores_limit(self, quota_tracker):
        """record_generation counts even past the limit; callers must check first."""
        for _ in range(7):
            await quota_tracker.record_generation("u1")

        stats = await quota_tracker.get_generation_stats("u1", False)
        assert stats.generations_used == 7
        assert stats.generations_remaining == 0

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, quota_tracker):
        """Each user has their own record."""
        for _ in range(5):
            await quota_tracker.check_and_record_generation("u1", False)

        other = await quota_tracker.check_generation_allowed("u2", False)
        assert other.allowed is True
        assert other.remaining == 5

    @pytest.mark.asyncio
    async def test_window_end_and_remaining_hours(self, quota_tracker, clock):
        """window_ends_at is window_start + 24h; remaining_hours rounds up."""
        start = clock.now
        first = await quota_tracker.check_generation_allowed("u1", False)
        assert first.window_ends_at == start + 24 * HOUR
        assert first.remaining_hours == 24

        clock.advance(90 * 60)
        later = await quota_tracker.check_generation_allowed("u1", False)
        assert later.window_ends_at == start + 24 * HOUR
        assert later.remaining_hours == 23

    @pytest.mark.asyncio
    async def test_result_model(self, quota_tracker):
        """Results are pydantic models with the documented fields."""
        result = await quota_tracker.check_generation_allowed("u1", False)
        assert isinstance(result, GenerationLimitResult)
        dumped = result.model_dump()
        for field in ("allowed", "remaining", "window_ends_at", "remaining_hours", "reason"):
            assert field in dumped
        assert dumped["reason"] is None


# ============================================================================
# Window reset
# ============================================================================


class TestWindowReset:
    """Tests for the lazy 24 hour window reset."""

    @pytest.mark.asyncio
    async def test_exhausted_window_resets_after_elapsing(self, quota_tracker, clock):
        """An exhausted free user is allowed again 25 hours later."""
        for _ in range(5):
            await quota_tracker.check_and_record_generation("u1", False)
        assert (await quota_tracker.check_generation_allowed("u1", False)).allowed is False

        clock.advance(25 * HOUR)
        result = await quota_tracker.check_generation_allowed("u1", False)

        assert result.allowed is True
        assert result.remaining == 5
        assert result.window_ends_at == clock.now + 24 * HOUR

    @pytest.mark.asyncio
    async def test_reset_clears_both_counters(self, quota_tracker, clock):
        """Both counters share one window and reset together."""
        for _ in range(3):
            await quota_tracker.check_and_record_generation("u1", True)
            await quota_tracker.check_and_record_refinement("u1", True)

        clock.advance(24 * HOUR)
        stats = await quota_tracker.get_generation_stats("u1", True)

        assert stats.generations_used == 0
        assert stats.refinements_used == 0
        assert stats.window_ends_at == clock.now + 24 * HOUR

    @pytest.mark.asyncio
    async def test_reset_boundary_is_inclusive(self, quota_tracker, clock):
        """The window resets at exactly 24 hours, not one second before."""
        await quota_tracker.check_and_record_generation("u1", False)

        clock.advance(24 * HOUR - 1)
        assert (await quota_tracker.check_generation_allowed("u1", False)).remaining == 4

        clock.advance(1)
        assert (await quota_tracker.check_generation_allowed("u1", False)).remaining == 5

    @pytest.mark.asyncio
    async def test_refinement_check_also_resets_window(self, quota_tracker, clock):
        """Any access resets an elapsed window, including refinement checks."""
        for _ in range(5):
            await quota_tracker.check_and_record_generation("u1", False)

        clock.advance(30 * HOUR)
        await quota_tracker.check_refinement_allowed("u1", True)

        stats = await quota_tracker.get_generation_stats("u1", False)
        assert stats.generations_used == 0

    @pytest.mark.asyncio
    async def test_stale_stored_record_starts_fresh(self, settings, clock):
        """A stored record 25h old and at the limit yields a full allowance."""
        store = InMemoryKeyValueStore(_seed("u1", 5, 0, clock.now - 25 * HOUR))
        tracker = QuotaTracker(store, settings, clock=clock)

        result = await tracker.check_generation_allowed("u1", False)

        assert result.allowed is True
        assert result.remaining == 5

    @pytest.mark.asyncio
    async def test_sweep_removes_expired_records(self, quota_tracker, clock):
        """sweep_expired drops records whose window has passed."""
        await quota_tracker.check_and_record_generation("old", False)
        clock.advance(20 * HOUR)
        await quota_tracker.check_and_record_generation("recent", False)

        clock.advance(5 * HOUR)
        removed = await quota_tracker.sweep_expired()

        assert removed == 1
        assert set(quota_tracker._table.records) == {"recent"}

    @pytest.mark.asyncio
    async def test_record_after_window_counts_in_new_window(self, quota_tracker, clock):
        """Unchecked recording past the window end lands in a fresh window."""
        for _ in range(5):
            await quota_tracker.check_and_record_generation("u1", False)

        clock.advance(24 * HOUR + 1)
        await quota_tracker.record_generation("u1")
        await quota_tracker.record_refinement("u1")

        stats = await quota_tracker.get_generation_stats("u1", True)
        assert stats.generations_used == 1
        assert stats.refinements_used == 1
        assert stats.window_ends_at == clock.now + 24 * HOUR


# ============================================================================
# Refinement quota
# ============================================================================


class TestRefinementQuota:
    """Tests for the premium-only refinement quota."""

    @pytest.mark.asyncio
    async def test_free_user_never_entitled(self, quota_tracker, store):
        """Non-premium refinement is denied even with zero usage."""
        result = await quota_tracker.check_refinement_allowed("u1", False)

        assert result.allowed is False
        assert result.remaining == 0
        assert result.window_ends_at == 0.0
        assert result.remaining_hours == 0
        assert result.reason == DenialReason.NOT_ENTITLED
        assert store.snapshot() == {}

    @pytest.mark.asyncio
    async def test_free_user_check_and_record_consumes_nothing(self, quota_tracker):
        """A not-entitled refinement never increments the counter."""
        for _ in range(3):
            result = await quota_tracker.check_and_record_refinement("u1", False)
            assert result.allowed is False

        stats = await quota_tracker.get_generation_stats("u1", True)
        assert stats.refinements_used == 0

    @pytest.mark.asyncio
    async def test_premium_last_refinement(self, quota_tracker):
        """With 24 of 25 used, one more is allowed with remaining=0, then denied."""
        for _ in range(24):
            await quota_tracker.record_refinement("u1")

        last = await quota_tracker.check_and_record_refinement("u1", True)
        assert last.allowed is True
        assert last.remaining == 0

        stats = await quota_tracker.get_generation_stats("u1", True)
        assert stats.refinements_used == 25

        denied = await quota_tracker.check_and_record_refinement("u1", True)
        assert denied.allowed is False
        assert denied.reason == DenialReason.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_refinements_independent_of_generations(self, quota_tracker):
        """Exhausting generations leaves the refinement counter untouched."""
        for _ in range(50):
            await quota_tracker.check_and_record_generation("u1", True)

        result = await quota_tracker.check_refinement_allowed("u1", True)
        assert result.allowed is True
        assert result.remaining == 25

    @pytest.mark.asyncio
    async def test_stats_limits_by_tier(self, quota_tracker):
        """Free users see a refinement limit of zero."""
        free = await quota_tracker.get_generation_stats("u1", False)
        premium = await quota_tracker.get_generation_stats("u1", True)

        assert free.generations_limit == 5
        assert free.refinements_limit == 0
        assert free.refinements_remaining == 0
        assert premium.generations_limit == 50
        assert premium.refinements_limit == 25


# ============================================================================
# Persistence
# ============================================================================


class TestPersistence:
    """Tests for durability and the persistence failure policies."""

    @pytest.mark.asyncio
    async def test_usage_survives_restart(self, store, settings, clock):
        """A new tracker over the same store sees prior usage."""
        first = QuotaTracker(store, settings, clock=clock)
        for _ in range(3):
            await first.check_and_record_generation("u1", False)

        second = QuotaTracker(store, settings, clock=clock)
        result = await second.check_generation_allowed("u1", False)
        assert result.remaining == 2

    @pytest.mark.asyncio
    async def test_whole_table_under_one_key(self, quota_tracker, store):
        """The table is stored as one JSON value under the generation key."""
        await quota_tracker.check_and_record_generation("u1", False)
        await quota_tracker.check_and_record_generation("u2", True)

        snapshot = store.snapshot()
        assert list(snapshot) == [KEY]
        table = json.loads(snapshot[KEY])
        assert table["u1"]["generations"] == 1
        assert table["u2"]["generations"] == 1

    @pytest.mark.asyncio
    async def test_fail_open_write_failure_still_enforces(self, make_failing_store, settings, clock):
        """Failed writes are swallowed and the in-memory limit still holds."""
        store = make_failing_store(fail_set=True)
        tracker = QuotaTracker(store, settings, clock=clock)

        results = [await tracker.check_and_record_generation("u1", False) for _ in range(6)]

        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert store.set_calls == 5
        assert store.snapshot() == {}

    @pytest.mark.asyncio
    async def test_fail_open_read_failure_starts_empty(self, make_failing_store, settings, clock, caplog):
        """A failed load is logged and treated as an empty table."""
        store = make_failing_store(_seed("u1", 5, 0, clock.now), fail_get=True)
        tracker = QuotaTracker(store, settings, clock=clock)

        result = await tracker.check_generation_allowed("u1", False)

        assert result.allowed is True
        assert result.remaining == 5
        assert "continuing in memory" in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_data_starts_empty(self, settings, clock, caplog):
        """Unparseable stored data is discarded."""
        tracker = QuotaTracker(InMemoryKeyValueStore({KEY: "{not json"}), settings, clock=clock)

        result = await tracker.check_generation_allowed("u1", False)

        assert result.remaining == 5
        assert "Discarding malformed data" in caplog.text

    @pytest.mark.asyncio
    async def test_fail_closed_read_failure_raises_and_retries(
        self, make_failing_store, fail_closed_settings, clock
    ):
        """Fail-closed surfaces load errors and retries the load next time."""
        store = make_failing_store(_seed("u1", 4, 0, clock.now), fail_get=True)
        tracker = QuotaTracker(store, fail_closed_settings, clock=clock)

        with pytest.raises(StorageUnavailableError) as exc_info:
            await tracker.check_and_record_generation("u1", False)
        assert exc_info.value.operation == "get"

        store.fail_get = False
        result = await tracker.check_and_record_generation("u1", False)
        assert result.allowed is True
        assert result.remaining == 0
        assert store.get_calls == 2

    @pytest.mark.asyncio
    async def test_fail_closed_write_failure_raises_but_counts(
        self, make_failing_store, fail_closed_settings, clock
    ):
        """Fail-closed write errors propagate; the consumed slot stays consumed."""
        store = make_failing_store(fail_set=True)
        tracker = QuotaTracker(store, fail_closed_settings, clock=clock)

        with pytest.raises(StorageUnavailableError):
            await tracker.check_and_record_generation("u1", False)

        store.fail_set = False
        result = await tracker.check_generation_allowed("u1", False)
        assert result.remaining == 4

    @pytest.mark.asyncio
    async def test_clear_one_user_and_all(self, quota_tracker, store):
        """clear_generation_data removes one record or the whole table."""
        await quota_tracker.check_and_record_generation("u1", False)
        await quota_tracker.check_and_record_generation("u2", False)

        await quota_tracker.clear_generation_data("u1")
        assert set(json.loads(store.snapshot()[KEY])) == {"u2"}

        await quota_tracker.clear_generation_data()
        assert json.loads(store.snapshot()[KEY]) == {}


# ============================================================================
# Concurrency
# ============================================================================


class TestConcurrency:
    """Tests for check-and-record under interleaved tasks."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_never_overshoot(self, slow_store, clock):
        """Twenty concurrent requests from a free user yield exactly five grants."""
        tracker = QuotaTracker(slow_store, QuotaSettings(), clock=clock)

        results = await asyncio.gather(*[
            tracker.check_and_record_generation("u1", False) for _ in range(20)
        ])

        assert sum(r.allowed for r in results) == 5
        assert sorted(r.remaining for r in results if r.allowed) == [0, 1, 2, 3, 4]
        assert slow_store.get_calls == 1

        stats = await tracker.get_generation_stats("u1", False)
        assert stats.generations_used == 5

    @pytest.mark.asyncio
    async def test_last_write_carries_latest_state(self, slow_store, clock):
        """Interleaved writes leave the final count in the store."""
        tracker = QuotaTracker(slow_store, QuotaSettings(), clock=clock)

        await asyncio.gather(*[
            tracker.check_and_record_generation("u1", True) for _ in range(10)
        ])

        table = json.loads(slow_store.snapshot()[KEY])
        assert table["u1"]["generations"] == 10
