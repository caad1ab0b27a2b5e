"""
Quota Tracker - per-user daily generation and refinement quotas.

Each user has one GenerationRecord holding two counters that share a single
rolling window. The window is reset lazily: every access checks whether
`now >= window_start + window` and, if so, zeroes both counters and restarts
the window at `now`. Nothing runs on a timer.

check_and_record_* is the entry point callers must use before dispatching a
quota-consuming action. The table is loaded before the decision is taken, and
the comparison and the increment run without a suspension point between them,
so two tasks in the same event loop can never both take the last slot.

Enforcement is client-side and advisory: state lives in this process and its
local key/value store only.
"""
import logging
import math
import time
from typing import Callable, Dict, Optional

from ..config import HOUR_SECONDS, QuotaSettings
from ..observability.metrics import QuotaMetrics
from ..storage.kv_store import KeyValueStore
from ..storage.persisted_table import PersistedTable
from .models import (
    DenialReason,
    GenerationLimitResult,
    GenerationRecord,
    GenerationStats,
    QuotaKind,
)

logger = logging.getLogger(__name__)


class QuotaTracker:
    """Enforces per-user generation and refinement quotas by tier."""

    def __init__(
        self,
        store: KeyValueStore,
        settings: Optional[QuotaSettings] = None,
        clock: Callable[[], float] = time.time,
        metrics: Optional[QuotaMetrics] = None,
    ):
        self._settings = settings or QuotaSettings()
        self._clock = clock
        self._metrics = metrics
        self._table: PersistedTable[GenerationRecord] = PersistedTable(
            store,
            self._settings.generation_storage_key,
            GenerationRecord,
            failure_policy=self._settings.failure_policy,
            on_load=self._sweep,
            metrics=metrics,
        )

    @property
    def settings(self) -> QuotaSettings:
        return self._settings

    def generation_limit(self, is_premium: bool) -> int:
        if is_premium:
            return self._settings.premium_daily_limit
        return self._settings.free_daily_limit

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def check_generation_allowed(
        self, user_id: str, is_premium: bool
    ) -> GenerationLimitResult:
        """
        Check whether a user may generate now. Never consumes quota.

        The only side effect is the lazy window reset.
        """
        return await self._check(user_id, QuotaKind.GENERATION, is_premium, consume=False)

    async def check_and_record_generation(
        self, user_id: str, is_premium: bool
    ) -> GenerationLimitResult:
        """
        Check and, if allowed, consume one generation.

        Returns the decision with `remaining` counted after consumption.
        """
        return await self._check(user_id, QuotaKind.GENERATION, is_premium, consume=True)

    async def record_generation(self, user_id: str) -> None:
        """Consume one generation without checking the limit."""
        await self._record(user_id, QuotaKind.GENERATION)

    async def check_refinement_allowed(
        self, user_id: str, is_premium: bool
    ) -> GenerationLimitResult:
        """
        Check whether a user may refine now. Refinement is premium-only:
        non-premium users are always denied with reason NOT_ENTITLED.
        """
        return await self._check(user_id, QuotaKind.REFINEMENT, is_premium, consume=False)

    async def check_and_record_refinement(
        self, user_id: str, is_premium: bool
    ) -> GenerationLimitResult:
        return await self._check(user_id, QuotaKind.REFINEMENT, is_premium, consume=True)

    async def record_refinement(self, user_id: str) -> None:
        await self._record(user_id, QuotaKind.REFINEMENT)

    async def get_generation_stats(self, user_id: str, is_premium: bool) -> GenerationStats:
        """Current usage and limits for both counters."""
        await self._table.ensure_loaded()
        now = self._clock()
        record = self._get_record(user_id, now)
        if self._roll_window(record, now):
            await self._table.persist()

        generation_limit = self.generation_limit(is_premium)
        refinement_limit = self._settings.refinement_daily_limit if is_premium else 0
        window_ends_at = record.window_start + self._settings.generation_window_seconds

        return GenerationStats(
            generations_used=record.generations,
            generations_remaining=max(0, generation_limit - record.generations),
            generations_limit=generation_limit,
            refinements_used=record.refinements,
            refinements_remaining=max(0, refinement_limit - record.refinements),
            refinements_limit=refinement_limit,
            window_ends_at=window_ends_at,
            remaining_hours=self._hours_until(window_ends_at, now),
        )

    async def clear_generation_data(self, user_id: Optional[str] = None) -> None:
        """Forget one user's usage, or everyone's (tests, account recovery)."""
        await self._table.clear(user_id)
        logger.info(f"Cleared generation data for {user_id or 'all users'}")

    async def sweep_expired(self) -> int:
        """Drop records whose window has fully elapsed. Returns the count removed."""
        records = await self._table.ensure_loaded()
        removed = self._sweep(records)
        if removed:
            await self._table.persist()
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _check(
        self,
        user_id: str,
        kind: QuotaKind,
        is_premium: bool,
        consume: bool,
    ) -> GenerationLimitResult:
        if kind is QuotaKind.REFINEMENT and not is_premium:
            result = GenerationLimitResult(
                allowed=False,
                remaining=0,
                window_ends_at=0.0,
                remaining_hours=0,
                reason=DenialReason.NOT_ENTITLED,
            )
            self._observe(user_id, kind, result)
            return result

        await self._table.ensure_loaded()

        # No await from here until persist(): decide and consume atomically
        now = self._clock()
        record = self._get_record(user_id, now)
        dirty = self._roll_window(record, now)
        result = self._evaluate(record, kind, is_premium, now)

        if consume and result.allowed:
            self._increment(record, kind)
            result = result.model_copy(update={"remaining": max(0, result.remaining - 1)})
            dirty = True

        self._observe(user_id, kind, result)

        if dirty:
            await self._table.persist()
        return result

    async def _record(self, user_id: str, kind: QuotaKind) -> None:
        await self._table.ensure_loaded()
        now = self._clock()
        record = self._get_record(user_id, now)
        self._roll_window(record, now)
        self._increment(record, kind)
        await self._table.persist()

    def _get_record(self, user_id: str, now: float) -> GenerationRecord:
        records = self._table.records
        record = records.get(user_id)
        if record is None:
            record = GenerationRecord(user_id=user_id, window_start=now)
            records[user_id] = record
        return record

    def _roll_window(self, record: GenerationRecord, now: float) -> bool:
        if now - record.window_start < self._settings.generation_window_seconds:
            return False
        record.generations = 0
        record.refinements = 0
        record.window_start = now
        logger.debug(f"Quota window reset for {record.user_id}")
        return True

    def _evaluate(
        self,
        record: GenerationRecord,
        kind: QuotaKind,
        is_premium: bool,
        now: float,
    ) -> GenerationLimitResult:
        if kind is QuotaKind.GENERATION:
            used, limit = record.generations, self.generation_limit(is_premium)
        else:
            used, limit = record.refinements, self._settings.refinement_daily_limit

        allowed = used < limit
        window_ends_at = record.window_start + self._settings.generation_window_seconds
        return GenerationLimitResult(
            allowed=allowed,
            remaining=max(0, limit - used),
            window_ends_at=window_ends_at,
            remaining_hours=self._hours_until(window_ends_at, now),
            reason=None if allowed else DenialReason.QUOTA_EXCEEDED,
        )

    @staticmethod
    def _increment(record: GenerationRecord, kind: QuotaKind) -> None:
        if kind is QuotaKind.GENERATION:
            record.generations += 1
        else:
            record.refinements += 1

    @staticmethod
    def _hours_until(window_ends_at: float, now: float) -> int:
        return max(0, math.ceil((window_ends_at - now) / HOUR_SECONDS))

    def _sweep(self, records: Dict[str, GenerationRecord]) -> int:
        now = self._clock()
        window = self._settings.generation_window_seconds
        expired = [uid for uid, r in records.items() if r.window_start + window < now]
        for uid in expired:
            del records[uid]
        return len(expired)

    def _observe(self, user_id: str, kind: QuotaKind, result: GenerationLimitResult) -> None:
        if not result.allowed:
            logger.info(
                f"{kind.value} denied for {user_id}: reason={result.reason.value}, "
                f"remaining_hours={result.remaining_hours}"
            )

        if self._metrics is None:
            return
        self._metrics.quota_checks_total.add(1, {
            "quota": kind.value,
            "outcome": "allowed" if result.allowed else "denied",
            "reason": result.reason.value if result.reason else "none",
        })
        if result.allowed:
            self._metrics.quota_remaining.record(result.remaining, {"quota": kind.value})
