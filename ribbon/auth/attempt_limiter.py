"""
Login Attempt Limiter - brute-force protection for sign-in flows.

Failed attempts are counted per normalized identity (trimmed, lowercased
email) inside a tracking window. Reaching the attempt limit locks the
identity out with exponential backoff:

    lockout = base_lockout * min(consecutive_lockouts, max_multiplier)

Imposing a lockout zeroes the attempt counter and restarts the window, so the
next run of failures after the lockout ends triggers the next, longer one. A
successful sign-in clears everything. Expiry of lockouts and windows is lazy.
"""
import logging
import math
import time
from typing import Callable, Dict, Optional

from ..billing.models import DenialReason
from ..config import QuotaSettings
from ..observability.metrics import QuotaMetrics
from ..storage.kv_store import KeyValueStore
from ..storage.persisted_table import PersistedTable
from .models import AttemptRecord, RateLimitResult

logger = logging.getLogger(__name__)


class LoginAttemptLimiter:
    """Tracks failed sign-in attempts and imposes escalating lockouts."""

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
        self._table: PersistedTable[AttemptRecord] = PersistedTable(
            store,
            self._settings.attempt_storage_key,
            AttemptRecord,
            failure_policy=self._settings.failure_policy,
            on_load=self._sweep,
            metrics=metrics,
        )

    @property
    def settings(self) -> QuotaSettings:
        return self._settings

    @staticmethod
    def normalize_identity(identity: str) -> str:
        return identity.strip().lower()

    async def check_rate_limit(self, identity: str) -> RateLimitResult:
        """
        Report whether the identity may attempt to sign in now.

        Read-only apart from lazy lockout/window expiry.
        """
        await self._table.ensure_loaded()
        now = self._clock()
        record = self._get_record(self.normalize_identity(identity), now)

        if self._is_locked(record, now):
            return self._locked_result(record, now)

        if self._expire(record, now):
            await self._table.persist()

        return RateLimitResult(
            allowed=True,
            remaining_attempts=max(0, self._settings.max_attempts - record.attempts),
        )

    async def record_attempt(self, identity: str, success: bool) -> RateLimitResult:
        """
        Record the outcome of a sign-in attempt.

        Args:
            identity: Email or other identity, normalized before use
            success: Whether the attempt succeeded

        Returns:
            RateLimitResult; allowed=False once the identity is locked out
        """
        await self._table.ensure_loaded()
        key = self.normalize_identity(identity)
        now = self._clock()
        record = self._get_record(key, now)

        if success:
            record.attempts = 0
            record.first_attempt_at = now
            record.locked_until = None
            record.consecutive_lockouts = 0
            self._count_attempt("success")
            await self._table.persist()
            return RateLimitResult(
                allowed=True,
                remaining_attempts=self._settings.max_attempts,
            )

        # Attempts made while locked are rejected without counting
        if self._is_locked(record, now):
            self._count_attempt("blocked")
            return self._locked_result(record, now)

        self._expire(record, now)
        record.attempts += 1
        self._count_attempt("failure")

        if record.attempts >= self._settings.max_attempts:
            record.consecutive_lockouts += 1
            multiplier = min(record.consecutive_lockouts, self._settings.max_lockout_multiplier)
            duration = self._settings.lockout_duration_seconds * multiplier
            record.locked_until = now + duration
            record.attempts = 0
            record.first_attempt_at = now

            logger.warning(
                f"Sign-in locked for {key}: {duration:.0f}s "
                f"(lockout #{record.consecutive_lockouts}, x{multiplier})"
            )
            if self._metrics is not None:
                self._metrics.login_lockouts_total.add(1, {"multiplier": multiplier})

            await self._table.persist()
            return RateLimitResult(
                allowed=False,
                remaining_attempts=0,
                locked_until=record.locked_until,
                remaining_seconds=math.ceil(duration),
                reason=DenialReason.LOCKED,
            )

        await self._table.persist()
        return RateLimitResult(
            allowed=True,
            remaining_attempts=self._settings.max_attempts - record.attempts,
        )

    async def clear_rate_limit_data(self, identity: Optional[str] = None) -> None:
        """Clear one identity's record, or all records (tests, account recovery)."""
        key = self.normalize_identity(identity) if identity is not None else None
        await self._table.clear(key)
        logger.info(f"Cleared sign-in attempt data for {key or 'all identities'}")

    async def sweep_expired(self) -> int:
        records = await self._table.ensure_loaded()
        removed = self._sweep(records)
        if removed:
            await self._table.persist()
        return removed

    @staticmethod
    def format_remaining_time(seconds: int) -> str:
        """Format a countdown as '4m 5s' or '42s'; empty when nothing remains."""
        if seconds <= 0:
            return ""
        minutes, remaining_seconds = divmod(int(seconds), 60)
        if minutes > 0:
            return f"{minutes}m {remaining_seconds}s"
        return f"{remaining_seconds}s"

    def _get_record(self, key: str, now: float) -> AttemptRecord:
        records = self._table.records
        record = records.get(key)
        if record is None:
            record = AttemptRecord(first_attempt_at=now)
            records[key] = record
        return record

    @staticmethod
    def _is_locked(record: AttemptRecord, now: float) -> bool:
        return record.locked_until is not None and record.locked_until > now

    @staticmethod
    def _locked_result(record: AttemptRecord, now: float) -> RateLimitResult:
        return RateLimitResult(
            allowed=False,
            remaining_attempts=0,
            locked_until=record.locked_until,
            remaining_seconds=math.ceil(record.locked_until - now),
            reason=DenialReason.LOCKED,
        )

    def _expire(self, record: AttemptRecord, now: float) -> bool:
        changed = False
        if record.locked_until is not None and record.locked_until <= now:
            record.locked_until = None
            changed = True
        if record.first_attempt_at + self._settings.attempt_window_seconds < now:
            record.attempts = 0
            record.first_attempt_at = now
            record.consecutive_lockouts = 0
            changed = True
        return changed

    def _sweep(self, records: Dict[str, AttemptRecord]) -> int:
        now = self._clock()
        window = self._settings.attempt_window_seconds
        expired = [
            key for key, r in records.items()
            if (r.locked_until is None or r.locked_until < now)
            and r.first_attempt_at + window < now
        ]
        for key in expired:
            del records[key]
        return len(expired)

    def _count_attempt(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.login_attempts_total.add(1, {"outcome": outcome})
