"""
Custom Metrics - Quota decisions, sign-in lockouts, and storage failures.

Provides pre-configured OpenTelemetry instruments for the quota service:
- Quota check counters by quota type, outcome and denial reason
- Sign-in attempt and lockout counters
- Persistence error counters by operation

Without setup_observability() the global meter provider is the API no-op,
so instruments are safe to use in tests and libraries.
"""
from dataclasses import dataclass
from typing import Optional

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram, Meter

_meter: Optional[Meter] = None


def get_meter(name: str = "ribbon") -> Meter:
    """Get or create the meter for this application."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter(name, version="1.0.0")
    return _meter


@dataclass
class QuotaMetrics:
    """Metrics for quota enforcement."""

    # Checks by quota (generation/refinement), outcome and reason
    quota_checks_total: Counter

    # Remaining allowance reported on allowed checks
    quota_remaining: Histogram

    # Sign-in attempts by outcome (success/failure/blocked)
    login_attempts_total: Counter

    # Lockouts by backoff multiplier
    login_lockouts_total: Counter

    # Swallowed or raised persistence errors by operation and key
    storage_errors_total: Counter


def create_quota_metrics(meter: Optional[Meter] = None) -> QuotaMetrics:
    """
    Create metrics for quota enforcement.

    Returns:
        QuotaMetrics dataclass with configured metric instruments
    """
    m = meter or get_meter()

    quota_checks_total = m.create_counter(
        name="ribbon_quota_checks_total",
        description="Quota checks by quota type, outcome and denial reason",
        unit="1",
    )

    quota_remaining = m.create_histogram(
        name="ribbon_quota_remaining",
        description="Remaining allowance after an allowed check",
        unit="1",
    )

    login_attempts_total = m.create_counter(
        name="ribbon_login_attempts_total",
        description="Recorded sign-in attempts by outcome",
        unit="1",
    )

    login_lockouts_total = m.create_counter(
        name="ribbon_login_lockouts_total",
        description="Sign-in lockouts imposed",
        unit="1",
    )

    storage_errors_total = m.create_counter(
        name="ribbon_storage_errors_total",
        description="Key/value store failures by operation",
        unit="1",
    )

    return QuotaMetrics(
        quota_checks_total=quota_checks_total,
        quota_remaining=quota_remaining,
        login_attempts_total=login_attempts_total,
        login_lockouts_total=login_lockouts_total,
        storage_errors_total=storage_errors_total,
    )
