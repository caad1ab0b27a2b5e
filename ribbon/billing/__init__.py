"""
ribbon.billing - Daily generation and refinement quotas.

- QuotaTracker: per-user quota state machine with lazy window reset
- GenerationLimitResult / GenerationStats: results returned to callers
"""
from .models import (
    DenialReason,
    GenerationLimitResult,
    GenerationRecord,
    GenerationStats,
    QuotaKind,
)
from .quota_tracker import QuotaTracker

__all__ = [
    "DenialReason",
    "GenerationLimitResult",
    "GenerationRecord",
    "GenerationStats",
    "QuotaKind",
    "QuotaTracker",
]
