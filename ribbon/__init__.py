"""
ribbon - Client-side quota enforcement for the Ribbon gift assistant.

Provides:
- QuotaTracker: daily generation/refinement quotas by tier
- LoginAttemptLimiter: sign-in brute-force lockouts with backoff
- build_services: one-shot wiring of store, settings and trackers
"""
from .auth.attempt_limiter import LoginAttemptLimiter
from .billing.quota_tracker import QuotaTracker
from .bootstrap import RibbonServices, build_services
from .config import ConfigLoader, PersistenceFailurePolicy, QuotaSettings

__version__ = "1.0.0"

__all__ = [
    "ConfigLoader",
    "LoginAttemptLimiter",
    "PersistenceFailurePolicy",
    "QuotaSettings",
    "QuotaTracker",
    "RibbonServices",
    "build_services",
]
