"""
ribbon.auth - Sign-in brute-force protection.
"""
from .attempt_limiter import LoginAttemptLimiter
from .models import AttemptRecord, RateLimitResult

__all__ = [
    "AttemptRecord",
    "LoginAttemptLimiter",
    "RateLimitResult",
]
