"""
Auth Models - Pydantic models for sign-in attempt tracking.
"""
from typing import Optional

from pydantic import BaseModel, Field

from ..billing.models import DenialReason


class AttemptRecord(BaseModel):
    attempts: int = Field(default=0, ge=0)
    first_attempt_at: float = Field(..., description="Epoch seconds the tracking window started")
    locked_until: Optional[float] = None
    consecutive_lockouts: int = Field(default=0, ge=0)


class RateLimitResult(BaseModel):
    """Result of a sign-in rate limit check or recorded attempt."""
    allowed: bool
    remaining_attempts: int
    locked_until: Optional[float] = None
    remaining_seconds: int = 0
    reason: Optional[DenialReason] = None
