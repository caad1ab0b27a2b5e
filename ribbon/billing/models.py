"""
Billing Models - Pydantic models for generation quota tracking.

Defines the per-user GenerationRecord persisted by the tracker and the
result models returned to callers.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DenialReason(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    NOT_ENTITLED = "not_entitled"
    LOCKED = "locked"


class QuotaKind(str, Enum):
    GENERATION = "generation"
    REFINEMENT = "refinement"


class GenerationRecord(BaseModel):
    """Usage within the current window. Both counters share window_start."""
    user_id: str
    generations: int = Field(default=0, ge=0)
    refinements: int = Field(default=0, ge=0)
    window_start: float = Field(..., description="Epoch seconds")


class GenerationLimitResult(BaseModel):
    """Result of a generation or refinement quota check."""
    allowed: bool
    remaining: int
    window_ends_at: float = Field(..., description="Epoch seconds, 0 when not entitled")
    remaining_hours: int
    reason: Optional[DenialReason] = None


class GenerationStats(BaseModel):
    generations_used: int
    generations_remaining: int
    generations_limit: int
    refinements_used: int
    refinements_remaining: int
    refinements_limit: int
    window_ends_at: float
    remaining_hours: int
