"""
Gift Service - quota-guarded calls to the AI suggestion generator.

This is the caller side of the quota contract: every generation or
refinement goes through QuotaTracker.check_and_record_* before the AI call
is dispatched, and a denial is surfaced as an exception carrying the wait
time. The generator and its prompt are opaque; parsing its response is left
to the caller.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..billing.models import DenialReason, GenerationLimitResult
from ..billing.quota_tracker import QuotaTracker
from ..errors import (
    GenerationFailedError,
    NotEntitledError,
    QuotaExceededError,
    ServiceUnavailableError,
    UnauthorizedError,
)
from ..observability.logging_config import LogContext

logger = logging.getLogger(__name__)

GENERATION_SYSTEM_PROMPT = "You are a helpful and creative gift recommendation assistant."
REFINEMENT_SYSTEM_PROMPT = (
    "You are a helpful and creative gift recommendation assistant specializing "
    "in refining suggestions based on user feedback."
)


class SuggestionGenerator(ABC):
    """External AI completion service."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the service is configured and may be called."""

    @abstractmethod
    async def generate_suggestions(self, system_prompt: str, user_prompt: str) -> str:
        """Return the raw completion text. Raises on failure."""


@dataclass
class UserContext:
    """The signed-in user as seen by request handlers."""
    user_id: str
    is_premium: bool = False


@dataclass
class GenerationOutcome:
    response: str
    duration_ms: float
    quota: GenerationLimitResult


class GiftService:
    """Dispatches generation and refinement requests behind the quota tracker."""

    def __init__(self, quota_tracker: QuotaTracker, generator: SuggestionGenerator):
        self._quota_tracker = quota_tracker
        self._generator = generator

    async def generate(self, user: Optional[UserContext], user_prompt: str) -> GenerationOutcome:
        """
        Generate gift suggestions for a signed-in user.

        Raises:
            UnauthorizedError: No signed-in user
            ServiceUnavailableError: Generator not configured (no quota consumed)
            QuotaExceededError: Daily generation limit reached
            GenerationFailedError: The AI call failed (quota stays consumed)
        """
        user = self._require_user(user)
        self._require_generator()

        with LogContext(user_id=user.user_id, action="generate"):
            quota = await self._quota_tracker.check_and_record_generation(
                user.user_id, user.is_premium
            )
            if not quota.allowed:
                raise QuotaExceededError(
                    f"Daily limit reached. {quota.remaining_hours} hours until reset.",
                    quota.remaining_hours,
                    quota.model_dump(mode="json"),
                )
            return await self._dispatch(GENERATION_SYSTEM_PROMPT, user_prompt, quota)

    async def refine(self, user: Optional[UserContext], user_prompt: str) -> GenerationOutcome:
        """
        Refine earlier suggestions. Premium only.

        Raises:
            NotEntitledError: User is not on the premium tier
            QuotaExceededError: Daily refinement limit reached
        """
        user = self._require_user(user)
        self._require_generator()

        with LogContext(user_id=user.user_id, action="refine"):
            quota = await self._quota_tracker.check_and_record_refinement(
                user.user_id, user.is_premium
            )
            if quota.reason is DenialReason.NOT_ENTITLED:
                raise NotEntitledError()
            if not quota.allowed:
                raise QuotaExceededError(
                    f"Daily refinement limit reached. {quota.remaining_hours} hours until reset.",
                    quota.remaining_hours,
                    quota.model_dump(mode="json"),
                )
            return await self._dispatch(REFINEMENT_SYSTEM_PROMPT, user_prompt, quota)

    async def _dispatch(
        self, system_prompt: str, user_prompt: str, quota: GenerationLimitResult
    ) -> GenerationOutcome:
        start = time.monotonic()
        try:
            response = await self._generator.generate_suggestions(system_prompt, user_prompt)
        except Exception as e:
            logger.error(f"Suggestion generation failed: {e}")
            raise GenerationFailedError() from e

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(f"Suggestions generated in {duration_ms:.0f}ms, {quota.remaining} left today")
        return GenerationOutcome(response=response, duration_ms=duration_ms, quota=quota)

    @staticmethod
    def _require_user(user: Optional[UserContext]) -> UserContext:
        if user is None:
            raise UnauthorizedError()
        return user

    def _require_generator(self) -> None:
        if not self._generator.is_available():
            logger.warning("AI service not configured")
            raise ServiceUnavailableError()
