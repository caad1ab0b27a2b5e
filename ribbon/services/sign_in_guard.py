"""
Sign-In Guard - wraps a credential check with the login attempt limiter.

The credential check itself is external; the guard only decides whether it
may run and records its outcome.
"""
import logging
from typing import Awaitable, Callable

from ..auth.attempt_limiter import LoginAttemptLimiter
from ..auth.models import RateLimitResult
from ..errors import AccountLockedError

logger = logging.getLogger(__name__)

Authenticator = Callable[[str, str], Awaitable[bool]]


class SignInGuard:
    def __init__(self, limiter: LoginAttemptLimiter, authenticate: Authenticator):
        self._limiter = limiter
        self._authenticate = authenticate

    def _locked_error(self, result: RateLimitResult) -> AccountLockedError:
        wait = self._limiter.format_remaining_time(result.remaining_seconds)
        return AccountLockedError(
            f"Too many failed attempts. Please try again in {wait}.",
            result.remaining_seconds,
            result.locked_until,
        )

    async def sign_in(self, email: str, password: str) -> RateLimitResult:
        """
        Run the credential check unless the identity is locked out.

        Returns the limiter result for a successful sign-in or a failed one
        that did not trigger a lockout (remaining_attempts tells the UI how
        many tries are left).

        Raises:
            AccountLockedError: Locked before the attempt, or this failure
                triggered a lockout
        """
        check = await self._limiter.check_rate_limit(email)
        if not check.allowed:
            raise self._locked_error(check)

        succeeded = await self._authenticate(email, password)
        result = await self._limiter.record_attempt(email, succeeded)
        if not result.allowed:
            raise self._locked_error(result)

        if not succeeded:
            logger.info(f"Sign-in failed, {result.remaining_attempts} attempts left")
        return result
