"""
Ribbon Errors - Exception hierarchy for quota enforcement and its callers.

Business outcomes (quota exhausted, not entitled, locked out) are returned
as results by the trackers. These exceptions are raised by callers that
translate a denial into a failed request, and by the storage layer when the
persistence failure policy is fail-closed.
"""
from typing import Any, Dict, Optional


class RibbonError(Exception):
    """
    Base error for the Ribbon quota service.

    Attributes:
        message: Human-readable message, safe to show to the user
        error_code: Stable machine-readable code
        status_code: HTTP-style status for API surfaces
        details: Optional structured payload (e.g. the limiter result)
    """

    def __init__(
        self,
        message: str,
        error_code: str = "RIBBON_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }


class ConfigurationError(RibbonError):
    """Raised when settings cannot be parsed or fail validation."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", 500, details)


class StorageUnavailableError(RibbonError):
    """Raised on key/value store failures when the policy is fail-closed."""

    def __init__(self, operation: str, key: str):
        super().__init__(
            f"Storage {operation} failed for key '{key}'",
            "STORAGE_ERROR",
            503,
            {"operation": operation, "key": key},
        )
        self.operation = operation
        self.key = key


class RateLimitError(RibbonError):
    """Base class for denials surfaced to the user as a wait time."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        error_code: str = "RATE_LIMIT_ERROR",
        status_code: int = 429,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code, status_code, details)


class QuotaExceededError(RateLimitError):
    """Daily generation or refinement quota is exhausted."""

    def __init__(self, message: str, remaining_hours: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "RATE_LIMIT_EXCEEDED", 429, details)
        self.remaining_hours = remaining_hours


class NotEntitledError(RateLimitError):
    """The user's tier does not include the requested feature."""

    def __init__(self, message: str = "Refinement is available on the premium plan."):
        super().__init__(message, "NOT_ENTITLED", 403)


class AccountLockedError(RateLimitError):
    """Too many failed sign-in attempts for an identity."""

    def __init__(self, message: str, remaining_seconds: int, locked_until: Optional[float] = None):
        super().__init__(
            message,
            "ACCOUNT_LOCKED",
            429,
            {"remaining_seconds": remaining_seconds, "locked_until": locked_until},
        )
        self.remaining_seconds = remaining_seconds
        self.locked_until = locked_until


class UnauthorizedError(RibbonError):
    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message, "UNAUTHORIZED", 401)


class ServiceUnavailableError(RibbonError):
    def __init__(self, message: str = "AI service unavailable"):
        super().__init__(message, "SERVICE_UNAVAILABLE", 503)


class GenerationFailedError(RibbonError):
    """The AI completion call failed after quota was consumed."""

    def __init__(self, message: str = "Gift generation failed"):
        super().__init__(message, "GENERATION_FAILED", 502)
