"""
ribbon.services - Request handlers that consume the quota trackers.
"""
from .gift_service import (
    GenerationOutcome,
    GiftService,
    SuggestionGenerator,
    UserContext,
)
from .sign_in_guard import SignInGuard

__all__ = [
    "GenerationOutcome",
    "GiftService",
    "SignInGuard",
    "SuggestionGenerator",
    "UserContext",
]
