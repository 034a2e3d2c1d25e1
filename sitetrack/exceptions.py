"""Exception types raised across the conversation engine."""

from typing import Any, Optional


class SiteTrackError(Exception):
    """Base class for all SiteTrack errors."""


class AIExtractionError(SiteTrackError):
    """The AI extraction capability failed (timeout, transport or malformed output)."""

    def __init__(self, message: str, reason: str = "error"):
        super().__init__(message)
        self.reason = reason


class InvalidOnboardingTransition(SiteTrackError):
    """The onboarding state machine was asked to handle a stage it does not own."""


class MutationApplicationError(SiteTrackError):
    """A collaborator failed to apply a domain mutation.

    The reply describing the action was already generated but must not be
    delivered as if the action took effect.
    """

    def __init__(self, mutation: Any, reply_text: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to apply {type(mutation).__name__}: {cause}")
        self.mutation = mutation
        self.reply_text = reply_text
        self.cause = cause
