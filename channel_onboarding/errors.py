"""Exception types raised by the onboarding service."""

from __future__ import annotations

from typing import Optional


class OnboardingError(Exception):
    """Base error type."""


class InvalidTransitionError(OnboardingError):
    """The trigger is not accepted from the session's current state."""


class TransitionInProgressError(OnboardingError):
    """Another transition for the same session is still awaiting its external call."""


class InvalidInputError(OnboardingError):
    """User supplied data (PIN, phone number, assistant) failed validation."""


class ExternalCallError(OnboardingError):
    """An external API answered with an error or an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GraphApiError(ExternalCallError):
    pass


class BackendApiError(ExternalCallError):
    pass


class SignupProxyError(ExternalCallError):
    pass
