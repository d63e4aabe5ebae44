"""
Error taxonomy for generation and preview.

Provider failures are raised by the completion clients and converted into
response envelopes by the orchestrator; nothing above that boundary sees a
raw provider exception.
"""
from typing import Optional


class GenerationError(Exception):
    """Base class for every failure the engine classifies"""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(GenerationError):
    """Malformed or incomplete request. Never retried."""


class ConfigurationError(GenerationError):
    """No provider credential present."""


class ProviderAuthError(GenerationError):
    """Provider rejected the credential."""


class RateLimitError(GenerationError):
    """Provider throttled the call; the caller may retry later."""


class InvalidRequestError(GenerationError):
    """Provider rejected the payload."""


class ProviderError(GenerationError):
    """Generic upstream failure: outage, timeout, malformed response."""

    def __init__(self, message: str, details: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, details)
        self.status_code = status_code


class SessionBusyError(GenerationError):
    """A generation is already in flight for this session."""
