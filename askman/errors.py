"""Exception hierarchy for askman.

Every failure that reaches the command line is an :class:`AskmanError`.
The subclasses let callers tell apart the three families that matter to
the query pipeline: backend failures (never retried), validation
failures (retried once with a stricter prompt) and cancellations or
timeouts raised by the caller's own deadline.
"""

from __future__ import annotations

from typing import Optional


class AskmanError(Exception):
    """Base class for all askman errors."""

    def describe(self) -> str:
        """Return the message followed by its ``raise ... from`` chain."""
        parts = [str(self)]
        cause = self.__cause__
        while cause is not None:
            text = str(cause)
            if text and text not in parts[-1]:
                parts.append(text)
            cause = cause.__cause__
        return ": ".join(parts)


class ConfigError(AskmanError):
    """Raised when the configuration or the selected profile is unusable."""


class ManPageError(AskmanError):
    """Raised when the manual page for a tool cannot be retrieved."""


class ProviderError(AskmanError):
    """Raised when a provider backend fails.

    :param message: Human readable description.
    :param provider: Name of the backend that failed (``openai``,
      ``ollama``).  It is prepended to the message so the failing
      backend is always identifiable.
    """

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        self.provider = provider
        if provider:
            message = f"{provider}: {message}"
        super().__init__(message)


class AuthenticationError(ProviderError):
    """Raised when a backend rejects or lacks credentials."""


class QueryCancelledError(AskmanError):
    """Raised when the caller cancels an in-flight query."""


class QueryTimeoutError(AskmanError):
    """Raised when a query exceeds its deadline or the stream goes silent."""


class CacheError(AskmanError):
    """Raised when a cache entry cannot be written or the store swept."""


class ValidationError(AskmanError):
    """Raised when the model output does not contain a usable command."""


class NotFoundError(ValidationError):
    """Raised when the model declares the manual page insufficient."""
