"""Exceptions raised by the answer-generation LLM clients."""


class LLMError(Exception):
    """Base exception for LLM operations."""

    def __init__(self, message: str, provider: str = "unknown"):
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class LLMConnectionError(LLMError):
    """The provider could not be reached or timed out."""


class LLMRateLimitError(LLMError):
    """The provider throttled the request."""

    def __init__(
        self, message: str, provider: str, retry_after: float | None = None
    ):
        self.retry_after = retry_after
        super().__init__(message, provider)


class LLMAuthenticationError(LLMError):
    """The API key is missing or was rejected."""


class LLMResponseError(LLMError):
    """The provider answered with an error status or an unreadable body."""

    def __init__(self, message: str, provider: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message, provider)


class LLMProviderNotConfiguredError(LLMError):
    """Provider is unknown or has no credentials."""
