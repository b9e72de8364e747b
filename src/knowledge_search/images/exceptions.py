"""Error taxonomy shared by every image generation provider."""

from enum import Enum
from typing import Any


class GenerationErrorType(str, Enum):
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_PROMPT = "INVALID_PROMPT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    CONTENT_POLICY_VIOLATION = "CONTENT_POLICY_VIOLATION"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# Types worth another attempt; the retry policy uses the same set by default
RETRYABLE_ERROR_TYPES = frozenset(
    {
        GenerationErrorType.SERVICE_UNAVAILABLE,
        GenerationErrorType.TIMEOUT,
        GenerationErrorType.RATE_LIMITED,
        GenerationErrorType.UNKNOWN_ERROR,
    }
)


# Caller mistakes; these say nothing about provider health. Authentication and
# quota errors are provider failures.
CLIENT_ERROR_TYPES = frozenset(
    {
        GenerationErrorType.INVALID_PROMPT,
        GenerationErrorType.CONTENT_POLICY_VIOLATION,
    }
)


class GenerationError(Exception):
    """A failed image generation attempt.

    Attributes:
        error_type: Category from GenerationErrorType
        retryable: Whether the same request may succeed later
        retry_after: Seconds the provider asked us to wait, if known
        details: Provider-specific extra context
        service: Name of the provider that raised it
    """

    def __init__(
        self,
        error_type: GenerationErrorType,
        message: str,
        retryable: bool = False,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
        service: str | None = None,
    ):
        self.error_type = error_type
        self.message = message
        self.retryable = retryable
        self.retry_after = retry_after
        self.details = details or {}
        self.service = service
        prefix = f"[{service}] " if service else ""
        super().__init__(f"{prefix}{error_type.value}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.error_type.value,
            "message": self.message,
            "retryable": self.retryable,
            "retry_after": self.retry_after,
            "service": self.service,
        }


def is_retryable_error(error: BaseException) -> bool:
    """Check whether an error should be retried.

    GenerationError carries its own verdict; anything else is judged by type.
    """
    if isinstance(error, GenerationError):
        return error.retryable
    error_type = getattr(error, "error_type", None)
    return error_type in RETRYABLE_ERROR_TYPES


class PromptValidationError(ValueError):
    """Prompt parameters failed validation."""

    def __init__(self, errors: list[str], warnings: list[str] | None = None):
        self.errors = errors
        self.warnings = warnings or []
        super().__init__("; ".join(errors) or "Invalid prompt parameters")


class UnsafePromptError(Exception):
    """The built prompt was rejected by the content safety check."""

    def __init__(self, flags: list[str], confidence: float):
        self.flags = flags
        self.confidence = confidence
        super().__init__(f"Prompt rejected by content filter: {', '.join(flags)}")
