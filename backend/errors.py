"""
errors.py — Exception hierarchy for the coach backend.

Every error carries a code, a human-readable message, optional details and
free-form context. Only GENERIC_ERROR_MESSAGE ever reaches an end user;
the rest is kept for logs and observability entries.
"""

from enum import Enum
from typing import Any, Optional


GENERIC_ERROR_MESSAGE = (
    "Sorry, something went wrong on our side. Please try again in a moment."
)


class ErrorCode(str, Enum):
    AUTH_INVALID = "AUTH_INVALID"
    PROVIDER_FAILED = "PROVIDER_FAILED"
    PROVIDER_RATE_LIMITED = "PROVIDER_RATE_LIMITED"
    PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
    PROVIDER_PARSE_FAILED = "PROVIDER_PARSE_FAILED"
    TOOL_FAILED = "TOOL_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    CRISIS_DETECTION_FAILED = "CRISIS_DETECTION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_UNEXPECTED = "INTERNAL_UNEXPECTED"


class CoachError(Exception):
    """Base exception for all coach errors."""

    code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        recoverable: Optional[bool] = None,
        **context: Any,
    ):
        self.message = message
        self.details = details
        self.context = context if context else None
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
        }


class AuthError(CoachError):
    """Missing or invalid caller identity."""

    code = ErrorCode.AUTH_INVALID


class ProviderError(CoachError):
    """Upstream model provider failure (status, rate limit, timeout, network)."""

    code = ErrorCode.PROVIDER_FAILED
    recoverable = True

    _KIND_CODES = {
        "rate_limit": ErrorCode.PROVIDER_RATE_LIMITED,
        "timeout": ErrorCode.PROVIDER_TIMEOUT,
    }

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        kind: str = "status",
        status_code: Optional[int] = None,
        details: Optional[str] = None,
        **context: Any,
    ):
        self.provider = provider
        self.kind = kind
        self.status_code = status_code
        super().__init__(
            message, details,
            code=context.pop("code", None) or self._KIND_CODES.get(kind),
            provider=provider, kind=kind, status_code=status_code, **context,
        )


class ParseError(ProviderError):
    """Provider answered but the payload is unusable. Treated like ProviderError."""

    code = ErrorCode.PROVIDER_PARSE_FAILED

    def __init__(self, message: str, provider: Optional[str] = None, details: Optional[str] = None, **context: Any):
        super().__init__(
            message, provider=provider, kind="parse", details=details,
            code=ErrorCode.PROVIDER_PARSE_FAILED, **context,
        )


class ToolExecutionError(CoachError):
    """A bound tool call failed."""

    code = ErrorCode.TOOL_FAILED
    recoverable = True

    def __init__(self, message: str, tool_name: Optional[str] = None, details: Optional[str] = None, **context: Any):
        self.tool_name = tool_name
        super().__init__(message, details, tool_name=tool_name, **context)


class PersistenceError(CoachError):
    """Non-critical write failed."""

    code = ErrorCode.PERSISTENCE_FAILED
    recoverable = True


class CrisisDetectionFailure(CoachError):
    """The crisis detector itself failed. Callers must fail open."""

    code = ErrorCode.CRISIS_DETECTION_FAILED


class NotFoundError(CoachError):
    """Requested record does not exist or is not owned by the caller."""

    code = ErrorCode.NOT_FOUND
    recoverable = True


class ValidationError(CoachError):
    """Caller input is unusable after sanitization."""

    code = ErrorCode.INVALID_INPUT
    recoverable = True
