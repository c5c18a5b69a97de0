"""
Structured error handling with stable error codes.

No stack traces are exposed to clients. All errors are mapped to
stable, documented error codes for reliable client handling.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for API responses."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    NOT_FOUND = "E1002"
    METHOD_NOT_ALLOWED = "E1003"
    REQUEST_TOO_LARGE = "E1004"
    RATE_LIMITED = "E1005"

    # Credential errors (2xxx)
    CREDENTIALS_MISSING = "E2000"

    # Provider errors (4xxx)
    PROVIDER_UNAVAILABLE = "E4000"
    PROVIDER_ERROR = "E4001"
    MODEL_NOT_FOUND = "E4002"
    PROVIDER_BAD_RESPONSE = "E4004"
    NO_PROVIDERS = "E4005"
    DYNAMIC_FETCH_FAILED = "E4006"

    # Chat turn errors (6xxx)
    CONTEXT_LIMIT = "E6000"
    SEGMENT_LIMIT = "E6001"
    TOOL_CALL_FAILED = "E6002"
    CONTEXT_REDUCTION_FAILED = "E6003"


@dataclass(frozen=True)
class ErrorResponse:
    """Structured error response for API.

    Format: {error: {code, message, request_id, details?}}
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        error: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.request_id:
            error["request_id"] = self.request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


class AppError(Exception):
    """Base application error with structured error detail."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
        retryable: bool = True,
        provider: str | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.retryable = retryable
        self.provider = provider
        super().__init__(message)

    def to_response(self, request_id: str | None = None) -> ErrorResponse:
        """Create error response with request ID."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            request_id=request_id,
            details=self.details,
        )

    def to_chat_payload(self) -> dict[str, Any]:
        """Body returned by the chat endpoint when a turn cannot start."""
        return {
            "error": True,
            "code": self.code.value,
            "message": self.message,
            "statusCode": self.status_code,
            "isRetryable": self.retryable,
            "provider": self.provider or "unknown",
        }


# Convenience error classes
class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.VALIDATION_ERROR, message, 400, details, retryable=False)


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(ErrorCode.NOT_FOUND, message, 404, retryable=False)


class RequestTooLargeError(AppError):
    """Request body over the configured limit (413)."""

    def __init__(self, max_bytes: int):
        super().__init__(
            ErrorCode.REQUEST_TOO_LARGE,
            f"Request body exceeds {max_bytes} bytes",
            413,
            {"max_bytes": max_bytes},
            retryable=False,
        )


class RateLimitError(AppError):
    """Rate limit exceeded (429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ):
        super().__init__(ErrorCode.RATE_LIMITED, message, 429, details, provider=provider)


class ProviderError(AppError):
    """Provider error (502)."""

    def __init__(
        self,
        message: str = "Provider error",
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ):
        super().__init__(ErrorCode.PROVIDER_ERROR, message, 502, details, provider=provider)


class ProviderUnavailableError(AppError):
    """Provider unavailable (503)."""

    def __init__(
        self,
        message: str = "Provider unavailable",
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ):
        super().__init__(ErrorCode.PROVIDER_UNAVAILABLE, message, 503, details, provider=provider)


class ProviderBadResponseError(AppError):
    """Provider returned malformed response (502)."""

    def __init__(
        self,
        message: str = "Provider returned invalid response",
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ):
        super().__init__(ErrorCode.PROVIDER_BAD_RESPONSE, message, 502, details, provider=provider)


class ModelNotFoundError(AppError):
    """Requested model not found (404)."""

    def __init__(
        self,
        message: str = "Model not found",
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ):
        super().__init__(
            ErrorCode.MODEL_NOT_FOUND, message, 404, details, retryable=False, provider=provider
        )


class NoProvidersRegisteredError(AppError):
    """The registry is empty, so no default provider can be chosen (500)."""

    def __init__(self, message: str = "No providers registered"):
        super().__init__(ErrorCode.NO_PROVIDERS, message, 500, retryable=False)


class CredentialError(AppError):
    """No usable API key for the selected provider (401, not retryable)."""

    def __init__(
        self,
        message: str = "Invalid or missing API key",
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ):
        super().__init__(
            ErrorCode.CREDENTIALS_MISSING, message, 401, details, retryable=False, provider=provider
        )


class ContextLimitError(AppError):
    """Backend rejected the request for context/token length (413, retryable)."""

    def __init__(
        self,
        message: str = (
            "The conversation is too long for the current model. Please start a new "
            "conversation or try enabling context optimization."
        ),
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ):
        super().__init__(ErrorCode.CONTEXT_LIMIT, message, 413, details, provider=provider)

    def to_chat_payload(self) -> dict[str, Any]:
        payload = super().to_chat_payload()
        payload["contextError"] = True
        return payload


class SegmentLimitExceededError(AppError):
    """Continuation ceiling reached; the turn ends (500)."""

    def __init__(
        self,
        message: str = "Cannot continue message: Maximum segments reached",
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ):
        super().__init__(
            ErrorCode.SEGMENT_LIMIT, message, 500, details, retryable=False, provider=provider
        )


class ToolCallError(AppError):
    """A tool call handler failed mid-stream (reported in-band only)."""

    def __init__(
        self,
        message: str = "Tool call failed",
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ):
        super().__init__(ErrorCode.TOOL_CALL_FAILED, message, 500, details, provider=provider)


class DynamicFetchError(AppError):
    """Dynamic model listing failed for one provider (never reaches clients)."""

    def __init__(
        self,
        message: str = "Dynamic model fetch failed",
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ):
        super().__init__(ErrorCode.DYNAMIC_FETCH_FAILED, message, 502, details, provider=provider)


class ReductionError(AppError):
    """Context optimization failed; the turn continues unreduced."""

    def __init__(self, message: str = "Context optimization failed", details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.CONTEXT_REDUCTION_FAILED, message, 500, details)


_CONTEXT_LIMIT_MARKERS = ("context length", "maximum context", "token")


def classify_error(exc: BaseException, provider: str | None = None) -> AppError:
    """Map an arbitrary failure onto the chat error taxonomy.

    AppError instances pass through (with ``provider`` filled in when
    missing). Anything else is classified by its message.
    """
    if isinstance(exc, AppError):
        if exc.provider is None:
            exc.provider = provider
        return exc

    message = str(exc) or "An unexpected error occurred"
    lowered = message.lower()
    if "api key" in lowered:
        return CredentialError(provider=provider, details={"reason": message})
    if any(marker in lowered for marker in _CONTEXT_LIMIT_MARKERS):
        return ContextLimitError(provider=provider, details={"reason": message})
    return AppError(ErrorCode.INTERNAL_ERROR, message, 500, provider=provider)
