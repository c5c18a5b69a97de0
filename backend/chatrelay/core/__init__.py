"""Core module with errors, logging, metrics, and middleware."""

from chatrelay.core.errors import (
    AppError,
    ContextLimitError,
    CredentialError,
    DynamicFetchError,
    ErrorCode,
    ErrorResponse,
    ModelNotFoundError,
    NoProvidersRegisteredError,
    NotFoundError,
    ProviderBadResponseError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    ReductionError,
    RequestTooLargeError,
    SegmentLimitExceededError,
    ToolCallError,
    ValidationError,
    classify_error,
)
from chatrelay.core.logging import get_logger, request_id_ctx, setup_logging, stream_id_ctx

__all__ = [
    "AppError",
    "ContextLimitError",
    "CredentialError",
    "DynamicFetchError",
    "ErrorCode",
    "ErrorResponse",
    "ModelNotFoundError",
    "NoProvidersRegisteredError",
    "NotFoundError",
    "ProviderBadResponseError",
    "ProviderError",
    "ProviderUnavailableError",
    "RateLimitError",
    "ReductionError",
    "RequestTooLargeError",
    "SegmentLimitExceededError",
    "ToolCallError",
    "ValidationError",
    "classify_error",
    "get_logger",
    "request_id_ctx",
    "setup_logging",
    "stream_id_ctx",
]
