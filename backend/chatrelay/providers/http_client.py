"""
Shared HTTP client helpers for provider adapters.

Provides consistent timeouts, retry behavior, and error mapping so provider
adapters return stable AppError instances without leaking stack traces.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx

from chatrelay.core import (
    ContextLimitError,
    CredentialError,
    ModelNotFoundError,
    ProviderBadResponseError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    get_logger,
    request_id_ctx,
)

logger = get_logger(__name__)

_RETRYABLE_ERRORS = (
    httpx.ConnectError,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.NetworkError,
    httpx.TimeoutException,
)

_CONTEXT_LIMIT_MARKERS = (
    "context length",
    "context_length",
    "maximum context",
    "too many tokens",
    "token limit",
)


def create_http_client(
    timeout_seconds: int,
    headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Build an AsyncClient with consistent timeout settings.

    Args:
        timeout_seconds: Total timeout for requests.
        headers: Default headers to include.
        transport: Optional transport (used by tests with MockTransport).
    """
    timeout = httpx.Timeout(
        timeout_seconds, connect=timeout_seconds, read=timeout_seconds, write=timeout_seconds
    )
    return httpx.AsyncClient(
        timeout=timeout,
        headers=headers or {},
        transport=transport,
    )


def _with_request_id(kwargs: dict[str, Any]) -> dict[str, Any]:
    headers = kwargs.pop("headers", {}) or {}
    request_id = request_id_ctx.get()
    if request_id and "X-Request-ID" not in headers:
        headers["X-Request-ID"] = request_id
    kwargs["headers"] = headers
    return kwargs


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int,
    provider: str | None = None,
    stream: bool = False,
    **kwargs: Any,
) -> httpx.Response:
    """
    Execute an HTTP request with lightweight retries and mapped errors.

    Retries are only applied to network/timeout errors, not HTTP status codes.
    With ``stream=True`` the body is left unread and the caller must close
    the response.
    """
    kwargs = _with_request_id(kwargs)

    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            request = client.build_request(method, url, **kwargs)
            return await client.send(request, stream=stream)
        except _RETRYABLE_ERRORS as exc:
            last_error = exc
            if attempt < max_retries:
                await asyncio.sleep(min(0.1 * (attempt + 1), 1.0))
                continue
            raise ProviderUnavailableError(
                "Provider unavailable", details={"reason": str(exc)}, provider=provider
            ) from exc
        except httpx.HTTPError as exc:  # Covers other request-level errors
            last_error = exc
            if attempt < max_retries:
                await asyncio.sleep(min(0.1 * (attempt + 1), 1.0))
                continue
            raise ProviderError(
                "Provider request failed", details={"reason": str(exc)}, provider=provider
            ) from exc

    # Fallback (should not be reached)
    raise ProviderUnavailableError(
        "Provider unavailable", details={"reason": str(last_error)}, provider=provider
    )


def raise_for_status(response: httpx.Response, provider: str | None = None) -> None:
    """
    Map HTTP status codes to stable AppError types.

    Streamed responses must be read before calling this for error statuses.
    """
    status = response.status_code
    if status < 400:
        return

    details = _safe_error_details(response)

    if status in (401, 403):
        raise CredentialError(details=details, provider=provider)
    if status == 404:
        raise ModelNotFoundError(details=details, provider=provider)
    if status == 429:
        raise RateLimitError("Rate limit exceeded", details=details, provider=provider)
    if status in (400, 413, 422) and mentions_context_limit(details.get("body", "")):
        raise ContextLimitError(details=details, provider=provider)
    if status >= 500:
        raise ProviderUnavailableError("Provider unavailable", details=details, provider=provider)
    raise ProviderError("Provider error", details=details, provider=provider)


def parse_json(response: httpx.Response, provider: str | None = None) -> Any:
    """
    Parse JSON with consistent error handling.
    """
    try:
        return response.json()
    except json.JSONDecodeError as exc:
        snippet = response.text[:500] if response.text else ""
        raise ProviderBadResponseError(
            "Provider returned invalid response",
            details={"body": snippet},
            provider=provider,
        ) from exc


def mentions_context_limit(body: str) -> bool:
    lowered = body.lower()
    return any(marker in lowered for marker in _CONTEXT_LIMIT_MARKERS)


def _safe_error_details(response: httpx.Response) -> dict[str, Any]:
    """Return a small, non-sensitive error payload for debugging."""
    body_snippet = ""
    try:
        if response.text:
            body_snippet = response.text[:300]
    except httpx.ResponseNotRead:
        body_snippet = ""

    return {
        "status": response.status_code,
        "body": body_snippet,
        "url": str(response.url),
    }
