"""Error normalization.

Every failure, local or upstream, leaves the relay as exactly one
``NormalizedError`` with an HTTP status that is consistent with its kind:

    invalid_request            400  validation failure or upstream 400
    method_not_allowed         405  non-POST verb
    payload_too_large          413  body over the configured bound
    rate_limit_exceeded        429  local limiter or upstream 429
    authentication_failed      401/403 upstream rejected the credential
    service_unavailable        503  upstream overloaded (529) or unreachable
    request_timeout            504  outbound call exceeded its deadline
    server_configuration_error 500  credential missing or malformed
    internal_server_error      500  anything unclassified
    <upstream type>/api_error  upstream status, other upstream errors

Upstream messages are passed through only where they describe the caller's
own request; authentication details and exception text never are.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import httpx
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from relay.app.core.config import settings
from relay.app.core.logging import get_log_context, get_logger
from relay.app.exceptions import MethodNotAllowedError, RelayError, UpstreamStreamError

logger = get_logger(__name__)

DEFAULT_RETRY_AFTER = "60"
PROVIDER_OVERLOADED_STATUS = 529


@dataclass
class NormalizedError:
    """Outward-facing failure body."""
    error: str
    message: str
    retry_after: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"error": self.error, "message": self.message}
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


@dataclass
class NormalizedResponse:
    """Status, body and extra headers for one failed request."""
    status_code: int
    body: NormalizedError
    headers: Dict[str, str] = field(default_factory=dict)

    def to_response(self, extra_headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        headers = dict(self.headers)
        if extra_headers:
            headers.update(extra_headers)
        return JSONResponse(
            status_code=self.status_code,
            content=self.body.to_dict(),
            headers=headers,
        )


def _build(status_code: int, error: str, message: str, retry_after: Optional[str] = None) -> NormalizedResponse:
    headers = {"Retry-After": retry_after} if retry_after is not None else {}
    return NormalizedResponse(
        status_code=status_code,
        body=NormalizedError(error=error, message=message, retry_after=retry_after),
        headers=headers,
    )


def parse_upstream_error(response: httpx.Response) -> Tuple[Optional[str], Optional[str]]:
    """Extract ``(type, message)`` from a provider error body.

    The provider answers failures with ``{"error": {"type", "message"}}``;
    anything else yields ``(None, None)``.
    """
    try:
        data = response.json()
    except (httpx.ResponseNotRead, ValueError):
        return None, None

    error = data.get("error") if isinstance(data, dict) else None
    if not isinstance(error, dict):
        return None, None

    error_type = error.get("type")
    message = error.get("message")
    return (
        error_type if isinstance(error_type, str) and error_type else None,
        message if isinstance(message, str) and message else None,
    )


def _normalize_http_status(exc: httpx.HTTPStatusError) -> Tuple[NormalizedResponse, Optional[str]]:
    response = exc.response
    status = response.status_code
    error_type, message = parse_upstream_error(response)

    if status == 429:
        retry_after = response.headers.get("retry-after") or DEFAULT_RETRY_AFTER
        return _build(
            429, "rate_limit_exceeded",
            message or "Claude API rate limit reached",
            retry_after=retry_after,
        ), error_type

    if status in (401, 403):
        return _build(status, "authentication_failed", "Invalid or expired API credentials"), error_type

    if status == PROVIDER_OVERLOADED_STATUS:
        return _build(
            503, "service_unavailable",
            "Claude API is experiencing high traffic",
            retry_after=DEFAULT_RETRY_AFTER,
        ), error_type

    if status == 400:
        return _build(400, "invalid_request", message or "Invalid request to Claude API"), error_type

    return _build(
        status, error_type or "api_error",
        message or "Unknown error from Claude API",
    ), error_type


def _normalize_stream_error(exc: UpstreamStreamError) -> NormalizedResponse:
    if exc.error_type == "overloaded_error":
        return _build(
            503, "service_unavailable",
            "Claude API is experiencing high traffic",
            retry_after=DEFAULT_RETRY_AFTER,
        )
    if exc.error_type == "rate_limit_error":
        return _build(
            429, "rate_limit_exceeded",
            exc.message,
            retry_after=DEFAULT_RETRY_AFTER,
        )
    return _build(exc.status_code, exc.error_type, exc.message)


def _normalize_http_exception(exc: StarletteHTTPException) -> NormalizedResponse:
    if exc.status_code == 405:
        return _build(405, MethodNotAllowedError.error, MethodNotAllowedError.default_message)
    if exc.status_code == 404:
        return _build(404, "not_found", "Not found")
    return _build(exc.status_code, "http_error", str(exc.detail))


def normalize_error(
    exc: BaseException,
    client_id: Optional[str] = None,
    model: Optional[str] = None,
) -> NormalizedResponse:
    """Classify a failure into a status code and a NormalizedError.

    Args:
        exc: The exception raised while handling the request
        client_id: Rate-limit client identifier, for logging
        model: Requested model, for logging

    Returns:
        NormalizedResponse ready to be rendered as JSON
    """
    if isinstance(exc, UpstreamStreamError):
        result = _normalize_stream_error(exc)
        logger.error(
            f"Claude API stream error: {exc.error_type}",
            extra=get_log_context(
                client_id=client_id, model=model,
                status_code=result.status_code, error_type=result.body.error,
                upstream_error_type=exc.error_type,
            ),
        )
        return result

    if isinstance(exc, RelayError):
        result = _build(exc.status_code, exc.error, exc.message, retry_after=exc.retry_after)
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"Request rejected: {exc.error}",
            extra=get_log_context(
                client_id=client_id, model=model,
                status_code=result.status_code, error_type=exc.error,
            ),
        )
        return result

    if isinstance(exc, httpx.HTTPStatusError):
        result, upstream_type = _normalize_http_status(exc)
        logger.error(
            f"Claude API error {exc.response.status_code}",
            extra=get_log_context(
                client_id=client_id, model=model,
                status_code=result.status_code, error_type=result.body.error,
                upstream_status=exc.response.status_code,
                upstream_error_type=upstream_type,
            ),
        )
        return result

    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        result = _build(
            504, "request_timeout",
            f"Claude API request timed out after {settings.upstream_timeout:g} seconds",
        )
        logger.error(
            "Claude API request timed out",
            extra=get_log_context(
                client_id=client_id, model=model,
                status_code=504, error_type="request_timeout",
                exception_type=type(exc).__name__,
            ),
        )
        return result

    if isinstance(exc, httpx.ConnectError):
        result = _build(503, "service_unavailable", "Could not connect to Claude API")
        logger.error(
            "Could not connect to Claude API",
            extra=get_log_context(
                client_id=client_id, model=model,
                status_code=503, error_type="service_unavailable",
                exception_type=type(exc).__name__,
            ),
        )
        return result

    if isinstance(exc, StarletteHTTPException):
        result = _normalize_http_exception(exc)
        logger.warning(
            f"HTTP error {exc.status_code}",
            extra=get_log_context(
                client_id=client_id, status_code=result.status_code, error_type=result.body.error,
            ),
        )
        return result

    logger.error(
        "Unexpected proxy error",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra=get_log_context(
            client_id=client_id, model=model,
            status_code=500, error_type="internal_server_error",
            exception_type=type(exc).__name__,
        ),
    )
    return _build(
        500, "internal_server_error",
        "An unexpected error occurred while proxying your request",
    )
