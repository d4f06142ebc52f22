"""Chat relay endpoints.

Both endpoints run the same pipeline and differ only in relay mode:

    rate limit -> parse JSON -> validate -> credential -> upstream call

Any failure along the way becomes one normalized JSON error response.
"""

import time
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from relay.app.core.config import settings
from relay.app.core.http_client import get_optional_http_client
from relay.app.core.logging import get_log_context, get_logger
from relay.app.exceptions import InvalidRequestError, RateLimitExceededError
from relay.app.middleware.rate_limit import get_client_id, get_rate_limiter
from relay.app.providers.anthropic import AnthropicProvider
from relay.app.schemas import ChatRequest
from relay.app.services.error_normalizer import normalize_error
from relay.app.services.upstream import (
    STREAM_HEADERS,
    RelayConfig,
    StreamRelay,
    check_credential,
    relay,
)
from relay.app.services.validator import validate_chat_request

logger = get_logger(__name__)

router = APIRouter()


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise InvalidRequestError("Invalid JSON in request body")


def _requested_model(body: Any) -> Optional[str]:
    if isinstance(body, dict) and isinstance(body.get("model"), str):
        return body["model"]
    return None


async def handle_chat(
    request: Request,
    config: RelayConfig,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Response:
    """Run one chat request through the relay pipeline.

    Args:
        request: Incoming request
        config: Relay mode and limits
        http_client: Shared client for connection pooling, if the lifespan is active

    Returns:
        JSON envelope, SSE stream, or a normalized error response
    """
    start_time = time.perf_counter()
    client_id = get_client_id(request)
    model: Optional[str] = None

    try:
        if not get_rate_limiter().admit(client_id):
            raise RateLimitExceededError()

        body = await _read_json(request)
        model = _requested_model(body)

        result = validate_chat_request(
            body,
            max_tokens_min=config.max_tokens_min,
            max_tokens_limit=config.max_tokens_limit,
        )
        if not result:
            raise InvalidRequestError(result.reason)

        api_key = check_credential(settings.anthropic_api_key, settings.anthropic_api_key_prefix)
        provider = AnthropicProvider(api_key=api_key, http_client=http_client, timeout=config.timeout)

        outcome = await relay(
            provider,
            ChatRequest.from_payload(body),
            config,
            is_disconnected=request.is_disconnected,
            client_id=client_id,
        )
    except Exception as exc:
        return normalize_error(exc, client_id=client_id, model=model).to_response()

    if isinstance(outcome, StreamRelay):
        return StreamingResponse(
            outcome.events(),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )

    logger.info(
        "Request completed",
        extra=get_log_context(
            client_id=client_id,
            model=model,
            status_code=200,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        ),
    )
    return JSONResponse(content=outcome.body, headers=outcome.headers)


@router.post("/chat")
async def chat(
    request: Request,
    http_client: Optional[httpx.AsyncClient] = Depends(get_optional_http_client),
) -> Response:
    """Buffered relay: returns the provider's message envelope unchanged."""
    return await handle_chat(request, RelayConfig.from_settings(streaming=False), http_client)


@router.post("/chat/stream")
async def chat_stream(
    request: Request,
    http_client: Optional[httpx.AsyncClient] = Depends(get_optional_http_client),
) -> Response:
    """Streamed relay: text fragments as server-sent events, then ``[DONE]``."""
    return await handle_chat(request, RelayConfig.from_settings(streaming=True), http_client)
