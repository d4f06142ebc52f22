"""Upstream relay: one outbound call in buffered or streamed mode.

Buffered mode returns the provider's JSON envelope plus selected rate-limit
telemetry headers. Streamed mode relays text fragments to the caller as
server-sent events the moment they arrive, in provider order, ending with a
``[DONE]`` sentinel.

Stream lifecycle::

    IDLE --start()--> STREAMING --clean end--> COMPLETE
                          \\--upstream error / caller gone--> ABORTED

A failure during ``start()`` propagates so the handler can still answer
with a JSON error; once the first frame is sent the status line is
committed and a failure can only end the byte stream.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional

from relay.app.core.config import Settings, settings
from relay.app.core.logging import get_log_context, get_logger
from relay.app.exceptions import PayloadTooLargeError, ServerConfigurationError
from relay.app.providers.base import BaseProvider
from relay.app.schemas import ChatRequest

logger = get_logger(__name__)

DONE_EVENT = "data: [DONE]\n\n"

# Any of these ends a line in an event stream
SSE_LINE_BREAK = re.compile(r"\r\n|\r|\n")

# Provider telemetry header -> header exposed to the caller
RATE_LIMIT_HEADER_MAP = {
    "anthropic-ratelimit-requests-remaining": "X-RateLimit-Remaining",
    "anthropic-ratelimit-requests-reset": "X-RateLimit-Reset",
}

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@dataclass(frozen=True)
class RelayConfig:
    """Tunables for one relay mode.

    Buffered and streamed endpoints share one pipeline and differ only in
    these values.
    """
    streaming: bool = False
    max_tokens_min: int = 1
    max_tokens_limit: int = 8192
    default_max_tokens: int = 4096
    timeout: float = 60.0
    max_body_size: int = 50 * 1024 * 1024

    @classmethod
    def from_settings(cls, streaming: bool, config: Settings = settings) -> "RelayConfig":
        return cls(
            streaming=streaming,
            max_tokens_min=config.max_tokens_min,
            max_tokens_limit=config.max_tokens_limit,
            default_max_tokens=config.default_max_tokens,
            timeout=config.upstream_timeout,
            max_body_size=config.max_request_body_size,
        )


@dataclass
class BufferedResult:
    """Provider JSON envelope plus headers to copy onto the outward response."""
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


def check_credential(api_key: Optional[str], prefix: str) -> str:
    """Return the credential if it is usable, before any network call.

    Raises:
        ServerConfigurationError: If the key is missing or lacks the prefix
    """
    if not api_key:
        raise ServerConfigurationError("API key not configured on server")
    if prefix and not api_key.startswith(prefix):
        raise ServerConfigurationError("API key has invalid format")
    return api_key


def forward_rate_limit_headers(upstream_headers: Dict[str, str]) -> Dict[str, str]:
    """Pick the provider's rate-limit telemetry, renamed for the caller."""
    lowered = {k.lower(): v for k, v in upstream_headers.items()}
    return {
        outward: lowered[upstream]
        for upstream, outward in RATE_LIMIT_HEADER_MAP.items()
        if lowered.get(upstream)
    }


def build_upstream_payload(body: Dict[str, Any], default_max_tokens: int, stream: bool = False) -> Dict[str, Any]:
    """Provider payload for an already validated body."""
    return ChatRequest.from_payload(body).to_upstream_payload(default_max_tokens, stream=stream)


def _check_payload_size(payload: Dict[str, Any], max_body_size: int) -> None:
    size = len(json.dumps(payload, ensure_ascii=False).encode("utf-8"))
    if size > max_body_size:
        raise PayloadTooLargeError(
            f"Request body too large. Maximum allowed: {max_body_size} bytes"
        )


def format_sse_data(fragment: str) -> str:
    """Frame a text fragment as one SSE event.

    Each line of the fragment becomes its own ``data:`` field so embedded
    newlines cannot end the event early. CR, LF and CRLF all count as line
    breaks, matching how event-stream parsers split fields.
    """
    return "".join(f"data: {line}\n" for line in SSE_LINE_BREAK.split(fragment)) + "\n"


async def relay_buffered(
    provider: BaseProvider,
    payload: Dict[str, Any],
    timeout: Optional[float] = None,
) -> BufferedResult:
    """Issue one buffered call under a fixed deadline.

    Raises:
        httpx.HTTPStatusError: Provider returned an error status
        httpx.TransportError: Connection or read failure
        TimeoutError: Deadline expired; the pending call is cancelled
    """
    response = await asyncio.wait_for(provider.create_message(payload), timeout)
    return BufferedResult(
        body=response.body,
        headers=forward_rate_limit_headers(response.headers),
    )


class StreamState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ABORTED = "aborted"


class StreamRelay:
    """Relays provider text fragments to the caller without buffering them.

    Usage:
        stream = StreamRelay(provider.stream_text(payload), timeout=60)
        await stream.start()          # errors here are still JSON-able
        return StreamingResponse(stream.events(), media_type="text/event-stream")
    """

    def __init__(
        self,
        fragments: AsyncGenerator[str, None],
        timeout: Optional[float] = None,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
        client_id: Optional[str] = None,
        model: Optional[str] = None,
    ):
        """Initialize the relay.

        Args:
            fragments: Provider text fragments, in generation order
            timeout: Deadline for the provider to accept the call and send
                its first fragment
            is_disconnected: Checked before each frame; True stops pulling
                from the provider
            client_id: Rate-limit client identifier, for logging
            model: Requested model, for logging
        """
        self._fragments = fragments
        self._timeout = timeout
        self._is_disconnected = is_disconnected
        self.client_id = client_id
        self.model = model
        self.state = StreamState.IDLE
        self.fragments_sent = 0
        self._pending: Optional[str] = None
        self._exhausted = False

    async def _next_fragment(self) -> str:
        return await self._fragments.__anext__()

    async def start(self) -> None:
        """Open the provider stream and wait for its first fragment."""
        if self.state is not StreamState.IDLE:
            raise RuntimeError(f"Stream already started (state={self.state.value})")

        try:
            self._pending = await asyncio.wait_for(self._next_fragment(), self._timeout)
        except StopAsyncIteration:
            self._exhausted = True
        except BaseException:
            self.state = StreamState.ABORTED
            await self._close()
            raise

        self.state = StreamState.STREAMING

    async def _caller_gone(self) -> bool:
        if self._is_disconnected is None or not await self._is_disconnected():
            return False
        self.state = StreamState.ABORTED
        logger.info(
            "Caller disconnected, abandoning stream",
            extra=self._log_context(),
        )
        return True

    async def events(self) -> AsyncGenerator[str, None]:
        """Yield SSE frames, then the end-of-stream marker."""
        if self.state is not StreamState.STREAMING:
            raise RuntimeError(f"Stream not started (state={self.state.value})")

        try:
            if self._pending is not None:
                fragment, self._pending = self._pending, None
                if await self._caller_gone():
                    return
                yield format_sse_data(fragment)
                self.fragments_sent += 1

            if not self._exhausted:
                async for fragment in self._fragments:
                    if await self._caller_gone():
                        return
                    yield format_sse_data(fragment)
                    self.fragments_sent += 1

            yield DONE_EVENT
            self.state = StreamState.COMPLETE
            logger.info("Stream completed", extra=self._log_context())
        except Exception as exc:
            # Headers are already committed; all that is left is to stop.
            self.state = StreamState.ABORTED
            logger.error(
                f"Stream aborted by upstream failure: {type(exc).__name__}",
                extra=self._log_context(exception_type=type(exc).__name__),
            )
        finally:
            if self.state is StreamState.STREAMING:
                self.state = StreamState.ABORTED
            await self._close()

    async def _close(self) -> None:
        aclose = getattr(self._fragments, "aclose", None)
        if aclose is not None:
            await aclose()

    def _log_context(self, **extra) -> Dict[str, Any]:
        return get_log_context(
            client_id=self.client_id,
            model=self.model,
            stream_state=self.state.value,
            fragments_sent=self.fragments_sent,
            **extra,
        )


async def relay(
    provider: BaseProvider,
    chat_request: ChatRequest,
    config: RelayConfig,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    client_id: Optional[str] = None,
) -> BufferedResult | StreamRelay:
    """Forward one validated request in the mode ``config`` selects.

    Streamed results are returned already started, so any failure up to the
    first fragment surfaces here rather than inside the response body.
    """
    payload = chat_request.to_upstream_payload(config.default_max_tokens, stream=config.streaming)
    _check_payload_size(payload, config.max_body_size)

    logger.info(
        "Forwarding request to Claude API",
        extra=get_log_context(
            client_id=client_id,
            model=chat_request.model,
            max_tokens=payload.get("max_tokens"),
            streaming=config.streaming,
        ),
    )

    if not config.streaming:
        return await relay_buffered(provider, payload, config.timeout)

    stream = StreamRelay(
        provider.stream_text(payload),
        timeout=config.timeout,
        is_disconnected=is_disconnected,
        client_id=client_id,
        model=chat_request.model,
    )
    await stream.start()
    return stream
