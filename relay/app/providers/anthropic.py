"""Anthropic Messages API provider.

Buffered calls return the provider's native message envelope untouched;
streaming calls turn the provider's server-sent events into plain text
fragments.
"""

import json
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional, Tuple

import httpx

from relay.app.core.config import settings
from relay.app.core.http_client import build_timeout
from relay.app.core.logging import get_logger
from relay.app.exceptions import UpstreamStreamError
from relay.app.providers.base import BaseProvider, ProviderResponse

logger = get_logger(__name__)

MESSAGES_ENDPOINT = "/v1/messages"


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncGenerator[Tuple[Optional[str], str], None]:
    """Group SSE lines into ``(event, data)`` pairs.

    Multiple ``data:`` lines of one event are joined with newlines, and
    comment lines are skipped.
    """
    event_name: Optional[str] = None
    data_lines: list[str] = []

    async for line in lines:
        if not line:
            if data_lines:
                yield event_name, "\n".join(data_lines)
            event_name = None
            data_lines = []
            continue
        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event_name = value
        elif name == "data":
            data_lines.append(value)

    if data_lines:
        yield event_name, "\n".join(data_lines)


class AnthropicProvider(BaseProvider):
    """Claude provider with support for shared HTTP client connection pooling."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None
    ):
        self.api_version = api_version or settings.anthropic_version
        super().__init__(
            base_url or settings.anthropic_base_url,
            api_key,
            http_client,
            timeout if timeout is not None else settings.upstream_timeout,
        )

    def _build_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

    async def create_message(self, payload: Dict[str, Any]) -> ProviderResponse:
        """Send a non-streaming message request.

        Raises:
            httpx.HTTPStatusError: If the API returns an error status
        """
        url = self._get_endpoint_url(MESSAGES_ENDPOINT)
        body = {k: v for k, v in payload.items() if k != "stream"}

        async with self._client_context() as client:
            resp = await client.post(
                url, headers=self.headers, json=body, timeout=build_timeout(self.timeout)
            )
            resp.raise_for_status()
            return ProviderResponse(body=resp.json(), headers=dict(resp.headers))

    async def stream_text(self, payload: Dict[str, Any]) -> AsyncGenerator[str, None]:
        """Send a streaming message request, yielding text fragments.

        Raises:
            httpx.HTTPStatusError: If the API rejects the call (body is read first)
            UpstreamStreamError: If the provider sends an error event mid-stream
        """
        url = self._get_endpoint_url(MESSAGES_ENDPOINT)
        body = dict(payload, stream=True)

        async with self._client_context() as client:
            async with client.stream(
                "POST", url, headers=self.headers, json=body, timeout=build_timeout(self.timeout)
            ) as resp:
                if resp.is_error:
                    await resp.aread()
                    resp.raise_for_status()

                async for event_name, data in iter_sse_events(resp.aiter_lines()):
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug(
                            "Skipping unparsable stream event",
                            extra={"event": event_name, "data_preview": data[:100]},
                        )
                        continue
                    if not isinstance(event, dict):
                        continue

                    event_type = event.get("type") or event_name

                    if event_type == "content_block_delta":
                        delta = event.get("delta") or {}
                        if delta.get("type") == "text_delta" and delta.get("text"):
                            yield delta["text"]
                    elif event_type == "error":
                        error = event.get("error") or {}
                        raise UpstreamStreamError(error.get("type"), error.get("message"))
                    elif event_type == "message_stop":
                        return
