"""Tests for the Claude Messages API provider."""

import json

import httpx
import pytest
import respx
from httpx import Response

from relay.app.exceptions import UpstreamStreamError
from relay.app.providers.anthropic import AnthropicProvider, iter_sse_events

BASE_URL = "https://api.anthropic.com"
MESSAGES_URL = f"{BASE_URL}/v1/messages"

PAYLOAD = {
    "model": "claude-sonnet-4-20250514",
    "messages": [{"role": "user", "content": "hi"}],
    "max_tokens": 4096,
}


def sse(*events):
    """Encode (event, data) pairs as an SSE body."""
    chunks = []
    for name, data in events:
        chunks.append(f"event: {name}\ndata: {json.dumps(data)}\n\n")
    return "".join(chunks).encode()


def text_delta(text):
    return ("content_block_delta", {
        "type": "content_block_delta",
        "index": 0,
        "delta": {"type": "text_delta", "text": text},
    })


MESSAGE_START = ("message_start", {"type": "message_start", "message": {"id": "msg_1"}})
MESSAGE_STOP = ("message_stop", {"type": "message_stop"})


@pytest.fixture
def provider():
    return AnthropicProvider(api_key="sk-ant-test", base_url=BASE_URL, timeout=5)


async def collect(fragments):
    return [f async for f in fragments]


class TestCreateMessage:
    """Buffered calls."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_sends_credential_and_version(self, provider):
        route = respx.post(MESSAGES_URL).mock(
            return_value=Response(200, json={"id": "msg_1", "content": []})
        )

        await provider.create_message(PAYLOAD)

        request = route.calls.last.request
        assert request.headers["x-api-key"] == "sk-ant-test"
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert request.headers["content-type"] == "application/json"
        assert "authorization" not in request.headers

    @respx.mock
    @pytest.mark.asyncio
    async def test_returns_envelope_and_headers(self, provider):
        envelope = {
            "id": "msg_1",
            "type": "message",
            "content": [{"type": "text", "text": "Hello"}],
            "usage": {"input_tokens": 3, "output_tokens": 1},
        }
        respx.post(MESSAGES_URL).mock(return_value=Response(
            200, json=envelope, headers={"anthropic-ratelimit-requests-remaining": "49"}
        ))

        result = await provider.create_message(PAYLOAD)

        assert result.body == envelope
        assert result.headers["anthropic-ratelimit-requests-remaining"] == "49"

    @respx.mock
    @pytest.mark.asyncio
    async def test_stream_flag_never_sent(self, provider):
        route = respx.post(MESSAGES_URL).mock(return_value=Response(200, json={}))

        await provider.create_message(dict(PAYLOAD, stream=True))

        assert "stream" not in json.loads(route.calls.last.request.content)

    @respx.mock
    @pytest.mark.asyncio
    async def test_error_status_raises(self, provider):
        respx.post(MESSAGES_URL).mock(return_value=Response(
            529, json={"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}
        ))

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await provider.create_message(PAYLOAD)

        assert exc_info.value.response.status_code == 529

    @respx.mock
    @pytest.mark.asyncio
    async def test_uses_shared_client(self):
        respx.post(MESSAGES_URL).mock(return_value=Response(200, json={"id": "msg_1"}))

        async with httpx.AsyncClient() as client:
            provider = AnthropicProvider(api_key="sk-ant-test", base_url=BASE_URL, http_client=client)
            result = await provider.create_message(PAYLOAD)
            assert not client.is_closed

        assert result.body == {"id": "msg_1"}


class TestStreamText:
    """Streamed calls."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_yields_text_deltas_in_order(self, provider):
        body = sse(MESSAGE_START, text_delta("He"), text_delta("llo"), MESSAGE_STOP)
        route = respx.post(MESSAGES_URL).mock(return_value=Response(
            200, content=body, headers={"content-type": "text/event-stream"}
        ))

        assert await collect(provider.stream_text(PAYLOAD)) == ["He", "llo"]
        assert json.loads(route.calls.last.request.content)["stream"] is True

    @respx.mock
    @pytest.mark.asyncio
    async def test_ignores_non_text_events(self, provider):
        body = sse(
            MESSAGE_START,
            ("content_block_start", {"type": "content_block_start", "index": 0}),
            ("ping", {"type": "ping"}),
            ("content_block_delta", {
                "type": "content_block_delta",
                "delta": {"type": "input_json_delta", "partial_json": "{}"},
            }),
            text_delta("ok"),
            ("message_delta", {"type": "message_delta", "delta": {"stop_reason": "end_turn"}}),
            MESSAGE_STOP,
        )
        respx.post(MESSAGES_URL).mock(return_value=Response(200, content=body))

        assert await collect(provider.stream_text(PAYLOAD)) == ["ok"]

    @respx.mock
    @pytest.mark.asyncio
    async def test_stops_at_message_stop(self, provider):
        body = sse(text_delta("a"), MESSAGE_STOP, text_delta("never"))
        respx.post(MESSAGES_URL).mock(return_value=Response(200, content=body))

        assert await collect(provider.stream_text(PAYLOAD)) == ["a"]

    @respx.mock
    @pytest.mark.asyncio
    async def test_error_event_raises(self, provider):
        body = sse(
            text_delta("par"),
            ("error", {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}),
        )
        respx.post(MESSAGES_URL).mock(return_value=Response(200, content=body))

        fragments = []
        with pytest.raises(UpstreamStreamError) as exc_info:
            async for fragment in provider.stream_text(PAYLOAD):
                fragments.append(fragment)

        assert fragments == ["par"]
        assert exc_info.value.error_type == "overloaded_error"
        assert exc_info.value.message == "Overloaded"

    @respx.mock
    @pytest.mark.asyncio
    async def test_error_status_raises_with_readable_body(self, provider):
        respx.post(MESSAGES_URL).mock(return_value=Response(
            401, json={"type": "error", "error": {"type": "authentication_error", "message": "bad key"}}
        ))

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await collect(provider.stream_text(PAYLOAD))

        assert exc_info.value.response.json()["error"]["type"] == "authentication_error"

    @respx.mock
    @pytest.mark.asyncio
    async def test_skips_unparsable_data(self, provider):
        body = b"event: content_block_delta\ndata: {not json\n\n" + sse(text_delta("x"), MESSAGE_STOP)
        respx.post(MESSAGES_URL).mock(return_value=Response(200, content=body))

        assert await collect(provider.stream_text(PAYLOAD)) == ["x"]


class TestIterSseEvents:
    @staticmethod
    async def lines(*items):
        for item in items:
            yield item

    @pytest.mark.asyncio
    async def test_groups_event_and_data(self):
        events = await collect(iter_sse_events(self.lines(
            "event: ping", "data: {}", "",
            ": comment", "data: a", "data: b", "",
        )))
        assert events == [("ping", "{}"), (None, "a\nb")]

    @pytest.mark.asyncio
    async def test_flushes_trailing_event(self):
        events = await collect(iter_sse_events(self.lines("data:x")))
        assert events == [(None, "x")]
