"""End-to-end tests for the chat relay endpoints."""

import json

import httpx
import pytest
import respx
from httpx import Response

from relay.app.core.config import settings

MESSAGES_URL = "https://api.anthropic.com/v1/messages"

CORS = {
    "access-control-allow-origin": "*",
    "access-control-allow-methods": "POST, OPTIONS",
    "access-control-allow-headers": "Content-Type",
}

ENVELOPE = {
    "id": "msg_01",
    "type": "message",
    "role": "assistant",
    "model": "claude-sonnet-4-20250514",
    "content": [{"type": "text", "text": "Hello!"}],
    "stop_reason": "end_turn",
    "usage": {"input_tokens": 8, "output_tokens": 3},
}

SSE_BODY = (
    b'event: message_start\ndata: {"type": "message_start", "message": {"id": "msg_01"}}\n\n'
    b'event: content_block_delta\ndata: {"type": "content_block_delta", "index": 0, '
    b'"delta": {"type": "text_delta", "text": "He"}}\n\n'
    b'event: content_block_delta\ndata: {"type": "content_block_delta", "index": 0, '
    b'"delta": {"type": "text_delta", "text": "llo"}}\n\n'
    b'event: message_stop\ndata: {"type": "message_stop"}\n\n'
)


def anthropic_error(error_type, message):
    return {"type": "error", "error": {"type": error_type, "message": message}}


def assert_cors(response):
    for name, value in CORS.items():
        assert response.headers[name] == value


class TestBufferedChat:
    """POST /chat."""

    @respx.mock
    def test_returns_provider_envelope_unchanged(self, client, api_key, chat_body):
        route = respx.post(MESSAGES_URL).mock(return_value=Response(
            200, json=ENVELOPE, headers={"anthropic-ratelimit-requests-remaining": "49"}
        ))

        resp = client.post("/chat", json=chat_body)

        assert resp.status_code == 200
        assert resp.json() == ENVELOPE
        assert resp.headers["x-ratelimit-remaining"] == "49"
        assert_cors(resp)

        sent = route.calls.last.request
        assert sent.headers["x-api-key"] == api_key
        assert sent.headers["anthropic-version"] == settings.anthropic_version

    @respx.mock
    def test_default_max_tokens_injected(self, client, api_key, chat_body):
        route = respx.post(MESSAGES_URL).mock(return_value=Response(200, json=ENVELOPE))

        client.post("/chat", json=chat_body)

        assert json.loads(route.calls.last.request.content)["max_tokens"] == settings.default_max_tokens

    def test_missing_credential(self, client, monkeypatch, chat_body):
        monkeypatch.setattr(settings, "anthropic_api_key", "")

        with respx.mock(assert_all_called=False) as mock:
            route = mock.post(MESSAGES_URL)
            resp = client.post("/chat", json=chat_body)

        assert resp.status_code == 500
        assert resp.json() == {
            "error": "server_configuration_error",
            "message": "API key not configured on server",
        }
        assert not route.called
        assert_cors(resp)

    def test_malformed_credential(self, client, monkeypatch, chat_body):
        monkeypatch.setattr(settings, "anthropic_api_key", "sk-proj-abc")

        resp = client.post("/chat", json=chat_body)

        assert resp.status_code == 500
        assert resp.json()["message"] == "API key has invalid format"

    def test_validation_runs_before_credential_check(self, client, monkeypatch):
        monkeypatch.setattr(settings, "anthropic_api_key", "")

        resp = client.post("/chat", json={"model": "claude-sonnet-4-20250514", "messages": []})

        assert resp.status_code == 400
        assert resp.json() == {"error": "invalid_request", "message": "Messages array cannot be empty"}

    def test_invalid_json(self, client, api_key):
        resp = client.post("/chat", content=b"{not json", headers={"Content-Type": "application/json"})

        assert resp.status_code == 400
        assert resp.json() == {"error": "invalid_request", "message": "Invalid JSON in request body"}

    def test_invalid_model(self, client, api_key, chat_body):
        chat_body["model"] = "gpt-4"

        resp = client.post("/chat", json=chat_body)

        assert resp.status_code == 400
        assert resp.json()["message"].startswith("Invalid model")

    @respx.mock
    def test_upstream_rate_limit(self, client, api_key, chat_body):
        respx.post(MESSAGES_URL).mock(return_value=Response(
            429, json=anthropic_error("rate_limit_error", "Number of requests exceeded"),
            headers={"retry-after": "30"},
        ))

        resp = client.post("/chat", json=chat_body)

        assert resp.status_code == 429
        assert resp.json()["error"] == "rate_limit_exceeded"
        assert resp.json()["retry_after"] == "30"
        assert resp.headers["retry-after"] == "30"

    @respx.mock
    def test_upstream_overloaded(self, client, api_key, chat_body):
        respx.post(MESSAGES_URL).mock(return_value=Response(
            529, json=anthropic_error("overloaded_error", "Overloaded")
        ))

        resp = client.post("/chat", json=chat_body)

        assert resp.status_code == 503
        assert resp.json() == {
            "error": "service_unavailable",
            "message": "Claude API is experiencing high traffic",
            "retry_after": "60",
        }

    @respx.mock
    def test_upstream_rejects_credential(self, client, api_key, chat_body):
        respx.post(MESSAGES_URL).mock(return_value=Response(
            401, json=anthropic_error("authentication_error", "invalid x-api-key")
        ))

        resp = client.post("/chat", json=chat_body)

        assert resp.status_code == 401
        assert resp.json()["error"] == "authentication_failed"

    @respx.mock
    def test_connection_refused(self, client, api_key, chat_body):
        respx.post(MESSAGES_URL).mock(side_effect=httpx.ConnectError("Connection refused"))

        resp = client.post("/chat", json=chat_body)

        assert resp.status_code == 503
        assert resp.json()["error"] == "service_unavailable"
        assert_cors(resp)

    @respx.mock
    def test_upstream_timeout(self, client, api_key, chat_body):
        respx.post(MESSAGES_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        resp = client.post("/chat", json=chat_body)

        assert resp.status_code == 504
        assert resp.json()["error"] == "request_timeout"


class TestRateLimiting:
    def test_101st_request_rejected(self, client, monkeypatch, chat_body):
        monkeypatch.setattr(settings, "anthropic_api_key", "")

        statuses = [client.post("/chat", json=chat_body).status_code for _ in range(100)]
        resp = client.post("/chat", json=chat_body)

        assert statuses == [500] * 100
        assert resp.status_code == 429
        assert resp.headers["retry-after"] == "60"
        assert resp.json() == {
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please try again later.",
            "retry_after": "60",
        }
        assert_cors(resp)

    def test_limit_is_per_forwarded_client(self, client, monkeypatch, chat_body):
        monkeypatch.setattr(settings, "anthropic_api_key", "")
        for _ in range(100):
            client.post("/chat", json=chat_body, headers={"X-Forwarded-For": "198.51.100.1"})

        blocked = client.post("/chat", json=chat_body, headers={"X-Forwarded-For": "198.51.100.1"})
        other = client.post("/chat", json=chat_body, headers={"X-Forwarded-For": "198.51.100.2"})

        assert blocked.status_code == 429
        assert other.status_code == 500

    def test_streaming_shares_the_limit(self, client, monkeypatch, chat_body):
        monkeypatch.setattr(settings, "anthropic_api_key", "")
        for _ in range(100):
            client.post("/chat", json=chat_body)

        assert client.post("/chat/stream", json=chat_body).status_code == 429


class TestStreamingChat:
    """POST /chat/stream."""

    @respx.mock
    def test_relays_text_as_sse(self, client, api_key, chat_body):
        route = respx.post(MESSAGES_URL).mock(return_value=Response(
            200, content=SSE_BODY, headers={"content-type": "text/event-stream"}
        ))

        resp = client.post("/chat/stream", json=chat_body)

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"
        assert resp.headers["x-accel-buffering"] == "no"
        assert resp.text == "data: He\n\ndata: llo\n\ndata: [DONE]\n\n"
        assert_cors(resp)

        assert json.loads(route.calls.last.request.content)["stream"] is True

    @respx.mock
    def test_pre_stream_failure_is_json(self, client, api_key, chat_body):
        respx.post(MESSAGES_URL).mock(return_value=Response(
            529, json=anthropic_error("overloaded_error", "Overloaded")
        ))

        resp = client.post("/chat/stream", json=chat_body)

        assert resp.status_code == 503
        assert resp.headers["content-type"] == "application/json"
        assert resp.json()["error"] == "service_unavailable"

    @respx.mock
    def test_error_event_before_text_is_json(self, client, api_key, chat_body):
        body = b'event: error\ndata: {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}\n\n'
        respx.post(MESSAGES_URL).mock(return_value=Response(200, content=body))

        resp = client.post("/chat/stream", json=chat_body)

        assert resp.status_code == 503

    @respx.mock
    def test_mid_stream_error_ends_without_done(self, client, api_key, chat_body):
        body = (
            b'data: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "par"}}\n\n'
            b'data: {"type": "error", "error": {"type": "api_error", "message": "boom"}}\n\n'
        )
        respx.post(MESSAGES_URL).mock(return_value=Response(200, content=body))

        resp = client.post("/chat/stream", json=chat_body)

        assert resp.status_code == 200
        assert resp.text == "data: par\n\n"

    def test_validation_failure_is_json(self, client, api_key):
        resp = client.post("/chat/stream", json={"messages": [{"role": "user", "content": "hi"}]})

        assert resp.status_code == 400
        assert resp.json()["message"] == "Missing 'model' field"


class TestMethodsAndRouting:
    @pytest.mark.parametrize("path", ["/chat", "/chat/stream"])
    def test_get_not_allowed(self, client, path):
        resp = client.get(path)

        assert resp.status_code == 405
        assert resp.json() == {
            "error": "method_not_allowed",
            "message": "Only POST requests are supported",
        }
        assert_cors(resp)

    @pytest.mark.parametrize("path", ["/chat", "/chat/stream", "/anything"])
    def test_preflight(self, client, path):
        resp = client.options(path)

        assert resp.status_code == 204
        assert resp.content == b""
        assert_cors(resp)

    def test_unknown_path(self, client):
        resp = client.post("/nope", json={})

        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"
