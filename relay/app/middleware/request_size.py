"""Request body size limit middleware.

Rejects bodies larger than the configured bound with a normalized 413
before the handler parses them. Enforced for both Content-Length and
chunked transfer encoding.
"""

import json

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from relay.app.exceptions import PayloadTooLargeError


class SizeLimitedStream:
    """Wraps the ASGI receive callable and counts body bytes as they arrive."""

    class SizeExceededError(PayloadTooLargeError):
        """Raised when request body exceeds size limit.

        A RelayError, so a handler reading the body when the limit trips
        answers with the same 413 the middleware would.
        """

    def __init__(self, receive: Receive, max_size: int):
        self._receive = receive
        self._max_size = max_size
        self._bytes_read = 0

    async def receive(self) -> Message:
        message = await self._receive()

        if message["type"] == "http.request":
            self._bytes_read += len(message.get("body", b""))
            if self._bytes_read > self._max_size:
                raise self.SizeExceededError(
                    f"Request body too large. Maximum allowed: {self._max_size} bytes"
                )

        return message


class RequestSizeLimitMiddleware:
    """ASGI middleware to limit request body size.

    Uses raw ASGI so the receive callable is wrapped before Starlette's
    Request is constructed.

    Usage:
        app.add_middleware(RequestSizeLimitMiddleware, max_body_size=50*1024*1024)
    """

    def __init__(self, app: ASGIApp, max_body_size: int = 50 * 1024 * 1024):
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # Fast path: reject on declared Content-Length without reading the body
        for name, value in scope.get("headers", []):
            if name.lower() == b"content-length":
                try:
                    if int(value.decode()) > self.max_body_size:
                        await self._send_413_response(send)
                        return
                except ValueError:
                    pass
                break

        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        limited = SizeLimitedStream(receive, self.max_body_size)

        try:
            await self.app(scope, limited.receive, tracking_send)
        except SizeLimitedStream.SizeExceededError as exc:
            if response_started:
                raise
            await self._send_413_response(send, detail=str(exc))

    async def _send_413_response(self, send: Send, detail: str | None = None) -> None:
        if detail is None:
            detail = f"Request body too large. Maximum allowed: {self.max_body_size} bytes"

        body = json.dumps({"error": "payload_too_large", "message": detail}).encode()
        await send({
            "type": "http.response.start",
            "status": 413,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(body)).encode()),
            ],
        })
        await send({"type": "http.response.body", "body": body})
