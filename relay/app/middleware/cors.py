"""Fixed CORS policy for the plugin client.

The client runs in a sandboxed origin, so every response allows any
origin and preflight requests are answered before routing. Starlette's
CORSMiddleware only reacts when an Origin header is present; this
middleware stamps the headers unconditionally.
"""

from starlette.types import ASGIApp, Message, Receive, Scope, Send


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_RAW_CORS_HEADERS = [
    (name.lower().encode("latin-1"), value.encode("latin-1"))
    for name, value in CORS_HEADERS.items()
]


class CORSHeadersMiddleware:
    """ASGI middleware adding CORS headers to every HTTP response.

    OPTIONS requests on any path get an empty 204 without reaching the app.

    Usage:
        app.add_middleware(CORSHeadersMiddleware)
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            await send({
                "type": "http.response.start",
                "status": 204,
                "headers": list(_RAW_CORS_HEADERS),
            })
            await send({"type": "http.response.body", "body": b""})
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                existing = {name.lower() for name, _ in message.get("headers", [])}
                headers = list(message.get("headers", []))
                headers.extend(h for h in _RAW_CORS_HEADERS if h[0] not in existing)
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_cors)
