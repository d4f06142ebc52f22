from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, Optional

import httpx

from relay.app.core.http_client import create_http_client


@dataclass
class ProviderResponse:
    """A buffered provider reply: parsed JSON body plus response headers."""
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


class BaseProvider(ABC):
    """Base class for LLM providers.

    Subclasses can accept an external httpx.AsyncClient for connection pooling,
    or create their own per call if not provided.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0
    ):
        """Initialize the provider.

        Args:
            base_url: The API base URL
            api_key: The credential injected into every call
            http_client: Optional shared HTTP client for connection pooling
            timeout: Read timeout in seconds
        """
        self._http_client = http_client
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.headers = self._build_headers()

    @property
    def http_client(self) -> Optional[httpx.AsyncClient]:
        """Get the HTTP client, if one was provided."""
        return self._http_client

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    @asynccontextmanager
    async def _client_context(self):
        """Yield the shared client, or a per-call client closed on exit."""
        if self._http_client is not None:
            yield self._http_client
            return

        client = create_http_client(timeout=self.timeout)
        try:
            yield client
        finally:
            await client.aclose()

    def _get_endpoint_url(self, endpoint: str) -> str:
        return f"{self.base_url}{endpoint}"

    @abstractmethod
    async def create_message(self, payload: Dict[str, Any]) -> ProviderResponse:
        """Send a non-streaming request.

        Raises:
            httpx.HTTPStatusError: If the API returns an error status
        """

    @abstractmethod
    def stream_text(self, payload: Dict[str, Any]) -> AsyncGenerator[str, None]:
        """Send a streaming request, yielding generated text fragments in order.

        Closing the generator must release the upstream connection.
        """
