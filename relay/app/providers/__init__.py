"""LLM providers package for the relay.

This package provides:
- Base provider interface (BaseProvider, ProviderResponse)
- The Claude Messages API implementation (AnthropicProvider)
"""

from relay.app.providers.anthropic import AnthropicProvider, iter_sse_events
from relay.app.providers.base import BaseProvider, ProviderResponse

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "ProviderResponse",
    "iter_sse_events",
]
