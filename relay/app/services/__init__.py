"""Services package for the relay.

This package provides:
- Request validation
- Error normalization
- The upstream relay (buffered and streamed)
"""

from relay.app.services.error_normalizer import (
    NormalizedError,
    NormalizedResponse,
    normalize_error,
)
from relay.app.services.upstream import (
    BufferedResult,
    RelayConfig,
    StreamRelay,
    StreamState,
    check_credential,
    relay,
)
from relay.app.services.validator import ValidationResult, validate_chat_request

__all__ = [
    "NormalizedError",
    "NormalizedResponse",
    "normalize_error",
    "BufferedResult",
    "RelayConfig",
    "StreamRelay",
    "StreamState",
    "check_credential",
    "relay",
    "ValidationResult",
    "validate_chat_request",
]
