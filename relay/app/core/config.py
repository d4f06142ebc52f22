import json
import re
from typing import Annotated, Any

from pydantic import model_validator, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_ALLOWED_MODELS = [
    # Claude 4.x
    "claude-sonnet-4-5-20250929",
    "claude-haiku-4-5-20251001",
    "claude-opus-4-1-20250805",
    "claude-sonnet-4-20250514",
    "claude-opus-4-20250514",
    # Legacy Claude 3.x
    "claude-3-7-sonnet-20250219",
    "claude-3-5-haiku-20241022",
    "claude-3-haiku-20240307",
]


def _parse_model_list(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but tolerate comma or whitespace separated values.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    parts = [p for p in re.split(r"[,\s]+", raw) if p]

    # Deduplicate while preserving order.
    seen: set[str] = set()
    result: list[str] = []
    for part in parts:
        if part in seen:
            continue
        seen.add(part)
        result.append(part)
    return result


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Values are read once when the module is imported.
    """

    # Debug mode - enables exception details in 500 responses
    debug: bool = False

    # Anthropic settings
    anthropic_api_key: str = ""
    anthropic_api_key_prefix: str = "sk-ant-"
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"

    # Outbound call deadline in seconds (applies to the buffered call and to
    # the first streamed fragment)
    upstream_timeout: float = 60.0

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_write_timeout: float = 30.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Body size bound (embedded images can be large)
    max_request_body_size: int = 50 * 1024 * 1024

    # Rate limiting settings (per process, fixed window)
    rate_limit_requests: int = 100
    rate_limit_window_ms: int = 60000
    rate_limit_max_entries: int = 10000

    # Request validation
    # Use NoDecode so a plain comma separated value does not crash JSON decoding.
    allowed_models: Annotated[list[str], NoDecode] = DEFAULT_ALLOWED_MODELS
    max_tokens_min: int = 1
    max_tokens_limit: int = 8192
    default_max_tokens: int = 4096

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("allowed_models", mode="before")
    @classmethod
    def decode_allowed_models(cls, v: Any) -> list[str]:
        return _parse_model_list(v)

    @field_validator("rate_limit_requests", "rate_limit_window_ms", "rate_limit_max_entries")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("upstream_timeout", "httpx_connect_timeout", "httpx_write_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("max_tokens_min", "max_tokens_limit", "default_max_tokens", "max_request_body_size")
    @classmethod
    def validate_bounds_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Size and token bounds must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_token_range(self) -> "Settings":
        """Ensure the token range is ordered and contains the default."""
        if self.max_tokens_min > self.max_tokens_limit:
            raise ValueError("max_tokens_min must not exceed max_tokens_limit")
        if not self.max_tokens_min <= self.default_max_tokens <= self.max_tokens_limit:
            raise ValueError("default_max_tokens must lie within the max_tokens range")
        return self

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
