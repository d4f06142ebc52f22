"""Typed records for chat requests.

These are built only after the request validator has accepted a payload;
the validator stays the single authority on shape.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """Message in a chat conversation."""
    role: Literal["user", "assistant"]
    # Plain text or a list of content blocks (text, image)
    content: str | list[Any]


class ChatRequest(BaseModel):
    """One validated LLM call request.

    Fields the relay does not interpret (system, stop_sequences, ...) are
    kept as extras and forwarded unchanged.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    model: str
    messages: list[ChatMessage] = Field(..., min_length=1)
    max_tokens: int | None = None
    temperature: float | None = None

    @classmethod
    def from_payload(cls, body: dict[str, Any]) -> "ChatRequest":
        """Build from a validated body, folding the camelCase token alias."""
        data = dict(body)
        alias = data.pop("maxTokens", None)
        if data.get("max_tokens") is None and alias is not None:
            data["max_tokens"] = alias
        return cls.model_validate(data)

    def to_upstream_payload(self, default_max_tokens: int, stream: bool = False) -> dict[str, Any]:
        """Provider payload: always carries max_tokens, never the alias."""
        payload = self.model_dump(exclude_none=True)
        payload.setdefault("max_tokens", default_max_tokens)
        if stream:
            payload["stream"] = True
        else:
            payload.pop("stream", None)
        return payload
