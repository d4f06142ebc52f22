"""Request validation for chat payloads.

Pure checks run before any network call. Rules are evaluated in order and
the first failure wins; its reason is returned to the caller verbatim as
the ``message`` of a 400 response.
"""

from dataclasses import dataclass
from numbers import Real
from typing import Any, Iterable, Optional

from relay.app.core.config import settings

ALLOWED_ROLES = ("user", "assistant")


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one payload."""
    valid: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


VALID = ValidationResult(valid=True)


def _invalid(reason: str) -> ValidationResult:
    return ValidationResult(valid=False, reason=reason)


def get_max_tokens(body: dict[str, Any]) -> Any:
    """Token bound from either spelling; snake_case wins when both are set."""
    value = body.get("max_tokens")
    if value is None:
        value = body.get("maxTokens")
    return value


def _validate_message(message: Any) -> Optional[str]:
    if not isinstance(message, dict):
        return "Each message must have 'role' and 'content'"

    role = message.get("role")
    content = message.get("content")
    if not role or not content:
        return "Each message must have 'role' and 'content'"
    if role not in ALLOWED_ROLES:
        return "Message role must be 'user' or 'assistant'"
    if not isinstance(content, (str, list)):
        return "Message content must be a string or a list of content blocks"
    return None


def validate_chat_request(
    body: Any,
    allowed_models: Optional[Iterable[str]] = None,
    max_tokens_min: Optional[int] = None,
    max_tokens_limit: Optional[int] = None,
) -> ValidationResult:
    """Check a parsed request body against the provider's constraints.

    Args:
        body: Parsed JSON body, of any shape
        allowed_models: Permitted model identifiers (defaults to settings)
        max_tokens_min: Inclusive lower token bound (defaults to settings)
        max_tokens_limit: Inclusive upper token bound (defaults to settings)

    Returns:
        ValidationResult; ``reason`` is set when ``valid`` is False
    """
    models = list(allowed_models) if allowed_models is not None else settings.allowed_models
    low = max_tokens_min if max_tokens_min is not None else settings.max_tokens_min
    high = max_tokens_limit if max_tokens_limit is not None else settings.max_tokens_limit

    if not isinstance(body, dict):
        return _invalid("Missing or invalid 'messages' array")

    messages = body.get("messages")
    if not isinstance(messages, list):
        return _invalid("Missing or invalid 'messages' array")

    if not messages:
        return _invalid("Messages array cannot be empty")

    for message in messages:
        reason = _validate_message(message)
        if reason:
            return _invalid(reason)

    model = body.get("model")
    if not model:
        return _invalid("Missing 'model' field")

    if not isinstance(model, str) or model not in models:
        return _invalid(f"Invalid model. Allowed models: {', '.join(models)}")

    max_tokens = get_max_tokens(body)
    if max_tokens is not None:
        if isinstance(max_tokens, bool) or not isinstance(max_tokens, int):
            return _invalid(f"max_tokens must be an integer between {low} and {high}")
        if max_tokens < low or max_tokens > high:
            return _invalid(f"max_tokens must be between {low} and {high}")

    temperature = body.get("temperature")
    if temperature is not None:
        if isinstance(temperature, bool) or not isinstance(temperature, Real):
            return _invalid("temperature must be a number between 0 and 1")
        if not 0 <= temperature <= 1:
            return _invalid("temperature must be a number between 0 and 1")

    return VALID
