"""Custom exceptions for the relay application."""


class RelayError(Exception):
    """Base class for relay exceptions with HTTP status code and error kind.

    All custom exceptions inherit from this class and define their
    status_code and error kind so the error normalizer can turn them into a
    response without inspecting the message.
    """
    status_code: int = 500
    error: str = "internal_server_error"
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: str | None = None, retry_after: str | None = None):
        self.message = message or self.default_message
        self.retry_after = retry_after
        super().__init__(self.message)


class InvalidRequestError(RelayError):
    """Raised when a payload fails validation.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    error = "invalid_request"
    default_message = "Invalid request"


class MethodNotAllowedError(RelayError):
    """Raised for any verb other than POST on a chat endpoint.

    Maps to HTTP 405 Method Not Allowed.
    """
    status_code = 405
    error = "method_not_allowed"
    default_message = "Only POST requests are supported"


class PayloadTooLargeError(RelayError):
    """Raised when a request body exceeds the configured size bound.

    Maps to HTTP 413 Payload Too Large.
    """
    status_code = 413
    error = "payload_too_large"
    default_message = "Request body too large"


class RateLimitExceededError(RelayError):
    """Raised when the local limiter rejects a client.

    Maps to HTTP 429 Too Many Requests. The retry hint is fixed at the
    window length the caller should wait out.
    """
    status_code = 429
    error = "rate_limit_exceeded"
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: str | None = None, retry_after: str | None = "60"):
        super().__init__(message, retry_after=retry_after)


class ServerConfigurationError(RelayError):
    """Raised when the provider credential is missing or malformed.

    Detected before any network call. Maps to HTTP 500.
    """
    status_code = 500
    error = "server_configuration_error"
    default_message = "API key not configured on server"


class UpstreamStreamError(RelayError):
    """Raised when the provider reports an error event inside a token stream.

    The provider's error type travels in ``error_type``; the normalizer
    decides the outward status from it.
    """
    status_code = 502
    error = "api_error"
    default_message = "Upstream stream error"

    def __init__(self, error_type: str | None = None, message: str | None = None):
        self.error_type = error_type or "api_error"
        super().__init__(message)
