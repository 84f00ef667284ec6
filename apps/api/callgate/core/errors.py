"""Error types shared by the admission, TURN and push services."""
from __future__ import annotations


class CallgateError(RuntimeError):
    """Base class for errors raised by the call edge services."""


class ConfigurationError(CallgateError):
    """Raised when credentials or key material are missing or malformed."""


class InvalidInputError(CallgateError, ValueError):
    """Raised for caller input that is rejected before any network call."""


class ProviderError(CallgateError):
    """Raised when the OAuth or push provider fails or cannot be reached.

    ``status_code`` is ``None`` for transport failures (timeouts, DNS, resets).
    Nothing in this package retries; the caller owns the retry policy.
    """

    def __init__(self, message: str, *, status_code: int | None = None, body: bytes = b"") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitExceeded(CallgateError):
    """Raised by the admission dependency when a client has no tokens left."""

    def __init__(self, client_id: str) -> None:
        super().__init__(f"Rate limit exceeded for {client_id}")
        self.client_id = client_id
