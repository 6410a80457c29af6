"""Feed error hierarchy.

Every failure surfaced by the streaming client is a ``FeedError`` carrying a
short machine-readable ``code`` that mirrors the provider's error codes.
"""


class FeedError(Exception):
    """Base class for streaming feed failures."""

    code = "FEED_ERROR"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class FeedConnectionError(FeedError):
    """Transport-level failure; the client reconnects with backoff."""

    code = "CONNECTION_ERROR"


class NotConnected(FeedError):
    """A request was issued while the socket was down. Nothing is queued."""

    code = "NOT_CONNECTED"


class ConnectionLost(FeedError):
    """The socket closed while the request was still outstanding."""

    code = "CONNECTION_LOST"


class RequestTimeout(FeedError):
    """No response carrying the request's correlation id arrived in time."""

    code = "TIMEOUT"


class MalformedMessage(FeedError):
    """An inbound frame could not be decoded. The frame is dropped."""

    code = "MALFORMED_MESSAGE"


class SubscriptionError(FeedError):
    """The provider refused a tick subscription."""

    code = "SUBSCRIPTION_ERROR"


class ProviderError(FeedError):
    """An ``{"error": {...}}`` payload returned by the provider."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code

    @classmethod
    def from_payload(cls, payload: dict) -> "ProviderError":
        error = payload.get("error") or {}
        return cls(str(error.get("code", "UNKNOWN")), str(error.get("message", "")))
