"""Exceptions raised by misanthropy.

Everything derives from :class:`MisanthropyError`, so callers can tell
error kinds apart with ``except`` clauses instead of string matching.
"""


class MisanthropyError(Exception):
    """Base exception for misanthropy."""

    pass


class ConfigurationError(MisanthropyError):
    """Missing or invalid client configuration (e.g. no API key)."""

    pass


class DecodeError(MisanthropyError):
    """A raw stream frame could not be mapped to a known event shape."""

    pass


class ProtocolViolation(MisanthropyError):
    """The event sequence broke the streaming protocol's ordering rules."""

    pass


class ToolInputParseError(MisanthropyError):
    """A tool-use block's accumulated input was not a JSON object."""

    def __init__(self, index: int, buffer: str, reason: str):
        self.index = index
        self.buffer = buffer
        super().__init__(
            f"Invalid tool input JSON in content block {index}: {reason}"
        )


class UpstreamError(MisanthropyError):
    """An error reported by the API itself.

    Args:
        kind: The API's error type, e.g. ``"overloaded_error"``.
        message: Human-readable message from the API.
    """

    def __init__(self, kind: str, message: str = ""):
        self.kind = kind
        self.message = message
        detail = f": {message}" if message else ""
        super().__init__(f"API error ({kind}){detail}")


class RateLimitExceeded(UpstreamError):
    """The API rejected the request for exceeding a rate limit."""

    def __init__(self, message: str = ""):
        super().__init__("rate_limit_error", message)


class Unauthorized(UpstreamError):
    """The API key was missing or rejected."""

    def __init__(self, message: str = ""):
        super().__init__("authentication_error", message)


class BadRequest(UpstreamError):
    """The API rejected the request as malformed."""

    def __init__(self, message: str = ""):
        super().__init__("invalid_request_error", message)


class TransportError(MisanthropyError):
    """The HTTP transport failed (connection reset, timeout, ...)."""

    pass


_UPSTREAM_KINDS: dict[str, type[UpstreamError]] = {
    "rate_limit_error": RateLimitExceeded,
    "authentication_error": Unauthorized,
    "invalid_request_error": BadRequest,
}


def upstream_error(kind: str, message: str = "") -> UpstreamError:
    """Build the :class:`UpstreamError` subclass matching an API error type."""
    cls = _UPSTREAM_KINDS.get(kind)
    if cls is None:
        return UpstreamError(kind, message)
    return cls(message)
