"""
Exception taxonomy shared by every FilterProxy layer.

Each class maps to exactly one session reaction:

    ProtocolParseError   → 400 Bad Request (client side) / abort (upstream)
    PolicyViolation      → 403 Forbidden or 503 Service Unavailable
    UpstreamUnreachable  → 502 Bad Gateway
    TransportFailure     → silent abort, sockets closed
"""


class ProxyError(Exception):
    """Base class for all FilterProxy errors."""


# ── malformed input ──────────────────────────────────────────────
class ProtocolParseError(ProxyError, ValueError):
    """Malformed request/status line, header block or body framing."""


class LineTooLong(ProtocolParseError):
    pass


class HeaderTooLarge(ProtocolParseError):
    pass


class ChunkFramingError(ProtocolParseError):
    pass


class BodyTooLarge(ProtocolParseError):
    pass


# ── content policy ───────────────────────────────────────────────
class PolicyViolation(ProxyError):
    """A forbidden host or word was found."""

    def __init__(self, reason: str, match: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.match  = match


class ForbiddenContent(PolicyViolation):
    """Raised by the body framer the moment a forbidden word shows up."""

    def __init__(self, word: str):
        super().__init__(f"forbidden word {word!r} in body", word)


# ── network ──────────────────────────────────────────────────────
class UpstreamUnreachable(ProxyError, ConnectionError):
    """Name resolution or every connection attempt failed."""

    def __init__(self, host: str, port: int, cause: Exception | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"cannot reach {host}:{port}{detail}")
        self.host  = host
        self.port  = port
        self.cause = cause


class TransportFailure(ProxyError, ConnectionError):
    """Read/write failure, peer close mid-message, or timeout."""
