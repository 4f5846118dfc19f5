"""
HTTP body framing with incremental content inspection.

A body is read in one of three ways, chosen from the message headers:

    Chunked          – <hex size>[;ext]\\r\\n <data>\\r\\n ... 0\\r\\n <trailers> \\r\\n
    ContentLength(n) – exactly n bytes
    UntilClose       – everything until the peer closes

Two streams come out of every read:

* **raw**     – the bytes exactly as received (chunk framing and
  trailers included) so the message can be re-emitted unchanged;
* **decoded** – the payload only, which is what the policy looks at.

The policy is re-checked after every chunk/read.  The moment a forbidden
word appears the read stops and ``ForbiddenContent`` is raised; the rest
of the body is never drained.
"""

import logging
import re
from dataclasses import dataclass

from config.settings import Settings
from core.policy     import PolicyStore
from traffic.message import HeaderBlock
from utils.errors    import (BodyTooLarge, ChunkFramingError,
                             ForbiddenContent, HeaderTooLarge)
from utils.framing   import SocketStream, WIRE_ENCODING

logger = logging.getLogger("FilterProxy.Framer")

_HEX_SIZE = re.compile(r"[0-9A-Fa-f]+")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Body encoding
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class BodyEncoding:
    """How a message body is delimited."""

    CHUNKED        = "chunked"
    CONTENT_LENGTH = "content-length"
    UNTIL_CLOSE    = "until-close"
    NONE           = "none"

    def __init__(self, kind: str, length: int | None = None):
        self.kind   = kind
        self.length = length

    @classmethod
    def chunked(cls) -> "BodyEncoding":
        return cls(cls.CHUNKED)

    @classmethod
    def content_length(cls, n: int) -> "BodyEncoding":
        return cls(cls.CONTENT_LENGTH, n)

    @classmethod
    def until_close(cls) -> "BodyEncoding":
        return cls(cls.UNTIL_CLOSE)

    @classmethod
    def none(cls) -> "BodyEncoding":
        return cls(cls.NONE)

    @classmethod
    def from_headers(cls, headers: HeaderBlock,
                     fallback: str = UNTIL_CLOSE) -> "BodyEncoding":
        """
        ``Transfer-Encoding: ...chunked`` wins; otherwise a parseable
        ``Content-Length``; otherwise *fallback*.
        """
        te = (headers.get("transfer-encoding") or "").lower()
        if "chunked" in te:
            return cls.chunked()
        cl = (headers.get("content-length") or "").strip()
        if cl.isascii() and cl.isdigit():
            return cls.content_length(int(cl))
        return cls(fallback)

    @classmethod
    def for_request(cls, headers: HeaderBlock) -> "BodyEncoding":
        # a request never runs until close: no length means no body
        return cls.from_headers(headers, fallback=cls.NONE)

    @classmethod
    def for_response(cls, request_method: str, status_code: int,
                     headers: HeaderBlock) -> "BodyEncoding":
        if (request_method.upper() == "HEAD"
                or 100 <= status_code < 200
                or status_code in (204, 304)):
            return cls.none()
        return cls.from_headers(headers, fallback=cls.UNTIL_CLOSE)

    def __eq__(self, other) -> bool:
        if not isinstance(other, BodyEncoding):
            return NotImplemented
        return (self.kind, self.length) == (other.kind, other.length)

    def __hash__(self) -> int:
        return hash((self.kind, self.length))

    def __repr__(self) -> str:
        if self.kind == self.CONTENT_LENGTH:
            return f"ContentLength({self.length})"
        return {
            self.CHUNKED:     "Chunked",
            self.UNTIL_CLOSE: "UntilClose",
            self.NONE:        "NoBody",
        }[self.kind]


@dataclass(frozen=True)
class Body:
    raw:     bytes = b""
    decoded: bytes = b""


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Framer
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class BodyFramer:
    """
    Reads one message body from *stream*, checking it against *policy*.

    Parameters
    ----------
    stream : SocketStream
        Stream positioned right after the header block.
    policy : PolicyStore
        Forbidden words to look for in the decoded payload.
    chunk_size : int
        Upper bound for a single read in length/close-delimited mode.
    max_body_size : int
        Hard cap on the decoded payload size.
    """

    def __init__(self, stream: SocketStream, policy: PolicyStore,
                 chunk_size: int = Settings.BUFFER_SIZE,
                 max_body_size: int = Settings.MAX_BODY_SIZE):
        self.stream        = stream
        self.policy        = policy
        self.chunk_size    = chunk_size
        self.max_body_size = max_body_size

        self._raw       = bytearray()
        self._decoded   = bytearray()
        self._inspected = 0

    # ── public entry point ───────────────────────────────────────
    def read(self, encoding: BodyEncoding) -> Body:
        self._raw.clear()
        self._decoded.clear()
        self._inspected = 0

        if encoding.kind == BodyEncoding.CHUNKED:
            self._read_chunked()
        elif encoding.kind == BodyEncoding.CONTENT_LENGTH:
            self._read_content_length(encoding.length)
        elif encoding.kind == BodyEncoding.UNTIL_CLOSE:
            self._read_until_close()

        return Body(bytes(self._raw), bytes(self._decoded))

    # ── strategies ───────────────────────────────────────────────
    def _read_chunked(self):
        while True:
            size_line = self.stream.recv_line(Settings.MAX_LINE_SIZE)
            self._raw += (size_line + "\r\n").encode(WIRE_ENCODING)

            size_s = size_line.split(";", 1)[0].strip()
            if not _HEX_SIZE.fullmatch(size_s):
                raise ChunkFramingError(f"bad chunk size line: {size_line!r}")
            size = int(size_s, 16)

            if size == 0:
                self._read_trailers()
                return

            if len(self._decoded) + size > self.max_body_size:
                raise BodyTooLarge(
                    f"body exceeds {self.max_body_size} bytes"
                )
            data = self.stream.recv_exact(size)
            if self.stream.recv_exact(2) != b"\r\n":
                raise ChunkFramingError("missing CRLF after chunk data")
            self._raw     += data
            self._raw     += b"\r\n"
            self._decoded += data
            self._inspect()

    def _read_trailers(self):
        trailer_size = 0
        while True:
            line = self.stream.recv_line(Settings.MAX_LINE_SIZE)
            self._raw += (line + "\r\n").encode(WIRE_ENCODING)
            if not line:
                return
            trailer_size += len(line) + 2
            if trailer_size > Settings.MAX_HEADER_SIZE:
                raise HeaderTooLarge("chunked trailers too large")

    def _read_content_length(self, length: int):
        if length > self.max_body_size:
            raise BodyTooLarge(f"Content-Length {length} exceeds limit")
        remaining = length
        while remaining > 0:
            data = self.stream.recv_exact(min(remaining, self.chunk_size))
            self._raw     += data
            self._decoded += data
            remaining     -= len(data)
            self._inspect()

    def _read_until_close(self):
        while True:
            data = self.stream.recv_some(self.chunk_size)
            if not data:
                return
            self._raw     += data
            self._decoded += data
            if len(self._decoded) > self.max_body_size:
                raise BodyTooLarge(
                    f"body exceeds {self.max_body_size} bytes"
                )
            self._inspect()

    # ── inspection ───────────────────────────────────────────────
    def _inspect(self):
        """Scan only what is new, plus enough overlap for split words."""
        overlap = max(self.policy.longest_word - 1, 0)
        start   = max(self._inspected - overlap, 0)
        word    = self.policy.find_forbidden_word(self._decoded[start:])
        self._inspected = len(self._decoded)
        if word is not None:
            logger.debug("Forbidden word %r after %d body bytes",
                         word, len(self._decoded))
            raise ForbiddenContent(word)
