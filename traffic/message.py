"""
HTTP/1.x message heads: request/status lines, header blocks, targets.

Header lines are kept verbatim so a response can be re-emitted byte for
byte; the lowercased name → value map next to them is only used for
control headers (``Host``, ``Content-Length``, ``Transfer-Encoding``...),
and the first occurrence of a name wins.
"""

from dataclasses import dataclass

from config.settings import Settings
from utils.errors    import HeaderTooLarge, ProtocolParseError
from utils.framing   import SocketStream, WIRE_ENCODING

CRLF = "\r\n"

DEFAULT_PORTS = {"http": 80, "https": 443}
CONNECT_DEFAULT_PORT = 443


def _is_decimal(text: str) -> bool:
    return text.isascii() and text.isdigit()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Data types
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class RequestLine:
    method:  str
    target:  str
    version: str
    raw:     str

    @property
    def is_connect(self) -> bool:
        return self.method.upper() == "CONNECT"


@dataclass(frozen=True)
class StatusLine:
    version: str
    code:    int
    reason:  str
    raw:     str


@dataclass(frozen=True)
class Target:
    host: str
    port: int
    path: str
    default_port: int = 80

    @property
    def authority(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port == self.default_port:
            return host
        return f"{host}:{self.port}"


class HeaderBlock:
    """Ordered raw header lines plus a first-match-wins lookup map."""

    def __init__(self, lines=None):
        self.lines: list[str] = []
        self._fields: dict[str, str] = {}
        self.raw_size = 0
        for line in lines or ():
            self.add_line(line)

    def add_line(self, line: str):
        self.lines.append(line)
        self.raw_size += len(line) + 2
        name, sep, value = line.partition(":")
        if sep:
            self._fields.setdefault(name.strip().lower(), value.strip())

    def get(self, name: str, default: str | None = None) -> str | None:
        return self._fields.get(name.lower(), default)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._fields

    def __len__(self) -> int:
        return len(self.lines)

    def to_bytes(self) -> bytes:
        """Header lines + the terminating blank line, as sent on the wire."""
        return "".join(line + CRLF for line in self.lines).encode(
            WIRE_ENCODING
        ) + b"\r\n"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Readers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def read_request_line(stream: SocketStream) -> RequestLine:
    raw   = stream.recv_line(Settings.MAX_LINE_SIZE)
    parts = raw.split()
    if len(parts) < 3:
        raise ProtocolParseError(f"malformed request line: {raw!r}")
    return RequestLine(parts[0], parts[1], parts[2], raw)


def read_status_line(stream: SocketStream) -> StatusLine:
    raw   = stream.recv_line(Settings.MAX_LINE_SIZE)
    parts = raw.split(None, 2)
    if len(parts) < 3:
        raise ProtocolParseError(f"malformed status line: {raw!r}")
    version, code_s, reason = parts
    if not _is_decimal(code_s):
        raise ProtocolParseError(f"bad status code: {code_s!r}")
    return StatusLine(version, int(code_s), reason, raw)


def read_headers(stream: SocketStream,
                 max_size: int = Settings.MAX_HEADER_SIZE) -> HeaderBlock:
    """Read header lines up to (and consuming) the blank line."""
    headers = HeaderBlock()
    while True:
        line = stream.recv_line(Settings.MAX_LINE_SIZE)
        if not line:
            return headers
        headers.add_line(line)
        if headers.raw_size > max_size:
            raise HeaderTooLarge(f"header block exceeds {max_size} bytes")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Targets
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def split_host_port(authority: str, default_port: int) -> tuple[str, int]:
    """
    Split ``host``, ``host:port`` or ``[v6addr]:port``.

    Raises ``ProtocolParseError`` for an empty host or a bad port.
    """
    authority = authority.strip()
    if authority.startswith("["):
        end = authority.find("]")
        if end == -1:
            raise ProtocolParseError(f"bad IPv6 authority: {authority!r}")
        host = authority[1:end]
        rest = authority[end + 1:]
        if rest and not rest.startswith(":"):
            raise ProtocolParseError(f"bad authority: {authority!r}")
        port_s = rest[1:] if rest else ""
    else:
        host, _, port_s = authority.partition(":")

    if not host:
        raise ProtocolParseError(f"missing host in {authority!r}")
    if not port_s:
        return host, default_port
    if not _is_decimal(port_s) or not 0 < int(port_s) < 65536:
        raise ProtocolParseError(f"bad port in {authority!r}")
    return host, int(port_s)


def parse_connect_target(target: str) -> tuple[str, int]:
    return split_host_port(target, CONNECT_DEFAULT_PORT)


def resolve_target(request_line: RequestLine,
                   headers: HeaderBlock) -> Target:
    """
    Work out where a plain-HTTP request goes and what path to send.

    Absolute-URI targets carry their own authority; origin-form targets
    rely on the ``Host`` header.
    """
    uri    = request_line.target
    scheme, sep, rest = uri.partition("://")
    scheme = scheme.lower()

    if sep and scheme in DEFAULT_PORTS:
        default_port = DEFAULT_PORTS[scheme]
        cut = len(rest)
        for delim in "/?#":
            pos = rest.find(delim)
            if pos != -1:
                cut = min(cut, pos)
        authority, path = rest[:cut], rest[cut:]
        authority = authority.rpartition("@")[2]     # drop userinfo
        if not path.startswith("/"):
            path = "/" + path
        host, port = split_host_port(authority, default_port)
        return Target(host, port, path, default_port)

    host_header = headers.get("host")
    if not host_header:
        raise ProtocolParseError("origin-form request without Host header")
    host, port = split_host_port(host_header, DEFAULT_PORTS["http"])
    return Target(host, port, uri)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Forwarding
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def rewrite_request_head(request_line: RequestLine, headers: HeaderBlock,
                         target: Target) -> bytes:
    """
    Build the origin-form request head sent upstream.

    ``Proxy-Connection`` is dropped, ``Connection`` is forced to
    ``close``, ``Host`` is added when missing; every other line is
    passed through untouched and in order.
    """
    out = [f"{request_line.method} {target.path} {request_line.version}"]
    has_host = has_connection = False

    for line in headers.lines:
        name = line.partition(":")[0].strip().lower()
        if name == "proxy-connection":
            continue
        if name == "connection":
            if not has_connection:
                out.append("Connection: close")
                has_connection = True
            continue
        if name == "host":
            has_host = True
        out.append(line)

    if not has_host:
        out.append(f"Host: {target.authority}")
    if not has_connection:
        out.append("Connection: close")

    return (CRLF.join(out) + CRLF + CRLF).encode(WIRE_ENCODING)


def response_head_bytes(status: StatusLine, headers: HeaderBlock) -> bytes:
    return (status.raw + CRLF).encode(WIRE_ENCODING) + headers.to_bytes()


def request_head_bytes(request_line: RequestLine,
                       headers: HeaderBlock) -> bytes:
    return (request_line.raw + CRLF).encode(WIRE_ENCODING) + headers.to_bytes()
