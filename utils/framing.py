"""
Reliable byte-stream primitives for the FilterProxy wire layer.

Every other component reads and writes through a ``SocketStream``:

    send_all(data)      – write every byte or raise
    recv_exact(n)       – read exactly *n* bytes or raise
    recv_line(max_len)  – read one CRLF/LF-terminated line or raise
    recv_some(n)        – one read, b"" when the peer closed

Lines are decoded as ISO-8859-1, which maps every byte to one code
point, so ``line.encode("iso-8859-1")`` gives back the exact bytes
that came off the wire.
"""

import socket

from config.settings import Settings
from utils.errors    import LineTooLong, TransportFailure

WIRE_ENCODING = "iso-8859-1"


class SocketStream:
    """Buffered reader/writer around one connected socket."""

    def __init__(self, sock: socket.socket,
                 buffer_size: int = Settings.BUFFER_SIZE):
        self.sock        = sock
        self.buffer_size = buffer_size
        self._buffer     = bytearray()

    # ── writing ──────────────────────────────────────────────────
    def send_all(self, data: bytes):
        """Write *data* completely, retrying on interrupted calls."""
        view  = memoryview(data)
        total = 0
        while total < len(view):
            try:
                sent = self.sock.send(view[total:])
            except InterruptedError:
                continue
            except socket.timeout as exc:
                raise TransportFailure("send timed out") from exc
            except OSError as exc:
                raise TransportFailure(f"send failed: {exc}") from exc
            if sent == 0:
                raise TransportFailure("connection closed during send")
            total += sent

    # ── reading ──────────────────────────────────────────────────
    def _fill(self) -> int:
        """Append one ``recv`` worth of data to the buffer."""
        while True:
            try:
                chunk = self.sock.recv(self.buffer_size)
            except InterruptedError:
                continue
            except socket.timeout as exc:
                raise TransportFailure("receive timed out") from exc
            except OSError as exc:
                raise TransportFailure(f"receive failed: {exc}") from exc
            self._buffer.extend(chunk)
            return len(chunk)

    def recv_exact(self, n: int) -> bytes:
        """Read exactly *n* bytes; peer close before that is a failure."""
        while len(self._buffer) < n:
            if not self._fill():
                raise TransportFailure(
                    f"connection closed after {len(self._buffer)} "
                    f"of {n} bytes"
                )
        data = bytes(self._buffer[:n])
        del self._buffer[:n]
        return data

    def recv_line(self, max_len: int = Settings.MAX_LINE_SIZE) -> str:
        """
        Read up to ``\\n`` and return the line without its terminator.

        A ``\\r`` right before the ``\\n`` is stripped.  A line longer than
        *max_len* aborts the read instead of being truncated.
        """
        scanned = 0
        while True:
            idx = self._buffer.find(b"\n", scanned)
            if idx != -1:
                break
            scanned = len(self._buffer)
            if scanned > max_len + 1:
                raise LineTooLong(f"line exceeds {max_len} bytes")
            if not self._fill():
                raise TransportFailure("connection closed mid-line")

        end = idx - 1 if idx > 0 and self._buffer[idx - 1] == 0x0D else idx
        if end > max_len:
            raise LineTooLong(f"line exceeds {max_len} bytes")
        line = bytes(self._buffer[:end])
        del self._buffer[:idx + 1]
        return line.decode(WIRE_ENCODING)

    def recv_some(self, max_bytes: int | None = None) -> bytes:
        """Return buffered bytes, or one fresh read; b"" on peer close."""
        limit = max_bytes or self.buffer_size
        if not self._buffer:
            self._fill()
        data = bytes(self._buffer[:limit])
        del self._buffer[:limit]
        return data

    def drain(self) -> bytes:
        """Hand over whatever was read ahead but not consumed yet."""
        data = bytes(self._buffer)
        self._buffer.clear()
        return data
