"""
Shared fixtures: a loopback origin server, an echo server for tunnels,
a routing connector and a proxy factory.
"""

import socket
import threading
import time
import zlib

import pytest

from core.policy          import PolicyStore
from traffic.proxy_server import ProxyServer
from traffic.upstream     import UpstreamConnector
from utils.errors         import UpstreamUnreachable
from utils.framing        import SocketStream


# ── helpers ──────────────────────────────────────────────────────

def read_request(conn: socket.socket) -> bytes:
    """Read one HTTP request (head plus Content-Length or chunked body)."""
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = conn.recv(65536)
        if not chunk:
            return data
        data += chunk
    head, _, body = data.partition(b"\r\n\r\n")
    lower = head.lower()
    if b"transfer-encoding: chunked" in lower:
        while not body.endswith(b"0\r\n\r\n"):
            chunk = conn.recv(65536)
            if not chunk:
                break
            body += chunk
    else:
        for line in lower.split(b"\r\n"):
            if line.startswith(b"content-length:"):
                length = int(line.split(b":", 1)[1])
                while len(body) < length:
                    chunk = conn.recv(65536)
                    if not chunk:
                        break
                    body += chunk
    return head + b"\r\n\r\n" + body


def recv_all(sock: socket.socket) -> bytes:
    data = b""
    while True:
        chunk = sock.recv(65536)
        if not chunk:
            return data
        data += chunk


def send_raw(port: int, data: bytes, timeout: float = 5.0) -> bytes:
    """Send *data* to the proxy and return everything until it closes."""
    with socket.create_connection(("127.0.0.1", port),
                                  timeout=timeout) as sock:
        sock.sendall(data)
        return recv_all(sock)


def gzip_bomb(size: int) -> bytes:
    """*size* zero bytes, gzip-compressed without holding them in memory."""
    compressor = zlib.compressobj(9, zlib.DEFLATED, 16 + zlib.MAX_WBITS)
    block = b"\0" * (1024 * 1024)
    parts = [compressor.compress(block) for _ in range(size // len(block))]
    return b"".join(parts) + compressor.flush()


def wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# ── servers ──────────────────────────────────────────────────────

class _LoopbackServer:
    def __init__(self):
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        self.port        = self._sock.getsockname()[1]
        self.connections = 0
        self._lock       = threading.Lock()
        self._thread     = threading.Thread(target=self._accept_loop,
                                            daemon=True)

    def start(self):
        self._thread.start()
        return self

    def stop(self):
        try:
            self._sock.close()
        except OSError:
            pass

    def _accept_loop(self):
        while True:
            try:
                conn, _ = self._sock.accept()
            except OSError:
                return
            with self._lock:
                self.connections += 1
            threading.Thread(target=self._serve_one, args=(conn,),
                             daemon=True).start()

    def _serve_one(self, conn: socket.socket):
        conn.settimeout(5)
        try:
            self.serve(conn)
        except OSError:
            pass
        finally:
            conn.close()

    def serve(self, conn: socket.socket):
        raise NotImplementedError


class OriginServer(_LoopbackServer):
    """Answers every request with ``response`` and closes."""

    def __init__(self, response: bytes = b""):
        super().__init__()
        self.response = response
        self.requests: list[bytes] = []

    def serve(self, conn: socket.socket):
        request = read_request(conn)
        with self._lock:
            self.requests.append(request)
        conn.sendall(self.response)


class EchoServer(_LoopbackServer):
    """Echoes bytes back until the peer half-closes, then closes."""

    def serve(self, conn: socket.socket):
        while True:
            data = conn.recv(65536)
            if not data:
                return
            conn.sendall(data)


class RoutingConnector(UpstreamConnector):
    """Maps test hostnames onto loopback ports and records every dial."""

    def __init__(self, routes: dict[str, int] | None = None):
        super().__init__(connect_timeout=5, io_timeout=5)
        self.routes   = dict(routes or {})
        self.attempts: list[tuple[str, int]] = []

    def connect(self, host: str, port: int):
        self.attempts.append((host, port))
        if host not in self.routes:
            raise UpstreamUnreachable(host, port)
        return super().connect("127.0.0.1", self.routes[host])


# ── fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def origin():
    servers: list[OriginServer] = []

    def factory(response: bytes) -> OriginServer:
        server = OriginServer(response).start()
        servers.append(server)
        return server

    yield factory
    for server in servers:
        server.stop()


@pytest.fixture
def echo_server():
    server = EchoServer().start()
    yield server
    server.stop()


@pytest.fixture
def proxy():
    servers: list[ProxyServer] = []

    def factory(policy_lines=(), routes=None):
        connector = RoutingConnector(routes)
        server = ProxyServer("127.0.0.1", 0,
                             PolicyStore.parse(policy_lines), connector)
        server.start()
        servers.append(server)
        return server, connector

    yield factory
    for server in servers:
        server.stop()


@pytest.fixture
def make_stream():
    """Build a ``SocketStream`` whose peer already sent *data* and closed."""
    sockets: list[socket.socket] = []

    def factory(data: bytes, close: bool = True) -> SocketStream:
        writer, reader = socket.socketpair()
        sockets.extend((writer, reader))
        reader.settimeout(5)
        writer.sendall(data)
        if close:
            writer.shutdown(socket.SHUT_WR)
        return SocketStream(reader)

    yield factory
    for sock in sockets:
        sock.close()
