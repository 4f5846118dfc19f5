import socket
import threading

from traffic.tunnel import TunnelRelay


class _Harness:
    """client <-> [client_end | relay | upstream_end] <-> origin"""

    def __init__(self, idle_timeout=5):
        self.client, client_end   = socket.socketpair()
        upstream_end, self.origin = socket.socketpair()
        for sock in (self.client, self.origin):
            sock.settimeout(5)
        self.relay  = TunnelRelay(client_end, upstream_end,
                                  idle_timeout=idle_timeout)
        self._ends  = (client_end, upstream_end)
        self.result = None

    def start(self, pending=b""):
        def run():
            self.result = self.relay.run(pending)
        self.thread = threading.Thread(target=run, daemon=True)
        self.thread.start()
        return self

    def join(self):
        self.thread.join(timeout=5)
        assert not self.thread.is_alive()

    def close(self):
        for sock in (self.client, self.origin, *self._ends):
            sock.close()


def _recv_exact(sock, n):
    data = b""
    while len(data) < n:
        chunk = sock.recv(n - len(data))
        if not chunk:
            break
        data += chunk
    return data


def test_relays_both_directions_and_pending_first():
    h = _Harness().start(pending=b"early:")
    try:
        h.client.sendall(b"ping")
        assert _recv_exact(h.origin, 10) == b"early:ping"
        h.origin.sendall(b"pong")
        assert _recv_exact(h.client, 4) == b"pong"

        h.client.shutdown(socket.SHUT_WR)
        h.origin.shutdown(socket.SHUT_WR)
        h.join()
        assert h.result == (10, 4)
    finally:
        h.close()


def test_half_close_keeps_other_direction():
    h = _Harness().start()
    try:
        h.client.sendall(b"request")
        h.client.shutdown(socket.SHUT_WR)
        assert _recv_exact(h.origin, 7) == b"request"
        # the origin sees EOF but can still answer
        assert h.origin.recv(16) == b""
        h.origin.sendall(b"late reply")
        assert _recv_exact(h.client, 10) == b"late reply"
        h.origin.close()
        assert h.client.recv(16) == b""
        h.join()
        assert h.result == (7, 10)
    finally:
        h.close()


def test_idle_tunnel_ends():
    h = _Harness(idle_timeout=0.2).start()
    try:
        h.join()
        assert h.result == (0, 0)
    finally:
        h.close()
