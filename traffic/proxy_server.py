"""
FilterProxy listener: accepts clients and runs one session per thread.
"""

import socket
import threading
import logging

from config.settings   import Settings
from core.policy       import PolicyStore
from traffic.session   import Outcome, ProxySession
from traffic.upstream  import UpstreamConnector

logger = logging.getLogger("FilterProxy.Proxy")


class ProxyServer:
    """
    Filtering HTTP/HTTPS forward proxy.

    Every accepted connection is handed to a :class:`ProxySession` on its
    own daemon thread; the accept loop never waits on a session.  The
    policy is shared by all sessions and never modified.
    """

    def __init__(
        self,
        host: str = Settings.PROXY_HOST,
        port: int = Settings.DEFAULT_PORT,
        policy: PolicyStore | None = None,
        connector: UpstreamConnector | None = None,
    ):
        self.host      = host
        self.port      = port
        self.policy    = policy if policy is not None else PolicyStore()
        self.connector = connector or UpstreamConnector()

        self._server_sock: socket.socket | None = None
        self._running       = False
        self._accept_thread: threading.Thread | None = None
        self._lock          = threading.Lock()

        # Stats
        self.total_connections  = 0
        self.active_connections = 0
        self.blocked_requests   = 0
        self.blocked_responses  = 0
        self._outcomes: dict[str, int] = {}

    # ── lifecycle ────────────────────────────────────────────────

    def _bind(self):
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.settimeout(1.0)
        try:
            sock.bind((self.host, self.port))
            sock.listen(Settings.BACKLOG)
        except OSError:
            sock.close()
            raise

        # port 0 → whatever the OS picked
        self.port         = sock.getsockname()[1]
        self._server_sock = sock
        self._running     = True
        logger.info("Proxy listening on %s:%d", self.host, self.port)

    def start(self):
        """Bind, listen and accept connections on a background thread."""
        if self._running:
            logger.warning("Proxy already running")
            return

        self._bind()
        self._accept_thread = threading.Thread(
            target=self._accept_loop, daemon=True,
            name="ProxyAccept",
        )
        self._accept_thread.start()

    def serve_forever(self):
        """Bind (if needed) and run the accept loop in the calling thread."""
        if self._accept_thread and self._accept_thread.is_alive():
            logger.warning("Proxy already running")
            return
        if not self._running:
            self._bind()
        self._accept_loop()

    def stop(self):
        """Stop accepting; sessions already running finish on their own."""
        self._running = False
        if self._server_sock:
            try:
                self._server_sock.close()
            except OSError:
                pass
            self._server_sock = None
        if (self._accept_thread and self._accept_thread.is_alive()
                and self._accept_thread is not threading.current_thread()):
            self._accept_thread.join(timeout=5)
        logger.info("Proxy stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # ── accept loop ──────────────────────────────────────────────

    def _accept_loop(self):
        while self._running:
            sock = self._server_sock
            if sock is None:
                break
            try:
                client_sock, addr = sock.accept()
            except socket.timeout:
                continue
            except OSError:
                if self._running:
                    logger.error("Proxy accept error", exc_info=True)
                break

            threading.Thread(
                target=self._handle_client,
                args=(client_sock, addr),
                daemon=True,
                name=f"Proxy-{addr[0]}:{addr[1]}",
            ).start()

    # ── per-client handler ───────────────────────────────────────

    def _handle_client(self, client_sock: socket.socket, addr: tuple):
        with self._lock:
            self.active_connections += 1
            self.total_connections  += 1

        outcome = Outcome.ABORTED
        try:
            session = ProxySession(client_sock, addr, self.policy,
                                   self.connector)
            outcome = session.run()
        finally:
            with self._lock:
                self.active_connections -= 1
                self._outcomes[outcome] = self._outcomes.get(outcome, 0) + 1
                if outcome in (Outcome.BLOCKED_REQUEST, Outcome.BLOCKED_HOST):
                    self.blocked_requests += 1
                elif outcome == Outcome.BLOCKED_RESPONSE:
                    self.blocked_responses += 1

    # ── stats ────────────────────────────────────────────────────

    def stats(self) -> dict:
        with self._lock:
            return {
                "running":            self._running,
                "listen":             f"{self.host}:{self.port}",
                "total_connections":  self.total_connections,
                "active_connections": self.active_connections,
                "blocked_requests":   self.blocked_requests,
                "blocked_responses":  self.blocked_responses,
                "outcomes":           dict(self._outcomes),
                "forbidden_words":    len(self.policy.forbidden_words),
                "forbidden_hosts":    len(self.policy.forbidden_hosts),
                "filtering":          not self.policy.is_empty(),
            }
