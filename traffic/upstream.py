"""
Outbound connections to origin servers.
"""

import logging
import socket

from config.settings import Settings
from utils.errors    import UpstreamUnreachable

logger = logging.getLogger("FilterProxy.Upstream")


class UpstreamConnector:
    """
    Resolve ``host:port`` (IPv4 and IPv6) and connect to the first
    address that accepts.

    Every call dials a fresh socket; nothing is pooled.
    """

    def __init__(self,
                 connect_timeout: float | None = Settings.CONNECT_TIMEOUT,
                 io_timeout: float | None = Settings.UPSTREAM_RECV_TIMEOUT):
        self.connect_timeout = connect_timeout
        self.io_timeout      = io_timeout

    def resolve(self, host: str, port: int) -> list[tuple]:
        try:
            return socket.getaddrinfo(
                host.strip("[]"), port, socket.AF_UNSPEC, socket.SOCK_STREAM
            )
        except (socket.gaierror, UnicodeError) as exc:
            logger.info("getaddrinfo(%s:%d) failed: %s", host, port, exc)
            raise UpstreamUnreachable(host, port, exc) from exc

    def connect(self, host: str, port: int) -> tuple[socket.socket, str]:
        """Return ``(connected_socket, resolved_ip)``."""
        last_error: Exception | None = None

        for family, socktype, proto, _, sockaddr in self.resolve(host, port):
            try:
                sock = socket.socket(family, socktype, proto)
            except OSError as exc:
                last_error = exc
                continue
            try:
                sock.settimeout(self.connect_timeout)
                sock.connect(sockaddr)
            except OSError as exc:
                last_error = exc
                logger.debug("connect %s → %s failed: %s",
                             host, sockaddr[0], exc)
                sock.close()
                continue

            sock.settimeout(self.io_timeout)
            return sock, sockaddr[0]

        logger.info("Cannot reach %s:%d — %s", host, port, last_error)
        raise UpstreamUnreachable(host, port, last_error)
