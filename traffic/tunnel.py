"""
Opaque bidirectional relay for CONNECT tunnels.

Each direction is closed on its own: when one side stops sending, the
other side's write half is shut down and the reverse direction keeps
flowing until it too is finished.

A tunnel with no traffic in either direction for ``idle_timeout``
seconds (``Settings.TUNNEL_IDLE_TIMEOUT``) is ended even if neither side
closed, so abandoned CONNECT sessions do not hold a thread forever.
Pass ``idle_timeout=None`` to wait indefinitely.
"""

import logging
import select
import socket

from config.settings import Settings

logger = logging.getLogger("FilterProxy.Tunnel")


class TunnelRelay:
    """
    Relay raw bytes between *client* and *upstream* until both
    directions have closed.
    """

    def __init__(self, client: socket.socket, upstream: socket.socket,
                 buffer_size: int = Settings.BUFFER_SIZE,
                 idle_timeout: float | None = Settings.TUNNEL_IDLE_TIMEOUT):
        self.client       = client
        self.upstream     = upstream
        self.buffer_size  = buffer_size
        self.idle_timeout = idle_timeout
        self.bytes_up     = 0
        self.bytes_down   = 0

    def run(self, pending: bytes = b"") -> tuple[int, int]:
        """
        Relay until done and return ``(bytes_up, bytes_down)``.

        *pending* holds client bytes that were read together with the
        CONNECT head; they go upstream before anything else.
        """
        # read side → write side, for every direction still open
        routes = {self.client: self.upstream, self.upstream: self.client}

        if pending and not self._forward(self.client, self.upstream, pending):
            self._close_direction(routes, self.client, write_failed=True)

        while routes:
            try:
                readable, _, _ = select.select(
                    list(routes), [], [], self.idle_timeout
                )
            except InterruptedError:
                continue
            except (OSError, ValueError) as exc:
                logger.debug("select failed: %s", exc)
                break
            if not readable:
                logger.info("Tunnel idle for %ss, closing", self.idle_timeout)
                break

            for src in readable:
                dst = routes.get(src)
                if dst is None:
                    continue
                try:
                    data = src.recv(self.buffer_size)
                except (BlockingIOError, InterruptedError):
                    continue
                except OSError as exc:
                    logger.debug("tunnel read failed: %s", exc)
                    data = b""

                if not data:
                    self._close_direction(routes, src, write_failed=False)
                elif not self._forward(src, dst, data):
                    self._close_direction(routes, src, write_failed=True)

        return self.bytes_up, self.bytes_down

    # ── helpers ──────────────────────────────────────────────────
    def _forward(self, src: socket.socket, dst: socket.socket,
                 data: bytes) -> bool:
        try:
            dst.sendall(data)
        except OSError as exc:
            logger.debug("tunnel write failed: %s", exc)
            return False
        if src is self.client:
            self.bytes_up += len(data)
        else:
            self.bytes_down += len(data)
        return True

    @staticmethod
    def _close_direction(routes: dict, src: socket.socket,
                         write_failed: bool):
        """
        Stop the ``src → dst`` direction.

        On EOF from *src* the peer is told via ``SHUT_WR`` on *dst*; when
        writing to *dst* failed, *src* stops being read instead.
        """
        dst = routes.pop(src, None)
        if dst is None:
            return
        try:
            if write_failed:
                src.shutdown(socket.SHUT_RD)
            else:
                dst.shutdown(socket.SHUT_WR)
        except OSError:
            pass
