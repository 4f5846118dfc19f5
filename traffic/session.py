"""
One proxied client connection, from the first request byte to close.

    read request ─► check request ─► CONNECT? ─► check host ─► dial ─► tunnel
                                      │
                                      └► check host ─► dial ─► send request
                                           ─► read response ─► check response
                                           ─► forward  |  503 block page

Every path ends with both sockets closed.  Nothing from an upstream
response reaches the client until the whole response has been read and
cleared by the policy.
"""

import logging
import socket

from config.settings        import Settings
from core.content_decoder   import decode_for_inspection, is_encoded
from core.policy            import PolicyStore
from traffic.body_framer    import Body, BodyEncoding, BodyFramer
from traffic.message        import (HeaderBlock, RequestLine, StatusLine,
                                    parse_connect_target, read_headers,
                                    read_request_line, read_status_line,
                                    request_head_bytes, resolve_target,
                                    response_head_bytes, rewrite_request_head)
from traffic.responses      import (BAD_GATEWAY, BAD_REQUEST, CONNECT_BLOCKED,
                                    CONNECTION_ESTABLISHED, HOST_BLOCKED,
                                    REQUEST_BLOCKED, RESPONSE_BLOCKED,
                                    error_page)
from traffic.tunnel         import TunnelRelay
from traffic.upstream       import UpstreamConnector
from utils.errors           import (BodyTooLarge, ForbiddenContent,
                                    ProtocolParseError, TransportFailure,
                                    UpstreamUnreachable)
from utils.framing          import SocketStream

logger = logging.getLogger("FilterProxy.Session")


class Outcome:
    """How a session ended; aggregated by the server into stats."""

    FORWARDED        = "forwarded"
    TUNNELLED        = "tunnelled"
    BLOCKED_REQUEST  = "blocked-request"
    BLOCKED_HOST     = "blocked-host"
    BLOCKED_RESPONSE = "blocked-response"
    BAD_REQUEST      = "bad-request"
    BAD_GATEWAY      = "bad-gateway"
    ABORTED          = "aborted"


class ProxySession:
    """
    Serve exactly one request (or one CONNECT tunnel) on *client_sock*.

    Parameters
    ----------
    client_sock : socket.socket
        Accepted client connection; owned by the session from now on.
    client_addr : tuple
        Peer address, for log lines only.
    policy : PolicyStore
        Shared, read-only forbidden words / hosts.
    connector : UpstreamConnector, optional
        Dials origin servers; a default one is created when omitted.
    """

    def __init__(self, client_sock: socket.socket, client_addr: tuple,
                 policy: PolicyStore,
                 connector: UpstreamConnector | None = None):
        self.client_sock   = client_sock
        self.client_addr   = client_addr
        self.policy        = policy
        self.connector     = connector or UpstreamConnector()
        self.client        = SocketStream(client_sock)
        self.upstream_sock: socket.socket | None = None
        self.outcome: str | None = None

    @property
    def peer(self) -> str:
        return f"{self.client_addr[0]}:{self.client_addr[1]}"

    # ── lifecycle ────────────────────────────────────────────────
    def run(self) -> str:
        """Handle the connection, close it, and return the outcome."""
        try:
            self.client_sock.settimeout(Settings.CLIENT_RECV_TIMEOUT)
            self.outcome = self._handle()
        except TransportFailure as exc:
            logger.info("Connection from %s aborted: %s", self.peer, exc)
            self.outcome = Outcome.ABORTED
        except Exception:
            logger.error("Unexpected error in session with %s",
                         self.peer, exc_info=True)
            self.outcome = Outcome.ABORTED
        finally:
            self.close()
        return self.outcome

    def close(self):
        for sock in (self.upstream_sock, self.client_sock):
            if sock is None:
                continue
            try:
                sock.close()
            except OSError:
                pass
        self.upstream_sock = None

    # ── request side ─────────────────────────────────────────────
    def _handle(self) -> str:
        try:
            request_line = read_request_line(self.client)
            headers      = read_headers(self.client)
        except ProtocolParseError as exc:
            return self._refuse(400, BAD_REQUEST, Outcome.BAD_REQUEST,
                                f"malformed request: {exc}")

        logger.info("Received request-line: %s", request_line.raw)

        body = Body()
        if not request_line.is_connect:
            try:
                body = BodyFramer(self.client, self.policy).read(
                    BodyEncoding.for_request(headers)
                )
            except ForbiddenContent as exc:
                return self._refuse(403, REQUEST_BLOCKED,
                                    Outcome.BLOCKED_REQUEST, exc.reason)
            except ProtocolParseError as exc:
                return self._refuse(400, BAD_REQUEST, Outcome.BAD_REQUEST,
                                    f"malformed request body: {exc}")

        try:
            word = self._scan_request(request_line, headers, body)
        except BodyTooLarge as exc:
            return self._refuse(400, BAD_REQUEST, Outcome.BAD_REQUEST,
                                f"request body too large to inspect: {exc}")
        if word is not None:
            return self._refuse(403, REQUEST_BLOCKED, Outcome.BLOCKED_REQUEST,
                                f"forbidden word {word!r} in request")

        if request_line.is_connect:
            return self._tunnel(request_line)
        return self._forward(request_line, headers, body)

    def _scan_request(self, request_line: RequestLine, headers: HeaderBlock,
                      body: Body) -> str | None:
        """Request line, headers and body are checked as one text."""
        word = self.policy.find_forbidden_word(
            request_head_bytes(request_line, headers) + body.decoded
        )
        if word is None:
            word = self._scan_encoded(body, headers)
        return word

    def _scan_encoded(self, body: Body, headers: HeaderBlock) -> str | None:
        coding = headers.get("content-encoding")
        if not body.decoded or not is_encoded(coding):
            return None
        plain = decode_for_inspection(body.decoded, coding)
        if plain is None:
            return None
        return self.policy.find_forbidden_word(plain)

    # ── CONNECT ──────────────────────────────────────────────────
    def _tunnel(self, request_line: RequestLine) -> str:
        try:
            host, port = parse_connect_target(request_line.target)
        except ProtocolParseError as exc:
            return self._refuse(400, BAD_REQUEST, Outcome.BAD_REQUEST,
                                f"bad CONNECT target: {exc}")

        site = self.policy.find_forbidden_host(host)
        if site is not None:
            return self._refuse(403, CONNECT_BLOCKED, Outcome.BLOCKED_HOST,
                                f"CONNECT to forbidden site {site!r}")

        try:
            self.upstream_sock, ip = self.connector.connect(host, port)
        except UpstreamUnreachable as exc:
            return self._refuse(502, BAD_GATEWAY, Outcome.BAD_GATEWAY,
                                str(exc))

        self.client.send_all(CONNECTION_ESTABLISHED)
        logger.info("Tunnel established to %s:%d (%s)", host, port, ip)

        relay    = TunnelRelay(self.client_sock, self.upstream_sock)
        up, down = relay.run(self.client.drain())
        logger.info("Tunnel closed for %s:%d (%d bytes up, %d bytes down)",
                    host, port, up, down)
        return Outcome.TUNNELLED

    # ── plain HTTP ───────────────────────────────────────────────
    def _forward(self, request_line: RequestLine, headers: HeaderBlock,
                 body: Body) -> str:
        try:
            target = resolve_target(request_line, headers)
        except ProtocolParseError as exc:
            return self._refuse(400, BAD_REQUEST, Outcome.BAD_REQUEST,
                                f"bad request target: {exc}")

        site = self.policy.find_forbidden_host(target.host)
        if site is not None:
            return self._refuse(403, HOST_BLOCKED, Outcome.BLOCKED_HOST,
                                f"forbidden site {site!r}")

        try:
            self.upstream_sock, ip = self.connector.connect(
                target.host, target.port
            )
        except UpstreamUnreachable as exc:
            return self._refuse(502, BAD_GATEWAY, Outcome.BAD_GATEWAY,
                                str(exc))

        logger.info("%s %s -> %s:%d (%s)", request_line.method, target.path,
                    target.host, target.port, ip)

        upstream = SocketStream(self.upstream_sock)
        try:
            upstream.send_all(
                rewrite_request_head(request_line, headers, target) + body.raw
            )
            status, resp_headers, resp_body = self._read_response(
                upstream, request_line.method
            )
        except ForbiddenContent as exc:
            return self._refuse(503, RESPONSE_BLOCKED,
                                Outcome.BLOCKED_RESPONSE, exc.reason)
        except (ProtocolParseError, TransportFailure) as exc:
            logger.info("Upstream %s:%d failed: %s",
                        target.host, target.port, exc)
            return Outcome.ABORTED

        try:
            word = self._scan_encoded(resp_body, resp_headers)
        except BodyTooLarge as exc:
            logger.info("Upstream %s:%d response dropped: %s",
                        target.host, target.port, exc)
            return Outcome.ABORTED
        if word is not None:
            return self._refuse(503, RESPONSE_BLOCKED,
                                Outcome.BLOCKED_RESPONSE,
                                f"forbidden word {word!r} in encoded body")

        self.client.send_all(
            response_head_bytes(status, resp_headers) + resp_body.raw
        )
        logger.info("Completed request for %s:%d %s",
                    target.host, target.port, target.path)
        return Outcome.FORWARDED

    def _read_response(self, upstream: SocketStream, method: str
                       ) -> tuple[StatusLine, HeaderBlock, Body]:
        while True:
            status  = read_status_line(upstream)
            headers = read_headers(upstream)
            # interim responses are not forwarded; 101 is final
            if 100 <= status.code < 200 and status.code != 101:
                logger.debug("Skipping interim response: %s", status.raw)
                continue
            break

        encoding = BodyEncoding.for_response(method, status.code, headers)
        body     = BodyFramer(upstream, self.policy).read(encoding)
        return status, headers, body

    # ── refusals ─────────────────────────────────────────────────
    def _refuse(self, code: int, message: str, outcome: str,
                reason: str) -> str:
        """Log *reason*, send the *code* page and return *outcome*."""
        if code in (403, 503):
            logger.info("Blocked (%d) for %s: %s", code, self.peer, reason)
        else:
            logger.info("Refused (%d) for %s: %s", code, self.peer, reason)
        try:
            self.client.send_all(error_page(code, message))
        except TransportFailure as exc:
            logger.debug("Could not deliver %d page to %s: %s",
                         code, self.peer, exc)
        return outcome
