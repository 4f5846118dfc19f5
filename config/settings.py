class Settings:
    """Centralised application configuration."""

    # ── application ──────────────────────────────────────────────
    APP_NAME    = "FilterProxy"
    APP_VERSION = "1.0.0"

    # ── paths ────────────────────────────────────────────────────
    POLICY_FILE = "forbidden.txt"
    LOG_FILE    = "proxy_http.log"

    # ── network ──────────────────────────────────────────────────
    PROXY_HOST   = "0.0.0.0"
    DEFAULT_PORT = 5465
    BACKLOG      = 128
    BUFFER_SIZE  = 65536

    # ── HTTP message limits ──────────────────────────────────────
    MAX_LINE_SIZE   = 8 * 1024
    MAX_HEADER_SIZE = 64 * 1024
    MAX_BODY_SIZE   = 64 * 1024 * 1024

    # ── timeouts (seconds) ───────────────────────────────────────
    CLIENT_RECV_TIMEOUT   = 300
    UPSTREAM_RECV_TIMEOUT = 300
    TUNNEL_IDLE_TIMEOUT   = 300
    CONNECT_TIMEOUT       = 30       # None → OS default

    # ── logging ──────────────────────────────────────────────────
    LOG_LEVEL       = "INFO"
    LOG_FORMAT      = "[%(asctime)s] %(message)s"
    LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
