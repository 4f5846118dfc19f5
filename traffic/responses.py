"""
Canned responses the proxy produces itself.
"""

import html

from config.settings import Settings

CONNECTION_ESTABLISHED = b"HTTP/1.1 200 Connection Established\r\n\r\n"

REQUEST_BLOCKED  = ("Your request contains forbidden words and was "
                    "blocked by the proxy.")
HOST_BLOCKED     = "Access to this host is blocked by the proxy."
CONNECT_BLOCKED  = "CONNECT to this site is blocked by the proxy."
RESPONSE_BLOCKED = ("The server response contains forbidden content "
                    "and was blocked by the proxy.")
BAD_REQUEST      = "The proxy could not understand this request."
BAD_GATEWAY      = "The proxy could not connect to the requested server."

REASONS = {
    400: "Bad Request",
    403: "Forbidden",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def error_page(code: int, message: str) -> bytes:
    """Minimal HTML error response with ``Connection: close``."""
    reason = REASONS.get(code, "Error")
    title  = f"{code} {reason}"
    body = (
        f"<html><head><title>{title}</title></head>"
        f"<body><h1>{title}</h1>"
        f"<p>{html.escape(message)}</p>"
        f"<hr><address>{Settings.APP_NAME}/{Settings.APP_VERSION}</address>"
        f"</body></html>"
    ).encode("utf-8")
    head = (
        f"HTTP/1.1 {title}\r\n"
        f"Content-Type: text/html; charset=utf-8\r\n"
        f"Content-Length: {len(body)}\r\n"
        f"Connection: close\r\n"
        f"\r\n"
    ).encode("ascii")
    return head + body
