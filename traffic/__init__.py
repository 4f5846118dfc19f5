"""
FilterProxy traffic layer.
"""

from .message       import HeaderBlock, RequestLine, StatusLine, Target
from .body_framer   import Body, BodyEncoding, BodyFramer
from .upstream      import UpstreamConnector
from .tunnel        import TunnelRelay
from .session       import Outcome, ProxySession
from .proxy_server  import ProxyServer

__all__ = [
    "HeaderBlock",
    "RequestLine",
    "StatusLine",
    "Target",
    "Body",
    "BodyEncoding",
    "BodyFramer",
    "UpstreamConnector",
    "TunnelRelay",
    "Outcome",
    "ProxySession",
    "ProxyServer",
]
