from .framing  import SocketStream, WIRE_ENCODING
from .errors   import (ProxyError, ProtocolParseError, PolicyViolation,
                       ForbiddenContent, UpstreamUnreachable,
                       TransportFailure)

__all__ = ["SocketStream", "WIRE_ENCODING",
           "ProxyError", "ProtocolParseError", "PolicyViolation",
           "ForbiddenContent", "UpstreamUnreachable", "TransportFailure"]
