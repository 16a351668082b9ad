"""TLS-terminating HTTP/1.x and HTTP/2 server with ephemeral certificates."""

__version__ = "0.1.0"

from .certificates import CertificateBundle, generate_self_signed, provision
from .connection import ConnectionServer
from .exceptions import (
    CertificateGenerationError,
    ConfigurationError,
    HandshakeError,
    ProtocolError,
    TLSGateError,
)
from .http import PlainTextResponse, Request, Response
from .listener import TLSListener
from .tickets import DisabledTicketPolicy, TicketPolicy, ZeroTicketPolicy
from .tls import (
    ALPN_PROTOCOLS,
    HandshakeResult,
    ServerContexts,
    TLSServerConfig,
    build_context,
)

__all__ = [
    "__version__",
    "ALPN_PROTOCOLS",
    "CertificateBundle",
    "CertificateGenerationError",
    "ConfigurationError",
    "ConnectionServer",
    "DisabledTicketPolicy",
    "HandshakeError",
    "HandshakeResult",
    "PlainTextResponse",
    "ProtocolError",
    "Request",
    "Response",
    "TicketPolicy",
    "TLSGateError",
    "TLSListener",
    "TLSServerConfig",
    "ServerContexts",
    "ZeroTicketPolicy",
    "build_context",
    "generate_self_signed",
    "provision",
]
