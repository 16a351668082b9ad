"""Error taxonomy for the TLS gateway."""

from __future__ import annotations


class TLSGateError(Exception):
    """Base error carrying a stable ``code``."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class CertificateGenerationError(TLSGateError):
    """Self-signed certificate material could not be produced."""

    def __init__(self, message: str):
        super().__init__("CERTIFICATE_GENERATION_ERROR", message)


class ConfigurationError(TLSGateError):
    """TLS server configuration could not be built."""

    def __init__(self, message: str):
        super().__init__("TLS_CONFIGURATION_ERROR", message)


class HandshakeError(TLSGateError):
    """A single connection failed TLS negotiation."""

    def __init__(self, message: str, peer: str | None = None):
        if peer:
            message = f"{peer}: {message}"
        super().__init__("TLS_HANDSHAKE_ERROR", message)
        self.peer = peer


class ProtocolError(TLSGateError):
    """HTTP framing on an established stream was invalid."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__("HTTP_PROTOCOL_ERROR", message)
        self.status_code = status_code


__all__ = [
    "TLSGateError",
    "CertificateGenerationError",
    "ConfigurationError",
    "HandshakeError",
    "ProtocolError",
]
