"""Ephemeral self-signed certificate provisioning.

The provisioner stands in for a certificate authority: it is asked for a
chain covering a set of host identities and hands back PEM text, which is
then parsed into a :class:`CertificateBundle`. Nothing is written to disk.
"""

from __future__ import annotations

import datetime
import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .exceptions import CertificateGenerationError, ConfigurationError

LOGGER = logging.getLogger("tlsgate.certificates")

COMMON_NAME = "tlsgate self signed cert"
NOT_BEFORE = datetime.datetime(1975, 1, 1, tzinfo=datetime.timezone.utc)
NOT_AFTER = datetime.datetime(4096, 1, 1, tzinfo=datetime.timezone.utc)

_LABEL = re.compile(r"(?!-)[A-Za-z0-9-]{1,63}(?<!-)\Z")


@dataclass(frozen=True, slots=True)
class CertificateBundle:
    """DER certificate chain (leaf first) plus the leaf's private key."""

    chain: Tuple[bytes, ...]
    private_key: bytes

    @classmethod
    def from_pem(cls, cert_pem: str | bytes, key_pem: str | bytes) -> "CertificateBundle":
        """Parse PEM text into a bundle, checking the key matches the leaf."""

        if isinstance(cert_pem, str):
            cert_pem = cert_pem.encode("ascii")
        if isinstance(key_pem, str):
            key_pem = key_pem.encode("ascii")
        try:
            certs = x509.load_pem_x509_certificates(cert_pem)
        except ValueError as exc:
            raise ConfigurationError(f"invalid certificate PEM: {exc}") from exc
        try:
            key = serialization.load_pem_private_key(key_pem, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise ConfigurationError(f"invalid private key PEM: {exc}") from exc

        leaf_public = certs[0].public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        key_public = key.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        if leaf_public != key_public:
            raise ConfigurationError("private key does not match leaf certificate")

        return cls(
            chain=tuple(c.public_bytes(serialization.Encoding.DER) for c in certs),
            private_key=key.private_bytes(
                serialization.Encoding.DER,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            ),
        )

    @property
    def leaf(self) -> x509.Certificate:
        return x509.load_der_x509_certificate(self.chain[0])

    def leaf_pem(self) -> str:
        """Return the leaf certificate as PEM, e.g. for a client trust store."""
        return self.leaf.public_bytes(serialization.Encoding.PEM).decode("ascii")

    def identities(self) -> List[str]:
        """Return the DNS names and IP addresses the leaf is valid for."""
        san = self.leaf.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        names: List[str] = list(san.value.get_values_for_type(x509.DNSName))
        names.extend(str(ip) for ip in san.value.get_values_for_type(x509.IPAddress))
        return names


def _general_name(identity: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(identity))
    except ValueError:
        pass
    name = identity[:-1] if identity.endswith(".") else identity
    labels = name.split(".")
    if labels and labels[0] == "*":
        labels = labels[1:]
    if not labels or len(name) > 253 or not all(_LABEL.match(label) for label in labels):
        raise CertificateGenerationError(f"malformed host identity: {identity!r}")
    return x509.DNSName(name)


def generate_self_signed(identities: Iterable[str]) -> Tuple[str, str]:
    """Return ``(certificate_pem, private_key_pem)`` valid for *identities*."""

    names = [identity.strip() for identity in identities]
    if not names:
        raise CertificateGenerationError("at least one host identity is required")
    alt_names = [_general_name(name) for name in names]

    try:
        key = ec.generate_private_key(ec.SECP256R1())
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, COMMON_NAME)])
        public_key = key.public_key()
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(public_key)
            .serial_number(x509.random_serial_number())
            .not_valid_before(NOT_BEFORE)
            .not_valid_after(NOT_AFTER)
            .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(public_key), critical=False
            )
            .sign(key, hashes.SHA256())
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CertificateGenerationError(str(exc)) from exc

    cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")
    LOGGER.debug("generated self-signed certificate for %s", ", ".join(names))
    return cert_pem, key_pem


def provision(identities: Iterable[str]) -> CertificateBundle:
    """Generate a self-signed bundle for *identities*."""
    cert_pem, key_pem = generate_self_signed(identities)
    return CertificateBundle.from_pem(cert_pem, key_pem)


__all__ = [
    "CertificateBundle",
    "generate_self_signed",
    "provision",
    "COMMON_NAME",
]
