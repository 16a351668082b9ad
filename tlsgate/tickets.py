"""Session ticket policies consulted when the TLS context is built."""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

MAX_LIFETIME = 0xFFFFFFFF
ZERO_TICKET_SIZE = 16300


@runtime_checkable
class TicketPolicy(Protocol):
    """Capability deciding whether and how session tickets are issued."""

    def enabled(self) -> bool:
        ...

    def lifetime(self) -> int:
        """Advertised ticket validity in seconds."""
        ...

    def encrypt(self, plain: bytes) -> Optional[bytes]:
        """Return a ticket for serialized session state, or ``None`` to skip."""
        ...

    def decrypt(self, cipher: bytes) -> Optional[bytes]:
        """Return the session state sealed in *cipher*, or ``None``."""
        ...


class ZeroTicketPolicy:
    """Issue syntactically valid tickets that can never be redeemed.

    Every ticket is ``ZERO_TICKET_SIZE`` zero bytes and ``decrypt`` always
    fails, so clients presenting a ticket fall back to a full handshake.
    """

    def enabled(self) -> bool:
        return True

    def lifetime(self) -> int:
        return MAX_LIFETIME

    def encrypt(self, plain: bytes) -> Optional[bytes]:
        return bytes(ZERO_TICKET_SIZE)

    def decrypt(self, cipher: bytes) -> Optional[bytes]:
        return None

    def __repr__(self) -> str:
        return "ZeroTicketPolicy()"


class DisabledTicketPolicy:
    """Never issue tickets."""

    def enabled(self) -> bool:
        return False

    def lifetime(self) -> int:
        return 0

    def encrypt(self, plain: bytes) -> Optional[bytes]:
        return None

    def decrypt(self, cipher: bytes) -> Optional[bytes]:
        return None

    def __repr__(self) -> str:
        return "DisabledTicketPolicy()"


_SAMPLE_STATE = b"tlsgate-session-sample"


def resumes_sessions(policy: TicketPolicy) -> bool:
    """Return whether tickets issued under *policy* can be redeemed.

    A policy resumes only when it is enabled, issues a ticket, and can open
    that same ticket again.
    """

    if not policy.enabled():
        return False
    ticket = policy.encrypt(_SAMPLE_STATE)
    if ticket is None:
        return False
    return policy.decrypt(ticket) == _SAMPLE_STATE


POLICIES = {
    "zero": ZeroTicketPolicy,
    "off": DisabledTicketPolicy,
}


def policy_for(name: str) -> TicketPolicy:
    """Instantiate the policy registered under *name*."""
    try:
        return POLICIES[name]()
    except KeyError:
        raise ValueError(
            f"Unknown ticket policy: {name} (expected one of {', '.join(sorted(POLICIES))})"
        ) from None


__all__ = [
    "TicketPolicy",
    "ZeroTicketPolicy",
    "DisabledTicketPolicy",
    "resumes_sessions",
    "policy_for",
    "POLICIES",
    "MAX_LIFETIME",
    "ZERO_TICKET_SIZE",
]
