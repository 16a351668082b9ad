"""Environment-driven server configuration loader."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Optional, Tuple

from tlsgate.tickets import POLICIES


ALLOWED_TICKET_POLICIES = frozenset(POLICIES)


@dataclass(frozen=True)
class Settings:
    """Runtime settings populated from the environment."""

    host: str = "::1"
    port: int = 8001
    hostnames: Tuple[str, ...] = ("localhost", "::1")
    tickets: str = "zero"
    handshake_timeout: Optional[float] = None
    idle_timeout: Optional[float] = None
    metrics_port: Optional[int] = None
    log_level: str = "INFO"


def validate_settings(settings: Settings) -> None:
    """Validate *settings* before the server is built.

    Raises
    ------
    ValueError
        If any field is out of range or names an unknown option.
    """

    if not 0 <= settings.port <= 65535:
        raise ValueError(f"Port out of range: {settings.port}")
    if not settings.hostnames:
        raise ValueError("At least one certificate hostname is required")
    if settings.tickets not in ALLOWED_TICKET_POLICIES:
        raise ValueError(f"Unsupported ticket policy: {settings.tickets}")
    for name in ("handshake_timeout", "idle_timeout"):
        value = getattr(settings, name)
        if value is not None and value <= 0:
            raise ValueError(f"{name} must be positive, got {value}")
    if settings.metrics_port is not None and not 0 < settings.metrics_port <= 65535:
        raise ValueError(f"Metrics port out of range: {settings.metrics_port}")
    if not isinstance(logging.getLevelName(settings.log_level.upper()), int):
        raise ValueError(f"Unknown log level: {settings.log_level}")


def _optional(name: str, convert: Any) -> Any:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return convert(raw)
    except ValueError:
        raise ValueError(f"{name} is not a valid {convert.__name__}: {raw!r}") from None


def load_settings(**overrides: Any) -> Settings:
    """Return configuration derived from ``TLSGATE_*`` variables.

    Keyword *overrides* whose value is not ``None`` take precedence over the
    environment, which is how command-line flags are layered on top.
    """

    hostnames = os.getenv("TLSGATE_HOSTNAMES")
    env = {
        "host": os.getenv("TLSGATE_HOST"),
        "port": _optional("TLSGATE_PORT", int),
        "hostnames": (
            tuple(h.strip() for h in hostnames.split(",") if h.strip())
            if hostnames is not None
            else None
        ),
        "tickets": os.getenv("TLSGATE_TICKETS"),
        "handshake_timeout": _optional("TLSGATE_HANDSHAKE_TIMEOUT", float),
        "idle_timeout": _optional("TLSGATE_IDLE_TIMEOUT", float),
        "metrics_port": _optional("TLSGATE_METRICS_PORT", int),
        "log_level": os.getenv("TLSGATE_LOG_LEVEL"),
    }
    known = {f.name for f in fields(Settings)}
    unknown = set(overrides) - known
    if unknown:
        raise TypeError(f"Unknown settings: {', '.join(sorted(unknown))}")
    env.update({k: v for k, v in overrides.items() if v is not None})
    settings = replace(Settings(), **{k: v for k, v in env.items() if v is not None})
    if isinstance(settings.hostnames, list):
        settings = replace(settings, hostnames=tuple(settings.hostnames))
    settings = replace(settings, tickets=settings.tickets.lower())
    validate_settings(settings)
    return settings


__all__ = ["Settings", "load_settings", "validate_settings", "ALLOWED_TICKET_POLICIES"]
