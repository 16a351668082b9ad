"""Environment-specific configuration and operational helpers."""

from __future__ import annotations

from .configuration import (
    ALLOWED_TICKET_POLICIES,
    Settings,
    load_settings,
    validate_settings,
)

__all__ = ["Settings", "load_settings", "validate_settings", "ALLOWED_TICKET_POLICIES"]
