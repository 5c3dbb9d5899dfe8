"""Dynamic debug flag handling for the client."""

from __future__ import annotations

import logging

from .const import DEBUG_LOG, DOMAIN

_DEBUG_ENABLED = DEBUG_LOG


def set_debug_enabled(value: bool) -> None:
    """Update the global debug flag and logger level."""
    global _DEBUG_ENABLED
    _DEBUG_ENABLED = value
    logger = logging.getLogger(DOMAIN)
    logger.setLevel(logging.DEBUG if value else logging.INFO)


def debug_enabled() -> bool:
    """Return whether verbose request tracing is enabled."""
    return _DEBUG_ENABLED


def mask(value: str) -> str:
    """Return a log-safe form of an account identifier."""
    if len(value) <= 3:
        return "***"
    return f"{value[:3]}***"
