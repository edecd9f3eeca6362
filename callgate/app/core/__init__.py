"""Core utilities for the call gateway."""

from callgate.app.core.config import settings
from callgate.app.core.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
]
