"""Core utilities package."""

from .config import Settings, get_settings, settings
from .logging import get_logger, log_event, setup_logging

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "setup_logging",
    "get_logger",
    "log_event",
]
