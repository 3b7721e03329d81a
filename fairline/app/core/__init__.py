"""Core utilities for the waiting room application."""

from fairline.app.core.config import Settings, settings
from fairline.app.core.logging import get_logger, setup_logging
from fairline.app.core.security import PositionAttestor, derive_position_secret

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
    "PositionAttestor",
    "derive_position_secret",
]
