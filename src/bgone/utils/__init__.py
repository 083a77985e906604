"""Utility modules for bgone."""

from .color import Color, ForegroundSlot, hex_to_rgb
from .config import ConfigManager, UnmixConfig
from .errors import BgoneError, ConfigurationError
from .logging import setup_logging

__all__ = [
    "Color",
    "ForegroundSlot",
    "hex_to_rgb",
    "ConfigManager",
    "UnmixConfig",
    "BgoneError",
    "ConfigurationError",
    "setup_logging",
]
