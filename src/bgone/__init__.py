"""bgone: solid background removal by color unmixing."""

__version__ = "0.1.0"
__author__ = "bgone Team"

from .core.pipeline import BackgroundRemover, RemovalResult, remove_background
from .core.unmix import Unmixer, decompose
from .image.processor import ImageProcessor
from .utils.color import Color, ForegroundSlot
from .utils.config import UnmixConfig

__all__ = [
    "BackgroundRemover",
    "RemovalResult",
    "remove_background",
    "Unmixer",
    "decompose",
    "ImageProcessor",
    "Color",
    "ForegroundSlot",
    "UnmixConfig",
]
