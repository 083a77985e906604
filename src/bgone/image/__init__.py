"""Image modules for bgone."""

from .background import BackgroundEstimator, estimate_background
from .processor import ImageProcessor

__all__ = [
    "BackgroundEstimator",
    "estimate_background",
    "ImageProcessor",
]
