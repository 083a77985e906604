"""Core unmixing engine for bgone."""

from .deduce import ColorHistogram, ForegroundDeducer, deduce
from .pipeline import BackgroundRemover, RemovalResult, remove_background
from .unmix import Decomposition, PixelResult, Unmixer, decompose

__all__ = [
    "ColorHistogram",
    "ForegroundDeducer",
    "deduce",
    "BackgroundRemover",
    "RemovalResult",
    "remove_background",
    "Decomposition",
    "PixelResult",
    "Unmixer",
    "decompose",
]
