"""Background removal pipeline.

Sequences background estimation, foreground deduction and pixel
decomposition over a full image and assembles the RGBA output.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..image.background import estimate_background, flatten_alpha
from ..utils.color import Color
from ..utils.config import UnmixConfig
from ..utils.errors import ConfigurationError
from ..utils.logging import PerformanceLogger, ProgressLogger, get_logger
from ..utils.parallel import index_ranges, parallel_map
from .deduce import ColorHistogram, ForegroundDeducer, resolve_slots
from .unmix import EXACT_TOLERANCE, Decomposition, Unmixer, decompose_chunk

logger = get_logger(__name__)


@dataclass
class RemovalResult:
    """Output of a background removal run.

    Attributes:
        pixels: RGBA buffer (H, W, 4) in [0, 1]
        background: Background color used for unmixing
        foregrounds: Resolved foreground colors in slot order
        deduced: Colors found for the unknown slots, in slot order
        stats: Fidelity statistics
    """

    pixels: np.ndarray
    background: Color
    foregrounds: List[Color] = field(default_factory=list)
    deduced: List[Color] = field(default_factory=list)
    stats: Dict[str, float] = field(default_factory=dict)

    @property
    def is_exact(self) -> bool:
        return self.stats.get("inexact_pixels", 0) == 0


class BackgroundRemover:
    """Remove a solid background from pixel buffers."""

    def __init__(self, config: Optional[UnmixConfig] = None):
        """Initialize background remover.

        Args:
            config: Run configuration, defaults to ``UnmixConfig()``
        """
        self.config = config or UnmixConfig()
        self.progress = ProgressLogger()
        self.perf = PerformanceLogger()

    def resolve_background(self, pixels: np.ndarray) -> Color:
        """Return the configured background, estimating it when absent."""
        if self.config.background is not None:
            return self.config.background

        background = estimate_background(
            pixels,
            border_width=self.config.border_width,
            sample_interval=self.config.edge_sample_interval,
        )
        logger.info(f"Detected background color: {background}")
        return background

    def deduce_colors(self, pixels: np.ndarray) -> Tuple[Color, List[Color]]:
        """Resolve the background and the unknown foreground colors only.

        Args:
            pixels: Pixel buffer (H, W, 3) or (H, W, 4) in [0, 1]

        Returns:
            Tuple of (background, deduced colors in slot order)
        """
        pixels = self._prepare(pixels)
        background = self.resolve_background(pixels)
        histogram, _ = self._histogram(pixels, background)
        return background, self._deduce(histogram, background)

    def _prepare(self, pixels: np.ndarray) -> np.ndarray:
        self.config.validate_for_run()

        pixels = np.asarray(pixels, dtype=np.float64)
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ConfigurationError(
                f"expected an (H, W, 3) or (H, W, 4) pixel buffer, got {pixels.shape}"
            )
        return pixels

    def _histogram(
        self, pixels: np.ndarray, background: Color
    ) -> Tuple[ColorHistogram, np.ndarray]:
        # Translucent input is composited over the background before unmixing
        rgb = flatten_alpha(pixels, background.as_array())

        self.perf.start_timer("histogram")
        histogram, inverse = ColorHistogram.from_pixels(rgb)
        self.perf.end_timer("histogram")
        self.progress.log_histogram(pixels.shape[0] * pixels.shape[1], len(histogram))
        return histogram, inverse

    def _deduce(self, histogram: ColorHistogram, background: Color) -> List[Color]:
        config = self.config
        if not config.has_unknowns:
            return []

        self.perf.start_timer("deduction")
        deducer = ForegroundDeducer(
            background,
            strict=config.strict,
            threshold=config.threshold,
            n_jobs=config.n_jobs,
            max_evaluation_colors=config.max_evaluation_colors,
        )
        deduced = deducer.deduce(histogram, config.foregrounds)
        self.perf.end_timer("deduction")
        self.progress.log_deduced_colors(deduced)
        return deduced

    def remove(self, pixels: np.ndarray) -> RemovalResult:
        """Run background removal on one image.

        Args:
            pixels: Pixel buffer (H, W, 3) or (H, W, 4) in [0, 1]

        Returns:
            Removal result with the RGBA output

        Raises:
            ConfigurationError: If the configuration is unusable or unknown
                colors cannot be deduced
        """
        config = self.config
        pixels = self._prepare(pixels)
        height, width = pixels.shape[:2]

        background = self.resolve_background(pixels)
        histogram, inverse = self._histogram(pixels, background)
        deduced = self._deduce(histogram, background)

        foregrounds = resolve_slots(config.foregrounds, deduced)
        unmixer = Unmixer(background, foregrounds, config.strict, config.threshold)

        self.perf.start_timer("decomposition")
        chunks = [
            histogram.colors[start:stop]
            for start, stop in index_ranges(len(histogram), config.chunk_size)
        ]
        decomposition = Decomposition.concatenate(
            parallel_map(decompose_chunk, chunks, n_jobs=config.n_jobs, unmixer=unmixer)
        )
        self.perf.end_timer("decomposition")

        output = np.empty((height * width, 4))
        output[:, :3] = decomposition.colors[inverse]
        output[:, 3] = decomposition.alpha[inverse]

        stats = fidelity_stats(decomposition, histogram.counts)
        self.progress.log_fidelity(stats)

        return RemovalResult(
            pixels=output.reshape(height, width, 4),
            background=background,
            foregrounds=foregrounds,
            deduced=deduced,
            stats=stats,
        )


def fidelity_stats(decomposition: Decomposition, counts: np.ndarray) -> Dict[str, float]:
    """Aggregate per-color results into pixel-weighted statistics."""
    total = int(counts.sum())
    if total == 0:
        return {
            "mean_alpha": 0.0,
            "mean_residual": 0.0,
            "max_residual": 0.0,
            "inexact_pixels": 0,
            "inexact_fraction": 0.0,
        }

    inexact = int(counts[decomposition.residual > EXACT_TOLERANCE].sum())
    return {
        "mean_alpha": float(np.dot(counts, decomposition.alpha) / total),
        "mean_residual": float(np.dot(counts, decomposition.residual) / total),
        "max_residual": float(decomposition.residual.max()),
        "inexact_pixels": inexact,
        "inexact_fraction": inexact / total,
    }


def remove_background(pixels: np.ndarray, config: Optional[UnmixConfig] = None) -> RemovalResult:
    """Remove the background from a pixel buffer.

    Args:
        pixels: Pixel buffer (H, W, 3) or (H, W, 4) in [0, 1]
        config: Run configuration

    Returns:
        Removal result
    """
    return BackgroundRemover(config).remove(pixels)
