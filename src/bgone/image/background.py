"""Background color estimation from image borders."""

from typing import Tuple

import numpy as np

from ..utils.color import Color, color_distances
from ..utils.errors import ConfigurationError
from ..utils.logging import get_logger

logger = get_logger(__name__)

BLACK = np.zeros(3)


def flatten_alpha(pixels: np.ndarray, background: np.ndarray) -> np.ndarray:
    """Composite an RGB(A) buffer over a solid color and drop the alpha channel.

    Args:
        pixels: Pixel buffer (..., 3) or (..., 4) in [0, 1]
        background: Color to composite over (3,)

    Returns:
        Opaque RGB buffer (..., 3)
    """
    rgb = pixels[..., :3]
    if pixels.shape[-1] < 4:
        return rgb.astype(np.float64, copy=True)
    alpha = pixels[..., 3:4]
    return rgb * alpha + np.asarray(background) * (1.0 - alpha)


class BackgroundEstimator:
    """Estimate the background as the most common color along the image edges."""

    def __init__(self, border_width: int = 1, sample_interval: int = 1):
        """Initialize background estimator.

        Args:
            border_width: Width in pixels of the sampled ring
            sample_interval: Sample every N-th pixel along each edge (corners
                are always sampled)
        """
        if border_width < 1 or sample_interval < 1:
            raise ConfigurationError(
                "border_width and sample_interval must be positive"
            )
        self.border_width = border_width
        self.sample_interval = sample_interval

    def sample_border(self, pixels: np.ndarray) -> np.ndarray:
        """Collect border samples in row-major scan order.

        Translucent samples are composited over black so whatever lies behind
        the transparency cannot bias the estimate.

        Args:
            pixels: Pixel buffer (H, W, 3) or (H, W, 4) in [0, 1]

        Returns:
            Opaque samples (N, 3)
        """
        height, width = pixels.shape[:2]
        if height == 0 or width == 0:
            raise ConfigurationError("cannot estimate the background of an empty image")

        ring = min(self.border_width, (height + 1) // 2, (width + 1) // 2)
        step = self.sample_interval

        ys, xs = np.mgrid[0:height, 0:width]
        in_rows = (ys < ring) | (ys >= height - ring)
        in_cols = (xs < ring) | (xs >= width - ring)
        sampled = (
            (in_rows & (xs % step == 0))
            | (in_cols & (ys % step == 0))
            | (in_rows & in_cols)
        )

        return flatten_alpha(pixels[sampled], BLACK)

    def estimate(self, pixels: np.ndarray) -> Color:
        """Return the most frequent 8-bit bucket among the border samples.

        Ties are broken by first occurrence in scan order.
        """
        samples = self.sample_border(pixels)
        buckets = np.rint(np.clip(samples, 0.0, 1.0) * 255.0).astype(np.int64)

        unique, first_index, counts = np.unique(
            buckets, axis=0, return_index=True, return_counts=True
        )
        order = np.lexsort((first_index, -counts))
        winner = unique[order[0]]

        color = Color.from_rgb8(tuple(int(c) for c in winner))
        logger.debug(
            f"Background {color} from {counts[order[0]]}/{len(samples)} border samples"
        )
        return color


def estimate_background(
    pixels: np.ndarray, border_width: int = 1, sample_interval: int = 1
) -> Color:
    """Estimate the background color of a pixel buffer."""
    return BackgroundEstimator(border_width, sample_interval).estimate(pixels)


def border_coverage(
    pixels: np.ndarray,
    color: Color,
    border_width: int = 1,
    tolerance: float = 1.0 / 255.0,
) -> Tuple[int, int]:
    """Count border samples within ``tolerance`` of ``color``.

    Returns:
        Tuple of (matching samples, total samples)
    """
    samples = BackgroundEstimator(border_width).sample_border(pixels)
    distances = color_distances(samples, color.as_array())
    return int(np.sum(distances <= tolerance)), len(samples)
