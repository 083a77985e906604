"""Image loading and saving for bgone."""

from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..utils.errors import ImageIOError
from ..utils.logging import get_logger

logger = get_logger(__name__)

# Extensions whose formats cannot store an alpha channel
OPAQUE_FORMATS = {".jpg", ".jpeg", ".bmp"}
DEFAULT_SUFFIX = "-bgone"


class ImageProcessor:
    """Convert between image files and normalized RGBA buffers."""

    def load_image(self, image_path: Union[str, Path]) -> np.ndarray:
        """Load an image file.

        Args:
            image_path: Path to image file

        Returns:
            RGBA buffer (H, W, 4) as float64 in [0, 1]
        """
        try:
            with Image.open(image_path) as image:
                rgba = image.convert("RGBA")
        except (OSError, UnidentifiedImageError) as e:
            raise ImageIOError(f"Failed to load image {image_path}: {e}") from e

        logger.debug(f"Loaded {image_path} ({rgba.width}x{rgba.height})")
        return np.asarray(rgba, dtype=np.float64) / 255.0

    def save_image(self, pixels: np.ndarray, output_path: Union[str, Path]) -> Path:
        """Save an RGBA buffer, quantized to 8 bits per channel.

        Formats without alpha support are replaced by PNG.

        Args:
            pixels: RGBA buffer (H, W, 4) in [0, 1]
            output_path: Requested output path

        Returns:
            Path actually written
        """
        path = Path(output_path)
        if path.suffix.lower() in OPAQUE_FORMATS:
            png_path = path.with_suffix(".png")
            logger.warning(
                f"{path.suffix} cannot store transparency, saving as {png_path} instead"
            )
            path = png_path

        data = np.rint(np.clip(pixels, 0.0, 1.0) * 255.0).astype(np.uint8)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            Image.fromarray(data).save(path)
        except (OSError, ValueError) as e:
            raise ImageIOError(f"Failed to save image {path}: {e}") from e

        logger.debug(f"Saved {path}")
        return path


def default_output_path(input_path: Union[str, Path], suffix: str = DEFAULT_SUFFIX) -> Path:
    """Output path beside the input: ``<stem><suffix>.png``."""
    input_path = Path(input_path)
    return input_path.with_name(f"{input_path.stem}{suffix}.png")
