"""Tests for image loading and saving."""

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from bgone.image.processor import ImageProcessor, default_output_path
from bgone.utils.errors import ImageIOError


class TestImageProcessor:
    """Test conversion between files and RGBA buffers."""

    @pytest.fixture
    def processor(self):
        """Create image processor for testing."""
        return ImageProcessor()

    def test_load_rgb_adds_opaque_alpha(self, processor, tmp_path):
        """Test that RGB files load as opaque RGBA buffers."""
        path = tmp_path / "rgb.png"
        Image.new("RGB", (4, 3), (255, 128, 0)).save(path)

        pixels = processor.load_image(path)

        assert pixels.shape == (3, 4, 4)
        assert pixels.dtype == np.float64
        np.testing.assert_allclose(pixels[0, 0], [1.0, 128 / 255, 0.0, 1.0])

    def test_save_and_load(self, processor, tmp_path):
        """Test that saved buffers are quantized to 8 bits."""
        pixels = np.zeros((2, 2, 4))
        pixels[0, 0] = [1.0, 0.0, 0.0, 0.5]

        written = processor.save_image(pixels, tmp_path / "out.png")
        loaded = processor.load_image(written)

        assert written == tmp_path / "out.png"
        np.testing.assert_allclose(loaded[0, 0], [1.0, 0.0, 0.0, 128 / 255])
        assert loaded[1, 1, 3] == 0.0

    @pytest.mark.parametrize("suffix", [".jpg", ".jpeg", ".bmp"])
    def test_opaque_formats_redirected_to_png(self, processor, tmp_path, suffix):
        """Test that formats without alpha are written as PNG."""
        written = processor.save_image(np.ones((2, 2, 4)), tmp_path / f"out{suffix}")

        assert written.suffix == ".png"
        assert written.exists()
        assert not (tmp_path / f"out{suffix}").exists()

    def test_creates_parent_directories(self, processor, tmp_path):
        """Test that missing output directories are created."""
        written = processor.save_image(np.ones((1, 1, 4)), tmp_path / "a" / "b" / "out.png")
        assert written.exists()

    def test_missing_file(self, processor, tmp_path):
        """Test that a missing file raises an I/O error."""
        with pytest.raises(ImageIOError):
            processor.load_image(tmp_path / "missing.png")

    def test_not_an_image(self, processor, tmp_path):
        """Test that non-image files raise an I/O error."""
        path = tmp_path / "notes.png"
        path.write_text("not an image")
        with pytest.raises(ImageIOError):
            processor.load_image(path)


class TestOutputPath:
    """Test output path generation."""

    def test_default_suffix(self):
        """Test the default output name."""
        assert default_output_path("images/logo.jpg") == Path("images/logo-bgone.png")

    def test_custom_suffix(self):
        """Test a configured suffix."""
        assert default_output_path(Path("logo.png"), "-clean") == Path("logo-clean.png")
