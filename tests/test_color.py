"""Tests for color literals, colors and foreground slots."""

import numpy as np
import pytest

from bgone.utils.color import (
    Color,
    ForegroundSlot,
    colors_to_array,
    hex_to_rgb,
    known_colors,
    parse_foreground_literals,
    rgb_to_hex,
)
from bgone.utils.errors import ColorParseError, ConfigurationError


class TestHexParsing:
    """Test hex color literal parsing."""

    @pytest.mark.parametrize(
        "literal, expected",
        [
            ("#ff0000", (255, 0, 0)),
            ("ff0000", (255, 0, 0)),
            ("#f00", (255, 0, 0)),
            ("f00", (255, 0, 0)),
            ("FF8080", (255, 128, 128)),
            ("#abc", (170, 187, 204)),
        ],
    )
    def test_valid_literals(self, literal, expected):
        """Test 3 and 6 digit literals with and without '#'."""
        assert hex_to_rgb(literal) == expected

    @pytest.mark.parametrize("literal", ["", "#", "ff00", "#12345", "ggg", "#zz0000", "##fff"])
    def test_invalid_literals(self, literal):
        """Test that malformed literals are rejected."""
        with pytest.raises(ColorParseError):
            hex_to_rgb(literal)

    def test_parse_error_is_configuration_error(self):
        """Test that parse failures are configuration errors."""
        with pytest.raises(ConfigurationError):
            Color.from_hex("nope")

    def test_rgb_to_hex(self):
        """Test formatting back to a lowercase literal."""
        assert rgb_to_hex((255, 128, 0)) == "#ff8000"


class TestColor:
    """Test the normalized color type."""

    def test_from_hex_normalizes(self):
        """Test that 8-bit channels map onto [0, 1]."""
        color = Color.from_hex("#ff0000")
        assert color == Color(1.0, 0.0, 0.0)
        np.testing.assert_allclose(color.as_array(), [1.0, 0.0, 0.0])

    def test_round_trip_to_rgb8(self):
        """Test conversion back to 8-bit values."""
        assert Color.from_hex("FF8080").to_rgb8() == (255, 128, 128)
        assert str(Color.from_rgb8((1, 2, 3))) == "#010203"

    def test_out_of_range_rejected(self):
        """Test that channels outside [0, 1] are rejected."""
        with pytest.raises(ValueError):
            Color(1.5, 0.0, 0.0)

    def test_from_array_clips(self):
        """Test that array construction clips to the valid range."""
        assert Color.from_array([1.2, -0.1, 0.5]) == Color(1.0, 0.0, 0.5)

    def test_distance(self):
        """Test Euclidean distance in normalized space."""
        white = Color(1.0, 1.0, 1.0)
        black = Color(0.0, 0.0, 0.0)
        assert white.distance(black) == pytest.approx(np.sqrt(3.0))
        assert white.distance(white) == 0.0

    def test_snapped(self):
        """Test snapping to the 8-bit grid."""
        snapped = Color(0.5, 0.0, 1.0).snapped()
        assert snapped.to_rgb8() == (128, 0, 255)
        assert snapped == Color.from_rgb8((128, 0, 255))

    def test_colors_are_immutable(self):
        """Test that colors are frozen."""
        color = Color(0.0, 0.0, 0.0)
        with pytest.raises(AttributeError):
            color.r = 1.0


class TestForegroundSlots:
    """Test known and unknown foreground slots."""

    def test_parse_known(self):
        """Test that a hex literal becomes a known slot."""
        slot = ForegroundSlot.parse("#00ff00")
        assert not slot.is_unknown
        assert slot.color == Color(0.0, 1.0, 0.0)

    @pytest.mark.parametrize("token", ["auto", "AUTO", " Auto "])
    def test_parse_unknown(self, token):
        """Test that 'auto' becomes an unknown slot."""
        slot = ForegroundSlot.parse(token)
        assert slot.is_unknown
        assert str(slot) == "auto"

    def test_parse_literals_preserves_order(self):
        """Test that slot order follows declaration order."""
        slots = parse_foreground_literals(["f00", "auto", "00f"])
        assert [str(s) for s in slots] == ["#ff0000", "auto", "#0000ff"]
        assert known_colors(slots) == [Color(1.0, 0.0, 0.0), Color(0.0, 0.0, 1.0)]

    def test_parse_literals_reports_position(self):
        """Test that the offending literal's position is reported."""
        with pytest.raises(ColorParseError, match="#2"):
            parse_foreground_literals(["f00", "xyz"])

    def test_colors_to_array(self):
        """Test stacking colors into an array."""
        assert colors_to_array([]).shape == (0, 3)
        array = colors_to_array([Color(1.0, 0.0, 0.0), Color(0.0, 1.0, 0.0)])
        np.testing.assert_allclose(array, [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
