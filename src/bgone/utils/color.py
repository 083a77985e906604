"""Color model for bgone: normalized RGB colors, hex literals and foreground slots."""

import string
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .errors import ColorParseError

# Multiplier to expand a shorthand hex digit (e.g. "f" -> 0xff)
HEX_SHORTHAND_MULTIPLIER = 17

# Literal that marks a foreground slot whose color has to be deduced
UNKNOWN_TOKEN = "auto"

# Largest possible distance in normalized RGB space (opposite cube corners)
MAX_RGB_DISTANCE = float(np.sqrt(3.0))

_RANGE_TOLERANCE = 1e-9


def hex_to_rgb(hex_color: str) -> Tuple[int, int, int]:
    """Convert hex color string to RGB tuple.

    Supports "#ff0000", "ff0000", "#f00" and "f00".

    Args:
        hex_color: Hex color literal

    Returns:
        Tuple of 8-bit channel values

    Raises:
        ColorParseError: If the literal is not 3 or 6 hex digits
    """
    digits = hex_color.strip()
    if digits.startswith("#"):
        digits = digits[1:]

    if len(digits) not in (3, 6):
        raise ColorParseError(
            f"Hex color must be 3 or 6 characters long (got: {hex_color!r})"
        )
    if not all(ch in string.hexdigits for ch in digits):
        raise ColorParseError(f"Invalid hex digits in color {hex_color!r}")

    if len(digits) == 3:
        r, g, b = (int(ch, 16) * HEX_SHORTHAND_MULTIPLIER for ch in digits)
    else:
        r, g, b = (int(digits[i : i + 2], 16) for i in (0, 2, 4))
    return (r, g, b)


def rgb_to_hex(rgb: Sequence[int]) -> str:
    """Convert an 8-bit RGB triple to a ``#rrggbb`` string."""
    return "#{:02x}{:02x}{:02x}".format(*(int(c) for c in rgb))


@dataclass(frozen=True)
class Color:
    """An RGB color with every channel normalized to [0, 1]."""

    r: float
    g: float
    b: float

    def __post_init__(self):
        for name in ("r", "g", "b"):
            value = float(getattr(self, name))
            if not (-_RANGE_TOLERANCE <= value <= 1.0 + _RANGE_TOLERANCE):
                raise ValueError(
                    f"Color channel {name}={value} is outside the range [0, 1]"
                )
            object.__setattr__(self, name, min(1.0, max(0.0, value)))

    @classmethod
    def from_rgb8(cls, rgb: Sequence[int]) -> "Color":
        """Create a color from 8-bit channel values."""
        r, g, b = rgb
        return cls(r / 255.0, g / 255.0, b / 255.0)

    @classmethod
    def from_hex(cls, hex_color: str) -> "Color":
        """Create a color from a 3 or 6 digit hex literal."""
        return cls.from_rgb8(hex_to_rgb(hex_color))

    @classmethod
    def from_array(cls, values: Iterable[float]) -> "Color":
        """Create a color from any 3-element sequence, clipping to [0, 1]."""
        r, g, b = np.clip(np.asarray(values, dtype=np.float64), 0.0, 1.0)
        return cls(float(r), float(g), float(b))

    def to_rgb8(self) -> Tuple[int, int, int]:
        """Round every channel to the nearest 8-bit value."""
        r, g, b = (int(round(c * 255.0)) for c in (self.r, self.g, self.b))
        return (r, g, b)

    def to_hex(self) -> str:
        """Format as a lowercase ``#rrggbb`` literal."""
        return rgb_to_hex(self.to_rgb8())

    def as_array(self) -> np.ndarray:
        """Return the channels as a float64 array of shape (3,)."""
        return np.array([self.r, self.g, self.b], dtype=np.float64)

    def distance(self, other: "Color") -> float:
        """Euclidean distance to another color in normalized RGB space."""
        return float(np.linalg.norm(self.as_array() - other.as_array()))

    def snapped(self) -> "Color":
        """Return the nearest color on the 8-bit grid."""
        return Color.from_rgb8(self.to_rgb8())

    def __str__(self) -> str:
        return self.to_hex()


@dataclass(frozen=True)
class ForegroundSlot:
    """One entry of the declared foreground list.

    A slot is either ``Known`` (it carries a color) or ``Unknown`` (its color
    is resolved by deduction before decomposition runs).
    """

    color: Optional[Color] = None

    @classmethod
    def known(cls, color: Color) -> "ForegroundSlot":
        return cls(color=color)

    @classmethod
    def unknown(cls) -> "ForegroundSlot":
        return cls(color=None)

    @classmethod
    def parse(cls, literal: str) -> "ForegroundSlot":
        """Parse a hex literal or the ``auto`` token."""
        if literal.strip().lower() == UNKNOWN_TOKEN:
            return cls.unknown()
        return cls.known(Color.from_hex(literal))

    @property
    def is_unknown(self) -> bool:
        return self.color is None

    def __str__(self) -> str:
        return UNKNOWN_TOKEN if self.color is None else self.color.to_hex()


def parse_foreground_literals(literals: Iterable[str]) -> Tuple[ForegroundSlot, ...]:
    """Parse foreground color literals, reporting the offending position.

    Args:
        literals: Hex literals or ``auto`` tokens in declaration order

    Returns:
        Tuple of foreground slots
    """
    slots = []
    for i, literal in enumerate(literals):
        try:
            slots.append(ForegroundSlot.parse(literal))
        except ColorParseError as e:
            raise ColorParseError(
                f"Invalid foreground color literal #{i + 1}: {e}"
            ) from e
    return tuple(slots)


def colors_to_array(colors: Sequence[Color]) -> np.ndarray:
    """Stack colors into a float64 array of shape (k, 3)."""
    if not colors:
        return np.zeros((0, 3), dtype=np.float64)
    return np.stack([c.as_array() for c in colors])


def color_distances(colors: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Euclidean distances from each row of ``colors`` to ``reference``."""
    return np.linalg.norm(np.asarray(colors) - np.asarray(reference), axis=-1)


def known_colors(slots: Sequence[ForegroundSlot]) -> List[Color]:
    """Colors of the known slots, in slot order."""
    return [slot.color for slot in slots if slot.color is not None]
