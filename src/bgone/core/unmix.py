"""Pixel decomposition: unmix observed colors into background and foreground.

Every observed color ``P`` is explained as a blend over the background ``B``::

    P = alpha * C + (1 - alpha) * B

Three cases are supported:

* **Free color** (non-strict, no declared colors): ``C`` is unknown. The
  smallest alpha that keeps every channel of ``C`` inside [0, 1] is chosen,
  giving maximum transparency with exact reconstruction.
* **Palette match** (non-strict, declared colors): a pixel lying on the blend
  line between the background and its nearest declared color is expressed with
  that color. Anything else falls back to the free-color solve, so non-strict
  mode always reconstructs exactly.
* **Strict** (declared colors only): bounded least squares over the foreground
  weights (``w_i >= 0``, ``sum(w_i) <= 1``, background weight
  ``w_0 = 1 - sum(w_i)``), solved by enumerating active sets.

All solvers are vectorized over a batch of colors, so the same code path
serves a single pixel and a whole image's distinct colors.
"""

from dataclasses import dataclass
from itertools import combinations
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..utils.color import Color, colors_to_array
from ..utils.config import DEFAULT_THRESHOLD
from ..utils.errors import ConfigurationError

EPSILON = 1e-10

# A reconstruction within one 8-bit quantization step counts as exact
EXACT_TOLERANCE = 1.0 / 255.0

FEASIBILITY_TOLERANCE = 1e-9
RESIDUAL_TIE_TOLERANCE = 1e-9
OPACITY_TIE_TOLERANCE = 1e-9
PREFERENCE_TIE_TOLERANCE = 1e-9
RANK_TOLERANCE = 1e-8

# Foreground directions live in RGB (3-D); with the sum constraint pinned an
# active set of more than 4 colors is always linearly dependent.
MAX_ACTIVE_COLORS = 4


@dataclass(frozen=True)
class PixelResult:
    """Decomposition of a single pixel."""

    color: Color
    alpha: float
    residual: float = 0.0

    @property
    def is_exact(self) -> bool:
        return self.residual <= EXACT_TOLERANCE


@dataclass
class Decomposition:
    """Decomposition of a batch of colors.

    Attributes:
        colors: Output colors (N, 3)
        alpha: Output opacity (N,)
        residual: Distance between each observed color and its reconstruction (N,)
    """

    colors: np.ndarray
    alpha: np.ndarray
    residual: np.ndarray

    def __len__(self) -> int:
        return len(self.alpha)

    def pixel(self, index: int) -> PixelResult:
        return PixelResult(
            color=Color.from_array(self.colors[index]),
            alpha=float(self.alpha[index]),
            residual=float(self.residual[index]),
        )

    @classmethod
    def concatenate(cls, parts: Sequence["Decomposition"]) -> "Decomposition":
        if not parts:
            return cls(np.zeros((0, 3)), np.zeros(0), np.zeros(0))
        return cls(
            colors=np.concatenate([p.colors for p in parts]),
            alpha=np.concatenate([p.alpha for p in parts]),
            residual=np.concatenate([p.residual for p in parts]),
        )


@dataclass(frozen=True)
class _ActiveSet:
    """Closed-form solve restricted to a subset of foreground colors.

    Weights are ``gain @ (P - B) + offset``. When ``saturated`` is set the
    weights are constrained to sum to exactly 1.
    """

    indices: Tuple[int, ...]
    gain: np.ndarray
    offset: np.ndarray
    saturated: bool


def compose_over(
    colors: np.ndarray, alpha: np.ndarray, background: np.ndarray
) -> np.ndarray:
    """Composite colors with the given opacity over a solid background.

    Args:
        colors: Foreground colors (N, 3)
        alpha: Opacity (N,)
        background: Background color (3,)

    Returns:
        Composited colors (N, 3)
    """
    alpha = np.asarray(alpha)[:, None]
    return alpha * colors + (1.0 - alpha) * np.asarray(background)


def solve_free_color(
    observed: np.ndarray, background: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Find the most transparent exact decomposition with an arbitrary color.

    For each channel the smallest alpha keeping ``C = B + (P - B) / alpha``
    inside [0, 1] is computed; the largest of the three is binding.

    Args:
        observed: Observed colors (N, 3)
        background: Background color (3,)

    Returns:
        Tuple of (colors (N, 3), alpha (N,))
    """
    diff = observed - background
    toward_white = np.where(
        diff > EPSILON, diff / np.maximum(1.0 - background, EPSILON), 0.0
    )
    toward_black = np.where(
        diff < -EPSILON, -diff / np.maximum(background, EPSILON), 0.0
    )
    alpha = np.clip(np.maximum(toward_white, toward_black).max(axis=1), 0.0, 1.0)

    opaque = alpha > EPSILON
    safe_alpha = np.where(opaque, alpha, 1.0)[:, None]
    colors = np.where(opaque[:, None], background + diff / safe_alpha, background)
    return np.clip(colors, 0.0, 1.0), np.where(opaque, alpha, 0.0)


class Unmixer:
    """Decompose observed colors against a fixed background and palette.

    The palette, background and mode are read-only after construction, so a
    single instance can be shared across worker processes.

    In non-strict mode a pixel only takes a declared color when that color
    reproduces it to within one 8-bit step, so raising ``threshold`` above
    1/255 does not loosen palette matching there. The threshold matters for
    the strict tie-break and for deduction.
    """

    def __init__(
        self,
        background: Color,
        foregrounds: Sequence[Color] = (),
        strict: bool = False,
        threshold: float = DEFAULT_THRESHOLD,
    ):
        """Initialize the unmixer.

        Args:
            background: Background color
            foregrounds: Declared foreground colors, in slot order
            strict: Restrict output colors to the declared palette
            threshold: Match radius for palette assignment

        Raises:
            ConfigurationError: If strict mode has no colors or the threshold
                is outside [0, 1]
        """
        if not (0.0 <= threshold <= 1.0):
            raise ConfigurationError(
                f"threshold must be between 0 and 1 (got {threshold})"
            )
        if strict and not foregrounds:
            raise ConfigurationError(
                "strict mode requires at least one foreground color"
            )

        self.background = background
        self.foregrounds = list(foregrounds)
        self.strict = strict
        self.threshold = threshold

        self._bg = background.as_array()
        self._fg = colors_to_array(self.foregrounds)
        self._directions = self._fg - self._bg
        self._direction_norms_sq = np.sum(self._directions**2, axis=1)
        self._active_sets: Optional[List[_ActiveSet]] = None

    def decompose(self, observed: Color) -> PixelResult:
        """Decompose a single observed color."""
        return self.decompose_many(observed.as_array()[None, :]).pixel(0)

    def decompose_many(self, observed: np.ndarray) -> Decomposition:
        """Decompose a batch of observed colors.

        Args:
            observed: Observed colors (N, 3) in [0, 1]

        Returns:
            Per-color decomposition
        """
        observed = np.asarray(observed, dtype=np.float64).reshape(-1, 3)

        if self.strict:
            colors, alpha, _, _ = self._solve_strict(observed)
        elif len(self.foregrounds) == 0:
            colors, alpha = solve_free_color(observed, self._bg)
        else:
            colors, alpha = self._solve_palette_match(observed)

        reconstructed = compose_over(colors, alpha, self._bg)
        residual = np.linalg.norm(observed - reconstructed, axis=1)
        return Decomposition(colors=colors, alpha=alpha, residual=residual)

    def palette_residual(self, observed: np.ndarray) -> np.ndarray:
        """Distance from each color to its best explanation by the palette.

        This is the strict solve's residual regardless of mode; in non-strict
        mode the free-color fallback would otherwise hide palette misfits.
        """
        observed = np.asarray(observed, dtype=np.float64).reshape(-1, 3)
        if len(self.foregrounds) == 0:
            return np.linalg.norm(observed - self._bg, axis=1)
        return self._solve_strict(observed)[2]

    def palette_weights(self, observed: np.ndarray) -> np.ndarray:
        """Weight of each declared color in the strict explanation of each color.

        When several mixes reproduce a color equally well at the same opacity,
        the one leaning on colors closest to the matched declared color wins.

        Args:
            observed: Observed colors (N, 3)

        Returns:
            Weights (N, k) in slot order; each row sums to the strict alpha
        """
        observed = np.asarray(observed, dtype=np.float64).reshape(-1, 3)
        if len(self.foregrounds) == 0:
            return np.zeros((len(observed), 0))
        return self._solve_strict(observed)[3]

    def nearest_foreground(self, observed: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Match each color to the nearest background/foreground blend line.

        Args:
            observed: Observed colors (N, 3)

        Returns:
            Tuple of (index (N,), blend weight (N,), distance (N,)). Ties go to
            the earliest slot.
        """
        weights, distances = self._project_onto_lines(observed)
        nearest = np.argmin(distances, axis=1)
        rows = np.arange(len(observed))
        return nearest, weights[rows, nearest], distances[rows, nearest]

    def _project_onto_lines(self, observed: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        diff = observed - self._bg
        usable = self._direction_norms_sq > EPSILON
        safe_norms = np.where(usable, self._direction_norms_sq, 1.0)

        weights = diff @ self._directions.T / safe_norms
        weights = np.where(usable, np.clip(weights, 0.0, 1.0), 0.0)

        offsets = diff[:, None, :] - weights[:, :, None] * self._directions[None, :, :]
        return weights, np.linalg.norm(offsets, axis=2)

    def _solve_palette_match(self, observed: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        free_colors, free_alpha = solve_free_color(observed, self._bg)
        nearest, weight, distance = self.nearest_foreground(observed)

        use_palette = (
            (distance <= self.threshold)
            & (distance <= EXACT_TOLERANCE)
            & (weight > EPSILON)
        )
        colors = np.where(use_palette[:, None], self._fg[nearest], free_colors)
        alpha = np.where(use_palette, weight, free_alpha)
        return colors, alpha

    def _get_active_sets(self) -> List[_ActiveSet]:
        if self._active_sets is None:
            self._active_sets = _build_active_sets(self._directions)
        return self._active_sets

    def _solve_strict(
        self, observed: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        n = len(observed)
        k = len(self.foregrounds)
        diff = observed - self._bg

        # The empty active set (fully transparent) is always feasible
        best_weights = np.zeros((n, k))
        best_residual = np.linalg.norm(diff, axis=1)
        best_alpha = np.zeros(n)
        best_preference = np.zeros(n)

        # Final tie-break: favor weight on colors close to the matched color
        nearest, _, distance = self.nearest_foreground(observed)
        pairwise = np.linalg.norm(self._fg[:, None, :] - self._fg[None, :, :], axis=2)
        closeness = np.where((distance <= self.threshold)[:, None], pairwise[nearest], 0.0)

        for active in self._get_active_sets():
            idx = list(active.indices)
            weights = diff @ active.gain.T + active.offset

            feasible = np.all(weights >= -FEASIBILITY_TOLERANCE, axis=1)
            feasible &= weights.sum(axis=1) <= 1.0 + FEASIBILITY_TOLERANCE
            if not feasible.any():
                continue

            weights = np.clip(weights, 0.0, None)
            totals = weights.sum(axis=1)
            weights = np.where((totals > 1.0)[:, None], weights / np.maximum(totals, EPSILON)[:, None], weights)
            alpha = weights.sum(axis=1)

            residual = np.linalg.norm(diff - weights @ self._directions[idx], axis=1)
            preference = np.sum(weights * closeness[:, idx], axis=1)

            same_residual = np.abs(residual - best_residual) <= RESIDUAL_TIE_TOLERANCE
            same_alpha = np.abs(alpha - best_alpha) <= OPACITY_TIE_TOLERANCE
            better = feasible & (
                (residual < best_residual - RESIDUAL_TIE_TOLERANCE)
                | (same_residual & (alpha > best_alpha + OPACITY_TIE_TOLERANCE))
                | (
                    same_residual
                    & same_alpha
                    & (preference < best_preference - PREFERENCE_TIE_TOLERANCE)
                )
            )
            if not better.any():
                continue

            best_weights[better] = 0.0
            best_weights[np.ix_(better, idx)] = weights[better]
            best_residual = np.where(better, residual, best_residual)
            best_alpha = np.where(better, alpha, best_alpha)
            best_preference = np.where(better, preference, best_preference)

        alpha = np.clip(best_alpha, 0.0, 1.0)
        opaque = alpha > EPSILON
        safe_alpha = np.where(opaque, alpha, 1.0)[:, None]
        colors = np.where(opaque[:, None], best_weights @ self._fg / safe_alpha, self._bg)
        alpha = np.where(opaque, alpha, 0.0)
        return np.clip(colors, 0.0, 1.0), alpha, best_residual, best_weights


def _build_active_sets(directions: np.ndarray) -> List[_ActiveSet]:
    """Precompute the closed-form solve of every non-degenerate active set.

    Colors that coincide with the background (zero-length directions) and
    linearly dependent subsets are skipped.
    """
    norms = np.linalg.norm(directions, axis=1)
    usable = [i for i in range(len(directions)) if norms[i] > EPSILON]

    active_sets = []
    for size in range(1, min(len(usable), MAX_ACTIVE_COLORS) + 1):
        for subset in combinations(usable, size):
            columns = directions[list(subset)].T  # (3, size)

            if size <= 3 and np.linalg.matrix_rank(columns, tol=RANK_TOLERANCE) == size:
                active_sets.append(
                    _ActiveSet(
                        indices=subset,
                        gain=np.linalg.pinv(columns),
                        offset=np.zeros(size),
                        saturated=False,
                    )
                )

            augmented = np.vstack([columns, np.ones((1, size))])
            if np.linalg.matrix_rank(augmented, tol=RANK_TOLERANCE) == size:
                kkt = np.zeros((size + 1, size + 1))
                kkt[:size, :size] = columns.T @ columns
                kkt[:size, size] = 1.0
                kkt[size, :size] = 1.0
                inverse = np.linalg.inv(kkt)
                active_sets.append(
                    _ActiveSet(
                        indices=subset,
                        gain=inverse[:size, :size] @ columns.T,
                        offset=inverse[:size, size],
                        saturated=True,
                    )
                )

    return active_sets


def decompose(
    observed: Color,
    background: Color,
    foregrounds: Sequence[Color] = (),
    strict: bool = False,
    threshold: float = DEFAULT_THRESHOLD,
) -> PixelResult:
    """Decompose one observed color into an output color and alpha.

    Args:
        observed: Observed pixel color
        background: Background color
        foregrounds: Declared foreground colors
        strict: Restrict output colors to the declared palette
        threshold: Match radius for palette assignment

    Returns:
        Output color, alpha and reconstruction residual
    """
    return Unmixer(background, foregrounds, strict, threshold).decompose(observed)


def decompose_chunk(observed: np.ndarray, unmixer: Unmixer) -> Decomposition:
    """Worker entry point for parallel decomposition."""
    return unmixer.decompose_many(observed)
