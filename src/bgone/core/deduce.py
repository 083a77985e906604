"""Deduction of unknown foreground colors.

Unknown foreground slots are resolved by searching a pool of plausible colors
for the assignment that best explains the image. Candidates come from
inverting the blend equation for the image's most frequent colors, plus a few
standard pure colors. Every assignment is scored by decomposing the image's
distinct colors (weighted by pixel count) in the requested mode.
"""

from dataclasses import dataclass
from itertools import combinations, combinations_with_replacement
from math import comb
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..utils.color import (
    MAX_RGB_DISTANCE,
    Color,
    ForegroundSlot,
    color_distances,
    colors_to_array,
    known_colors,
)
from ..utils.config import DEFAULT_THRESHOLD
from ..utils.errors import ConfigurationError
from ..utils.logging import get_logger
from ..utils.parallel import parallel_map
from .unmix import EPSILON, EXACT_TOLERANCE, Unmixer, solve_free_color

logger = get_logger(__name__)

# Candidate pool caps per number of unknown colors
MAX_CANDIDATES_2_UNKNOWNS = 30  # exhaustive pair search
MAX_CANDIDATES_3_UNKNOWNS_ALL = 25  # exhaustive triple search
MAX_CANDIDATES_PRUNED = 20  # pool size once pruning is required
MAX_COMBINATIONS = 5000

# Only the most frequent observed colors seed candidates
MAX_SOURCE_COLORS = 100
CANDIDATE_ALPHAS = (0.25, 0.5, 0.75, 0.9, 1.0)

# Observed colors this close to the background carry no foreground signal
MIN_FOREGROUND_DISTANCE = 0.01
INVERSION_TOLERANCE = 2.0 / 255.0

SCORE_DECIMALS = 6
ASSIGNMENTS_PER_TASK = 64

STANDARD_COLORS = tuple(
    Color.from_rgb8(rgb)
    for rgb in [
        (255, 0, 0),  # Red
        (0, 255, 0),  # Green
        (0, 0, 255),  # Blue
        (255, 255, 0),  # Yellow
        (255, 0, 255),  # Magenta
        (0, 255, 255),  # Cyan
        (255, 128, 0),  # Orange
        (128, 0, 255),  # Purple
    ]
)

ScoreKey = Tuple[float, float, float, int]


@dataclass
class ColorHistogram:
    """Distinct colors of an image and how many pixels carry each.

    Rows are sorted by descending count, ties by first occurrence.
    """

    colors: np.ndarray
    counts: np.ndarray

    def __len__(self) -> int:
        return len(self.counts)

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    def top(self, n: int) -> "ColorHistogram":
        """The ``n`` most frequent colors."""
        return ColorHistogram(self.colors[:n], self.counts[:n])

    @classmethod
    def from_pixels(cls, rgb: np.ndarray) -> Tuple["ColorHistogram", np.ndarray]:
        """Build the histogram of an RGB buffer.

        Args:
            rgb: Colors (..., 3)

        Returns:
            Tuple of (histogram, inverse) where ``inverse`` maps every input
            pixel (flattened) to its histogram row
        """
        flat = np.asarray(rgb, dtype=np.float64).reshape(-1, 3)
        if len(flat) == 0:
            return cls(np.zeros((0, 3)), np.zeros(0, dtype=np.int64)), np.zeros(0, dtype=np.int64)

        unique, first_index, inverse, counts = np.unique(
            flat, axis=0, return_index=True, return_inverse=True, return_counts=True
        )
        order = np.lexsort((first_index, -counts))
        rank = np.empty_like(order)
        rank[order] = np.arange(len(order))

        histogram = cls(colors=unique[order], counts=counts[order])
        return histogram, rank[inverse.reshape(-1)]


def select_most_different_colors(colors: Sequence[Color], n: int) -> List[Color]:
    """Pick ``n`` mutually distant colors.

    The most saturated color is taken first, then the color farthest from
    everything already selected, repeatedly. Ties go to the earlier color.
    """
    if len(colors) <= n:
        return list(colors)

    values = colors_to_array(colors)
    saturation = values.max(axis=1) - values.min(axis=1)
    selected = [int(np.argmax(saturation))]
    nearest = np.linalg.norm(values - values[selected[0]], axis=1)

    while len(selected) < n:
        nearest[selected] = -1.0
        pick = int(np.argmax(nearest))
        selected.append(pick)
        nearest = np.minimum(nearest, np.linalg.norm(values - values[pick], axis=1))

    return [colors[i] for i in selected]


def resolve_slots(
    slots: Sequence[ForegroundSlot], deduced: Sequence[Color]
) -> List[Color]:
    """Substitute deduced colors into the unknown slots, in slot order."""
    remaining = iter(deduced)
    resolved = []
    for slot in slots:
        if slot.is_unknown:
            try:
                resolved.append(next(remaining))
            except StopIteration:
                raise ValueError("fewer deduced colors than unknown slots") from None
        else:
            resolved.append(slot.color)
    return resolved


class ForegroundDeducer:
    """Search for the colors of unknown foreground slots."""

    def __init__(
        self,
        background: Color,
        strict: bool = False,
        threshold: float = DEFAULT_THRESHOLD,
        n_jobs: int = 1,
        max_evaluation_colors: int = 4096,
    ):
        """Initialize foreground deducer.

        Args:
            background: Background color
            strict: Score assignments in strict mode
            threshold: Match radius and candidate deduplication radius
            n_jobs: joblib worker count for scoring
            max_evaluation_colors: Most frequent distinct colors used for scoring
        """
        if not (0.0 <= threshold <= 1.0):
            raise ConfigurationError(
                f"threshold must be between 0 and 1 (got {threshold})"
            )
        self.background = background
        self.strict = strict
        self.threshold = threshold
        self.n_jobs = n_jobs
        self.max_evaluation_colors = max_evaluation_colors

    def find_candidates(
        self, histogram: ColorHistogram, known: Sequence[Color] = ()
    ) -> List[Color]:
        """Build the deduplicated candidate pool.

        Raises:
            ConfigurationError: If no observed color differs from the background
        """
        bg = self.background.as_array()
        source = histogram.colors[:MAX_SOURCE_COLORS]
        source = source[color_distances(source, bg) >= MIN_FOREGROUND_DISTANCE]
        if len(source) == 0:
            raise ConfigurationError(
                "cannot deduce foreground colors: no pixel differs from the background"
            )

        # Invert observed = a * fg + (1 - a) * base for each base color
        inversions, valid = [], []
        for base in [bg] + [c.as_array() for c in known]:
            free_colors, free_alpha = solve_free_color(source, base)
            per_alpha, masks = [free_colors], [free_alpha > EPSILON]
            for a in CANDIDATE_ALPHAS:
                fg = (source - (1.0 - a) * base) / a
                per_alpha.append(fg)
                masks.append(
                    np.all((fg >= -INVERSION_TOLERANCE) & (fg <= 1.0 + INVERSION_TOLERANCE), axis=1)
                )
            inversions.append(np.stack(per_alpha, axis=1))
            valid.append(np.stack(masks, axis=1))

        # Most frequent observed colors first
        inversions = np.stack(inversions, axis=1).reshape(-1, 3)
        valid = np.stack(valid, axis=1).reshape(-1)
        raw = [Color.from_array(c).snapped() for c in inversions[valid]]
        raw.extend(STANDARD_COLORS)

        excluded = [self.background] + list(known)
        exclusion_radius = max(self.threshold, MIN_FOREGROUND_DISTANCE)

        candidates: List[Color] = []
        for color in raw:
            if any(color.distance(e) < exclusion_radius for e in excluded):
                continue
            if any(color.distance(c) <= self.threshold for c in candidates):
                continue
            candidates.append(color)

        if not candidates:
            raise ConfigurationError(
                "cannot deduce foreground colors: the candidate pool is empty"
            )
        return candidates

    def search_pool(self, candidates: Sequence[Color], unknown_count: int) -> List[Color]:
        """Cap the candidate pool so the combination count stays bounded."""
        pool = list(candidates)
        if unknown_count == 2:
            limit = MAX_CANDIDATES_2_UNKNOWNS
        elif unknown_count == 3:
            limit = (
                MAX_CANDIDATES_3_UNKNOWNS_ALL
                if len(pool) <= MAX_CANDIDATES_3_UNKNOWNS_ALL
                else MAX_CANDIDATES_PRUNED
            )
        elif unknown_count >= 4:
            limit = MAX_CANDIDATES_PRUNED
        else:
            limit = len(pool)

        while limit > unknown_count and comb(limit, unknown_count) > MAX_COMBINATIONS:
            limit -= 1

        return select_most_different_colors(pool, limit)

    def deduce(
        self, histogram: ColorHistogram, slots: Sequence[ForegroundSlot]
    ) -> List[Color]:
        """Resolve every unknown slot to a concrete color.

        Among colors that explain the image equally well the most opaque
        explanation wins. An image that only shows a color at partial opacity
        therefore deduces its strongest observed blend, not the pure color.

        Args:
            histogram: Distinct observed colors with pixel counts
            slots: Declared foreground slots

        Returns:
            One color per unknown slot, in slot order
        """
        unknown_count = sum(1 for slot in slots if slot.is_unknown)
        if unknown_count == 0:
            return []

        known = known_colors(slots)
        candidates = self.find_candidates(histogram, known)
        pool = self.search_pool(candidates, unknown_count)

        if len(pool) >= unknown_count:
            assignments = list(combinations(range(len(pool)), unknown_count))
        else:
            logger.warning(
                f"Only {len(pool)} candidate colors for {unknown_count} unknown slots; "
                "allowing repeated colors"
            )
            assignments = list(combinations_with_replacement(range(len(pool)), unknown_count))

        sample = histogram.top(self.max_evaluation_colors)
        weights = sample.counts / max(sample.counts.sum(), 1)

        logger.debug(
            f"Scoring {len(assignments)} assignments from {len(pool)} candidates "
            f"({len(candidates)} before capping) over {len(sample)} colors"
        )

        indexed = list(enumerate(assignments))
        batches = [
            indexed[start : start + ASSIGNMENTS_PER_TASK]
            for start in range(0, len(indexed), ASSIGNMENTS_PER_TASK)
        ]
        best_keys = parallel_map(
            score_assignments,
            batches,
            n_jobs=self.n_jobs,
            pool=pool,
            slots=tuple(slots),
            background=self.background,
            strict=self.strict,
            threshold=self.threshold,
            colors=sample.colors,
            weights=weights,
        )
        best = min(best_keys)

        return [pool[i] for i in assignments[best[-1]]]


def score_assignment(
    combo: Sequence[int],
    pool: Sequence[Color],
    slots: Sequence[ForegroundSlot],
    background: Color,
    strict: bool,
    threshold: float,
    colors: np.ndarray,
    weights: np.ndarray,
) -> Tuple[float, float, float]:
    """Score one candidate assignment; lower is better.

    Returns:
        Tuple of (mean squared palette residual beyond quantization noise,
        mean opacity loss, negative mean separation of the candidates from
        the background), rounded so near-equal scores tie
    """
    chosen = [pool[i] for i in combo]
    unmixer = Unmixer(background, resolve_slots(slots, chosen), strict, threshold)

    decomposition = unmixer.decompose_many(colors)
    palette = decomposition.residual if strict else unmixer.palette_residual(colors)

    # Residuals within one quantization step count as exact
    excess = np.maximum(palette - EXACT_TOLERANCE, 0.0)
    error = float(np.dot(weights, excess**2))
    opacity_loss = float(np.dot(weights, 1.0 - decomposition.alpha))
    separation = float(np.mean([c.distance(background) for c in chosen])) / MAX_RGB_DISTANCE

    return (
        round(error, SCORE_DECIMALS),
        round(opacity_loss, SCORE_DECIMALS),
        -round(separation, SCORE_DECIMALS),
    )


def score_assignments(
    batch: Sequence[Tuple[int, Sequence[int]]], **shared
) -> Optional[ScoreKey]:
    """Worker entry point: best score key within a batch of assignments."""
    best: Optional[ScoreKey] = None
    for index, combo in batch:
        key = score_assignment(combo, **shared) + (index,)
        if best is None or key < best:
            best = key
    return best


def deduce(
    histogram: ColorHistogram,
    background: Color,
    slots: Sequence[ForegroundSlot],
    strict: bool = False,
    threshold: float = DEFAULT_THRESHOLD,
    n_jobs: int = 1,
    max_evaluation_colors: int = 4096,
) -> List[Color]:
    """Deduce the colors of the unknown slots (one per unknown, slot order)."""
    deducer = ForegroundDeducer(
        background,
        strict=strict,
        threshold=threshold,
        n_jobs=n_jobs,
        max_evaluation_colors=max_evaluation_colors,
    )
    return deducer.deduce(histogram, slots)
