"""BDD tests for deducing unknown foreground colors.

Images are built from a solid background and foreground colors blended at
known opacities, quantized to 8 bits like real image files.
"""

import numpy as np
import pytest

from bgone.core.deduce import (
    MAX_CANDIDATES_PRUNED,
    MAX_COMBINATIONS,
    STANDARD_COLORS,
    ColorHistogram,
    ForegroundDeducer,
    deduce,
    resolve_slots,
    score_assignment,
    select_most_different_colors,
)
from bgone.utils.color import Color, ForegroundSlot
from bgone.utils.errors import ConfigurationError

WHITE = Color(1.0, 1.0, 1.0)
RED = Color(1.0, 0.0, 0.0)
BLUE = Color(0.0, 0.0, 1.0)


def blended_image(background, foregrounds, alphas=(1.0, 0.75, 0.5, 0.25), size=40):
    """Background with one stripe per (foreground, alpha) pair.

    Fully opaque stripes are the widest so the pure colors dominate the
    histogram.
    """
    bg = background.as_array()
    image = np.tile(bg, (size, size, 1))
    row = 2
    for color in foregrounds:
        for alpha in alphas:
            height = 4 if alpha == 1.0 else 2
            image[row : row + height, 2:-2] = alpha * color.as_array() + (1.0 - alpha) * bg
            row += height + 1
    return np.rint(image * 255.0) / 255.0


class TestColorHistogram:
    """Test building the distinct color histogram."""

    def test_sorted_by_frequency(self):
        """Test that the most frequent color comes first."""
        pixels = np.array([[[0.0, 0.0, 0.0], [1.0, 1.0, 1.0], [1.0, 1.0, 1.0]]])
        histogram, _ = ColorHistogram.from_pixels(pixels)

        np.testing.assert_allclose(histogram.colors[0], [1.0, 1.0, 1.0])
        assert histogram.counts.tolist() == [2, 1]
        assert histogram.total == 3

    def test_ties_keep_first_occurrence(self):
        """Test that equally frequent colors keep scan order."""
        pixels = np.array([[[0.5, 0.5, 0.5], [0.0, 0.0, 0.0]]])
        histogram, _ = ColorHistogram.from_pixels(pixels)
        np.testing.assert_allclose(histogram.colors[0], [0.5, 0.5, 0.5])

    def test_inverse_rebuilds_pixels(self):
        """Test that the inverse index scatters colors back to pixels."""
        rng = np.random.default_rng(5)
        palette = rng.random((6, 3))
        pixels = palette[rng.integers(0, 6, size=(8, 9))]

        histogram, inverse = ColorHistogram.from_pixels(pixels)

        assert len(histogram) <= 6
        np.testing.assert_allclose(histogram.colors[inverse].reshape(8, 9, 3), pixels)

    def test_top(self):
        """Test truncating to the most frequent colors."""
        pixels = np.array([[[0.0, 0.0, 0.0]] * 3 + [[1.0, 0.0, 0.0]] * 2 + [[0.0, 1.0, 0.0]]])
        histogram, _ = ColorHistogram.from_pixels(pixels)

        top = histogram.top(2)

        assert len(top) == 2
        assert top.total == 5


class TestCandidatePool:
    """Test candidate generation and pruning."""

    def test_standard_colors_included(self):
        """Test that primaries and secondaries join the pool."""
        histogram, _ = ColorHistogram.from_pixels(blended_image(WHITE, [RED]))
        candidates = ForegroundDeducer(WHITE).find_candidates(histogram)

        assert RED in candidates
        assert BLUE in candidates

    def test_background_and_known_colors_excluded(self):
        """Test that candidates never duplicate declared colors."""
        histogram, _ = ColorHistogram.from_pixels(blended_image(WHITE, [RED, BLUE]))
        candidates = ForegroundDeducer(WHITE).find_candidates(histogram, known=[RED])

        assert all(c.distance(WHITE) >= 0.05 for c in candidates)
        assert all(c.distance(RED) >= 0.05 for c in candidates)

    def test_candidates_are_deduplicated(self):
        """Test that no two candidates lie within the threshold."""
        histogram, _ = ColorHistogram.from_pixels(blended_image(WHITE, [Color.from_hex("#3366cc")]))
        candidates = ForegroundDeducer(WHITE, threshold=0.05).find_candidates(histogram)

        for i, a in enumerate(candidates):
            for b in candidates[i + 1 :]:
                assert a.distance(b) > 0.05

    def test_candidates_on_8bit_grid(self):
        """Test that candidates are snapped to representable colors."""
        histogram, _ = ColorHistogram.from_pixels(blended_image(WHITE, [Color.from_hex("#3366cc")]))
        for color in ForegroundDeducer(WHITE).find_candidates(histogram):
            assert color == color.snapped()

    def test_background_only_image_is_an_error(self):
        """Test that an image with nothing but background cannot be deduced."""
        histogram, _ = ColorHistogram.from_pixels(np.ones((5, 5, 3)))
        with pytest.raises(ConfigurationError):
            ForegroundDeducer(WHITE).find_candidates(histogram)

    def test_select_most_different_starts_saturated(self):
        """Test that pruning keeps the most saturated color first."""
        colors = [Color(0.5, 0.5, 0.5), Color(0.6, 0.5, 0.5), RED, BLUE]
        selected = select_most_different_colors(colors, 2)

        assert selected[0] == RED
        assert selected[1] == BLUE

    def test_select_returns_all_when_small(self):
        """Test that a small pool is returned unchanged."""
        assert select_most_different_colors([RED, BLUE], 5) == [RED, BLUE]

    @pytest.mark.parametrize("unknowns, limit", [(1, 40), (2, 30), (3, 20), (4, 20)])
    def test_search_pool_caps(self, unknowns, limit):
        """Test the candidate caps per number of unknown colors."""
        rng = np.random.default_rng(9)
        pool = [Color.from_array(c).snapped() for c in rng.random((40, 3))]

        capped = ForegroundDeducer(WHITE).search_pool(pool, unknowns)

        assert len(capped) == limit

    def test_search_pool_bounds_combinations(self):
        """Test that many unknowns shrink the pool below the combination cap."""
        from math import comb

        rng = np.random.default_rng(9)
        pool = [Color.from_array(c).snapped() for c in rng.random((40, 3))]

        capped = ForegroundDeducer(WHITE).search_pool(pool, 5)

        assert len(capped) < MAX_CANDIDATES_PRUNED
        assert comb(len(capped), 5) <= MAX_COMBINATIONS


class TestDeduction:
    """BDD tests for resolving unknown slots.

    Acceptance Criteria:
    Given an image of one or more colors blended over a solid background
    When the colors are declared unknown
    Then deduction recovers them within the threshold
    And repeated runs select the same colors
    """

    def test_recovers_single_color(self):
        """Test deduction stability for one unknown color."""
        # Given a blue-ish color blended over white at known alphas
        target = Color.from_hex("#3366cc")
        histogram, _ = ColorHistogram.from_pixels(blended_image(WHITE, [target]))

        # When the only slot is unknown
        deduced = deduce(histogram, WHITE, (ForegroundSlot.unknown(),), n_jobs=1)

        # Then the original color is recovered
        assert len(deduced) == 1
        assert deduced[0].distance(target) <= 0.05

    def test_recovers_single_color_strict(self):
        """Test deduction in strict mode."""
        target = Color.from_hex("#e04010")
        histogram, _ = ColorHistogram.from_pixels(blended_image(WHITE, [target]))

        deduced = deduce(histogram, WHITE, (ForegroundSlot.unknown(),), strict=True, n_jobs=1)

        assert deduced[0].distance(target) <= 0.05

    def test_translucent_only_image_yields_most_opaque_blend(self):
        """Test the limit of recovery when no pixel shows the pure color."""
        # Given #3366cc appearing over white only at 80%, 60% and 40%
        target = Color.from_hex("#3366cc")
        image = blended_image(WHITE, [target], alphas=(0.8, 0.6, 0.4))
        histogram, _ = ColorHistogram.from_pixels(image)

        # When the only slot is unknown
        deduced = deduce(histogram, WHITE, (ForegroundSlot.unknown(),), n_jobs=1)

        # Then the strongest observed blend is chosen, since it explains every
        # pixel at higher opacity than the true color would
        assert deduced[0].to_hex() == "#5c85d6"
        assert deduced[0].distance(target) > 0.05

    def test_recovers_two_colors(self):
        """Test deduction of two unknown colors at once."""
        histogram, _ = ColorHistogram.from_pixels(blended_image(WHITE, [RED, BLUE]))
        slots = (ForegroundSlot.unknown(), ForegroundSlot.unknown())

        deduced = deduce(histogram, WHITE, slots, n_jobs=1)

        assert sorted(c.to_hex() for c in deduced) == ["#0000ff", "#ff0000"]

    def test_known_colors_held_fixed(self):
        """Test that a known slot is used while deducing the other."""
        histogram, _ = ColorHistogram.from_pixels(blended_image(WHITE, [RED, BLUE]))
        slots = (ForegroundSlot.known(RED), ForegroundSlot.unknown())

        deduced = deduce(histogram, WHITE, slots, n_jobs=1)

        assert [c.to_hex() for c in deduced] == ["#0000ff"]
        assert resolve_slots(slots, deduced) == [RED, BLUE]

    def test_no_unknown_slots(self):
        """Test that nothing is deduced when every slot is known."""
        histogram, _ = ColorHistogram.from_pixels(blended_image(WHITE, [RED]))
        assert deduce(histogram, WHITE, (ForegroundSlot.known(RED),)) == []

    def test_deterministic(self):
        """Test that repeated runs select the same colors."""
        histogram, _ = ColorHistogram.from_pixels(
            blended_image(WHITE, [Color.from_hex("#3366cc"), Color.from_hex("#cc9933")])
        )
        slots = (ForegroundSlot.unknown(), ForegroundSlot.unknown())

        first = deduce(histogram, WHITE, slots, n_jobs=1)
        second = deduce(histogram, WHITE, slots, n_jobs=1)

        assert first == second

    def test_invalid_threshold(self):
        """Test that the threshold range is enforced."""
        with pytest.raises(ConfigurationError):
            ForegroundDeducer(WHITE, threshold=2.0)


class TestScoring:
    """Test the assignment score ordering."""

    def test_equal_error_prefers_color_farther_from_background(self):
        """Test the tie-break on distance from the background."""
        # Given only background pixels, every candidate explains them equally
        colors = np.array([[1.0, 1.0, 1.0]])
        weights = np.array([1.0])
        pink = Color.from_rgb8((255, 128, 128))
        shared = dict(
            pool=[pink, RED],
            slots=(ForegroundSlot.unknown(),),
            background=WHITE,
            strict=False,
            threshold=0.05,
            colors=colors,
            weights=weights,
        )

        pink_key = score_assignment((0,), **shared)
        red_key = score_assignment((1,), **shared)

        # Then error and opacity tie and red wins on separation
        assert pink_key[:2] == red_key[:2]
        assert red_key < pink_key

    def test_palette_fit_beats_opacity(self):
        """Test that a color that explains the pixels outranks one that does not."""
        colors = np.array([[1.0, 0.5, 0.5], [1.0, 0.0, 0.0]])
        weights = np.array([0.5, 0.5])
        shared = dict(
            pool=[RED, BLUE],
            slots=(ForegroundSlot.unknown(),),
            background=WHITE,
            strict=False,
            threshold=0.05,
            colors=colors,
            weights=weights,
        )

        assert score_assignment((0,), **shared) < score_assignment((1,), **shared)

    def test_standard_colors(self):
        """Test the fixed standard color list."""
        assert len(STANDARD_COLORS) == 8
        assert STANDARD_COLORS[0] == RED
