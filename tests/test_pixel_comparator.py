"""Tests for the pixel comparator."""

import numpy as np
import pytest
from PIL import Image

from conftest import BLACK, RED, WHITE, solid, with_block, with_changed_pixels
from visual_verdict.comparator.pixel import PixelComparator
from visual_verdict.errors import ConfigurationError, ImageInputError
from visual_verdict.models.comparison import IgnoreRegion


@pytest.fixture
def comparator() -> PixelComparator:
    return PixelComparator()


class TestIdentity:
    """Comparing an image with itself never reports a difference."""

    @pytest.mark.parametrize("tolerance", [0.0, 0.01, 0.5])
    def test_solid_image_matches_itself(self, comparator, tolerance):
        """Test a solid image matches itself at any tolerance."""
        image = solid(WHITE)
        result = comparator.compare(image, image, tolerance)
        assert result.diff_percentage == 0
        assert result.match is True
        assert result.diff_pixel_count == 0

    def test_noisy_image_matches_itself(self, comparator):
        """Test a random-noise image matches its copy at zero tolerance."""
        rng = np.random.default_rng(42)
        image = Image.fromarray(rng.integers(0, 256, (60, 80, 3), dtype=np.uint8))
        result = comparator.compare(image, image.copy(), 0.0)
        assert result.match is True
        assert result.diff_percentage == 0


class TestThreshold:
    """Tests for the per-pixel noise threshold and the diff percentage."""

    def test_single_red_pixel_within_tolerance(self, comparator):
        """Test one changed pixel out of 10000 passes at 1% tolerance."""
        actual = with_changed_pixels(1, changed=RED)
        result = comparator.compare(solid(WHITE), actual, 0.01)
        assert result.diff_pixel_count == 1
        assert result.total_pixel_count == 10000
        assert result.diff_percentage == pytest.approx(0.0001)
        assert result.match is True

    def test_tolerance_zero_rejects_single_pixel(self, comparator):
        """Test zero tolerance fails on a single changed pixel."""
        actual = with_changed_pixels(1, changed=RED)
        result = comparator.compare(solid(WHITE), actual, 0.0)
        assert result.match is False

    def test_subthreshold_noise_is_ignored(self, comparator):
        """Test differences below the noise threshold are not counted."""
        result = comparator.compare(solid(WHITE), solid((230, 230, 230)), 0.0)
        assert result.diff_pixel_count == 0
        assert result.match is True

    def test_white_versus_black_is_full_diff(self, comparator):
        """Test white against black differs on every pixel."""
        result = comparator.compare(solid(WHITE), solid(BLACK), 0.01)
        assert result.diff_percentage == pytest.approx(1.0)
        assert result.match is False

    def test_custom_noise_threshold(self):
        """Test a lower noise threshold counts faint differences."""
        strict = PixelComparator(noise_threshold=10)
        result = strict.compare(solid(WHITE), solid((230, 230, 230)), 0.0)
        assert result.diff_percentage == pytest.approx(1.0)

    def test_alpha_channel_is_ignored(self, comparator):
        """Test an opaque RGBA capture matches its RGB baseline."""
        rgba = Image.new("RGBA", (100, 100), (255, 255, 255, 255))
        result = comparator.compare(solid(WHITE), rgba, 0.0)
        assert result.match is True


class TestMonotonicity:
    """Tests for match behaviour as tolerance grows."""

    def test_raising_tolerance_never_turns_pass_into_fail(self, comparator):
        """Test match is non-decreasing in tolerance."""
        baseline = solid(WHITE)
        actual = with_changed_pixels(1000)  # 10%
        tolerances = [0.0, 0.05, 0.0999, 0.1, 0.2, 1.0]
        matches = [comparator.compare(baseline, actual, t).match for t in tolerances]
        assert matches == sorted(matches)
        assert matches == [False, False, False, True, True, True]


class TestIgnoreRegions:
    """Tests for masking ignore regions before differencing."""

    def test_masking_all_differences_matches_at_zero_tolerance(self, comparator):
        """Test masking every changed pixel gives a match at zero tolerance."""
        actual = with_block((10, 10, 20, 20))
        region = IgnoreRegion(x=10, y=10, width=20, height=20)
        result = comparator.compare(solid(WHITE), actual, 0.0, [region])
        assert result.diff_pixel_count == 0
        assert result.match is True

    def test_partial_mask_counts_remaining_pixels(self, comparator):
        """Test pixels outside a partial mask are still counted."""
        actual = with_block((10, 10, 20, 20))
        region = IgnoreRegion(x=10, y=10, width=10, height=20)
        result = comparator.compare(solid(WHITE), actual, 0.0, [region])
        assert result.diff_pixel_count == 200

    def test_region_outside_image_is_harmless(self, comparator):
        """Test a region beyond the image bounds masks nothing."""
        actual = with_block((0, 0, 5, 5))
        region = IgnoreRegion(x=500, y=500, width=10, height=10)
        result = comparator.compare(solid(WHITE), actual, 0.0, [region])
        assert result.diff_pixel_count == 25

    def test_region_is_clipped_to_image(self, comparator):
        """Test a region overhanging the edge is clipped, not rejected."""
        actual = with_block((90, 90, 10, 10))
        region = IgnoreRegion(x=90, y=90, width=50, height=50)
        result = comparator.compare(solid(WHITE), actual, 0.0, [region])
        assert result.match is True


class TestResolutionMismatch:
    """Tests for rescaling captures to the baseline size."""

    def test_same_color_different_size_matches(self, comparator):
        """Test solid images of different sizes match after rescaling."""
        result = comparator.compare(solid(RED, (100, 100)), solid(RED, (50, 50)), 0.01)
        assert result.was_scaled is True
        assert result.match is True
        assert result.scale_factor == pytest.approx(2.0)

    def test_original_actual_dimensions_are_preserved(self, comparator):
        """Test the result keeps the pre-scale capture dimensions."""
        result = comparator.compare(solid(WHITE, (100, 80)), solid(WHITE, (200, 160)), 0.01)
        assert result.actual_width == 200
        assert result.actual_height == 160
        assert result.baseline_width == 100
        assert result.baseline_height == 80
        assert result.scale_factor == pytest.approx(0.5)
        assert result.diff_image.size == (100, 80)

    def test_same_size_is_not_scaled(self, comparator):
        """Test equal sizes leave was_scaled false."""
        result = comparator.compare(solid(WHITE), solid(WHITE), 0.0)
        assert result.was_scaled is False
        assert result.scale_factor == 1.0


class TestInvalidInput:
    """Tests for rejecting unusable inputs."""

    def test_zero_sized_baseline_fails_fast(self, comparator):
        """Test a zero-sized baseline raises ImageInputError."""
        with pytest.raises(ImageInputError):
            comparator.compare(Image.new("RGB", (0, 0)), solid(WHITE), 0.01)

    def test_zero_sized_actual_fails_fast(self, comparator):
        """Test a zero-sized capture raises ImageInputError."""
        with pytest.raises(ImageInputError):
            comparator.compare(solid(WHITE), Image.new("RGB", (0, 10)), 0.01)

    def test_non_image_input(self, comparator):
        """Test a non-image argument raises ImageInputError."""
        with pytest.raises(ImageInputError):
            comparator.compare("baseline.png", solid(WHITE), 0.01)

    def test_negative_tolerance(self, comparator):
        """Test a negative tolerance raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            comparator.compare(solid(WHITE), solid(WHITE), -0.1)

    def test_invalid_noise_threshold(self):
        """Test a noise threshold above 255 is rejected."""
        with pytest.raises(ConfigurationError):
            PixelComparator(noise_threshold=300)


class TestDiffImage:
    """Tests for the rendered diff image."""

    def test_diff_image_is_new_and_baseline_sized(self, comparator):
        """Test the diff image is a fresh RGB image at baseline size."""
        actual = with_block((30, 30, 40, 40))
        result = comparator.compare(solid(WHITE), actual, 0.0)
        assert result.diff_image is not actual
        assert result.diff_image.size == (100, 100)
        assert result.diff_image.mode == "RGB"

    def test_differing_pixels_are_tinted(self, comparator):
        """Test differing pixels are tinted red."""
        actual = with_block((30, 30, 40, 40))
        result = comparator.compare(solid(WHITE), actual, 0.0)
        r, g, b = result.diff_image.getpixel((50, 50))
        assert r > 100
        assert g < 50 and b < 50

    def test_inputs_are_not_mutated(self, comparator):
        """Test comparing leaves both input images untouched."""
        baseline = solid(WHITE)
        actual = with_block((30, 30, 40, 40))
        before = np.asarray(actual).copy()
        comparator.compare(baseline, actual, 0.0, [IgnoreRegion(x=0, y=0, width=50, height=50)])
        assert np.array_equal(np.asarray(actual), before)
        assert baseline.getpixel((0, 0)) == WHITE

    def test_single_bounding_region_by_default(self, comparator):
        """Test scattered defects share one bounding region by default."""
        actual = with_block((5, 5, 5, 5), size=(200, 200))
        actual.paste(BLACK, (150, 150, 155, 155))
        result = comparator.compare(solid(WHITE, (200, 200)), actual, 0.0)
        assert len(result.regions) == 1
        region = result.regions[0]
        assert (region.min_x, region.min_y, region.max_x, region.max_y) == (5, 5, 154, 154)
        assert region.pixel_count == 50

    def test_clustering_marks_each_defect(self):
        """Test clustering gives each distant defect its own region."""
        comparator = PixelComparator(diff_clustering=True)
        actual = with_block((5, 5, 5, 5), size=(200, 200))
        actual.paste(BLACK, (150, 150, 155, 155))
        result = comparator.compare(solid(WHITE, (200, 200)), actual, 0.0)
        assert len(result.regions) == 2
        assert sum(r.pixel_count for r in result.regions) == 50

    def test_no_regions_when_identical(self, comparator):
        """Test identical images produce no marked regions."""
        result = comparator.compare(solid(WHITE), solid(WHITE), 0.0)
        assert result.regions == ()


class TestSummary:
    """Tests for ComparisonResult.summary."""

    def test_summary_mentions_diff_and_tolerance(self, comparator):
        """Test the summary reports diff and tolerance percentages."""
        result = comparator.compare(solid(WHITE), solid(BLACK), 0.01)
        assert "Diff: 100.0000%" in result.summary
        assert "Tolerance: 1.0000%" in result.summary

    def test_summary_mentions_scaling(self, comparator):
        """Test the summary reports the scale factor for rescaled captures."""
        result = comparator.compare(solid(WHITE, (100, 100)), solid(WHITE, (50, 50)), 0.01)
        assert "Scaled: 2.00x" in result.summary
