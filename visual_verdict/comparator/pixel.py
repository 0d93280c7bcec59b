"""Pixel comparator: deterministic thresholded difference between two images."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import numpy as np
from PIL import Image

from visual_verdict.comparator.diff_image import render_diff_image
from visual_verdict.comparator.regions import bounding_region, build_keep_mask, find_clusters
from visual_verdict.errors import ConfigurationError, ImageInputError
from visual_verdict.models.comparison import ComparisonResult, IgnoreRegion

logger = logging.getLogger(__name__)

# ITU-R 601 luma weights, applied to the per-channel absolute difference
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)


def rescale(image: Image.Image, size: tuple[int, int]) -> Image.Image:
    """High-quality bicubic resize into a new image."""
    return image.resize(size, Image.Resampling.BICUBIC)


def _check_image(image: Image.Image, label: str) -> None:
    if not isinstance(image, Image.Image):
        raise ImageInputError(f"{label} is not an image: {type(image).__name__}")
    if image.width <= 0 or image.height <= 0:
        raise ImageInputError(f"{label} image is zero-sized ({image.width}x{image.height})")


class PixelComparator:
    """Compares images by counting pixels whose difference exceeds a noise threshold."""

    def __init__(
        self,
        noise_threshold: int = 50,
        diff_clustering: bool = False,
        min_cluster_pixels: int = 10,
        cluster_merge_distance: int = 50,
    ):
        if not 0 <= noise_threshold <= 255:
            raise ConfigurationError(f"noise_threshold must be within 0..255, got {noise_threshold}")
        self.noise_threshold = noise_threshold
        self.diff_clustering = diff_clustering
        self.min_cluster_pixels = min_cluster_pixels
        self.cluster_merge_distance = cluster_merge_distance

    def compare(
        self,
        baseline: Image.Image,
        actual: Image.Image,
        tolerance: float,
        ignore_regions: Optional[Iterable[IgnoreRegion]] = None,
    ) -> ComparisonResult:
        _check_image(baseline, "Baseline")
        _check_image(actual, "Actual")
        if tolerance < 0:
            raise ConfigurationError(f"tolerance must be >= 0, got {tolerance}")

        original_width, original_height = actual.size
        was_scaled = False
        scale_factor = 1.0
        if actual.size != baseline.size:
            was_scaled = True
            scale_factor = baseline.width / original_width
            logger.warning(
                "Resolution mismatch: baseline %dx%d, actual %dx%d; scaling actual by %.2fx",
                baseline.width, baseline.height, original_width, original_height, scale_factor,
            )
            actual = rescale(actual, baseline.size)

        baseline_px = np.asarray(baseline.convert("RGB"), dtype=np.int16)
        actual_px = np.asarray(actual.convert("RGB"), dtype=np.int16)

        delta = np.abs(baseline_px - actual_px).astype(np.float32)
        regions = list(ignore_regions or [])
        if regions:
            keep = build_keep_mask(baseline.width, baseline.height, regions)
            delta[~keep] = 0

        magnitude = delta @ LUMA_WEIGHTS
        diff_mask = magnitude > self.noise_threshold

        diff_pixels = int(np.count_nonzero(diff_mask))
        total_pixels = baseline.width * baseline.height
        diff_percentage = diff_pixels / total_pixels
        match = diff_percentage <= tolerance

        if self.diff_clustering:
            marked = find_clusters(diff_mask, self.min_cluster_pixels, self.cluster_merge_distance)
        else:
            box = bounding_region(diff_mask)
            marked = [box] if box is not None else []
        diff_image = render_diff_image(actual, diff_mask, marked, numbered=self.diff_clustering)

        logger.info(
            "Image comparison: diff=%.4f%%, tolerance=%.4f%%, match=%s, scaled=%s",
            diff_percentage * 100, tolerance * 100, match, was_scaled,
        )
        return ComparisonResult(
            match=match,
            diff_percentage=diff_percentage,
            tolerance=tolerance,
            diff_pixel_count=diff_pixels,
            total_pixel_count=total_pixels,
            diff_image=diff_image,
            baseline_width=baseline.width,
            baseline_height=baseline.height,
            actual_width=original_width,
            actual_height=original_height,
            was_scaled=was_scaled,
            scale_factor=scale_factor,
            regions=tuple(marked),
        )
