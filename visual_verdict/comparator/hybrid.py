"""Hybrid decision engine: pixel comparison with model escalation in the gray zone."""

from __future__ import annotations

import logging
import time
from typing import Iterable, Optional

from PIL import Image

from visual_verdict.ai.similarity import SimilarityModelAdapter, shared_model_handle
from visual_verdict.comparator.pixel import PixelComparator
from visual_verdict.errors import ConfigurationError
from visual_verdict.models.comparison import ComparisonStrategy, HybridResult, IgnoreRegion
from visual_verdict.models.config import VisualConfig

logger = logging.getLogger(__name__)


class HybridDecisionEngine:
    """Decides match/mismatch from the pixel diff, consulting the model only when unsure.

    Zones, checked in this order:
      diff <= tolerance                       -> CLEAR_PASS
      diff >  gray_zone_upper                 -> CLEAR_FAIL
      gray_zone_lower < diff <= upper, model  -> AI_FALLBACK
      anything else                           -> PIXEL_ONLY
    """

    def __init__(
        self,
        pixel_comparator: PixelComparator | None = None,
        similarity_adapter: SimilarityModelAdapter | None = None,
        gray_zone_lower: float = 0.05,
        gray_zone_upper: float = 0.20,
        model_threshold: float = 0.92,
        relax_scaled_comparisons: bool = False,
        scaled_tolerance: float = 0.03,
        scaled_gray_zone_upper: float = 0.25,
    ):
        if not 0.0 <= gray_zone_lower <= gray_zone_upper <= 1.0:
            raise ConfigurationError(
                f"Gray zone must satisfy 0 <= lower <= upper <= 1, got [{gray_zone_lower}, {gray_zone_upper}]"
            )
        if not 0.0 <= model_threshold <= 1.0:
            raise ConfigurationError(f"model_threshold must be within [0, 1], got {model_threshold}")
        if relax_scaled_comparisons and scaled_gray_zone_upper < gray_zone_lower:
            raise ConfigurationError("scaled_gray_zone_upper must not be below gray_zone_lower")
        self.pixel_comparator = pixel_comparator or PixelComparator()
        self.similarity_adapter = similarity_adapter
        self.gray_zone_lower = gray_zone_lower
        self.gray_zone_upper = gray_zone_upper
        self.model_threshold = model_threshold
        self.relax_scaled_comparisons = relax_scaled_comparisons
        self.scaled_tolerance = scaled_tolerance
        self.scaled_gray_zone_upper = scaled_gray_zone_upper

    @classmethod
    def from_config(
        cls,
        config: VisualConfig,
        similarity_adapter: SimilarityModelAdapter | None = None,
    ) -> "HybridDecisionEngine":
        """Build an engine from config. A disabled model means no adapter at all."""
        if not config.model_enabled:
            similarity_adapter = None
            logger.info("Hybrid engine initialized without similarity model (disabled)")
        elif similarity_adapter is None:
            similarity_adapter = SimilarityModelAdapter(
                shared_model_handle(config.model_weights_path),
                threshold=config.model_threshold,
            )
        return cls(
            pixel_comparator=PixelComparator(
                noise_threshold=config.noise_threshold,
                diff_clustering=config.diff_clustering,
                min_cluster_pixels=config.min_cluster_pixels,
                cluster_merge_distance=config.cluster_merge_distance,
            ),
            similarity_adapter=similarity_adapter,
            gray_zone_lower=config.gray_zone_lower,
            gray_zone_upper=config.gray_zone_upper,
            model_threshold=config.model_threshold,
            relax_scaled_comparisons=config.relax_scaled_comparisons,
            scaled_tolerance=config.scaled_tolerance,
            scaled_gray_zone_upper=config.scaled_gray_zone_upper,
        )

    def model_available(self) -> bool:
        return self.similarity_adapter is not None and self.similarity_adapter.available()

    def compare(
        self,
        baseline: Image.Image,
        actual: Image.Image,
        tolerance: float,
        ignore_regions: Optional[Iterable[IgnoreRegion]] = None,
    ) -> HybridResult:
        start = time.perf_counter()
        pixel_result = self.pixel_comparator.compare(baseline, actual, tolerance, ignore_regions)
        diff = pixel_result.diff_percentage

        relaxed = self.relax_scaled_comparisons and pixel_result.was_scaled
        effective_tolerance = max(tolerance, self.scaled_tolerance) if relaxed else tolerance
        effective_upper = self.scaled_gray_zone_upper if relaxed else self.gray_zone_upper
        if relaxed:
            logger.info(
                "Scaled comparison (%.2fx): tolerance %.2f%% -> %.2f%%, gray zone upper %.0f%%",
                pixel_result.scale_factor, tolerance * 100, effective_tolerance * 100, effective_upper * 100,
            )

        similarity_result = None
        if diff <= effective_tolerance:
            strategy = ComparisonStrategy.CLEAR_PASS
            match = True
        elif diff > effective_upper:
            strategy = ComparisonStrategy.CLEAR_FAIL
            match = False
        elif diff > self.gray_zone_lower and self.model_available():
            logger.info("Gray zone detected (diff=%.4f%%), consulting similarity model", diff * 100)
            similarity_result = self.similarity_adapter.compare(baseline, actual, self.model_threshold)
            if similarity_result.ok:
                strategy = ComparisonStrategy.AI_FALLBACK
                match = similarity_result.match
            else:
                logger.warning("Similarity model failed (%s), using pixel result", similarity_result.error)
                strategy = ComparisonStrategy.PIXEL_ONLY
                match = diff <= effective_tolerance
        else:
            strategy = ComparisonStrategy.PIXEL_ONLY
            match = diff <= effective_tolerance

        logger.debug("Hybrid decision: strategy=%s, match=%s, diff=%.4f%%", strategy.name, match, diff * 100)
        return HybridResult(
            match=match,
            strategy=strategy,
            pixel_result=pixel_result,
            diff_percentage=diff,
            tolerance=effective_tolerance,
            gray_zone_lower=self.gray_zone_lower,
            gray_zone_upper=effective_upper,
            model_threshold=self.model_threshold,
            elapsed_seconds=time.perf_counter() - start,
            similarity_result=similarity_result,
            relaxed=relaxed,
        )
