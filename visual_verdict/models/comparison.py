"""Comparison data structures produced by the pixel, model and hybrid comparators."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from PIL import Image
from pydantic import BaseModel, ConfigDict, Field


class IgnoreRegion(BaseModel):
    """Axis-aligned rectangle in baseline pixel coordinates excluded from diffing."""

    model_config = ConfigDict(frozen=True)

    x: int = Field(ge=0)
    y: int = Field(ge=0)
    width: int = Field(ge=0)
    height: int = Field(ge=0)

    @classmethod
    def from_tuple(cls, values: tuple[int, int, int, int]) -> "IgnoreRegion":
        x, y, width, height = values
        return cls(x=x, y=y, width=width, height=height)

    def bounds(self, image_width: int, image_height: int) -> Optional[tuple[int, int, int, int]]:
        """Return (x0, y0, x1, y1) clipped to the image, or None if nothing overlaps."""
        x0 = min(self.x, image_width)
        y0 = min(self.y, image_height)
        x1 = min(self.x + self.width, image_width)
        y1 = min(self.y + self.height, image_height)
        if x1 <= x0 or y1 <= y0:
            return None
        return x0, y0, x1, y1

    def __str__(self) -> str:
        return f"{self.x},{self.y},{self.width},{self.height}"


@dataclass(frozen=True)
class DiffRegion:
    """Bounding box (inclusive) of a group of differing pixels."""
    min_x: int
    min_y: int
    max_x: int
    max_y: int
    pixel_count: int

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def center(self) -> tuple[int, int]:
        return (self.min_x + self.max_x) // 2, (self.min_y + self.max_y) // 2


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome of a deterministic pixel comparison."""
    match: bool
    diff_percentage: float
    tolerance: float
    diff_pixel_count: int
    total_pixel_count: int
    diff_image: Image.Image
    baseline_width: int
    baseline_height: int
    actual_width: int  # before any rescaling
    actual_height: int
    was_scaled: bool = False
    scale_factor: float = 1.0
    regions: tuple[DiffRegion, ...] = field(default_factory=tuple)

    @property
    def summary(self) -> str:
        scaling = f", Scaled: {self.scale_factor:.2f}x" if self.was_scaled else ""
        return (
            f"Match: {self.match}, Diff: {self.diff_percentage:.4%}, "
            f"Pixels: {self.diff_pixel_count}/{self.total_pixel_count}, "
            f"Tolerance: {self.tolerance:.4%}{scaling}"
        )


@dataclass(frozen=True)
class SimilarityResult:
    """Outcome of an embedding-similarity comparison."""
    match: bool
    similarity: float
    threshold: float
    error: Optional[str] = None
    baseline_feature_size: int = 0
    actual_feature_size: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, threshold: float, error: str) -> "SimilarityResult":
        return cls(match=False, similarity=0.0, threshold=threshold, error=error)


class ComparisonStrategy(str, Enum):
    """Which branch of the hybrid decision produced the verdict."""
    CLEAR_PASS = "clear_pass"
    CLEAR_FAIL = "clear_fail"
    AI_FALLBACK = "ai_fallback"
    PIXEL_ONLY = "pixel_only"


@dataclass(frozen=True)
class HybridResult:
    """Verdict of the hybrid pixel + model decision."""
    match: bool
    strategy: ComparisonStrategy
    pixel_result: ComparisonResult
    diff_percentage: float
    tolerance: float  # effective tolerance, after any scaled-comparison relaxation
    gray_zone_lower: float
    gray_zone_upper: float
    model_threshold: float
    elapsed_seconds: float
    similarity_result: Optional[SimilarityResult] = None
    relaxed: bool = False

    @property
    def used_model(self) -> bool:
        return self.strategy is ComparisonStrategy.AI_FALLBACK and self.similarity_result is not None

    @property
    def diff_image(self) -> Image.Image:
        return self.pixel_result.diff_image

    @property
    def was_scaled(self) -> bool:
        return self.pixel_result.was_scaled

    @property
    def scale_factor(self) -> float:
        return self.pixel_result.scale_factor

    @property
    def summary(self) -> str:
        parts = [
            f"Hybrid Match: {self.match}, Strategy: {self.strategy.name}, "
            f"Diff: {self.diff_percentage:.4%}, Tolerance: {self.tolerance:.4%}"
        ]
        if self.was_scaled:
            parts.append(f", Scaled: {self.scale_factor:.2f}x")
            if self.relaxed:
                parts.append(" [RELAXED]")
        if self.similarity_result is not None:
            if self.similarity_result.ok:
                parts.append(f", AI Similarity: {self.similarity_result.similarity:.4f}")
            else:
                parts.append(f", AI Error: {self.similarity_result.error}")
        parts.append(f", Time: {self.elapsed_seconds * 1000:.0f}ms")
        return "".join(parts)
