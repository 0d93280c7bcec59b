"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import Mock

import numpy as np
import pytest
from PIL import Image

from visual_verdict.ai.similarity import SimilarityModelAdapter, reset_shared_model_handles
from visual_verdict.baseline.store import BaselineStore
from visual_verdict.models.comparison import SimilarityResult
from visual_verdict.models.config import VisualConfig

WHITE = (255, 255, 255)
BLACK = (0, 0, 0)
RED = (255, 0, 0)


# ============================================================================
# Image helpers
# ============================================================================


def solid(color=WHITE, size=(100, 100)) -> Image.Image:
    """Create a solid-color RGB image."""
    return Image.new("RGB", size, color)


def with_changed_pixels(count: int, size=(100, 100), base=WHITE, changed=BLACK) -> Image.Image:
    """Solid image whose first ``count`` pixels (raster order) use another color."""
    width, height = size
    pixels = np.full((height, width, 3), base, dtype=np.uint8)
    pixels.reshape(-1, 3)[:count] = changed
    return Image.fromarray(pixels)


def with_block(box, size=(100, 100), base=WHITE, color=BLACK) -> Image.Image:
    """Solid image with a filled rectangle ``box = (x, y, w, h)``."""
    x, y, w, h = box
    width, height = size
    pixels = np.full((height, width, 3), base, dtype=np.uint8)
    pixels[y:y + h, x:x + w] = color
    return Image.fromarray(pixels)


# ============================================================================
# Configuration / store fixtures
# ============================================================================


@pytest.fixture
def baseline_root(tmp_path: Path) -> Path:
    root = tmp_path / "baselines"
    root.mkdir()
    return root


@pytest.fixture
def visual_config(baseline_root: Path) -> VisualConfig:
    """Config with the similarity model disabled and a temp baseline root."""
    return VisualConfig(baseline_root=str(baseline_root), model_enabled=False)


@pytest.fixture
def store(baseline_root: Path) -> BaselineStore:
    return BaselineStore(baseline_root)


# ============================================================================
# Similarity model fakes
# ============================================================================


@pytest.fixture
def fake_adapter() -> Mock:
    """Similarity adapter that is available and reports a confident match.

    Override ``compare.return_value`` or ``available.return_value`` per test.
    """
    adapter = Mock(spec=SimilarityModelAdapter)
    adapter.available.return_value = True
    adapter.compare.return_value = SimilarityResult(match=True, similarity=0.97, threshold=0.92)
    return adapter


@pytest.fixture(autouse=True)
def _reset_model_handles():
    """Keep the process-wide model handles clean between tests."""
    yield
    reset_shared_model_handles()
