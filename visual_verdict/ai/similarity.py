"""Similarity model adapter: embedding cosine similarity with graceful degradation.

The embedding model is loaded at most once per handle. A failed load is
remembered, so later callers see ``available() == False`` without retrying
until the handle is explicitly reset.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import numpy as np
from PIL import Image

from visual_verdict.models.comparison import SimilarityResult

logger = logging.getLogger(__name__)

IMAGENET_MEAN = [0.485, 0.456, 0.406]
IMAGENET_STD = [0.229, 0.224, 0.225]
INPUT_SIZE = 224

Embedder = Callable[[Image.Image], np.ndarray]
ModelLoader = Callable[[], Embedder]


def load_resnet18(weights_path: str | None = None) -> Embedder:
    """Build a ResNet-18 feature extractor (classifier head removed).

    Uses torchvision's pretrained weights unless a local state-dict file is given.
    The first call without ``weights_path`` may download the weights.
    """
    import torch
    from torchvision import models, transforms

    if weights_path:
        logger.info("Loading similarity model weights from %s", weights_path)
        model = models.resnet18(weights=None)
        model.load_state_dict(torch.load(weights_path, map_location="cpu"))
    else:
        logger.info("Loading pretrained ResNet-18 weights (may download on first use)")
        model = models.resnet18(weights=models.ResNet18_Weights.DEFAULT)
    model.fc = torch.nn.Identity()
    model.eval()

    preprocess = transforms.Compose([
        transforms.Resize((INPUT_SIZE, INPUT_SIZE)),
        transforms.ToTensor(),
        transforms.Normalize(mean=IMAGENET_MEAN, std=IMAGENET_STD),
    ])

    def embed(image: Image.Image) -> np.ndarray:
        batch = preprocess(image.convert("RGB")).unsqueeze(0)
        with torch.no_grad():
            features = model(batch)
        return features.flatten().cpu().numpy()

    return embed


class ModelHandle:
    """Thread-safe, once-only lazy holder for an embedding function."""

    def __init__(self, loader: ModelLoader):
        self._loader = loader
        self._lock = threading.Lock()
        self._embedder: Optional[Embedder] = None
        self._error: Optional[str] = None
        self._attempted = False

    def get(self) -> Optional[Embedder]:
        """Return the embedder, loading it on first use; None if loading failed."""
        if self._attempted:
            return self._embedder
        with self._lock:
            if not self._attempted:
                try:
                    self._embedder = self._loader()
                    logger.info("Similarity model initialized")
                except Exception as e:
                    self._error = f"{type(e).__name__}: {e}"
                    logger.warning(
                        "Similarity model unavailable: %s. Falling back to pixel-based comparison.",
                        self._error,
                    )
                self._attempted = True
        return self._embedder

    @property
    def error(self) -> Optional[str]:
        return self._error

    def reset(self) -> None:
        """Forget any loaded model or cached failure."""
        with self._lock:
            self._embedder = None
            self._error = None
            self._attempted = False


_shared_lock = threading.Lock()
_shared_handles: dict[Optional[str], ModelHandle] = {}


def shared_model_handle(weights_path: str | None = None) -> ModelHandle:
    """Process-wide handle for the default ResNet-18 model (one per weights file)."""
    with _shared_lock:
        handle = _shared_handles.get(weights_path)
        if handle is None:
            handle = ModelHandle(lambda: load_resnet18(weights_path))
            _shared_handles[weights_path] = handle
        return handle


def reset_shared_model_handles() -> None:
    with _shared_lock:
        for handle in _shared_handles.values():
            handle.reset()
        _shared_handles.clear()


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity clipped to [0, 1]; 0 when either vector is all zeros."""
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape:
        raise ValueError(f"Feature vectors differ in length: {a.size} vs {b.size}")
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / norm, 0.0, 1.0))


class SimilarityModelAdapter:
    """Compares two images by the cosine similarity of their embeddings."""

    def __init__(self, handle: ModelHandle | None = None, threshold: float = 0.92):
        self.handle = handle if handle is not None else shared_model_handle()
        self.threshold = threshold

    def available(self) -> bool:
        return self.handle.get() is not None

    @property
    def init_error(self) -> Optional[str]:
        return self.handle.error

    def compare(
        self,
        baseline: Image.Image,
        actual: Image.Image,
        threshold: float | None = None,
    ) -> SimilarityResult:
        threshold = self.threshold if threshold is None else threshold
        embed = self.handle.get()
        if embed is None:
            return SimilarityResult.failed(threshold, f"Similarity model not initialized: {self.handle.error}")

        try:
            baseline_features = embed(baseline)
            actual_features = embed(actual)
            similarity = cosine_similarity(baseline_features, actual_features)
        except Exception as e:
            logger.error("Similarity comparison failed: %s", e)
            return SimilarityResult.failed(threshold, str(e))

        match = similarity >= threshold
        logger.info("Similarity comparison: similarity=%.4f, threshold=%.4f, match=%s", similarity, threshold, match)
        return SimilarityResult(
            match=match,
            similarity=similarity,
            threshold=threshold,
            baseline_feature_size=int(np.size(baseline_features)),
            actual_feature_size=int(np.size(actual_features)),
        )
