"""Exception types raised by the visual verdict engine."""

from __future__ import annotations


class VisualError(Exception):
    """Base class for visual regression errors."""


class ImageInputError(VisualError, ValueError):
    """An image is unusable for comparison (zero-sized, unreadable)."""


class ConfigurationError(VisualError, ValueError):
    """Invalid engine arguments detected at construction time."""


class BaselineNotFoundError(VisualError, FileNotFoundError):
    """No baseline image exists for the requested identity."""


class VisualMismatchError(VisualError, AssertionError):
    """Raised by a caller-facing check when a validation verdict is FAILURE."""

    def __init__(
        self,
        message: str,
        baseline_id: str | None = None,
        baseline_path: str | None = None,
        actual_path: str | None = None,
        diff_path: str | None = None,
        diff_percentage: float = 0.0,
    ):
        super().__init__(message)
        self.baseline_id = baseline_id
        self.baseline_path = baseline_path
        self.actual_path = actual_path
        self.diff_path = diff_path
        self.diff_percentage = diff_percentage
