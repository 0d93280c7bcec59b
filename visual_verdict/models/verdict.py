"""Validation verdicts, mismatch policies and baseline identities."""

from __future__ import annotations

import base64
import io
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from visual_verdict.errors import VisualMismatchError
from visual_verdict.models.comparison import HybridResult

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_UNDERSCORE_RUNS = re.compile(r"_+")


def sanitize_name(name: str) -> str:
    """Collapse a free-form name into a safe file-system token."""
    token = _NON_ALNUM.sub("_", name)
    token = _UNDERSCORE_RUNS.sub("_", token)
    return token.strip("_")


class ValidationStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    WARNING = "WARNING"
    SKIPPED = "SKIPPED"
    IGNORED = "IGNORED"
    BASELINE_CREATED = "BASELINE_CREATED"
    ERROR = "ERROR"

    @property
    def is_non_failing(self) -> bool:
        return self in _NON_FAILING


_NON_FAILING = frozenset({
    ValidationStatus.SUCCESS,
    ValidationStatus.BASELINE_CREATED,
    ValidationStatus.SKIPPED,
    ValidationStatus.IGNORED,
})


class MismatchPolicy(str, Enum):
    """What a mismatch turns into. DEFAULT defers to the configured policy."""
    DEFAULT = "DEFAULT"
    FAIL = "FAIL"
    WARN = "WARN"
    IGNORE = "IGNORE"

    @classmethod
    def parse(cls, value: "str | MismatchPolicy | None") -> "MismatchPolicy":
        """Parse a policy name; unknown names fall back to DEFAULT."""
        if isinstance(value, MismatchPolicy):
            return value
        if not value:
            return cls.DEFAULT
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            logger.warning("Unrecognized mismatch policy '%s', using DEFAULT", value)
            return cls.DEFAULT


class BaselineIdentity(BaseModel):
    """Stable key for a baseline: test class, step and optional suffix."""

    model_config = ConfigDict(frozen=True)

    class_id: str
    step_id: str
    suffix: Optional[str] = None

    @model_validator(mode="after")
    def _check_tokens(self) -> "BaselineIdentity":
        if not sanitize_name(self.class_id):
            raise ValueError(f"class_id '{self.class_id}' has no usable characters")
        if not sanitize_name(self.step_id):
            raise ValueError(f"step_id '{self.step_id}' has no usable characters")
        return self

    @property
    def class_token(self) -> str:
        return sanitize_name(self.class_id)

    @property
    def file_stem(self) -> str:
        name = self.step_id
        if self.suffix:
            name = f"{name}_{self.suffix}"
        return sanitize_name(name)

    @property
    def key(self) -> str:
        return f"{self.class_token}/{self.file_stem}"

    def __str__(self) -> str:
        return self.key


class Checkpoint(BaseModel):
    """Per-step overrides for a visual check."""
    name: Optional[str] = None  # becomes the identity suffix
    tolerance: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    on_mismatch: MismatchPolicy = MismatchPolicy.DEFAULT
    ignore_regions: list[str] = Field(default_factory=list)  # "x,y,w,h;x,y,w,h"
    skip_reason: Optional[str] = None


class ValidationRecord(BaseModel):
    """Flat per-call record handed to metrics/report collaborators."""
    status: ValidationStatus
    baseline_id: Optional[str] = None
    message: str = ""
    diff_percentage: Optional[float] = None
    tolerance: Optional[float] = None
    strategy: Optional[str] = None
    similarity: Optional[float] = None
    was_scaled: bool = False
    elapsed_seconds: float = 0.0
    baseline_path: Optional[str] = None
    actual_path: Optional[str] = None
    diff_path: Optional[str] = None
    recorded_at: str = Field(default_factory=lambda: time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()))


@dataclass(frozen=True)
class Verdict:
    """Closed-set outcome of one validation call."""
    status: ValidationStatus
    message: str
    baseline_id: Optional[str] = None
    hybrid_result: Optional[HybridResult] = None
    tolerance: Optional[float] = None
    elapsed_seconds: float = 0.0
    baseline_path: Optional[str] = None
    actual_path: Optional[str] = None
    diff_path: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status.is_non_failing

    @property
    def should_fail(self) -> bool:
        return self.status is ValidationStatus.FAILURE

    @property
    def diff_percentage(self) -> Optional[float]:
        return self.hybrid_result.diff_percentage if self.hybrid_result else None

    def diff_image_base64(self) -> Optional[str]:
        """PNG-encoded diff image for embedding into external reports."""
        if self.hybrid_result is None or self.status is ValidationStatus.SUCCESS:
            return None
        buffer = io.BytesIO()
        self.hybrid_result.diff_image.save(buffer, format="PNG")
        return base64.b64encode(buffer.getvalue()).decode("ascii")

    def record(self) -> ValidationRecord:
        hybrid = self.hybrid_result
        similarity = None
        if hybrid is not None and hybrid.similarity_result is not None and hybrid.similarity_result.ok:
            similarity = hybrid.similarity_result.similarity
        return ValidationRecord(
            status=self.status,
            baseline_id=self.baseline_id,
            message=self.message,
            diff_percentage=self.diff_percentage,
            tolerance=self.tolerance,
            strategy=hybrid.strategy.name if hybrid else None,
            similarity=similarity,
            was_scaled=hybrid.was_scaled if hybrid else False,
            elapsed_seconds=round(self.elapsed_seconds, 4),
            baseline_path=self.baseline_path,
            actual_path=self.actual_path,
            diff_path=self.diff_path,
        )

    def raise_for_status(self) -> None:
        """Raise VisualMismatchError if this verdict should fail the calling test."""
        if not self.should_fail:
            return
        raise VisualMismatchError(
            self.message,
            baseline_id=self.baseline_id,
            baseline_path=self.baseline_path,
            actual_path=self.actual_path,
            diff_path=self.diff_path,
            diff_percentage=self.diff_percentage or 0.0,
        )
