"""Configuration model for visual validation."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from visual_verdict.models.verdict import MismatchPolicy

_ENV_OVERRIDES = {
    "VISUAL_TOLERANCE": "tolerance",
    "VISUAL_MODEL_ENABLED": "model_enabled",
    "VISUAL_AUTO_CREATE_BASELINE": "auto_create_baseline",
    "VISUAL_BASELINE_ROOT": "baseline_root",
    "VISUAL_MISMATCH_POLICY": "mismatch_policy",
    "VISUAL_RECORD_BASELINES": "record_baselines",
}


class VisualConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Decision thresholds
    tolerance: float = Field(default=0.01, ge=0.0, le=1.0)
    gray_zone_lower: float = Field(default=0.05, ge=0.0, le=1.0)
    gray_zone_upper: float = Field(default=0.20, ge=0.0, le=1.0)
    model_threshold: float = Field(default=0.92, ge=0.0, le=1.0)

    # Outcome handling
    mismatch_policy: MismatchPolicy = MismatchPolicy.FAIL
    auto_create_baseline: bool = True
    record_baselines: bool = False  # re-baseline every validated step

    # Similarity model
    model_enabled: bool = True
    model_weights_path: Optional[str] = None

    # Baseline layout
    baseline_root: str = "baselines"
    channel: str = ""  # browser or device channel
    locale: str = ""

    # Pixel differencing and diff rendering
    noise_threshold: int = Field(default=50, ge=0, le=255)
    diff_clustering: bool = False
    min_cluster_pixels: int = Field(default=10, ge=1)
    cluster_merge_distance: int = Field(default=50, ge=0)

    # Rescaled captures (e.g. local runs on a different screen size)
    relax_scaled_comparisons: bool = False
    scaled_tolerance: float = Field(default=0.03, ge=0.0, le=1.0)
    scaled_gray_zone_upper: float = Field(default=0.25, ge=0.0, le=1.0)

    @field_validator("mismatch_policy", mode="before")
    @classmethod
    def parse_policy(cls, v: Any) -> MismatchPolicy:
        if isinstance(v, str):
            return MismatchPolicy.parse(v)
        return v

    @model_validator(mode="after")
    def check_bounds(self) -> "VisualConfig":
        if self.gray_zone_upper < self.gray_zone_lower:
            raise ValueError(
                f"gray_zone_upper ({self.gray_zone_upper}) is below gray_zone_lower ({self.gray_zone_lower})"
            )
        if self.scaled_gray_zone_upper < self.gray_zone_lower:
            raise ValueError("scaled_gray_zone_upper must not be below gray_zone_lower")
        if self.mismatch_policy is MismatchPolicy.DEFAULT:
            raise ValueError("mismatch_policy must be FAIL, WARN or IGNORE")
        return self

    def with_overrides(self, **overrides: Any) -> "VisualConfig":
        """Return a validated copy with the given fields replaced."""
        data = self.model_dump()
        data.update(overrides)
        return type(self).model_validate(data)

    @classmethod
    def from_env(cls, base: "VisualConfig | None" = None) -> "VisualConfig":
        """Apply VISUAL_* environment variables on top of ``base``."""
        base = base or cls()
        overrides = {}
        for env_var, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value is not None and value != "":
                overrides[field_name] = value
        return base.with_overrides(**overrides) if overrides else base

    @classmethod
    def load(cls, path: str | Path) -> "VisualConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)
