"""Validation orchestrator: capture, baseline lookup, hybrid decision, verdict."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Iterable, Optional, Union

from visual_verdict.baseline.store import BaselineStore
from visual_verdict.capture import CaptureProvider
from visual_verdict.comparator.hybrid import HybridDecisionEngine
from visual_verdict.comparator.regions import parse_ignore_region_list, parse_ignore_regions
from visual_verdict.models.comparison import HybridResult, IgnoreRegion
from visual_verdict.models.config import VisualConfig
from visual_verdict.models.verdict import (
    BaselineIdentity,
    Checkpoint,
    MismatchPolicy,
    ValidationStatus,
    Verdict,
)

logger = logging.getLogger(__name__)

RegionSpec = Union[str, IgnoreRegion, tuple[int, int, int, int]]


class ValidationOrchestrator:
    """Public entry point: turns one capture into one Verdict."""

    def __init__(
        self,
        config: VisualConfig | None = None,
        store: BaselineStore | None = None,
        engine: HybridDecisionEngine | None = None,
    ):
        self.config = config or VisualConfig()
        self.store = store or BaselineStore(self.config.baseline_root, self.config.channel, self.config.locale)
        self.engine = engine or HybridDecisionEngine.from_config(self.config)

    def validate(
        self,
        capture_provider: CaptureProvider,
        identity: BaselineIdentity,
        tolerance: float | None = None,
        mismatch_policy: MismatchPolicy | str | None = MismatchPolicy.DEFAULT,
        ignore_regions: str | Iterable[RegionSpec] | None = None,
    ) -> Verdict:
        """Validate a fresh capture against the baseline for ``identity``.

        Never raises: any failure along the way becomes an ERROR verdict.
        """
        start = time.perf_counter()
        tolerance = self.config.tolerance if tolerance is None else tolerance
        baseline_id: Optional[str] = getattr(identity, "key", None)
        baseline_path: Optional[str] = None
        actual_path: Optional[str] = None

        def verdict(status: ValidationStatus, message: str, **extra) -> Verdict:
            return Verdict(
                status=status,
                message=message,
                baseline_id=baseline_id,
                tolerance=tolerance,
                elapsed_seconds=time.perf_counter() - start,
                baseline_path=baseline_path,
                actual_path=actual_path,
                **extra,
            )

        try:
            policy = MismatchPolicy.parse(mismatch_policy)
            baseline_path = str(self.store.baseline_path(identity))
            regions = resolve_ignore_regions(ignore_regions)
            actual = capture_provider()
            actual_path = str(self.store.save_actual(identity, actual))

            if self.config.record_baselines:
                self.store.update_baseline(identity, actual)
                logger.info("Baseline recorded: %s", baseline_id)
                return verdict(ValidationStatus.BASELINE_CREATED, f"Baseline recorded: {baseline_id}")

            if not self.store.exists(identity):
                if self.config.auto_create_baseline:
                    self.store.save_baseline(identity, actual)
                    logger.info("Baseline created: %s", baseline_id)
                    return verdict(ValidationStatus.BASELINE_CREATED, f"Baseline created: {baseline_id}")
                message = f"Baseline not found and auto-create is disabled: {baseline_id}"
                logger.warning(message)
                status = self._resolve_policy(policy, message)
                return verdict(status, message)

            baseline = self.store.load_baseline(identity)
            result = self.engine.compare(baseline, actual, tolerance, regions)

            if result.match:
                logger.info("Visual validation PASSED: %s (%s)", baseline_id, result.summary)
                return verdict(
                    ValidationStatus.SUCCESS,
                    f"Visual validation passed: {baseline_id} (diff: {result.diff_percentage:.4%}, "
                    f"strategy: {result.strategy.name})",
                    hybrid_result=result,
                )

            diff_path = str(self.store.save_diff(identity, result.diff_image))
            message = _mismatch_message(baseline_id, result)
            status = self._resolve_policy(policy, message)
            return verdict(status, message, hybrid_result=result, diff_path=diff_path)

        except Exception as e:
            message = f"Visual validation error for {baseline_id}: {type(e).__name__}: {e}"
            logger.error(message, exc_info=True)
            return verdict(ValidationStatus.ERROR, message)

    def validate_checkpoint(
        self,
        capture_provider: CaptureProvider,
        class_id: str,
        step_id: str,
        checkpoint: Checkpoint | None = None,
    ) -> Verdict:
        """Validate a test step, honouring its checkpoint overrides and skip marker."""
        checkpoint = checkpoint or Checkpoint()
        identity = BaselineIdentity(class_id=class_id, step_id=step_id, suffix=checkpoint.name or None)
        if checkpoint.skip_reason is not None:
            return self.skip(identity, checkpoint.skip_reason)
        return self.validate(
            capture_provider,
            identity,
            tolerance=checkpoint.tolerance,
            mismatch_policy=checkpoint.on_mismatch,
            ignore_regions=parse_ignore_region_list(checkpoint.ignore_regions),
        )

    def skip(self, identity: BaselineIdentity, reason: str = "") -> Verdict:
        reason = reason or "No reason provided"
        logger.info("Visual check skipped for %s: %s", identity.key, reason)
        return Verdict(status=ValidationStatus.SKIPPED, message=f"Skipped: {reason}", baseline_id=identity.key)

    def update_baseline(self, capture_provider: CaptureProvider, identity: BaselineIdentity) -> Path:
        """Capture and store a new baseline, archiving the previous one. Errors propagate."""
        image = capture_provider()
        return self.store.update_baseline(identity, image)

    def _resolve_policy(self, policy: MismatchPolicy, message: str) -> ValidationStatus:
        effective = self.config.mismatch_policy if policy is MismatchPolicy.DEFAULT else policy
        match effective:
            case MismatchPolicy.FAIL:
                logger.error("Visual validation FAILED: %s", message)
                return ValidationStatus.FAILURE
            case MismatchPolicy.WARN:
                logger.warning("Visual validation WARNING: %s", message)
                return ValidationStatus.WARNING
            case MismatchPolicy.IGNORE:
                logger.info("Visual validation IGNORED: %s", message)
                return ValidationStatus.IGNORED
            case MismatchPolicy.DEFAULT:
                raise ValueError("Configured mismatch policy cannot be DEFAULT")


def resolve_ignore_regions(regions: str | Iterable[RegionSpec] | None) -> list[IgnoreRegion]:
    """Normalise encoded strings, tuples and IgnoreRegion objects into one list."""
    if regions is None:
        return []
    if isinstance(regions, str):
        return parse_ignore_regions(regions)
    resolved: list[IgnoreRegion] = []
    for region in regions:
        if isinstance(region, IgnoreRegion):
            resolved.append(region)
        elif isinstance(region, str):
            resolved.extend(parse_ignore_regions(region))
        else:
            resolved.append(IgnoreRegion.from_tuple(tuple(region)))
    return resolved


def _mismatch_message(baseline_id: str, result: HybridResult) -> str:
    message = (
        f"Visual mismatch: {baseline_id} (diff: {result.diff_percentage:.4%}, "
        f"tolerance: {result.tolerance:.4%}, strategy: {result.strategy.name})"
    )
    similarity = result.similarity_result
    if similarity is not None and similarity.ok:
        message += f" [AI similarity: {similarity.similarity:.4f} < {similarity.threshold:.4f}]"
    return message
