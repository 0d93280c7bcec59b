"""JSON report output for validation records."""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import Iterable

from visual_verdict.models.verdict import ValidationRecord, Verdict


def build_report(verdicts: Iterable[Verdict]) -> dict:
    """Summarise verdicts into a machine-readable report dict."""
    records = [v.record() for v in verdicts]
    counts = Counter(r.status.value for r in records)
    return {
        "total": len(records),
        "failed": counts.get("FAILURE", 0),
        "status_counts": dict(counts),
        "records": [r.model_dump(mode="json") for r in records],
    }


def write_json_report(verdicts: Iterable[Verdict], output_path: Path) -> None:
    """Write a machine-readable JSON report."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(build_report(verdicts), f, indent=2, default=str)


def load_records(path: Path) -> list[ValidationRecord]:
    with open(path) as f:
        data = json.load(f)
    return [ValidationRecord(**r) for r in data.get("records", [])]
