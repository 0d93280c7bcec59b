"""Baseline store: the only component that reads and writes image files.

Layout under the root directory::

    <root>/[<channel>/][<locale>/]<Class>/<step>.png       baselines
    <root>/actual/...                                      latest captures
    <root>/diff/.../<step>_diff.png                        diff images
    <root>/backup/.../<step>_backup_<timestamp>.png        archived baselines
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from datetime import datetime
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from visual_verdict.errors import BaselineNotFoundError, ConfigurationError, ImageInputError
from visual_verdict.models.verdict import BaselineIdentity, sanitize_name

logger = logging.getLogger(__name__)

IMAGE_EXTENSION = ".png"
ACTUAL_DIR = "actual"
DIFF_DIR = "diff"
BACKUP_DIR = "backup"
BACKUP_TIMESTAMP = "%Y%m%d_%H%M%S"
RESERVED_DIRS = frozenset({ACTUAL_DIR, DIFF_DIR, BACKUP_DIR})


def _check_top_segment(segment: str, label: str) -> None:
    # The first baseline directory must not be an artifact tree.
    if segment.lower() in RESERVED_DIRS:
        raise ConfigurationError(
            f"{label} '{segment}' collides with reserved directory names {sorted(RESERVED_DIRS)}"
        )


class BaselineStore:
    """Persists baselines and run artifacts keyed by BaselineIdentity."""

    def __init__(self, root: str | Path, channel: str = "", locale: str = ""):
        self.root = Path(root)
        self.channel = sanitize_name(channel) if channel else ""
        self.locale = sanitize_name(locale) if locale else ""
        if self.channel:
            _check_top_segment(self.channel, "channel")
        elif self.locale:
            _check_top_segment(self.locale, "locale")
        self.actual_dir = self.root / ACTUAL_DIR
        self.diff_dir = self.root / DIFF_DIR
        self.backup_dir = self.root / BACKUP_DIR

    def _relative_dir(self, identity: BaselineIdentity) -> Path:
        segments = [s for s in (self.channel, self.locale) if s]
        if not segments:
            _check_top_segment(identity.class_token, "class_id")
        return Path(*segments, identity.class_token)

    def baseline_path(self, identity: BaselineIdentity) -> Path:
        return self.root / self._relative_dir(identity) / f"{identity.file_stem}{IMAGE_EXTENSION}"

    def actual_path(self, identity: BaselineIdentity) -> Path:
        return self.actual_dir / self._relative_dir(identity) / f"{identity.file_stem}{IMAGE_EXTENSION}"

    def diff_path(self, identity: BaselineIdentity) -> Path:
        return self.diff_dir / self._relative_dir(identity) / f"{identity.file_stem}_diff{IMAGE_EXTENSION}"

    def backup_path(self, identity: BaselineIdentity, timestamp: str) -> Path:
        name = f"{identity.file_stem}_backup_{timestamp}{IMAGE_EXTENSION}"
        return self.backup_dir / self._relative_dir(identity) / name

    def exists(self, identity: BaselineIdentity) -> bool:
        return self.baseline_path(identity).is_file()

    def load_baseline(self, identity: BaselineIdentity) -> Image.Image:
        path = self.baseline_path(identity)
        if not path.is_file():
            raise BaselineNotFoundError(f"Baseline not found: {path}")
        logger.debug("Loading baseline from %s", path)
        return read_image(path)

    def save_baseline(self, identity: BaselineIdentity, image: Image.Image) -> Path:
        """Write a new baseline. Refuses to overwrite; use update_baseline for that."""
        path = self.baseline_path(identity)
        if path.exists():
            raise FileExistsError(f"Baseline already exists (use update_baseline): {path}")
        _write_image(image, path)
        logger.info("Baseline saved to %s", path)
        return path

    def save_actual(self, identity: BaselineIdentity, image: Image.Image) -> Path:
        path = self.actual_path(identity)
        _write_image(image, path)
        logger.debug("Actual screenshot saved to %s", path)
        return path

    def save_diff(self, identity: BaselineIdentity, image: Image.Image) -> Path:
        path = self.diff_path(identity)
        _write_image(image, path)
        logger.info("Diff image saved to %s", path)
        return path

    def update_baseline(self, identity: BaselineIdentity, image: Image.Image) -> Path:
        """Replace a baseline, archiving the previous one with a timestamp first."""
        path = self.baseline_path(identity)
        if path.exists():
            backup = self._free_backup_path(identity)
            backup.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, backup)
            logger.info("Baseline backed up to %s", backup)
        _write_image(image, path)
        logger.info("Baseline updated at %s", path)
        return path

    def list_backups(self, identity: BaselineIdentity) -> list[Path]:
        folder = self.backup_dir / self._relative_dir(identity)
        if not folder.is_dir():
            return []
        return sorted(folder.glob(f"{identity.file_stem}_backup_*{IMAGE_EXTENSION}"))

    def delete_baseline(self, identity: BaselineIdentity) -> bool:
        path = self.baseline_path(identity)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Baseline deleted: %s", path)
        return True

    def cleanup(self, max_age_days: float) -> int:
        """Delete actual/diff artifacts older than ``max_age_days``. Baselines are never touched."""
        if max_age_days < 0:
            raise ValueError(f"max_age_days must be >= 0, got {max_age_days}")
        cutoff = time.time() - max_age_days * 86400
        deleted = 0
        for directory in (self.actual_dir, self.diff_dir):
            if not directory.is_dir():
                continue
            for file in directory.rglob("*"):
                if file.is_file() and file.stat().st_mtime < cutoff:
                    file.unlink()
                    deleted += 1
        logger.info("Cleaned up %d old images", deleted)
        return deleted

    def _free_backup_path(self, identity: BaselineIdentity) -> Path:
        timestamp = datetime.now().strftime(BACKUP_TIMESTAMP)
        candidate = self.backup_path(identity, timestamp)
        counter = 1
        while candidate.exists():
            candidate = self.backup_path(identity, f"{timestamp}_{counter}")
            counter += 1
        return candidate


def read_image(path: Path) -> Image.Image:
    try:
        with Image.open(path) as img:
            img.load()
            return img.copy()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageInputError(f"Unreadable image {path}: {e}") from e


def _write_image(image: Image.Image, path: Path) -> None:
    """Write PNG via a temp file in the same directory, then rename into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=path.parent)
    os.close(fd)
    try:
        image.save(tmp_name, format="PNG")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
