"""Ignore-region parsing, masking and grouping of differing pixels."""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np
from pydantic import ValidationError
from scipy import ndimage

from visual_verdict.models.comparison import DiffRegion, IgnoreRegion

logger = logging.getLogger(__name__)

# Differing pixels this close to each other are labelled as one cluster.
CLUSTER_GAP = 3


def parse_ignore_regions(text: str | None) -> list[IgnoreRegion]:
    """Parse ``"x,y,w,h;x,y,w,h"``. Malformed entries are skipped with a warning."""
    regions: list[IgnoreRegion] = []
    if not text:
        return regions
    for entry in text.split(";"):
        entry = entry.strip()
        if not entry:
            continue
        parts = [p.strip() for p in entry.split(",")]
        if len(parts) != 4:
            logger.warning("Invalid ignore region format: %s", entry)
            continue
        try:
            regions.append(IgnoreRegion.from_tuple(tuple(int(p) for p in parts)))
        except (ValueError, ValidationError):
            logger.warning("Invalid ignore region format: %s", entry)
    return regions


def parse_ignore_region_list(entries: Iterable[str]) -> list[IgnoreRegion]:
    """Parse several encoded region strings into one flat list."""
    regions: list[IgnoreRegion] = []
    for entry in entries:
        regions.extend(parse_ignore_regions(entry))
    return regions


def build_keep_mask(width: int, height: int, regions: Iterable[IgnoreRegion]) -> np.ndarray:
    """Boolean (height, width) array, False inside any ignore region."""
    keep = np.ones((height, width), dtype=bool)
    for region in regions:
        bounds = region.bounds(width, height)
        if bounds is None:
            logger.debug("Ignore region %s lies outside %dx%d image", region, width, height)
            continue
        x0, y0, x1, y1 = bounds
        keep[y0:y1, x0:x1] = False
    return keep


def bounding_region(diff_mask: np.ndarray) -> DiffRegion | None:
    """Single bounding box around every differing pixel."""
    ys, xs = np.nonzero(diff_mask)
    if len(xs) == 0:
        return None
    return DiffRegion(
        min_x=int(xs.min()),
        min_y=int(ys.min()),
        max_x=int(xs.max()),
        max_y=int(ys.max()),
        pixel_count=int(len(xs)),
    )


def find_clusters(
    diff_mask: np.ndarray,
    min_pixels: int = 10,
    merge_distance: int = 50,
) -> list[DiffRegion]:
    """Group differing pixels into connected clusters.

    Pixels within CLUSTER_GAP of each other join the same cluster. Clusters with
    fewer than ``min_pixels`` pixels are dropped as noise, then clusters whose
    boxes lie within ``merge_distance`` of each other are merged.
    """
    if not diff_mask.any():
        return []
    size = 2 * CLUSTER_GAP + 1
    bridged = ndimage.binary_dilation(diff_mask, structure=np.ones((size, size), dtype=bool))
    labels, count = ndimage.label(bridged, structure=np.ones((3, 3), dtype=int))
    labels = np.where(diff_mask, labels, 0)
    pixel_counts = np.bincount(labels.ravel(), minlength=count + 1)

    clusters: list[DiffRegion] = []
    for label, slices in enumerate(ndimage.find_objects(labels), start=1):
        if slices is None or pixel_counts[label] < min_pixels:
            continue
        rows, cols = slices
        clusters.append(DiffRegion(
            min_x=cols.start,
            min_y=rows.start,
            max_x=cols.stop - 1,
            max_y=rows.stop - 1,
            pixel_count=int(pixel_counts[label]),
        ))
    return merge_nearby(clusters, merge_distance)


def merge_nearby(regions: list[DiffRegion], distance: int) -> list[DiffRegion]:
    """Merge boxes that overlap once one of them is grown by ``distance``."""
    if len(regions) <= 1:
        return list(regions)
    merged: list[DiffRegion] = []
    used = [False] * len(regions)
    for i, region in enumerate(regions):
        if used[i]:
            continue
        used[i] = True
        current = region
        found = True
        while found:
            found = False
            for j, other in enumerate(regions):
                if used[j] or not _near(current, other, distance):
                    continue
                current = DiffRegion(
                    min_x=min(current.min_x, other.min_x),
                    min_y=min(current.min_y, other.min_y),
                    max_x=max(current.max_x, other.max_x),
                    max_y=max(current.max_y, other.max_y),
                    pixel_count=current.pixel_count + other.pixel_count,
                )
                used[j] = True
                found = True
        merged.append(current)
    return merged


def _near(a: DiffRegion, b: DiffRegion, distance: int) -> bool:
    return not (
        b.max_x < a.min_x - distance
        or b.min_x > a.max_x + distance
        or b.max_y < a.min_y - distance
        or b.min_y > a.max_y + distance
    )
