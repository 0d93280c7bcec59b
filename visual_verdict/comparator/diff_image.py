"""Diff image rendering: highlights differing pixels on top of the actual capture."""

from __future__ import annotations

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from visual_verdict.models.comparison import DiffRegion

HIGHLIGHT = (255, 0, 0)
LABEL_BACKGROUND = (255, 255, 255)
OVERLAY_ALPHA = 0.5
MIN_PADDING = 20
OUTLINE_WIDTH = 4


def render_diff_image(
    actual: Image.Image,
    diff_mask: np.ndarray,
    regions: list[DiffRegion],
    numbered: bool = False,
) -> Image.Image:
    """Return a new RGB image: actual capture, tinted diff pixels, one marker per region."""
    pixels = np.asarray(actual.convert("RGB"), dtype=np.float32).copy()
    if diff_mask.any():
        tint = np.array(HIGHLIGHT, dtype=np.float32)
        pixels[diff_mask] = pixels[diff_mask] * (1 - OVERLAY_ALPHA) + tint * OVERLAY_ALPHA
    image = Image.fromarray(pixels.round().astype(np.uint8))
    if not regions:
        return image

    draw = ImageDraw.Draw(image)
    font = ImageFont.load_default()
    for index, region in enumerate(regions, start=1):
        _draw_marker(draw, font, region, f"#{index} ({region.pixel_count} px)" if numbered else f"{region.pixel_count} px")

    total = int(diff_mask.sum())
    noun = "region" if len(regions) == 1 else "regions"
    _draw_label(draw, font, (8, 8), f"DIFF: {len(regions)} {noun}, {total} pixels")
    return image


def _draw_marker(draw: ImageDraw.ImageDraw, font, region: DiffRegion, label: str) -> None:
    cx, cy = region.center
    pad_x = max(MIN_PADDING, region.width // 4)
    pad_y = max(MIN_PADDING, region.height // 4)
    half_w = region.width // 2 + pad_x
    half_h = region.height // 2 + pad_y
    draw.ellipse(
        [cx - half_w, cy - half_h, cx + half_w, cy + half_h],
        outline=HIGHLIGHT,
        width=OUTLINE_WIDTH,
    )
    _draw_label(draw, font, (max(0, cx - 10), max(0, cy - half_h - 16)), label)


def _draw_label(draw: ImageDraw.ImageDraw, font, origin: tuple[int, int], text: str) -> None:
    left, top, right, bottom = draw.textbbox(origin, text, font=font)
    draw.rectangle([left - 2, top - 2, right + 2, bottom + 2], fill=LABEL_BACKGROUND)
    draw.text(origin, text, fill=HIGHLIGHT, font=font)
