"""Capture providers: zero-argument callables that return the image under test."""

from __future__ import annotations

import io
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from PIL import Image

from visual_verdict.baseline.store import read_image

if TYPE_CHECKING:
    from playwright.sync_api import Page

CaptureProvider = Callable[[], Image.Image]


class FileCaptureProvider:
    """Reads an already-captured screenshot from disk."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def __call__(self) -> Image.Image:
        if not self.path.is_file():
            raise FileNotFoundError(f"Screenshot not found: {self.path}")
        return read_image(self.path)


class ImageCaptureProvider:
    """Hands over an in-memory image."""

    def __init__(self, image: Image.Image):
        self.image = image

    def __call__(self) -> Image.Image:
        return self.image


class PageCaptureProvider:
    """Screenshots a live browser page (e.g. a Playwright sync ``Page``)."""

    def __init__(self, page: "Page", full_page: bool = True):
        self.page = page
        self.full_page = full_page

    def __call__(self) -> Image.Image:
        data = self.page.screenshot(full_page=self.full_page)
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return img.copy()
