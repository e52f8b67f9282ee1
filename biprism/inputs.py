"""Frame sources with read caching, and image file loading and saving."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod

import numpy as np
from PIL import Image

from .imaging import to_rgb


def load_image(path) -> np.ndarray:
    """Load an image file as a 3-channel BGR uint8 array; raises ``OSError`` on failure."""
    with Image.open(path) as img:
        rgb = np.asarray(img.convert("RGB"))
    return rgb[..., ::-1].copy()


def save_image(path, image) -> None:
    """Write a grayscale, BGR or BGRA image; the format follows the file extension."""
    if image is None or np.asarray(image).size == 0:
        raise ValueError("cannot save an empty image")
    img = np.asarray(image)
    if img.ndim == 2:
        data = img if img.dtype == np.uint8 else np.clip(np.rint(img), 0, 255).astype(np.uint8)
    else:
        data = to_rgb(img)
    Image.fromarray(np.ascontiguousarray(data)).save(path)


class ImageInput(ABC):
    """Base class of frame sources, with a short-lived cache of the last frame."""

    def __init__(self, resolution=(640, 480)) -> None:
        self.resolution = tuple(resolution)
        self._opened = False
        self._cached_frame: np.ndarray | None = None
        self._last_read_time: float | None = None
        self._frame_sequence = 0
        self._cache_enabled = True
        self._cache_timeout_ms = 30

    @abstractmethod
    def init(self) -> bool:
        """Prepare the source; return whether it succeeded."""

    @abstractmethod
    def read(self) -> np.ndarray | None:
        """Return the next frame, or ``None`` when none is available."""

    def _should_update_frame(self) -> bool:
        if not self._cache_enabled or self._last_read_time is None:
            return True
        elapsed_ms = int((time.monotonic() - self._last_read_time) * 1000)
        return elapsed_ms >= self._cache_timeout_ms

    def _cache(self, frame: np.ndarray) -> None:
        self._cached_frame = frame
        self._last_read_time = time.monotonic()
        self._frame_sequence += 1

    def read_ref(self) -> np.ndarray | None:
        """Return the cached frame while fresh, otherwise read and cache a new one."""
        if self.is_cache_valid():
            return self._cached_frame
        frame = self.read()
        if frame is not None and np.asarray(frame).size:
            self._cache(frame)
        return self._cached_frame

    def frame_sequence(self) -> int:
        return self._frame_sequence

    def is_opened(self) -> bool:
        return self._opened

    def __bool__(self) -> bool:
        return self._opened

    def set_frame_cache(self, enable: bool, timeout_ms: int = 30) -> None:
        self._cache_enabled = enable
        self._cache_timeout_ms = timeout_ms

    def is_cache_valid(self) -> bool:
        return (
            self._cache_enabled
            and self._cached_frame is not None
            and not self._should_update_frame()
        )


class StaticImageInput(ImageInput):
    """A source that serves one image loaded from a file."""

    def __init__(self, path, resolution=(640, 480)) -> None:
        super().__init__(resolution)
        self.init()
        try:
            self._static_image: np.ndarray | None = load_image(path)
        except OSError:
            self._static_image = None
        self._opened = self._static_image is not None

    def init(self) -> bool:
        return True

    def read(self) -> np.ndarray | None:
        if not self._opened:
            return None
        if self.is_cache_valid():
            return self._cached_frame.copy()
        if self._cached_frame is None:
            self._cache(self._static_image.copy())
        return self._cached_frame.copy()