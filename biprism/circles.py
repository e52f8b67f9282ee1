"""Circle detection on frames: gradient Hough transform or geometric centre."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
from PIL import Image
from scipy import ndimage

from .imaging import apply_preprocessing, draw_circle, draw_line, to_gray

_HOUGH_SCALE = 0.5
_CHUNK = 4096
_GREEN = (0, 255, 0)
_RED = (0, 0, 255)

Circle = tuple[float, float, float]


class DetectionAlgorithm(Enum):
    HOUGH = "hough"
    GEOMETRIC_CENTER = "geometric_center"


@dataclass(frozen=True)
class DetectionParams:
    """Parameters of both detection algorithms."""

    dp: float = 1.0
    min_dist: int = 50
    canny_thresh: int = 100
    center_thresh: int = 30
    min_radius: int = 10
    max_radius: int = 100
    use_binary_preprocessing: bool = False
    binary_thresh: int = 128
    geometric_binary_thresh: int = 128
    inverse_geometric: bool = False


@dataclass(eq=False)
class DetectionResult:
    """Detected circles as ``(x, y, r)`` with the annotated images."""

    circles: list[Circle] = field(default_factory=list)
    processed_image: np.ndarray | None = None
    original_image: np.ndarray | None = None
    frame_updated: bool = False
    frame_number: int = 0


def _saturate_u8(values) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def _binarize(gray: np.ndarray, thresh: float, inverse: bool = False) -> np.ndarray:
    above = gray > thresh
    return np.where(~above if inverse else above, 255, 0).astype(np.uint8)


def _canny(gray: np.ndarray, low: float, high: float):
    img = gray.astype(np.float64)
    dx = ndimage.sobel(img, axis=1, mode="nearest")
    dy = ndimage.sobel(img, axis=0, mode="nearest")
    adx, ady = np.abs(dx), np.abs(dy)
    mag = adx + ady
    h, w = mag.shape
    padded = np.pad(mag, 1)

    def neighbour(oy: int, ox: int) -> np.ndarray:
        return padded[1 + oy:1 + oy + h, 1 + ox:1 + ox + w]

    tan22 = math.tan(math.radians(22.5))
    tan67 = math.tan(math.radians(67.5))
    horizontal = ady <= adx * tan22
    vertical = ady > adx * tan67
    diagonal = ~(horizontal | vertical)
    same_sign = (dx * dy) > 0

    keep = horizontal & (mag > neighbour(0, -1)) & (mag >= neighbour(0, 1))
    keep |= vertical & (mag > neighbour(-1, 0)) & (mag >= neighbour(1, 0))
    keep |= diagonal & same_sign & (mag > neighbour(-1, -1)) & (mag >= neighbour(1, 1))
    keep |= diagonal & ~same_sign & (mag > neighbour(-1, 1)) & (mag >= neighbour(1, -1))

    weak = keep & (mag > low)
    strong = keep & (mag > high)
    labels, count = ndimage.label(weak, structure=np.ones((3, 3), dtype=int))
    if count == 0:
        return np.zeros_like(weak), dx, dy
    strong_labels = np.unique(labels[strong])
    strong_labels = strong_labels[strong_labels > 0]
    return np.isin(labels, strong_labels), dx, dy


def hough_circles(gray, dp=1.0, min_dist=50.0, canny_thresh=100.0, center_thresh=30.0,
                  min_radius=0, max_radius=0) -> list[Circle]:
    """Find circles in a grayscale image with the gradient Hough transform.

    Edges come from a Canny detector (high threshold ``canny_thresh``, low half
    of it); each edge point votes along its gradient for centres at radii in
    ``[min_radius, max_radius]``. Centres with more than ``center_thresh`` votes
    and at least ``min_dist`` apart are kept, strongest first. A non-positive
    ``max_radius`` means no upper bound beyond the image size.
    """
    img = np.asarray(gray)
    if img.ndim != 2:
        raise ValueError("hough_circles needs a single-channel image")
    if dp <= 0 or min_dist <= 0 or canny_thresh <= 0 or center_thresh <= 0:
        raise ValueError("dp, min_dist, canny_thresh and center_thresh must be positive")
    dp = max(float(dp), 1.0)
    h, w = img.shape
    min_r = max(int(min_radius), 0)
    max_r = int(max_radius)
    if max_r <= 0:
        max_r = max(h, w)
    if max_r < min_r or img.size == 0:
        return []

    edges, dx, dy = _canny(img, canny_thresh / 2.0, canny_thresh)
    ys, xs = np.nonzero(edges)
    gx, gy = dx[ys, xs], dy[ys, xs]
    norm = np.hypot(gx, gy)
    valid = norm > 0
    if not valid.any():
        return []
    vx = xs[valid].astype(np.float64)
    vy = ys[valid].astype(np.float64)
    ux = gx[valid] / norm[valid]
    uy = gy[valid] / norm[valid]

    radii = np.arange(min_r, max_r + 1, dtype=np.float64)
    acc_h, acc_w = int(h / dp) + 2, int(w / dp) + 2
    acc = np.zeros(acc_h * acc_w, dtype=np.int64)
    for start in range(0, vx.size, _CHUNK):
        sl = slice(start, start + _CHUNK)
        for sign in (1.0, -1.0):
            cx = vx[sl, None] + sign * ux[sl, None] * radii[None, :]
            cy = vy[sl, None] + sign * uy[sl, None] * radii[None, :]
            inside = (cx >= 0) & (cx < w) & (cy >= 0) & (cy < h)
            ax = (cx[inside] / dp).astype(np.int64)
            ay = (cy[inside] / dp).astype(np.int64)
            acc += np.bincount(ay * acc_w + ax, minlength=acc.size)
    acc = acc.reshape(acc_h, acc_w)

    peaks = (acc == ndimage.maximum_filter(acc, size=3, mode="constant")) & (acc > center_thresh)
    candidates = np.argwhere(peaks)
    if candidates.size == 0:
        return []
    votes = acc[candidates[:, 0], candidates[:, 1]]
    order = np.argsort(-votes, kind="stable")

    ex = xs.astype(np.float64)
    ey = ys.astype(np.float64)
    min_dist_sq = float(min_dist) ** 2
    circles: list[Circle] = []
    for ay, ax in candidates[order]:
        cx, cy = (ax + 0.5) * dp, (ay + 0.5) * dp
        if any((cx - x) ** 2 + (cy - y) ** 2 < min_dist_sq for x, y, _ in circles):
            continue
        dist = np.hypot(ex - cx, ey - cy)
        dist = dist[(dist >= min_r) & (dist <= max_r)]
        if dist.size == 0:
            continue
        bins = np.floor(dist - min_r).astype(np.int64)
        counts = np.bincount(bins)
        bin_radius = min_r + np.arange(counts.size) + 0.5
        best = int(np.argmax(counts / np.maximum(bin_radius, 1.0)))
        if counts[best] == 0:
            continue
        circles.append((float(cx), float(cy), float(dist[bins == best].mean())))
    return circles


def geometric_center(gray, thresh, inverse=False) -> tuple[Circle | None, np.ndarray]:
    """Centroid and mean radius of the pixels above ``thresh`` (below, if inverse).

    Returns the circle, or ``None`` when no pixel qualifies, and the binary mask.
    """
    img = np.asarray(gray)
    binary = _binarize(img, thresh, inverse)
    ys, xs = np.nonzero(binary)
    if xs.size == 0:
        return None, binary
    cx, cy = xs.mean(), ys.mean()
    radius = float(np.hypot(xs - cx, ys - cy).mean())
    return (float(cx), float(cy), radius), binary


def _mark(image: np.ndarray, center: tuple[int, int], radius: int) -> None:
    x, y = center
    draw_circle(image, center, 3, _GREEN, -1)
    if radius > 0:
        draw_circle(image, center, radius, _RED, 3)
    else:
        draw_line(image, (x - 10, y), (x + 10, y), _RED, 2)
        draw_line(image, (x, y - 10), (x, y + 10), _RED, 2)


class CircleDetectionProcessor:
    """Runs the selected detector on frames and caches the last result."""

    def __init__(self) -> None:
        self._algorithm = DetectionAlgorithm.HOUGH
        self._params = DetectionParams()
        self._last_frame = -1
        self._params_changed = False
        self._cached_processed: np.ndarray | None = None
        self._cached_circles: list[Circle] = []

    @property
    def algorithm(self) -> DetectionAlgorithm:
        return self._algorithm

    @property
    def params(self) -> DetectionParams:
        return self._params

    def set_algorithm(self, algorithm: DetectionAlgorithm) -> None:
        if algorithm != self._algorithm:
            self._algorithm = algorithm
            self._params_changed = True

    def set_params(self, params: DetectionParams) -> None:
        if params != self._params:
            self._params = params
            self._params_changed = True

    def needs_reprocessing(self, frame_number: int) -> bool:
        return frame_number != self._last_frame or self._params_changed

    def process_frame(self, frame, frame_number: int, force_update: bool = False) -> DetectionResult:
        """Detect circles in ``frame``; a repeated frame number reuses the cache."""
        img = np.asarray(frame)
        if img.size == 0:
            raise ValueError("cannot process an empty frame")
        result = DetectionResult(frame_number=frame_number, original_image=img.copy())
        if not force_update and not self.needs_reprocessing(frame_number):
            result.circles = list(self._cached_circles)
            if self._cached_processed is not None:
                result.processed_image = self._cached_processed.copy()
            return result

        gray = apply_preprocessing(img)
        if gray.ndim == 3:
            gray = to_gray(gray)

        if self._algorithm is DetectionAlgorithm.HOUGH:
            if self._params.use_binary_preprocessing:
                gray = _binarize(gray, self._params.binary_thresh)
            circles, processed = self._detect_hough(gray)
        else:
            circle, binary = geometric_center(
                gray, self._params.geometric_binary_thresh, self._params.inverse_geometric
            )
            circles = [circle] if circle is not None else []
            processed = np.repeat(binary[:, :, np.newaxis], 3, axis=2)

        annotated = img.copy()
        for x, y, r in circles:
            center = (int(np.rint(x)), int(np.rint(y)))
            radius = int(np.rint(r))
            _mark(annotated, center, radius)
            _mark(processed, center, radius)

        self._cached_circles = list(circles)
        self._cached_processed = processed.copy()
        self._last_frame = frame_number
        self._params_changed = False

        result.circles = list(circles)
        result.processed_image = processed
        result.original_image = annotated
        result.frame_updated = True
        return result

    def _detect_hough(self, gray: np.ndarray) -> tuple[list[Circle], np.ndarray]:
        p = self._params
        h, w = gray.shape
        small_size = (max(1, round(w * _HOUGH_SCALE)), max(1, round(h * _HOUGH_SCALE)))
        small = np.asarray(Image.fromarray(_saturate_u8(gray)).resize(small_size, Image.Resampling.BOX))
        blurred = _saturate_u8(
            ndimage.gaussian_filter(small.astype(np.float64), sigma=2.0, truncate=2.0, mode="mirror")
        )
        small_circles = hough_circles(
            blurred,
            p.dp,
            p.min_dist * _HOUGH_SCALE,
            p.canny_thresh,
            p.center_thresh,
            int(p.min_radius * _HOUGH_SCALE),
            int(p.max_radius * _HOUGH_SCALE),
        )
        circles = [(x / _HOUGH_SCALE, y / _HOUGH_SCALE, r / _HOUGH_SCALE) for x, y, r in small_circles]
        restored = np.asarray(Image.fromarray(blurred).resize((w, h), Image.Resampling.BILINEAR))
        processed = np.repeat(restored[:, :, np.newaxis], 3, axis=2).copy()
        return circles, processed