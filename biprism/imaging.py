"""Image conversion, preprocessing, geometry and peak/fit helpers for frame analysis.

Images are NumPy arrays: ``(H, W)`` for grayscale, ``(H, W, 3)`` for BGR and
``(H, W, 4)`` for BGRA. Colours given to the drawing helpers follow the same
channel order as the image they are drawn on.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

import numpy as np
from PIL import Image, ImageDraw
from scipy import ndimage

# Luma weights in B, G, R order.
_GRAY_WEIGHTS = np.array([0.114, 0.587, 0.299])


def _is_empty(image) -> bool:
    return image is None or np.asarray(image).size == 0


def _saturate_u8(values) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def to_gray(image) -> np.ndarray:
    """Return a single-channel copy of a grayscale, BGR or BGRA image."""
    img = np.asarray(image)
    if img.ndim == 2:
        return img.copy()
    if img.ndim != 3 or img.shape[2] not in (1, 3, 4):
        raise ValueError(f"unsupported image shape {img.shape}")
    if img.shape[2] == 1:
        return img[..., 0].copy()
    gray = img[..., :3].astype(np.float64) @ _GRAY_WEIGHTS
    if img.dtype == np.uint8:
        return _saturate_u8(gray)
    return gray.astype(img.dtype)


def to_rgb(image) -> np.ndarray | None:
    """Convert an image to 8-bit RGB (or RGBA) for display.

    Returns ``None`` for an empty image; raises ``ValueError`` for an
    unsupported channel count.
    """
    if _is_empty(image):
        return None
    img = np.asarray(image)
    if img.dtype != np.uint8:
        img = _saturate_u8(img)
    if img.ndim == 2:
        return np.repeat(img[:, :, np.newaxis], 3, axis=2)
    if img.ndim != 3:
        raise ValueError(f"unsupported image shape {img.shape}")
    channels = img.shape[2]
    if channels == 1:
        return np.repeat(img, 3, axis=2)
    if channels == 3:
        return img[..., ::-1].copy()
    if channels == 4:
        return img[..., [2, 1, 0, 3]].copy()
    raise ValueError(f"unsupported channel count {channels}")


def apply_preprocessing(src, brightness=0.0, contrast=100.0, gamma=100.0) -> np.ndarray:
    """Convert to gray and apply brightness, contrast (x0.02) and gamma (x0.01)."""
    if _is_empty(src):
        return np.empty((0, 0), dtype=np.uint8)
    img = np.asarray(src)
    if img.ndim == 3 and img.shape[2] == 3:
        img = to_gray(img)
    out = _saturate_u8(img.astype(np.float64) * (contrast / 50.0) + brightness)
    adjusted_gamma = gamma / 100.0
    if adjusted_gamma != 1.0:
        lut = _saturate_u8(np.power(np.arange(256) / 255.0, adjusted_gamma) * 255.0)
        out = lut[out]
    return out


def preprocess_to_rgb(src, brightness=0.0, contrast=100.0, gamma=100.0) -> np.ndarray | None:
    """Preprocess an image and convert the result to RGB for display."""
    return to_rgb(apply_preprocessing(src, brightness, contrast, gamma))


def fftshift(mag) -> np.ndarray:
    """Return a copy with the quadrants swapped so the zero frequency is centred."""
    arr = np.asarray(mag)
    out = arr.copy()
    cy, cx = arr.shape[0] // 2, arr.shape[1] // 2
    out[:cy, :cx] = arr[cy:2 * cy, cx:2 * cx]
    out[cy:2 * cy, cx:2 * cx] = arr[:cy, :cx]
    out[:cy, cx:2 * cx] = arr[cy:2 * cy, :cx]
    out[cy:2 * cy, :cx] = arr[:cy, cx:2 * cx]
    return out


def calculate_stats(data: Iterable[float]) -> tuple[float, float]:
    """Return the mean and population standard deviation of ``data``."""
    values = [float(v) for v in data]
    if len(values) < 2:
        return (values[0] if values else 0.0), 0.0
    n = len(values)
    mean = sum(values) / n
    sq_mean = sum(v * v for v in values) / n
    return mean, math.sqrt(max(sq_mean - mean * mean, 0.0))


def find_peaks(data: Iterable[float], threshold: float, min_dist: int) -> list[int]:
    """Indices of strict local maxima above ``threshold``, at least ``min_dist`` apart."""
    values = list(data)
    peaks: list[int] = []
    triples = zip(values, values[1:], values[2:])
    for index, (prev, cur, nxt) in enumerate(triples, start=1):
        if cur > prev and cur > nxt and cur > threshold:
            if not peaks or index - peaks[-1] >= min_dist:
                peaks.append(index)
    return peaks


def find_two_strongest_peaks(data: Iterable[float], threshold: float, min_dist: int) -> list[int]:
    """The (at most) two highest peaks, returned in order of position."""
    values = list(data)
    peaks = find_peaks(values, threshold, min_dist)
    strongest = sorted(peaks, key=lambda i: values[i], reverse=True)[:2]
    return sorted(strongest)


def linear_fit(data: Iterable[Sequence[float]]) -> tuple[float, float] | None:
    """Least-squares line through ``(x, y)`` pairs as ``(slope, intercept)``.

    Returns ``None`` for fewer than two points or when all x are equal.
    """
    pairs = [(float(x), float(y)) for x, y in data]
    n = len(pairs)
    if n < 2:
        return None
    sum_x = sum(x for x, _ in pairs)
    sum_y = sum(y for _, y in pairs)
    sum_xx = sum(x * x for x, _ in pairs)
    sum_xy = sum(x * y for x, y in pairs)
    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return None
    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y * sum_xx - sum_x * sum_xy) / denominator
    return slope, intercept


def rotation_matrix(center, angle, scale=1.0) -> np.ndarray:
    """2x3 affine matrix rotating by ``angle`` degrees (counter-clockwise) about ``center``."""
    cx, cy = center
    rad = math.radians(angle)
    alpha = scale * math.cos(rad)
    beta = scale * math.sin(rad)
    return np.array([
        [alpha, beta, (1 - alpha) * cx - beta * cy],
        [-beta, alpha, beta * cx + (1 - alpha) * cy],
    ])


def invert_affine(matrix) -> np.ndarray:
    """Inverse of a 2x3 affine matrix; raises ``ValueError`` if it is singular."""
    m = np.asarray(matrix, dtype=np.float64)
    (a, b, c), (d, e, f) = m
    det = a * e - b * d
    if det == 0:
        raise ValueError("affine matrix is singular")
    inv_det = 1.0 / det
    a11, a12 = e * inv_det, -b * inv_det
    a21, a22 = -d * inv_det, a * inv_det
    return np.array([
        [a11, a12, -a11 * c - a12 * f],
        [a21, a22, -a21 * c - a22 * f],
    ])


def transform_points(points, matrix) -> np.ndarray:
    """Apply a 2x3 affine matrix to ``(x, y)`` points; returns an ``(N, 2)`` array."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    m = np.asarray(matrix, dtype=np.float64)
    return pts @ m[:, :2].T + m[:, 2]


def warp_affine(image, matrix, order=1, mode="constant") -> np.ndarray:
    """Warp ``image`` by a forward 2x3 affine matrix, keeping its size.

    ``order`` is the spline order (1 linear, 3 cubic); ``mode`` is the border
    handling ("constant" fills with zero, "nearest" replicates the edge).
    """
    img = np.asarray(image)
    (a, b, c), (d, e, f) = invert_affine(matrix)
    rc_matrix = np.array([[e, d], [b, a]])
    offset = np.array([f, c])

    def warp(plane: np.ndarray) -> np.ndarray:
        return ndimage.affine_transform(
            plane.astype(np.float64),
            rc_matrix,
            offset=offset,
            output_shape=plane.shape,
            order=order,
            mode=mode,
            cval=0.0,
        )

    if img.ndim == 2:
        out = warp(img)
    elif img.ndim == 3:
        out = np.stack([warp(img[..., ch]) for ch in range(img.shape[2])], axis=-1)
    else:
        raise ValueError(f"unsupported image shape {img.shape}")
    if img.dtype == np.uint8:
        return _saturate_u8(out)
    return out.astype(img.dtype)


def _fill(color, channels: int):
    components = [color] if np.isscalar(color) else list(color)
    if channels == 1:
        return int(round(float(components[0])))
    components = components + [0] * (channels - len(components))
    return tuple(int(round(float(v))) for v in components[:channels])


def _draw(image, paint) -> np.ndarray:
    if not isinstance(image, np.ndarray) or image.dtype != np.uint8:
        raise TypeError("drawing requires a uint8 NumPy array")
    if image.ndim == 2:
        channels = 1
    elif image.ndim == 3 and image.shape[2] in (3, 4):
        channels = image.shape[2]
    else:
        raise ValueError(f"unsupported image shape {image.shape}")
    canvas = Image.fromarray(np.ascontiguousarray(image))
    paint(ImageDraw.Draw(canvas), channels)
    image[...] = np.asarray(canvas)
    return image


def draw_line(image, start, end, color, thickness=1) -> np.ndarray:
    """Draw a line on ``image`` in place and return it."""
    (x0, y0), (x1, y1) = start, end

    def paint(draw: ImageDraw.ImageDraw, channels: int) -> None:
        draw.line([(float(x0), float(y0)), (float(x1), float(y1))],
                  fill=_fill(color, channels), width=max(1, int(thickness)))

    return _draw(image, paint)


def draw_circle(image, center, radius, color, thickness=1) -> np.ndarray:
    """Draw a circle on ``image`` in place; a negative thickness fills it."""
    cx, cy = (float(v) for v in center)
    r = float(radius)
    box = [cx - r, cy - r, cx + r, cy + r]

    def paint(draw: ImageDraw.ImageDraw, channels: int) -> None:
        fill = _fill(color, channels)
        if thickness < 0:
            draw.ellipse(box, fill=fill)
        else:
            draw.ellipse(box, outline=fill, width=max(1, int(thickness)))

    return _draw(image, paint)