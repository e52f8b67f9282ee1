"""Measurement of the spacing between the two images of a light source."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np
from PIL import Image, ImageDraw
from scipy import ndimage

from .imaging import apply_preprocessing, draw_circle, draw_line, to_gray

_RED = (0, 0, 255)
_GREEN = (0, 255, 0)
_LINE_SAMPLES = 100
_MARK_RADIUS = 10
_EIGHT_CONNECTED = np.ones((3, 3), dtype=int)
_FOUR_CONNECTED = ndimage.generate_binary_structure(2, 1)

NOT_ENOUGH_TARGETS = "未能检测到足够的目标（需要至少两个）。"

Line = tuple[float, float, float, float]


@dataclass(frozen=True)
class SpacingParams:
    """Preprocessing and thresholding settings of a spacing measurement."""

    brightness: float = 0.0
    contrast: float = 100.0
    gamma: float = 100.0
    peak_thresh: float = 50.0
    min_peak_dist: int = 20
    detect_valleys: bool = False


@dataclass(eq=False)
class Region:
    """One connected foreground region with its holes filled.

    ``centroid`` is ``(x, y)``, ``bbox`` is ``(x, y, width, height)`` and
    ``boundary`` holds the ``(x, y)`` coordinates of its outer edge pixels.
    """

    area: int
    centroid: tuple[float, float]
    bbox: tuple[int, int, int, int]
    boundary: np.ndarray = field(repr=False)


@dataclass(eq=False)
class SpacingResult:
    """Outcome of one spacing measurement; distances are ``None`` with fewer than two regions."""

    regions: list[Region]
    processed: np.ndarray = field(repr=False)
    binary: np.ndarray = field(repr=False)
    annotated_original: np.ndarray = field(repr=False)
    annotated_processed: np.ndarray = field(repr=False)
    center1: tuple[float, float] | None = None
    center2: tuple[float, float] | None = None
    line1: Line | None = None
    line2: Line | None = None
    dist_px: float | None = None
    dx_px: float | None = None
    dy_px: float | None = None
    dist_um: float | None = None
    dx_um: float | None = None
    dy_um: float | None = None
    line_spacing_px: float | None = None
    line_spacing_um: float | None = None
    angle_deg: float | None = None
    weighted_um: float | None = None

    @property
    def found(self) -> bool:
        return self.center1 is not None and self.center2 is not None


def find_regions(binary) -> list[Region]:
    """Outer regions of the non-zero pixels (8-connected), largest area first."""
    mask = np.asarray(binary) != 0
    if mask.ndim != 2:
        raise ValueError("find_regions needs a single-channel image")
    labels, count = ndimage.label(mask, structure=_EIGHT_CONNECTED)
    regions: list[Region] = []
    for index, slices in enumerate(ndimage.find_objects(labels), start=1):
        if slices is None:
            continue
        row_sl, col_sl = slices
        filled = ndimage.binary_fill_holes(labels[slices] == index)
        inner = ndimage.binary_erosion(filled, structure=_FOUR_CONNECTED, border_value=0)
        ys, xs = np.nonzero(filled)
        by, bx = np.nonzero(filled & ~inner)
        boundary = np.column_stack((bx + col_sl.start, by + row_sl.start)).astype(np.float64)
        regions.append(Region(
            area=int(xs.size),
            centroid=(float(xs.mean() + col_sl.start), float(ys.mean() + row_sl.start)),
            bbox=(
                int(col_sl.start),
                int(row_sl.start),
                int(col_sl.stop - col_sl.start),
                int(row_sl.stop - row_sl.start),
            ),
            boundary=boundary,
        ))
    regions.sort(key=lambda r: -r.area)
    return regions


def fit_line(points) -> Line:
    """Least-squares (orthogonal) line through ``(x, y)`` points as ``(vx, vy, x0, y0)``.

    ``(vx, vy)`` is a unit direction and ``(x0, y0)`` the points' mean.
    Raises ``ValueError`` when there are no points.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if pts.shape[0] == 0:
        raise ValueError("cannot fit a line to no points")
    mean = pts.mean(axis=0)
    centred = pts - mean
    _, vectors = np.linalg.eigh(centred.T @ centred)
    vx, vy = vectors[:, -1]
    return float(vx), float(vy), float(mean[0]), float(mean[1])


def x_at_y(line: Line, y: float) -> float:
    """The x coordinate of ``line`` at height ``y``; a horizontal line gives its x0."""
    vx, vy, x0, y0 = line
    if abs(vy) < 1e-6:
        return float(x0)
    return float(x0 + vx / vy * (y - y0))


def _binarize(gray: np.ndarray, thresh: float, inverse: bool) -> np.ndarray:
    above = gray > thresh
    return np.where(~above if inverse else above, 255, 0).astype(np.uint8)


def _to_bgr(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return np.repeat(image[:, :, np.newaxis], 3, axis=2).astype(np.uint8)
    if image.ndim == 3 and image.shape[2] == 1:
        return np.repeat(image, 3, axis=2).astype(np.uint8)
    return image.astype(np.uint8, copy=True)


def _thickness(image: np.ndarray) -> int:
    return max(1, image.shape[1] // 300)


def _draw_fitted_line(image: np.ndarray, line: Line) -> None:
    rows = float(image.shape[0])
    draw_line(image, (x_at_y(line, 0.0), 0.0), (x_at_y(line, rows), rows), _GREEN, _thickness(image))


def _put_text(image: np.ndarray, text: str, origin: tuple[int, int], color) -> None:
    canvas = Image.fromarray(np.ascontiguousarray(image))
    ImageDraw.Draw(canvas).text(origin, text, fill=tuple(int(c) for c in color))
    image[...] = np.asarray(canvas)


def _draw_centers(image: np.ndarray, c1, c2, angle_deg: float) -> None:
    thickness = _thickness(image)
    draw_line(image, c1, c2, _RED, thickness)
    draw_circle(image, c1, _MARK_RADIUS, _RED, thickness)
    draw_circle(image, c2, _MARK_RADIUS, _RED, thickness)
    origin = (int((c1[0] + c2[0]) / 2), int((c1[1] + c2[1]) / 2))
    _put_text(image, f"{angle_deg:.1f} deg", origin, _RED)


def _line_spacing(r1: Region, r2: Region, line1: Line, line2: Line) -> float | None:
    x1, y1, _, h1 = r1.bbox
    x2, y2, _, h2 = r2.bbox
    y_start = max(y1, y2)
    y_end = min(y1 + h1, y2 + h2)
    if y_end <= y_start:
        return None
    total = 0.0
    for i in range(_LINE_SAMPLES):
        y = y_start + (y_end - y_start) * i / (_LINE_SAMPLES - 1)
        total += abs(x_at_y(line2, y) - x_at_y(line1, y))
    return total / _LINE_SAMPLES


def measure_spacing(frame, params: SpacingParams | None = None, pixel_size_um: float = 3.45) -> SpacingResult:
    """Measure the distance between the two largest regions of ``frame``.

    Raises ``ValueError`` for an empty frame.
    """
    if params is None:
        params = SpacingParams()
    if frame is None or np.asarray(frame).size == 0:
        raise ValueError("no frame to analyse")
    img = np.asarray(frame)

    processed = apply_preprocessing(img, params.brightness, params.contrast, params.gamma)
    if processed.ndim == 3:
        processed = to_gray(processed)
    binary = _binarize(processed, int(params.peak_thresh), params.detect_valleys)
    regions = find_regions(binary)

    annotated_original = _to_bgr(img)
    annotated_processed = _to_bgr(processed)
    result = SpacingResult(
        regions=regions,
        processed=processed,
        binary=binary,
        annotated_original=annotated_original,
        annotated_processed=annotated_processed,
    )
    if len(regions) < 2:
        return result

    r1, r2 = regions[0], regions[1]
    c1, c2 = r1.centroid, r2.centroid
    line1 = fit_line(r1.boundary)
    line2 = fit_line(r2.boundary)

    dx_px = abs(c1[0] - c2[0])
    dy_px = abs(c1[1] - c2[1])
    dist_px = math.hypot(dx_px, dy_px)
    spacing = _line_spacing(r1, r2, line1, line2)
    line_spacing_px = spacing if spacing is not None else dx_px
    angle_deg = math.degrees(math.atan2(c2[1] - c1[1], c2[0] - c1[0]))

    for image in (annotated_processed, annotated_original):
        _draw_fitted_line(image, line1)
        _draw_fitted_line(image, line2)
        _draw_centers(image, c1, c2, angle_deg)

    result.center1, result.center2 = c1, c2
    result.line1, result.line2 = line1, line2
    result.dx_px, result.dy_px, result.dist_px = dx_px, dy_px, dist_px
    result.dx_um = dx_px * pixel_size_um
    result.dy_um = dy_px * pixel_size_um
    result.dist_um = dist_px * pixel_size_um
    result.line_spacing_px = line_spacing_px
    result.line_spacing_um = line_spacing_px * pixel_size_um
    result.angle_deg = angle_deg
    result.weighted_um = (result.dist_um + result.dx_um + result.dy_um) / 3.0
    return result


def format_spacing_report(result: SpacingResult) -> str:
    """Text summary of a measurement: centres, spacings and the joining angle."""
    if not result.found:
        return NOT_ENOUGH_TARGETS
    c1, c2 = result.center1, result.center2
    return "".join([
        "检测到两个最大轮廓:\n",
        f"中心点1: ({c1[0]:.1f}, {c1[1]:.1f})\n",
        f"中心点2: ({c2[0]:.1f}, {c2[1]:.1f})\n",
        f"中心间距: {result.dist_px:.2f} px ({result.dist_um:.2f} μm)\n",
        f"水平间距(dX): {result.dx_px:.2f} px ({result.dx_um:.2f} μm)\n",
        f"垂直间距(dY): {result.dy_px:.2f} px ({result.dy_um:.2f} μm)\n",
        f"竖线平均间距: {result.line_spacing_px:.2f} px ({result.line_spacing_um:.2f} μm)\n",
        f"连线角度: {result.angle_deg:.2f}°\n",
    ])