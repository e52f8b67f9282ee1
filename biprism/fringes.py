"""Interference fringe measurement: tilt estimation, projection peaks and spacing."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .imaging import (
    apply_preprocessing,
    draw_line,
    find_peaks,
    invert_affine,
    rotation_matrix,
    to_gray,
    transform_points,
    warp_affine,
)

_RED = (0, 0, 255)
_SEARCH_ANGLES = np.arange(-45.0, 46.0, 1.0)

NOT_ENOUGH_FRINGES = "未能检测到足够条纹以计算间距。"


@dataclass(frozen=True)
class FringeParams:
    """Preprocessing and peak-detection settings of a fringe measurement."""

    brightness: float = 0.0
    contrast: float = 100.0
    gamma: float = 100.0
    peak_thresh: float = 50.0
    min_peak_dist: int = 10
    detect_valleys: bool = False


@dataclass(eq=False)
class FringeResult:
    """Outcome of one fringe measurement, with the images it was drawn on."""

    rotation_angle: float
    fringe_angle: float
    peak_indices: list[int]
    spacings: list[float]
    avg_spacing_px: float | None
    avg_spacing_um: float | None
    projection: np.ndarray
    processed: np.ndarray
    rotated: np.ndarray
    annotated_original: np.ndarray = field(repr=False)
    annotated_processed: np.ndarray = field(repr=False)

    @property
    def enough_fringes(self) -> bool:
        return len(self.peak_indices) > 1


def _to_u8(gray: np.ndarray) -> np.ndarray:
    if gray.dtype == np.uint8:
        return gray
    values = gray.astype(np.float64)
    lo, hi = float(values.min()), float(values.max())
    scale = 255.0 / (hi - lo + 1e-5)
    return np.clip(np.rint(values * scale - lo * scale), 0, 255).astype(np.uint8)


def _center(image: np.ndarray) -> tuple[float, float]:
    rows, cols = image.shape[:2]
    return cols / 2.0, rows / 2.0


def column_projection(gray) -> np.ndarray:
    """Mean of each column of a single-channel image, as float32."""
    img = np.asarray(gray)
    if img.ndim != 2:
        raise ValueError("column_projection needs a single-channel image")
    return img.astype(np.float64).mean(axis=0).astype(np.float32)


def estimate_fringe_rotation(gray) -> float:
    """Angle in degrees (-45 to 45) that turns the fringes vertical.

    The angle whose rotated column projection has the largest standard
    deviation wins; the first one found wins ties.
    """
    img = np.asarray(gray)
    if img.ndim != 2:
        raise ValueError("estimate_fringe_rotation needs a single-channel image")
    gray8 = _to_u8(img)
    center = _center(gray8)
    best_angle, best_score = 0.0, -1.0
    for angle in _SEARCH_ANGLES:
        matrix = rotation_matrix(center, float(angle), 1.0)
        rotated = warp_affine(gray8, matrix, order=1, mode="nearest")
        score = float(np.std(column_projection(rotated).astype(np.float64)))
        if score > best_score:
            best_score, best_angle = score, float(angle)
    return best_angle


def draw_fringes(image, angle, peak_indices) -> np.ndarray:
    """Draw a red line per peak column, mapped back from a frame rotated by ``angle``."""
    peaks = list(peak_indices)
    if not peaks:
        return image
    rows, cols = image.shape[:2]
    thickness = max(1, cols // 300)
    inverse = invert_affine(rotation_matrix(_center(image), angle, 1.0))
    for peak_x in peaks:
        (x0, y0), (x1, y1) = transform_points([(peak_x, 0), (peak_x, rows)], inverse)
        draw_line(image, (x0, y0), (x1, y1), _RED, thickness)
    return image


def analyze_fringes(frame, params: FringeParams | None = None, pixel_size_um: float = 3.45) -> FringeResult:
    """Measure fringe tilt and spacing on ``frame``; raises ``ValueError`` if it is empty."""
    if params is None:
        params = FringeParams()
    if frame is None or np.asarray(frame).size == 0:
        raise ValueError("no frame to analyse")
    gray = to_gray(np.asarray(frame))
    processed = apply_preprocessing(gray, params.brightness, params.contrast, params.gamma)

    rotation_angle = estimate_fringe_rotation(processed)
    fringe_angle = 90.0 - rotation_angle
    if fringe_angle < 0.0:
        fringe_angle += 180.0

    matrix = rotation_matrix(_center(processed), rotation_angle, 1.0)
    rotated = warp_affine(processed, matrix, order=3, mode="nearest")
    projection = column_projection(rotated)

    profile = projection
    if params.detect_valleys:
        profile = profile.max() - profile
    peaks = find_peaks(profile.tolist(), params.peak_thresh, params.min_peak_dist)

    spacings = [float(b - a) for a, b in zip(peaks, peaks[1:])]
    avg_px = sum(spacings) / len(spacings) if spacings else None
    avg_um = avg_px * pixel_size_um if avg_px is not None else None

    annotated_original = np.repeat(gray.astype(np.uint8)[:, :, np.newaxis], 3, axis=2)
    annotated_processed = np.repeat(rotated[:, :, np.newaxis], 3, axis=2)
    draw_fringes(annotated_original, rotation_angle, peaks)
    draw_fringes(annotated_processed, 0.0, peaks)

    return FringeResult(
        rotation_angle=rotation_angle,
        fringe_angle=fringe_angle,
        peak_indices=peaks,
        spacings=spacings,
        avg_spacing_px=avg_px,
        avg_spacing_um=avg_um,
        projection=projection,
        processed=processed,
        rotated=rotated,
        annotated_original=annotated_original,
        annotated_processed=annotated_processed,
    )


def format_fringe_report(result: FringeResult) -> str:
    """Text summary of a measurement: tilt, fringe count and mean spacing."""
    lines = [
        "分析结果 (冻结帧):",
        f"条纹倾斜角度: {result.fringe_angle:.2f}°",
    ]
    if result.enough_fringes:
        lines.append(f"检测到 {len(result.peak_indices)} 条条纹")
        lines.append(
            f"平均间距: {result.avg_spacing_px:.2f} px  ({result.avg_spacing_um:.2f} μm)"
        )
    else:
        lines.append(NOT_ENOUGH_FRINGES)
    return "\n".join(lines)


def fringe_table(result: FringeResult) -> list[tuple[str, str, str]]:
    """Rows of (number, position px, spacing to previous px); empty without enough fringes."""
    if not result.enough_fringes:
        return []
    rows = []
    for number, position in enumerate(result.peak_indices, start=1):
        spacing = "N/A" if number == 1 else f"{result.spacings[number - 2]:g}"
        rows.append((str(number), str(position), spacing))
    return rows