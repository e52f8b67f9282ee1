"""Optical-path alignment: circle detection on live frames and recording of centre drift."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

import numpy as np

from .analysis import AnalysisModule
from .circles import CircleDetectionProcessor, DetectionAlgorithm, DetectionParams, DetectionResult
from .imaging import rotation_matrix, warp_affine

_logger = logging.getLogger(__name__)

ALGORITHM_NAMES: dict[DetectionAlgorithm, str] = {
    DetectionAlgorithm.HOUGH: "Hough圆检测",
    DetectionAlgorithm.GEOMETRIC_CENTER: "几何中心检测",
}

Line = tuple[tuple[float, float], tuple[float, float]]


def shift_and_zoom(frame, offset_x: float, offset_y: float, scale: float) -> np.ndarray:
    """Zoom ``frame`` about its centre by ``scale`` and shift it by the offset."""
    img = np.asarray(frame)
    rows, cols = img.shape[:2]
    matrix = rotation_matrix((cols / 2.0, rows / 2.0), 0.0, scale)
    matrix[0, 2] += offset_x
    matrix[1, 2] += offset_y
    return warp_affine(img, matrix, order=1, mode="constant")


def format_detection_report(circles: Iterable[Sequence[float]]) -> str:
    """Text listing each detected target with its integer centre and radius."""
    items = list(circles)
    lines = [f"检测到 {len(items)} 个目标:\n"]
    for index, (x, y, r) in enumerate(items, start=1):
        lines.append(f"目标 {index}: 中心({int(x)}, {int(y)}), 半径: {int(r)}\n")
    return "".join(lines)


class AlignmentSession:
    """Runs circle detection on incoming frames and records centres while recording."""

    def __init__(self, log: Callable[[str], None] | None = None) -> None:
        self._log_callback = log
        self._processor = CircleDetectionProcessor()
        self._analysis = AnalysisModule()
        self.detection_active = False
        self.recording = False
        self.static_source = False
        self.offset: tuple[int, int] = (0, 0)
        self.zoom = 1.0
        self.report = ""
        self._original: np.ndarray | None = None
        self._frame_counter = 0
        self._processor.set_params(DetectionParams())

    @property
    def processor(self) -> CircleDetectionProcessor:
        return self._processor

    @property
    def analysis(self) -> AnalysisModule:
        return self._analysis

    @property
    def frame_count(self) -> int:
        return self._frame_counter

    def _log(self, message: str) -> None:
        _logger.info(message)
        if self._log_callback is not None:
            self._log_callback(message)

    def start_detection(self) -> None:
        self.detection_active = True
        self._log("开始圆检测")

    def stop_detection(self) -> None:
        """Stop detecting; an ongoing recording is stopped too."""
        self.detection_active = False
        if self.recording:
            self.toggle_recording()
        self._log("停止圆检测")

    def toggle_recording(self) -> bool:
        """Start or stop recording centres; starting clears the analysis. Returns the new state."""
        self.recording = not self.recording
        if self.recording:
            self._log("开始记录圆心坐标")
            self._analysis.clear()
        else:
            self._log("停止记录圆心坐标")
        return self.recording

    def clear_recording(self) -> None:
        self._analysis.clear()
        self.report = ""
        self._log("所有记录、图表、建议和显示内容已清除")

    def set_static_source(self, is_static: bool) -> None:
        self.static_source = bool(is_static)

    def set_algorithm(self, algorithm: DetectionAlgorithm) -> None:
        self._processor.set_algorithm(algorithm)
        self._log(f"切换检测算法为: {ALGORITHM_NAMES[algorithm]}")

    def update_params(self, params: DetectionParams) -> None:
        self._processor.set_params(params)

    def process_frame(self, frame) -> DetectionResult | None:
        """Detect circles in ``frame``; empty frames are ignored and give ``None``."""
        if frame is None or np.asarray(frame).size == 0:
            return None
        img = np.asarray(frame)
        self._original = img.copy()
        self._frame_counter += 1
        result = self._processor.process_frame(img, self._frame_counter)
        if self.recording:
            for x, y, r in result.circles:
                self._analysis.add_point(x, y, r)
        self.report = format_detection_report(result.circles)
        return result

    def set_offset(self, x: int, y: int, zoom: int = 100) -> DetectionResult | None:
        """Set the drift offset and zoom (percent); re-detect on a static source while active."""
        self.offset = (int(x), int(y))
        self.zoom = zoom / 100.0
        if self._original is None or not self.detection_active or not self.static_source:
            return None
        modified = shift_and_zoom(self._original, x, y, self.zoom)
        return self.process_frame(modified)

    def fit_lines(self, r_min: float = 0.0, r_max: float = 100.0) -> tuple[Line | None, Line | None]:
        """End points of the x-r and y-r fitted lines over ``[r_min, r_max]``."""

        def endpoints(fit) -> Line | None:
            if fit is None:
                return None
            k, b = fit
            return (r_min, k * r_min + b), (r_max, k * r_max + b)

        return endpoints(self._analysis.fit_xr()), endpoints(self._analysis.fit_yr())

    def advice(self) -> str:
        return self._analysis.move_advice()