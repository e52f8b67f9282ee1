"""Tracking of detected circle centres and linear fits of centre against radius."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from .imaging import linear_fit

_MAX_MATCH_DIST = 200.0
_MAX_FRAMES_UNSEEN = 100
_SLOPE_EPS = 1e-3

# Track colours as RGB: cyan, magenta, yellow, green, red, blue.
PALETTE: tuple[tuple[int, int, int], ...] = (
    (0, 255, 255),
    (255, 0, 255),
    (255, 255, 0),
    (0, 255, 0),
    (255, 0, 0),
    (0, 0, 255),
)

NOT_ENOUGH_DATA = "暂无足够数据进行分析"
NOT_ENOUGH_FOR_ADVICE = "数据不足，无法给出建议。"


@dataclass(frozen=True)
class AnalysisPoint:
    """A detected centre ``(x, y)`` with its radius ``r``."""

    x: float
    y: float
    r: float = 0.0


@dataclass
class AnalysisTrack:
    """Points matched to one moving target, with the fit of x and y against r."""

    id: int
    data_points: list[AnalysisPoint] = field(default_factory=list)
    color: tuple[int, int, int] = (0, 0, 0)
    frames_since_update: int = 0
    last_center: tuple[float, float] = (0.0, 0.0)
    slope_x: float = 0.0
    slope_y: float = 0.0
    angle: float = 0.0
    magnitude: float = 0.0
    direction: str = ""


def _direction(angle: float) -> str:
    if -22.5 <= angle < 22.5:
        return "右"
    if 22.5 <= angle < 67.5:
        return "右下方"
    if 67.5 <= angle < 112.5:
        return "下方"
    if 112.5 <= angle < 157.5:
        return "左下方"
    if angle >= 157.5 or angle < -157.5:
        return "左"
    if -157.5 <= angle < -112.5:
        return "左上方"
    if -112.5 <= angle < -67.5:
        return "上方"
    if -67.5 <= angle < -22.5:
        return "右上方"
    return "未知"


def _as_point(value) -> AnalysisPoint:
    if isinstance(value, AnalysisPoint):
        return value
    return AnalysisPoint(*value)


def _update_fit(track: AnalysisTrack) -> None:
    if not track.data_points:
        return
    if len(track.data_points) == 1:
        track.slope_x = track.slope_y = track.angle = track.magnitude = 0.0
        track.direction = "单点"
        return
    fit_x = linear_fit((p.r, p.x) for p in track.data_points)
    fit_y = linear_fit((p.r, p.y) for p in track.data_points)
    track.slope_x = fit_x[0] if fit_x else 0.0
    track.slope_y = fit_y[0] if fit_y else 0.0
    track.angle = math.degrees(math.atan2(track.slope_y, track.slope_x))
    track.magnitude = math.hypot(track.slope_x, track.slope_y)
    track.direction = _direction(track.angle)


class AnalysisModule:
    """Collects recorded centres and per-frame tracks, and turns them into advice."""

    def __init__(self) -> None:
        self._tracks: list[AnalysisTrack] = []
        self._next_track_id = 0
        self._points: list[tuple[float, float, float]] = []

    def clear(self) -> None:
        """Drop all tracks and restart track numbering."""
        self._tracks.clear()
        self._next_track_id = 0

    def add_point(self, x: float, y: float, r: float) -> None:
        self._points.append((float(x), float(y), float(r)))

    def point_count(self) -> int:
        return len(self._points)

    def points(self) -> list[tuple[float, float, float]]:
        return list(self._points)

    def fit_xr(self) -> tuple[float, float] | None:
        """Fit x against r over the recorded points."""
        return linear_fit((r, x) for x, _, r in self._points)

    def fit_yr(self) -> tuple[float, float] | None:
        """Fit y against r over the recorded points."""
        return linear_fit((r, y) for _, y, r in self._points)

    def move_advice(self) -> str:
        """Tell which way to move the light source from the recorded fits."""
        if len(self._tracks) < 2:
            return NOT_ENOUGH_FOR_ADVICE
        advice = ""
        fit_x = self.fit_xr()
        if fit_x:
            kx = fit_x[0]
            if abs(kx) > _SLOPE_EPS:
                advice += "光源前移，x随r增大" if kx > 0 else "光源后移，x随r减小"
            else:
                advice += "x与r关系不明显"
        advice += "\n"
        fit_y = self.fit_yr()
        if fit_y:
            ky = fit_y[0]
            if abs(ky) > _SLOPE_EPS:
                advice += "光源上移，y随r增大" if ky > 0 else "光源下移，y随r减小"
            else:
                advice += "y与r关系不明显"
        return advice

    def add_frame_points(self, points: Iterable) -> None:
        """Match one frame's points to tracks by nearest neighbour and refit them."""
        for track in self._tracks:
            track.frames_since_update += 1
        matched: set[int] = set()
        for raw in points:
            pt = _as_point(raw)
            center = (float(pt.x), float(pt.y))
            best: AnalysisTrack | None = None
            best_dist = _MAX_MATCH_DIST
            for track in self._tracks:
                if track.id in matched:
                    continue
                dist = math.dist(center, track.last_center)
                if dist < best_dist:
                    best_dist, best = dist, track
            if best is not None:
                best.frames_since_update = 0
                best.last_center = center
                best.data_points.append(pt)
                matched.add(best.id)
            else:
                track_id = self._next_track_id
                self._next_track_id += 1
                self._tracks.append(AnalysisTrack(
                    id=track_id,
                    data_points=[pt],
                    color=PALETTE[track_id % len(PALETTE)],
                    last_center=center,
                ))
        self._tracks = [
            t for t in self._tracks if t.frames_since_update <= _MAX_FRAMES_UNSEEN
        ]
        for track in self._tracks:
            _update_fit(track)

    def suggestion(self) -> str:
        """One line per track: its single point, or its fitted slopes."""
        lines = []
        for track in self._tracks:
            if not track.data_points:
                continue
            if len(track.data_points) == 1:
                p = track.data_points[0]
                lines.append(
                    f"轨迹{track.id}: 当前点({p.x:.1f}, {p.y:.1f}), 半径={p.r:.1f}\n"
                )
            else:
                lines.append(
                    f"轨迹{track.id}: X-R斜率={track.slope_x:.3f}, Y-R斜率={track.slope_y:.3f}\n"
                )
        return "".join(lines) or NOT_ENOUGH_DATA

    def tracks(self) -> list[AnalysisTrack]:
        return [replace(t, data_points=list(t.data_points)) for t in self._tracks]