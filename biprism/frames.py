"""Shared latest-frame store handed between the input and the analysis stages."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

import numpy as np


@dataclass(eq=False)
class FrameData:
    """A frame with its sequence number and capture timestamp."""

    frame: np.ndarray
    sequence: int
    timestamp: float = field(default_factory=time.perf_counter)


class FrameManager:
    """Thread-safe holder of the most recent frame."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sequence = 0
        self._current: FrameData | None = None

    def update_frame(self, frame) -> FrameData | None:
        """Store ``frame`` as the current one; empty frames are ignored."""
        if frame is None or np.asarray(frame).size == 0:
            return None
        with self._lock:
            self._sequence += 1
            self._current = FrameData(frame, self._sequence)
            return self._current

    def current_frame(self) -> FrameData | None:
        with self._lock:
            return self._current

    def current_sequence(self) -> int:
        return self._sequence

    def has_new_frame(self, last_seen_sequence: int) -> bool:
        return self._sequence > last_seen_sequence

    def clear(self) -> None:
        with self._lock:
            self._current = None
            self._sequence = 0


_instance: FrameManager | None = None
_instance_lock = threading.Lock()


def get_frame_manager() -> FrameManager:
    """Return the process-wide frame manager, creating it on first use."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = FrameManager()
        return _instance