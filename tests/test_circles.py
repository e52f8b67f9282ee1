import math

import numpy as np
import pytest

from biprism.circles import (
    CircleDetectionProcessor,
    DetectionAlgorithm,
    DetectionParams,
    geometric_center,
    hough_circles,
)
from biprism.imaging import draw_circle

TOL = 3.0


def _disk_frame(center=(100, 100), radius=40, size=200, inverse=False):
    background = 255 if inverse else 0
    fill = 0 if inverse else 255
    frame = np.full((size, size, 3), background, dtype=np.uint8)
    draw_circle(frame, center, radius, (fill, fill, fill), -1)
    return frame


def test_geometric_center_of_disk():
    gray = _disk_frame()[..., 0]
    circle, binary = geometric_center(gray, 128)
    x, y, r = circle
    assert math.hypot(x - 100, y - 100) < 1.0
    assert 0 < r < 40
    assert binary.dtype == np.uint8
    assert set(np.unique(binary)) == {0, 255}


def test_geometric_center_inverse():
    gray = _disk_frame(inverse=True)[..., 0]
    circle, _ = geometric_center(gray, 128, True)
    assert math.hypot(circle[0] - 100, circle[1] - 100) < 1.0


def test_geometric_center_nothing_above_threshold():
    gray = np.zeros((50, 50), dtype=np.uint8)
    circle, binary = geometric_center(gray, 128)
    assert circle is None
    assert not binary.any()


def test_hough_blank_image_has_no_circles():
    assert hough_circles(np.zeros((100, 100), dtype=np.uint8), 1.0, 25, 100, 30, 5, 50) == []


def test_hough_rejects_bad_arguments():
    gray = np.zeros((20, 20), dtype=np.uint8)
    with pytest.raises(ValueError):
        hough_circles(gray, 0, 25, 100, 30, 5, 50)
    with pytest.raises(ValueError):
        hough_circles(gray, 1.0, 0, 100, 30, 5, 50)
    with pytest.raises(ValueError):
        hough_circles(np.zeros((20, 20, 3), dtype=np.uint8), 1.0, 25, 100, 30, 5, 50)


def test_processor_hough_finds_disk():
    proc = CircleDetectionProcessor()
    result = proc.process_frame(_disk_frame(), 1)
    assert result.frame_updated
    assert result.circles
    best = min(result.circles, key=lambda c: math.hypot(c[0] - 100, c[1] - 100))
    assert math.hypot(best[0] - 100, best[1] - 100) < TOL
    assert abs(best[2] - 40) < TOL
    assert result.processed_image.shape == (200, 200, 3)


def test_processor_geometric_marks_center_green():
    proc = CircleDetectionProcessor()
    proc.set_algorithm(DetectionAlgorithm.GEOMETRIC_CENTER)
    frame = _disk_frame()
    result = proc.process_frame(frame, 1)
    assert len(result.circles) == 1
    assert result.original_image[100, 100].tolist() == [0, 255, 0]
    assert result.processed_image[100, 100].tolist() == [0, 255, 0]
    assert frame[100, 100].tolist() == [255, 255, 255]


def test_processor_caches_same_frame():
    proc = CircleDetectionProcessor()
    proc.set_algorithm(DetectionAlgorithm.GEOMETRIC_CENTER)
    frame = _disk_frame()
    first = proc.process_frame(frame, 7)
    second = proc.process_frame(frame, 7)
    assert second.frame_updated is False
    assert second.frame_number == 7
    assert second.circles == first.circles
    assert np.array_equal(second.processed_image, first.processed_image)
    assert np.array_equal(second.original_image, frame)


def test_force_update_reprocesses():
    proc = CircleDetectionProcessor()
    proc.set_algorithm(DetectionAlgorithm.GEOMETRIC_CENTER)
    frame = _disk_frame()
    proc.process_frame(frame, 1)
    assert proc.process_frame(frame, 1, True).frame_updated is True


def test_needs_reprocessing_tracks_params_and_algorithm():
    proc = CircleDetectionProcessor()
    proc.set_algorithm(DetectionAlgorithm.GEOMETRIC_CENTER)
    proc.process_frame(_disk_frame(), 1)
    assert proc.needs_reprocessing(1) is False
    assert proc.needs_reprocessing(2) is True
    proc.set_params(DetectionParams())
    assert proc.needs_reprocessing(1) is False
    proc.set_params(DetectionParams(min_dist=60))
    assert proc.needs_reprocessing(1) is True
    assert proc.params.min_dist == 60


def test_set_algorithm_marks_change():
    proc = CircleDetectionProcessor()
    proc.set_algorithm(DetectionAlgorithm.GEOMETRIC_CENTER)
    proc.process_frame(_disk_frame(), 1)
    proc.set_algorithm(DetectionAlgorithm.HOUGH)
    assert proc.algorithm is DetectionAlgorithm.HOUGH
    assert proc.needs_reprocessing(1) is True


def test_empty_frame_rejected():
    with pytest.raises(ValueError):
        CircleDetectionProcessor().process_frame(np.empty((0, 0), dtype=np.uint8), 1)


def test_geometric_on_blank_frame_finds_nothing():
    proc = CircleDetectionProcessor()
    proc.set_algorithm(DetectionAlgorithm.GEOMETRIC_CENTER)
    result = proc.process_frame(np.zeros((40, 40, 3), dtype=np.uint8), 1)
    assert result.circles == []
    assert not result.processed_image.any()