import statistics

import numpy as np
import pytest

from biprism.imaging import (
    apply_preprocessing,
    calculate_stats,
    draw_circle,
    draw_line,
    fftshift,
    find_peaks,
    find_two_strongest_peaks,
    invert_affine,
    linear_fit,
    preprocess_to_rgb,
    rotation_matrix,
    to_gray,
    to_rgb,
    transform_points,
    warp_affine,
)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


def test_to_gray_of_gray_is_unchanged(rng):
    img = rng.integers(0, 256, (6, 7), dtype=np.uint8)
    assert np.array_equal(to_gray(img), img)


def test_to_gray_of_neutral_colour_keeps_level(rng):
    levels = rng.integers(0, 256, (5, 5), dtype=np.uint8)
    bgr = np.repeat(levels[:, :, None], 3, axis=2)
    assert np.array_equal(to_gray(bgr), levels)


def test_to_rgb_swaps_channel_order(rng):
    bgr = rng.integers(0, 256, (4, 4, 3), dtype=np.uint8)
    assert np.array_equal(to_rgb(bgr)[..., ::-1], bgr)


def test_to_rgb_of_gray_repeats_channel(rng):
    gray = rng.integers(0, 256, (3, 5), dtype=np.uint8)
    rgb = to_rgb(gray)
    assert rgb.shape == (3, 5, 3)
    for ch in range(3):
        assert np.array_equal(rgb[..., ch], gray)


def test_to_rgb_empty_and_unsupported():
    assert to_rgb(np.zeros((0, 0), np.uint8)) is None
    with pytest.raises(ValueError):
        to_rgb(np.zeros((2, 2, 2), np.uint8))


def test_preprocessing_unit_contrast_is_identity(rng):
    img = rng.integers(0, 256, (8, 8), dtype=np.uint8)
    assert np.array_equal(apply_preprocessing(img, 0, 50, 100), img)


def test_preprocessing_colour_input_goes_gray(rng):
    bgr = rng.integers(0, 256, (5, 6, 3), dtype=np.uint8)
    assert np.array_equal(apply_preprocessing(bgr, 0, 50, 100), to_gray(bgr))


def test_preprocessing_default_contrast_doubles_and_saturates():
    img = np.array([[0, 50, 100, 200]], dtype=np.uint8)
    out = apply_preprocessing(img)
    assert out.tolist() == [[0, 100, 200, 255]]


def test_preprocessing_brightness_raises_levels(rng):
    img = rng.integers(0, 256, (8, 8), dtype=np.uint8)
    brighter = apply_preprocessing(img, 20, 50, 100)
    assert np.all(brighter >= img)
    assert brighter.max() <= 255


def test_preprocessing_gamma_darkens_and_keeps_ends():
    img = np.arange(256, dtype=np.uint8).reshape(16, 16)
    out = apply_preprocessing(img, 0, 50, 200)
    assert np.all(out <= img)
    assert out[0, 0] == img[0, 0]
    assert out[-1, -1] == img[-1, -1]


def test_preprocessing_empty():
    assert apply_preprocessing(None).size == 0
    assert apply_preprocessing(np.zeros((0, 0), np.uint8)).size == 0
    assert preprocess_to_rgb(None) is None


def test_preprocess_to_rgb_shape(rng):
    bgr = rng.integers(0, 256, (4, 5, 3), dtype=np.uint8)
    rgb = preprocess_to_rgb(bgr, 0, 50, 100)
    assert rgb.shape == (4, 5, 3)
    assert np.array_equal(rgb[..., 0], to_gray(bgr))


def test_fftshift_matches_numpy_for_even_sizes(rng):
    mag = rng.random((6, 8))
    assert np.array_equal(fftshift(mag), np.fft.fftshift(mag))
    assert np.array_equal(fftshift(fftshift(mag)), mag)


def test_calculate_stats_small_inputs():
    assert calculate_stats([]) == (0.0, 0.0)
    assert calculate_stats([5.0]) == (5.0, 0.0)


def test_calculate_stats_matches_population_stats(rng):
    data = list(rng.normal(3.0, 2.0, 50))
    mean, std = calculate_stats(data)
    assert mean == pytest.approx(statistics.fmean(data))
    assert std == pytest.approx(statistics.pstdev(data))


def test_find_peaks_are_local_maxima_above_threshold(rng):
    data = list(rng.random(200))
    threshold = 0.3
    peaks = find_peaks(data, threshold, 1)
    assert peaks
    for i in peaks:
        assert data[i] > data[i - 1] and data[i] > data[i + 1] and data[i] > threshold


def test_find_peaks_respects_min_distance(rng):
    data = list(rng.random(300))
    all_peaks = find_peaks(data, 0.0, 1)
    spaced = find_peaks(data, 0.0, 10)
    assert spaced[0] == all_peaks[0]
    assert all(b - a >= 10 for a, b in zip(spaced, spaced[1:]))
    assert set(spaced) <= set(all_peaks)


def test_find_peaks_threshold_above_everything(rng):
    data = list(rng.random(50))
    assert find_peaks(data, 2.0, 1) == []
    assert find_two_strongest_peaks(data, 2.0, 1) == []


def test_find_two_strongest_peaks(rng):
    data = list(rng.random(100))
    peaks = find_peaks(data, 0.0, 1)
    two = find_two_strongest_peaks(data, 0.0, 1)
    assert len(two) == 2
    assert two == sorted(two)
    top = sorted((data[i] for i in peaks), reverse=True)[:2]
    assert sorted(data[i] for i in two) == sorted(top)


def test_linear_fit_recovers_line():
    pts = [(x, 2.0 * x + 1.0) for x in range(10)]
    slope, intercept = linear_fit(pts)
    assert slope == pytest.approx(2.0)
    assert intercept == pytest.approx(1.0)


def test_linear_fit_degenerate():
    assert linear_fit([(1.0, 2.0)]) is None
    assert linear_fit([(3.0, 1.0), (3.0, 5.0)]) is None


def test_rotation_matrix_zero_angle_is_identity():
    assert np.allclose(rotation_matrix((10, 20), 0, 1.0), np.eye(2, 3))


def test_rotation_keeps_center_and_round_trips():
    m = rotation_matrix((5, 7), 30, 1.5)
    assert np.allclose(transform_points([(5, 7)], m), [[5, 7]])
    pts = np.array([(0.0, 0.0), (3.0, 4.0), (-2.0, 9.0)])
    back = transform_points(transform_points(pts, m), invert_affine(m))
    assert np.allclose(back, pts)


def test_invert_affine_singular():
    with pytest.raises(ValueError):
        invert_affine([[0, 0, 1], [0, 0, 2]])


def test_warp_affine_identity(rng):
    img = rng.integers(0, 256, (9, 11, 3), dtype=np.uint8)
    assert np.array_equal(warp_affine(img, np.eye(2, 3)), img)


def test_warp_affine_translation(rng):
    img = rng.integers(1, 256, (6, 6), dtype=np.uint8)
    shifted = warp_affine(img, [[1, 0, 1], [0, 1, 0]])
    assert np.array_equal(shifted[:, 1:], img[:, :-1])
    assert np.all(shifted[:, 0] == 0)
    replicated = warp_affine(img, [[1, 0, 1], [0, 1, 0]], mode="nearest")
    assert np.array_equal(replicated[:, 0], img[:, 0])


def test_draw_line_in_place():
    img = np.zeros((10, 10), np.uint8)
    result = draw_line(img, (1, 5), (8, 5), 255, 1)
    assert result is img
    assert np.all(img[5, 1:9] == 255)
    assert np.all(np.delete(img, 5, axis=0) == 0)


def test_draw_filled_circle_colour_order():
    img = np.zeros((21, 21, 3), np.uint8)
    draw_circle(img, (10, 10), 5, (0, 0, 255), -1)
    assert img[10, 10].tolist() == [0, 0, 255]
    assert img[0, 0].tolist() == [0, 0, 0]


def test_draw_requires_uint8_array():
    with pytest.raises(TypeError):
        draw_line(np.zeros((4, 4), np.float32), (0, 0), (3, 3), 1)