import threading

import numpy as np

from biprism.frames import FrameManager, get_frame_manager


def test_update_returns_frame_with_increasing_sequence():
    manager = FrameManager()
    frame = np.ones((3, 3), np.uint8)
    first = manager.update_frame(frame)
    second = manager.update_frame(frame)
    assert first.frame is frame
    assert second.sequence == first.sequence + 1
    assert manager.current_sequence() == second.sequence
    assert manager.current_frame() is second
    assert second.timestamp >= first.timestamp


def test_empty_frames_are_ignored():
    manager = FrameManager()
    stored = manager.update_frame(np.ones((2, 2)))
    assert manager.update_frame(None) is None
    assert manager.update_frame(np.zeros((0, 0))) is None
    assert manager.current_frame() is stored
    assert manager.current_sequence() == stored.sequence


def test_has_new_frame():
    manager = FrameManager()
    data = manager.update_frame(np.ones((2, 2)))
    assert manager.has_new_frame(data.sequence - 1)
    assert not manager.has_new_frame(data.sequence)


def test_clear_resets_state():
    manager = FrameManager()
    manager.update_frame(np.ones((2, 2)))
    manager.clear()
    assert manager.current_frame() is None
    assert manager.current_sequence() == 0
    assert not manager.has_new_frame(0)


def test_singleton_shares_state():
    manager = get_frame_manager()
    manager.clear()
    try:
        data = manager.update_frame(np.ones((2, 2), np.uint8))
        other = get_frame_manager()
        assert other.current_frame() is data
        assert other.current_sequence() == 1
    finally:
        manager.clear()


def test_concurrent_updates_have_unique_sequences():
    manager = FrameManager()
    sequences = []
    lock = threading.Lock()
    frame = np.ones((2, 2), np.uint8)

    def worker():
        for _ in range(50):
            data = manager.update_frame(frame)
            with lock:
                sequences.append(data.sequence)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(set(sequences)) == len(sequences)
    assert manager.current_sequence() == len(sequences)
    assert max(sequences) == manager.current_sequence()