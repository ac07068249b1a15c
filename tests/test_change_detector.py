import numpy as np
from PIL import Image

from models.config import ChangeDetectConfig
from services.change_detector import ChangeDetector, to_rgba_array


def _frame(value=0, size=(100, 100)):
    return np.full(size + (4,), value, dtype=np.uint8)


def test_identical_frames_report_no_change():
    det = ChangeDetector()
    a = _frame(10)
    assert det.changed_ratio(a, a.copy()) == 0.0
    assert not det.has_significant_change(a, a.copy())


def test_large_region_change_is_significant():
    det = ChangeDetector()
    a = _frame(0)
    b = a.copy()
    b[:20, :, :3] = 255  # 20% 的像素
    ratio = det.changed_ratio(a, b)
    assert 0.19 <= ratio <= 0.21
    assert det.has_significant_change(a, b)


def test_tiny_change_below_ratio():
    det = ChangeDetector()
    a = _frame(0)
    b = a.copy()
    b[0, 0, :3] = 255
    assert det.changed_ratio(a, b) < 0.015
    assert not det.has_significant_change(a, b)


def test_small_per_pixel_difference_is_ignored():
    # 每像素 RGB 差值之和 = 30，不超过阈值
    det = ChangeDetector()
    a = _frame(100)
    b = a.copy()
    b[..., :3] = 110
    assert det.changed_ratio(a, b) == 0.0


def test_alpha_channel_is_ignored():
    det = ChangeDetector()
    a = _frame(0)
    b = a.copy()
    b[..., 3] = 255
    assert det.changed_ratio(a, b) == 0.0


def test_different_shapes_count_as_changed():
    det = ChangeDetector()
    assert det.changed_ratio(_frame(0, (10, 10)), _frame(0, (20, 10))) == 1.0


def test_check_tracks_previous_frame():
    det = ChangeDetector(ChangeDetectConfig(step=1))
    img = Image.new("RGB", (50, 50), "white")
    assert det.check(img) is True
    assert det.check(img.copy()) is False
    changed = img.copy()
    changed.paste((0, 0, 0), (0, 0, 50, 10))
    assert det.check(changed) is True
    det.reset()
    assert det.check(changed) is True


def test_to_rgba_array_adds_alpha_to_rgb():
    arr = to_rgba_array(np.zeros((4, 5, 3), dtype=np.uint8))
    assert arr.shape == (4, 5, 4)
    assert (arr[..., 3] == 255).all()
