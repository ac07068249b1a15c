"""
Frame change detection using strided pixel sampling.
Used to skip OCR and AI calls when the visible chat has not moved.
"""
import logging
from typing import Any, Optional

import numpy as np
from PIL import Image

from models.config import ChangeDetectConfig


def to_rgba_array(frame: Any) -> np.ndarray:
    """Convert a PIL image or array-like frame to an (H, W, 4) uint8 array."""
    if isinstance(frame, Image.Image):
        return np.asarray(frame.convert("RGBA"), dtype=np.uint8)
    arr = np.asarray(frame, dtype=np.uint8)
    if arr.ndim == 3 and arr.shape[2] == 3:
        alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
        arr = np.concatenate([arr, alpha], axis=2)
    return arr


class ChangeDetector:
    """
    Compares consecutive captures and reports whether the change is significant.
    Keeps the last seen frame so callers can feed frames one at a time.
    """

    def __init__(self, config: Optional[ChangeDetectConfig] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config or ChangeDetectConfig()
        self._last: Optional[np.ndarray] = None

    def changed_ratio(self, previous: Any, current: Any) -> float:
        """
        Fraction of sampled pixels whose RGB difference exceeds the threshold.

        Every ``step``-th pixel is sampled; alpha is ignored. Frames of
        different dimensions count as fully changed (1.0).
        """
        prev = to_rgba_array(previous)
        curr = to_rgba_array(current)
        if prev.shape != curr.shape:
            return 1.0

        step = max(1, int(self.config.step))
        prev_px = prev.reshape(-1, prev.shape[-1])[::step, :3].astype(np.int16)
        curr_px = curr.reshape(-1, curr.shape[-1])[::step, :3].astype(np.int16)
        total = prev_px.shape[0]
        if total == 0:
            return 0.0

        diff = np.abs(prev_px - curr_px).sum(axis=1)
        changed = int(np.count_nonzero(diff > self.config.pixel_threshold))
        return changed / total

    def has_significant_change(self, previous: Any, current: Any) -> bool:
        """Compare two frames directly."""
        ratio = self.changed_ratio(previous, current)
        significant = ratio >= self.config.change_ratio
        self.logger.debug(f"画面变化比例：{ratio:.4f}（阈值 {self.config.change_ratio}），显著={significant}")
        return significant

    def check(self, frame: Any) -> bool:
        """
        Register a new frame and report whether it differs from the previous one.

        The first frame after construction or reset() always counts as changed.
        """
        current = to_rgba_array(frame)
        previous = self._last
        self._last = current
        if previous is None:
            return True
        return self.has_significant_change(previous, current)

    def reset(self):
        """Forget the last seen frame."""
        self._last = None
