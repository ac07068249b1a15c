"""
Speaker classification by horizontal position of the bottommost message.
"""
from typing import Optional, Sequence

from models.config import LayoutConfig
from models.data_models import OCRFragment, Speaker


def classify_last_speaker(content: Sequence[OCRFragment], image_width: float,
                          config: Optional[LayoutConfig] = None) -> Speaker:
    """Return ME when the bottommost content fragment sits on the right side.

    content 必须是已经过边界与噪声过滤的内容片段（见 LayoutSegmenter.segment）。
    """
    if not content:
        return Speaker.UNKNOWN
    cfg = config or LayoutConfig()
    last = max(content, key=OCRFragment.sort_key)
    if last.center_x > cfg.side_split_ratio * image_width:
        return Speaker.ME
    return Speaker.THEM
