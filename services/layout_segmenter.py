"""
Layout segmentation for captured chat windows.

This module locates the input-box boundary of a chat capture, drops
UI chrome below it, and clusters the remaining OCR fragments into text
lines. All coordinates are image-space pixels.
"""
import logging
from typing import List, Optional, Sequence

from models.config import LayoutConfig
from models.data_models import Line, OCRFragment, Segmentation
from services.noise_filter import average_height, is_noise


class LayoutSegmenter:
    """Partitions OCR fragments into a content region and text lines."""

    def __init__(self, config: Optional[LayoutConfig] = None):
        self.config = config or LayoutConfig()
        self.logger = logging.getLogger(__name__)

    def is_send_label(self, text: str) -> bool:
        """Whether a fragment's text looks like the send control."""
        if not text:
            return False
        lowered = text.lower()
        for label in self.config.send_labels:
            if label.lower() in lowered:
                return True
        return bool(self.config.enter_label) and self.config.enter_label in text

    def find_send_control(self, fragments: Sequence[OCRFragment]) -> Optional[OCRFragment]:
        """Return the send-control fragment, preferring the bottom-right-most match.

        多个片段命中时取最靠下、再最靠右的一个，保证结果与输入顺序无关。
        """
        candidates = [f for f in fragments if self.is_send_label(f.text)]
        if not candidates:
            return None
        return max(candidates, key=lambda f: (f.center_y, f.center_x, f.text))

    def adaptive_boundary(self, fragments: Sequence[OCRFragment], image_height: float) -> float:
        """
        在找不到发送按钮时，自适应推断输入框上沿。

        函数级注释：
        - 片段少于 adaptive_min_fragments 个时，直接使用 fallback_bottom_ratio × 图高；
        - 否则对所有片段的垂直中心排序，仅在上侧中心位于 adaptive_scan_start_ratio × 图高
          以下的相邻对之间寻找最大间隔；
        - 最大间隔超过 max(adaptive_min_gap_px, adaptive_gap_factor × 平均间隔) 时，
          取该间隔的中点作为边界，否则回退为固定比例。
        """
        cfg = self.config
        fallback = cfg.fallback_bottom_ratio * image_height
        if len(fragments) < cfg.adaptive_min_fragments:
            return fallback

        centers = sorted(f.center_y for f in fragments)
        gaps = [b - a for a, b in zip(centers, centers[1:])]
        if not gaps:
            return fallback
        avg_gap = sum(gaps) / len(gaps)

        scan_start = cfg.adaptive_scan_start_ratio * image_height
        best_gap = 0.0
        best_mid: Optional[float] = None
        for upper, lower in zip(centers, centers[1:]):
            if upper < scan_start:
                continue
            gap = lower - upper
            if gap > best_gap:
                best_gap = gap
                best_mid = (upper + lower) / 2

        if best_mid is not None and best_gap > max(cfg.adaptive_min_gap_px, cfg.adaptive_gap_factor * avg_gap):
            self.logger.debug(f"自适应底部边界：gap={best_gap:.1f}, boundary={best_mid:.1f}")
            return best_mid
        return fallback

    def detect_bottom_boundary(self, fragments: Sequence[OCRFragment], image_height: float,
                               send_control: Optional[OCRFragment] = None) -> float:
        """Top edge of the send control when present, adaptive boundary otherwise."""
        if send_control is None:
            send_control = self.find_send_control(fragments)
        if send_control is not None:
            return send_control.top
        return self.adaptive_boundary(fragments, image_height)

    def line_gap(self, fragments: Sequence[OCRFragment]) -> float:
        """Maximum centre distance for a fragment to join the running line."""
        cfg = self.config
        return max(cfg.line_gap_min_px, cfg.line_gap_height_factor * average_height(fragments))

    def cluster_lines(self, fragments: Sequence[OCRFragment], gap: Optional[float] = None) -> List[Line]:
        """Group fragments into lines, top to bottom."""
        if not fragments:
            return []
        threshold = self.line_gap(fragments) if gap is None else gap
        lines: List[Line] = []
        current: Optional[Line] = None
        for frag in sorted(fragments, key=OCRFragment.sort_key):
            if current is None or abs(frag.center_y - current.center_y) > threshold:
                current = Line()
                lines.append(current)
            current.add(frag)
        return lines

    def segment(self, fragments: Sequence[OCRFragment], image_width: float, image_height: float) -> Segmentation:
        """
        Run boundary detection, content filtering and line clustering.

        Args:
            fragments: OCR fragments of one capture (image space)
            image_width: captured image width in pixels
            image_height: captured image height in pixels

        Returns:
            Segmentation with the surviving content fragments and their lines
        """
        send_control = self.find_send_control(fragments)
        boundary = self.detect_bottom_boundary(fragments, image_height, send_control)

        others = [f for f in fragments if f is not send_control]
        avg_h = average_height(others)

        content = [
            f for f in others
            if f.center_y < boundary and not is_noise(f, avg_h, self.config)
        ]
        gap = self.line_gap(content)
        lines = self.cluster_lines(content, gap)
        self.logger.debug(
            f"版面切分：片段={len(fragments)}，内容={len(content)}，行={len(lines)}，"
            f"边界={boundary:.1f}，发送按钮={'有' if send_control else '无'}"
        )
        return Segmentation(
            send_control=send_control,
            boundary=boundary,
            content=content,
            lines=lines,
            average_height=avg_h,
            line_gap=gap,
        )
