"""
Message extraction from segmented chat captures.

Turns the lines produced by LayoutSegmenter into text: the full visible
transcript, and the most recent inbound ("them" side) message block.
"""
import logging
from typing import List, Optional, Sequence

from models.config import LayoutConfig
from models.data_models import Extraction, Line, OCRFragment, Segmentation
from services.layout_segmenter import LayoutSegmenter
from services.noise_filter import is_noise
from services.speaker_classifier import classify_last_speaker


class MessageExtractor:
    """Converts OCR fragments of one capture into ordered text."""

    def __init__(self, config: Optional[LayoutConfig] = None, segmenter: Optional[LayoutSegmenter] = None):
        self.config = config or (segmenter.config if segmenter else LayoutConfig())
        self.segmenter = segmenter or LayoutSegmenter(self.config)
        self.logger = logging.getLogger(__name__)

    def extract_full_text(self, fragments: Sequence[OCRFragment], image_width: float, image_height: float) -> str:
        """All content lines top to bottom; fragments in a line joined without separator."""
        seg = self.segmenter.segment(fragments, image_width, image_height)
        return self._full_text(seg)

    def extract_last_inbound_block(self, fragments: Sequence[OCRFragment], image_width: float, image_height: float) -> str:
        """The bottommost multi-line block on the "them" side."""
        seg = self.segmenter.segment(fragments, image_width, image_height)
        return self._last_inbound(seg, image_width)

    def extract(self, fragments: Sequence[OCRFragment], image_width: float, image_height: float) -> Extraction:
        """Full transcript, last inbound block and last speaker from a single segmentation pass."""
        seg = self.segmenter.segment(fragments, image_width, image_height)
        return Extraction(
            full_text=self._full_text(seg),
            last_inbound=self._last_inbound(seg, image_width),
            speaker=classify_last_speaker(seg.content, image_width, self.config),
            segmentation=seg,
        )

    @staticmethod
    def _full_text(seg: Segmentation) -> str:
        return "\n".join(line.text for line in seg.lines)

    def _last_inbound(self, seg: Segmentation, image_width: float) -> str:
        """
        自底向上贪心吸收对方一侧的行，组成最后一条消息。

        函数级注释：
        - 仅保留中心 x 位于 side_split_ratio × 图宽 左侧的内容片段；
        - 按 LayoutSegmenter 的规则重新聚类成行（行间距阈值由这批片段的平均高度决定）；
        - 从最底一行开始向上，只要相邻两行中心距离不超过 block_gap_factor × 行间距阈值就继续吸收，
          遇到第一个更大的间隔即停止，从而把多行长消息合并而排除更早的一条消息；
        - 拼接时对每个片段再做一次噪声过滤。
        """
        split = self.config.side_split_ratio * image_width
        left = [f for f in seg.content if f.center_x < split]
        if not left:
            return ""

        gap = self.segmenter.line_gap(left)
        lines = self.segmenter.cluster_lines(left, gap)
        limit = self.config.block_gap_factor * gap

        block: List[Line] = [lines[-1]]
        for idx in range(len(lines) - 2, -1, -1):
            if lines[idx + 1].center_y - lines[idx].center_y > limit:
                break
            block.append(lines[idx])
        block.reverse()

        texts = []
        for line in block:
            text = "".join(f.text for f in line.ordered() if not is_noise(f, seg.average_height, self.config))
            if text:
                texts.append(text)
        return "\n".join(texts)
