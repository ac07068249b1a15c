"""
Reply click-target synthesis.

Maps the detected send control from image space to display space and
derives a focus point inside the input box. When no send control was
recognized, fixed fractions of the capture bounds are used instead.
"""
import logging
from typing import Optional, Sequence

from models.config import ReplyCoordinateConfig
from models.data_models import CaptureBounds, OCRFragment, Point, ReplyPlan
from services.layout_segmenter import LayoutSegmenter


def image_to_display(x: float, y: float, bounds: CaptureBounds, image_width: float, image_height: float) -> Point:
    """display = bounds.origin + (image / image_size) * bounds.size"""
    if image_width <= 0 or image_height <= 0:
        raise ValueError(f"invalid image size: {image_width}x{image_height}")
    return Point(
        x=bounds.x + (x / image_width) * bounds.w,
        y=bounds.y + (y / image_height) * bounds.h,
    )


def clamp_to_bounds(point: Point, bounds: CaptureBounds, inset: float) -> Point:
    """Clamp a display-space point into the capture rectangle shrunk by ``inset``."""

    def _clamp(value: float, low: float, high: float) -> float:
        if low > high:
            return (low + high) / 2
        return min(max(value, low), high)

    return Point(
        x=_clamp(point.x, bounds.x + inset, bounds.x + bounds.w - inset),
        y=_clamp(point.y, bounds.y + inset, bounds.y + bounds.h - inset),
    )


class ReplyCoordinateSynthesizer:
    """Computes where to click to focus the input box and submit a reply."""

    def __init__(self, config: Optional[ReplyCoordinateConfig] = None,
                 segmenter: Optional[LayoutSegmenter] = None):
        self.config = config or ReplyCoordinateConfig()
        self.segmenter = segmenter or LayoutSegmenter()
        self.logger = logging.getLogger(__name__)

    def fallback_plan(self, text: str, bounds: CaptureBounds) -> ReplyPlan:
        """Heuristic targets for layouts where no send control was recognized."""
        cfg = self.config
        y = bounds.y + cfg.fallback_y * bounds.h
        return ReplyPlan(
            text=text,
            focus_coords=Point(bounds.x + cfg.fallback_focus_x * bounds.w, y),
            send_coords=Point(bounds.x + cfg.fallback_send_x * bounds.w, y),
        )

    def synthesize(self, text: str, fragments: Sequence[OCRFragment], bounds: CaptureBounds,
                   image_width: float, image_height: float) -> ReplyPlan:
        """
        生成回复的点击坐标。

        函数级注释：
        - 发送按钮中心（图像空间）按 bounds 与真实截图尺寸映射到显示空间，并以 send_inset 向内收缩裁剪；
        - 焦点点击位于发送按钮左侧，偏移 max(focus_min_offset, focus_width_factor × 按钮宽度)（图像空间），
          映射后以 focus_inset 裁剪，先点击此处使宿主程序输入框获得焦点再粘贴；
        - 未识别到发送按钮时使用 bounds 的固定比例位置。

        Args:
            text: AI 回复文本
            fragments: 本次截图的 OCR 片段
            bounds: 截图区域（显示空间）
            image_width: 截图真实像素宽
            image_height: 截图真实像素高
        """
        control = self.segmenter.find_send_control(fragments)
        if control is None:
            self.logger.info("未识别到发送按钮，使用默认比例坐标")
            return self.fallback_plan(text, bounds)

        cfg = self.config
        cx, cy = control.center_x, control.center_y
        send = clamp_to_bounds(
            image_to_display(cx, cy, bounds, image_width, image_height), bounds, cfg.send_inset
        )
        offset = max(cfg.focus_min_offset, cfg.focus_width_factor * control.width)
        focus = clamp_to_bounds(
            image_to_display(cx - offset, cy, bounds, image_width, image_height), bounds, cfg.focus_inset
        )
        self.logger.debug(f"发送按钮 '{control.text}' -> send=({send.x:.1f},{send.y:.1f}) focus=({focus.x:.1f},{focus.y:.1f})")
        return ReplyPlan(text=text, focus_coords=focus, send_coords=send)
