"""
Screen capture of the chat window region.
"""
import logging
from typing import Optional

import cv2
import numpy as np
from PIL import Image

try:
    import pyautogui
except Exception:  # 无桌面环境（CI、SSH）下导入即失败
    pyautogui = None
try:
    import pygetwindow as gw
except Exception:  # pygetwindow 仅支持 Windows/macOS
    gw = None

from models.config import CaptureConfig
from models.data_models import CaptureBounds, CaptureFrame


def upscale_image(image: Image.Image, factor: float) -> Image.Image:
    """Enlarge an image by ``factor`` with bicubic interpolation (no-op for <= 1)."""
    if factor <= 1.0:
        return image
    arr = np.asarray(image.convert("RGB"))
    h, w = arr.shape[:2]
    resized = cv2.resize(arr, (int(round(w * factor)), int(round(h * factor))), interpolation=cv2.INTER_CUBIC)
    return Image.fromarray(resized)


class ScreenCapture:
    """Locates and captures the chat area; returns image plus display-space bounds."""

    def __init__(self, config: Optional[CaptureConfig] = None):
        self.config = config or CaptureConfig()
        self.logger = logging.getLogger(__name__)

    def resolve_bounds(self) -> Optional[CaptureBounds]:
        """
        确定截图区域（显示空间）。

        函数级注释：
        - 优先使用配置/CLI 提供的 chat_area（"x,y,w,h"）；
        - 否则按 window_title 通过 pygetwindow 查找可见窗口，取第一个尺寸合理的窗口；
        - 均失败时返回 None，由调用方跳过本轮。
        """
        if self.config.chat_area:
            return CaptureBounds.parse(self.config.chat_area)
        if gw is None:
            self.logger.warning("pygetwindow 不可用，无法按标题定位窗口")
            return None
        try:
            windows = gw.getWindowsWithTitle(self.config.window_title)
        except Exception as e:
            self.logger.warning(f"窗口枚举失败：{e}")
            return None
        for win in windows:
            if getattr(win, "visible", True) and win.width > 100 and win.height > 100:
                return CaptureBounds(x=win.left, y=win.top, w=win.width, h=win.height)
        self.logger.warning(f"未找到标题包含 '{self.config.window_title}' 的窗口")
        return None

    def capture(self, bounds: Optional[CaptureBounds] = None) -> Optional[CaptureFrame]:
        """Capture ``bounds`` (or the resolved chat area); None on failure."""
        bounds = bounds or self.resolve_bounds()
        if bounds is None:
            return None
        if pyautogui is None:
            self.logger.error("截图失败：pyautogui 不可用（需要桌面环境）")
            return None
        try:
            shot = pyautogui.screenshot(region=(
                int(bounds.x), int(bounds.y), int(bounds.w), int(bounds.h)
            ))
        except Exception as e:
            self.logger.error(f"截图失败：{e}")
            return None
        image = upscale_image(shot, self.config.upscale)
        self.logger.debug(f"Captured screenshot: {image.size[0]}x{image.size[1]} for bounds {bounds.to_dict()}")
        return CaptureFrame(image=image, bounds=bounds)
