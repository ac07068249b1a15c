"""
Simulated mouse/keyboard input used to deliver a reply into the host application.
"""
import logging
import sys
import time
from typing import Optional

try:
    import pyautogui
except Exception:  # 无桌面环境（CI、SSH）下导入即失败
    pyautogui = None
try:
    import pyperclip
except Exception:
    pyperclip = None

from models.config import InputConfig
from models.data_models import Point, ReplyPlan


class InputSimulator:
    """Click to focus, paste the reply via clipboard, click send."""

    def __init__(self, config: Optional[InputConfig] = None):
        self.config = config or InputConfig()
        self.logger = logging.getLogger(__name__)

    def _click(self, gui, point: Point) -> None:
        x, y = int(round(point.x)), int(round(point.y))
        gui.moveTo(x, y)
        gui.mouseDown(x, y)
        time.sleep(self.config.click_hold)
        gui.mouseUp(x, y)

    def simulate(self, plan: ReplyPlan) -> bool:
        """
        执行一次回复注入。

        函数级注释：
        - 若提供 focus_coords，先点击使输入框获得焦点；
        - 通过剪贴板粘贴文本（Windows/Linux 为 Ctrl+V，macOS 为 Command+V），避免逐字输入法干扰；
        - 若提供 send_coords，再点击发送按钮；
        - 任意异常都记录日志并返回 False，不向上抛出。

        Returns:
            bool: 注入流程是否完整执行
        """
        try:
            if pyautogui is None or pyperclip is None:
                raise RuntimeError("pyautogui/pyperclip 不可用（需要桌面环境）")
            gui, clip = pyautogui, pyperclip
            gui.FAILSAFE = self.config.failsafe
            if plan.focus_coords is not None:
                self._click(gui, plan.focus_coords)
            time.sleep(self.config.after_focus)

            clip.copy(plan.text)
            time.sleep(self.config.after_clipboard)
            modifier = "command" if sys.platform == "darwin" else "ctrl"
            gui.hotkey(modifier, "v")
            time.sleep(self.config.after_paste)

            if plan.send_coords is not None:
                self._click(gui, plan.send_coords)
            self.logger.info(f"已注入回复（{len(plan.text)} 字）")
            return True
        except Exception as e:
            self.logger.error(f"模拟输入失败：{e}")
            return False
