"""
Monitor loop: polls the bridge and feeds text messages into the dispatch queue.
"""
import logging
import random
import threading
from typing import Optional

from models.config import MonitorConfig
from services.bridge_client import BridgeClient, BridgeError
from ui.status_board import StatusBoard


class MonitorController:
    """Polls the bridge on a jittered schedule until stopped."""

    def __init__(self, bridge: BridgeClient, dispatcher, config: Optional[MonitorConfig] = None,
                 status: Optional[StatusBoard] = None, rng: Optional[random.Random] = None):
        self.bridge = bridge
        self.dispatcher = dispatcher
        self.config = config or MonitorConfig()
        self.status = status or StatusBoard()
        self.rng = rng or random.Random()
        self.logger = logging.getLogger(__name__)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.polls = 0

    def next_delay(self) -> float:
        """Jittered delay before the next poll, uniform in [poll_min_delay, poll_max_delay]."""
        return self.rng.uniform(self.config.poll_min_delay, self.config.poll_max_delay)

    def poll_once(self) -> int:
        """
        执行一次轮询。

        函数级注释：
        - 仅 type == "text" 且内容非空的消息进入派发队列，其余静默忽略；
        - bridge 网络/协议错误只记录日志并上报状态，不中断循环；
        - 返回本次入队的消息数量。
        """
        self.polls += 1
        try:
            messages = self.bridge.poll()
        except BridgeError as e:
            self.logger.warning(f"轮询 bridge 失败：{e}")
            self.status.set_status(f"轮询失败：{e}")
            return 0
        except Exception as e:
            self.logger.error(f"轮询 bridge 出现未预期异常：{e}")
            self.status.report_error(f"轮询异常：{e}")
            return 0

        queued = 0
        for msg in messages:
            if msg.type != "text" or not (msg.content or "").strip():
                continue
            try:
                self.dispatcher.enqueue(msg)
                queued += 1
            except RuntimeError as e:
                self.logger.warning(f"派发队列已关闭，丢弃消息：{e}")
                break
        if queued:
            self.logger.debug(f"本次轮询入队 {queued} 条消息")
        return queued

    def _run(self) -> None:
        self.logger.info("开始监控")
        while not self._stop_event.is_set():
            self.poll_once()
            # 等待期间 stop() 会立即唤醒，取消下一次轮询
            if self._stop_event.wait(self.next_delay()):
                break
        self.logger.info("监控已停止")

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="MonitorLoop", daemon=True)
        self._thread.start()
        self.status.set_status("监控中")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel the pending poll. Work already handed to the dispatcher keeps running."""
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
        self.status.set_status("已停止监控")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
