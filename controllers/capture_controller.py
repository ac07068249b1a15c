"""
Screen-capture reply pipeline: capture, change detection, OCR, extraction,
then dispatch of the last inbound block through the conversation queue.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from models.config import AppConfig
from models.data_models import CaptureContext, Extraction, IncomingMessage, Speaker
from services.change_detector import ChangeDetector
from services.message_extractor import MessageExtractor
from services.ocr_processor import OCRProcessor
from services.screen_capture import ScreenCapture
from ui.status_board import StatusBoard


@dataclass
class CaptureCycle:
    """What one run_once() pass saw and did."""
    captured: bool = False
    changed: bool = False
    extraction: Optional[Extraction] = None
    message: Optional[IncomingMessage] = None
    error: Optional[str] = None


class CaptureReplyController:
    """Coordinates one screen-reading reply cycle, optionally on a timer."""

    def __init__(self, config: Optional[AppConfig] = None, dispatcher=None,
                 capture: Optional[ScreenCapture] = None,
                 ocr: Optional[OCRProcessor] = None,
                 extractor: Optional[MessageExtractor] = None,
                 change_detector: Optional[ChangeDetector] = None,
                 status: Optional[StatusBoard] = None,
                 synchronous: bool = False):
        """
        Args:
            dispatcher: ConversationDispatchQueue；为 None 时只识别不回复（dry-run）
            synchronous: True 时直接调用 dispatcher.process，便于单次运行立即得到结果
        """
        self.config = config or AppConfig()
        self.dispatcher = dispatcher
        self.capture = capture or ScreenCapture(self.config.capture)
        self.ocr = ocr or OCRProcessor(self.config.ocr)
        self.extractor = extractor or MessageExtractor(self.config.layout)
        self.change_detector = change_detector or ChangeDetector(self.config.change)
        self.status = status or StatusBoard()
        self.synchronous = synchronous
        self.logger = logging.getLogger(__name__)
        self._stop_event = threading.Event()

    def run_once(self) -> CaptureCycle:
        """
        执行一次截图识别与回复派发。

        函数级注释：
        - 截图失败直接返回；画面与上一帧相比无显著变化时跳过 OCR；
        - OCR 返回诊断信息时上报错误，不派发；
        - 最后发言者为自己或未识别到对方消息块时不回复；
        - 否则以联系人标签构造 trigger_reply=True 的消息，携带截图几何信息进入派发队列。
        """
        cycle = CaptureCycle()
        frame = self.capture.capture()
        if frame is None:
            self.logger.warning("截图失败，跳过本次识别。")
            self.status.set_status("截图失败")
            return cycle
        cycle.captured = True

        if self.config.change.enabled and not self.change_detector.check(frame.image):
            self.logger.debug("画面无变化，跳过 OCR")
            self.status.set_status("画面无变化")
            return cycle
        cycle.changed = True

        result = self.ocr.recognize(frame.image)
        if not result.ok:
            cycle.error = result.error
            self.status.report_error(result.error)
            # 下一轮即使画面未变也要重试识别
            self.change_detector.reset()
            return cycle

        width, height = frame.image_size
        extraction = self.extractor.extract(result.items, width, height)
        cycle.extraction = extraction
        self.status.set_suggestion(extraction.full_text)
        self.logger.info(f"识别完成：最后发言者 {extraction.speaker.value}，对方消息 '{extraction.last_inbound[:30]}'")

        if extraction.speaker == Speaker.ME:
            self.status.set_status("最后一条消息来自自己，无需回复")
            return cycle
        if not extraction.last_inbound:
            self.status.set_status("未识别到对方消息")
            return cycle

        message = IncomingMessage(
            contact=self.config.capture.contact_label,
            content=extraction.last_inbound,
            trigger_reply=True,
            capture=CaptureContext(
                fragments=tuple(result.items),
                bounds=frame.bounds,
                image_width=width,
                image_height=height,
            ),
        )
        cycle.message = message
        if self.dispatcher is None:
            return cycle
        if self.synchronous:
            self.dispatcher.process(message)
        else:
            self.dispatcher.enqueue(message)
        return cycle

    def watch(self, max_cycles: Optional[int] = None,
              on_cycle: Optional[Callable[[CaptureCycle], None]] = None) -> int:
        """Repeat run_once every ``capture.interval_seconds`` until stop(). Returns cycles run.

        ``on_cycle`` receives every CaptureCycle as it completes.
        """
        self._stop_event.clear()
        cycles = 0
        while not self._stop_event.is_set():
            try:
                cycle = self.run_once()
                if on_cycle is not None:
                    on_cycle(cycle)
            except Exception:
                self.logger.exception("截图回复流程异常")
                self.status.report_error("截图回复流程异常")
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            if self._stop_event.wait(self.config.capture.interval_seconds):
                break
        return cycles

    def stop(self) -> None:
        self._stop_event.set()
