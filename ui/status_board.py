"""
Status board shared with the UI layer.
Holds the transcript, the last AI suggestion, the last auto-reply and status/error strings.

函数级注释：
- StatusBoard 是核心流程向 UI 暴露状态的唯一出口，所有写入均加锁，可被多个联系人工作线程并发调用；
- 监听器回调在锁外执行，回调抛出的异常只记录日志，不影响调度流程；
- snapshot() 返回可直接 JSON 序列化的字典，便于 CLI 打印或 Web 面板轮询。
"""
import logging
import threading
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional

from models.data_models import AutoReplyRecord, ConversationMessage

Listener = Callable[[str, "StatusBoard"], None]


class StatusBoard:
    def __init__(self, logger: Optional[logging.Logger] = None, max_errors: int = 20):
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._transcript: List[ConversationMessage] = []
        self._last_suggestion: str = ""
        self._last_auto_reply: Optional[AutoReplyRecord] = None
        self._status: str = "idle"
        self._errors: Deque[str] = deque(maxlen=max(1, max_errors))
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _notify(self, event: str) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, self)
            except Exception as e:
                self.logger.warning(f"状态监听器回调失败（{event}）：{e}")

    def add_transcript(self, message: ConversationMessage) -> None:
        with self._lock:
            self._transcript.append(message)
        who = "我" if message.is_self else message.contact
        self.logger.info(f"[{message.contact}] {who}: {message.content}")
        self._notify("transcript")

    def transcript(self, contact: Optional[str] = None) -> List[ConversationMessage]:
        with self._lock:
            if contact is None:
                return list(self._transcript)
            return [m for m in self._transcript if m.contact == contact]

    def set_suggestion(self, text: str) -> None:
        with self._lock:
            self._last_suggestion = text or ""
        self._notify("suggestion")

    @property
    def last_suggestion(self) -> str:
        with self._lock:
            return self._last_suggestion

    def record_auto_reply(self, contact: str, text: str) -> AutoReplyRecord:
        record = AutoReplyRecord(contact=contact, text=text, at=datetime.now())
        with self._lock:
            self._last_auto_reply = record
        self.logger.info(f"已自动回复 {contact}：{text}")
        self._notify("auto_reply")
        return record

    @property
    def last_auto_reply(self) -> Optional[AutoReplyRecord]:
        with self._lock:
            return self._last_auto_reply

    def set_status(self, status: str) -> None:
        with self._lock:
            self._status = status
        self.logger.debug(f"状态：{status}")
        self._notify("status")

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    def report_error(self, error: str) -> None:
        with self._lock:
            self._errors.append(error)
            self._status = error
        self.logger.warning(f"状态更新，错误：{error}")
        self._notify("error")

    @property
    def errors(self) -> List[str]:
        with self._lock:
            return list(self._errors)

    def snapshot(self) -> Dict:
        with self._lock:
            return {
                "status": self._status,
                "last_suggestion": self._last_suggestion,
                "last_auto_reply": self._last_auto_reply.to_dict() if self._last_auto_reply else None,
                "errors": list(self._errors),
                "transcript": [m.to_dict() for m in self._transcript],
            }
