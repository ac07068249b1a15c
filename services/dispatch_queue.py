"""
Conversation dispatch queue.

Each contact gets its own worker thread fed by a FIFO queue, so handlers
for one contact run strictly in enqueue order and never overlap, while
different contacts proceed in parallel. AI and delivery calls run on a
single-thread executor per contact, so a call that outlives its timeout
blocks only that contact. Per-contact bookkeeping lives in a
DispatchStore owned by the queue instance.
"""
import logging
import queue
import re
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from models.config import DispatchConfig
from models.data_models import ConversationMessage, DispatchOutcome, IncomingMessage
from services.ai_client import AuthenticationError
from services.noise_filter import ZERO_WIDTH_RE
from ui.status_board import StatusBoard

_WHITESPACE_RE = re.compile(r"\s+")
_STOP = object()


def normalize_text(text: Optional[str]) -> str:
    """Strip zero-width characters, collapse whitespace runs, trim."""
    return _WHITESPACE_RE.sub(" ", ZERO_WIDTH_RE.sub("", text or "")).strip()


class DispatchTimeoutError(Exception):
    """A bounded AI or delivery call did not finish in time."""


@dataclass
class ContactState:
    """Dedup/cooldown bookkeeping for one contact."""
    last_text: Optional[str] = None
    last_processed_at: Optional[float] = None
    last_attempt_at: Optional[float] = None
    conversation_id: Optional[str] = None


class DispatchStore:
    """Per-contact state and transcript for one monitoring session."""

    def __init__(self):
        self._lock = threading.Lock()
        self._states: Dict[str, ContactState] = {}
        self._logs: Dict[str, List[ConversationMessage]] = {}

    def state(self, contact: str) -> ContactState:
        with self._lock:
            st = self._states.get(contact)
            if st is None:
                st = ContactState()
                self._states[contact] = st
            return st

    def append(self, message: ConversationMessage) -> None:
        with self._lock:
            self._logs.setdefault(message.contact, []).append(message)

    def log(self, contact: str) -> List[ConversationMessage]:
        with self._lock:
            return list(self._logs.get(contact, []))


class _ContactWorker:
    """Single consumer thread for one contact's queue."""

    def __init__(self, contact: str, handler: Callable[[IncomingMessage], Any],
                 on_done: Callable[[], None], logger: logging.Logger):
        self.contact = contact
        self.queue: "queue.Queue[Any]" = queue.Queue()
        self._handler = handler
        self._on_done = on_done
        self._logger = logger
        self.thread = threading.Thread(target=self._run, name=f"Dispatch[{contact}]", daemon=True)
        self.thread.start()

    def _run(self) -> None:
        while True:
            item = self.queue.get()
            if item is _STOP:
                return
            try:
                self._handler(item)
            except Exception:
                self._logger.exception(f"联系人 {self.contact} 的消息处理异常")
            finally:
                self._on_done()


class ConversationDispatchQueue:
    """Serializes message handling per contact and decides when to auto-reply."""

    def __init__(self, ai_client, delivery=None, status: Optional[StatusBoard] = None,
                 config: Optional[DispatchConfig] = None, store: Optional[DispatchStore] = None,
                 clock: Callable[[], float] = time.monotonic,
                 on_auth_failure: Optional[Callable[[], None]] = None):
        """
        Args:
            ai_client: 具有 chat(query, conversation_id=, inputs=) 方法的 AI 客户端
            delivery: ReplyDelivery；为 None 时只生成建议、不注入回复
            status: UI 状态面板
            config: 去重窗口、冷却时间与超时配置
            store: 每联系人状态存储；为 None 时新建，保证多个会话互不干扰
            clock: 单调时钟（秒），测试可注入
            on_auth_failure: AI 后端返回 401 时的登出/重置回调
        """
        self.ai = ai_client
        self.delivery = delivery
        self.status = status or StatusBoard()
        self.config = config or DispatchConfig()
        self.store = store or DispatchStore()
        self.clock = clock
        self.on_auth_failure = on_auth_failure
        self.logger = logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._workers: Dict[str, _ContactWorker] = {}
        self._pending = 0
        self._closed = False
        # 每个联系人独占一个调用线程，超时挂起的调用只占用该联系人自己的线程
        self._callers: Dict[str, ThreadPoolExecutor] = {}
        self._inflight: Dict[str, Future] = {}

    # ------------------------------------------------------------------
    # queueing
    # ------------------------------------------------------------------
    def enqueue(self, message: IncomingMessage) -> None:
        """Queue a message behind any earlier ones for the same contact."""
        with self._lock:
            if self._closed:
                raise RuntimeError("dispatch queue is shut down")
            worker = self._workers.get(message.contact)
            if worker is None:
                worker = _ContactWorker(message.contact, self.process, self._task_done, self.logger)
                self._workers[message.contact] = worker
            self._pending += 1
        worker.queue.put(message)

    def _task_done(self) -> None:
        with self._lock:
            self._pending -= 1
            if self._pending == 0:
                self._idle.notify_all()

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued message has been handled. Returns False on timeout."""
        with self._lock:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Stop accepting messages; workers exit after handling what is already queued."""
        with self._lock:
            self._closed = True
            workers = list(self._workers.values())
        for worker in workers:
            worker.queue.put(_STOP)
        if wait:
            for worker in workers:
                worker.thread.join(timeout)
        with self._lock:
            callers = list(self._callers.values())
        for caller in callers:
            caller.shutdown(wait=False)

    # ------------------------------------------------------------------
    # handling
    # ------------------------------------------------------------------
    def is_busy(self, contact: str) -> bool:
        """True while an earlier, timed-out AI or delivery call for ``contact`` is still running."""
        with self._lock:
            future = self._inflight.get(contact)
        return future is not None and not future.done()

    def _bounded(self, contact: str, fn: Callable[[], Any], timeout: float, what: str) -> Any:
        if not timeout or timeout <= 0:
            return fn()
        with self._lock:
            caller = self._callers.get(contact)
            if caller is None:
                caller = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"DispatchCall[{contact}]")
                self._callers[contact] = caller
            future = caller.submit(fn)
            self._inflight[contact] = future
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            raise DispatchTimeoutError(f"{what}超时（{timeout:g}s）")

    def process(self, message: IncomingMessage) -> DispatchOutcome:
        """
        处理一条消息（在该联系人的工作线程中串行执行，也可直接调用）。

        函数级注释：
        - 规范化文本后记录到会话记录（包括自己发送的、未标记回复的、重复与冷却中的消息）；
        - 自己发送或上游未标记 trigger_reply 的消息只记录，不进入回复流程；
        - 与上次处理文本相同且在 duplicate_window_seconds 内视为重复，直接跳过；
        - 距上次调用 AI 不足 cooldown_seconds 时无论内容是否不同均跳过（冷却）；
        - 该联系人上一次超时的 AI/投递调用仍未结束时跳过（忙），同一联系人的调用从不重叠；
        - 先记下 (text, now) 再调用 AI；AI 失败时回滚去重标记以便下次轮询重试（仍受冷却约束）；
        - AI 回复非空时交给 delivery 注入；投递失败只上报，不回滚已完成的 AI 调用；
        - 所有异常在此捕获并上报状态面板，不会阻塞该联系人后续消息或其他联系人。
        """
        contact = message.contact
        text = normalize_text(message.content)
        if not text:
            return DispatchOutcome.EMPTY

        entry = ConversationMessage(
            id=uuid.uuid4().hex,
            contact=contact,
            content=text,
            is_self=message.is_self,
            timestamp=datetime.now(),
        )
        self.store.append(entry)
        self.status.add_transcript(entry)

        if message.is_self:
            return DispatchOutcome.SELF
        if not message.trigger_reply:
            self.logger.debug(f"{contact} 的消息未标记需要回复，跳过")
            return DispatchOutcome.NOT_TRIGGERED

        now = self.clock()
        state = self.store.state(contact)
        cfg = self.config
        if (state.last_text == text and state.last_processed_at is not None
                and now - state.last_processed_at < cfg.duplicate_window_seconds):
            self.logger.info(f"跳过重复消息：{contact} '{text[:30]}'")
            return DispatchOutcome.DUPLICATE
        if state.last_attempt_at is not None and now - state.last_attempt_at < cfg.cooldown_seconds:
            self.logger.info(f"{contact} 处于冷却期（{cfg.cooldown_seconds:.0f}s），跳过自动回复")
            return DispatchOutcome.COOLDOWN
        if self.is_busy(contact):
            self.logger.warning(f"{contact} 上一次超时的调用仍在执行，跳过本条消息")
            self.status.set_status(f"{contact} 的上一次回复仍在进行")
            return DispatchOutcome.BUSY

        previous = (state.last_text, state.last_processed_at)
        state.last_text, state.last_processed_at, state.last_attempt_at = text, now, now

        self.status.set_status(f"正在为 {contact} 生成回复")
        self.status.set_suggestion("正在思考...")
        try:
            reply = self._bounded(
                contact,
                lambda: self.ai.chat(query=text, conversation_id=state.conversation_id, inputs={"contact": contact}),
                cfg.ai_timeout_seconds,
                "AI 后端",
            )
        except AuthenticationError as e:
            state.last_text, state.last_processed_at = previous
            self.status.set_suggestion(f"发送失败: {e}")
            self.status.report_error(f"登录状态失效：{e}")
            if self.on_auth_failure is not None:
                try:
                    self.on_auth_failure()
                except Exception as cb_err:
                    self.logger.warning(f"登出回调执行失败：{cb_err}")
            return DispatchOutcome.AI_FAILED
        except Exception as e:
            state.last_text, state.last_processed_at = previous
            self.status.set_suggestion(f"发送失败: {e}")
            self.status.report_error(f"AI 回复失败（{contact}）：{e}")
            return DispatchOutcome.AI_FAILED

        if reply.conversation_id:
            state.conversation_id = reply.conversation_id
        answer = (reply.answer or "").strip()
        self.status.set_suggestion(answer)
        if not answer:
            self.logger.info(f"AI 未给出回复：{contact}")
            return DispatchOutcome.NO_REPLY
        if self.delivery is None:
            self.status.set_status(f"已生成建议（{contact}）")
            return DispatchOutcome.SUGGESTED

        try:
            delivered = self._bounded(
                contact,
                lambda: self.delivery.deliver(contact, answer, message.capture),
                cfg.delivery_timeout_seconds,
                "回复投递",
            )
        except Exception as e:
            self.status.report_error(f"回复投递失败（{contact}）：{e}")
            return DispatchOutcome.DELIVERY_FAILED
        if not delivered:
            self.status.report_error(f"回复投递失败（{contact}）")
            return DispatchOutcome.DELIVERY_FAILED

        self.status.record_auto_reply(contact, answer)
        self.status.set_status(f"已回复 {contact}")
        return DispatchOutcome.SENT
