"""
Pytest configuration and shared fixtures for WeChatAutoReply tests.
"""
import logging
import os
import sys
import threading

import pytest

"""
将项目根目录加入 Python 导入路径，确保在以 tests 目录为起点执行时，
可以正常导入位于项目根目录下的内部模块（如 services/*）。
"""
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from models.data_models import AIReply, IncomingMessage, OCRFragment


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAI:
    """Records chat() calls; answers with a fixed reply or raises a queued error."""

    def __init__(self, answer: str = "好的", conversation_id: str = "conv-1"):
        self.answer = answer
        self.conversation_id = conversation_id
        self.calls = []
        self.errors = []
        self._lock = threading.Lock()

    def chat(self, query, conversation_id=None, inputs=None, user=None):
        with self._lock:
            self.calls.append({"query": query, "conversation_id": conversation_id, "inputs": inputs})
            if self.errors:
                raise self.errors.pop(0)
        return AIReply(answer=self.answer, conversation_id=self.conversation_id)


class FakeDelivery:
    def __init__(self, result: bool = True):
        self.result = result
        self.calls = []

    def deliver(self, contact, text, capture=None):
        self.calls.append((contact, text, capture))
        return self.result


class FakeBridge:
    """Returns queued poll batches; raises when a batch is an Exception."""

    def __init__(self, batches=None):
        self.batches = list(batches or [])
        self.commands = []

    def poll(self):
        if not self.batches:
            return []
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return [IncomingMessage.from_bridge(m) for m in batch]

    def send_command(self, target, content):
        self.commands.append((target, content))
        return True


@pytest.fixture
def frag():
    """Fragment factory: frag(text, x, y, w, h, score=None) in image space."""
    def _make(text, x, y, w=40, h=20, score=None):
        return OCRFragment.from_rect(text, x, y, w, h, score)
    return _make


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_ai():
    return FakeAI()


@pytest.fixture
def fake_delivery():
    return FakeDelivery()


@pytest.fixture
def fake_bridge():
    return FakeBridge()


@pytest.fixture(autouse=True)
def setup_logging():
    """Setup logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
