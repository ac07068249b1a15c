"""
Tests for the screen-capture reply pipeline (capture, OCR, extraction, dispatch).
"""
from unittest.mock import Mock

import pytest
from PIL import Image

from controllers.capture_controller import CaptureReplyController
from models.config import AppConfig
from models.data_models import CaptureBounds, CaptureFrame, OCRResult, Speaker
from services.dispatch_queue import ConversationDispatchQueue
from services.reply_delivery import ReplyDelivery
from ui.status_board import StatusBoard

BOUNDS = CaptureBounds(x=0, y=0, w=400, h=300)


class FakeCapture:
    def __init__(self, frames):
        self.frames = list(frames)

    def capture(self, bounds=None):
        return self.frames.pop(0) if self.frames else None


def _frame(color="white"):
    return CaptureFrame(image=Image.new("RGB", (400, 300), color), bounds=BOUNDS)


def _ocr(*results):
    ocr = Mock()
    ocr.recognize.side_effect = list(results)
    return ocr


@pytest.fixture
def hello_result(frag):
    items = [frag("Hello", 20, 20, 60, 20), frag("发送", 330, 260, 50, 24)]
    return OCRResult(text="Hello\n发送", items=items)


def test_inbound_message_is_dispatched_with_capture_geometry(hello_result):
    dispatcher = Mock()
    ctrl = CaptureReplyController(dispatcher=dispatcher, capture=FakeCapture([_frame()]), ocr=_ocr(hello_result))
    cycle = ctrl.run_once()
    assert cycle.extraction.speaker == Speaker.THEM
    dispatcher.enqueue.assert_called_once()
    msg = dispatcher.enqueue.call_args.args[0]
    assert msg.contact == "screen"
    assert msg.content == "Hello"
    assert msg.trigger_reply is True
    assert msg.capture.bounds == BOUNDS
    assert (msg.capture.image_width, msg.capture.image_height) == (400, 300)


def test_synchronous_mode_processes_immediately(hello_result):
    dispatcher = Mock()
    ctrl = CaptureReplyController(dispatcher=dispatcher, capture=FakeCapture([_frame()]),
                                  ocr=_ocr(hello_result), synchronous=True)
    ctrl.run_once()
    dispatcher.process.assert_called_once()
    dispatcher.enqueue.assert_not_called()


def test_unchanged_screen_skips_ocr(hello_result):
    ocr = _ocr(hello_result, hello_result)
    status = StatusBoard()
    ctrl = CaptureReplyController(dispatcher=Mock(), capture=FakeCapture([_frame(), _frame()]),
                                  ocr=ocr, status=status)
    ctrl.run_once()
    cycle = ctrl.run_once()
    assert cycle.captured and not cycle.changed
    assert ocr.recognize.call_count == 1
    assert status.status == "画面无变化"


def test_ocr_failure_is_reported_and_not_dispatched():
    dispatcher = Mock()
    status = StatusBoard()
    diag = "识别失败。调试信息：\nExit Code: 1"
    ctrl = CaptureReplyController(dispatcher=dispatcher, capture=FakeCapture([_frame()]),
                                  ocr=_ocr(OCRResult.failure(diag)), status=status)
    cycle = ctrl.run_once()
    assert cycle.error == diag
    assert status.errors == [diag]
    dispatcher.enqueue.assert_not_called()


def test_no_reply_when_last_speaker_is_me(frag):
    items = [frag("你好", 20, 40), frag("收到", 300, 200), frag("发送", 330, 260, 50, 24)]
    dispatcher = Mock()
    ctrl = CaptureReplyController(dispatcher=dispatcher, capture=FakeCapture([_frame()]),
                                  ocr=_ocr(OCRResult(text="", items=items)))
    cycle = ctrl.run_once()
    assert cycle.extraction.speaker == Speaker.ME
    assert cycle.message is None
    dispatcher.enqueue.assert_not_called()


def test_capture_failure_skips_cycle():
    ocr = Mock()
    ctrl = CaptureReplyController(dispatcher=Mock(), capture=FakeCapture([]), ocr=ocr)
    cycle = ctrl.run_once()
    assert not cycle.captured
    ocr.recognize.assert_not_called()


def test_dry_run_without_dispatcher_still_extracts(hello_result):
    ctrl = CaptureReplyController(capture=FakeCapture([_frame()]), ocr=_ocr(hello_result))
    cycle = ctrl.run_once()
    assert cycle.message is not None
    assert cycle.extraction.full_text == "Hello"


def test_watch_runs_until_max_cycles(hello_result):
    cfg = AppConfig()
    cfg.capture.interval_seconds = 0
    ctrl = CaptureReplyController(cfg, capture=FakeCapture([_frame(), _frame("black")]),
                                  ocr=_ocr(hello_result, hello_result))
    assert ctrl.watch(max_cycles=2) == 2


def test_watch_hands_each_cycle_to_callback(hello_result):
    cfg = AppConfig()
    cfg.capture.interval_seconds = 0
    ctrl = CaptureReplyController(cfg, capture=FakeCapture([_frame(), _frame()]), ocr=_ocr(hello_result))
    seen = []
    assert ctrl.watch(max_cycles=2, on_cycle=seen.append) == 2
    assert seen[0].extraction.last_inbound == "Hello"
    # 第二帧与第一帧相同，跳过识别
    assert seen[1].captured and not seen[1].changed and seen[1].extraction is None


def test_end_to_end_reply_clicks_mapped_send_control(hello_result, fake_ai, fake_clock):
    simulator = Mock()
    simulator.simulate.return_value = True
    delivery = ReplyDelivery(mode="input", input_simulator=simulator)
    status = StatusBoard()
    dispatcher = ConversationDispatchQueue(fake_ai, delivery=delivery, status=status, clock=fake_clock)
    ctrl = CaptureReplyController(dispatcher=dispatcher, status=status, synchronous=True,
                                  capture=FakeCapture([_frame(), _frame("black")]),
                                  ocr=_ocr(hello_result, hello_result))
    try:
        ctrl.run_once()
        fake_clock.advance(3)
        # 画面变化但仍是同一条消息：去重，不会再次调用 AI
        ctrl.run_once()
    finally:
        dispatcher.shutdown(wait=False)

    assert [c["query"] for c in fake_ai.calls] == ["Hello"]
    plan = simulator.simulate.call_args.args[0]
    assert plan.text == "好的"
    assert (plan.send_coords.x, plan.send_coords.y) == pytest.approx((355, 272))
    assert plan.focus_coords.x < plan.send_coords.x
    assert status.last_auto_reply.contact == "screen"
    assert dispatcher.store.state("screen").last_text == "Hello"
