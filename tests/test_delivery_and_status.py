"""
Tests for reply delivery, input simulation, screen capture and the status board.
"""
import json
from unittest.mock import Mock, patch

import pytest
from PIL import Image

from models.config import CaptureConfig, InputConfig
from models.data_models import CaptureBounds, CaptureContext, Point, ReplyPlan
from services.input_simulator import InputSimulator
from services.reply_delivery import ReplyDelivery
from services.screen_capture import ScreenCapture, upscale_image
from ui.status_board import StatusBoard

FAST_INPUT = InputConfig(click_hold=0, after_focus=0, after_clipboard=0, after_paste=0)


class TestReplyDelivery:
    def test_input_mode_uses_capture_geometry(self, frag):
        sim = Mock()
        sim.simulate.return_value = True
        delivery = ReplyDelivery(input_simulator=sim)
        capture = CaptureContext(
            fragments=(frag("发送", 330, 260, 50, 24),),
            bounds=CaptureBounds(0, 0, 400, 300), image_width=400, image_height=300,
        )
        assert delivery.deliver("Alice", "好的", capture) is True
        plan = sim.simulate.call_args.args[0]
        assert plan.send_coords.x == pytest.approx(355)

    def test_input_mode_falls_back_to_default_bounds(self):
        sim = Mock()
        sim.simulate.return_value = False
        delivery = ReplyDelivery(input_simulator=sim, default_bounds=CaptureBounds(0, 0, 100, 100))
        assert delivery.deliver("Alice", "好的") is False
        plan = sim.simulate.call_args.args[0]
        assert plan.send_coords.x == pytest.approx(90)

    def test_input_mode_without_geometry_has_no_coords(self):
        delivery = ReplyDelivery(input_simulator=Mock())
        plan = delivery.plan("hi")
        assert plan.focus_coords is None and plan.send_coords is None

    def test_bridge_mode(self, fake_bridge):
        delivery = ReplyDelivery(mode="bridge", bridge=fake_bridge)
        assert delivery.deliver("Alice", "好的") is True
        assert fake_bridge.commands == [("Alice", "好的")]

    def test_invalid_modes(self):
        with pytest.raises(ValueError):
            ReplyDelivery(mode="carrier-pigeon")
        with pytest.raises(ValueError):
            ReplyDelivery(mode="bridge")


class TestInputSimulator:
    def test_click_paste_click(self):
        gui, clip = Mock(), Mock()
        plan = ReplyPlan(text="好的", focus_coords=Point(275.4, 272), send_coords=Point(355, 272))
        with patch("services.input_simulator.pyautogui", gui), patch("services.input_simulator.pyperclip", clip):
            assert InputSimulator(FAST_INPUT).simulate(plan) is True
        clip.copy.assert_called_once_with("好的")
        assert gui.mouseDown.call_args_list[0].args == (275, 272)
        assert gui.mouseDown.call_args_list[1].args == (355, 272)
        hotkey = gui.hotkey.call_args.args
        assert hotkey[1] == "v" and hotkey[0] in ("ctrl", "command")
        # 粘贴发生在两次点击之间
        names = [c[0] for c in gui.method_calls]
        assert names.index("hotkey") > names.index("mouseDown")
        assert names.index("hotkey") < len(names) - 1

    def test_failure_returns_false(self):
        gui, clip = Mock(), Mock()
        clip.copy.side_effect = RuntimeError("no clipboard")
        with patch("services.input_simulator.pyautogui", gui), patch("services.input_simulator.pyperclip", clip):
            assert InputSimulator(FAST_INPUT).simulate(ReplyPlan(text="x")) is False
        gui.hotkey.assert_not_called()

    def test_missing_gui_backend_returns_false(self):
        clip = Mock()
        with patch("services.input_simulator.pyautogui", None), patch("services.input_simulator.pyperclip", clip):
            assert InputSimulator(FAST_INPUT).simulate(ReplyPlan(text="x")) is False
        clip.copy.assert_not_called()


class TestScreenCapture:
    def test_chat_area_override(self):
        assert ScreenCapture(CaptureConfig(chat_area="10,20,300,400")).resolve_bounds() == CaptureBounds(10, 20, 300, 400)

    def test_window_lookup(self):
        win = Mock(left=5, top=6, width=800, height=600, visible=True)
        small = Mock(left=0, top=0, width=50, height=50, visible=True)
        gw = Mock()
        gw.getWindowsWithTitle.return_value = [small, win]
        with patch("services.screen_capture.gw", gw):
            bounds = ScreenCapture(CaptureConfig(window_title="微信")).resolve_bounds()
        assert bounds == CaptureBounds(5, 6, 800, 600)
        gw.getWindowsWithTitle.assert_called_once_with("微信")

    def test_capture_upscales(self):
        gui = Mock()
        gui.screenshot.return_value = Image.new("RGB", (100, 50))
        with patch("services.screen_capture.pyautogui", gui):
            frame = ScreenCapture(CaptureConfig(chat_area="0,0,100,50", upscale=2.0)).capture()
        assert frame.image_size == (200, 100)
        assert frame.bounds == CaptureBounds(0, 0, 100, 50)
        assert gui.screenshot.call_args.kwargs["region"] == (0, 0, 100, 50)

    def test_capture_failure_returns_none(self):
        gui = Mock()
        gui.screenshot.side_effect = OSError("no display")
        with patch("services.screen_capture.pyautogui", gui):
            assert ScreenCapture(CaptureConfig(chat_area="0,0,10,10")).capture() is None

    def test_missing_backends_return_none(self):
        with patch("services.screen_capture.pyautogui", None), patch("services.screen_capture.gw", None):
            assert ScreenCapture(CaptureConfig(chat_area="0,0,10,10")).capture() is None
            assert ScreenCapture(CaptureConfig(window_title="微信")).resolve_bounds() is None

    def test_upscale_noop(self):
        img = Image.new("RGB", (3, 3))
        assert upscale_image(img, 1.0) is img


class TestStatusBoard:
    def test_snapshot_is_json_serialisable(self):
        from datetime import datetime
        from models.data_models import ConversationMessage

        board = StatusBoard()
        board.add_transcript(ConversationMessage("1", "Alice", "hi", False, datetime(2024, 1, 1)))
        board.set_suggestion("好的")
        board.record_auto_reply("Alice", "好的")
        board.report_error("boom")
        snap = json.loads(json.dumps(board.snapshot(), ensure_ascii=False))
        assert snap["last_suggestion"] == "好的"
        assert snap["last_auto_reply"]["contact"] == "Alice"
        assert snap["status"] == "boom"
        assert snap["transcript"][0]["content"] == "hi"

    def test_listener_errors_are_contained(self):
        board = StatusBoard()
        events = []
        board.subscribe(lambda event, b: events.append(event))
        board.subscribe(Mock(side_effect=RuntimeError("ui gone")))
        board.set_status("ok")
        assert events == ["status"]
        assert board.status == "ok"

    def test_error_list_is_bounded(self):
        board = StatusBoard(max_errors=3)
        for i in range(5):
            board.report_error(f"e{i}")
        assert board.errors == ["e2", "e3", "e4"]

    def test_transcript_filter(self):
        from datetime import datetime
        from models.data_models import ConversationMessage

        board = StatusBoard()
        board.add_transcript(ConversationMessage("1", "Alice", "hi", False, datetime.now()))
        board.add_transcript(ConversationMessage("2", "Bob", "yo", False, datetime.now()))
        assert [m.content for m in board.transcript("Bob")] == ["yo"]
        assert len(board.transcript()) == 2
