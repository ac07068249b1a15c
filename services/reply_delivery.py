"""
Routes an AI reply to the host application, either by simulated input
at synthesized coordinates or through the bridge command endpoint.
"""
import logging
from typing import Optional

from models.data_models import CaptureBounds, CaptureContext, ReplyPlan
from services.bridge_client import BridgeClient
from services.input_simulator import InputSimulator
from services.reply_coordinates import ReplyCoordinateSynthesizer


class ReplyDelivery:
    def __init__(self, mode: str = "input",
                 input_simulator: Optional[InputSimulator] = None,
                 bridge: Optional[BridgeClient] = None,
                 synthesizer: Optional[ReplyCoordinateSynthesizer] = None,
                 default_bounds: Optional[CaptureBounds] = None):
        if mode not in ("input", "bridge"):
            raise ValueError(f"unknown delivery mode: {mode}")
        if mode == "bridge" and bridge is None:
            raise ValueError("bridge delivery requires a BridgeClient")
        self.mode = mode
        self.input_simulator = input_simulator or InputSimulator()
        self.bridge = bridge
        self.synthesizer = synthesizer or ReplyCoordinateSynthesizer()
        self.default_bounds = default_bounds
        self.logger = logging.getLogger(__name__)

    def plan(self, text: str, capture: Optional[CaptureContext] = None) -> ReplyPlan:
        """Click targets for ``text``; geometry from the capture when there is one."""
        if capture is not None:
            return self.synthesizer.synthesize(
                text, capture.fragments, capture.bounds, capture.image_width, capture.image_height
            )
        if self.default_bounds is not None:
            return self.synthesizer.fallback_plan(text, self.default_bounds)
        return ReplyPlan(text=text)

    def deliver(self, contact: str, text: str, capture: Optional[CaptureContext] = None) -> bool:
        """Hand the reply over; returns whether the collaborator reported success."""
        if self.mode == "bridge":
            self.logger.debug(f"通过 bridge 发送回复给 {contact}")
            return self.bridge.send_command(contact, text)
        plan = self.plan(text, capture)
        self.logger.debug(f"模拟输入回复给 {contact}：{plan.to_payload()}")
        return self.input_simulator.simulate(plan)
