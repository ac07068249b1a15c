"""
Configuration data models for WeChatAutoReply.

各阈值均为经验值（并非推导得出），集中在此处以便调参而无需改动业务逻辑。
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass
class LayoutConfig:
    """Noise filter, layout segmenter and extractor thresholds."""
    # 发送按钮文案：中文“发送”、英文 send（不区分大小写）或 “Enter” 提示
    send_labels: List[str] = field(default_factory=lambda: ["发送", "send"])
    enter_label: str = "Enter"
    # 噪声过滤
    noise_symbols: str = "%?·•*#@"
    min_score: float = 0.45
    single_char_min_ratio: float = 0.6
    # 底部边界检测
    fallback_bottom_ratio: float = 0.88
    adaptive_min_fragments: int = 4
    adaptive_scan_start_ratio: float = 0.4
    adaptive_min_gap_px: float = 20.0
    adaptive_gap_factor: float = 2.0
    # 行聚类
    line_gap_min_px: float = 12.0
    line_gap_height_factor: float = 0.9
    # 左右分侧：中心 x 超过该比例视为“我”
    side_split_ratio: float = 0.55
    # 最后一条对方消息的段落吸收阈值（相对行间距阈值的倍数）
    block_gap_factor: float = 1.8


@dataclass
class ChangeDetectConfig:
    """Sampling change detector parameters."""
    enabled: bool = True
    step: int = 4
    pixel_threshold: int = 30
    change_ratio: float = 0.015


@dataclass
class ReplyCoordinateConfig:
    """Reply click-target synthesis parameters."""
    send_inset: float = 5.0
    focus_inset: float = 10.0
    focus_min_offset: float = 80.0
    focus_width_factor: float = 1.6
    fallback_focus_x: float = 0.5
    fallback_send_x: float = 0.9
    fallback_y: float = 0.92


@dataclass
class DispatchConfig:
    """Per-contact dispatch rules."""
    duplicate_window_seconds: float = 120.0
    cooldown_seconds: float = 8.0
    # 0 或负数表示不设上限
    ai_timeout_seconds: float = 60.0
    delivery_timeout_seconds: float = 20.0
    # input：模拟键鼠；bridge：通过 sidecar 指令接口发送
    delivery: str = "input"


@dataclass
class MonitorConfig:
    """Bridge polling schedule."""
    poll_min_delay: float = 0.6
    poll_max_delay: float = 1.2


@dataclass
class CaptureConfig:
    """Screen capture settings for the OCR-driven pipeline."""
    # "x,y,w,h"（显示空间）；为空时按窗口标题定位
    chat_area: Optional[str] = None
    window_title: str = "微信"
    # OCR 前的可选放大倍数（>1 时对小字号更友好）
    upscale: float = 1.0
    interval_seconds: float = 3.0
    contact_label: str = "screen"


@dataclass
class OCRConfig:
    """OCR engine configuration."""
    engine: str = "paddleocr"  # paddleocr / paddleocr_json
    language: str = "ch"
    use_angle_cls: bool = False
    use_gpu: bool = False
    executable: str = "resources/bin/PaddleOCR-json.exe"
    timeout_seconds: float = 30.0


@dataclass
class BridgeConfig:
    """Sidecar bridge HTTP endpoints."""
    base_url: str = "http://127.0.0.1:18888"
    poll_path: str = "/poll"
    command_path: str = "/command"
    timeout_seconds: float = 5.0


@dataclass
class AIConfig:
    """AI backend (Dify-style chat-messages relay)."""
    base_url: str = "http://127.0.0.1:8080"
    chat_path: str = "/api/dify/chat-messages"
    tenant_id: str = ""
    token: str = ""
    user: str = "wechat-autoreply"
    timeout_seconds: float = 30.0


@dataclass
class InputConfig:
    """Timings for simulated mouse/keyboard input (seconds)."""
    click_hold: float = 0.05
    after_focus: float = 0.2
    after_clipboard: float = 0.1
    after_paste: float = 0.5
    failsafe: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = "./logs/autoreply.log"
    max_size: str = "10MB"


@dataclass
class AppConfig:
    """Main application configuration."""
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    change: ChangeDetectConfig = field(default_factory=ChangeDetectConfig)
    reply: ReplyCoordinateConfig = field(default_factory=ReplyCoordinateConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    input: InputConfig = field(default_factory=InputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> bool:
        """Validate configuration parameters."""
        errors = []

        lay = self.layout
        for name in ("min_score", "single_char_min_ratio", "fallback_bottom_ratio",
                     "adaptive_scan_start_ratio", "side_split_ratio"):
            value = getattr(lay, name)
            if value < 0.0 or value > 1.0:
                errors.append(f"layout.{name} must be between 0.0 and 1.0")
        if lay.block_gap_factor <= 0:
            errors.append("layout.block_gap_factor must be positive")
        if not lay.send_labels:
            errors.append("layout.send_labels must not be empty")

        if self.change.step < 1:
            errors.append("change.step must be >= 1")
        if self.change.change_ratio < 0.0 or self.change.change_ratio > 1.0:
            errors.append("change.change_ratio must be between 0.0 and 1.0")

        if self.dispatch.duplicate_window_seconds < 0:
            errors.append("dispatch.duplicate_window_seconds must be >= 0")
        if self.dispatch.cooldown_seconds < 0:
            errors.append("dispatch.cooldown_seconds must be >= 0")
        if self.dispatch.delivery not in ("input", "bridge"):
            errors.append("dispatch.delivery must be one of: input, bridge")

        mon = self.monitor
        if mon.poll_min_delay <= 0 or mon.poll_max_delay < mon.poll_min_delay:
            errors.append("monitor.poll_min_delay must be positive and <= poll_max_delay")

        if self.capture.upscale < 1.0:
            errors.append("capture.upscale must be >= 1.0")
        if self.ocr.engine not in ("paddleocr", "paddleocr_json"):
            errors.append("ocr.engine must be one of: paddleocr, paddleocr_json")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)
