"""
Core data models for WeChatAutoReply.

坐标约定：
- 图像空间（image space）：截图位图的像素坐标，已包含设备像素比与可选放大倍数；
- 显示空间（display space）：屏幕逻辑坐标，即 CaptureBounds 所在的坐标系。
所有几何计算都必须明确当前坐标属于哪个空间，并通过 ReplyCoordinateSynthesizer 显式换算。
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


class Speaker(Enum):
    """Who authored the bottommost visible message."""
    ME = "ME"
    THEM = "THEM"
    UNKNOWN = "UNKNOWN"


class DispatchOutcome(Enum):
    """Result of routing one inbound item through the dispatch queue."""
    SELF = "self"
    NOT_TRIGGERED = "not_triggered"
    EMPTY = "empty"
    DUPLICATE = "duplicate"
    COOLDOWN = "cooldown"
    BUSY = "busy"
    AI_FAILED = "ai_failed"
    NO_REPLY = "no_reply"
    SUGGESTED = "suggested"
    SENT = "sent"
    DELIVERY_FAILED = "delivery_failed"


@dataclass(frozen=True)
class Point:
    """A point; which coordinate space it lives in is up to the caller."""
    x: float
    y: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class CaptureBounds:
    """On-screen rectangle (display space) that produced a captured image."""
    x: float
    y: float
    w: float
    h: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureBounds":
        return cls(
            x=float(data.get("x", 0)),
            y=float(data.get("y", 0)),
            w=float(data.get("w", data.get("width", 0))),
            h=float(data.get("h", data.get("height", 0))),
        )

    @classmethod
    def parse(cls, spec: str) -> "CaptureBounds":
        """Parse an 'x,y,w,h' string as used on the command line."""
        parts = [p.strip() for p in (spec or "").split(",")]
        if len(parts) != 4:
            raise ValueError(f"chat area must be 'x,y,w,h', got: {spec!r}")
        x, y, w, h = (float(p) for p in parts)
        if w <= 0 or h <= 0:
            raise ValueError(f"chat area width/height must be positive, got: {spec!r}")
        return cls(x=x, y=y, w=w, h=h)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}


@dataclass(frozen=True)
class OCRFragment:
    """One recognized text span with its quadrilateral box in image space.

    box 为四个顶点 [[x0,y0],[x1,y1],[x2,y2],[x3,y3]]，通常为左上、右上、右下、左下；
    这里不依赖顶点顺序，统一以顶点的最小/最大值计算外接矩形。
    """
    text: str
    box: Tuple[Tuple[float, float], ...]
    score: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OCRFragment":
        raw_box = data.get("box") or data.get("points") or []
        box = tuple((float(p[0]), float(p[1])) for p in raw_box if len(p) >= 2)
        score = data.get("score")
        return cls(
            text=str(data.get("text") or ""),
            box=box,
            score=None if score is None else float(score),
        )

    @classmethod
    def from_rect(cls, text: str, x: float, y: float, w: float, h: float,
                  score: Optional[float] = None) -> "OCRFragment":
        return cls(
            text=text,
            box=((x, y), (x + w, y), (x + w, y + h), (x, y + h)),
            score=score,
        )

    @property
    def left(self) -> float:
        return min((p[0] for p in self.box), default=0.0)

    @property
    def right(self) -> float:
        return max((p[0] for p in self.box), default=0.0)

    @property
    def top(self) -> float:
        return min((p[1] for p in self.box), default=0.0)

    @property
    def bottom(self) -> float:
        return max((p[1] for p in self.box), default=0.0)

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center_x(self) -> float:
        return (self.left + self.right) / 2

    @property
    def center_y(self) -> float:
        return (self.top + self.bottom) / 2

    def sort_key(self) -> Tuple[float, float, str]:
        """Total order used wherever ties must not depend on input order."""
        return (self.center_y, self.center_x, self.text)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"text": self.text, "box": [list(p) for p in self.box]}
        if self.score is not None:
            out["score"] = self.score
        return out


@dataclass
class Line:
    """Fragments judged to lie on the same horizontal band."""
    fragments: List[OCRFragment] = field(default_factory=list)
    center_y: float = 0.0

    def add(self, fragment: OCRFragment) -> None:
        self.fragments.append(fragment)
        # 增量平均，避免逐次重算
        self.center_y += (fragment.center_y - self.center_y) / len(self.fragments)

    def ordered(self) -> List[OCRFragment]:
        return sorted(self.fragments, key=lambda f: (f.center_x, f.center_y, f.text))

    @property
    def text(self) -> str:
        return "".join(f.text for f in self.ordered())


@dataclass
class OCRResult:
    """Result from the OCR collaborator: joined text plus positioned fragments.

    error 非空表示识别失败，此时 text 为诊断信息，items 为空。
    """
    text: str
    items: List[OCRFragment] = field(default_factory=list)
    error: Optional[str] = None
    processing_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, diagnostic: str) -> "OCRResult":
        return cls(text=diagnostic, items=[], error=diagnostic)

    @classmethod
    def from_payload(cls, payload: Any) -> "OCRResult":
        """Accept the collaborator shape ``{text, items}`` or a plain error string."""
        if isinstance(payload, str):
            return cls.failure(payload)
        if not isinstance(payload, dict):
            return cls.failure(f"无法识别的 OCR 结果类型：{type(payload).__name__}")
        return cls(text=str(payload.get("text") or ""), items=fragments_from_items(payload.get("items")))


@dataclass
class CaptureFrame:
    """A captured image together with the display-space bounds it came from."""
    image: Any
    bounds: CaptureBounds

    @property
    def image_size(self) -> Tuple[int, int]:
        return tuple(self.image.size)


@dataclass(frozen=True)
class CaptureContext:
    """Geometry needed to place a reply for a message read off the screen."""
    fragments: Tuple[OCRFragment, ...]
    bounds: CaptureBounds
    image_width: int
    image_height: int


@dataclass(frozen=True)
class IncomingMessage:
    """One raw item handed to the dispatch queue."""
    contact: str
    content: str
    is_self: bool = False
    trigger_reply: bool = False
    type: str = "text"
    capture: Optional[CaptureContext] = None

    @classmethod
    def from_bridge(cls, data: Dict[str, Any]) -> "IncomingMessage":
        return cls(
            contact=str(data.get("contact") or ""),
            content=str(data.get("content") or ""),
            is_self=bool(data.get("is_self", False)),
            trigger_reply=bool(data.get("trigger_reply", False)),
            type=str(data.get("type") or ""),
        )


@dataclass(frozen=True)
class ConversationMessage:
    """Transcript entry; appended to a per-contact log and never mutated."""
    id: str
    contact: str
    content: str
    is_self: bool
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "contact": self.contact,
            "content": self.content,
            "is_self": self.is_self,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ReplyPlan:
    """Reply text plus display-space click targets for the input simulator."""
    text: str
    focus_coords: Optional[Point] = None
    send_coords: Optional[Point] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "focusCoords": self.focus_coords.to_dict() if self.focus_coords else None,
            "sendCoords": self.send_coords.to_dict() if self.send_coords else None,
        }


@dataclass(frozen=True)
class AIReply:
    """Answer returned by the AI backend."""
    answer: str
    conversation_id: Optional[str] = None


@dataclass(frozen=True)
class AutoReplyRecord:
    """Last auto-reply actually handed to the host application."""
    contact: str
    text: str
    at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"contact": self.contact, "text": self.text, "at": self.at.isoformat()}


@dataclass
class Segmentation:
    """Output of the layout segmenter for one fragment set."""
    send_control: Optional[OCRFragment]
    boundary: float
    content: List[OCRFragment]
    lines: List[Line]
    average_height: float
    line_gap: float


@dataclass
class Extraction:
    """Everything the message extractor derives from one capture."""
    full_text: str
    last_inbound: str
    speaker: Speaker
    segmentation: Optional[Segmentation] = None


def fragments_from_items(items: Sequence[Any]) -> List[OCRFragment]:
    """Convert collaborator dicts (or fragments) into OCRFragment objects."""
    out: List[OCRFragment] = []
    for item in items or []:
        if isinstance(item, OCRFragment):
            out.append(item)
        elif isinstance(item, dict):
            out.append(OCRFragment.from_dict(item))
    return out
