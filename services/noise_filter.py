"""
Noise filter: separates chat content from UI chrome and OCR artifacts.
"""
import re
from typing import Iterable, Optional

from models.config import LayoutConfig
from models.data_models import OCRFragment

ZERO_WIDTH_RE = re.compile("[\u200b\u200c\u200d\u2060\ufeff]")
_WHITESPACE_RE = re.compile(r"\s+")

_DEFAULT_CONFIG = LayoutConfig()


def strip_text(text: Optional[str]) -> str:
    """Remove whitespace and zero-width characters."""
    return _WHITESPACE_RE.sub("", ZERO_WIDTH_RE.sub("", text or ""))


def is_cjk(ch: str) -> bool:
    """True for a single CJK unified ideograph (incl. extensions A/B and compatibility)."""
    code = ord(ch)
    return (
        0x4E00 <= code <= 0x9FFF
        or 0x3400 <= code <= 0x4DBF
        or 0xF900 <= code <= 0xFAFF
        or 0x20000 <= code <= 0x2A6DF
    )


def _symbol_only(stripped: str, symbols: str) -> bool:
    return all(ch in symbols for ch in stripped)


def is_noise(fragment: OCRFragment, average_height: float,
             config: Optional[LayoutConfig] = None) -> bool:
    """Classify one fragment as noise.

    规则按顺序判定：
    1) 去除空白与零宽字符后为空；
    2) 仅由固定符号集合（% ? · • * # @）构成；
    3) 存在置信度且低于阈值（默认 0.45）；
    4) 仅一个非 CJK 字符，且宽或高小于平均内容高度的 0.6 倍。
    没有 box 的片段改用 is_noise_text 判定。

    Args:
        fragment: OCR 片段
        average_height: 全部内容片段（不含发送按钮）的平均高度
        config: 阈值配置
    """
    cfg = config or _DEFAULT_CONFIG
    if not fragment.box:
        return is_noise_text(fragment.text, cfg)
    stripped = strip_text(fragment.text)
    if not stripped:
        return True
    if _symbol_only(stripped, cfg.noise_symbols):
        return True
    if fragment.score is not None and fragment.score < cfg.min_score:
        return True
    if len(stripped) == 1 and not is_cjk(stripped):
        limit = cfg.single_char_min_ratio * average_height
        if fragment.height < limit or fragment.width < limit:
            return True
    return False


def is_noise_text(text: Optional[str], config: Optional[LayoutConfig] = None) -> bool:
    """Text-only variant for when no geometry is available."""
    cfg = config or _DEFAULT_CONFIG
    stripped = strip_text(text)
    if not stripped:
        return True
    if _symbol_only(stripped, cfg.noise_symbols):
        return True
    return len(stripped) == 1 and not is_cjk(stripped)


def average_height(fragments: Iterable[OCRFragment]) -> float:
    heights = [f.height for f in fragments if f.box]
    if not heights:
        return 0.0
    return sum(heights) / len(heights)
