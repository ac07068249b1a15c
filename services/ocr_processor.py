"""
OCR processing module for WeChatAutoReply.
Wraps PaddleOCR (in-process) or the PaddleOCR-json executable and returns
positioned OCR fragments in image space.
"""
import inspect
import json
import logging
import os
import subprocess
import tempfile
import time
from typing import Any, List, Optional

import cv2
import numpy as np
from PIL import Image

from models.config import OCRConfig
from models.data_models import OCRFragment, OCRResult, fragments_from_items

# 模块级占位符：PaddleOCR
# 说明（函数级注释风格）：
# - 为了兼容单元测试中的 patch('services.ocr_processor.PaddleOCR')，需要在模块作用域暴露同名符号；
# - 运行时采用延迟导入，避免 paddle 在导入阶段加载模型或探测网络；
# - 若该符号被测试替换为 Mock，则初始化阶段会优先使用该 Mock。
PaddleOCR = None

# Fix for OpenMP runtime conflict on macOS (common in PaddleOCR/PyTorch)
os.environ.setdefault("KMP_DUPLICATE_LIB_OK", "TRUE")

# PaddleOCR-json 成功识别时的返回码
PPOCR_JSON_OK = 100
DIAGNOSTIC_LIMIT = 500


def parse_paddleocr_json_output(stdout: str, stderr: str = "", exit_code: Optional[int] = None) -> OCRResult:
    """
    解析 PaddleOCR-json 可执行程序的标准输出。

    函数级注释：
    - 输出中混有日志行与 JSON 行，逐行尝试解析，取第一条 code==100 且带 data 的结果；
    - data 中每项为 {text, box, score}，转换为 OCRFragment，text 为逐项换行拼接；
    - 未找到有效结果时返回包含退出码与截断 stdout/stderr 的诊断信息。
    """
    for line in (stdout or "").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            parsed = json.loads(line)
        except ValueError:
            continue
        if isinstance(parsed, dict) and parsed.get("code") == PPOCR_JSON_OK and isinstance(parsed.get("data"), list):
            items = fragments_from_items(parsed["data"])
            return OCRResult(text="\n".join(i.text for i in items), items=items)

    def _clip(s: str) -> str:
        s = s or ""
        return s[:DIAGNOSTIC_LIMIT] + ("..." if len(s) > DIAGNOSTIC_LIMIT else "")

    diagnostic = "\n".join([
        "识别失败。调试信息：",
        f"Exit Code: {exit_code}",
        "--- Stdout ---",
        _clip(stdout),
        "--- Stderr ---",
        _clip(stderr),
    ])
    return OCRResult.failure(diagnostic)


def normalize_paddle_output(raw: Any) -> List[OCRFragment]:
    """
    统一标准化 PaddleOCR 的原始输出为 OCRFragment 列表。

    支持：
    - 经典格式：[[ [box, (text, score)], ... ]]（外层按页包裹）；
    - 新版结果对象/字典：rec_texts / rec_scores / rec_polys（或 rec_boxes）。
    """
    fragments: List[OCRFragment] = []
    if not raw:
        return fragments

    def _box(points: Any):
        arr = np.asarray(points, dtype=float)
        if arr.ndim == 1 and arr.size == 4:
            x0, y0, x1, y1 = arr.tolist()
            return ((x0, y0), (x1, y0), (x1, y1), (x0, y1))
        if arr.ndim == 2 and arr.shape[1] >= 2:
            return tuple((float(p[0]), float(p[1])) for p in arr)
        return ()

    def _from_rec(obj: Any) -> None:
        get = obj.get if isinstance(obj, dict) else (lambda k, d=None: getattr(obj, k, d))
        # rec_scores / rec_polys 可能是 ndarray，不能直接做真值判断
        texts = get("rec_texts", None)
        scores = get("rec_scores", None)
        polys = get("rec_polys", None)
        if polys is None or len(polys) == 0:
            polys = get("rec_boxes", None)
        texts = [] if texts is None else list(texts)
        scores = [] if scores is None else list(scores)
        polys = [] if polys is None else list(polys)
        for i, (text, score) in enumerate(zip(texts, scores)):
            box = _box(polys[i]) if i < len(polys) else ()
            fragments.append(OCRFragment(text=str(text), box=box, score=float(score)))

    def _is_line(obj: Any) -> bool:
        return (isinstance(obj, (list, tuple)) and len(obj) == 2
                and isinstance(obj[1], (list, tuple)) and len(obj[1]) >= 2 and isinstance(obj[1][0], str))

    pages = raw if isinstance(raw, list) else [raw]
    # 旧版单页输出没有外层分页包裹
    if pages and _is_line(pages[0]):
        pages = [pages]
    for page in pages:
        if page is None:
            continue
        if isinstance(page, dict) or hasattr(page, "rec_texts"):
            _from_rec(page)
            continue
        if isinstance(page, (list, tuple)):
            for line in page:
                if not isinstance(line, (list, tuple)) or len(line) < 2:
                    continue
                box, rec = line[0], line[1]
                if isinstance(rec, (list, tuple)) and len(rec) >= 2:
                    fragments.append(OCRFragment(text=str(rec[0]), box=_box(box), score=float(rec[1])))
    return fragments


class OCRProcessor:
    """OCR collaborator returning ``OCRResult{text, items}`` or a diagnostic."""

    def __init__(self, config: Optional[OCRConfig] = None):
        self.config = config or OCRConfig()
        self.ocr_engine: Optional[object] = None
        self.logger = logging.getLogger(__name__)

    def initialize_engine(self) -> bool:
        """
        Initialize the in-process PaddleOCR engine.

        Returns:
            bool: True if initialization successful, False otherwise
        """
        if self.config.engine != "paddleocr":
            return True
        if self.ocr_engine is not None:
            return True

        try:
            _PaddleOCR = PaddleOCR
            if _PaddleOCR is None:
                from paddleocr import PaddleOCR as _PaddleOCR
        except ImportError as e:
            self.logger.error(f"Failed to import PaddleOCR: {e}")
            return False

        requested = (self.config.language or "ch").strip()
        lang_attempts = [requested] + [lang for lang in ("ch", "en") if lang != requested]
        full_kwargs = {
            "use_angle_cls": bool(self.config.use_angle_cls),
            "use_gpu": bool(self.config.use_gpu),
            "show_log": False,
        }
        # 使用签名自省只传递当前版本支持的参数，避免 "Unknown argument"
        try:
            supported = set(inspect.signature(_PaddleOCR).parameters)
        except (TypeError, ValueError):
            supported = set()

        last_error: Optional[Exception] = None
        for lang in lang_attempts:
            kwargs = {"lang": lang}
            kwargs.update({k: v for k, v in full_kwargs.items() if k in supported})
            try:
                self.logger.info(f"Initializing PaddleOCR engine with kwargs: {kwargs}")
                self.ocr_engine = _PaddleOCR(**kwargs)
                if lang != requested:
                    self.logger.info(f"OCR language set to '{lang}' (was '{requested}')")
                return True
            except Exception as e:
                last_error = e
                self.logger.info(f"PaddleOCR init failed for lang='{lang}': {e}. Trying next fallback if available...")

        self.logger.error(f"Failed to initialize OCR engine after {len(lang_attempts)} attempts: {last_error}")
        return False

    def is_engine_ready(self) -> bool:
        return self.config.engine != "paddleocr" or self.ocr_engine is not None

    def recognize(self, image: Image.Image) -> OCRResult:
        """
        Run OCR on a captured image.

        Never raises: failures come back as ``OCRResult.failure(diagnostic)``.
        """
        started = time.time()
        try:
            if self.config.engine == "paddleocr_json":
                result = self._recognize_executable(image)
            else:
                result = self._recognize_inprocess(image)
        except Exception as e:
            self.logger.error(f"OCR 识别出错：{e}")
            result = OCRResult.failure(f"OCR 识别出错：{e}")
        result.processing_time = time.time() - started
        if result.ok:
            self.logger.debug(f"OCR 完成：{len(result.items)} 个片段，用时 {result.processing_time:.2f}s")
        return result

    def _recognize_inprocess(self, image: Image.Image) -> OCRResult:
        if not self.is_engine_ready() and not self.initialize_engine():
            return OCRResult.failure("OCR 引擎初始化失败")
        # PaddleOCR 期望 BGR ndarray
        bgr = cv2.cvtColor(np.asarray(image.convert("RGB")), cv2.COLOR_RGB2BGR)
        engine = self.ocr_engine
        if hasattr(engine, "ocr"):
            raw = engine.ocr(bgr)
        else:
            raw = engine.predict(bgr)
        items = normalize_paddle_output(raw)
        return OCRResult(text="\n".join(i.text for i in items), items=items)

    def _recognize_executable(self, image: Image.Image) -> OCRResult:
        exe = os.path.abspath(self.config.executable)
        if not os.path.exists(exe):
            return OCRResult.failure(f"识别失败：未找到 OCR 可执行文件 {exe}")

        fd, temp_path = tempfile.mkstemp(prefix="ocr_temp_", suffix=".png")
        os.close(fd)
        try:
            image.save(temp_path, format="PNG")
            # 可执行文件需要在其所在目录运行才能找到 models 目录
            proc = subprocess.run(
                [exe, f"--image_path={temp_path}"],
                cwd=os.path.dirname(exe),
                capture_output=True,
                timeout=self.config.timeout_seconds,
            )
            stdout = proc.stdout.decode("utf-8", errors="replace")
            stderr = proc.stderr.decode("utf-8", errors="replace")
            self.logger.debug(f"OCR Process exited with code: {proc.returncode}")
            return parse_paddleocr_json_output(stdout, stderr, proc.returncode)
        except subprocess.TimeoutExpired:
            return OCRResult.failure(f"识别失败：OCR 进程超时（{self.config.timeout_seconds:.0f}s）")
        finally:
            try:
                os.unlink(temp_path)
            except OSError as e:
                self.logger.debug(f"删除临时文件失败：{e}")
