"""
Logging manager to configure Python logging according to AppConfig.logging.
"""
import logging
import os
import re
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from models.config import LoggingConfig, AppConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024

_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([KMG]?)B?$")
_SIZE_UNITS = {"": 1, "K": 1024, "M": 1024 ** 2, "G": 1024 ** 3}


class LoggingManager:
    def __init__(self):
        self._configured = False

    def setup(self, cfg: AppConfig, level_override: Optional[str] = None) -> None:
        """Configure logging based on AppConfig.logging settings; later calls are no-ops."""
        if self._configured:
            return

        log_cfg: LoggingConfig = cfg.logging
        level_name = (level_override or log_cfg.level or "INFO").upper()
        level = getattr(logging, level_name, logging.INFO)
        formatter = logging.Formatter(LOG_FORMAT)

        handlers: List[logging.Handler] = [logging.StreamHandler()]
        # 未配置日志文件时仅输出到控制台（例如 --dry-run 调试）
        if log_cfg.file:
            log_dir = os.path.dirname(log_cfg.file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            handlers.append(RotatingFileHandler(
                log_cfg.file, maxBytes=self._parse_size(log_cfg.max_size), backupCount=3, encoding="utf-8",
            ))

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()
        for handler in handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)

        # requests/urllib3 的连接日志在轮询场景下过于嘈杂
        logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))
        self._configured = True

    @staticmethod
    def _parse_size(size_str: str) -> int:
        """'10MB' / '512kb' / '1.5G' / '2048' -> bytes; unparseable values fall back to 10MB."""
        match = _SIZE_RE.match((size_str or "").strip().upper())
        if not match:
            return DEFAULT_MAX_BYTES
        number, unit = match.groups()
        return int(float(number) * _SIZE_UNITS[unit])
