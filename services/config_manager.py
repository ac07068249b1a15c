"""
Loads, validates and persists the WeChatAutoReply configuration.

Config files are YAML (``.yaml``/``.yml``) or JSON; each top-level key is a
section of AppConfig. Secrets may come from the environment instead.
"""
import json
import logging
import os
from dataclasses import fields
from typing import Any, Dict, Optional

import yaml

from models.config import AppConfig

DEFAULT_LOCATIONS = ("config.yaml", "config.yml", "config.json")

ENV_OVERRIDES = {
    "WECHAT_AUTOREPLY_AI_TOKEN": ("ai", "token"),
    "WECHAT_AUTOREPLY_TENANT_ID": ("ai", "tenant_id"),
}


def _yaml_dump(data: Dict[str, Any], stream) -> None:
    yaml.dump(data, stream, default_flow_style=False, allow_unicode=True, sort_keys=False)


def _json_dump(data: Dict[str, Any], stream) -> None:
    json.dump(data, stream, indent=2, ensure_ascii=False)


# 扩展名 -> (读取函数, 写入函数)
_CODECS = {
    ".yaml": (lambda f: yaml.safe_load(f) or {}, _yaml_dump),
    ".yml": (lambda f: yaml.safe_load(f) or {}, _yaml_dump),
    ".json": (json.load, _json_dump),
}


def _codec(path: str):
    ext = os.path.splitext(path)[1].lower()
    if ext not in _CODECS:
        raise ValueError(f"Unsupported configuration file format: {ext or path}")
    return _CODECS[ext]


class ConfigManager:
    """Caches one AppConfig per manager; reload_config() re-reads the file."""

    def __init__(self, config_path: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.config_path = config_path or next((p for p in DEFAULT_LOCATIONS if os.path.exists(p)), None)
        self._config: Optional[AppConfig] = None

    def load_config(self) -> AppConfig:
        """
        读取并校验配置。

        函数级注释：
        - 未指定路径或文件不存在时使用全部默认值；
        - 加载后依次应用环境变量覆盖与 AppConfig.validate()，校验失败抛出 ValueError；
        - 结果缓存在实例上，重复调用不会再次读盘。
        """
        if self._config is not None:
            return self._config

        config = AppConfig()
        if self.config_path and os.path.exists(self.config_path):
            self.logger.debug(f"加载配置文件：{self.config_path}")
            self._apply_sections(config, self._read(self.config_path))
        elif self.config_path:
            self.logger.info(f"配置文件不存在，使用默认配置：{self.config_path}")

        self._apply_env_overrides(config)
        config.validate()
        self._config = config
        return config

    def _read(self, path: str) -> Dict[str, Any]:
        loader, _ = _codec(path)
        with open(path, "r", encoding="utf-8") as f:
            return loader(f)

    def _apply_sections(self, config: AppConfig, data: Any) -> None:
        """Copy known keys of each section onto the matching dataclass; warn on the rest."""
        if not isinstance(data, dict):
            self.logger.warning("配置文件顶层不是映射，使用默认配置")
            return
        sections = {f.name for f in fields(AppConfig)}
        for name, values in data.items():
            if name not in sections:
                self.logger.warning(f"未知配置分节已忽略：{name}")
                continue
            if not isinstance(values, dict):
                self.logger.warning(f"配置分节 {name} 不是映射，已忽略")
                continue
            section = getattr(config, name)
            known = {f.name for f in fields(section)}
            for key, value in values.items():
                if key in known:
                    setattr(section, key, value)
                else:
                    self.logger.warning(f"未知配置项已忽略：{name}.{key}")

    def _apply_env_overrides(self, config: AppConfig) -> None:
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                setattr(getattr(config, section), key, value)

    def save_config(self, config: AppConfig, file_path: Optional[str] = None) -> None:
        """Write ``config`` as YAML or JSON, chosen by the target extension."""
        target = file_path or self.config_path or DEFAULT_LOCATIONS[0]
        _, dumper = _codec(target)
        parent = os.path.dirname(target)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            dumper(config.to_dict(), f)
        self.logger.info(f"配置已保存：{target}")

    def get_config(self) -> AppConfig:
        return self._config if self._config is not None else self.load_config()

    def reload_config(self) -> AppConfig:
        self._config = None
        return self.load_config()

    def create_default_config_file(self, file_path: str = DEFAULT_LOCATIONS[0]) -> None:
        self.save_config(AppConfig(), file_path)
