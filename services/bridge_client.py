"""
Client for the sidecar bridge that observes the messaging client.

The bridge exposes ``GET /poll`` returning ``{ok, messages}`` and
``POST /command`` accepting ``{target, content}``.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from models.config import BridgeConfig
from models.data_models import IncomingMessage


class BridgeError(Exception):
    """Transport or protocol failure talking to the bridge."""


class BridgeClient:
    def __init__(self, config: Optional[BridgeConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or BridgeConfig()
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    def _url(self, path: str) -> str:
        return self.config.base_url.rstrip("/") + path

    def _json(self, res: requests.Response) -> Dict[str, Any]:
        if not 200 <= res.status_code < 300:
            raise BridgeError(f"bridge 返回非 2xx：status={res.status_code} body={res.text[:300]}")
        try:
            data = res.json()
        except ValueError as e:
            raise BridgeError(f"bridge 返回非 JSON：{res.text[:200]}") from e
        if not isinstance(data, dict):
            raise BridgeError("bridge 响应格式异常")
        return data

    def poll(self) -> List[IncomingMessage]:
        """Fetch new messages; raises BridgeError on any failure."""
        try:
            res = self.session.get(self._url(self.config.poll_path), timeout=self.config.timeout_seconds)
        except requests.RequestException as e:
            raise BridgeError(f"bridge 轮询失败：{e}") from e
        data = self._json(res)
        if not data.get("ok"):
            raise BridgeError(f"bridge 轮询返回 ok=false：{data.get('error')}")
        messages = data.get("messages") or []
        return [IncomingMessage.from_bridge(m) for m in messages if isinstance(m, dict)]

    def send_command(self, target: str, content: str) -> bool:
        """Ask the bridge to type ``content`` into the chat with ``target``."""
        try:
            res = self.session.post(
                self._url(self.config.command_path),
                json={"target": target, "content": content},
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as e:
            raise BridgeError(f"bridge 发送指令失败：{e}") from e
        data = self._json(res)
        success = bool(data.get("ok")) and bool(data.get("success", True))
        if not success:
            self.logger.warning(f"bridge 指令未成功：target={target} resp={data}")
        return success
