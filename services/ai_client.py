"""
AI backend client (Dify-style chat-messages relay).
"""
import logging
from typing import Any, Dict, Optional

import requests

from models.config import AIConfig
from models.data_models import AIReply


class AIBackendError(Exception):
    """Transport failure, non-2xx status or malformed payload from the AI backend."""


class AuthenticationError(AIBackendError):
    """The backend rejected the session (HTTP 401)."""


class AIClient:
    """Posts a query to the backend and returns the answer text."""

    def __init__(self, config: Optional[AIConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or AIConfig()
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    @property
    def url(self) -> str:
        return self.config.base_url.rstrip("/") + self.config.chat_path

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.tenant_id:
            headers["X-Tenant-Id"] = self.config.tenant_id
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    def chat(self, query: str, conversation_id: Optional[str] = None,
             inputs: Optional[Dict[str, Any]] = None, user: Optional[str] = None) -> AIReply:
        """
        发送一条消息给 AI 后端并返回回复。

        函数级注释：
        - 请求体：{query, inputs, conversation_id, user}；conversation_id 为空时不传，由后端新建会话；
        - 兼容统一包装 {code, msg, data}：code==0 时解包 data，否则视为业务错误；
        - 401 抛出 AuthenticationError，由上层触发登出/重置；其余失败抛出 AIBackendError。

        Raises:
            AuthenticationError: HTTP 401
            AIBackendError: 其他传输或协议错误
        """
        body: Dict[str, Any] = {
            "query": query,
            "inputs": inputs or {},
            "user": user or self.config.user,
        }
        if conversation_id:
            body["conversation_id"] = conversation_id

        try:
            res = self.session.post(self.url, json=body, headers=self._headers(), timeout=self.config.timeout_seconds)
        except requests.RequestException as e:
            raise AIBackendError(f"AI 后端请求失败：{e}") from e

        if res.status_code == 401:
            raise AuthenticationError("AI 后端返回 401，登录状态已失效")
        if not 200 <= res.status_code < 300:
            raise AIBackendError(f"AI 后端返回非 2xx：status={res.status_code} body={res.text[:500]}")

        try:
            payload = res.json()
        except ValueError as e:
            raise AIBackendError(f"AI 后端返回非 JSON：{res.text[:200]}") from e

        payload = self._unwrap(payload)
        answer = payload.get("answer")
        if answer is None:
            raise AIBackendError("AI 后端响应缺少 answer 字段")
        return AIReply(answer=str(answer), conversation_id=payload.get("conversation_id") or None)

    @staticmethod
    def _unwrap(payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise AIBackendError(f"AI 后端响应格式异常：{type(payload).__name__}")
        if "code" in payload and "answer" not in payload:
            if payload.get("code") != 0:
                raise AIBackendError(payload.get("msg") or "AI 后端业务错误")
            data = payload.get("data")
            if not isinstance(data, dict):
                raise AIBackendError("AI 后端响应 data 字段格式异常")
            return data
        return payload
