"""
Expo 推送集成模块

通过 Expo Push HTTP API 向手机推送通知。推送是尽力而为的：
调用失败抛出 httpx 异常，由通知 worker 按接收人记录并跳过。
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class PushTransport(Protocol):
    async def send(self, token: str, title: str, message: str) -> None:
        ...


class ExpoPushClient:
    """Expo Push API 客户端"""

    def __init__(
        self,
        *,
        url: str,
        access_token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._access_token = access_token
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def send(self, token: str, title: str, message: str) -> None:
        """
        推送一条通知

        Args:
            token: Expo push token（ExponentPushToken[...]）
            title: 标题
            message: 正文

        Raises:
            httpx.HTTPError: 网络错误或非 2xx 响应
        """
        payload: dict[str, Any] = {
            "to": token,
            "sound": "default",
            "title": title,
            "body": message,
        }
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            r = await client.post(self._url, json=payload, headers=self._headers())
            r.raise_for_status()

        # Expo 对单条消息的失败放在 data.status 里返回 200
        data = r.json().get("data")
        if isinstance(data, dict) and data.get("status") == "error":
            logger.warning(f"Expo push rejected for {token}: {data.get('message')}")
