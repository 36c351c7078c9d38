"""
Paystack 支付网关集成模块

封装 Paystack 的两个接口：
- 交易校验：GET /transaction/verify/{reference}
- 退款：POST /refund

两个调用都是第三方 HTTP 请求，都可能失败或超时，统一使用有界超时。
网关失败（网络错误、超时、5xx、无法解析的响应）抛出 GatewayError，
不做重试，由调用方决定是否重试。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass  # 数据类
from typing import Any, Protocol

import httpx  # HTTP 客户端

from freshmart.api.errors import GatewayError  # 自定义异常

logger = logging.getLogger(__name__)

# API 路径常量
_VERIFY_PATH = "/transaction/verify/{reference}"  # 交易校验接口
_REFUND_PATH = "/refund"  # 退款接口


@dataclass(frozen=True)
class GatewayTransaction:
    """
    交易校验结果数据类

    amount 为网关上报的金额，单位是最小货币单位（如 pesewas，1 GHS = 100）。
    """
    reference: str  # 交易参考号
    status: str  # 网关交易状态（success / failed / abandoned ...）
    amount: int | None = None  # 网关金额（最小货币单位）
    currency: str | None = None  # 币种
    channel: str | None = None  # 支付渠道（mobile_money / card ...）
    bank: str | None = None  # 发卡行或移动钱包运营商
    mobile_money_number: str | None = None  # 移动钱包号码
    raw: dict[str, Any] | None = None  # 原始响应数据

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class GatewayRefund:
    """退款结果数据类"""
    reference: str
    status: str  # 退款状态（pending / processed ...）
    raw: dict[str, Any] | None = None


class PaymentGateway(Protocol):
    """支付网关端口（生命周期引擎和支付服务只依赖这个接口）"""

    async def verify_transaction(self, reference: str) -> GatewayTransaction:
        ...

    async def refund(self, reference: str) -> GatewayRefund:
        ...


class PaystackClient:
    """
    Paystack API 客户端

    transport 参数用于测试时注入 httpx.MockTransport。
    """

    def __init__(
        self,
        *,
        secret_key: str | None,
        base_url: str = "https://api.paystack.co",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        """
        构建请求头

        Raises:
            GatewayError: 当网关密钥未配置时抛出 500301 错误
        """
        if not self._secret_key:
            raise GatewayError(
                "PAYSTACK_SECRET_KEY not configured", code=500301, status_code=500
            )
        return {
            "Authorization": f"Bearer {self._secret_key}",  # Bearer token 认证
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        )

    async def _request(
        self, method: str, path: str, *, json: dict[str, Any] | None = None
    ) -> tuple[int, dict[str, Any]]:
        """发送请求并解析 JSON，返回 (HTTP 状态码, 响应体)"""
        headers = self._headers()
        try:
            async with self._client() as client:
                r = await client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"Paystack {method} {path} timed out: {e}")
            raise GatewayError("Payment gateway timed out", code=504301, status_code=504)
        except httpx.HTTPError as e:
            logger.warning(f"Paystack {method} {path} failed: {e}")
            raise GatewayError(f"Payment gateway error: {e}")

        if r.status_code >= 500:
            logger.warning(f"Paystack {method} {path} returned {r.status_code}")
            raise GatewayError(f"Payment gateway returned {r.status_code}")
        try:
            body = r.json()
        except ValueError:
            raise GatewayError("Payment gateway invalid response", code=502302)
        if not isinstance(body, dict):
            raise GatewayError("Payment gateway invalid response", code=502302)
        return r.status_code, body

    async def verify_transaction(self, reference: str) -> GatewayTransaction:
        """
        校验交易

        网关明确拒绝（4xx，如参考号不存在）时返回 status="failed" 的结果并附带原始响应，
        由支付服务决定如何向调用方报告。

        Args:
            reference: 交易参考号

        Returns:
            GatewayTransaction: 校验结果

        Raises:
            GatewayError: 网关不可用或响应无法解析
        """
        status_code, body = await self._request(
            "GET", _VERIFY_PATH.format(reference=reference)
        )
        data = body.get("data")
        if status_code >= 400 or not isinstance(data, dict):
            return GatewayTransaction(reference=reference, status="failed", raw=body)

        authorization = data.get("authorization") or {}
        amount = data.get("amount")
        return GatewayTransaction(
            reference=reference,
            status=str(data.get("status") or "failed"),
            amount=int(amount) if amount is not None else None,
            currency=data.get("currency"),
            channel=data.get("channel"),
            bank=authorization.get("bank"),
            mobile_money_number=authorization.get("mobile_money_number"),
            raw=body,
        )

    async def refund(self, reference: str) -> GatewayRefund:
        """
        发起退款

        只要网关没有明确接受退款就抛异常，调用方不得修改本地支付状态。

        Raises:
            GatewayError: 网关不可用、超时或拒绝退款
        """
        status_code, body = await self._request(
            "POST", _REFUND_PATH, json={"transaction": reference}
        )
        if status_code >= 400 or not body.get("status"):
            logger.warning(f"Paystack refund rejected for {reference}: {body.get('message')}")
            raise GatewayError(
                f"Refund rejected: {body.get('message') or 'unknown error'}",
                data={"gateway": body},
            )
        data = body.get("data") or {}
        return GatewayRefund(
            reference=reference, status=str(data.get("status") or "pending"), raw=body
        )
