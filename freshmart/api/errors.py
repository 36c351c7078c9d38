"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器。

业务错误码格式：HTTP 状态码 * 1000 + 序号，例如 409203 表示订单已支付。
校验类与策略类错误都在任何写操作之前抛出，不会留下部分状态。
"""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    """
    应用自定义异常类

    包含：
    - code: 业务错误码（用于前端区分不同错误）
    - message: 错误消息
    - status_code: HTTP 状态码
    - data: 附加数据（如缺货商品列表、网关原始响应）

    使用示例：
        raise AppError(code=400101, message="No order items", status_code=400)
    """

    def __init__(
        self,
        *,
        code: int,
        message: str,
        status_code: int = 400,
        data: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.data = data


class ValidationError(AppError):
    """输入不完整或格式错误（不修改任何状态）"""

    def __init__(self, message: str, *, code: int = 400101, data: Any | None = None) -> None:
        super().__init__(code=code, message=message, status_code=400, data=data)


class NotFound(AppError):
    def __init__(self, message: str, *, code: int = 404001) -> None:
        super().__init__(code=code, message=message, status_code=404)


class Forbidden(AppError):
    """操作者无权访问该订单"""

    def __init__(self, message: str = "Not authorized to access this order") -> None:
        super().__init__(code=403201, message=message, status_code=403)


class OutOfStock(AppError):
    """
    下单时一个或多个商品不可售

    items 携带全部冲突商品（不只是第一个），方便客户端一次性给出替换建议。
    """

    def __init__(self, items: list[dict[str, Any]]) -> None:
        super().__init__(
            code=409201,
            message="Some items are out of stock",
            status_code=409,
            data={"out_of_stock_items": items},
        )
        self.items = items


class InsufficientStock(AppError):
    """原子扣减时库存不足（并发下单的最后一道防线）"""

    def __init__(self, product_id: int, requested: int) -> None:
        super().__init__(
            code=409202,
            message=f"Insufficient stock for product {product_id}",
            status_code=409,
            data={"product_id": product_id, "requested": requested},
        )
        self.product_id = product_id
        self.requested = requested


class AlreadyPaid(AppError):
    def __init__(self) -> None:
        super().__init__(code=409203, message="Order is already paid", status_code=409)


class AlreadyDelivered(AppError):
    def __init__(self) -> None:
        super().__init__(code=409204, message="Order is already delivered", status_code=409)


class NotCancellable(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(code=409205, message=message, status_code=409)


class InvalidTransition(AppError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            code=409206,
            message=f"Cannot change order status from {current} to {target}",
            status_code=409,
        )


class NotRefundable(AppError):
    def __init__(self) -> None:
        super().__init__(
            code=409301, message="Only paid payments can be refunded", status_code=409
        )


class GatewayError(AppError):
    """
    第三方支付网关失败（包括超时）

    原样向调用方传播，核心内部不做重试。
    """

    def __init__(
        self,
        message: str,
        *,
        code: int = 502301,
        status_code: int = 502,
        data: Any | None = None,
    ) -> None:
        super().__init__(code=code, message=message, status_code=status_code, data=data)


class PaymentDeclined(GatewayError):
    """网关返回非成功状态（或金额不符），data 中带原始响应用于排查"""

    def __init__(self, message: str, *, gateway_response: dict[str, Any] | None) -> None:
        super().__init__(
            message,
            code=402301,
            status_code=402,
            data={"gateway": gateway_response},
        )
        self.gateway_response = gateway_response


def order_not_found() -> NotFound:
    return NotFound("Order not found", code=404201)


def payment_not_found() -> NotFound:
    return NotFound("Payment not found", code=404301)


def product_not_found(product_id: int) -> NotFound:
    return NotFound(f"Product not found: {product_id}", code=404101)
