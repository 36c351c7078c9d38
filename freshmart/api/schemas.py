"""
API 请求/响应数据模型（Schema）

定义订单、支付接口的请求和响应数据结构。
使用 Pydantic 进行数据验证和序列化。

关键概念：
- 请求模型只做形状校验；业务规则（商品为空、地址不完整等）由生命周期引擎检查，
  返回业务错误码而不是 422
- 这些模型不是数据库表，只用于 API 数据交换
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal  # 精确数值类型，用于金额
from typing import Any  # 任意类型

from pydantic import BaseModel, Field  # Pydantic 核心类

from freshmart.enums import OrderStatus, PaymentStatus
from freshmart.models import Order, Payment
from freshmart.services.orders import CheckoutItem, build_timeline, order_number

# ============================================================
# 通用响应模型
# ============================================================


class TokenPayload(BaseModel):
    """
    JWT Token 载荷模型

    sub (subject) 存储用户 ID。
    """
    sub: str | None = None


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息（成功时为 "success"，错误时为错误描述）
    - data: 数据（成功时返回业务数据；部分错误带附加数据，如缺货列表）

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 409201, "message": "Some items are out of stock", "data": {"out_of_stock_items": [...]}}
    """
    code: int = 0  # 默认成功
    message: str = "success"  # 默认成功消息
    data: Any | None = None  # 业务数据（可选）


# ============================================================
# 订单
# ============================================================


class CheckoutRequest(BaseModel):
    """
    下单请求模型

    payment_id 为下单前已校验成功的支付记录。
    """
    order_items: list[CheckoutItem] = []
    shipping_address: dict[str, Any] | None = None
    payment_method: str | None = Field(default=None, max_length=32)
    delivery_schedule: dict[str, Any] | None = None
    delivery_note: str | None = Field(default=None, max_length=500)
    payment_id: int | None = None
    package: dict[str, Any] | None = None


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    notes: str = Field(default="", max_length=500)


class MarkPaidRequest(BaseModel):
    """管理员确认支付，payment_details 原样存到订单上"""
    payment_details: dict[str, Any] | None = None


class OrderItemData(BaseModel):
    name: str
    quantity: int
    unit: str
    image: str
    price: Decimal
    product: int


class StatusHistoryData(BaseModel):
    status: OrderStatus
    changed_at: datetime
    changed_by: str
    notes: str


class OrderData(BaseModel):
    """订单数据模型"""
    id: int
    order_number: str  # 展示编号（ID 后 8 位）
    user_id: int
    payment_id: int
    order_items: list[OrderItemData]
    shipping_address: dict[str, Any]
    delivery_schedule: dict[str, Any]
    package: dict[str, Any] | None = None
    delivery_note: str | None = None
    items_price: Decimal
    delivery_fee: Decimal
    total_price: Decimal
    payment_method: str | None = None
    payment_details: dict[str, Any] | None = None
    is_paid: bool
    paid_at: datetime | None = None
    is_delivered: bool
    delivered_at: datetime | None = None
    status: OrderStatus
    status_history: list[StatusHistoryData]
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    created_at: datetime
    updated_at: datetime
    timeline: list[dict[str, Any]] | None = None  # 仅详情接口返回

    @classmethod
    def from_order(cls, order: Order, *, with_timeline: bool = False) -> OrderData:
        return cls(
            id=order.id,
            order_number=order_number(order),
            user_id=order.user_id,
            payment_id=order.payment_id,
            order_items=[OrderItemData.model_validate(i.model_dump()) for i in order.items()],
            shipping_address=order.shipping_address,
            delivery_schedule=order.delivery_schedule,
            package=order.package,
            delivery_note=order.delivery_note,
            items_price=order.items_price,
            delivery_fee=order.delivery_fee,
            total_price=order.total_price,
            payment_method=order.payment_method,
            payment_details=order.payment_details,
            is_paid=order.is_paid,
            paid_at=order.paid_at,
            is_delivered=order.is_delivered,
            delivered_at=order.delivered_at,
            status=OrderStatus(order.status),
            status_history=[
                StatusHistoryData.model_validate(h.model_dump()) for h in order.history()
            ],
            cancelled_at=order.cancelled_at,
            cancellation_reason=order.cancellation_reason,
            cancelled_by=order.cancelled_by,
            created_at=order.created_at,
            updated_at=order.updated_at,
            timeline=build_timeline(order) if with_timeline else None,
        )


class OrdersData(BaseModel):
    """订单列表响应模型"""
    data: list[OrderData]
    count: int  # 总记录数
    page: int
    page_size: int


# ============================================================
# 支付
# ============================================================


class InitializePaymentData(BaseModel):
    reference: str


class VerifyPaymentRequest(BaseModel):
    """客户端声明的支付金额（会与网关金额核对）"""
    amount: Decimal = Field(ge=0)


class PaymentStatusUpdateRequest(BaseModel):
    status: PaymentStatus


class PaymentData(BaseModel):
    """支付记录数据模型"""
    id: int
    order_id: int | None = None
    user_id: int
    amount: Decimal
    currency: str
    status: PaymentStatus
    transaction_ref: str
    payment_method: str | None = None
    payment_channel: str | None = None
    mobile_money_number: str | None = None
    funded_at: datetime | None = None
    refunded_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_payment(cls, payment: Payment) -> PaymentData:
        return cls.model_validate(payment.model_dump())


class PaymentsData(BaseModel):
    data: list[PaymentData]
    count: int
    page: int
    page_size: int
