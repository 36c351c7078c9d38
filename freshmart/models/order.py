"""
订单模型模块

订单是聚合根：购买项快照、价格、收货信息和状态历史都属于订单本身，
以 JSON 列形式存放在订单行内，不被其他实体修改。

不变量：
- total_price == items_price + delivery_fee，只在创建时计算一次
- order_items 是下单瞬间的商品快照，之后不再从商品表回读
- status_history 只追加，不修改、不删除
- 订单不做物理删除（财务记录）
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import field_validator
from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from freshmart.core.snowflake import generate_id
from freshmart.enums import OrderStatus

from .base import utc_now

SYSTEM_ACTOR = "system"


class OrderItemSnapshot(SQLModel):
    """订单项快照（下单时从商品复制）"""
    name: str
    quantity: int = Field(gt=0)
    unit: str
    image: str = ""
    price: Decimal = Field(ge=0)
    product: int  # 商品 ID
    stock_decremented: bool = False  # 库存是否已为本项扣减（取消时只恢复扣减过的）

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class ShippingAddress(SQLModel):
    """收货地址，region 以外均为必填"""
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    region: str = ""
    nearest_landmark: str | None = None
    phone: str = Field(min_length=1)

    @field_validator("address", "city", "phone")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class DeliverySchedule(SQLModel):
    """期望配送时间（如 saturday / afternoon）"""
    preferred_day: str = Field(min_length=1)
    preferred_time: str = Field(min_length=1)


class PackageSnapshot(SQLModel):
    """套餐信息快照（从套餐下单时携带）"""
    id: int | None = None
    name: str | None = None
    base_price: Decimal | None = None
    value_price: Decimal | None = None


class StatusHistoryEntry(SQLModel):
    """状态变更记录（审计轨迹）"""
    status: OrderStatus
    changed_at: datetime
    changed_by: str  # 操作者 ID 或 "system"
    notes: str = ""


class Order(SQLModel, table=True):
    """
    订单模型

    字段说明：
    - user_id: 下单用户（创建后不可变）
    - payment_id: 关联的支付记录（下单前已完成支付校验）
    - order_items / shipping_address / delivery_schedule / package: JSON 快照
    - items_price / delivery_fee / total_price: 价格（Decimal）
    - is_paid / paid_at, is_delivered / delivered_at: 支付与配送标记
    - status / status_history: 当前状态与变更历史
    - cancelled_at / cancellation_reason / cancelled_by: 仅在取消时设置
    """
    __tablename__ = "orders"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("users.id"), index=True, nullable=False)
    )
    payment_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("payments.id"), index=True, nullable=False)
    )

    order_items: list[dict[str, Any]] = Field(sa_column=Column(JSON, nullable=False))
    shipping_address: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    delivery_schedule: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    package: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    delivery_note: str | None = Field(default=None)

    items_price: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))
    delivery_fee: Decimal = Field(
        default=Decimal("0.00"), sa_column=Column(Numeric(10, 2), nullable=False)
    )
    total_price: Decimal = Field(sa_column=Column(Numeric(10, 2), nullable=False))

    payment_method: str | None = Field(default=None, max_length=32)
    payment_details: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    is_paid: bool = Field(default=False)
    paid_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    is_delivered: bool = Field(default=False)
    delivered_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    status: OrderStatus = Field(
        default=OrderStatus.pending,
        sa_column=Column(String(32), index=True, nullable=False),
    )
    status_history: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )

    cancelled_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    cancellation_reason: str | None = Field(default=None)
    cancelled_by: str | None = Field(default=None, max_length=64)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), index=True, nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    def items(self) -> list[OrderItemSnapshot]:
        return [OrderItemSnapshot.model_validate(i) for i in self.order_items]

    def history(self) -> list[StatusHistoryEntry]:
        return [StatusHistoryEntry.model_validate(h) for h in self.status_history]

    def address(self) -> ShippingAddress:
        return ShippingAddress.model_validate(self.shipping_address)

    def schedule(self) -> DeliverySchedule:
        return DeliverySchedule.model_validate(self.delivery_schedule)

    def append_history(self, entry: StatusHistoryEntry) -> None:
        """追加一条状态历史（重新赋值列表，JSON 列不追踪原地修改）"""
        self.status_history = [*self.status_history, entry.model_dump(mode="json")]
