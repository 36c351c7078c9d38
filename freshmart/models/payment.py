"""
支付模型模块

支付记录与订单生命周期相互独立：先在网关校验成功后创建支付记录，
下单成功后再回填 order_id。支付记录不做物理删除。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from freshmart.core.snowflake import generate_id
from freshmart.enums import PaymentStatus

from .base import utc_now


class Payment(SQLModel, table=True):
    """
    支付记录模型

    字段说明：
    - order_id: 关联订单（创建时可为空，下单后回填）
    - user_id: 付款用户
    - amount / currency: 金额与币种（默认 GHS）
    - status: pending / processing / paid / refunded / failed
    - transaction_ref: 网关交易参考号（每次支付尝试唯一，用于去重）
    - payment_method: 网关返回的支付渠道（mobile_money / card ...）
    - payment_channel: 发卡行或移动钱包运营商
    - mobile_money_number: 移动钱包号码
    - funded_at / refunded_at: 到账与退款时间
    """
    __tablename__ = "payments"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_id: int | None = Field(
        default=None,
        sa_column=Column(BigInteger, index=True, nullable=True),  # 弱引用，不建外键
    )
    user_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("users.id"), index=True, nullable=False)
    )

    amount: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    currency: str = Field(default="GHS", max_length=8)
    status: PaymentStatus = Field(
        default=PaymentStatus.pending,
        sa_column=Column(String(16), index=True, nullable=False),
    )

    transaction_ref: str = Field(
        sa_column=Column(String(128), unique=True, index=True, nullable=False)
    )
    payment_method: str | None = Field(default=None, max_length=32)
    payment_channel: str | None = Field(default=None, max_length=64)
    mobile_money_number: str | None = Field(default=None, max_length=32)

    funded_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    refunded_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), index=True, nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
