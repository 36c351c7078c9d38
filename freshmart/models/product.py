"""
商品模型模块

订单核心只使用商品的价格/名称/单位/图片（下单快照）以及库存投影：
count_in_stock 与 is_available。库存只能通过 InventoryLedger 的原子更新修改。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, Numeric, String
from sqlmodel import Field, SQLModel

from freshmart.core.snowflake import generate_id

from .base import utc_now


class Product(SQLModel, table=True):
    """
    商品模型

    字段说明：
    - price: 当前售价（下单时被快照到订单项，之后不再回读）
    - unit: 计量单位（kg / bunch / olonka ...）
    - count_in_stock: 库存数量，数据库约束保证不小于 0
    - is_available: 是否可售；库存扣减到 0 时自动置为 False
    """
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("count_in_stock >= 0", name="ck_products_count_in_stock_non_negative"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    name: str = Field(max_length=128)
    slug: str = Field(sa_column=Column(String(160), unique=True, index=True, nullable=False))
    category: str = Field(default="other", max_length=32)
    image: str = Field(default="", max_length=1024)
    price: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(10, 2), nullable=False),
    )
    unit: str = Field(default="piece", max_length=16)
    description: str | None = Field(default=None)

    count_in_stock: int = Field(default=0)
    is_available: bool = Field(default=True)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
