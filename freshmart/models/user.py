"""
用户模型模块

订单核心只读取用户的身份、联系方式和推送 token，
并在下单成功后清空购物车、追加订单引用。
"""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, DateTime, String
from sqlmodel import Field, SQLModel

from freshmart.core.snowflake import generate_id

from .base import utc_now


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - id: 主键，Snowflake 生成
    - first_name / last_name / email / phone: 基本信息
    - is_admin: 是否为管理员（接收新订单通知、访问管理接口）
    - role: 管理员角色（superadmin / manager），决定新订单通知的文案
    - push_token: Expo 推送 token（可选）
    - cart_items: 购物车（下单成功后清空）
    - order_ids: 历史订单引用（下单成功后追加）
    """
    __tablename__ = "users"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    first_name: str = Field(max_length=64)
    last_name: str = Field(default="", max_length=64)
    email: str | None = Field(
        default=None, sa_column=Column(String(255), unique=True, index=True, nullable=True)
    )
    phone: str = Field(max_length=32)

    is_admin: bool = Field(default=False)
    role: str | None = Field(default=None, max_length=32)
    push_token: str | None = Field(default=None, max_length=255)

    cart_items: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    order_ids: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
