"""
数据库模型定义模块

模型按功能拆分：
- user.py: 用户（身份、推送 token、购物车、订单引用）
- product.py: 商品与库存投影
- payment.py: 支付记录
- order.py: 订单聚合及其快照类型
- notification.py: 用户通知记录
"""
from sqlmodel import SQLModel

from .base import utc_now
from .notification import Notification
from .order import (
    SYSTEM_ACTOR,
    DeliverySchedule,
    Order,
    OrderItemSnapshot,
    PackageSnapshot,
    ShippingAddress,
    StatusHistoryEntry,
)
from .payment import Payment
from .product import Product
from .user import User

__all__ = [
    "SQLModel",
    "utc_now",
    "SYSTEM_ACTOR",
    "User",
    "Product",
    "Payment",
    "Order",
    "OrderItemSnapshot",
    "ShippingAddress",
    "DeliverySchedule",
    "PackageSnapshot",
    "StatusHistoryEntry",
    "Notification",
]
