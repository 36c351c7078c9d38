"""
枚举类型定义模块

定义订单、支付、通知相关的枚举类型。
所有枚举都继承自 str 和 Enum，既可以直接存库、序列化为字符串，又具有枚举的特性。
"""
from enum import Enum


class OrderStatus(str, Enum):
    """
    订单状态枚举

    正常流程：Pending -> Processing -> Out for Delivery -> Delivered
    Pending / Processing 状态下可以取消（Cancelled）。
    """
    pending = "Pending"
    processing = "Processing"
    out_for_delivery = "Out for Delivery"
    delivered = "Delivered"
    cancelled = "Cancelled"


class PaymentStatus(str, Enum):
    """
    支付状态枚举

    - pending: 待支付
    - processing: 处理中
    - paid: 已支付（只有该状态可以退款）
    - refunded: 已退款
    - failed: 支付失败
    """
    pending = "pending"
    processing = "processing"
    paid = "paid"
    refunded = "refunded"
    failed = "failed"


class NotificationEvent(str, Enum):
    """
    通知事件类型枚举

    订单生命周期写入队列的事件类型，由通知 worker 消费。
    """
    order_placed = "order_placed"
    admin_new_order = "admin_new_order"
    order_status_changed = "order_status_changed"


class OrderSort(str, Enum):
    """订单列表排序方式"""
    newest = "newest"
    oldest = "oldest"
    price = "price"
    price_desc = "price-desc"
