"""
订单通知服务

分成两部分：
- NotificationQueue: 生产者。生命周期引擎在订单变更后调用，只做一次 XADD，
  把事件写进 Redis Stream，不等待任何投递结果。
- NotificationDispatcher: 消费者。通知 worker 读取事件后调用，解析接收人、
  渲染文案、写通知记录、发布到实时频道、推送到手机。

单个接收人投递失败只记录日志，不影响其他接收人。
"""
from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart import crud
from freshmart.core.snowflake import short_id
from freshmart.enums import NotificationEvent, OrderStatus
from freshmart.integrations.expo_push import PushTransport
from freshmart.models import Notification, Order, User

logger = logging.getLogger(__name__)

ADMIN_TITLE_PREFIX = "📢"

STATUS_MESSAGES: dict[OrderStatus, str] = {
    OrderStatus.pending: "🕒 Your order is pending confirmation.",
    OrderStatus.processing: "👨‍🍳 Your order is being prepared.",
    OrderStatus.out_for_delivery: "🚚 Your order is on the way!",
    OrderStatus.delivered: "✅ Your order has been delivered. Enjoy!",
    OrderStatus.cancelled: "❌ Your order has been cancelled.",
}


def format_admin_title(title: str) -> str:
    """管理员通知标题统一加 📢 前缀（已有则不重复）"""
    return title if title.startswith(ADMIN_TITLE_PREFIX) else f"{ADMIN_TITLE_PREFIX} {title}"


def admin_new_order_message(
    *, role: str | None, customer_name: str, customer_phone: str, total: Decimal, order_id: int
) -> str:
    """按管理员角色选择新订单文案"""
    templates = {
        "superadmin": (
            f"New order placed by {customer_name} ({customer_phone}). Total Ghc{total}"
        ),
        "manager": f"New customer order received. Order ID: {short_id(order_id)}",
    }
    return templates.get(role or "", "New order received.")


def status_changed_message(order_id: int, status: OrderStatus) -> str:
    return f"Order #{short_id(order_id)}\n\n{STATUS_MESSAGES[status]}"


class NotificationQueue:
    """
    通知事件生产者

    每个方法只向 Stream 追加一条事件（字段全部为字符串）。
    Redis 不可用时抛出 redis 异常，由生命周期引擎捕获并记录。
    """

    def __init__(self, redis: Redis, *, stream: str, maxlen: int | None = 100_000) -> None:
        self._redis = redis
        self._stream = stream
        self._maxlen = maxlen

    async def _enqueue(self, event: NotificationEvent, **fields: Any) -> str:
        payload = {"event": event.value, **{k: str(v) for k, v in fields.items()}}
        message_id = await self._redis.xadd(
            self._stream, payload, maxlen=self._maxlen, approximate=True
        )
        logger.info(f"Enqueued {event.value} for order {fields.get('order_id')}: {message_id}")
        return message_id

    async def notify_customer_order_placed(self, user: User, order: Order) -> str:
        return await self._enqueue(
            NotificationEvent.order_placed, order_id=order.id, user_id=user.id
        )

    async def notify_admins_new_order(self, order: Order, customer: User) -> str:
        return await self._enqueue(
            NotificationEvent.admin_new_order, order_id=order.id, customer_id=customer.id
        )

    async def notify_customer_status_changed(self, order: Order, old_status: OrderStatus) -> str:
        return await self._enqueue(
            NotificationEvent.order_status_changed,
            order_id=order.id,
            user_id=order.user_id,
            status=OrderStatus(order.status).value,
            old_status=OrderStatus(old_status).value,
        )


@dataclass(frozen=True)
class Recipient:
    """投递对象（在投递前从 User 复制，避免会话回滚后访问过期对象）"""
    user_id: int
    push_token: str | None
    title: str
    message: str


class NotificationDispatcher:
    """
    通知事件消费者

    依赖：
    - session_factory: 数据库会话工厂（写通知记录、查询订单与接收人）
    - realtime: Redis 客户端（按用户频道 PUBLISH 通知）
    - push: 推送通道（可为空，表示不推送）
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession] | Callable[[], Any],
        realtime: Redis,
        push: PushTransport | None,
        channel_prefix: str,
    ) -> None:
        self._session_factory = session_factory
        self._realtime = realtime
        self._push = push
        self._channel_prefix = channel_prefix

    async def dispatch(self, fields: dict[str, str]) -> int:
        """
        处理一条事件

        Args:
            fields: Stream 消息字段

        Returns:
            int: 成功写入的通知条数
        """
        event = fields.get("event")
        try:
            order_id = int(fields["order_id"])
        except (KeyError, ValueError):
            logger.error(f"Malformed notification event: {fields}")
            return 0

        async with self._session_factory() as session:
            order = await crud.order.get(session=session, order_id=order_id)
            if order is None:
                logger.error(f"Notification for missing order {order_id} dropped")
                return 0

            if event == NotificationEvent.order_placed.value:
                recipients = await self._order_placed(session, order)
            elif event == NotificationEvent.admin_new_order.value:
                recipients = await self._admin_new_order(session, order, fields)
            elif event == NotificationEvent.order_status_changed.value:
                recipients = await self._status_changed(session, order, fields)
            else:
                logger.warning(f"Unknown notification event {event!r} for order {order_id}")
                return 0

            delivered = 0
            for recipient in recipients:
                if await self._deliver(session, recipient):
                    delivered += 1
            return delivered

    async def _order_placed(self, session: AsyncSession, order: Order) -> list[Recipient]:
        user = await crud.user.get(session=session, user_id=order.user_id)
        if user is None:
            return []
        return [
            Recipient(
                user_id=user.id,
                push_token=user.push_token,
                title="🛒 Order Confirmed",
                message=(
                    f"Hi {user.first_name}, your order #{short_id(order.id)} "
                    "has been received and is being processed."
                ),
            )
        ]

    async def _admin_new_order(
        self, session: AsyncSession, order: Order, fields: dict[str, str]
    ) -> list[Recipient]:
        customer_id = int(fields.get("customer_id") or order.user_id)
        customer = await crud.user.get(session=session, user_id=customer_id)
        customer_name = customer.first_name if customer else "Unknown"
        customer_phone = customer.phone if customer else "N/A"

        admins = await crud.user.list_admins(session=session)
        if not admins:
            logger.info(f"No admins to notify for order {order.id}")
        return [
            Recipient(
                user_id=admin.id,
                push_token=admin.push_token,
                title=format_admin_title("New Order"),
                message=admin_new_order_message(
                    role=admin.role,
                    customer_name=customer_name,
                    customer_phone=customer_phone,
                    total=order.total_price,
                    order_id=order.id,
                ),
            )
            for admin in admins
        ]

    async def _status_changed(
        self, session: AsyncSession, order: Order, fields: dict[str, str]
    ) -> list[Recipient]:
        user = await crud.user.get(session=session, user_id=order.user_id)
        if user is None:
            return []
        # 使用事件里记录的状态，worker 延迟消费时也能描述当时的变更
        status = OrderStatus(fields.get("status") or order.status)
        return [
            Recipient(
                user_id=user.id,
                push_token=user.push_token,
                title="📦 Order Status Updated",
                message=status_changed_message(order.id, status),
            )
        ]

    async def _deliver(self, session: AsyncSession, recipient: Recipient) -> bool:
        """写通知记录 -> 发布实时频道 -> 推送；记录写入失败视为投递失败"""
        try:
            notification = Notification(
                user_id=recipient.user_id, title=recipient.title, message=recipient.message
            )
            session.add(notification)
            await session.commit()
        except Exception:
            logger.exception(f"Failed to store notification for user {recipient.user_id}")
            await session.rollback()
            return False

        payload = json.dumps(notification.model_dump(mode="json"), ensure_ascii=False)
        try:
            await self._realtime.publish(
                f"{self._channel_prefix}:{recipient.user_id}", payload
            )
        except Exception:
            logger.exception(f"Realtime publish failed for user {recipient.user_id}")

        if self._push is not None and recipient.push_token:
            try:
                await self._push.send(recipient.push_token, recipient.title, recipient.message)
            except Exception:
                logger.exception(f"Push failed for user {recipient.user_id}")
        return True
