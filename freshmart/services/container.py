"""
服务装配

启动时按固定顺序显式构造所有服务，不使用模块级单例：
库存台账 -> 通知队列 -> 生命周期引擎 -> 支付服务 -> 通知分发器。
FastAPI 在 lifespan 中构造一次，挂到 app.state.services 上；worker 自己构造一份。
"""
from __future__ import annotations

from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart.core.config import Settings
from freshmart.integrations.expo_push import ExpoPushClient, PushTransport
from freshmart.integrations.paystack import PaymentGateway, PaystackClient
from freshmart.services.inventory import InventoryLedger
from freshmart.services.notifications import NotificationDispatcher, NotificationQueue
from freshmart.services.orders import OrderLifecycleEngine
from freshmart.services.payments import PaymentService
from freshmart.services.pricing import DeliveryFeeTable


@dataclass
class ServiceContainer:
    inventory: InventoryLedger
    notifications: NotificationQueue
    orders: OrderLifecycleEngine
    payments: PaymentService
    dispatcher: NotificationDispatcher


def build_container(
    settings: Settings,
    *,
    redis: Redis,
    session_factory: async_sessionmaker[AsyncSession],
    gateway: PaymentGateway | None = None,
    push: PushTransport | None = None,
) -> ServiceContainer:
    """
    构造服务容器

    gateway / push 为空时按配置创建 Paystack 与 Expo 客户端（测试时可注入替身）。
    """
    inventory = InventoryLedger()
    notifications = NotificationQueue(redis, stream=settings.NOTIFICATION_STREAM)
    orders = OrderLifecycleEngine(
        inventory=inventory,
        notifications=notifications,
        delivery_fees=DeliveryFeeTable.from_settings(settings),
    )
    payments = PaymentService(
        gateway=gateway
        or PaystackClient(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.PAYSTACK_TIMEOUT_SECONDS,
        ),
        engine=orders,
        currency=settings.PAYMENT_CURRENCY,
        verify_amount=settings.PAYMENT_VERIFY_AMOUNT,
    )
    dispatcher = NotificationDispatcher(
        session_factory=session_factory,
        realtime=redis,
        push=push
        or ExpoPushClient(
            url=settings.EXPO_PUSH_URL,
            access_token=settings.EXPO_ACCESS_TOKEN,
            timeout=settings.PUSH_TIMEOUT_SECONDS,
        ),
        channel_prefix=settings.NOTIFICATION_CHANNEL_PREFIX,
    )
    return ServiceContainer(
        inventory=inventory,
        notifications=notifications,
        orders=orders,
        payments=payments,
        dispatcher=dispatcher,
    )
