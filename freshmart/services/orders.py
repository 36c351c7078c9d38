"""
订单生命周期引擎

负责订单创建、支付确认、状态流转、取消以及对应的库存调整。

状态机：
    Pending -> Processing | Cancelled
    Processing -> Out for Delivery | Delivered | Cancelled
    Out for Delivery -> Delivered
    Delivered、Cancelled 为终态

执行顺序固定：校验 -> 计价 -> 持久化订单 -> 调整库存 -> 通知。
订单提交之后的步骤（扣库存、清购物车、回填支付、通知）失败只记录日志，
不会让本次操作返回失败。每个订单项记录库存是否扣减成功（stock_decremented），
取消时只恢复扣减过的数量。
每个变更操作都以当前状态做前置检查（AlreadyPaid / AlreadyDelivered /
InvalidTransition），不依赖加锁。
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart import crud
from freshmart.api.errors import (
    AlreadyDelivered,
    AlreadyPaid,
    AppError,
    Forbidden,
    InvalidTransition,
    NotCancellable,
    NotFound,
    OutOfStock,
    ValidationError,
    order_not_found,
)
from freshmart.core.snowflake import short_id
from freshmart.enums import OrderSort, OrderStatus, PaymentStatus
from freshmart.models import (
    SYSTEM_ACTOR,
    DeliverySchedule,
    Order,
    OrderItemSnapshot,
    PackageSnapshot,
    ShippingAddress,
    StatusHistoryEntry,
    utc_now,
)
from freshmart.services.inventory import InventoryLedger
from freshmart.services.notifications import NotificationQueue
from freshmart.services.pricing import DeliveryFeeTable, calculate_delivery_fee

logger = logging.getLogger(__name__)

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.pending: frozenset({OrderStatus.processing, OrderStatus.cancelled}),
    OrderStatus.processing: frozenset(
        {OrderStatus.out_for_delivery, OrderStatus.delivered, OrderStatus.cancelled}
    ),
    OrderStatus.out_for_delivery: frozenset({OrderStatus.delivered}),
    OrderStatus.delivered: frozenset(),
    OrderStatus.cancelled: frozenset(),
}

# 客户自助取消只允许这些状态（且未支付）
CUSTOMER_CANCELLABLE = frozenset({OrderStatus.pending, OrderStatus.processing})


class CheckoutItem(SQLModel):
    """下单商品（只接受商品 ID 和数量，价格等信息从商品表快照）"""
    product_id: int
    quantity: int


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in TRANSITIONS[OrderStatus(current)]


def order_number(order: Order) -> str:
    """订单展示编号（ID 后 8 位）"""
    return short_id(order.id)


def build_timeline(order: Order) -> list[dict[str, Any]]:
    """
    生成面向客户的订单时间线

    时间取自状态历史中第一次进入对应状态的记录。
    """
    reached: dict[OrderStatus, datetime] = {}
    for entry in order.history():
        reached.setdefault(OrderStatus(entry.status), entry.changed_at)

    status = OrderStatus(order.status)
    processing_done = status in (
        OrderStatus.processing,
        OrderStatus.out_for_delivery,
        OrderStatus.delivered,
    )
    out_done = status in (OrderStatus.out_for_delivery, OrderStatus.delivered)
    return [
        {
            "status": "Order Placed",
            "date": order.created_at,
            "completed": True,
            "description": "Order received and confirmed",
        },
        {
            "status": "Payment",
            "date": order.paid_at if order.is_paid else None,
            "completed": order.is_paid,
            "description": f"Paid via {order.payment_method}" if order.is_paid else "Awaiting payment",
        },
        {
            "status": "Processing",
            "date": reached.get(OrderStatus.processing) if processing_done else None,
            "completed": processing_done,
            "description": "Preparing your items",
        },
        {
            "status": "Out for Delivery",
            "date": reached.get(OrderStatus.out_for_delivery) if out_done else None,
            "completed": out_done,
            "description": "On the way to your address",
        },
        {
            "status": "Delivered",
            "date": order.delivered_at,
            "completed": order.is_delivered,
            "description": "Delivered successfully" if order.is_delivered else "Expected delivery",
        },
    ]


def _parse(model: type[SQLModel], raw: Any, label: str) -> Any:
    """把边界传入的字典解析为记录类型，缺字段时抛业务 ValidationError"""
    if raw is None:
        raise ValidationError(f"{label} is required")
    if isinstance(raw, model):
        return raw
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise ValidationError(f"Incomplete {label}", data={"fields": fields})


class OrderLifecycleEngine:
    """
    订单生命周期引擎

    依赖在启动时显式注入（见 services.container），不做全局查找：
    - inventory: 库存台账
    - notifications: 通知队列；为 None 时不发送通知
    - delivery_fees: 配送费率表
    """

    def __init__(
        self,
        *,
        inventory: InventoryLedger,
        notifications: NotificationQueue | None,
        delivery_fees: DeliveryFeeTable,
    ) -> None:
        self.inventory = inventory
        self.notifications = notifications
        self.delivery_fees = delivery_fees

    # ------------------------------------------------------------------
    # 提交后的尽力而为步骤
    # ------------------------------------------------------------------

    async def _after_commit(
        self,
        session: AsyncSession,
        order_id: int,
        action: str,
        step: Callable[[], Awaitable[Any]],
        *reload: SQLModel,
    ) -> bool:
        """
        执行订单提交之后的步骤，失败只记录日志

        数据库层异常会让会话进入失败状态，需要回滚并重新加载 reload 中的对象。
        """
        try:
            await step()
            return True
        except AppError as e:
            logger.error(f"Order {order_id}: {action} failed: {e.message}")
        except Exception:
            logger.exception(f"Order {order_id}: {action} failed")
            await session.rollback()
            for obj in reload:
                await session.refresh(obj)
        return False

    async def _notify(
        self, order_id: int, action: str, send: Callable[[NotificationQueue], Awaitable[Any]]
    ) -> None:
        if self.notifications is None:
            return
        try:
            await send(self.notifications)
        except Exception:
            logger.exception(f"Order {order_id}: {action} notification failed")

    # ------------------------------------------------------------------
    # 创建
    # ------------------------------------------------------------------

    async def create_order(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        items: list[CheckoutItem],
        shipping_address: ShippingAddress | dict[str, Any] | None,
        payment_method: str | None,
        delivery_schedule: DeliverySchedule | dict[str, Any] | None,
        payment_id: int | None,
        delivery_note: str | None = None,
        package: PackageSnapshot | dict[str, Any] | None = None,
    ) -> Order:
        """
        下单

        校验与策略检查全部发生在写库之前，失败时不留下任何状态。

        Raises:
            ValidationError: 商品为空、数量非法、地址或配送时间不完整、商品不存在、支付记录不可用
            OutOfStock: 有商品不可售（data 中列出全部不可售商品）
            NotFound: 用户不存在
        """
        if not items:
            raise ValidationError("No order items")
        if any(i.quantity <= 0 for i in items):
            raise ValidationError("Item quantity must be positive")
        address: ShippingAddress = _parse(ShippingAddress, shipping_address, "shipping address")
        schedule: DeliverySchedule = _parse(DeliverySchedule, delivery_schedule, "delivery schedule")
        package_snapshot: PackageSnapshot | None = (
            _parse(PackageSnapshot, package, "package") if package is not None else None
        )
        if payment_id is None:
            raise ValidationError("Payment is required")

        user = await crud.user.get(session=session, user_id=user_id)
        if user is None:
            raise NotFound("User not found", code=404401)

        products = await crud.product.get_many(
            session=session, product_ids=[i.product_id for i in items]
        )
        missing = [i.product_id for i in items if i.product_id not in products]
        if missing:
            raise ValidationError(
                f"Product not found: {', '.join(map(str, missing))}",
                code=400102,
                data={"missing_products": missing},
            )

        unavailable = [
            {
                "product": i.product_id,
                "name": products[i.product_id].name,
                "quantity": i.quantity,
                "available": products[i.product_id].count_in_stock,
            }
            for i in items
            if not products[i.product_id].is_available
        ]
        if unavailable:
            raise OutOfStock(unavailable)

        payment = await crud.payment.get(session=session, payment_id=payment_id)
        if (
            payment is None
            or payment.user_id != user_id
            or PaymentStatus(payment.status) != PaymentStatus.paid
        ):
            raise ValidationError("Payment is not a completed payment of this user", code=400103)
        if payment.order_id is not None:
            raise ValidationError("Payment is already linked to an order", code=400104)

        snapshots = [
            OrderItemSnapshot(
                name=products[i.product_id].name,
                quantity=i.quantity,
                unit=products[i.product_id].unit,
                image=products[i.product_id].image,
                price=products[i.product_id].price,
                product=i.product_id,
            )
            for i in items
        ]
        items_price = sum((s.line_total for s in snapshots), Decimal("0"))
        delivery_fee = calculate_delivery_fee(items_price, address.city, self.delivery_fees)

        now = utc_now()
        order = Order(
            user_id=user_id,
            payment_id=payment.id,
            order_items=[s.model_dump(mode="json") for s in snapshots],
            shipping_address=address.model_dump(mode="json"),
            delivery_schedule=schedule.model_dump(mode="json"),
            package=package_snapshot.model_dump(mode="json") if package_snapshot else None,
            delivery_note=delivery_note,
            items_price=items_price,
            delivery_fee=delivery_fee,
            total_price=items_price + delivery_fee,
            payment_method=payment_method or payment.payment_method,
            payment_details={
                "transaction_ref": payment.transaction_ref,
                "payment_channel": payment.payment_channel,
            },
            is_paid=True,
            paid_at=now,
            status=OrderStatus.processing,
        )
        order.append_history(
            StatusHistoryEntry(
                status=OrderStatus.processing,
                changed_at=now,
                changed_by=str(user_id),
                notes="Order placed",
            )
        )
        await crud.order.save(session=session, order=order)
        order_id = order.id
        logger.info(f"Order {order_id} created for user {user_id}, total {order.total_price}")

        # 以下步骤在订单提交之后执行，失败不影响下单结果
        await self._after_commit(
            session,
            order_id,
            "link payment",
            lambda: crud.payment.link_order(session=session, payment=payment, order_id=order_id),
            order,
            payment,
            user,
        )
        for index, snap in enumerate(snapshots):
            await self._after_commit(
                session,
                order_id,
                f"decrement stock of product {snap.product} by {snap.quantity}",
                lambda index=index, snap=snap: self._move_stock(
                    session, order, index, snap, decrement=True
                ),
                order,
                user,
            )
        await self._after_commit(
            session,
            order_id,
            "attach order to user",
            lambda: crud.user.attach_order(session=session, user=user, order_id=order_id),
            order,
        )

        await self._notify(
            order_id, "order placed", lambda q: q.notify_customer_order_placed(user, order)
        )
        await self._notify(
            order_id, "admin new order", lambda q: q.notify_admins_new_order(order, user)
        )
        return order

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def get_order_for_admin(self, session: AsyncSession, order_id: int) -> Order:
        order = await crud.order.get(session=session, order_id=order_id)
        if order is None:
            raise order_not_found()
        return order

    async def get_order(self, session: AsyncSession, order_id: int, requester_id: int) -> Order:
        """
        查询订单（仅限下单用户）

        Raises:
            NotFound: 订单不存在
            Forbidden: 不是自己的订单
        """
        order = await self.get_order_for_admin(session, order_id)
        if order.user_id != requester_id:
            raise Forbidden()
        return order

    async def list_my_orders(
        self,
        session: AsyncSession,
        user_id: int,
        *,
        status: OrderStatus | None = None,
        sort: OrderSort = OrderSort.newest,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Order], int]:
        return await crud.order.list_orders(
            session=session,
            user_id=user_id,
            status=status,
            sort=sort,
            offset=(page - 1) * page_size,
            limit=page_size,
        )

    async def list_orders(
        self,
        session: AsyncSession,
        *,
        status: OrderStatus | None = None,
        payment_method: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        sort: OrderSort = OrderSort.newest,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Order], int]:
        return await crud.order.list_orders(
            session=session,
            status=status,
            payment_method=payment_method,
            start=start,
            end=end,
            sort=sort,
            offset=(page - 1) * page_size,
            limit=page_size,
        )

    # ------------------------------------------------------------------
    # 状态流转
    # ------------------------------------------------------------------

    async def _move_stock(
        self,
        session: AsyncSession,
        order: Order,
        index: int,
        snap: OrderItemSnapshot,
        *,
        decrement: bool,
    ) -> None:
        """扣减或恢复一个订单项的库存，成功后在订单项上记录 stock_decremented"""
        if decrement:
            await self.inventory.decrement_stock(
                session=session, product_id=snap.product, quantity=snap.quantity
            )
        else:
            await self.inventory.restore_stock(
                session=session, product_id=snap.product, quantity=snap.quantity
            )
        items = list(order.order_items)
        items[index] = {**items[index], "stock_decremented": decrement}
        order.order_items = items
        await crud.order.save(session=session, order=order)

    async def _restore_items(self, session: AsyncSession, order: Order) -> None:
        """只恢复下单时确实扣减过的订单项"""
        order_id = order.id
        for index, snap in enumerate(order.items()):
            if not snap.stock_decremented:
                logger.info(
                    f"Order {order_id}: stock of product {snap.product} was never decremented, skip restore"
                )
                continue
            await self._after_commit(
                session,
                order_id,
                f"restore stock of product {snap.product} by {snap.quantity}",
                lambda index=index, snap=snap: self._move_stock(
                    session, order, index, snap, decrement=False
                ),
                order,
            )

    async def _transition(
        self,
        session: AsyncSession,
        order: Order,
        target: OrderStatus,
        *,
        actor: str,
        notes: str,
    ) -> Order:
        """执行一次已校验过的状态变更：写字段、追加历史、提交，然后调整库存并通知"""
        old_status = OrderStatus(order.status)
        now = utc_now()
        order.status = target
        if target == OrderStatus.delivered:
            order.is_delivered = True
            order.delivered_at = now
        elif target == OrderStatus.cancelled:
            order.cancelled_at = now
            order.cancelled_by = actor
            order.cancellation_reason = notes or None
        order.append_history(
            StatusHistoryEntry(status=target, changed_at=now, changed_by=actor, notes=notes)
        )
        await crud.order.save(session=session, order=order)
        logger.info(f"Order {order.id}: {old_status.value} -> {target.value} by {actor}")

        if target == OrderStatus.cancelled:
            await self._restore_items(session, order)

        await self._notify(
            order.id,
            "status changed",
            lambda q: q.notify_customer_status_changed(order, old_status),
        )
        return order

    async def update_order_status(
        self,
        session: AsyncSession,
        order_id: int,
        new_status: OrderStatus | str,
        *,
        actor_id: str,
        notes: str = "",
    ) -> Order:
        """
        管理员修改订单状态

        管理员是可信操作者：取消已支付订单不受客户取消规则限制。

        Raises:
            NotFound: 订单不存在
            AlreadyDelivered: 订单已送达时再次标记送达
            InvalidTransition: 状态机不允许的变更
        """
        order = await self.get_order_for_admin(session, order_id)
        target = OrderStatus(new_status)
        if target == OrderStatus.delivered and order.is_delivered:
            raise AlreadyDelivered()
        current = OrderStatus(order.status)
        if not can_transition(current, target):
            raise InvalidTransition(current.value, target.value)
        return await self._transition(session, order, target, actor=str(actor_id), notes=notes)

    async def cancel_order(
        self, session: AsyncSession, order_id: int, requester_id: int, reason: str | None = None
    ) -> Order:
        """
        客户取消订单

        只允许取消自己的、处于 Pending/Processing 且未支付的订单。

        Raises:
            NotFound / Forbidden / NotCancellable
        """
        order = await self.get_order(session, order_id, requester_id)
        current = OrderStatus(order.status)
        if current not in CUSTOMER_CANCELLABLE:
            raise NotCancellable(f"Order cannot be cancelled in status {current.value}")
        if order.is_paid:
            raise NotCancellable("Paid orders cannot be cancelled")
        return await self._transition(
            session,
            order,
            OrderStatus.cancelled,
            actor=str(requester_id),
            notes=reason or "Cancelled by customer",
        )

    async def mark_order_paid(
        self,
        session: AsyncSession,
        order_id: int,
        payment_details: dict[str, Any] | None = None,
        *,
        actor_id: str = SYSTEM_ACTOR,
    ) -> Order:
        """
        确认订单已支付

        Pending 订单同时推进到 Processing。

        Raises:
            NotFound: 订单不存在
            AlreadyPaid: 订单已支付（第二次调用不产生任何副作用）
            InvalidTransition: 订单已取消
        """
        order = await self.get_order_for_admin(session, order_id)
        if order.is_paid:
            raise AlreadyPaid()
        old_status = OrderStatus(order.status)
        if old_status == OrderStatus.cancelled:
            raise InvalidTransition(old_status.value, "Paid")

        now = utc_now()
        order.is_paid = True
        order.paid_at = now
        if payment_details is not None:
            order.payment_details = payment_details
        if old_status == OrderStatus.pending:
            order.status = OrderStatus.processing
        order.append_history(
            StatusHistoryEntry(
                status=OrderStatus(order.status),
                changed_at=now,
                changed_by=str(actor_id),
                notes="Payment confirmed",
            )
        )
        await crud.order.save(session=session, order=order)
        logger.info(f"Order {order.id} marked paid by {actor_id}")

        if OrderStatus(order.status) != old_status:
            await self._notify(
                order.id,
                "status changed",
                lambda q: q.notify_customer_status_changed(order, old_status),
            )
        return order

    async def mark_order_delivered(
        self, session: AsyncSession, order_id: int, *, actor_id: str = SYSTEM_ACTOR
    ) -> Order:
        """
        标记订单已送达

        Raises:
            NotFound / AlreadyDelivered / InvalidTransition
        """
        return await self.update_order_status(
            session, order_id, OrderStatus.delivered, actor_id=actor_id, notes="Marked as delivered"
        )
