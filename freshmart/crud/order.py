"""订单 CRUD 操作"""
from datetime import datetime

from sqlmodel import col, func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart.enums import OrderSort, OrderStatus
from freshmart.models import Order, utc_now


async def get(*, session: AsyncSession, order_id: int) -> Order | None:
    return await session.get(Order, order_id)


async def save(*, session: AsyncSession, order: Order) -> Order:
    """持久化订单（新建或状态变更），提交后订单即为持久状态"""
    order.updated_at = utc_now()
    session.add(order)
    await session.commit()
    return order


_SORTS = {
    OrderSort.newest: col(Order.created_at).desc(),
    OrderSort.oldest: col(Order.created_at).asc(),
    OrderSort.price: col(Order.total_price).asc(),
    OrderSort.price_desc: col(Order.total_price).desc(),
}


async def list_orders(
    *,
    session: AsyncSession,
    user_id: int | None = None,
    status: OrderStatus | None = None,
    payment_method: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    sort: OrderSort = OrderSort.newest,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Order], int]:
    """分页查询订单，返回 (列表, 总数)"""
    conditions = []
    if user_id is not None:
        conditions.append(Order.user_id == user_id)
    if status is not None:
        conditions.append(Order.status == status.value)
    if payment_method:
        conditions.append(Order.payment_method == payment_method)
    if start is not None:
        conditions.append(col(Order.created_at) >= start)
    if end is not None:
        conditions.append(col(Order.created_at) <= end)

    count = (
        await session.exec(select(func.count()).select_from(Order).where(*conditions))
    ).one()
    rows = await session.exec(
        select(Order).where(*conditions).order_by(_SORTS[sort]).offset(offset).limit(limit)
    )
    return list(rows.all()), count
