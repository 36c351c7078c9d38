"""支付记录 CRUD 操作"""
from datetime import datetime

from sqlmodel import col, func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart.enums import PaymentStatus
from freshmart.models import Payment, utc_now


async def get(*, session: AsyncSession, payment_id: int) -> Payment | None:
    return await session.get(Payment, payment_id)


async def get_by_reference(*, session: AsyncSession, reference: str) -> Payment | None:
    """根据网关交易参考号查询支付记录"""
    result = await session.exec(select(Payment).where(Payment.transaction_ref == reference))
    return result.first()


async def create(*, session: AsyncSession, payment: Payment) -> Payment:
    session.add(payment)
    await session.commit()
    return payment


async def set_status(
    *, session: AsyncSession, payment: Payment, status: PaymentStatus
) -> Payment:
    """更新支付状态，退款时记录退款时间"""
    now = utc_now()
    payment.status = status
    payment.updated_at = now
    if status == PaymentStatus.refunded:
        payment.refunded_at = now
    session.add(payment)
    await session.commit()
    return payment


async def link_order(*, session: AsyncSession, payment: Payment, order_id: int) -> Payment:
    """下单成功后回填订单 ID"""
    payment.order_id = order_id
    payment.updated_at = utc_now()
    session.add(payment)
    await session.commit()
    return payment


async def list_payments(
    *,
    session: AsyncSession,
    status: PaymentStatus | None = None,
    payment_method: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Payment], int]:
    """分页查询支付记录（按创建时间倒序），返回 (列表, 总数)"""
    conditions = []
    if status is not None:
        conditions.append(Payment.status == status.value)
    if payment_method:
        conditions.append(Payment.payment_method == payment_method)
    if start is not None:
        conditions.append(col(Payment.created_at) >= start)
    if end is not None:
        conditions.append(col(Payment.created_at) <= end)

    count = (
        await session.exec(select(func.count()).select_from(Payment).where(*conditions))
    ).one()
    rows = await session.exec(
        select(Payment)
        .where(*conditions)
        .order_by(col(Payment.created_at).desc())
        .offset(offset)
        .limit(limit)
    )
    return list(rows.all()), count
