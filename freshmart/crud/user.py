"""用户 CRUD 操作"""
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart.models import User, utc_now


async def get(*, session: AsyncSession, user_id: int) -> User | None:
    """根据 ID 查询用户"""
    return await session.get(User, user_id)


async def list_admins(*, session: AsyncSession) -> list[User]:
    """查询所有管理员（新订单通知的接收人）"""
    result = await session.exec(select(User).where(User.is_admin == True))  # noqa: E712
    return list(result.all())


async def attach_order(*, session: AsyncSession, user: User, order_id: int) -> User:
    """下单成功后清空购物车并追加订单引用"""
    user.cart_items = []
    user.order_ids = [*user.order_ids, order_id]
    user.updated_at = utc_now()
    session.add(user)
    await session.commit()
    return user
