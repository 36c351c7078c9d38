"""商品读取操作（库存写操作见 services.inventory）"""
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart.models import Product


async def get_many(*, session: AsyncSession, product_ids: list[int]) -> dict[int, Product]:
    """批量查询商品，返回 {id: Product}，不存在的 ID 不在结果中"""
    if not product_ids:
        return {}
    result = await session.exec(select(Product).where(col(Product.id).in_(set(product_ids))))
    return {p.id: p for p in result.all()}
