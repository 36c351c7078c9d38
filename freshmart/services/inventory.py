"""
库存台账服务

库存只通过两条原子 UPDATE 修改：
- 扣减：UPDATE ... SET count = count - q WHERE id = ? AND count >= q
  条件不满足时影响行数为 0，据此判断库存不足。并发下单时这是唯一可靠的防线，
  下单前的可售检查只是提示性的。
- 恢复：UPDATE ... SET count = count + q

is_available 在同一条语句里联动：扣减到 0 时置为 False；
恢复前库存为 0（即因售罄而下架）时重新置为 True。
运营手动下架但仍有库存的商品，恢复库存不会自动上架。
"""
import logging

from sqlalchemy import case, update
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart.api.errors import InsufficientStock, ValidationError, product_not_found
from freshmart.models import Product, utc_now

logger = logging.getLogger(__name__)


class InventoryLedger:
    """商品库存台账（无状态，会话由调用方传入）"""

    async def decrement_stock(
        self, *, session: AsyncSession, product_id: int, quantity: int
    ) -> Product:
        """
        原子扣减库存

        Raises:
            ValidationError: quantity 不是正数
            NotFound: 商品不存在
            InsufficientStock: 库存不足（库存保持不变）
        """
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")

        remaining = Product.count_in_stock - quantity
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.count_in_stock >= quantity)
            .values(
                count_in_stock=remaining,
                is_available=case((remaining > 0, Product.is_available), else_=False),
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.exec(stmt)  # type: ignore[call-overload]
        # 影响 0 行时没有任何修改，直接提交也无副作用；回滚会让会话里已加载的对象过期
        await session.commit()

        if result.rowcount == 0:
            product = await session.get(Product, product_id)
            if product is None:
                raise product_not_found(product_id)
            logger.warning(
                f"Insufficient stock: product={product_id} "
                f"requested={quantity} available={product.count_in_stock}"
            )
            raise InsufficientStock(product_id, quantity)

        product = await session.get(Product, product_id, populate_existing=True)
        return product  # type: ignore[return-value]

    async def restore_stock(
        self, *, session: AsyncSession, product_id: int, quantity: int
    ) -> Product:
        """
        原子恢复库存（订单取消时调用）

        Raises:
            ValidationError: quantity 不是正数
            NotFound: 商品不存在
        """
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")

        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(
                count_in_stock=Product.count_in_stock + quantity,
                is_available=case(
                    (Product.count_in_stock <= 0, True), else_=Product.is_available
                ),
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.exec(stmt)  # type: ignore[call-overload]
        await session.commit()

        if result.rowcount == 0:
            raise product_not_found(product_id)
        product = await session.get(Product, product_id, populate_existing=True)
        return product  # type: ignore[return-value]
