"""配送费计算（按城市的固定费率表）"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from freshmart.core.config import Settings


@dataclass(frozen=True)
class DeliveryFeeTable:
    """配送费率表，城市名统一为小写"""
    free_threshold: Decimal
    small_order_threshold: Decimal
    small_order_surcharge: Decimal
    default_fee: Decimal
    city_fees: dict[str, Decimal] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> DeliveryFeeTable:
        return cls(
            free_threshold=settings.DELIVERY_FREE_THRESHOLD,
            small_order_threshold=settings.DELIVERY_SMALL_ORDER_THRESHOLD,
            small_order_surcharge=settings.DELIVERY_SMALL_ORDER_SURCHARGE,
            default_fee=settings.DELIVERY_DEFAULT_FEE,
            city_fees={k.strip().lower(): v for k, v in settings.DELIVERY_CITY_FEES.items()},
        )


def calculate_delivery_fee(items_price: Decimal, city: str, table: DeliveryFeeTable) -> Decimal:
    """
    计算配送费

    规则：
    - 商品金额 > 免运费阈值：0
    - 否则按城市收取基础费（城市名忽略大小写和首尾空格，未知城市用默认费率）
    - 商品金额 < 小额订单阈值时再加附加费

    Args:
        items_price: 商品总金额
        city: 收货城市
        table: 费率表

    Returns:
        Decimal: 配送费
    """
    if items_price > table.free_threshold:
        return Decimal("0")

    fee = table.city_fees.get(city.strip().lower(), table.default_fee)
    if items_price < table.small_order_threshold:
        fee += table.small_order_surcharge
    return fee
