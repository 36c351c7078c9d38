"""CRUD 操作模块（库存写操作见 services.inventory）"""
from . import order, payment, product, user

__all__ = ["order", "payment", "product", "user"]
