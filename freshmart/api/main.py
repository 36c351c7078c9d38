"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中。
这个 router 会被注册到主应用（freshmart/main.py）上。

路由模块说明：
- orders: 客户订单（下单、查询、取消）
- payments: 支付（生成参考号、校验）
- admin: 管理后台（订单状态、支付修正、退款）
- utils: 工具相关（健康检查等）
"""
from fastapi import APIRouter

from freshmart.api.routes import (
    admin,  # 管理后台路由
    orders,  # 订单路由
    payments,  # 支付路由
    utils,  # 工具路由
)

# 创建主 API 路由器
api_router = APIRouter()

# 注册所有业务路由模块
# 每个模块的路径前缀在各自的 router 中定义
api_router.include_router(orders.router)  # /orders/*
api_router.include_router(payments.router)  # /payments/*
api_router.include_router(admin.router)  # /admin/*
api_router.include_router(utils.router)  # /utils/*
