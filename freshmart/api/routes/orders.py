"""
订单路由模块

处理客户侧订单 API：
- 下单
- 查询自己的订单列表（状态过滤、排序、分页）
- 查询订单详情（含时间线）
- 取消订单

路由只做参数解析和响应封装，业务规则都在生命周期引擎中。
"""
from __future__ import annotations

from fastapi import APIRouter, Query  # FastAPI 路由和查询参数

from freshmart.api.deps import CurrentUser, ServicesDep, SessionDep  # 依赖注入
from freshmart.api.schemas import (
    ApiEnvelope,
    CancelRequest,
    CheckoutRequest,
    OrderData,
    OrdersData,
)
from freshmart.enums import OrderSort, OrderStatus

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=ApiEnvelope, status_code=201)
async def create_order(
    session: SessionDep, services: ServicesDep, current_user: CurrentUser, body: CheckoutRequest
) -> ApiEnvelope:
    """
    下单

    请求路径: POST /api/v1/orders

    Raises:
        AppError: 400101 输入不完整 / 409201 商品缺货（data 中列出全部缺货商品）
    """
    order = await services.orders.create_order(
        session,
        user_id=current_user.id,
        items=body.order_items,
        shipping_address=body.shipping_address,
        payment_method=body.payment_method,
        delivery_schedule=body.delivery_schedule,
        payment_id=body.payment_id,
        delivery_note=body.delivery_note,
        package=body.package,
    )
    return ApiEnvelope(data=OrderData.from_order(order))


@router.get("/mine", response_model=ApiEnvelope)
async def list_my_orders(
    session: SessionDep,
    services: ServicesDep,
    current_user: CurrentUser,
    status: OrderStatus | None = None,
    sort: OrderSort = OrderSort.newest,
    page: int = Query(default=1, ge=1),  # 页码，从 1 开始
    page_size: int = Query(default=20, ge=1, le=100),  # 每页数量，1-100
) -> ApiEnvelope:
    """
    获取自己的订单列表（分页）

    请求路径: GET /api/v1/orders/mine?status=Processing&sort=newest&page=1
    """
    rows, count = await services.orders.list_my_orders(
        session, current_user.id, status=status, sort=sort, page=page, page_size=page_size
    )
    return ApiEnvelope(
        data=OrdersData(
            data=[OrderData.from_order(o) for o in rows],
            count=count,
            page=page,
            page_size=page_size,
        )
    )


@router.get("/{order_id}", response_model=ApiEnvelope)
async def get_order(
    session: SessionDep, services: ServicesDep, current_user: CurrentUser, order_id: int
) -> ApiEnvelope:
    """
    获取订单详情（只能查询自己的订单）

    请求路径: GET /api/v1/orders/{order_id}
    """
    order = await services.orders.get_order(session, order_id, current_user.id)
    return ApiEnvelope(data=OrderData.from_order(order, with_timeline=True))


@router.put("/{order_id}/cancel", response_model=ApiEnvelope)
async def cancel_order(
    session: SessionDep,
    services: ServicesDep,
    current_user: CurrentUser,
    order_id: int,
    body: CancelRequest | None = None,
) -> ApiEnvelope:
    """
    取消订单（仅限未支付的 Pending/Processing 订单）

    请求路径: PUT /api/v1/orders/{order_id}/cancel
    """
    order = await services.orders.cancel_order(
        session, order_id, current_user.id, body.reason if body else None
    )
    return ApiEnvelope(data=OrderData.from_order(order))
