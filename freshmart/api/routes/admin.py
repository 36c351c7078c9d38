"""
管理后台路由模块

订单：列表、详情、修改状态、确认支付、确认送达
支付：列表、详情、修正状态、退款

所有接口都要求管理员身份。
"""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query

from freshmart.api.deps import AdminUser, ServicesDep, SessionDep
from freshmart.api.schemas import (
    ApiEnvelope,
    MarkPaidRequest,
    OrderData,
    OrdersData,
    PaymentData,
    PaymentsData,
    PaymentStatusUpdateRequest,
    StatusUpdateRequest,
)
from freshmart.enums import OrderSort, OrderStatus, PaymentStatus

router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================
# 订单
# ============================================================


@router.get("/orders", response_model=ApiEnvelope)
async def list_orders(
    session: SessionDep,
    services: ServicesDep,
    admin: AdminUser,
    status: OrderStatus | None = None,
    payment_method: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    sort: OrderSort = OrderSort.newest,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ApiEnvelope:
    """
    查询全部订单（分页）

    请求路径: GET /api/v1/admin/orders?status=Processing&start_date=2024-01-01
    """
    rows, count = await services.orders.list_orders(
        session,
        status=status,
        payment_method=payment_method,
        start=start_date,
        end=end_date,
        sort=sort,
        page=page,
        page_size=page_size,
    )
    return ApiEnvelope(
        data=OrdersData(
            data=[OrderData.from_order(o) for o in rows],
            count=count,
            page=page,
            page_size=page_size,
        )
    )


@router.get("/orders/{order_id}", response_model=ApiEnvelope)
async def get_order(
    session: SessionDep, services: ServicesDep, admin: AdminUser, order_id: int
) -> ApiEnvelope:
    order = await services.orders.get_order_for_admin(session, order_id)
    return ApiEnvelope(data=OrderData.from_order(order, with_timeline=True))


@router.put("/orders/{order_id}/status", response_model=ApiEnvelope)
async def update_order_status(
    session: SessionDep,
    services: ServicesDep,
    admin: AdminUser,
    order_id: int,
    body: StatusUpdateRequest,
) -> ApiEnvelope:
    """
    修改订单状态

    请求路径: PUT /api/v1/admin/orders/{order_id}/status

    Raises:
        AppError: 409206 状态机不允许 / 409204 已送达
    """
    order = await services.orders.update_order_status(
        session, order_id, body.status, actor_id=str(admin.id), notes=body.notes
    )
    return ApiEnvelope(data=OrderData.from_order(order))


@router.put("/orders/{order_id}/pay", response_model=ApiEnvelope)
async def mark_order_paid(
    session: SessionDep,
    services: ServicesDep,
    admin: AdminUser,
    order_id: int,
    body: MarkPaidRequest | None = None,
) -> ApiEnvelope:
    order = await services.orders.mark_order_paid(
        session, order_id, body.payment_details if body else None, actor_id=str(admin.id)
    )
    return ApiEnvelope(data=OrderData.from_order(order))


@router.put("/orders/{order_id}/deliver", response_model=ApiEnvelope)
async def mark_order_delivered(
    session: SessionDep, services: ServicesDep, admin: AdminUser, order_id: int
) -> ApiEnvelope:
    order = await services.orders.mark_order_delivered(session, order_id, actor_id=str(admin.id))
    return ApiEnvelope(data=OrderData.from_order(order))


# ============================================================
# 支付
# ============================================================


@router.get("/payments", response_model=ApiEnvelope)
async def list_payments(
    session: SessionDep,
    services: ServicesDep,
    admin: AdminUser,
    status: PaymentStatus | None = None,
    payment_method: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ApiEnvelope:
    rows, count = await services.payments.list_payments(
        session,
        status=status,
        payment_method=payment_method,
        start=start_date,
        end=end_date,
        page=page,
        page_size=page_size,
    )
    return ApiEnvelope(
        data=PaymentsData(
            data=[PaymentData.from_payment(p) for p in rows],
            count=count,
            page=page,
            page_size=page_size,
        )
    )


@router.get("/payments/{payment_id}", response_model=ApiEnvelope)
async def get_payment(
    session: SessionDep, services: ServicesDep, admin: AdminUser, payment_id: int
) -> ApiEnvelope:
    payment = await services.payments.get_payment(session, payment_id)
    return ApiEnvelope(data=PaymentData.from_payment(payment))


@router.put("/payments/{payment_id}/status", response_model=ApiEnvelope)
async def update_payment_status(
    session: SessionDep,
    services: ServicesDep,
    admin: AdminUser,
    payment_id: int,
    body: PaymentStatusUpdateRequest,
) -> ApiEnvelope:
    """
    修正支付状态（不能直接改为 refunded）

    请求路径: PUT /api/v1/admin/payments/{payment_id}/status
    """
    payment = await services.payments.update_payment_status(
        session, payment_id, body.status, actor_id=str(admin.id)
    )
    return ApiEnvelope(data=PaymentData.from_payment(payment))


@router.post("/payments/{reference}/refund", response_model=ApiEnvelope)
async def refund_payment(
    session: SessionDep, services: ServicesDep, admin: AdminUser, reference: str
) -> ApiEnvelope:
    """
    退款

    请求路径: POST /api/v1/admin/payments/{reference}/refund

    Raises:
        AppError: 404301 支付不存在 / 409301 非 paid 状态 / 502301 网关失败（本地状态不变）
    """
    payment = await services.payments.refund_payment(session, reference)
    return ApiEnvelope(data=PaymentData.from_payment(payment))
