"""
支付路由模块

- 生成交易参考号
- 向网关校验交易并记录支付
"""
from fastapi import APIRouter

from freshmart.api.deps import CurrentUser, ServicesDep, SessionDep
from freshmart.api.schemas import (
    ApiEnvelope,
    InitializePaymentData,
    PaymentData,
    VerifyPaymentRequest,
)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/initialize", response_model=ApiEnvelope)
async def initialize_payment(services: ServicesDep, current_user: CurrentUser) -> ApiEnvelope:
    """
    生成新的交易参考号

    请求路径: POST /api/v1/payments/initialize
    """
    return ApiEnvelope(
        data=InitializePaymentData(reference=services.payments.initialize_reference())
    )


@router.post("/verify/{reference}", response_model=ApiEnvelope)
async def verify_payment(
    session: SessionDep,
    services: ServicesDep,
    current_user: CurrentUser,
    reference: str,
    body: VerifyPaymentRequest,
) -> ApiEnvelope:
    """
    校验交易并记录支付

    请求路径: POST /api/v1/payments/verify/{reference}

    Raises:
        AppError: 402301 网关报告未成功或金额不符（data.gateway 为原始响应）/ 502301 网关不可用
    """
    payment = await services.payments.verify_and_record_payment(
        session, user_id=current_user.id, reference=reference, claimed_amount=body.amount
    )
    return ApiEnvelope(data=PaymentData.from_payment(payment))
