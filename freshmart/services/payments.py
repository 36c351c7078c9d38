"""
支付对账服务

- 校验：向网关查询交易的权威状态，成功才创建 paid 支付记录
- 退款：先调用网关退款，网关成功后才把本地状态改为 refunded
- 管理员状态修正：设置为 paid 时，同步把关联订单标记为已支付

网关异常（GatewayError / PaymentDeclined）原样抛给调用方，这里不做重试。
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession

from freshmart import crud
from freshmart.api.errors import (
    AppError,
    Forbidden,
    NotRefundable,
    PaymentDeclined,
    ValidationError,
    payment_not_found,
)
from freshmart.enums import OrderStatus, PaymentStatus
from freshmart.integrations.paystack import PaymentGateway
from freshmart.models import SYSTEM_ACTOR, Payment, utc_now
from freshmart.services.orders import OrderLifecycleEngine

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """金额转换为最小货币单位（GHS -> pesewas）"""
    return int((amount * 100).quantize(Decimal("1")))


class PaymentService:
    """
    支付服务

    依赖：
    - gateway: 支付网关端口
    - engine: 订单生命周期引擎（退款取消订单、状态修正确认支付）
    """

    def __init__(
        self,
        *,
        gateway: PaymentGateway,
        engine: OrderLifecycleEngine,
        currency: str = "GHS",
        verify_amount: bool = True,
    ) -> None:
        self.gateway = gateway
        self.engine = engine
        self.currency = currency
        self.verify_amount = verify_amount

    @staticmethod
    def initialize_reference() -> str:
        """生成新的交易参考号，客户端把它交给网关发起支付"""
        return str(uuid.uuid4())

    async def verify_and_record_payment(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        reference: str,
        claimed_amount: Decimal,
    ) -> Payment:
        """
        校验交易并记录支付

        同一参考号已经有支付记录时直接返回该记录，不会重复创建。

        Raises:
            ValidationError: 金额为负
            Forbidden: 参考号属于其他用户
            GatewayError: 网关不可用或超时
            PaymentDeclined: 网关报告交易未成功，或金额与声明不符
        """
        if claimed_amount < 0:
            raise ValidationError("Amount must not be negative")

        existing = await crud.payment.get_by_reference(session=session, reference=reference)
        if existing is not None:
            if existing.user_id != user_id:
                raise Forbidden("Payment reference belongs to another user")
            return existing

        tx = await self.gateway.verify_transaction(reference)
        if not tx.succeeded:
            logger.warning(f"Payment {reference} not successful: status={tx.status}")
            raise PaymentDeclined("Payment was not successful", gateway_response=tx.raw)

        if self.verify_amount and tx.amount != to_minor_units(claimed_amount):
            logger.warning(
                f"Payment {reference} amount mismatch: gateway={tx.amount} "
                f"claimed={to_minor_units(claimed_amount)}"
            )
            raise PaymentDeclined(
                "Payment amount does not match the gateway transaction",
                gateway_response=tx.raw,
            )

        payment = Payment(
            user_id=user_id,
            amount=claimed_amount,
            currency=tx.currency or self.currency,
            status=PaymentStatus.paid,
            transaction_ref=reference,
            payment_method=tx.channel,
            payment_channel=tx.bank,
            mobile_money_number=tx.mobile_money_number,
            funded_at=utc_now(),
        )
        try:
            await crud.payment.create(session=session, payment=payment)
        except IntegrityError:
            # 并发校验同一参考号：唯一约束保证只有一条记录
            await session.rollback()
            existing = await crud.payment.get_by_reference(session=session, reference=reference)
            if existing is None:
                raise
            return existing
        logger.info(f"Payment {payment.id} recorded for user {user_id} ({reference})")
        return payment

    async def refund_payment(self, session: AsyncSession, reference: str) -> Payment:
        """
        退款

        网关失败时本地状态保持不变。退款成功后，仍在 Pending/Processing 的关联订单
        由 system 取消（同时恢复库存）。

        Raises:
            NotFound: 支付记录不存在
            NotRefundable: 支付不是 paid 状态
            GatewayError: 网关失败或超时
        """
        payment = await crud.payment.get_by_reference(session=session, reference=reference)
        if payment is None:
            raise payment_not_found()
        if PaymentStatus(payment.status) != PaymentStatus.paid:
            raise NotRefundable()

        await self.gateway.refund(reference)
        await crud.payment.set_status(session=session, payment=payment, status=PaymentStatus.refunded)
        logger.info(f"Payment {payment.id} refunded ({reference})")

        if payment.order_id is not None:
            order = await crud.order.get(session=session, order_id=payment.order_id)
            if order is not None and OrderStatus(order.status) in (
                OrderStatus.pending,
                OrderStatus.processing,
            ):
                try:
                    await self.engine.update_order_status(
                        session,
                        order.id,
                        OrderStatus.cancelled,
                        actor_id=SYSTEM_ACTOR,
                        notes="Payment refunded",
                    )
                except AppError as e:
                    logger.error(f"Order {order.id}: cancel after refund failed: {e.message}")
        return payment

    async def update_payment_status(
        self,
        session: AsyncSession,
        payment_id: int,
        status: PaymentStatus,
        *,
        actor_id: str,
    ) -> Payment:
        """
        管理员修正支付状态

        退款必须经过网关，不能直接改为 refunded。

        Raises:
            NotFound: 支付记录不存在
            ValidationError: 目标状态为 refunded
        """
        payment = await crud.payment.get(session=session, payment_id=payment_id)
        if payment is None:
            raise payment_not_found()
        if status == PaymentStatus.refunded:
            raise ValidationError("Use the refund operation to refund a payment", code=400301)

        await crud.payment.set_status(session=session, payment=payment, status=status)
        logger.info(f"Payment {payment.id} status set to {status.value} by {actor_id}")

        if status == PaymentStatus.paid and payment.order_id is not None:
            order = await crud.order.get(session=session, order_id=payment.order_id)
            if order is not None and not order.is_paid:
                try:
                    await self.engine.mark_order_paid(
                        session,
                        order.id,
                        {
                            "transaction_ref": payment.transaction_ref,
                            "payment_channel": payment.payment_channel,
                        },
                        actor_id=actor_id,
                    )
                except AppError as e:
                    logger.error(f"Order {order.id}: mark paid after override failed: {e.message}")
        return payment

    async def get_payment(self, session: AsyncSession, payment_id: int) -> Payment:
        payment = await crud.payment.get(session=session, payment_id=payment_id)
        if payment is None:
            raise payment_not_found()
        return payment

    async def list_payments(
        self,
        session: AsyncSession,
        *,
        status: PaymentStatus | None = None,
        payment_method: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Payment], int]:
        return await crud.payment.list_payments(
            session=session,
            status=status,
            payment_method=payment_method,
            start=start,
            end=end,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
