"""
Payment, cancellation fee and refund bookkeeping for orders.

Note: These functions do NOT commit - caller must handle transaction.
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import logging

import treasury
from errors import ConflictError, InvalidArgument, InvariantViolation, NotFoundError
from models import (
    CancellationFeeState,
    Order,
    OrderCancellationFee,
    OrderPayment,
    PaymentState,
    RefundablePaypalAmount,
    RefundState,
)

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


def create_payment(session: AsyncSession, order: Order, created_by: Optional[str] = None) -> OrderPayment:
    """Add the single Pending payment record of a freshly flushed order."""
    payment = OrderPayment(
        order_id=order.id,
        payment_method=order.payment_method,
        total=order.order_total,
        state=PaymentState.PENDING,
        created_by=created_by,
    )
    session.add(payment)
    return payment


async def find_payment(session: AsyncSession, order_id: int) -> Optional[OrderPayment]:
    result = await session.execute(select(OrderPayment).where(OrderPayment.order_id == order_id))
    return result.scalar_one_or_none()


async def get_payment(session: AsyncSession, order_id: int) -> OrderPayment:
    payment = await find_payment(session, order_id)
    if payment is None:
        # Every order is created together with its payment
        raise InvariantViolation(f"Order {order_id} has no payment record")
    return payment


async def find_cancellation_fee(session: AsyncSession, order_id: int) -> Optional[OrderCancellationFee]:
    result = await session.execute(
        select(OrderCancellationFee).where(OrderCancellationFee.order_id == order_id)
    )
    return result.scalar_one_or_none()


async def find_refund(session: AsyncSession, order_id: int) -> Optional[RefundablePaypalAmount]:
    result = await session.execute(
        select(RefundablePaypalAmount).where(RefundablePaypalAmount.order_id == order_id)
    )
    return result.scalar_one_or_none()


def record_cancellation_fee(
    session: AsyncSession, order: Order, amount: Optional[Decimal], created_by: Optional[str] = None
) -> Optional[OrderCancellationFee]:
    """Add a NotYet fee row when there is something to charge."""
    if amount is None or amount <= 0:
        return None
    fee = OrderCancellationFee(
        customer_id=order.customer_id,
        order_id=order.id,
        amount=amount,
        state=CancellationFeeState.NOT_YET,
        created_by=created_by,
    )
    session.add(fee)
    logger.info(f"[CANCEL] Order {order.order_code} | cancellation fee {amount}")
    return fee


def refundable_amount(order_total: Decimal, cancellation_fee: Optional[Decimal]) -> Decimal:
    """Order total minus the fee, never below zero."""
    return max(Decimal(order_total) - (cancellation_fee or _ZERO), _ZERO)


def record_refundable_amount(
    session: AsyncSession,
    order: Order,
    cancellation_fee: Optional[Decimal],
    created_by: Optional[str] = None,
) -> Optional[RefundablePaypalAmount]:
    """Add a Pending refund row when part of the PayPal payment goes back."""
    amount = refundable_amount(order.order_total, cancellation_fee)
    if amount <= 0:
        return None
    refund = RefundablePaypalAmount(
        customer_id=order.customer_id,
        order_id=order.id,
        order_total=order.order_total,
        cancellation_fees=cancellation_fee or _ZERO,
        refundable_amount=amount,
        state=RefundState.PENDING,
        created_by=created_by,
    )
    session.add(refund)
    logger.info(f"[CANCEL] Order {order.order_code} | refundable amount {amount}")
    return refund


async def collect_cancellation_fee(
    session: AsyncSession, fee: Optional[OrderCancellationFee], modified_by: Optional[str] = None
) -> bool:
    """
    Mark a NotYet fee as Paid and credit the treasury with it.

    Returns False when there is no outstanding fee.
    """
    if fee is None or fee.state != CancellationFeeState.NOT_YET:
        return False
    fee.mark_as_paid(modified_by)
    await treasury.add_cancellation_fee(
        session,
        fee.amount,
        description=f"Cancellation fee for order {fee.order_id}",
        order_id=fee.order_id,
        created_by=modified_by,
    )
    return True


async def apply_refund_outcome(
    session: AsyncSession, order_id: int, outcome: RefundState, modified_by: Optional[str] = None
) -> RefundablePaypalAmount:
    """
    Settle a Pending refund.

    Success refunds the payment and collects any outstanding fee;
    Failed only records the failure.
    """
    try:
        outcome = RefundState(outcome)
    except ValueError:
        raise InvalidArgument(f"Invalid refund state: {outcome}")
    if outcome not in (RefundState.SUCCESS, RefundState.FAILED):
        raise InvalidArgument(f"Invalid refund state: {outcome.value}")

    refund = await find_refund(session, order_id)
    if refund is None:
        raise NotFoundError("Refundable PayPal amount for order", order_id)
    if refund.state != RefundState.PENDING:
        raise ConflictError(f"Refund is not in Pending state. Current state: {refund.state.value}")

    if outcome == RefundState.FAILED:
        refund.mark_as_failed(modified_by)
        logger.info(f"[REFUND] Order {order_id} | refund marked Failed")
        return refund

    refund.mark_as_success(modified_by)
    payment = await get_payment(session, order_id)
    payment.mark_as_refunded(modified_by)
    collected = await collect_cancellation_fee(session, await find_cancellation_fee(session, order_id), modified_by)
    logger.info(
        f"[REFUND] Order {order_id} | refunded {refund.refundable_amount}"
        f"{' | fee collected' if collected else ''}"
    )
    return refund
