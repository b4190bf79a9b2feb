"""
Order use cases.

Each public coroutine is one unit of work: it validates before mutating,
commits on success and rolls the session back on any error.
"""
import logging
import random
import string
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import availability
import config
import db_operations
import fees
import payments
import reservations
import treasury
from errors import (
    AvailabilityConflict,
    ConflictError,
    ExternalServiceError,
    InvalidArgument,
    InvalidStateTransition,
    NotFoundError,
    PermissionDeniedError,
)
from models import (
    CancellationFeeState,
    City,
    Order,
    OrderCancellationFee,
    OrderPayment,
    OrderState,
    OrderTotals,
    OrderVehicle,
    PaymentMethod,
    PaymentState,
    RefundablePaypalAmount,
    RefundState,
    Vehicle,
    VehicleStatus,
    utc_now,
)
from paypal_client import PayPalCaptureResult, PayPalClient
from principal import Principal

logger = logging.getLogger(__name__)

ORDER_CODE_ALPHABET = string.ascii_uppercase + string.digits
ORDER_CODE_MAX_ATTEMPTS = 10
HOTEL_ADDRESS_MAX_LENGTH = 500


@dataclass
class CreateOrderRequest:
    sub_category_id: int
    city_id: int
    reservation_date_from: date
    reservation_date_to: date
    vehicles_count: int
    passport_image: str
    hotel_name: str
    hotel_address: str
    payment_method: PaymentMethod
    client_total: Decimal
    is_urgent: bool = False
    hotel_phone: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class CreateOrderResult:
    order: Order
    totals: OrderTotals
    payment: OrderPayment
    paypal_order_id: Optional[str] = None
    approve_link: Optional[str] = None


@dataclass
class CancellationResult:
    order: Order
    cancellation_fee: Optional[OrderCancellationFee]
    refund: Optional[RefundablePaypalAmount]
    released_days: int


@dataclass
class OrderDetail:
    order: Order
    totals: Optional[OrderTotals]
    payment: Optional[OrderPayment]
    vehicles: List[Vehicle] = field(default_factory=list)
    cancellation_fee: Optional[OrderCancellationFee] = None
    refund: Optional[RefundablePaypalAmount] = None


@asynccontextmanager
async def _unit_of_work(session: AsyncSession, action: str, conflict=ConflictError):
    try:
        yield
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"{action} lost a race with a concurrent change: {e.orig}")
        raise conflict(f"Could not {action}: a concurrent change conflicted with this request") from e
    except Exception:
        await session.rollback()
        raise


def _require_admin(principal: Principal):
    if not principal.is_admin:
        raise PermissionDeniedError("Admin role required")


def _require_owner(principal: Principal, order: Order, action: str):
    if not principal.can_act_on(order.customer_id):
        raise PermissionDeniedError(f"You do not have permission to {action} this order")


def _parse_enum(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidArgument(f"Invalid {label}: {value}")


def generate_order_code(now: Optional[datetime] = None) -> str:
    """``ORD-YYYYMMDD-XXXXXX`` with six random upper-case alphanumerics."""
    now = now or utc_now()
    suffix = "".join(random.choices(ORDER_CODE_ALPHABET, k=6))
    return f"ORD-{now:%Y%m%d}-{suffix}"


async def _unique_order_code(session: AsyncSession) -> str:
    for _ in range(ORDER_CODE_MAX_ATTEMPTS):
        code = generate_order_code()
        if not await db_operations.order_code_exists(session, code):
            return code
    raise ConflictError("Failed to generate unique order code. Please try again.")


def _validate_create_request(request: CreateOrderRequest, today: date):
    if request.reservation_date_from >= request.reservation_date_to:
        raise InvalidArgument("Reservation date from must be before reservation date to")
    if request.reservation_date_from < today:
        raise InvalidArgument("Reservation date from must be a future date")
    if request.vehicles_count <= 0:
        raise InvalidArgument("Vehicles count must be greater than zero")
    if not request.passport_image or not request.passport_image.strip():
        raise InvalidArgument("Passport image is required")
    if not request.hotel_name or not request.hotel_name.strip():
        raise InvalidArgument("Hotel name is required")
    if not request.hotel_address or not request.hotel_address.strip():
        raise InvalidArgument("Hotel address is required")
    if len(request.hotel_address) > HOTEL_ADDRESS_MAX_LENGTH:
        raise InvalidArgument(f"Hotel address must not exceed {HOTEL_ADDRESS_MAX_LENGTH} characters")
    if request.client_total is None or Decimal(request.client_total) < 0:
        raise InvalidArgument("Order total cannot be negative")


async def create_order(
    session: AsyncSession,
    principal: Principal,
    request: CreateOrderRequest,
    gateway: Optional[PayPalClient] = None,
    today: Optional[date] = None,
    tolerance: Decimal = config.TOTAL_TOLERANCE,
) -> CreateOrderResult:
    """
    Place a new Pending order for the acting customer.

    The order, its fee snapshot and its Pending payment are committed first.
    PayPal orders then get a gateway order; if that call fails the payment
    is marked Failed, the order is kept and ExternalServiceError is raised.
    """
    today = today or utc_now().date()
    created_by = principal.user_name
    method = _parse_enum(PaymentMethod, request.payment_method, "payment method")

    async with _unit_of_work(session, "create order"):
        customer = await db_operations.get_customer(session, principal.user_id)
        if method == PaymentMethod.CASH and customer.cash_block:
            raise InvalidArgument("Payment method not allowed. Cash payment is blocked for this customer.")

        sub_category = await db_operations.get_sub_category(session, request.sub_category_id)
        if not sub_category.is_active:
            raise InvalidArgument(f"SubCategory {sub_category.id} is inactive")
        city = await db_operations.get_city(session, request.city_id)

        _validate_create_request(request, today)

        if await availability.has_conflict(
            session, sub_category.id, request.reservation_date_from, request.reservation_date_to
        ):
            raise AvailabilityConflict("Selected dates are not available")
        available = await availability.count_available_vehicles(
            session, sub_category.id, request.reservation_date_from, request.reservation_date_to
        )
        if available < request.vehicles_count:
            raise AvailabilityConflict(
                f"Not enough vehicles: {available} available, {request.vehicles_count} requested"
            )

        subtotal = fees.compute_subtotal(sub_category.price, request.vehicles_count)
        breakdown = fees.compute_fee_breakdown(
            subtotal,
            city.delivery_fees,
            city.service_fees,
            city.urgent_delivery,
            request.vehicles_count,
            request.is_urgent,
        )
        if not fees.validate_totals_match(breakdown.total, request.client_total, tolerance):
            logger.warning(
                f"[CREATE] Total mismatch for customer {customer.id}: "
                f"server={breakdown.total} client={request.client_total}"
            )
            raise InvalidArgument("There is a mistake in calculation")

        order = Order.create(
            customer_id=customer.id,
            sub_category_id=sub_category.id,
            city_id=city.id,
            reservation_date_from=request.reservation_date_from,
            reservation_date_to=request.reservation_date_to,
            vehicles_count=request.vehicles_count,
            order_sub_total=fees.to_money(breakdown.sub_total),
            order_total=fees.to_money(breakdown.total),
            passport_image=request.passport_image,
            hotel_name=request.hotel_name,
            hotel_address=request.hotel_address,
            payment_method=method,
            is_urgent=request.is_urgent,
            order_code=await _unique_order_code(session),
            hotel_phone=request.hotel_phone,
            notes=request.notes,
            created_by=created_by,
        )
        session.add(order)
        await session.flush()

        totals = OrderTotals(
            order_id=order.id,
            sub_total=fees.to_money(breakdown.sub_total),
            service_fees=fees.to_money(breakdown.service_fees),
            delivery_fees=fees.to_money(breakdown.delivery_fees),
            urgent_fees=fees.to_money(breakdown.urgent_fees),
            total_after_all_fees=fees.to_money(breakdown.total),
        )
        session.add(totals)
        payment = payments.create_payment(session, order, created_by)
        await session.flush()

    logger.info(
        f"[CREATE] Order {order.order_code} | customer={order.customer_id} "
        f"| {order.reservation_date_from}..{order.reservation_date_to} x{order.vehicles_count} "
        f"| total={order.order_total} {method.value}"
    )
    result = CreateOrderResult(order=order, totals=totals, payment=payment)

    if method == PaymentMethod.PAYPAL:
        gateway = gateway or PayPalClient()
        paypal = await gateway.create_order(order.order_code, order.order_total, config.PAYPAL_CURRENCY)
        if not paypal.is_success:
            async with _unit_of_work(session, "mark payment failed"):
                payment.mark_as_failed(created_by)
            logger.error(f"[CREATE] Order {order.order_code} | PayPal order failed: {paypal.error}")
            raise ExternalServiceError(
                f"Failed to create PayPal order: {paypal.error or 'Unknown error'}", order_id=order.id
            )
        result.paypal_order_id = paypal.paypal_order_id
        result.approve_link = paypal.approve_link

    return result


async def _confirm(session: AsyncSession, order: Order, vehicle_ids: Sequence[int], modified_by: str):
    order.ensure_can_confirm()

    ids = list(vehicle_ids or [])
    if not ids:
        raise InvalidArgument("Vehicle IDs are required to confirm order")
    if len(set(ids)) != len(ids):
        raise InvalidArgument("Vehicle IDs must not contain duplicates")
    if len(ids) != order.vehicles_count:
        raise InvalidArgument(
            f"Number of vehicles ({len(ids)}) must match order vehicles count ({order.vehicles_count})"
        )

    vehicles = await db_operations.get_vehicles(session, ids, for_update=True)
    missing = sorted(set(ids) - {v.id for v in vehicles})
    if missing:
        raise NotFoundError("Vehicle", missing[0])

    for vehicle in vehicles:
        if not vehicle.vehicle_code or not vehicle.vehicle_code.strip():
            raise InvalidArgument(f"Vehicle ID {vehicle.id} does not have a vehicle code assigned")
        if vehicle.sub_category_id != order.sub_category_id:
            raise InvalidArgument(f"Vehicle {vehicle.vehicle_code} does not belong to order's subcategory")
        if vehicle.status != VehicleStatus.AVAILABLE:
            raise AvailabilityConflict(
                f"Vehicle {vehicle.vehicle_code} is not available. Current status: {vehicle.status.value}"
            )
        if await availability.has_conflict(
            session,
            order.sub_category_id,
            order.reservation_date_from,
            order.reservation_date_to,
            vehicle_id=vehicle.id,
        ):
            raise AvailabilityConflict(
                f"Vehicle {vehicle.vehicle_code} is already reserved in the selected date range"
            )

    payment = await payments.get_payment(session, order.id)

    order.confirm(modified_by)
    session.add_all(
        OrderVehicle(order_id=order.id, vehicle_id=vehicle.id, created_by=modified_by) for vehicle in vehicles
    )
    reservations.reserve_vehicles(session, order, vehicles, modified_by)
    for vehicle in vehicles:
        vehicle.update_status(VehicleStatus.RENTED, modified_by)
    if order.payment_method == PaymentMethod.PAYPAL and payment.state == PaymentState.PENDING:
        payment.mark_as_paid(modified_by)
    await session.flush()

    logger.info(
        f"[CONFIRM] Order {order.order_code} | vehicles={[v.vehicle_code for v in vehicles]} "
        f"| payment={payment.state.value}"
    )


async def confirm_order(
    session: AsyncSession, principal: Principal, order_id: int, vehicle_ids: Sequence[int]
) -> Order:
    """Bind vehicles to a Pending order and reserve them for every day of its range."""
    _require_admin(principal)
    async with _unit_of_work(session, "confirm order", conflict=AvailabilityConflict):
        order = await db_operations.get_order(session, order_id, for_update=True)
        await _confirm(session, order, vehicle_ids, principal.user_name)
    return order


async def advance_order_state(
    session: AsyncSession,
    principal: Principal,
    order_id: int,
    new_state,
    vehicle_ids: Optional[Sequence[int]] = None,
) -> Order:
    """
    Move an order to its next state.

    Confirmed delegates to confirmation; CustomerReceived collects cash
    payments; Completed releases the vehicles and credits the paid total
    to the treasury.
    """
    _require_admin(principal)
    new_state = _parse_enum(OrderState, new_state, "order state")
    if new_state == OrderState.CONFIRMED:
        return await confirm_order(session, principal, order_id, vehicle_ids or [])

    modified_by = principal.user_name
    async with _unit_of_work(session, "update order state"):
        order = await db_operations.get_order(session, order_id, for_update=True)

        if new_state == OrderState.ON_WAY:
            order.mark_on_way(modified_by)
        elif new_state == OrderState.CUSTOMER_RECEIVED:
            order.mark_customer_received(modified_by)
            if order.payment_method == PaymentMethod.CASH:
                payment = await payments.get_payment(session, order.id)
                if payment.state == PaymentState.PENDING:
                    payment.mark_as_paid(modified_by)
                    logger.info(f"[PAYMENT] Order {order.order_code} | cash collected {payment.total}")
        elif new_state == OrderState.COMPLETED:
            order.complete(modified_by)
            for vehicle in await db_operations.get_order_vehicles(session, order.id):
                vehicle.update_status(VehicleStatus.AVAILABLE, modified_by)
            payment = await payments.get_payment(session, order.id)
            if payment.state == PaymentState.PAID:
                await treasury.add_revenue(
                    session,
                    payment.total,
                    description=f"Revenue for order {order.order_code}",
                    order_id=order.id,
                    created_by=modified_by,
                )
        else:
            raise InvalidArgument(f"Invalid state transition to {new_state.value}")
        await session.flush()

    logger.info(f"[STATE] Order {order.order_code} | -> {order.order_state.value}")
    return order


async def _settle_if_clear(session: AsyncSession, order: Order, modified_by: Optional[str]):
    """Close a requested cancellation once no fee or refund is outstanding."""
    if not order.is_cancelled:
        return
    fee = await payments.find_cancellation_fee(session, order.id)
    refund = await payments.find_refund(session, order.id)
    fee_clear = fee is None or fee.state == CancellationFeeState.PAID
    refund_clear = refund is None or refund.state == RefundState.SUCCESS
    if fee_clear and refund_clear:
        order.settle_cancellation(modified_by)


async def cancel_order(
    session: AsyncSession, principal: Principal, order_id: int, now: Optional[datetime] = None
) -> CancellationResult:
    """
    Cancel an order that has not been completed.

    Charges the city's cancellation fee past the grace period, records the
    refundable part of a paid PayPal payment, frees the reserved days and
    releases the vehicles of a Confirmed order.
    """
    modified_by = principal.user_name
    async with _unit_of_work(session, "cancel order"):
        order = await db_operations.get_order(session, order_id, for_update=True)
        _require_owner(principal, order, "cancel")
        order.ensure_can_cancel()

        city = await db_operations.get_city(session, order.city_id)
        payment = await payments.get_payment(session, order.id)

        fee_amount = fees.compute_cancellation_fee(city, order.created_at, now)
        fee = payments.record_cancellation_fee(session, order, fee_amount, modified_by)

        refund = None
        if order.payment_method == PaymentMethod.PAYPAL and payment.state == PaymentState.PAID:
            refund = payments.record_refundable_amount(
                session, order, fee.amount if fee else None, modified_by
            )
            # Refunded even when the fee leaves nothing to pay back
            payment.mark_as_refunded(modified_by)

        if order.order_state == OrderState.CONFIRMED:
            for vehicle in await db_operations.get_order_vehicles(session, order.id):
                vehicle.update_status(VehicleStatus.AVAILABLE, modified_by)

        released = await reservations.cancel_order_reservations(session, order.id, modified_by)

        # A fee is only owed while the customer still has a payment to make
        fee_owed = (
            fee is not None
            and fee.state == CancellationFeeState.NOT_YET
            and payment.state != PaymentState.REFUNDED
        )
        outstanding = refund is not None or fee_owed
        order.cancel(settled=not outstanding, modified_by=modified_by)
        await session.flush()

    logger.info(
        f"[CANCEL] Order {order.order_code} | state={order.order_state.value} "
        f"| fee={fee.amount if fee else None} | refund={refund.refundable_amount if refund else None} "
        f"| released {released} day rows | {order.cancellation_status.value}"
    )
    return CancellationResult(order=order, cancellation_fee=fee, refund=refund, released_days=released)


async def process_refund(
    session: AsyncSession, principal: Principal, order_id: int, outcome
) -> RefundablePaypalAmount:
    """Record the outcome of a Pending PayPal refund."""
    _require_admin(principal)
    outcome = _parse_enum(RefundState, outcome, "refund state")
    async with _unit_of_work(session, "process refund"):
        order = await db_operations.get_order(session, order_id, for_update=True)
        refund = await payments.apply_refund_outcome(session, order.id, outcome, principal.user_name)
        await _settle_if_clear(session, order, principal.user_name)
        await session.flush()
    return refund


async def update_payment_state(
    session: AsyncSession, principal: Principal, order_id: int, new_state
) -> OrderPayment:
    """
    Set a payment to Paid or Failed.

    Paying also collects an outstanding cancellation fee into the treasury.
    """
    _require_admin(principal)
    new_state = _parse_enum(PaymentState, new_state, "payment state")
    if new_state not in (PaymentState.PAID, PaymentState.FAILED):
        raise InvalidArgument("Payment state can only be updated to Paid or Failed")

    modified_by = principal.user_name
    async with _unit_of_work(session, "update payment state"):
        order = await db_operations.get_order(session, order_id, for_update=True)
        payment = await payments.get_payment(session, order.id)
        if new_state == PaymentState.PAID:
            payment.mark_as_paid(modified_by)
            fee = await payments.find_cancellation_fee(session, order.id)
            if await payments.collect_cancellation_fee(session, fee, modified_by):
                logger.info(f"[PAYMENT] Order {order.order_code} | cancellation fee {fee.amount} collected")
            await _settle_if_clear(session, order, modified_by)
        else:
            payment.mark_as_failed(modified_by)
        await session.flush()

    logger.info(f"[PAYMENT] Order {order.order_code} | payment -> {payment.state.value}")
    return payment


async def complete_paypal_payment(
    session: AsyncSession,
    principal: Principal,
    order_id: int,
    paypal_order_id: str,
    gateway: Optional[PayPalClient] = None,
) -> PayPalCaptureResult:
    """
    Capture the customer's approved PayPal order.

    A failed capture marks the payment Failed and raises ExternalServiceError.
    """
    if not paypal_order_id or not paypal_order_id.strip():
        raise InvalidArgument("PayPal order ID is required")
    gateway = gateway or PayPalClient()
    modified_by = principal.user_name

    async with _unit_of_work(session, "complete PayPal payment"):
        order = await db_operations.get_order(session, order_id, for_update=True)
        _require_owner(principal, order, "pay for")
        if order.payment_method != PaymentMethod.PAYPAL:
            raise InvalidArgument("Order payment method is not PayPal")
        if order.is_cancelled:
            raise InvalidStateTransition(order.order_state.value, "pay for", "Order has been cancelled.")
        payment = await payments.get_payment(session, order.id)
        if payment.state != PaymentState.PENDING:
            raise ConflictError(f"Payment is not pending. Current state: {payment.state.value}")

        capture = await gateway.capture_order(paypal_order_id.strip())
        if capture.is_success:
            payment.mark_as_paid(modified_by)
        else:
            payment.mark_as_failed(modified_by)
        await session.flush()

    if not capture.is_success:
        logger.error(f"[PAYMENT] Order {order.order_code} | PayPal capture failed: {capture.error}")
        raise ExternalServiceError(f"Failed to capture PayPal payment: {capture.error}", order_id=order.id)

    logger.info(f"[PAYMENT] Order {order.order_code} | PayPal captured {capture.transaction_id}")
    return capture


# --------- Queries ---------
async def get_order_detail(session: AsyncSession, principal: Principal, order_id: int) -> OrderDetail:
    order = await db_operations.get_order(session, order_id)
    _require_owner(principal, order, "view")
    return OrderDetail(
        order=order,
        totals=await db_operations.get_order_totals(session, order.id),
        payment=await payments.find_payment(session, order.id),
        vehicles=await db_operations.get_order_vehicles(session, order.id),
        cancellation_fee=await payments.find_cancellation_fee(session, order.id),
        refund=await payments.find_refund(session, order.id),
    )


async def list_orders(session: AsyncSession, principal: Principal, state=None) -> List[Order]:
    _require_admin(principal)
    if state is not None:
        state = _parse_enum(OrderState, state, "order state")
    return await db_operations.list_orders(session, state=state)


async def list_customer_orders(session: AsyncSession, principal: Principal) -> List[Order]:
    return await db_operations.list_orders(session, customer_id=principal.user_id)


async def get_city_fees(session: AsyncSession, principal: Principal) -> City:
    """Fees of the acting customer's city."""
    customer = await db_operations.get_customer(session, principal.user_id)
    if customer.city_id is None:
        raise InvalidArgument("Customer city not found")
    return await db_operations.get_city(session, customer.city_id)


async def get_reserved_dates(session: AsyncSession, sub_category_id: int) -> List[date]:
    await db_operations.get_sub_category(session, sub_category_id)
    return await availability.reserved_dates(session, sub_category_id)


async def get_treasury_summary(session: AsyncSession, principal: Principal) -> dict:
    _require_admin(principal)
    return await treasury.get_treasury_summary(session)
