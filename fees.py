"""
Fee calculation for orders.

All functions are pure. Amounts are ``Decimal``; optional city fees that are
absent contribute nothing.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from errors import InvalidArgument

# Orders cancelled within this window after creation are not charged
CANCELLATION_GRACE_PERIOD = timedelta(days=4)

DEFAULT_TOTAL_TOLERANCE = Decimal("0.50")

_CENT = Decimal("0.01")
_ZERO = Decimal("0")


def to_money(value) -> Decimal:
    """Round to cents, half up."""
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def _positive(value: Optional[Decimal]) -> Decimal:
    if value is None or value <= 0:
        return _ZERO
    return Decimal(value)


@dataclass(frozen=True)
class FeeBreakdown:
    sub_total: Decimal
    service_fees: Decimal
    delivery_fees: Decimal
    urgent_fees: Decimal
    total: Decimal


def compute_subtotal(unit_price: Decimal, count: int) -> Decimal:
    if unit_price < 0:
        raise InvalidArgument("SubCategory price cannot be negative")
    if count <= 0:
        raise InvalidArgument("Vehicles count must be greater than zero")
    return Decimal(unit_price) * count


def compute_fee_breakdown(
    subtotal: Decimal,
    delivery_fee_per_vehicle: Optional[Decimal],
    service_fee_percent: Optional[Decimal],
    urgent_fee: Optional[Decimal],
    count: int,
    is_urgent: bool,
) -> FeeBreakdown:
    """
    Split the order total into its components.

    Formula: subtotal + delivery * count + service% * subtotal / 100
    + urgent (only when the order is urgent).
    """
    if subtotal < 0:
        raise InvalidArgument("SubTotal cannot be negative")
    if count <= 0:
        raise InvalidArgument("Vehicles count must be greater than zero")

    subtotal = Decimal(subtotal)
    delivery = _positive(delivery_fee_per_vehicle) * count
    service = _positive(service_fee_percent) * subtotal / 100
    urgent = _positive(urgent_fee) if is_urgent else _ZERO

    return FeeBreakdown(
        sub_total=subtotal,
        service_fees=service,
        delivery_fees=delivery,
        urgent_fees=urgent,
        total=subtotal + delivery + service + urgent,
    )


def compute_total(
    subtotal: Decimal,
    delivery_fee_per_vehicle: Optional[Decimal],
    service_fee_percent: Optional[Decimal],
    urgent_fee: Optional[Decimal],
    count: int,
    is_urgent: bool,
) -> Decimal:
    return compute_fee_breakdown(
        subtotal, delivery_fee_per_vehicle, service_fee_percent, urgent_fee, count, is_urgent
    ).total


def validate_totals_match(
    server_total: Decimal, client_total: Decimal, tolerance: Decimal = DEFAULT_TOTAL_TOLERANCE
) -> bool:
    return abs(Decimal(server_total) - Decimal(client_total)) <= Decimal(tolerance)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def compute_cancellation_fee(
    city, order_created_at: datetime, now: Optional[datetime] = None
) -> Optional[Decimal]:
    """
    Cancellation fee for an order of the given age.

    Returns None inside the grace period, otherwise the city's configured
    fee (which may itself be None).
    """
    if city is None:
        raise InvalidArgument("City is required to compute the cancellation fee")

    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    if now - _as_utc(order_created_at) <= CANCELLATION_GRACE_PERIOD:
        return None
    return city.cancellation_fees
