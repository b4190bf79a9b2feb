"""
Availability checks over the per-day reservation rows.

Two reservations conflict when their day ranges overlap inclusively:
``existing.from <= requested.to and existing.to >= requested.from``.
Only StillBooked rows of orders that are not Completed count.
"""
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from models import (
    Order,
    OrderState,
    ReservedVehiclesPerDay,
    ReservedVehicleState,
    Vehicle,
    VehicleStatus,
)

logger = logging.getLogger(__name__)


def ranges_overlap(from_a: date, to_a: date, from_b: date, to_b: date) -> bool:
    """Inclusive day-range overlap; symmetric in its two ranges."""
    return from_a <= to_b and to_a >= from_b


def _blocking_rows(stmt, date_from: date, date_to: date, exclude_completed_orders: bool = True):
    stmt = stmt.where(
        ReservedVehiclesPerDay.state == ReservedVehicleState.STILL_BOOKED,
        ReservedVehiclesPerDay.date_from <= date_to,
        ReservedVehiclesPerDay.date_to >= date_from,
    )
    if exclude_completed_orders:
        stmt = stmt.join(Order, Order.id == ReservedVehiclesPerDay.order_id).where(
            Order.order_state != OrderState.COMPLETED
        )
    return stmt


async def has_conflict(
    session: AsyncSession,
    sub_category_id: int,
    date_from: date,
    date_to: date,
    exclude_completed_orders: bool = True,
    vehicle_id: Optional[int] = None,
) -> bool:
    """
    Whether any blocking reservation overlaps the requested days.

    Scoped to the sub-category, or to one vehicle when ``vehicle_id`` is given.
    """
    stmt = _blocking_rows(
        select(ReservedVehiclesPerDay.id), date_from, date_to, exclude_completed_orders
    ).where(ReservedVehiclesPerDay.sub_category_id == sub_category_id)
    if vehicle_id is not None:
        stmt = stmt.where(ReservedVehiclesPerDay.vehicle_id == vehicle_id)

    result = await session.execute(select(stmt.exists()))
    return bool(result.scalar())


async def booked_vehicle_ids(
    session: AsyncSession, sub_category_id: int, date_from: date, date_to: date
) -> set:
    stmt = _blocking_rows(
        select(ReservedVehiclesPerDay.vehicle_id).distinct(), date_from, date_to
    ).where(ReservedVehiclesPerDay.sub_category_id == sub_category_id)
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def count_available_vehicles(
    session: AsyncSession, sub_category_id: int, date_from: date, date_to: date
) -> int:
    """Vehicles of the sub-category free for every day of the range."""
    result = await session.execute(
        select(Vehicle.id).where(
            Vehicle.sub_category_id == sub_category_id,
            Vehicle.status != VehicleStatus.UNDER_MAINTENANCE,
        )
    )
    pool = set(result.scalars().all())
    booked = await booked_vehicle_ids(session, sub_category_id, date_from, date_to)
    available = len(pool - booked)
    logger.debug(
        f"Sub-category {sub_category_id} {date_from}..{date_to}: "
        f"pool={len(pool)} booked={len(pool & booked)} available={available}"
    )
    return available


async def reserved_dates(session: AsyncSession, sub_category_id: int) -> List[date]:
    """Sorted distinct days blocked by active reservations of the sub-category."""
    result = await session.execute(
        select(ReservedVehiclesPerDay.date_from, ReservedVehiclesPerDay.date_to)
        .join(Order, Order.id == ReservedVehiclesPerDay.order_id)
        .where(
            ReservedVehiclesPerDay.sub_category_id == sub_category_id,
            ReservedVehiclesPerDay.state == ReservedVehicleState.STILL_BOOKED,
            Order.order_state != OrderState.COMPLETED,
        )
    )
    days = set()
    for day_from, day_to in result.all():
        current = day_from
        while current <= day_to:
            days.add(current)
            current += timedelta(days=1)
    return sorted(days)
