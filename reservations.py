"""
Reservation ledger: one row per (vehicle, day) reserved by a confirmed order.

Note: These functions do NOT commit - caller must handle transaction.
"""
from datetime import date, timedelta
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from errors import InvalidArgument
from models import Order, ReservedVehiclesPerDay, ReservedVehicleState, Vehicle

logger = logging.getLogger(__name__)


def iter_days(date_from: date, date_to: date) -> Iterator[date]:
    """Every calendar day of ``[date_from, date_to]``, both ends included."""
    if date_from > date_to:
        raise InvalidArgument("Date from must be before or equal to date to")
    current = date_from
    while current <= date_to:
        yield current
        current += timedelta(days=1)


def build_day_rows(order: Order, vehicle: Vehicle, created_by: Optional[str] = None) -> List[ReservedVehiclesPerDay]:
    if not vehicle.vehicle_code or not vehicle.vehicle_code.strip():
        raise InvalidArgument(f"Vehicle ID {vehicle.id} does not have a vehicle code assigned")

    return [
        ReservedVehiclesPerDay(
            vehicle_id=vehicle.id,
            sub_category_id=order.sub_category_id,
            vehicle_code=vehicle.vehicle_code.strip(),
            order_id=order.id,
            date_from=day,
            date_to=day,
            state=ReservedVehicleState.STILL_BOOKED,
            created_by=created_by,
        )
        for day in iter_days(order.reservation_date_from, order.reservation_date_to)
    ]


def reserve_vehicles(
    session: AsyncSession, order: Order, vehicles: Iterable[Vehicle], created_by: Optional[str] = None
) -> int:
    """Add the day rows for every vehicle; returns the number of rows added."""
    added = 0
    for vehicle in vehicles:
        rows = build_day_rows(order, vehicle, created_by)
        session.add_all(rows)
        added += len(rows)
    logger.info(f"[RESERVE] Order {order.order_code} | {added} vehicle-day rows")
    return added


async def get_order_reservations(session: AsyncSession, order_id: int) -> List[ReservedVehiclesPerDay]:
    result = await session.execute(
        select(ReservedVehiclesPerDay)
        .where(ReservedVehiclesPerDay.order_id == order_id)
        .order_by(ReservedVehiclesPerDay.vehicle_id, ReservedVehiclesPerDay.date_from)
    )
    return list(result.scalars().all())


async def cancel_order_reservations(
    session: AsyncSession, order_id: int, modified_by: Optional[str] = None
) -> int:
    """
    Cancel the order's StillBooked rows, freeing those days.

    Rows already cancelled are left alone; returns how many rows changed.
    """
    cancelled = 0
    for row in await get_order_reservations(session, order_id):
        if row.cancel(modified_by):
            cancelled += 1
    logger.info(f"[RESERVE] Order {order_id} | cancelled {cancelled} vehicle-day rows")
    return cancelled
