"""
Database lookups for orders and the catalogs they reference.

Note: These functions do NOT commit - caller must handle transaction.
"""
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from errors import NotFoundError
from models import (
    City,
    Customer,
    Order,
    OrderState,
    OrderTotals,
    OrderVehicle,
    SubCategory,
    Vehicle,
)

logger = logging.getLogger(__name__)


def _supports_row_locks(session: AsyncSession) -> bool:
    # SQLite serializes writers itself and ignores FOR UPDATE
    return session.bind is not None and session.bind.dialect.name != "sqlite"


async def get_order(session: AsyncSession, order_id: int, for_update: bool = False) -> Order:
    """
    Load an order or raise NotFoundError.

    With ``for_update`` the row is locked until the transaction ends on
    backends that support row locks.
    """
    stmt = select(Order).where(Order.id == order_id)
    if for_update and _supports_row_locks(session):
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


async def order_code_exists(session: AsyncSession, order_code: str) -> bool:
    result = await session.execute(select(select(Order.id).where(Order.order_code == order_code).exists()))
    return bool(result.scalar())


async def get_city(session: AsyncSession, city_id: int) -> City:
    city = await session.get(City, city_id)
    if city is None:
        raise NotFoundError("City", city_id)
    return city


async def get_sub_category(session: AsyncSession, sub_category_id: int) -> SubCategory:
    sub_category = await session.get(SubCategory, sub_category_id)
    if sub_category is None:
        raise NotFoundError("SubCategory", sub_category_id)
    return sub_category


async def get_customer(session: AsyncSession, customer_id: int) -> Customer:
    customer = await session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer", customer_id)
    return customer


async def get_vehicles(
    session: AsyncSession, vehicle_ids: Iterable[int], for_update: bool = False
) -> List[Vehicle]:
    """Vehicles with the given ids, ordered by id; missing ids are simply absent."""
    stmt = select(Vehicle).where(Vehicle.id.in_(list(vehicle_ids))).order_by(Vehicle.id)
    if for_update and _supports_row_locks(session):
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_order_vehicles(session: AsyncSession, order_id: int) -> List[Vehicle]:
    result = await session.execute(
        select(Vehicle)
        .join(OrderVehicle, OrderVehicle.vehicle_id == Vehicle.id)
        .where(OrderVehicle.order_id == order_id)
        .order_by(Vehicle.id)
    )
    return list(result.scalars().all())


async def get_order_totals(session: AsyncSession, order_id: int) -> Optional[OrderTotals]:
    result = await session.execute(select(OrderTotals).where(OrderTotals.order_id == order_id))
    return result.scalar_one_or_none()


async def list_orders(
    session: AsyncSession,
    state: Optional[OrderState] = None,
    customer_id: Optional[int] = None,
) -> List[Order]:
    """Orders newest first, optionally filtered by state and customer."""
    stmt = select(Order)
    if state is not None:
        stmt = stmt.where(Order.order_state == state)
    if customer_id is not None:
        stmt = stmt.where(Order.customer_id == customer_id)
    stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())
