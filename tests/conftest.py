"""Pytest fixtures for the order engine tests."""

import os

# config.py requires a database URL at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./rental-test.db")

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List

import pytest
import pytest_asyncio

import orders
from database import close_db, create_engine_for, create_session_maker, init_db
from models import City, Customer, PaymentMethod, SubCategory, Vehicle
from paypal_client import PayPalClient, PayPalOrderResult, PayPalCaptureResult
from principal import ADMIN_ROLE, CUSTOMER_ROLE, Principal

TODAY = date(2030, 6, 1)


@dataclass
class Catalog:
    city_id: int
    bare_city_id: int
    sub_category_id: int
    other_sub_category_id: int
    customer_id: int
    cash_blocked_customer_id: int
    vehicle_ids: List[int]
    other_vehicle_id: int


class FailingGateway(PayPalClient):
    """Gateway whose PayPal calls always fail."""

    def __init__(self):
        super().__init__(client_id="", client_secret="")

    async def create_order(self, reference, amount, currency="EUR"):
        return PayPalOrderResult(is_success=False, error="PayPal is down")

    async def capture_order(self, paypal_order_id):
        return PayPalCaptureResult(
            is_success=False, paypal_order_id=paypal_order_id, status="DECLINED", error="Card declined"
        )


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'rental.db'}"


@pytest_asyncio.fixture
async def engine(db_url):
    engine = create_engine_for(db_url)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_maker(engine):
    return create_session_maker(engine)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def fetch(session_maker):
    """Load a fresh copy of a row in its own session."""

    async def _fetch(model, pk):
        async with session_maker() as s:
            return await s.get(model, pk)

    return _fetch


@pytest_asyncio.fixture
async def catalog(session_maker):
    """Berlin with every fee set, a fee-less city, two sub-categories and a vehicle pool."""
    async with session_maker() as s:
        city = City(
            name="Berlin",
            delivery_fees=Decimal("10"),
            service_fees=Decimal("5"),
            urgent_delivery=Decimal("20"),
            cancellation_fees=Decimal("30"),
        )
        bare_city = City(name="Potsdam")
        sub_category = SubCategory(name="Scooter", price=Decimal("100"))
        other_sub_category = SubCategory(name="E-Bike", price=Decimal("40"))
        s.add_all([city, bare_city, sub_category, other_sub_category])
        await s.flush()

        customer = Customer(full_name="Alice Example", mobile_number="+491700000001", city_id=city.id)
        blocked = Customer(
            full_name="Bob Example", mobile_number="+491700000002", city_id=city.id, cash_block=True
        )
        vehicles = [
            Vehicle(name=f"Scooter {n}", vehicle_code=f"SC-{n:03d}", sub_category_id=sub_category.id)
            for n in range(1, 4)
        ]
        other_vehicle = Vehicle(name="E-Bike 1", vehicle_code="EB-001", sub_category_id=other_sub_category.id)
        s.add_all([customer, blocked, *vehicles, other_vehicle])
        await s.commit()

        return Catalog(
            city_id=city.id,
            bare_city_id=bare_city.id,
            sub_category_id=sub_category.id,
            other_sub_category_id=other_sub_category.id,
            customer_id=customer.id,
            cash_blocked_customer_id=blocked.id,
            vehicle_ids=[v.id for v in vehicles],
            other_vehicle_id=other_vehicle.id,
        )


@pytest.fixture
def customer(catalog):
    return Principal(user_id=catalog.customer_id, user_name="alice", roles=frozenset({CUSTOMER_ROLE}))


@pytest.fixture
def admin():
    return Principal(user_id=9000, user_name="admin", roles=frozenset({ADMIN_ROLE}))


@pytest.fixture
def gateway():
    # No credentials: mock mode
    return PayPalClient(client_id="", client_secret="")


def order_request(catalog, **overrides) -> orders.CreateOrderRequest:
    """Two urgent scooters in Berlin for Jun 10-12 2030; total 250."""
    values = dict(
        sub_category_id=catalog.sub_category_id,
        city_id=catalog.city_id,
        reservation_date_from=date(2030, 6, 10),
        reservation_date_to=date(2030, 6, 12),
        vehicles_count=2,
        passport_image="passport.png",
        hotel_name="Hotel Adlon",
        hotel_address="Unter den Linden 77",
        payment_method=PaymentMethod.CASH,
        client_total=Decimal("250"),
        is_urgent=True,
    )
    values.update(overrides)
    return orders.CreateOrderRequest(**values)


@pytest_asyncio.fixture
async def place_order(session_maker, catalog, customer, gateway):
    """Create an order in its own session and return its id."""

    async def _place(principal=None, **overrides) -> int:
        async with session_maker() as s:
            result = await orders.create_order(
                s, principal or customer, order_request(catalog, **overrides), gateway=gateway, today=TODAY
            )
            return result.order.id

    return _place


@pytest_asyncio.fixture
async def confirm(session_maker, admin):
    async def _confirm(order_id: int, vehicle_ids):
        async with session_maker() as s:
            order = await orders.confirm_order(s, admin, order_id, vehicle_ids)
            return order.id

    return _confirm


@pytest_asyncio.fixture
async def advance(session_maker, admin):
    async def _advance(order_id: int, new_state):
        async with session_maker() as s:
            order = await orders.advance_order_state(s, admin, order_id, new_state)
            return order.order_state

    return _advance


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def make_request(catalog):
    def _make(**overrides) -> orders.CreateOrderRequest:
        return order_request(catalog, **overrides)

    return _make


@pytest.fixture
def failing_gateway():
    return FailingGateway()
