"""Tests for availability checks and the reservation ledger."""

from datetime import date, timedelta
from itertools import product

import pytest
from sqlalchemy.exc import IntegrityError

import availability
import reservations
from errors import InvalidArgument
from models import Order, OrderState, ReservedVehiclesPerDay, ReservedVehicleState, Vehicle, VehicleStatus

JUNE = date(2030, 6, 1)


def day(n: int) -> date:
    return JUNE + timedelta(days=n - 1)


class TestRangesOverlap:
    def test_overlap_is_symmetric(self):
        ranges = [(day(a), day(a + length)) for a, length in product(range(1, 8), range(0, 4))]
        for (a_from, a_to), (b_from, b_to) in product(ranges, ranges):
            assert availability.ranges_overlap(a_from, a_to, b_from, b_to) == availability.ranges_overlap(
                b_from, b_to, a_from, a_to
            )

    def test_touching_days_overlap(self):
        assert availability.ranges_overlap(day(10), day(12), day(12), day(14))

    def test_adjacent_days_do_not_overlap(self):
        assert not availability.ranges_overlap(day(10), day(12), day(13), day(14))


class TestIterDays:
    def test_inclusive(self):
        assert list(reservations.iter_days(day(10), day(12))) == [day(10), day(11), day(12)]

    def test_reversed_range_rejected(self):
        with pytest.raises(InvalidArgument):
            list(reservations.iter_days(day(12), day(10)))


class TestConflicts:
    async def test_no_conflict_on_empty_ledger(self, session, catalog):
        assert not await availability.has_conflict(session, catalog.sub_category_id, day(10), day(12))

    async def test_confirmed_order_blocks_overlapping_days(self, session, catalog, place_order, confirm):
        order_id = await place_order()
        await confirm(order_id, catalog.vehicle_ids[:2])

        assert await availability.has_conflict(session, catalog.sub_category_id, day(12), day(15))
        assert not await availability.has_conflict(session, catalog.sub_category_id, day(13), day(15))
        assert not await availability.has_conflict(session, catalog.other_sub_category_id, day(10), day(12))

    async def test_vehicle_scoped_conflict(self, session, catalog, place_order, confirm):
        order_id = await place_order()
        await confirm(order_id, catalog.vehicle_ids[:2])

        free_vehicle = catalog.vehicle_ids[2]
        assert await availability.has_conflict(
            session, catalog.sub_category_id, day(11), day(11), vehicle_id=catalog.vehicle_ids[0]
        )
        assert not await availability.has_conflict(
            session, catalog.sub_category_id, day(11), day(11), vehicle_id=free_vehicle
        )

    async def test_completed_orders_do_not_block(self, session, catalog, place_order, confirm, session_maker):
        order_id = await place_order()
        await confirm(order_id, catalog.vehicle_ids[:2])
        async with session_maker() as s:
            order = await s.get(Order, order_id)
            order.order_state = OrderState.COMPLETED
            await s.commit()

        assert not await availability.has_conflict(session, catalog.sub_category_id, day(10), day(12))
        assert await availability.has_conflict(
            session, catalog.sub_category_id, day(10), day(12), exclude_completed_orders=False
        )

    async def test_cancelled_rows_never_block(self, session, catalog, place_order, confirm, session_maker):
        order_id = await place_order()
        await confirm(order_id, catalog.vehicle_ids[:2])
        async with session_maker() as s:
            cancelled = await reservations.cancel_order_reservations(s, order_id, "admin")
            await s.commit()

        assert cancelled == 6
        assert not await availability.has_conflict(session, catalog.sub_category_id, day(10), day(12))


class TestCapacity:
    async def test_whole_pool_free(self, session, catalog):
        assert await availability.count_available_vehicles(session, catalog.sub_category_id, day(10), day(12)) == 3

    async def test_booked_and_maintenance_vehicles_excluded(
        self, session, catalog, place_order, confirm, session_maker
    ):
        order_id = await place_order()
        await confirm(order_id, catalog.vehicle_ids[:2])
        async with session_maker() as s:
            vehicle = await s.get(Vehicle, catalog.vehicle_ids[2])
            vehicle.update_status(VehicleStatus.UNDER_MAINTENANCE, "mechanic")
            await s.commit()

        assert await availability.count_available_vehicles(session, catalog.sub_category_id, day(11), day(11)) == 0
        assert await availability.count_available_vehicles(session, catalog.sub_category_id, day(13), day(14)) == 2


class TestReservedDates:
    async def test_distinct_sorted_days(self, session, catalog, place_order, confirm):
        order_id = await place_order()
        await confirm(order_id, catalog.vehicle_ids[:2])

        assert await availability.reserved_dates(session, catalog.sub_category_id) == [day(10), day(11), day(12)]
        assert await availability.reserved_dates(session, catalog.other_sub_category_id) == []


class TestReservationLedger:
    async def test_one_row_per_vehicle_per_day(self, session, catalog, place_order, confirm):
        order_id = await place_order()
        await confirm(order_id, catalog.vehicle_ids[:2])

        rows = await reservations.get_order_reservations(session, order_id)
        assert len(rows) == 6
        assert all(row.date_from == row.date_to for row in rows)
        assert {row.vehicle_code for row in rows} == {"SC-001", "SC-002"}
        assert all(row.state == ReservedVehicleState.STILL_BOOKED for row in rows)

    async def test_cancelling_twice_changes_nothing_the_second_time(
        self, catalog, place_order, confirm, session_maker
    ):
        order_id = await place_order()
        await confirm(order_id, catalog.vehicle_ids[:2])

        async with session_maker() as s:
            first = await reservations.cancel_order_reservations(s, order_id, "admin")
            await s.commit()
        async with session_maker() as s:
            second = await reservations.cancel_order_reservations(s, order_id, "admin")
            await s.commit()
            rows = await reservations.get_order_reservations(s, order_id)

        assert first == 6
        assert second == 0
        assert all(row.state == ReservedVehicleState.CANCELLED for row in rows)

    async def test_storage_rejects_double_booking(self, catalog, place_order, confirm, session_maker):
        order_id = await place_order()
        other_order_id = await place_order(vehicles_count=1, is_urgent=False, client_total="115")
        await confirm(order_id, catalog.vehicle_ids[:2])

        async with session_maker() as s:
            s.add(
                ReservedVehiclesPerDay(
                    vehicle_id=catalog.vehicle_ids[0],
                    sub_category_id=catalog.sub_category_id,
                    vehicle_code="SC-001",
                    order_id=other_order_id,
                    date_from=day(11),
                    date_to=day(11),
                    state=ReservedVehicleState.STILL_BOOKED,
                )
            )
            with pytest.raises(IntegrityError):
                await s.commit()

    async def test_cancelled_row_frees_the_day_for_storage(self, catalog, place_order, confirm, session_maker):
        order_id = await place_order()
        other_order_id = await place_order(vehicles_count=1, is_urgent=False, client_total="115")
        await confirm(order_id, catalog.vehicle_ids[:2])

        async with session_maker() as s:
            await reservations.cancel_order_reservations(s, order_id, "admin")
            await s.flush()
            s.add(
                ReservedVehiclesPerDay(
                    vehicle_id=catalog.vehicle_ids[0],
                    sub_category_id=catalog.sub_category_id,
                    vehicle_code="SC-001",
                    order_id=other_order_id,
                    date_from=day(11),
                    date_to=day(11),
                    state=ReservedVehicleState.STILL_BOOKED,
                )
            )
            await s.commit()

    def test_vehicle_without_code_rejected(self):
        order = Order(id=1, sub_category_id=1, reservation_date_from=day(10), reservation_date_to=day(11))
        vehicle = Vehicle(id=7, vehicle_code="  ", sub_category_id=1)
        with pytest.raises(InvalidArgument):
            reservations.build_day_rows(order, vehicle)
