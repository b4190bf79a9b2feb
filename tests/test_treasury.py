"""Tests for the company treasury."""

from decimal import Decimal

import pytest
from sqlalchemy import select

import treasury
from errors import InvalidArgument
from models import CompanyTreasury, TreasuryEntry, TreasuryEntryKind


class TestCredits:
    async def test_treasury_created_on_first_credit(self, session, fetch):
        assert await fetch(CompanyTreasury, CompanyTreasury.SINGLETON_ID) is None

        await treasury.add_revenue(session, Decimal("250"), description="Revenue for order ORD-1")
        await session.commit()

        row = await fetch(CompanyTreasury, CompanyTreasury.SINGLETON_ID)
        assert row.total_revenue == Decimal("250")
        assert row.total_cancellation_fees == Decimal("0")

    async def test_credits_accumulate_per_kind(self, session, fetch):
        await treasury.add_revenue(session, Decimal("250"))
        await treasury.add_revenue(session, Decimal("115.50"))
        await treasury.add_cancellation_fee(session, Decimal("30"))
        await session.commit()

        row = await fetch(CompanyTreasury, CompanyTreasury.SINGLETON_ID)
        assert row.total_revenue == Decimal("365.50")
        assert row.total_cancellation_fees == Decimal("30")
        assert row.balance == Decimal("395.50")

    async def test_every_credit_is_an_entry(self, session):
        await treasury.add_revenue(session, Decimal("250"), order_id=None, created_by="admin")
        await treasury.add_cancellation_fee(session, Decimal("30"), created_by="admin")
        await session.commit()

        entries = (await session.execute(select(TreasuryEntry).order_by(TreasuryEntry.id))).scalars().all()
        assert [e.kind for e in entries] == [TreasuryEntryKind.REVENUE, TreasuryEntryKind.CANCELLATION_FEE]
        assert [e.credit_amount for e in entries] == [Decimal("250"), Decimal("30")]
        assert all(e.debit_amount == Decimal("0") for e in entries)
        assert {e.created_by for e in entries} == {"admin"}

    async def test_zero_credit_allowed(self, session):
        await treasury.add_cancellation_fee(session, Decimal("0"))
        await session.commit()
        assert await treasury.get_balance(session) == Decimal("0")

    @pytest.mark.parametrize("amount", [None, Decimal("-0.01")])
    async def test_bad_amount_rejected(self, session, amount):
        with pytest.raises(InvalidArgument):
            await treasury.add_revenue(session, amount)


class TestBalance:
    async def test_empty_treasury(self, session):
        assert await treasury.get_balance(session) == Decimal("0")
        summary = await treasury.get_treasury_summary(session)
        assert summary["entry_count"] == 0
        assert summary["balance"] == Decimal("0")
        assert summary["last_updated"] is None

    async def test_balance_is_sum_of_entries(self, session):
        for amount in ("250", "115", "30"):
            await treasury.add_revenue(session, Decimal(amount))
        await treasury.add_cancellation_fee(session, Decimal("30"))
        await session.commit()

        assert await treasury.get_balance(session) == Decimal("425")
        summary = await treasury.get_treasury_summary(session)
        assert summary["total_revenue"] == Decimal("395")
        assert summary["total_cancellation_fees"] == Decimal("30")
        assert summary["balance"] == Decimal("425")
        assert summary["entry_count"] == 4
        assert summary["last_updated"] is not None


class TestRebuild:
    async def test_rebuild_recomputes_drifted_totals(self, session, session_maker, fetch):
        await treasury.add_revenue(session, Decimal("250"))
        await treasury.add_cancellation_fee(session, Decimal("30"))
        await session.commit()

        async with session_maker() as s:
            row = await s.get(CompanyTreasury, CompanyTreasury.SINGLETON_ID)
            row.total_revenue = Decimal("1")
            await s.commit()

        async with session_maker() as s:
            await treasury.rebuild_treasury(s)
            await s.commit()

        row = await fetch(CompanyTreasury, CompanyTreasury.SINGLETON_ID)
        assert row.total_revenue == Decimal("250")
        assert row.total_cancellation_fees == Decimal("30")
