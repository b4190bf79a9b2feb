"""
Company treasury ledger.

Every credit is appended to ``treasury_entries``; the ``company_treasury``
singleton holds running totals that are incremented in SQL and can be
rebuilt from the entries at any time.

Note: These functions do NOT commit - caller must handle transaction.
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from errors import InvalidArgument
from models import CompanyTreasury, TreasuryEntry, TreasuryEntryKind, utc_now

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


async def get_or_create_treasury(session: AsyncSession) -> CompanyTreasury:
    """Fetch the singleton row, creating it on first use."""
    treasury = await session.get(CompanyTreasury, CompanyTreasury.SINGLETON_ID)
    if treasury is None:
        logger.info("[TREASURY] Creating company treasury record")
        treasury = CompanyTreasury(
            id=CompanyTreasury.SINGLETON_ID,
            total_revenue=_ZERO,
            total_cancellation_fees=_ZERO,
        )
        session.add(treasury)
        await session.flush()
    return treasury


async def _credit(
    session: AsyncSession,
    kind: TreasuryEntryKind,
    amount: Decimal,
    description: str,
    order_id: Optional[int],
    created_by: Optional[str],
) -> TreasuryEntry:
    if amount is None:
        raise InvalidArgument("Amount is required")
    amount = Decimal(amount)
    if amount < 0:
        raise InvalidArgument(f"Treasury amount cannot be negative: {amount}")

    treasury = await get_or_create_treasury(session)

    entry = TreasuryEntry(
        kind=kind,
        debit_amount=_ZERO,
        credit_amount=amount,
        description=description,
        order_id=order_id,
        created_by=created_by,
    )
    session.add(entry)

    column = (
        CompanyTreasury.total_revenue
        if kind == TreasuryEntryKind.REVENUE
        else CompanyTreasury.total_cancellation_fees
    )
    await session.execute(
        update(CompanyTreasury)
        .where(CompanyTreasury.id == CompanyTreasury.SINGLETON_ID)
        .values({column: column + amount, CompanyTreasury.updated_at: utc_now()})
        .execution_options(synchronize_session=False)
    )
    await session.flush()
    await session.refresh(treasury)

    logger.info(f"[TREASURY] +{amount} {kind.value} | {description}")
    return entry


async def add_revenue(
    session: AsyncSession,
    amount: Decimal,
    description: str = "Order revenue",
    order_id: Optional[int] = None,
    created_by: Optional[str] = None,
) -> TreasuryEntry:
    return await _credit(session, TreasuryEntryKind.REVENUE, amount, description, order_id, created_by)


async def add_cancellation_fee(
    session: AsyncSession,
    amount: Decimal,
    description: str = "Cancellation fee",
    order_id: Optional[int] = None,
    created_by: Optional[str] = None,
) -> TreasuryEntry:
    return await _credit(
        session, TreasuryEntryKind.CANCELLATION_FEE, amount, description, order_id, created_by
    )


async def _sum_entries(session: AsyncSession, kind: Optional[TreasuryEntryKind] = None) -> Decimal:
    stmt = select(
        func.coalesce(func.sum(TreasuryEntry.credit_amount), 0)
        - func.coalesce(func.sum(TreasuryEntry.debit_amount), 0)
    )
    if kind is not None:
        stmt = stmt.where(TreasuryEntry.kind == kind)
    result = await session.execute(stmt)
    return Decimal(str(result.scalar_one()))


async def get_balance(session: AsyncSession) -> Decimal:
    """Balance as the sum of every entry ever added."""
    return await _sum_entries(session)


async def get_treasury_summary(session: AsyncSession) -> dict:
    revenue = await _sum_entries(session, TreasuryEntryKind.REVENUE)
    cancellation_fees = await _sum_entries(session, TreasuryEntryKind.CANCELLATION_FEE)
    result = await session.execute(
        select(func.count(TreasuryEntry.id), func.max(TreasuryEntry.created_at))
    )
    entry_count, last_updated = result.one()
    return {
        "total_revenue": revenue,
        "total_cancellation_fees": cancellation_fees,
        "balance": revenue + cancellation_fees,
        "entry_count": entry_count,
        "last_updated": last_updated,
    }


async def rebuild_treasury(session: AsyncSession) -> CompanyTreasury:
    """Recompute the singleton totals from the entries."""
    treasury = await get_or_create_treasury(session)
    treasury.total_revenue = await _sum_entries(session, TreasuryEntryKind.REVENUE)
    treasury.total_cancellation_fees = await _sum_entries(session, TreasuryEntryKind.CANCELLATION_FEE)
    treasury.updated_at = utc_now()
    await session.flush()
    logger.info(
        f"[TREASURY] Rebuilt totals | revenue={treasury.total_revenue} "
        f"cancellation_fees={treasury.total_cancellation_fees}"
    )
    return treasury
