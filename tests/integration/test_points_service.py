from __future__ import annotations

import pytest
from sqlalchemy import select

from loyalty.db.enums import PointsEventType
from loyalty.db.models import PointsLedgerEntry, User
from loyalty.errors import InsufficientBalanceError, NotFoundError
from loyalty.services.points_service import (
    append_points_entry,
    check_user_balance,
    count_user_points_entries,
    get_user_points_summary,
    list_user_points_entries,
)


async def _create_user(session_factory, email: str) -> int:
    async with session_factory() as session:
        async with session.begin():
            user = User(email=email)
            session.add(user)
            await session.flush()
            return user.id


@pytest.mark.asyncio
async def test_append_is_idempotent_by_dedupe_key(session_factory) -> None:
    user_id = await _create_user(session_factory, "dedupe@example.com")

    async with session_factory() as session:
        async with session.begin():
            first = await append_points_entry(
                session,
                user_id=user_id,
                amount=30,
                event_type=PointsEventType.REFUND,
                reason="Refund: damaged",
                dedupe_key="redemption:501:refund",
            )
            second = await append_points_entry(
                session,
                user_id=user_id,
                amount=30,
                event_type=PointsEventType.REFUND,
                reason="Refund: damaged",
                dedupe_key="redemption:501:refund",
            )

    assert first.changed is True
    assert first.balance_after == 30
    assert second.changed is False
    assert second.entry is not None
    assert second.entry.id == first.entry.id

    async with session_factory() as session:
        check = await check_user_balance(session, user_id=user_id)
    assert (check.balance, check.ledger_total) == (30, 30)


@pytest.mark.asyncio
async def test_debit_below_zero_rolls_back(session_factory) -> None:
    user_id = await _create_user(session_factory, "overdraw@example.com")

    with pytest.raises(InsufficientBalanceError):
        async with session_factory() as session:
            async with session.begin():
                await append_points_entry(
                    session,
                    user_id=user_id,
                    amount=-10,
                    event_type=PointsEventType.REDEMPTION,
                    reason="Redeem Sticker",
                )

    async with session_factory() as session:
        entries = (
            await session.execute(select(PointsLedgerEntry).where(PointsLedgerEntry.user_id == user_id))
        ).scalars().all()
        balance = await session.scalar(select(User.points).where(User.id == user_id))
    assert entries == []
    assert balance == 0


@pytest.mark.asyncio
async def test_summary_and_history(session_factory) -> None:
    user_id = await _create_user(session_factory, "history@example.com")

    async with session_factory() as session:
        async with session.begin():
            for amount, event_type in (
                (100, PointsEventType.ACTION_AWARD),
                (50, PointsEventType.BATCH_AWARD),
                (-70, PointsEventType.REDEMPTION),
            ):
                await append_points_entry(
                    session,
                    user_id=user_id,
                    amount=amount,
                    event_type=event_type,
                    reason=f"{event_type.value} {amount}",
                )

    async with session_factory() as session:
        summary = await get_user_points_summary(session, user_id=user_id)
        page = await list_user_points_entries(session, user_id=user_id, limit=2)
        redemptions = await list_user_points_entries(
            session, user_id=user_id, event_type=PointsEventType.REDEMPTION
        )
        total = await count_user_points_entries(session, user_id=user_id)

    assert (summary.balance, summary.total_earned, summary.total_spent, summary.operations_count) == (80, 150, 70, 3)
    assert [entry.amount for entry in page] == [-70, 50]
    assert [entry.amount for entry in redemptions] == [-70]
    assert total == 3


@pytest.mark.asyncio
async def test_unknown_user_is_not_found(session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await get_user_points_summary(session, user_id=424_242)
