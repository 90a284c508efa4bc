from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest
from sqlalchemy import select

from loyalty.db.enums import PointsEventType, RedemptionStatus, RewardCategory, UserRole
from loyalty.db.models import MonthlyRanking, PointsLedgerEntry, RedemptionRequest, Reward, User
from loyalty.errors import (
    ForbiddenError,
    InsufficientBalanceError,
    NotFoundError,
    RedemptionLimitExceededError,
    UnavailableError,
    ValidationError,
)
from loyalty.services.award_service import award
from loyalty.services.points_service import check_user_balance
from loyalty.services.redemption_service import (
    ReceiverInfo,
    decide,
    list_rewards_for_user,
    list_user_redemptions,
    redeem,
)

RECEIVER = ReceiverInfo(name="Nguyen Van A", phone="0901234567", address="12 Le Loi, District 1")


async def _create_user(session_factory, email: str, *, points: int = 0, role: UserRole = UserRole.USER) -> int:
    async with session_factory() as session:
        async with session.begin():
            user = User(email=email, role=role)
            session.add(user)
            await session.flush()
            if points:
                await award(session, user_id=user.id, limit_type=None, points=points, reason="Opening balance")
            return user.id


async def _create_reward(session_factory, **values) -> str:
    async with session_factory() as session:
        async with session.begin():
            reward = Reward(**values)
            session.add(reward)
            await session.flush()
            return reward.id


async def _balance(session_factory, user_id: int) -> int:
    async with session_factory() as session:
        check = await check_user_balance(session, user_id=user_id)
    assert check.consistent is True
    return check.balance


async def _redeem(session_factory, user_id: int, reward_id: str) -> RedemptionRequest:
    async with session_factory() as session:
        async with session.begin():
            return await redeem(session, user_id=user_id, reward_id=reward_id, receiver=RECEIVER)


async def _decide(
    session_factory,
    redemption_id: int,
    status: RedemptionStatus,
    admin_id: int,
    reason: str | None = None,
) -> RedemptionRequest:
    async with session_factory() as session:
        async with session.begin():
            return await decide(
                session,
                redemption_id=redemption_id,
                status=status,
                admin_id=admin_id,
                rejection_reason=reason,
            )


@pytest.mark.asyncio
async def test_redeem_reject_and_redeem_again(session_factory) -> None:
    admin_id = await _create_user(session_factory, "admin@example.com", role=UserRole.ADMIN)
    user_id = await _create_user(session_factory, "shopper@example.com", points=500)
    reward_id = await _create_reward(
        session_factory,
        id="tote-bag",
        name="Tote bag",
        category=RewardCategory.POINT,
        points_required=200,
        max_per_user=1,
    )

    first = await _redeem(session_factory, user_id, reward_id)
    assert first.status == RedemptionStatus.PENDING
    assert first.points_used == 200
    assert await _balance(session_factory, user_id) == 300

    with pytest.raises(RedemptionLimitExceededError):
        await _redeem(session_factory, user_id, reward_id)
    assert await _balance(session_factory, user_id) == 300

    rejected = await _decide(session_factory, first.id, RedemptionStatus.REJECTED, admin_id, "Out of stock")
    assert rejected.status == RedemptionStatus.REJECTED
    assert rejected.rejection_reason == "Out of stock"
    assert rejected.decided_by_user_id == admin_id
    assert await _balance(session_factory, user_id) == 500

    again = await _redeem(session_factory, user_id, reward_id)
    assert again.status == RedemptionStatus.PENDING
    assert await _balance(session_factory, user_id) == 300

    async with session_factory() as session:
        entries = (
            await session.execute(
                select(PointsLedgerEntry)
                .where(PointsLedgerEntry.user_id == user_id)
                .order_by(PointsLedgerEntry.id.asc())
            )
        ).scalars().all()
        history = await list_user_redemptions(session, user_id=user_id)

    assert [(e.amount, e.event_type) for e in entries] == [
        (500, PointsEventType.ACTION_AWARD),
        (-200, PointsEventType.REDEMPTION),
        (200, PointsEventType.REFUND),
        (-200, PointsEventType.REDEMPTION),
    ]
    assert entries[1].reason == "Redeem Tote bag"
    assert entries[2].reason == "Refund: Out of stock"
    assert [item.id for item in history] == [again.id, first.id]


@pytest.mark.asyncio
async def test_refund_happens_exactly_once(session_factory) -> None:
    admin_id = await _create_user(session_factory, "admin2@example.com", role=UserRole.ADMIN)
    user_id = await _create_user(session_factory, "refund@example.com", points=300)
    reward_id = await _create_reward(session_factory, id="mug", name="Mug", points_required=200)

    item = await _redeem(session_factory, user_id, reward_id)
    assert await _balance(session_factory, user_id) == 100

    await _decide(session_factory, item.id, RedemptionStatus.REJECTED, admin_id, "Duplicate order")
    repeated = await _decide(session_factory, item.id, RedemptionStatus.REJECTED, admin_id, "Duplicate order")

    assert repeated.status == RedemptionStatus.REJECTED
    assert await _balance(session_factory, user_id) == 300

    with pytest.raises(ValidationError):
        await _decide(session_factory, item.id, RedemptionStatus.APPROVED, admin_id)


@pytest.mark.asyncio
async def test_approved_redemption_cannot_be_rejected(session_factory) -> None:
    admin_id = await _create_user(session_factory, "admin-approved@example.com", role=UserRole.ADMIN)
    user_id = await _create_user(session_factory, "approved@example.com", points=500)
    reward_id = await _create_reward(session_factory, id="headphones", name="Headphones", points_required=200)
    item = await _redeem(session_factory, user_id, reward_id)

    await _decide(session_factory, item.id, RedemptionStatus.APPROVED, admin_id)
    assert await _balance(session_factory, user_id) == 300

    with pytest.raises(ValidationError):
        await _decide(session_factory, item.id, RedemptionStatus.REJECTED, admin_id, "Changed mind")

    assert await _balance(session_factory, user_id) == 300
    async with session_factory() as session:
        current = await session.get(RedemptionRequest, item.id)
        refunds = (
            await session.execute(
                select(PointsLedgerEntry).where(
                    PointsLedgerEntry.user_id == user_id,
                    PointsLedgerEntry.event_type == PointsEventType.REFUND,
                )
            )
        ).scalars().all()
    assert current.status == RedemptionStatus.APPROVED
    assert current.rejection_reason is None
    assert refunds == []


@pytest.mark.asyncio
async def test_concurrent_redeems_respect_max_per_user(session_factory) -> None:
    user_id = await _create_user(session_factory, "rush@example.com", points=1000)
    reward_id = await _create_reward(
        session_factory, id="limited-print", name="Limited print", points_required=100, max_per_user=1
    )

    async def _attempt():
        async with session_factory() as session:
            async with session.begin():
                return await redeem(session, user_id=user_id, reward_id=reward_id, receiver=RECEIVER)

    results = await asyncio.gather(*(_attempt() for _ in range(6)), return_exceptions=True)

    succeeded = [r for r in results if isinstance(r, RedemptionRequest)]
    failed = [r for r in results if not isinstance(r, RedemptionRequest)]
    assert len(succeeded) == 1
    assert len(failed) == 5
    assert all(isinstance(r, RedemptionLimitExceededError) for r in failed)

    async with session_factory() as session:
        debits = (
            await session.execute(
                select(PointsLedgerEntry).where(
                    PointsLedgerEntry.user_id == user_id,
                    PointsLedgerEntry.event_type == PointsEventType.REDEMPTION,
                )
            )
        ).scalars().all()
        requests = (
            await session.execute(select(RedemptionRequest).where(RedemptionRequest.user_id == user_id))
        ).scalars().all()
    assert [d.amount for d in debits] == [-100]
    assert len(requests) == 1
    assert await _balance(session_factory, user_id) == 900


@pytest.mark.asyncio
async def test_status_transitions_and_admin_checks(session_factory) -> None:
    admin_id = await _create_user(session_factory, "admin3@example.com", role=UserRole.ADMIN)
    user_id = await _create_user(session_factory, "flow@example.com", points=1000)
    reward_id = await _create_reward(session_factory, id="cap", name="Cap", points_required=100)
    item = await _redeem(session_factory, user_id, reward_id)

    with pytest.raises(ForbiddenError):
        await _decide(session_factory, item.id, RedemptionStatus.APPROVED, user_id)
    with pytest.raises(ValidationError):
        await _decide(session_factory, item.id, RedemptionStatus.REJECTED, admin_id, "   ")
    with pytest.raises(NotFoundError):
        await _decide(session_factory, 987_654, RedemptionStatus.APPROVED, admin_id)

    approved = await _decide(session_factory, item.id, RedemptionStatus.APPROVED, admin_id)
    delivered = await _decide(session_factory, item.id, RedemptionStatus.DELIVERED, admin_id)
    assert (approved.status, delivered.status) == (RedemptionStatus.APPROVED, RedemptionStatus.DELIVERED)
    assert delivered.decided_at is not None

    with pytest.raises(ValidationError):
        await _decide(session_factory, item.id, RedemptionStatus.REJECTED, admin_id, "Too late")
    assert await _balance(session_factory, user_id) == 900


@pytest.mark.asyncio
async def test_redeem_rejections(session_factory) -> None:
    user_id = await _create_user(session_factory, "poor@example.com", points=1500)
    expensive = await _create_reward(session_factory, id="phone", name="Phone", points_required=5000)
    life_gated = await _create_reward(
        session_factory, id="vip-pass", name="VIP pass", points_required=100, life_required=2
    )
    retired = await _create_reward(session_factory, id="old", name="Old", points_required=10, is_active=False)

    with pytest.raises(InsufficientBalanceError):
        await _redeem(session_factory, user_id, expensive)
    with pytest.raises(InsufficientBalanceError):
        await _redeem(session_factory, user_id, life_gated)
    with pytest.raises(UnavailableError):
        await _redeem(session_factory, user_id, retired)
    with pytest.raises(NotFoundError):
        await _redeem(session_factory, user_id, "missing-reward")
    with pytest.raises(NotFoundError):
        await _redeem(session_factory, 555_555, expensive)

    assert await _balance(session_factory, user_id) == 1500


@pytest.mark.asyncio
async def test_monthly_rank_reward_requires_ranking_and_single_claim(session_factory) -> None:
    winner_id = await _create_user(session_factory, "winner@example.com")
    other_id = await _create_user(session_factory, "other@example.com")
    month = datetime(2026, 9, 1, tzinfo=UTC)
    voucher = await _create_reward(
        session_factory,
        id="voucher-1000k",
        name="Voucher 1.000.000 VND",
        category=RewardCategory.MONTHLY_RANK,
        points_required=0,
        rank=1,
    )
    async with session_factory() as session:
        async with session.begin():
            session.add(MonthlyRanking(month=month, rank=1, user_id=winner_id, like_count=40))

    with pytest.raises(UnavailableError):
        await _redeem(session_factory, other_id, voucher)

    claimed = await _redeem(session_factory, winner_id, voucher)
    assert claimed.points_used == 0

    with pytest.raises(RedemptionLimitExceededError):
        await _redeem(session_factory, winner_id, voucher)

    async with session_factory() as session:
        entries = (
            await session.execute(select(PointsLedgerEntry).where(PointsLedgerEntry.user_id == winner_id))
        ).scalars().all()
    assert entries == []


@pytest.mark.asyncio
async def test_reward_catalogue_flags(session_factory) -> None:
    user_id = await _create_user(session_factory, "browser@example.com", points=250)
    await _create_reward(session_factory, id="sticker", name="Sticker", points_required=50)
    await _create_reward(session_factory, id="hoodie", name="Hoodie", points_required=900)

    async with session_factory() as session:
        catalogue = await list_rewards_for_user(session, user_id=user_id)

    flags = {item.reward.id: (item.can_redeem, item.reason) for item in catalogue}
    assert flags["sticker"] == (True, None)
    assert flags["hoodie"] == (False, "Insufficient points")
