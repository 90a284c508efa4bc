from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.config import settings
from loyalty.db.enums import PointsEventType, RedemptionStatus, RewardCategory, UserRole
from loyalty.db.models import MonthlyRanking, RedemptionRequest, Reward, User
from loyalty.errors import (
    ForbiddenError,
    InsufficientBalanceError,
    LoyaltyError,
    NotFoundError,
    RedemptionLimitExceededError,
    UnavailableError,
    ValidationError,
)
from loyalty.services.points_service import (
    append_points_entry,
    lock_user,
    redemption_debit_dedupe_key,
    redemption_refund_dedupe_key,
)

logger = logging.getLogger(__name__)

ACTIVE_REDEMPTION_STATUSES: tuple[RedemptionStatus, ...] = (
    RedemptionStatus.PENDING,
    RedemptionStatus.APPROVED,
    RedemptionStatus.DELIVERED,
)
DECISION_STATUSES: tuple[RedemptionStatus, ...] = (
    RedemptionStatus.APPROVED,
    RedemptionStatus.REJECTED,
    RedemptionStatus.DELIVERED,
)
ALLOWED_TRANSITIONS: dict[RedemptionStatus, frozenset[RedemptionStatus]] = {
    RedemptionStatus.PENDING: frozenset(DECISION_STATUSES),
    RedemptionStatus.APPROVED: frozenset({RedemptionStatus.DELIVERED}),
    RedemptionStatus.REJECTED: frozenset(),
    RedemptionStatus.DELIVERED: frozenset(),
}


@dataclass(slots=True)
class ReceiverInfo:
    name: str
    phone: str | None = None
    email: str | None = None
    address: str | None = None

    def normalized(self) -> ReceiverInfo:
        return ReceiverInfo(
            name=(self.name or "").strip(),
            phone=(self.phone or "").strip() or None,
            email=(self.email or "").strip() or None,
            address=(self.address or "").strip() or None,
        )


@dataclass(slots=True)
class RewardAvailability:
    reward: Reward
    can_redeem: bool
    reason: str | None


def life_points(points: int) -> int:
    unit = max(settings.life_points_unit, 1)
    return max(points, 0) // unit


def _validate_receiver(receiver: ReceiverInfo) -> ReceiverInfo:
    normalized = receiver.normalized()
    if not normalized.name:
        raise ValidationError("Receiver name is required")
    if normalized.phone is None and normalized.email is None:
        raise ValidationError("Receiver phone or email is required")
    return normalized


async def _count_active_redemptions(session: AsyncSession, *, user_id: int, reward_id: str) -> int:
    total = await session.scalar(
        select(func.count(RedemptionRequest.id)).where(
            RedemptionRequest.user_id == user_id,
            RedemptionRequest.reward_id == reward_id,
            RedemptionRequest.status.in_(ACTIVE_REDEMPTION_STATUSES),
        )
    )
    return int(total or 0)


async def _has_active_rank_redemption(session: AsyncSession, *, user_id: int) -> bool:
    existing = await session.scalar(
        select(RedemptionRequest.id)
        .join(Reward, Reward.id == RedemptionRequest.reward_id)
        .where(
            RedemptionRequest.user_id == user_id,
            Reward.category == RewardCategory.MONTHLY_RANK,
            RedemptionRequest.status.in_(ACTIVE_REDEMPTION_STATUSES),
        )
        .limit(1)
    )
    return existing is not None


async def _holds_matching_ranking(session: AsyncSession, *, user_id: int, reward: Reward) -> bool:
    if reward.rank is None:
        return False
    stmt = select(MonthlyRanking.id).where(
        MonthlyRanking.user_id == user_id,
        MonthlyRanking.rank == reward.rank,
    )
    if reward.month is not None:
        stmt = stmt.where(MonthlyRanking.month == reward.month)
    return (await session.scalar(stmt.limit(1))) is not None


async def _check_eligibility(session: AsyncSession, *, user: User, reward: Reward) -> int:
    """Raise when ``user`` cannot redeem ``reward`` and return the points cost otherwise."""

    if not reward.is_active:
        raise UnavailableError("Reward is not available", details={"reward_id": reward.id})

    if reward.category == RewardCategory.MONTHLY_RANK:
        if not await _holds_matching_ranking(session, user_id=user.id, reward=reward):
            raise UnavailableError(
                "You are not eligible for this ranking reward",
                details={"reward_id": reward.id, "rank": reward.rank},
            )
        if await _has_active_rank_redemption(session, user_id=user.id):
            raise RedemptionLimitExceededError(
                "Ranking reward has already been claimed",
                details={"reward_id": reward.id},
            )
        return 0

    if reward.max_per_user is not None:
        used = await _count_active_redemptions(session, user_id=user.id, reward_id=reward.id)
        if used >= reward.max_per_user:
            raise RedemptionLimitExceededError(
                f"You can redeem this reward at most {reward.max_per_user} time(s)",
                details={"reward_id": reward.id, "max_per_user": reward.max_per_user, "used": used},
            )

    cost = reward.points_required
    if cost > 0 and user.points < cost:
        raise InsufficientBalanceError(
            "Insufficient points",
            details={"required": cost, "available": user.points},
        )
    if reward.life_required is not None and life_points(user.points) < reward.life_required:
        raise InsufficientBalanceError(
            "Insufficient life points",
            details={"required": reward.life_required, "available": life_points(user.points)},
        )
    return cost


async def redeem(
    session: AsyncSession,
    *,
    user_id: int,
    reward_id: str,
    receiver: ReceiverInfo,
) -> RedemptionRequest:
    """Create a PENDING redemption and debit its cost in the caller's transaction.

    The user row stays locked until commit, so one user's redemptions are
    checked and debited one at a time.
    """

    user = await lock_user(session, user_id=user_id)
    reward = await session.scalar(select(Reward).where(Reward.id == reward_id))
    if reward is None:
        raise NotFoundError("Reward not found", details={"reward_id": reward_id})

    normalized = _validate_receiver(receiver)
    cost = await _check_eligibility(session, user=user, reward=reward)

    item = RedemptionRequest(
        user_id=user.id,
        reward_id=reward.id,
        points_used=cost,
        status=RedemptionStatus.PENDING,
        receiver_name=normalized.name,
        receiver_phone=normalized.phone,
        receiver_email=normalized.email,
        receiver_address=normalized.address,
    )
    session.add(item)
    await session.flush()

    if cost > 0:
        await append_points_entry(
            session,
            user_id=user.id,
            amount=-cost,
            event_type=PointsEventType.REDEMPTION,
            reason=f"Redeem {reward.name}",
            dedupe_key=redemption_debit_dedupe_key(item.id),
            payload={"redemption_id": item.id, "reward_id": reward.id},
        )

    logger.info("Redemption created: id=%s user=%s reward=%s cost=%s", item.id, user.id, reward.id, cost)
    return item


async def decide(
    session: AsyncSession,
    *,
    redemption_id: int,
    status: RedemptionStatus | str,
    admin_id: int,
    rejection_reason: str | None = None,
) -> RedemptionRequest:
    """Move a redemption to APPROVED, REJECTED or DELIVERED.

    Only a PENDING request can be rejected, and the rejection refunds
    ``points_used`` exactly once in the same transaction. APPROVED may only move
    on to DELIVERED.
    Applying the current status again changes nothing. Limit counters consumed
    by earlier awards are not rolled back.
    """

    try:
        target = RedemptionStatus(status)
    except ValueError as exc:
        raise ValidationError("Unknown redemption status", details={"status": str(status)}) from exc
    if target not in DECISION_STATUSES:
        raise ValidationError("Unsupported redemption status", details={"status": target.value})

    admin = await session.scalar(select(User).where(User.id == admin_id))
    if admin is None or admin.role != UserRole.ADMIN:
        raise ForbiddenError("Only admins can update redemptions", details={"admin_id": admin_id})

    reason = (rejection_reason or "").strip()
    if target == RedemptionStatus.REJECTED and not reason:
        raise ValidationError("Rejection reason is required")

    item = await session.scalar(
        select(RedemptionRequest)
        .where(RedemptionRequest.id == redemption_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if item is None:
        raise NotFoundError("Redemption request not found", details={"redemption_id": redemption_id})

    if item.status == target:
        return item
    if target not in ALLOWED_TRANSITIONS[item.status]:
        raise ValidationError(
            f"Cannot move redemption from {item.status.value} to {target.value}",
            details={"from": item.status.value, "to": target.value},
        )

    item.status = target
    item.decided_by_user_id = admin.id
    item.decided_at = datetime.now(UTC)
    if target == RedemptionStatus.REJECTED:
        item.rejection_reason = reason
        if item.points_used > 0:
            await append_points_entry(
                session,
                user_id=item.user_id,
                amount=item.points_used,
                event_type=PointsEventType.REFUND,
                reason=f"Refund: {reason}",
                dedupe_key=redemption_refund_dedupe_key(item.id),
                payload={"redemption_id": item.id, "reward_id": item.reward_id},
            )
    await session.flush()

    logger.info("Redemption %s moved to %s by admin %s", item.id, target.value, admin.id)
    return item


async def list_user_redemptions(
    session: AsyncSession,
    *,
    user_id: int,
    limit: int = 20,
    offset: int = 0,
) -> list[RedemptionRequest]:
    safe_limit = max(1, min(limit, 100))
    stmt = (
        select(RedemptionRequest)
        .where(RedemptionRequest.user_id == user_id)
        .order_by(RedemptionRequest.created_at.desc(), RedemptionRequest.id.desc())
        .offset(max(0, offset))
        .limit(safe_limit)
    )
    return list((await session.execute(stmt)).scalars().all())


async def list_redemptions(
    session: AsyncSession,
    *,
    status: RedemptionStatus | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[RedemptionRequest]:
    safe_limit = max(1, min(limit, 100))
    stmt = select(RedemptionRequest)
    if status is not None:
        stmt = stmt.where(RedemptionRequest.status == status)
    stmt = stmt.order_by(RedemptionRequest.created_at.asc(), RedemptionRequest.id.asc())
    return list((await session.execute(stmt.offset(max(0, offset)).limit(safe_limit))).scalars().all())


async def list_rewards_for_user(session: AsyncSession, *, user_id: int) -> list[RewardAvailability]:
    user = await session.scalar(select(User).where(User.id == user_id))
    if user is None:
        raise NotFoundError("User not found", details={"user_id": user_id})

    rewards = (
        await session.execute(
            select(Reward)
            .where(Reward.is_active.is_(True))
            .order_by(Reward.points_required.asc(), Reward.id.asc())
        )
    ).scalars().all()

    result: list[RewardAvailability] = []
    for reward in rewards:
        try:
            await _check_eligibility(session, user=user, reward=reward)
        except LoyaltyError as exc:
            result.append(RewardAvailability(reward=reward, can_redeem=False, reason=exc.message))
            continue
        result.append(RewardAvailability(reward=reward, can_redeem=True, reason=None))
    return result
