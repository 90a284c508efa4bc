from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.enums import LimitType, PointsEventType, UserRole
from loyalty.db.models import PointsLedgerEntry, User
from loyalty.errors import ForbiddenError, NotFoundError, ValidationError
from loyalty.services.limit_rules import get_limit_rule
from loyalty.services.limit_service import increment_limit_counter, lock_limit_counter
from loyalty.services.period_service import resolve_period
from loyalty.services.points_service import append_points_entry

logger = logging.getLogger(__name__)

FACEBOOK_PLATFORM = "facebook"
PRODUCT_CARD_CLICKS_MAX_PER_CALL = 100


@dataclass(slots=True)
class AwardResult:
    awarded: bool
    points: int
    entry: PointsLedgerEntry | None
    count: int | None = None
    max_count: int | None = None


@dataclass(slots=True)
class BatchAwardResult:
    awarded_count: int
    total_points: int
    remaining_capacity: int
    entry: PointsLedgerEntry | None


@dataclass(slots=True)
class LoginBonusResult:
    awarded: bool
    points: int
    first_login: bool
    entry: PointsLedgerEntry | None


async def award(
    session: AsyncSession,
    *,
    user_id: int,
    limit_type: LimitType | None,
    points: int,
    reason: str,
    note: str | None = None,
    now: datetime | None = None,
    event_type: PointsEventType = PointsEventType.ACTION_AWARD,
    payload: dict | None = None,
) -> AwardResult:
    """Credit ``points`` for one action unless its limit window is exhausted.

    Runs in the caller's transaction. The counter row for the current period is
    locked before the check, so concurrent calls for the same user and action
    serialize and at most ``max_count`` of them succeed. Hitting the limit is a
    normal result with ``awarded=False`` and no writes.
    """

    if points <= 0:
        raise ValidationError("Award points must be positive", details={"points": points})

    if limit_type is None:
        result = await append_points_entry(
            session,
            user_id=user_id,
            amount=points,
            event_type=event_type,
            reason=reason,
            note=note,
            payload=payload,
        )
        return AwardResult(awarded=True, points=points, entry=result.entry)

    rule = get_limit_rule(limit_type)
    await _ensure_user_exists(session, user_id=user_id)
    period = resolve_period(limit_type, now)
    counter = await lock_limit_counter(session, user_id=user_id, limit_type=limit_type, period=period)
    if counter.count >= rule.max_count:
        logger.debug("Award skipped: user=%s limit=%s count=%s", user_id, limit_type, counter.count)
        return AwardResult(
            awarded=False,
            points=0,
            entry=None,
            count=counter.count,
            max_count=rule.max_count,
        )

    result = await append_points_entry(
        session,
        user_id=user_id,
        amount=points,
        event_type=event_type,
        reason=reason,
        note=note,
        limit_type=limit_type,
        payload=payload,
    )
    new_count = await increment_limit_counter(session, counter=counter)
    return AwardResult(
        awarded=True,
        points=points,
        entry=result.entry,
        count=new_count,
        max_count=rule.max_count,
    )


async def award_batch(
    session: AsyncSession,
    *,
    user_id: int,
    limit_type: LimitType,
    requested_count: int,
    points_per_unit: int,
    reason: str,
    now: datetime | None = None,
) -> BatchAwardResult:
    """Award up to ``requested_count`` units, truncated to the remaining capacity.

    Writes a single ledger entry for the awarded units and advances the counter
    by the same number.
    """

    if requested_count < 1:
        raise ValidationError("requested_count must be at least 1", details={"requested_count": requested_count})
    if points_per_unit < 1:
        raise ValidationError("points_per_unit must be at least 1", details={"points_per_unit": points_per_unit})

    rule = get_limit_rule(limit_type)
    await _ensure_user_exists(session, user_id=user_id)
    period = resolve_period(limit_type, now)
    counter = await lock_limit_counter(session, user_id=user_id, limit_type=limit_type, period=period)

    remaining = max(0, rule.max_count - counter.count)
    awarded_count = min(requested_count, remaining)
    if awarded_count == 0:
        return BatchAwardResult(awarded_count=0, total_points=0, remaining_capacity=0, entry=None)

    total_points = awarded_count * points_per_unit
    result = await append_points_entry(
        session,
        user_id=user_id,
        amount=total_points,
        event_type=PointsEventType.BATCH_AWARD,
        reason=reason,
        note=f"{awarded_count} x {points_per_unit} points ({requested_count} requested)",
        limit_type=limit_type,
        payload={
            "awarded_count": awarded_count,
            "requested_count": requested_count,
            "points_per_unit": points_per_unit,
        },
    )
    await increment_limit_counter(session, counter=counter, by=awarded_count)
    return BatchAwardResult(
        awarded_count=awarded_count,
        total_points=total_points,
        remaining_capacity=remaining - awarded_count,
        entry=result.entry,
    )


async def award_post_creation_bonus(
    session: AsyncSession,
    *,
    user_id: int,
    post_id: int,
    now: datetime | None = None,
) -> AwardResult:
    rule = get_limit_rule(LimitType.POST_WEEKLY)
    return await award(
        session,
        user_id=user_id,
        limit_type=LimitType.POST_WEEKLY,
        points=rule.points_per_award,
        reason="Post creation bonus",
        note=f"First post this week: {post_id}",
        now=now,
        payload={"post_id": post_id},
    )


async def award_wish_creation_bonus(
    session: AsyncSession,
    *,
    user_id: int,
    wish_id: int,
    now: datetime | None = None,
) -> AwardResult:
    rule = get_limit_rule(LimitType.WISH_WEEKLY)
    return await award(
        session,
        user_id=user_id,
        limit_type=LimitType.WISH_WEEKLY,
        points=rule.points_per_award,
        reason="Wish creation bonus",
        note=f"First wish this week: {wish_id}",
        now=now,
        payload={"wish_id": wish_id},
    )


async def award_share_bonus(
    session: AsyncSession,
    *,
    user_id: int,
    content_id: int,
    content_type: str,
    platform: str,
    now: datetime | None = None,
) -> AwardResult:
    if platform.strip().lower() != FACEBOOK_PLATFORM:
        return AwardResult(awarded=False, points=0, entry=None)

    content_label = content_type.strip().lower() or "content"
    rule = get_limit_rule(LimitType.SHARE_FACEBOOK)
    return await award(
        session,
        user_id=user_id,
        limit_type=LimitType.SHARE_FACEBOOK,
        points=rule.points_per_award,
        reason="Facebook share bonus",
        note=f"Shared {content_label} to Facebook: {content_id}",
        now=now,
        payload={"content_id": content_id, "content_type": content_label, "platform": FACEBOOK_PLATFORM},
    )


async def process_product_card_clicks(
    session: AsyncSession,
    *,
    user_id: int,
    click_count: int,
    now: datetime | None = None,
) -> BatchAwardResult:
    if click_count < 1 or click_count > PRODUCT_CARD_CLICKS_MAX_PER_CALL:
        raise ValidationError(
            f"click_count must be within 1..{PRODUCT_CARD_CLICKS_MAX_PER_CALL}",
            details={"click_count": click_count},
        )
    rule = get_limit_rule(LimitType.PRODUCT_CARD_CLICK)
    return await award_batch(
        session,
        user_id=user_id,
        limit_type=LimitType.PRODUCT_CARD_CLICK,
        requested_count=click_count,
        points_per_unit=rule.points_per_award,
        reason="Product card click bonus",
        now=now,
    )


async def award_login_bonus(
    session: AsyncSession,
    *,
    user_id: int,
    now: datetime | None = None,
) -> LoginBonusResult:
    """First login earns the one-time bonus and uses up that day's daily bonus."""

    first_rule = get_limit_rule(LimitType.FIRST_LOGIN)
    first = await award(
        session,
        user_id=user_id,
        limit_type=LimitType.FIRST_LOGIN,
        points=first_rule.points_per_award,
        reason="First login bonus",
        now=now,
    )
    await session.execute(
        update(User).where(User.id == user_id).values(last_login_at=now or datetime.now(UTC))
    )

    if first.awarded:
        daily_counter = await lock_limit_counter(
            session,
            user_id=user_id,
            limit_type=LimitType.LOGIN_DAILY,
            period=resolve_period(LimitType.LOGIN_DAILY, now),
        )
        await increment_limit_counter(session, counter=daily_counter)
        logger.info("First login bonus granted: user=%s points=%s", user_id, first.points)
        return LoginBonusResult(awarded=True, points=first.points, first_login=True, entry=first.entry)

    daily_rule = get_limit_rule(LimitType.LOGIN_DAILY)
    daily = await award(
        session,
        user_id=user_id,
        limit_type=LimitType.LOGIN_DAILY,
        points=daily_rule.points_per_award,
        reason="Daily login bonus",
        now=now,
    )
    return LoginBonusResult(awarded=daily.awarded, points=daily.points, first_login=False, entry=daily.entry)


async def grant_points_by_admin(
    session: AsyncSession,
    *,
    actor_user_id: int,
    user_id: int,
    points: int,
    reason: str,
    note: str | None = None,
) -> AwardResult:
    """Manual adjustment by an admin; negative amounts must not overdraw the balance."""

    actor = await session.scalar(select(User).where(User.id == actor_user_id))
    if actor is None or actor.role != UserRole.ADMIN:
        raise ForbiddenError("Only admins can grant points", details={"actor_user_id": actor_user_id})
    if points == 0:
        raise ValidationError("Adjustment amount must not be zero")
    normalized_reason = reason.strip()
    if not normalized_reason:
        raise ValidationError("Adjustment reason is required")

    result = await append_points_entry(
        session,
        user_id=user_id,
        amount=points,
        event_type=PointsEventType.ADMIN_GRANT,
        reason=normalized_reason,
        note=note,
        payload={"actor_user_id": actor_user_id},
    )
    logger.info("Admin %s adjusted points: user=%s amount=%s", actor_user_id, user_id, points)
    return AwardResult(awarded=True, points=points, entry=result.entry)


async def _ensure_user_exists(session: AsyncSession, *, user_id: int) -> None:
    exists = await session.scalar(select(User.id).where(User.id == user_id))
    if exists is None:
        raise NotFoundError("User not found", details={"user_id": user_id})
