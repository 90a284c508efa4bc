from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.enums import LimitType, LimitWindow
from loyalty.db.models import LimitCounter
from loyalty.services.limit_rules import LIMIT_RULES, get_limit_rule
from loyalty.services.period_service import resolve_period


@dataclass(slots=True)
class LimitStatus:
    limit_type: LimitType
    window: LimitWindow
    period: datetime
    count: int
    max_count: int
    points_per_award: int

    @property
    def remaining(self) -> int:
        return max(0, self.max_count - self.count)

    @property
    def can_earn_more(self) -> bool:
        return self.count < self.max_count


async def lock_limit_counter(
    session: AsyncSession,
    *,
    user_id: int,
    limit_type: LimitType,
    period: datetime,
) -> LimitCounter:
    """Create the counter row if missing and lock it for the current transaction.

    Concurrent callers for the same key queue on the row lock, so the count a
    caller sees stays valid until its transaction ends.
    """

    now = datetime.now(UTC)
    await session.execute(
        insert(LimitCounter)
        .values(
            user_id=user_id,
            limit_type=limit_type,
            period=period,
            count=0,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["user_id", "limit_type", "period"])
    )
    counter = await session.scalar(
        select(LimitCounter)
        .where(
            LimitCounter.user_id == user_id,
            LimitCounter.limit_type == limit_type,
            LimitCounter.period == period,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    assert counter is not None
    return counter


async def increment_limit_counter(session: AsyncSession, *, counter: LimitCounter, by: int = 1) -> int:
    new_count = await session.scalar(
        update(LimitCounter)
        .where(LimitCounter.id == counter.id)
        .values(count=LimitCounter.count + by, updated_at=datetime.now(UTC))
        .returning(LimitCounter.count)
    )
    counter.count = int(new_count)
    return counter.count


async def get_limit_count(
    session: AsyncSession,
    *,
    user_id: int,
    limit_type: LimitType,
    period: datetime,
) -> int:
    count = await session.scalar(
        select(LimitCounter.count).where(
            LimitCounter.user_id == user_id,
            LimitCounter.limit_type == limit_type,
            LimitCounter.period == period,
        )
    )
    return int(count or 0)


async def get_limit_status(
    session: AsyncSession,
    *,
    user_id: int,
    limit_type: LimitType,
    now: datetime | None = None,
) -> LimitStatus:
    rule = get_limit_rule(limit_type)
    period = resolve_period(limit_type, now)
    count = await get_limit_count(session, user_id=user_id, limit_type=LimitType(limit_type), period=period)
    return LimitStatus(
        limit_type=LimitType(limit_type),
        window=rule.window,
        period=period,
        count=count,
        max_count=rule.max_count,
        points_per_award=rule.points_per_award,
    )


async def get_all_limit_statuses(
    session: AsyncSession,
    *,
    user_id: int,
    now: datetime | None = None,
) -> list[LimitStatus]:
    return [
        await get_limit_status(session, user_id=user_id, limit_type=limit_type, now=now)
        for limit_type in LIMIT_RULES
    ]
