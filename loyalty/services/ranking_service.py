from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import logging
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.config import settings
from loyalty.db.enums import NotificationType
from loyalty.db.models import MonthlyRanking, Post
from loyalty.db.session import SessionFactory, run_in_transaction
from loyalty.services.notification_service import create_notification_once, rank_win_message
from loyalty.services.period_service import month_bounds, period_key, previous_month_bounds

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RankingCandidate:
    post_id: int
    user_id: int
    like_count: int
    created_at: datetime


@dataclass(slots=True)
class RankingWinner:
    rank: int
    user_id: int
    post_id: int
    like_count: int
    reward_id: str | None
    notified: bool = False


def select_winners(candidates: Iterable[RankingCandidate], *, winners_count: int) -> list[RankingCandidate]:
    """Pick the first post of each distinct author from an already ordered candidate list."""

    winners: list[RankingCandidate] = []
    seen_users: set[int] = set()
    for candidate in candidates:
        if len(winners) >= winners_count:
            break
        if candidate.user_id in seen_users:
            continue
        seen_users.add(candidate.user_id)
        winners.append(candidate)
    return winners


async def load_ranking_candidates(
    session: AsyncSession,
    *,
    period_start: datetime,
    period_end: datetime,
    limit: int,
) -> list[RankingCandidate]:
    previous_winners = (
        select(MonthlyRanking.user_id)
        .where(MonthlyRanking.month != period_start)
        .distinct()
    )
    rows = (
        await session.execute(
            select(Post.id, Post.user_id, Post.like_count, Post.created_at)
            .where(
                Post.created_at >= period_start,
                Post.created_at < period_end,
                Post.like_count > 0,
                Post.user_id.not_in(previous_winners),
            )
            .order_by(Post.like_count.desc(), Post.created_at.asc(), Post.id.asc())
            .limit(max(limit, 1))
        )
    ).all()
    return [
        RankingCandidate(post_id=row.id, user_id=row.user_id, like_count=row.like_count, created_at=row.created_at)
        for row in rows
    ]


async def _persist_winners(
    session: AsyncSession,
    *,
    period_start: datetime,
    winners: list[RankingCandidate],
) -> list[RankingWinner]:
    now = datetime.now(UTC)
    key = period_key(period_start)
    persisted: list[RankingWinner] = []

    for rank, candidate in enumerate(winners, start=1):
        stmt = insert(MonthlyRanking).values(
            month=period_start,
            rank=rank,
            user_id=candidate.user_id,
            post_id=candidate.post_id,
            like_count=candidate.like_count,
            created_at=now,
            updated_at=now,
        )
        await session.execute(
            stmt.on_conflict_do_update(
                index_elements=["month", "rank"],
                set_={
                    "user_id": stmt.excluded.user_id,
                    "post_id": stmt.excluded.post_id,
                    "like_count": stmt.excluded.like_count,
                    "updated_at": now,
                },
            )
        )

    await session.execute(
        delete(MonthlyRanking).where(
            MonthlyRanking.month == period_start,
            MonthlyRanking.rank > len(winners),
        )
    )

    for rank, candidate in enumerate(winners, start=1):
        reward_id = settings.ranking_reward_id_for_rank(rank)
        title, message = rank_win_message(rank=rank, month_label=key)
        notified = await create_notification_once(
            session,
            user_id=candidate.user_id,
            notification_type=NotificationType.MONTHLY_RANK_WIN,
            period_key=key,
            title=title,
            message=message,
            payload={"reward_id": reward_id, "rank": rank, "month": period_start.isoformat()},
        )
        persisted.append(
            RankingWinner(
                rank=rank,
                user_id=candidate.user_id,
                post_id=candidate.post_id,
                like_count=candidate.like_count,
                reward_id=reward_id,
                notified=notified,
            )
        )
    return persisted


async def run_ranking(
    period_start: datetime,
    period_end: datetime,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> list[RankingWinner]:
    """Rank the period's most liked posts and record the winners.

    Authors who won any other period are excluded. Replaying a period rewrites
    its ranks in place and never duplicates the winners' notifications.
    ``period_start`` must be a UTC month start because rankings are keyed by month.
    """

    if period_end <= period_start:
        raise ValueError("period_end must be after period_start")
    start = period_start.astimezone(UTC)
    if start != start.replace(day=1, hour=0, minute=0, second=0, microsecond=0):
        raise ValueError("period_start must be the first instant of a UTC month")

    factory = session_factory or SessionFactory
    async with factory() as session:
        candidates = await load_ranking_candidates(
            session,
            period_start=period_start,
            period_end=period_end,
            limit=settings.ranking_candidate_pool,
        )

    winners = select_winners(candidates, winners_count=max(settings.ranking_winners_count, 0))
    if not winners:
        logger.info("Ranking %s: no eligible posts", period_key(period_start))

    async def _work(session: AsyncSession) -> list[RankingWinner]:
        return await _persist_winners(session, period_start=period_start, winners=winners)

    result = await run_in_transaction(_work, session_factory=factory)
    for winner in result:
        logger.info(
            "Ranking %s: rank=%s user=%s post=%s likes=%s notified=%s",
            period_key(period_start),
            winner.rank,
            winner.user_id,
            winner.post_id,
            winner.like_count,
            winner.notified,
        )
    return result


async def run_ranking_for_month(
    year: int,
    month: int,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> list[RankingWinner]:
    period_start, period_end = month_bounds(year, month)
    return await run_ranking(period_start, period_end, session_factory=session_factory)


async def run_previous_month_ranking(
    now: datetime | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> list[RankingWinner]:
    period_start, period_end = previous_month_bounds(now)
    return await run_ranking(period_start, period_end, session_factory=session_factory)


async def is_period_ranked(session: AsyncSession, *, period_start: datetime) -> bool:
    existing = await session.scalar(select(MonthlyRanking.id).where(MonthlyRanking.month == period_start).limit(1))
    return existing is not None


async def run_pending_ranking(
    now: datetime | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> list[RankingWinner]:
    """Rank the previous closed month once; later ticks leave a ranked month alone."""

    factory = session_factory or SessionFactory
    period_start, _ = previous_month_bounds(now)
    async with factory() as session:
        if await is_period_ranked(session, period_start=period_start):
            return []
    return await run_previous_month_ranking(now, session_factory=factory)
