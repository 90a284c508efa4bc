from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.enums import NotificationType
from loyalty.db.models import Notification
from loyalty.errors import NotFoundError

RANK_TITLES = {
    1: "Congratulations! You are the top creator of the month",
    2: "Congratulations! You are the runner-up creator of the month",
}


def rank_win_message(*, rank: int, month_label: str) -> tuple[str, str]:
    title = RANK_TITLES.get(rank, f"Congratulations! You ranked #{rank} this month")
    message = (
        f"Your post was ranked #{rank} for {month_label}. "
        "Open the rewards page to claim your voucher."
    )
    return title, message


async def create_notification_once(
    session: AsyncSession,
    *,
    user_id: int,
    notification_type: NotificationType,
    period_key: str,
    title: str,
    message: str,
    payload: dict | None = None,
) -> bool:
    """Insert a notification unless one exists for the same user, type and period."""

    inserted_id = await session.scalar(
        insert(Notification)
        .values(
            user_id=user_id,
            type=notification_type,
            period_key=period_key,
            title=title,
            message=message,
            payload=payload,
            is_read=False,
            created_at=datetime.now(UTC),
        )
        .on_conflict_do_nothing(index_elements=["user_id", "type", "period_key"])
        .returning(Notification.id)
    )
    return inserted_id is not None


async def list_user_notifications(
    session: AsyncSession,
    *,
    user_id: int,
    unread_only: bool = False,
    limit: int = 20,
) -> list[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(max(1, min(limit, 100)))
    return list((await session.execute(stmt)).scalars().all())


async def count_unread_notifications(session: AsyncSession, *, user_id: int) -> int:
    total = await session.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
    )
    return int(total or 0)


async def mark_notification_read(session: AsyncSession, *, user_id: int, notification_id: int) -> None:
    updated_id = await session.scalar(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(is_read=True)
        .returning(Notification.id)
    )
    if updated_id is None:
        raise NotFoundError("Notification not found", details={"notification_id": notification_id})
