from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import case, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.enums import LimitType, PointsEventType
from loyalty.db.models import PointsLedgerEntry, User
from loyalty.errors import InsufficientBalanceError, NotFoundError


@dataclass(slots=True)
class PointsGrantResult:
    changed: bool
    entry: PointsLedgerEntry | None
    balance_after: int | None = None


@dataclass(slots=True)
class UserPointsSummary:
    balance: int
    total_earned: int
    total_spent: int
    operations_count: int


@dataclass(slots=True)
class BalanceCheck:
    user_id: int
    balance: int
    ledger_total: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_total


def redemption_debit_dedupe_key(redemption_id: int) -> str:
    return f"redemption:{redemption_id}:debit"


def redemption_refund_dedupe_key(redemption_id: int) -> str:
    return f"redemption:{redemption_id}:refund"


async def lock_user(session: AsyncSession, *, user_id: int) -> User:
    user = await session.scalar(
        select(User).where(User.id == user_id).with_for_update().execution_options(populate_existing=True)
    )
    if user is None:
        raise NotFoundError("User not found", details={"user_id": user_id})
    return user


async def append_points_entry(
    session: AsyncSession,
    *,
    user_id: int,
    amount: int,
    event_type: PointsEventType,
    reason: str,
    note: str | None = None,
    dedupe_key: str | None = None,
    limit_type: LimitType | None = None,
    payload: dict | None = None,
) -> PointsGrantResult:
    """Append an immutable ledger entry and move ``users.points`` by the same amount.

    Both writes happen in the caller's transaction, which keeps the ledger sum
    equal to the stored balance. A repeated ``dedupe_key`` returns the existing
    entry without touching the balance. Debits that would take the balance below
    zero raise ``InsufficientBalanceError``.
    """

    if amount == 0:
        return PointsGrantResult(changed=False, entry=None)

    user_exists = await session.scalar(select(User.id).where(User.id == user_id))
    if user_exists is None:
        raise NotFoundError("User not found", details={"user_id": user_id})

    now = datetime.now(UTC)
    stmt = (
        insert(PointsLedgerEntry)
        .values(
            user_id=user_id,
            amount=amount,
            event_type=event_type,
            limit_type=limit_type,
            dedupe_key=dedupe_key,
            reason=reason,
            note=note,
            payload=payload,
            created_at=now,
            updated_at=now,
        )
        .returning(PointsLedgerEntry.id)
    )
    if dedupe_key is not None:
        stmt = stmt.on_conflict_do_nothing(index_elements=[PointsLedgerEntry.dedupe_key])

    inserted_id = await session.scalar(stmt)
    if inserted_id is None:
        existing = await session.scalar(
            select(PointsLedgerEntry).where(PointsLedgerEntry.dedupe_key == dedupe_key)
        )
        return PointsGrantResult(changed=False, entry=existing)

    balance_after = await session.scalar(
        update(User)
        .where(User.id == user_id)
        .values(points=User.points + amount, updated_at=now)
        .returning(User.points)
    )
    if balance_after is not None and balance_after < 0:
        raise InsufficientBalanceError(
            "Insufficient points",
            details={"user_id": user_id, "requested": -amount, "available": balance_after - amount},
        )

    entry = await session.scalar(select(PointsLedgerEntry).where(PointsLedgerEntry.id == inserted_id))
    return PointsGrantResult(changed=True, entry=entry, balance_after=int(balance_after or 0))


async def get_user_points_balance(session: AsyncSession, *, user_id: int) -> int:
    balance = await session.scalar(select(User.points).where(User.id == user_id))
    if balance is None:
        raise NotFoundError("User not found", details={"user_id": user_id})
    return int(balance)


async def get_ledger_total(session: AsyncSession, *, user_id: int) -> int:
    total = await session.scalar(
        select(func.coalesce(func.sum(PointsLedgerEntry.amount), 0)).where(PointsLedgerEntry.user_id == user_id)
    )
    return int(total or 0)


async def check_user_balance(session: AsyncSession, *, user_id: int) -> BalanceCheck:
    balance = await get_user_points_balance(session, user_id=user_id)
    ledger_total = await get_ledger_total(session, user_id=user_id)
    return BalanceCheck(user_id=user_id, balance=balance, ledger_total=ledger_total)


async def get_user_points_summary(session: AsyncSession, *, user_id: int) -> UserPointsSummary:
    balance = await get_user_points_balance(session, user_id=user_id)
    total_earned, total_spent, operations_count = (
        await session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case(
                            (PointsLedgerEntry.amount > 0, PointsLedgerEntry.amount),
                            else_=0,
                        )
                    ),
                    0,
                ),
                func.coalesce(
                    func.sum(
                        case(
                            (PointsLedgerEntry.amount < 0, -PointsLedgerEntry.amount),
                            else_=0,
                        )
                    ),
                    0,
                ),
                func.count(PointsLedgerEntry.id),
            ).where(PointsLedgerEntry.user_id == user_id)
        )
    ).one()

    return UserPointsSummary(
        balance=balance,
        total_earned=int(total_earned or 0),
        total_spent=int(total_spent or 0),
        operations_count=int(operations_count or 0),
    )


async def list_user_points_entries(
    session: AsyncSession,
    *,
    user_id: int,
    limit: int = 20,
    offset: int = 0,
    event_type: PointsEventType | None = None,
) -> list[PointsLedgerEntry]:
    safe_limit = max(1, min(limit, 100))
    safe_offset = max(0, offset)
    stmt = select(PointsLedgerEntry).where(PointsLedgerEntry.user_id == user_id)
    if event_type is not None:
        stmt = stmt.where(PointsLedgerEntry.event_type == event_type)
    stmt = stmt.order_by(PointsLedgerEntry.created_at.desc(), PointsLedgerEntry.id.desc())
    return list((await session.execute(stmt.offset(safe_offset).limit(safe_limit))).scalars().all())


async def count_user_points_entries(
    session: AsyncSession,
    *,
    user_id: int,
    event_type: PointsEventType | None = None,
) -> int:
    stmt = select(func.count(PointsLedgerEntry.id)).where(PointsLedgerEntry.user_id == user_id)
    if event_type is not None:
        stmt = stmt.where(PointsLedgerEntry.event_type == event_type)
    total = await session.scalar(stmt)
    return int(total or 0)
