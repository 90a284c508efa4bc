from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.db.base import Base, TimestampMixin
from loyalty.db.enums import (
    LimitType,
    NotificationType,
    PointsEventType,
    RedemptionStatus,
    RewardCategory,
    UserRole,
)


class User(Base, TimestampMixin):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role"),
        nullable=False,
        server_default=UserRole.USER.value,
        default=UserRole.USER,
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"), default=0)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Post(Base, TimestampMixin):
    __tablename__ = "posts"
    __table_args__ = (
        CheckConstraint("like_count >= 0", name="posts_like_count_non_negative"),
        Index("ix_posts_created_at_like_count", "created_at", "like_count"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, server_default="")
    like_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"), default=0)


class PointsLedgerEntry(Base, TimestampMixin):
    __tablename__ = "points_ledger"
    __table_args__ = (
        CheckConstraint("amount <> 0", name="points_ledger_amount_nonzero"),
        UniqueConstraint("dedupe_key", name="uq_points_ledger_dedupe_key"),
        Index("ix_points_ledger_user_created_at", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    event_type: Mapped[PointsEventType] = mapped_column(
        Enum(PointsEventType, name="points_event_type"),
        nullable=False,
    )
    limit_type: Mapped[LimitType | None] = mapped_column(
        Enum(LimitType, name="limit_type"),
        nullable=True,
    )
    dedupe_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)


class LimitCounter(Base, TimestampMixin):
    __tablename__ = "limit_counters"
    __table_args__ = (
        CheckConstraint("count >= 0", name="limit_counters_count_non_negative"),
        UniqueConstraint("user_id", "limit_type", "period", name="uq_limit_counters_user_type_period"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    limit_type: Mapped[LimitType] = mapped_column(
        Enum(LimitType, name="limit_type"),
        nullable=False,
    )
    period: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"), default=0)


class Reward(Base, TimestampMixin):
    __tablename__ = "rewards"
    __table_args__ = (
        CheckConstraint("points_required >= 0", name="rewards_points_required_non_negative"),
        CheckConstraint("max_per_user IS NULL OR max_per_user >= 1", name="rewards_max_per_user_positive"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[RewardCategory] = mapped_column(
        Enum(RewardCategory, name="reward_category"),
        nullable=False,
        server_default=RewardCategory.POINT.value,
        default=RewardCategory.POINT,
    )
    points_required: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"), default=0)
    life_required: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"), default=True)
    rank: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    month: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class RedemptionRequest(Base, TimestampMixin):
    __tablename__ = "redemption_requests"
    __table_args__ = (
        CheckConstraint("points_used >= 0", name="redemption_requests_points_used_non_negative"),
        Index("ix_redemption_requests_user_reward", "user_id", "reward_id"),
        Index("ix_redemption_requests_status_created_at", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    reward_id: Mapped[str] = mapped_column(ForeignKey("rewards.id", ondelete="RESTRICT"), nullable=False)
    points_used: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[RedemptionStatus] = mapped_column(
        Enum(RedemptionStatus, name="redemption_status"),
        nullable=False,
        server_default=RedemptionStatus.PENDING.value,
        default=RedemptionStatus.PENDING,
    )
    receiver_name: Mapped[str] = mapped_column(String(255), nullable=False)
    receiver_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    receiver_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    receiver_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class MonthlyRanking(Base, TimestampMixin):
    __tablename__ = "monthly_rankings"
    __table_args__ = (
        CheckConstraint("rank >= 1", name="monthly_rankings_rank_positive"),
        UniqueConstraint("month", "rank", name="uq_monthly_rankings_month_rank"),
        Index("ix_monthly_rankings_user_id", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    month: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rank: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    post_id: Mapped[int | None] = mapped_column(ForeignKey("posts.id", ondelete="SET NULL"), nullable=True)
    like_count: Mapped[int] = mapped_column(Integer, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("user_id", "type", "period_key", name="uq_notifications_user_type_period"),
        Index("ix_notifications_user_read_created", "user_id", "is_read", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="notification_type"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    period_key: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"), default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("TIMEZONE('utc', NOW())"),
    )
