"""loyalty schema: users, posts, points ledger, limit counters, rewards

Revision ID: 0001_loyalty_schema
Revises:
Create Date: 2026-10-19 10:00:00
"""

from typing import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_loyalty_schema"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

UTC_NOW = sa.text("TIMEZONE('utc', NOW())")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=UTC_NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=UTC_NOW),
    ]


def upgrade() -> None:
    bind = op.get_bind()

    user_role = postgresql.ENUM("USER", "ADMIN", name="user_role", create_type=False)
    limit_type = postgresql.ENUM(
        "POST_WEEKLY",
        "WISH_WEEKLY",
        "SHARE_FACEBOOK",
        "PRODUCT_CARD_CLICK",
        "LOGIN_DAILY",
        "FIRST_LOGIN",
        name="limit_type",
        create_type=False,
    )
    points_event_type = postgresql.ENUM(
        "ACTION_AWARD",
        "BATCH_AWARD",
        "ADMIN_GRANT",
        "REDEMPTION",
        "REFUND",
        name="points_event_type",
        create_type=False,
    )
    reward_category = postgresql.ENUM("POINT", "MONTHLY_RANK", name="reward_category", create_type=False)
    redemption_status = postgresql.ENUM(
        "PENDING",
        "APPROVED",
        "REJECTED",
        "DELIVERED",
        name="redemption_status",
        create_type=False,
    )
    notification_type = postgresql.ENUM("MONTHLY_RANK_WIN", name="notification_type", create_type=False)

    for enum_type in (
        user_role,
        limit_type,
        points_event_type,
        reward_category,
        redemption_status,
        notification_type,
    ):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("role", user_role, nullable=False, server_default="USER"),
        sa.Column("points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "posts",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("like_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.CheckConstraint("like_count >= 0", name="posts_like_count_non_negative"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name=op.f("fk_posts_user_id_users"), ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_posts")),
    )
    op.create_index(op.f("ix_posts_user_id"), "posts", ["user_id"], unique=False)
    op.create_index("ix_posts_created_at_like_count", "posts", ["created_at", "like_count"], unique=False)

    op.create_table(
        "points_ledger",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("event_type", points_event_type, nullable=False),
        sa.Column("limit_type", limit_type, nullable=True),
        sa.Column("dedupe_key", sa.String(length=255), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount <> 0", name="points_ledger_amount_nonzero"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name=op.f("fk_points_ledger_user_id_users"), ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_points_ledger")),
        sa.UniqueConstraint("dedupe_key", name="uq_points_ledger_dedupe_key"),
    )
    op.create_index("ix_points_ledger_user_created_at", "points_ledger", ["user_id", "created_at"], unique=False)

    op.create_table(
        "limit_counters",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("limit_type", limit_type, nullable=False),
        sa.Column("period", sa.DateTime(timezone=True), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.CheckConstraint("count >= 0", name="limit_counters_count_non_negative"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name=op.f("fk_limit_counters_user_id_users"), ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_limit_counters")),
        sa.UniqueConstraint("user_id", "limit_type", "period", name="uq_limit_counters_user_type_period"),
    )

    op.create_table(
        "rewards",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", reward_category, nullable=False, server_default="POINT"),
        sa.Column("points_required", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("life_required", sa.Integer(), nullable=True),
        sa.Column("max_per_user", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("rank", sa.SmallInteger(), nullable=True),
        sa.Column("month", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("points_required >= 0", name="rewards_points_required_non_negative"),
        sa.CheckConstraint("max_per_user IS NULL OR max_per_user >= 1", name="rewards_max_per_user_positive"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_rewards")),
    )

    op.create_table(
        "redemption_requests",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("reward_id", sa.String(length=64), nullable=False),
        sa.Column("points_used", sa.Integer(), nullable=False),
        sa.Column("status", redemption_status, nullable=False, server_default="PENDING"),
        sa.Column("receiver_name", sa.String(length=255), nullable=False),
        sa.Column("receiver_phone", sa.String(length=64), nullable=True),
        sa.Column("receiver_email", sa.String(length=255), nullable=True),
        sa.Column("receiver_address", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("decided_by_user_id", sa.BigInteger(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("points_used >= 0", name="redemption_requests_points_used_non_negative"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name=op.f("fk_redemption_requests_user_id_users"), ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["reward_id"], ["rewards.id"], name=op.f("fk_redemption_requests_reward_id_rewards"), ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["decided_by_user_id"],
            ["users.id"],
            name=op.f("fk_redemption_requests_decided_by_user_id_users"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_redemption_requests")),
    )
    op.create_index("ix_redemption_requests_user_reward", "redemption_requests", ["user_id", "reward_id"])
    op.create_index("ix_redemption_requests_status_created_at", "redemption_requests", ["status", "created_at"])

    op.create_table(
        "monthly_rankings",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("month", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rank", sa.SmallInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("post_id", sa.BigInteger(), nullable=True),
        sa.Column("like_count", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("rank >= 1", name="monthly_rankings_rank_positive"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name=op.f("fk_monthly_rankings_user_id_users"), ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["post_id"], ["posts.id"], name=op.f("fk_monthly_rankings_post_id_posts"), ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_monthly_rankings")),
        sa.UniqueConstraint("month", "rank", name="uq_monthly_rankings_month_rank"),
    )
    op.create_index("ix_monthly_rankings_user_id", "monthly_rankings", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("type", notification_type, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("period_key", sa.String(length=64), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=UTC_NOW),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name=op.f("fk_notifications_user_id_users"), ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notifications")),
        sa.UniqueConstraint("user_id", "type", "period_key", name="uq_notifications_user_type_period"),
    )
    op.create_index("ix_notifications_user_read_created", "notifications", ["user_id", "is_read", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_read_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_monthly_rankings_user_id", table_name="monthly_rankings")
    op.drop_table("monthly_rankings")
    op.drop_index("ix_redemption_requests_status_created_at", table_name="redemption_requests")
    op.drop_index("ix_redemption_requests_user_reward", table_name="redemption_requests")
    op.drop_table("redemption_requests")
    op.drop_table("rewards")
    op.drop_table("limit_counters")
    op.drop_index("ix_points_ledger_user_created_at", table_name="points_ledger")
    op.drop_table("points_ledger")
    op.drop_index("ix_posts_created_at_like_count", table_name="posts")
    op.drop_index(op.f("ix_posts_user_id"), table_name="posts")
    op.drop_table("posts")
    op.drop_table("users")

    for type_name in (
        "notification_type",
        "redemption_status",
        "reward_category",
        "points_event_type",
        "limit_type",
        "user_role",
    ):
        op.execute(f"DROP TYPE IF EXISTS {type_name}")
