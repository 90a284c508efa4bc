from __future__ import annotations

from enum import StrEnum


class UserRole(StrEnum):
    USER = "USER"
    ADMIN = "ADMIN"


class LimitWindow(StrEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    LIFETIME = "LIFETIME"


class LimitType(StrEnum):
    POST_WEEKLY = "POST_WEEKLY"
    WISH_WEEKLY = "WISH_WEEKLY"
    SHARE_FACEBOOK = "SHARE_FACEBOOK"
    PRODUCT_CARD_CLICK = "PRODUCT_CARD_CLICK"
    LOGIN_DAILY = "LOGIN_DAILY"
    FIRST_LOGIN = "FIRST_LOGIN"


class PointsEventType(StrEnum):
    ACTION_AWARD = "ACTION_AWARD"
    BATCH_AWARD = "BATCH_AWARD"
    ADMIN_GRANT = "ADMIN_GRANT"
    REDEMPTION = "REDEMPTION"
    REFUND = "REFUND"


class RewardCategory(StrEnum):
    POINT = "POINT"
    MONTHLY_RANK = "MONTHLY_RANK"


class RedemptionStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DELIVERED = "DELIVERED"


class NotificationType(StrEnum):
    MONTHLY_RANK_WIN = "MONTHLY_RANK_WIN"
