from __future__ import annotations

from dataclasses import dataclass

from loyalty.db.enums import LimitType, LimitWindow
from loyalty.errors import ConfigurationError


@dataclass(slots=True, frozen=True)
class LimitRule:
    window: LimitWindow
    max_count: int
    points_per_award: int


LIMIT_RULES: dict[LimitType, LimitRule] = {
    LimitType.POST_WEEKLY: LimitRule(window=LimitWindow.WEEKLY, max_count=1, points_per_award=100),
    LimitType.WISH_WEEKLY: LimitRule(window=LimitWindow.WEEKLY, max_count=1, points_per_award=100),
    LimitType.SHARE_FACEBOOK: LimitRule(window=LimitWindow.LIFETIME, max_count=1, points_per_award=50),
    LimitType.PRODUCT_CARD_CLICK: LimitRule(window=LimitWindow.LIFETIME, max_count=8, points_per_award=10),
    LimitType.LOGIN_DAILY: LimitRule(window=LimitWindow.DAILY, max_count=1, points_per_award=10),
    LimitType.FIRST_LOGIN: LimitRule(window=LimitWindow.LIFETIME, max_count=1, points_per_award=200),
}


def get_limit_rule(limit_type: LimitType | str) -> LimitRule:
    try:
        return LIMIT_RULES[LimitType(limit_type)]
    except (KeyError, ValueError) as exc:
        raise ConfigurationError(
            f"No limit rule configured for {limit_type!r}",
            details={"limit_type": str(limit_type)},
        ) from exc
