from __future__ import annotations

from datetime import UTC, datetime

import pytest

from loyalty.db.enums import LimitType, LimitWindow
from loyalty.errors import ConfigurationError
from loyalty.services.limit_rules import LIMIT_RULES, get_limit_rule
from loyalty.services.limit_service import LimitStatus


def test_every_limit_type_has_a_rule() -> None:
    assert set(LIMIT_RULES) == set(LimitType)


@pytest.mark.parametrize(
    ("limit_type", "window", "max_count", "points"),
    [
        (LimitType.POST_WEEKLY, LimitWindow.WEEKLY, 1, 100),
        (LimitType.WISH_WEEKLY, LimitWindow.WEEKLY, 1, 100),
        (LimitType.SHARE_FACEBOOK, LimitWindow.LIFETIME, 1, 50),
        (LimitType.PRODUCT_CARD_CLICK, LimitWindow.LIFETIME, 8, 10),
        (LimitType.LOGIN_DAILY, LimitWindow.DAILY, 1, 10),
        (LimitType.FIRST_LOGIN, LimitWindow.LIFETIME, 1, 200),
    ],
)
def test_limit_rule_table(limit_type, window, max_count, points) -> None:
    rule = get_limit_rule(limit_type)

    assert rule.window == window
    assert rule.max_count == max_count
    assert rule.points_per_award == points


def test_rule_lookup_accepts_string_values() -> None:
    assert get_limit_rule("PRODUCT_CARD_CLICK") is LIMIT_RULES[LimitType.PRODUCT_CARD_CLICK]


def test_missing_rule_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        get_limit_rule("DAILY_COMMENT")

    assert exc_info.value.details == {"limit_type": "DAILY_COMMENT"}


def test_limit_status_remaining_never_negative() -> None:
    status = LimitStatus(
        limit_type=LimitType.PRODUCT_CARD_CLICK,
        window=LimitWindow.LIFETIME,
        period=datetime(1970, 1, 1, tzinfo=UTC),
        count=9,
        max_count=8,
        points_per_award=10,
    )

    assert status.remaining == 0
    assert status.can_earn_more is False
