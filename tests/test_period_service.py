from __future__ import annotations

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from loyalty.db.enums import LimitType
from loyalty.errors import ConfigurationError
from loyalty.services.period_service import (
    LIFETIME_PERIOD,
    month_bounds,
    period_key,
    previous_month_bounds,
    resolve_period,
)

HCM = ZoneInfo("Asia/Ho_Chi_Minh")


@pytest.fixture(autouse=True)
def _vietnam_timezone(monkeypatch):
    from loyalty.config import settings

    monkeypatch.setattr(settings, "tz", "Asia/Ho_Chi_Minh")


def test_weekly_period_starts_on_local_monday_midnight() -> None:
    # Thursday 2026-10-15 15:00 local time.
    now = datetime(2026, 10, 15, 8, 0, tzinfo=UTC)

    period = resolve_period(LimitType.POST_WEEKLY, now)

    assert period == datetime(2026, 10, 12, 0, 0, tzinfo=HCM)
    assert period.astimezone(UTC) == datetime(2026, 10, 11, 17, 0, tzinfo=UTC)


def test_weekly_period_is_stable_through_the_week() -> None:
    monday = datetime(2026, 10, 12, 0, 0, tzinfo=HCM)
    periods = {
        resolve_period(LimitType.WISH_WEEKLY, monday + timedelta(hours=hours))
        for hours in (0, 1, 30, 100, 167)
    }

    assert periods == {monday}


def test_weekly_period_rolls_over_at_local_not_utc_midnight() -> None:
    # Sunday 23:30 UTC is already Monday 06:30 in Ho Chi Minh City.
    now = datetime(2026, 10, 18, 23, 30, tzinfo=UTC)

    assert resolve_period(LimitType.POST_WEEKLY, now) == datetime(2026, 10, 19, 0, 0, tzinfo=HCM)


def test_daily_period_is_local_midnight() -> None:
    now = datetime(2026, 10, 15, 18, 30, tzinfo=UTC)

    assert resolve_period(LimitType.LOGIN_DAILY, now) == datetime(2026, 10, 16, 0, 0, tzinfo=HCM)


def test_lifetime_period_is_shared_sentinel() -> None:
    first = resolve_period(LimitType.SHARE_FACEBOOK, datetime(2026, 1, 1, tzinfo=UTC))
    second = resolve_period(LimitType.PRODUCT_CARD_CLICK, datetime(2031, 7, 9, tzinfo=UTC))

    assert first == second == LIFETIME_PERIOD == datetime(1970, 1, 1, tzinfo=UTC)


def test_naive_now_is_treated_as_utc() -> None:
    naive = datetime(2026, 10, 15, 8, 0)

    assert resolve_period(LimitType.POST_WEEKLY, naive) == resolve_period(
        LimitType.POST_WEEKLY, naive.replace(tzinfo=UTC)
    )


def test_unknown_limit_type_raises_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        resolve_period("COMMENT_WEEKLY", datetime(2026, 10, 15, tzinfo=UTC))


def test_month_bounds_handle_december() -> None:
    start, end = month_bounds(2026, 12)

    assert start == datetime(2026, 12, 1, tzinfo=UTC)
    assert end == datetime(2027, 1, 1, tzinfo=UTC)


def test_previous_month_bounds_wrap_year() -> None:
    start, end = previous_month_bounds(datetime(2027, 1, 3, 12, 0, tzinfo=UTC))

    assert start == datetime(2026, 12, 1, tzinfo=UTC)
    assert end == datetime(2027, 1, 1, tzinfo=UTC)
    assert period_key(start) == "2026-12"


def test_month_bounds_reject_invalid_month() -> None:
    with pytest.raises(ValueError):
        month_bounds(2026, 13)
