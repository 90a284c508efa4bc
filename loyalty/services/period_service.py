from __future__ import annotations

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loyalty.config import settings
from loyalty.db.enums import LimitType, LimitWindow
from loyalty.errors import ConfigurationError
from loyalty.services.limit_rules import get_limit_rule

LIFETIME_PERIOD = datetime(1970, 1, 1, tzinfo=UTC)


def local_timezone() -> ZoneInfo:
    try:
        return ZoneInfo(settings.tz)
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def _aware(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(UTC)
    if now.tzinfo is None:
        return now.replace(tzinfo=UTC)
    return now


def window_start(window: LimitWindow, now: datetime | None = None) -> datetime:
    if window == LimitWindow.LIFETIME:
        return LIFETIME_PERIOD

    local_now = _aware(now).astimezone(local_timezone())
    day_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    if window == LimitWindow.DAILY:
        return day_start
    if window == LimitWindow.WEEKLY:
        monday = day_start.date() - timedelta(days=day_start.weekday())
        return datetime(monday.year, monday.month, monday.day, tzinfo=local_timezone())
    raise ConfigurationError(f"Unsupported limit window {window!r}")


def resolve_period(limit_type: LimitType | str, now: datetime | None = None) -> datetime:
    """Return the start of the counting window ``limit_type`` falls into at ``now``.

    Weekly windows open on Monday 00:00 local time, daily windows at local
    midnight and lifetime windows share the 1970-01-01 UTC sentinel.
    """

    rule = get_limit_rule(limit_type)
    return window_start(rule.window, now)


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    if month < 1 or month > 12:
        raise ValueError(f"month must be within 1..12, got {month}")
    start = datetime(year, month, 1, tzinfo=UTC)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=UTC)
    else:
        end = datetime(year, month + 1, 1, tzinfo=UTC)
    return start, end


def previous_month_bounds(now: datetime | None = None) -> tuple[datetime, datetime]:
    current = _aware(now).astimezone(UTC)
    if current.month == 1:
        return month_bounds(current.year - 1, 12)
    return month_bounds(current.year, current.month - 1)


def period_key(period_start: datetime) -> str:
    return period_start.astimezone(UTC).strftime("%Y-%m")
