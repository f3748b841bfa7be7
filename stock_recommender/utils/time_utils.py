"""
Time and trading-date utilities.

Key concepts:
  - Exchange-local time: the market runs on a fixed UTC offset (KST, UTC+9,
    by default; no daylight saving).
  - Close cutoff: before the cutoff (16:00 local by default) the current
    day's features are not final yet, so the default as-of date is the
    previous trading day.
  - Trading day: not a Saturday, Sunday or configured holiday.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from stock_recommender.config import MarketConfig


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_utc(value: datetime) -> str:
    """Serialize a datetime as ``YYYY-MM-DDTHH:MM:SSZ`` (UTC)."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_utc(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware UTC datetime."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def is_trading_day(day: date, holidays: Iterable[date] = ()) -> bool:
    """Return ``True`` if ``day`` is a weekday and not a holiday."""
    return day.weekday() < 5 and day not in set(holidays)


def previous_trading_day(day: date, holidays: Iterable[date] = ()) -> date:
    """Roll ``day`` back to the nearest trading day (``day`` itself if it trades).

    Args:
        day: Candidate date.
        holidays: Non-trading dates in addition to weekends.

    Returns:
        The latest trading day on or before ``day``.
    """
    closed = set(holidays)
    current = day
    # Bounded: no calendar has two weeks of consecutive closures.
    for _ in range(14):
        if is_trading_day(current, closed):
            return current
        current -= timedelta(days=1)
    raise ValueError(f"No trading day within 14 days before {day}.")


def resolve_as_of_date(
    explicit: Optional[str],
    market: "MarketConfig",
    now: Optional[datetime] = None,
) -> date:
    """Resolve the trading date a run should generate for.

    An explicit ``YYYY-MM-DD`` argument always wins (no calendar adjustment).
    Otherwise ``now`` is converted to exchange-local time; before the close
    cutoff the previous calendar day is used; the result is then rolled back
    over weekends and holidays.

    Args:
        explicit: Optional ISO date string from the command line.
        market: Exchange calendar settings.
        now: Current time (defaults to ``utcnow()``); naive values are UTC.

    Returns:
        The resolved as-of date.

    Raises:
        ValueError: If ``explicit`` is not a valid ISO date.
    """
    if explicit:
        return date.fromisoformat(explicit.strip())

    local_tz = timezone(timedelta(hours=market.utc_offset_hours))
    local_now = ensure_utc(now or utcnow()).astimezone(local_tz)
    hour, minute = market.cutoff_hour_minute

    candidate = local_now.date()
    if local_now.time() < time(hour, minute):
        candidate -= timedelta(days=1)

    return previous_trading_day(candidate, market.holidays)
