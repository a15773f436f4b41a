"""
Showdown window - the weekly time box during which XP awards are doubled.

Pure functions of an injected timestamp. Naive datetimes are treated as
already in the showdown timezone; aware ones are converted to it.
"""
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from ..core.config import settings

SHOWDOWN_WEEKDAY = 6  # Sunday (datetime.weekday)
SHOWDOWN_START_HOUR = 21
WEEKLY_RESET_WEEKDAY = 0  # Monday
SHOWDOWN_MULTIPLIER = 2


def showdown_timezone() -> ZoneInfo:
    return ZoneInfo(settings.SHOWDOWN_TIMEZONE)


def local_now() -> datetime:
    """Current wall-clock time in the showdown timezone."""
    return datetime.now(showdown_timezone())


def _to_local(now: Optional[datetime]) -> datetime:
    if now is None:
        return local_now()
    if now.tzinfo is not None:
        return now.astimezone(showdown_timezone())
    return now


def _next_midnight(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)


def is_showdown_active(now: Optional[datetime] = None) -> bool:
    """True on Sunday from 21:00 through the end of the day."""
    local = _to_local(now)
    return local.weekday() == SHOWDOWN_WEEKDAY and local.hour >= SHOWDOWN_START_HOUR


def showdown_multiplier(now: Optional[datetime] = None) -> int:
    return SHOWDOWN_MULTIPLIER if is_showdown_active(now) else 1


def time_remaining_in_window(now: Optional[datetime] = None) -> timedelta:
    """Time until midnight while the window is active, zero otherwise."""
    local = _to_local(now)
    if not is_showdown_active(local):
        return timedelta(0)
    return _next_midnight(local) - local


def time_until_weekly_reset(now: Optional[datetime] = None) -> timedelta:
    """
    Time until the next Monday 00:00. On a Monday this is the following
    Monday, so the countdown never reads zero.
    """
    local = _to_local(now)
    days_ahead = (WEEKLY_RESET_WEEKDAY - local.weekday()) % 7 or 7
    reset_at = local.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=days_ahead)
    return reset_at - local


def format_countdown(delta: timedelta) -> str:
    """Render a countdown as '1d 2h 3m 4s'."""
    total = max(0, int(delta.total_seconds()))
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{days}d {hours}h {minutes}m {seconds}s"
