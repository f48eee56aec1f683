"""Exchange-local clock helpers: session labels and the operating window."""

from datetime import datetime, time as dtime
from typing import Iterable, Optional

import pytz

from market_alerts.core.config import WEEKDAYS

PRE_MARKET = "pre-market"
IN_SESSION = "in-session"
POST_MARKET = "post-market"
AFTER_HOURS = "after-hours"

# NSE equity segment: pre-open call auction, continuous trading, closing session
_PRE_OPEN_START = dtime(9, 0)
_CONTINUOUS_START = dtime(9, 15)
_CONTINUOUS_END = dtime(15, 30)
_POST_CLOSE_END = dtime(16, 0)


def parse_hhmm(value: str) -> dtime:
    """Parse ``"HH:MM"`` into a time, raising ValueError on anything else."""
    hours, _, minutes = value.partition(":")
    return dtime(int(hours), int(minutes or 0))


def to_local(moment: datetime, tz_name: str) -> datetime:
    """Convert an aware datetime (naive is read as UTC) to the exchange timezone."""
    tz = pytz.timezone(tz_name)
    if moment.tzinfo is None:
        moment = pytz.utc.localize(moment)
    return moment.astimezone(tz)


def is_trading_day(local: datetime, days: Iterable[str], holidays: Iterable[str] = ()) -> bool:
    """True if the local date falls on a configured weekday and is not a holiday."""
    if WEEKDAYS[local.weekday()] not in set(days):
        return False
    return local.strftime("%Y-%m-%d") not in set(holidays)


def market_session(
    moment: datetime,
    tz_name: str = "Asia/Kolkata",
    days: Iterable[str] = WEEKDAYS[:5],
    holidays: Iterable[str] = (),
) -> str:
    """
    Label the exchange session a moment falls in.

    Args:
        moment (datetime): The poll time.
        tz_name (str): Exchange timezone.
        days (Iterable[str]): Trading weekdays as three-letter names.
        holidays (Iterable[str]): Closed dates as ``YYYY-MM-DD``.

    Returns:
        str: ``pre-market``, ``in-session``, ``post-market`` or ``after-hours``.
    """
    local = to_local(moment, tz_name)
    if not is_trading_day(local, days, holidays):
        return AFTER_HOURS

    now = local.time()
    if _PRE_OPEN_START <= now < _CONTINUOUS_START:
        return PRE_MARKET
    if _CONTINUOUS_START <= now < _CONTINUOUS_END:
        return IN_SESSION
    if _CONTINUOUS_END <= now < _POST_CLOSE_END:
        return POST_MARKET
    return AFTER_HOURS


def in_operating_window(
    moment: datetime,
    tz_name: str,
    days: Iterable[str],
    start: str,
    end: str,
    holidays: Optional[Iterable[str]] = None,
) -> bool:
    """True if regular-cadence polling may run at this moment (bounds inclusive)."""
    local = to_local(moment, tz_name)
    if not is_trading_day(local, days, holidays or ()):
        return False
    now = local.time().replace(second=0, microsecond=0)
    return parse_hhmm(start) <= now <= parse_hhmm(end)
