"""Tests for session labels and the operating window."""
from datetime import datetime

import pytest

from market_alerts.core.market_hours import (
    AFTER_HOURS, IN_SESSION, POST_MARKET, PRE_MARKET, in_operating_window, market_session,
)
from tests.fakes import ist

DAYS = ["mon", "tue", "wed", "thu", "fri"]


@pytest.mark.parametrize("hour,minute,expected", [
    (8, 59, AFTER_HOURS),
    (9, 0, PRE_MARKET),
    (9, 14, PRE_MARKET),
    (9, 15, IN_SESSION),
    (15, 29, IN_SESSION),
    (15, 30, POST_MARKET),
    (15, 59, POST_MARKET),
    (16, 0, AFTER_HOURS),
])
def test_session_labels_on_a_weekday(hour, minute, expected):
    # 2026-10-19 is a Monday
    assert market_session(ist(2026, 10, 19, hour, minute)) == expected


def test_weekend_is_after_hours():
    assert market_session(ist(2026, 10, 24, 11, 0)) == AFTER_HOURS


def test_holiday_is_after_hours():
    assert market_session(ist(2026, 10, 20, 11, 0), holidays=["2026-10-20"]) == AFTER_HOURS


def test_naive_datetime_is_read_as_utc():
    # 05:00 UTC is 10:30 IST
    assert market_session(datetime(2026, 10, 19, 5, 0)) == IN_SESSION


@pytest.mark.parametrize("hour,minute,expected", [
    (8, 59, False),
    (9, 0, True),
    (12, 30, True),
    (16, 0, True),
    (16, 1, False),
])
def test_operating_window_bounds_are_inclusive(hour, minute, expected):
    moment = ist(2026, 10, 19, hour, minute)

    assert in_operating_window(moment, "Asia/Kolkata", DAYS, "09:00", "16:00") is expected


def test_operating_window_closed_on_weekend_and_holiday():
    assert not in_operating_window(ist(2026, 10, 25, 10, 0), "Asia/Kolkata", DAYS, "09:00", "16:00")
    assert not in_operating_window(
        ist(2026, 10, 20, 10, 0), "Asia/Kolkata", DAYS, "09:00", "16:00", holidays=["2026-10-20"]
    )
