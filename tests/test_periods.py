from datetime import datetime, date, timedelta, timezone

import pytest

from payouts.periods import Period, month_period, current_month, previous_month
from payouts.services.errors import ValidationError


def test_period_requires_start_before_end():
    with pytest.raises(ValidationError):
        Period.of(datetime(2026, 2, 1), datetime(2026, 1, 1))
    with pytest.raises(ValidationError):
        Period.of(datetime(2026, 1, 1), datetime(2026, 1, 1))


def test_aware_bounds_are_normalized_to_utc():
    plus_five = timezone(timedelta(hours=5))
    period = Period.of(
        datetime(2026, 1, 1, 5, 0, tzinfo=plus_five),
        datetime(2026, 2, 1, 5, 0, tzinfo=plus_five),
    )
    assert period == month_period(2026, 1)
    assert period.start.tzinfo is None


def test_labels():
    assert month_period(2026, 1).label == 'January 2026'
    assert month_period(2025, 12).label == 'December 2025'
    week = Period.of(datetime(2026, 1, 5), datetime(2026, 1, 12))
    assert week.label == '2026-01-05 to 2026-01-11'


def test_half_open_membership():
    january = month_period(2026, 1)
    assert january.contains(datetime(2026, 1, 1))
    assert january.contains(datetime(2026, 1, 31, 23, 59, 59))
    assert not january.contains(datetime(2026, 2, 1))


def test_day_bounds_follow_midnights():
    assert month_period(2026, 1).day_bounds() == (date(2026, 1, 1), date(2026, 2, 1))
    # Jan 1 midnight is before the start, so Jan 1 is not in the period
    period = Period.of(datetime(2026, 1, 1, 12), datetime(2026, 1, 3, 12))
    assert period.day_bounds() == (date(2026, 1, 2), date(2026, 1, 4))


def test_month_helpers():
    now = datetime(2026, 1, 15, 8, 30)
    assert current_month(now) == month_period(2026, 1)
    assert previous_month(now) == month_period(2025, 12)
    assert month_period(2025, 12).end == datetime(2026, 1, 1)


def test_is_closed():
    january = month_period(2026, 1)
    assert not january.is_closed(datetime(2026, 1, 31, 23, 59))
    assert january.is_closed(datetime(2026, 2, 1))
