"""Half-open payout periods.

A period is [start, end) in naive UTC. Engagement is bucketed by day; a day
belongs to a period when its midnight does.
"""
from dataclasses import dataclass
from datetime import datetime, date, time, timedelta, timezone

from payouts.services.errors import ValidationError


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _first_midnight_at_or_after(value: datetime) -> date:
    if value.time() == time.min:
        return value.date()
    return value.date() + timedelta(days=1)


@dataclass(frozen=True)
class Period:
    start: datetime
    end: datetime

    @classmethod
    def of(cls, start: datetime, end: datetime) -> 'Period':
        start, end = to_naive_utc(start), to_naive_utc(end)
        if start >= end:
            raise ValidationError(f'Period start {start} must be before end {end}')
        return cls(start, end)

    @property
    def label(self) -> str:
        """'January 2026' for calendar months, otherwise the covered day range."""
        if self == month_period(self.start.year, self.start.month):
            return self.start.strftime('%B %Y')
        last = self.end - timedelta(microseconds=1)
        return f'{self.start:%Y-%m-%d} to {last:%Y-%m-%d}'

    def contains(self, moment: datetime) -> bool:
        return self.start <= to_naive_utc(moment) < self.end

    def day_bounds(self) -> tuple[date, date]:
        """(first_day, end_day) such that first_day <= day < end_day selects the period's days."""
        return _first_midnight_at_or_after(self.start), _first_midnight_at_or_after(self.end)

    def is_closed(self, now: datetime) -> bool:
        return self.end <= to_naive_utc(now)


def month_period(year: int, month: int) -> Period:
    start = datetime(year, month, 1)
    if month == 12:
        end = datetime(year + 1, 1, 1)
    else:
        end = datetime(year, month + 1, 1)
    return Period(start, end)


def current_month(now: datetime) -> Period:
    now = to_naive_utc(now)
    return month_period(now.year, now.month)


def previous_month(now: datetime) -> Period:
    first_of_month = current_month(now).start
    last_month_day = first_of_month - timedelta(days=1)
    return month_period(last_month_day.year, last_month_day.month)
