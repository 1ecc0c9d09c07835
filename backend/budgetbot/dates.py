"""
Named date ranges and pause durations.

Chat menus send small integers; this module turns them into the three forms
the upstreams need (call-tracking timestamps, Google Ads DURING keyword, a
label for humans) and into revert deadlines.
"""

import calendar
from datetime import date, datetime, time, timedelta
from pydantic import BaseModel

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


class DateRange(BaseModel):
    start: datetime
    end: datetime
    google: str
    name: str

    @property
    def start_str(self) -> str:
        return self.start.strftime(TIMESTAMP_FORMAT)

    @property
    def end_str(self) -> str:
        return self.end.strftime(TIMESTAMP_FORMAT)


class Duration(BaseModel):
    days: int
    name: str


# Index sent by the chat menu -> (Google Ads keyword, label)
DATE_RANGES = {
    1: ("TODAY", "Today"),
    2: ("YESTERDAY", "Yesterday"),
    3: ("THIS_WEEK_SUN_TODAY", "This Week"),
    4: ("LAST_WEEK_SUN_SAT", "Last Week"),
    5: ("THIS_MONTH", "This Month"),
    6: ("LAST_MONTH", "Last Month"),
}

DURATIONS = {
    1: Duration(days=1, name="Today"),
    2: Duration(days=2, name="Today and Tomorrow"),
    3: Duration(days=3, name="Next 3 Days"),
    4: Duration(days=7, name="Next 7 Days"),
}


def _start_of_day(d: date) -> datetime:
    return datetime.combine(d, time.min)


def _end_of_day(d: date) -> datetime:
    return datetime.combine(d, time(23, 59, 59))


def _sunday_on_or_before(d: date) -> date:
    # weekday(): Monday=0 .. Sunday=6
    return d - timedelta(days=(d.weekday() + 1) % 7)


def _bounds(index: int, today: date) -> tuple[date, date]:
    if index == 2:
        d = today - timedelta(days=1)
        return d, d
    if index == 3:
        start = _sunday_on_or_before(today)
        return start, start + timedelta(days=6)
    if index == 4:
        start = _sunday_on_or_before(today) - timedelta(days=7)
        return start, start + timedelta(days=6)
    if index == 5:
        last = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=1), today.replace(day=last)
    if index == 6:
        end = today.replace(day=1) - timedelta(days=1)
        return end.replace(day=1), end
    return today, today


def resolve_date_range(index, now: datetime) -> DateRange:
    """
    Map a chat date index to a DateRange. Unknown indexes mean "Today".
    `now` should be wall-clock time in the business timezone; the returned
    timestamps are naive local times, which is what the call-tracking API
    expects alongside an explicit timezone parameter.
    """
    try:
        index = int(index)
    except (TypeError, ValueError):
        index = 1
    if index not in DATE_RANGES:
        index = 1
    google, name = DATE_RANGES[index]
    start, end = _bounds(index, now.date())
    return DateRange(start=_start_of_day(start), end=_end_of_day(end), google=google, name=name)


def resolve_duration(code) -> Duration:
    """Unknown duration codes fall back to one day."""
    try:
        code = int(code)
    except (TypeError, ValueError):
        code = 1
    return DURATIONS.get(code, DURATIONS[1])


def revert_due(duration: Duration, now: datetime, hour: int = 9) -> datetime:
    """Revert fires at `hour`:00 local time, `duration.days` days after today."""
    day = now.date() + timedelta(days=duration.days)
    return datetime.combine(day, time(hour, 0), tzinfo=now.tzinfo)
