"""Service for turning human-readable recurrence phrases into rules and back."""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta

import dateparser

from weekplan.domain.models import Frequency, RecurrenceRule
from weekplan.services.recurrence import rule_weekdays

_DAY_MAP = {
    "sunday": 0,
    "sun": 0,
    "monday": 1,
    "mon": 1,
    "tuesday": 2,
    "tues": 2,
    "tue": 2,
    "wednesday": 3,
    "wed": 3,
    "thursday": 4,
    "thurs": 4,
    "thur": 4,
    "thu": 4,
    "friday": 5,
    "fri": 5,
    "saturday": 6,
    "sat": 6,
}

_DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
_MONTH_NAMES = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]
_UNIT_FREQ = {
    "day": Frequency.DAILY,
    "week": Frequency.WEEKLY,
    "month": Frequency.MONTHLY,
    "year": Frequency.YEARLY,
}
_UNIT_PLURAL = {
    Frequency.DAILY: "days",
    Frequency.WEEKLY: "weeks",
    Frequency.MONTHLY: "months",
    Frequency.YEARLY: "years",
}

_END_PREFIX = re.compile(r"^\s*(until|till|til|through|thru|ending|ends?)\s+", re.I)
_END_OF_MONTH = re.compile(r"^(the\s+)?end\s+of\s+(?P<month>[a-z]+)", re.I)


def extract_days_of_week(text: str) -> list[int]:
    """Sunday=0 weekday numbers named in *text* (word boundaries, any case)."""
    lower = text.lower()
    if "weekday" in lower:
        return [1, 2, 3, 4, 5]
    if "weekend" in lower:
        return [0, 6]
    days = {
        value
        for name, value in _DAY_MAP.items()
        if re.search(rf"\b{name}s?\b", lower)
    }
    return sorted(days)


def parse_recurrence_description(text: str) -> RecurrenceRule | None:
    """Parse phrases like "every other Thursday" or "monthly" into a rule.

    Returns ``None`` when *text* does not describe a recurrence.
    """
    desc = text.lower().strip()

    if "every day" in desc or "daily" in desc:
        return RecurrenceRule(frequency=Frequency.DAILY)

    m = re.search(r"every\s+(\d+)\s+(day|week|month|year)s?", desc)
    if m:
        freq = _UNIT_FREQ[m.group(2)]
        days = extract_days_of_week(desc) if freq == Frequency.WEEKLY else []
        return RecurrenceRule(frequency=freq, interval=int(m.group(1)), days_of_week=days)

    if any(phrase in desc for phrase in ("every other", "biweekly", "bi-weekly")):
        return RecurrenceRule(
            frequency=Frequency.WEEKLY, interval=2, days_of_week=extract_days_of_week(desc)
        )

    days = extract_days_of_week(desc)
    if days or "every week" in desc or "weekly" in desc:
        return RecurrenceRule(frequency=Frequency.WEEKLY, days_of_week=days)

    if "every month" in desc or "monthly" in desc:
        return RecurrenceRule(frequency=Frequency.MONTHLY)

    if any(phrase in desc for phrase in ("every year", "yearly", "annually")):
        return RecurrenceRule(frequency=Frequency.YEARLY)

    return None


def parse_recurrence_end(text: str | None, now: datetime) -> date | None:
    """Parse "until end of May" / "until April 30 2026" into an exclusive end date.

    The named day is the last occurrence day, so the returned bound is the day
    after it. Returns ``None`` if the phrase has no recognisable date.
    """
    if not text:
        return None
    phrase = _END_PREFIX.sub("", text.strip())

    m = _END_OF_MONTH.match(phrase)
    if m:
        month = _month_number(m.group("month"))
        if month is not None:
            year = now.year if month >= now.month else now.year + 1
            last_day = calendar.monthrange(year, month)[1]
            return date(year, month, last_day) + timedelta(days=1)

    settings = {
        "PREFER_DATES_FROM": "future",
        "RELATIVE_BASE": now.replace(tzinfo=None),
        "RETURN_AS_TIMEZONE_AWARE": False,
    }
    result = dateparser.parse(phrase, settings=settings)
    if result is None:
        return None
    return result.date() + timedelta(days=1)


def _month_number(name: str) -> int | None:
    prefix = name[:3].title()
    if prefix in _MONTH_NAMES:
        return _MONTH_NAMES.index(prefix) + 1
    return None


def describe_rule(rule: RecurrenceRule) -> str:
    """Short human-readable summary, e.g. "every 2 weeks on Mon, Wed"."""
    freq = rule.frequency
    if rule.interval == 1:
        description = str(freq)
    else:
        description = f"every {rule.interval} {_UNIT_PLURAL.get(freq, freq)}"

    days = rule_weekdays(rule)
    if freq == Frequency.WEEKLY and days:
        description += " on " + ", ".join(_DAY_NAMES[d] for d in days)
    if freq == Frequency.MONTHLY and rule.day_of_month:
        description += f" on day {rule.day_of_month}"
    if freq == Frequency.YEARLY and rule.month_of_year and rule.day_of_month:
        description += f" on {_MONTH_NAMES[rule.month_of_year - 1]} {rule.day_of_month}"

    if rule.end_date:
        last = rule.end_date - timedelta(days=1)
        description += f" until {last.isoformat()}"
    elif rule.count:
        description += f" for {rule.count} occurrences"
    return description
