"""Tests for recurrence phrase parsing and rule summaries."""

from datetime import date, datetime, timezone

import pytest

from weekplan.domain.models import RecurrenceRule
from weekplan.services.parser import (
    describe_rule,
    extract_days_of_week,
    parse_recurrence_description,
    parse_recurrence_end,
)

_NOW = datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "text, frequency, interval, days",
    [
        ("every Thursday", "weekly", 1, [4]),
        ("every other Thursday", "weekly", 2, [4]),
        ("biweekly on Mondays", "weekly", 2, [1]),
        ("every weekday", "weekly", 1, [1, 2, 3, 4, 5]),
        ("Tuesdays and Thursdays", "weekly", 1, [2, 4]),
        ("daily", "daily", 1, []),
        ("every 3 days", "daily", 3, []),
        ("monthly", "monthly", 1, []),
        ("annually", "yearly", 1, []),
    ],
)
def test_parse_recurrence_description(text, frequency, interval, days):
    rule = parse_recurrence_description(text)

    assert rule is not None
    assert rule.frequency == frequency
    assert rule.interval == interval
    assert rule.days_of_week == days


def test_non_recurring_phrase():
    assert parse_recurrence_description("tomorrow at noon") is None


def test_extract_days_of_week_word_boundaries():
    assert extract_days_of_week("Wednesday standup") == [3]
    assert extract_days_of_week("weekends only") == [0, 6]
    assert extract_days_of_week("nothing here") == []


def test_end_of_month_phrase():
    assert parse_recurrence_end("until end of May", _NOW) == date(2026, 6, 1)


def test_end_of_earlier_month_rolls_to_next_year():
    assert parse_recurrence_end("until end of January", _NOW) == date(2027, 2, 1)


def test_explicit_end_date_is_made_exclusive():
    assert parse_recurrence_end("until April 30 2026", _NOW) == date(2026, 5, 1)


def test_missing_end_phrase():
    assert parse_recurrence_end(None, _NOW) is None
    assert parse_recurrence_end("", _NOW) is None


def test_describe_rule():
    assert (
        describe_rule(RecurrenceRule(frequency="weekly", interval=2, days_of_week=[1, 3]))
        == "every 2 weeks on Mon, Wed"
    )
    assert describe_rule(RecurrenceRule(frequency="daily", count=5)) == "daily for 5 occurrences"
    assert (
        describe_rule(
            RecurrenceRule(frequency="monthly", day_of_month=15, end_date=date(2024, 7, 1))
        )
        == "monthly on day 15 until 2024-06-30"
    )
