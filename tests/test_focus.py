"""Tests for the focus-time guard."""

from datetime import date, datetime, timezone

from weekplan.domain.models import EventInstance, FocusBlock
from weekplan.repos.memory import create_focus_block_repository
from weekplan.services.focus import focus_conflicts, is_protected


def _blocks() -> list[FocusBlock]:
    return create_focus_block_repository().list_all()


def test_inside_monday_morning_block():
    # 2024-01-01 is a Monday
    block = is_protected(datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc), _blocks())

    assert block is not None
    assert block.id == "morning-focus"


def test_end_hour_is_exclusive():
    assert is_protected(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc), _blocks()) is None
    assert is_protected(datetime(2024, 1, 1, 11, 59, tzinfo=timezone.utc), _blocks()) is not None


def test_other_weekday_not_protected():
    assert is_protected(datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc), _blocks()) is None


def test_inactive_block_ignored():
    blocks = [FocusBlock(day_of_week=1, start_hour=9, end_hour=12, is_active=False)]

    assert is_protected(datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc), blocks) is None


def test_sunday_is_day_zero():
    blocks = [FocusBlock(id="sunday", day_of_week=0, start_hour=8, end_hour=10)]

    block = is_protected(datetime(2024, 1, 7, 8, 0, tzinfo=timezone.utc), blocks)
    assert block is not None and block.id == "sunday"


def test_read_in_given_time_zone():
    # 16:00 UTC is 11:00 in New York on a Monday in January
    timestamp = datetime(2024, 1, 1, 16, 0, tzinfo=timezone.utc)

    assert is_protected(timestamp, _blocks()) is None
    block = is_protected(timestamp, _blocks(), "America/New_York")
    assert block is not None and block.id == "morning-focus"


def test_focus_conflicts():
    inside = EventInstance(
        id="sync",
        title="Sync",
        starts_at=datetime(2024, 1, 1, 14, 30, tzinfo=timezone.utc),
        ends_at=datetime(2024, 1, 1, 15, 0, tzinfo=timezone.utc),
        occurrence_date=date(2024, 1, 1),
    )
    outside = inside.model_copy(
        update={
            "id": "lunch",
            "starts_at": datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc),
            "ends_at": datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc),
        }
    )

    pairs = focus_conflicts([inside, outside], _blocks())

    assert [(i.id, b.id) for i, b in pairs] == [("sync", "afternoon-focus")]
