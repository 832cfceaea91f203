"""Tests for side-by-side lane layout."""

from datetime import date, datetime, timezone

from weekplan.domain.models import EventInstance, LanePosition
from weekplan.services.conflicts import overlaps
from weekplan.services.layout import group_by_day, lane_style, layout


def _instance(event_id: str, start: tuple[int, int], end: tuple[int, int], day: int = 2):
    return EventInstance(
        id=event_id,
        title=event_id,
        starts_at=datetime(2024, 1, day, *start, tzinfo=timezone.utc),
        ends_at=datetime(2024, 1, day, *end, tzinfo=timezone.utc),
        occurrence_date=date(2024, 1, day),
    )


def test_single_event_full_width():
    positions = layout([_instance("a", (9, 0), (10, 0))])

    assert positions == {"a": LanePosition(column=0, total_columns=1)}


def test_two_overlapping_events_side_by_side():
    positions = layout([_instance("a", (9, 0), (10, 0)), _instance("b", (9, 30), (10, 30))])

    assert positions["a"] == LanePosition(column=0, total_columns=2)
    assert positions["b"] == LanePosition(column=1, total_columns=2)


def test_chain_reuses_freed_column():
    a = _instance("a", (9, 0), (10, 0))
    b = _instance("b", (9, 30), (10, 30))
    c = _instance("c", (10, 0), (11, 0))
    d = _instance("d", (13, 0), (14, 0))

    positions = layout([a, b, c, d])

    assert positions["a"].column == 0
    assert positions["b"].column == 1
    assert positions["c"].column == 0
    assert {positions[i].total_columns for i in "abc"} == {2}
    assert positions["d"] == LanePosition(column=0, total_columns=1)


def test_longer_event_takes_first_column_on_tie():
    positions = layout([_instance("short", (9, 0), (10, 0)), _instance("long", (9, 0), (11, 0))])

    assert positions["long"].column == 0
    assert positions["short"].column == 1


def test_layout_is_deterministic():
    events = [
        _instance("b", (9, 0), (10, 0)),
        _instance("a", (9, 0), (10, 0)),
        _instance("c", (9, 15), (9, 45)),
        _instance("d", (9, 50), (11, 0)),
    ]

    assert layout(events) == layout(list(reversed(events)))
    assert layout(events)["a"].column == 0


def test_overlapping_events_never_share_a_column():
    events = [
        _instance("a", (8, 0), (9, 30)),
        _instance("b", (8, 30), (9, 0)),
        _instance("c", (8, 45), (10, 0)),
        _instance("d", (9, 0), (9, 15)),
        _instance("e", (9, 30), (11, 0)),
    ]
    positions = layout(events)

    for x in events:
        assert 0 <= positions[x.id].column < positions[x.id].total_columns
        for y in events:
            if x.id != y.id and overlaps(x, y):
                assert positions[x.id].column != positions[y.id].column


def test_group_by_day():
    days = group_by_day(
        [
            _instance("late", (9, 0), (10, 0), day=3),
            _instance("early", (9, 0), (10, 0), day=2),
        ]
    )

    assert list(days) == [date(2024, 1, 2), date(2024, 1, 3)]
    assert [i.id for i in days[date(2024, 1, 3)]] == ["late"]


def test_lane_style():
    assert lane_style(LanePosition(column=1, total_columns=4)) == {"left": "25%", "width": "25%"}
    assert lane_style(None) == {"left": "0", "width": "100%"}
