"""Tests for drag-and-drop rescheduling."""

from datetime import date, datetime, timedelta, timezone

from weekplan.domain.models import (
    DragPayload,
    EventInstance,
    EventTemplate,
    ForkPayload,
    MutationKind,
    RecurrenceRule,
    RescheduleKind,
)
from weekplan.repos.memory import EventRepository
from weekplan.services.drag import (
    payload_duration,
    reschedule,
    snap_offset,
    source_occurrence,
    to_mutations,
)
from weekplan.services.recurrence import expand, parse_instance_id


def _tuesday_standup() -> EventTemplate:
    return EventTemplate(
        id="standup",
        title="Standup",
        description="09:00 - 09:30 | Daily sync",
        starts_at=datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc),
        ends_at=datetime(2024, 1, 2, 9, 30, tzinfo=timezone.utc),
        is_recurring=True,
        recurrence_rule=RecurrenceRule(frequency="weekly", days_of_week=[2]),
    )


def _payload_from(instance: EventInstance | EventTemplate) -> DragPayload:
    """What the week grid puts on the drag data transfer."""
    return DragPayload(
        id=instance.id,
        title=instance.title,
        description=instance.description,
        date=instance.starts_at.date(),
        time_start=instance.starts_at.strftime("%H:%M"),
        time_end=instance.ends_at.strftime("%H:%M"),
        is_locked=instance.is_locked,
        color=instance.color,
        user_id=instance.user_id,
        recurrence_parent_id=instance.recurrence_parent_id,
        starts_at=instance.starts_at,
        ends_at=instance.ends_at,
    )


def _lunch(**overrides) -> DragPayload:
    data = dict(
        id="lunch",
        title="Lunch",
        description="12:00 - 13:00 | Lunch with Sam",
        date=date(2024, 1, 3),
        time_start="12:00",
        time_end="13:00",
    )
    data.update(overrides)
    return DragPayload(**data)


# ---------------------------------------------------------------------------
# Snapping and duration
# ---------------------------------------------------------------------------


def test_snap_offset():
    assert snap_offset(9 * 60) == 540
    assert snap_offset(9 * 60 + 10) == 540
    assert snap_offset(9 * 60 + 29) == 540
    assert snap_offset(9 * 60 + 30) == 570
    assert snap_offset(9 * 60 + 59) == 570


def test_snap_offset_clamped_to_day():
    assert snap_offset(-5) == 0
    assert snap_offset(2000) == 23 * 60 + 30


def test_duration_from_clock_strings():
    payload = _lunch(time_start="09:00", time_end="10:30")

    assert payload_duration(payload) == timedelta(minutes=90)


def test_duration_wraps_past_midnight():
    payload = _lunch(time_start="23:00", time_end="00:30")

    assert payload_duration(payload) == timedelta(minutes=90)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


def test_recurring_occurrence_forks_with_exception():
    instance = expand(_tuesday_standup(), date(2024, 1, 2), date(2024, 1, 2))[0]
    assert instance.id == "standup_2024-01-02"

    result = reschedule(_payload_from(instance), date(2024, 1, 4), 14 * 60)

    assert result.kind == RescheduleKind.FORK_AND_EXCEPTION
    assert isinstance(result.payload, ForkPayload)
    assert result.payload.exception.parent_id == "standup"
    assert result.payload.exception.original_date == date(2024, 1, 2)
    event = result.payload.event
    assert event.starts_at == datetime(2024, 1, 4, 14, 0, tzinfo=timezone.utc)
    assert event.ends_at == datetime(2024, 1, 4, 14, 30, tzinfo=timezone.utc)
    assert event.recurrence_parent_id == "standup"
    assert event.is_recurring is False
    assert event.description == "14:00 - 14:30 | Daily sync"
    assert parse_instance_id(event.id) is None


def test_locked_event_rejected_without_payload():
    result = reschedule(_lunch(is_locked=True), date(2024, 1, 5), 15 * 60)

    assert result.kind == RescheduleKind.REJECTED
    assert result.payload is None
    assert result.reason == "locked"
    assert to_mutations(result) == []


def test_plain_event_updated_in_place():
    result = reschedule(_lunch(), date(2024, 1, 5), 15 * 60 + 40)

    assert result.kind == RescheduleKind.UPDATE
    moved = result.payload
    assert moved.id == "lunch"
    assert moved.date == date(2024, 1, 5)
    assert moved.time_start == "15:30"
    assert moved.time_end == "16:30"
    assert moved.starts_at == datetime(2024, 1, 5, 15, 30, tzinfo=timezone.utc)
    assert moved.description == "15:30 - 16:30 | Lunch with Sam"


def test_free_text_description_left_alone():
    result = reschedule(_lunch(description="Bring the slides"), date(2024, 1, 5), 15 * 60)

    assert result.payload.description == "Bring the slides"


def test_duplicate_creates_new_event():
    result = reschedule(_lunch(), date(2024, 1, 5), 10 * 60, duplicate=True)

    assert result.kind == RescheduleKind.DUPLICATE
    assert isinstance(result.payload, EventTemplate)
    assert result.payload.id != "lunch"
    assert result.payload.starts_at == datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc)
    assert result.payload.ends_at == datetime(2024, 1, 5, 11, 0, tzinfo=timezone.utc)
    assert [m.kind for m in to_mutations(result)] == [MutationKind.CREATE]


def test_drop_read_in_payload_time_zone():
    result = reschedule(_lunch(time_zone="Europe/Paris"), date(2024, 1, 5), 14 * 60)

    assert result.payload.starts_at.utcoffset() == timedelta(hours=1)
    assert result.payload.starts_at.astimezone(timezone.utc).hour == 13


def test_fork_and_duplicate_keep_owner():
    template = _tuesday_standup().model_copy(update={"user_id": "u1"})
    instance = expand(template, date(2024, 1, 2), date(2024, 1, 2))[0]

    forked = reschedule(_payload_from(instance), date(2024, 1, 4), 14 * 60)
    assert forked.payload.event.user_id == "u1"

    copied = reschedule(_lunch(user_id="u1"), date(2024, 1, 5), 10 * 60, duplicate=True)
    assert copied.payload.user_id == "u1"


# ---------------------------------------------------------------------------
# Mutations and idempotence
# ---------------------------------------------------------------------------


def test_fork_mutations_create_before_exception():
    instance = expand(_tuesday_standup(), date(2024, 1, 2), date(2024, 1, 2))[0]
    result = reschedule(_payload_from(instance), date(2024, 1, 4), 14 * 60)

    mutations = to_mutations(result)

    assert [m.kind for m in mutations] == [MutationKind.CREATE, MutationKind.ADD_EXCEPTION]
    assert mutations[1].payload == {"parentId": "standup", "originalDate": "2024-01-02"}
    assert mutations[0].payload["recurrenceParentId"] == "standup"


def test_forked_event_is_moved_not_forked_again():
    repo = EventRepository()
    repo.add(_tuesday_standup())
    instance = expand(_tuesday_standup(), date(2024, 1, 2), date(2024, 1, 2))[0]

    first = reschedule(_payload_from(instance), date(2024, 1, 4), 14 * 60)
    for mutation in to_mutations(first):
        assert repo.apply_mutation(mutation).applied

    forked = repo.get(first.payload.event.id)
    assert source_occurrence(_payload_from(forked)) is None
    second = reschedule(_payload_from(forked), date(2024, 1, 5), 10 * 60)
    assert second.kind == RescheduleKind.UPDATE

    for mutation in to_mutations(second):
        assert repo.apply_mutation(mutation).applied
    assert repo.get("standup").recurrence_exceptions == [date(2024, 1, 2)]
    assert repo.get(forked.id).starts_at == datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc)


def test_repeated_exception_not_duplicated():
    repo = EventRepository()
    repo.add(_tuesday_standup())
    instance = expand(_tuesday_standup(), date(2024, 1, 2), date(2024, 1, 2))[0]
    mutation = to_mutations(reschedule(_payload_from(instance), date(2024, 1, 4), 14 * 60))[1]

    assert repo.apply_mutation(mutation).applied is True
    assert repo.apply_mutation(mutation).applied is False
    assert repo.get("standup").recurrence_exceptions == [date(2024, 1, 2)]


def test_payload_round_trips_unknown_keys():
    raw = {
        "id": "standup_2024-01-02",
        "title": "Standup",
        "description": "09:00 - 09:30 | Daily sync",
        "date": "2024-01-02",
        "timeStart": "09:00",
        "timeEnd": "09:30",
        "isLocked": False,
        "color": "bg-purple-500/70",
        "recurrenceParentId": "standup",
        "isRecurring": False,
    }

    payload = DragPayload.model_validate(raw)

    assert payload.model_dump(mode="json", by_alias=True, exclude_none=True) == raw
    assert source_occurrence(payload) == ("standup", date(2024, 1, 2))
