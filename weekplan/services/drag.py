"""Service turning a drag-and-drop onto the week grid into a mutation request.

A plain event is moved in place (``update``). A derived occurrence of a
recurring series is forked: the parent gets an exception for the original
date and a standalone event is created at the drop position
(``forkAndException``). Locked events are rejected without a payload.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta

from weekplan.config import settings
from weekplan.domain.errors import REASON_LOCKED
from weekplan.domain.models import (
    DragPayload,
    EventTemplate,
    ExceptionRequest,
    ForkPayload,
    Mutation,
    MutationKind,
    RescheduleKind,
    RescheduleResult,
)
from weekplan.services.recurrence import parse_instance_id, resolve_zone

logger = logging.getLogger(__name__)

_MINUTES_PER_DAY = 24 * 60

# Descriptions written by the calendar UI start with "HH:MM - HH:MM | ".
_TIME_RANGE_PREFIX = re.compile(r"^\s*\d{1,2}:\d{2}\s*[-–]\s*\d{1,2}:\d{2}\s*\|")


def snap_offset(pointer_offset_minutes: int) -> int:
    """Snap a pointer position (minutes from midnight) to the grid slot under it.

    The hour cell is kept; the minutes inside it drop to the start of their
    ``SNAP_MINUTES`` slot (with 30: 0-29 -> :00, 30-59 -> :30).
    """
    minutes = min(max(pointer_offset_minutes, 0), _MINUTES_PER_DAY - 1)
    hour, within = divmod(minutes, 60)
    step = settings.SNAP_MINUTES
    return hour * 60 + (within // step) * step


def _clock_minutes(value: str) -> int:
    hours, minutes = value.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def payload_duration(dropped: DragPayload) -> timedelta:
    """Duration of the dragged event; always carried over to the new position."""
    if dropped.starts_at and dropped.ends_at and dropped.ends_at > dropped.starts_at:
        return dropped.ends_at - dropped.starts_at
    start = _clock_minutes(dropped.time_start)
    end = _clock_minutes(dropped.time_end)
    if end < start:
        end += _MINUTES_PER_DAY
    if end == start:
        return timedelta(minutes=settings.DEFAULT_DURATION_MINUTES)
    return timedelta(minutes=end - start)


def _retime_description(description: str, start: datetime, end: datetime) -> str:
    if not _TIME_RANGE_PREFIX.match(description):
        return description
    rest = description.split("|", 1)[1].strip()
    return f"{start.strftime('%H:%M')} - {end.strftime('%H:%M')} | {rest}"


def source_occurrence(dropped: DragPayload) -> tuple[str, date] | None:
    """``(parent_id, original_date)`` when *dropped* is a derived occurrence.

    Only synthetic ids mark a derived occurrence. A standalone event forked
    earlier keeps ``recurrence_parent_id`` as provenance, so dragging it again
    is a plain update and never adds a second exception.
    """
    parsed = parse_instance_id(dropped.id)
    if parsed is None:
        return None
    parent_id, original_date = parsed
    return dropped.recurrence_parent_id or parent_id, original_date


def reschedule(
    dropped: DragPayload,
    target_date: date,
    pointer_offset_minutes: int,
    duplicate: bool = False,
) -> RescheduleResult:
    """Decide what a drop of *dropped* onto *target_date* should do."""
    if dropped.is_locked:
        logger.info("Rejected drag of locked event %s", dropped.id)
        return RescheduleResult(kind=RescheduleKind.REJECTED, reason=REASON_LOCKED)

    fallback = dropped.starts_at.tzinfo if dropped.starts_at else None
    zone = resolve_zone(dropped.time_zone, fallback)
    hour, minute = divmod(snap_offset(pointer_offset_minutes), 60)
    starts_at = datetime.combine(target_date, time(hour, minute), tzinfo=zone)
    ends_at = starts_at + payload_duration(dropped)
    description = _retime_description(dropped.description, starts_at, ends_at)

    if duplicate:
        copy = EventTemplate(
            title=dropped.title,
            description=description,
            starts_at=starts_at,
            ends_at=ends_at,
            color=dropped.color,
            user_id=dropped.user_id,
            time_zone=dropped.time_zone,
        )
        logger.info("Duplicated %s as %s at %s", dropped.id, copy.id, starts_at)
        return RescheduleResult(kind=RescheduleKind.DUPLICATE, payload=copy)

    occurrence = source_occurrence(dropped)
    if occurrence is not None:
        parent_id, original_date = occurrence
        standalone = EventTemplate(
            title=dropped.title,
            description=description,
            starts_at=starts_at,
            ends_at=ends_at,
            color=dropped.color,
            is_recurring=False,
            recurrence_parent_id=parent_id,
            user_id=dropped.user_id,
            time_zone=dropped.time_zone,
        )
        logger.info(
            "Forking %s occurrence %s into %s at %s",
            parent_id,
            original_date,
            standalone.id,
            starts_at,
        )
        return RescheduleResult(
            kind=RescheduleKind.FORK_AND_EXCEPTION,
            payload=ForkPayload(
                exception=ExceptionRequest(parent_id=parent_id, original_date=original_date),
                event=standalone,
            ),
        )

    moved = dropped.model_copy(
        update={
            "date": target_date,
            "time_start": starts_at.strftime("%H:%M"),
            "time_end": ends_at.strftime("%H:%M"),
            "starts_at": starts_at,
            "ends_at": ends_at,
            "description": description,
        }
    )
    return RescheduleResult(kind=RescheduleKind.UPDATE, payload=moved)


def to_mutations(result: RescheduleResult) -> list[Mutation]:
    """Store mutations for a reschedule result, in the order they must be applied.

    For a fork the standalone event is created before the exception is added so
    a failed create never hides the occurrence.
    """
    if result.payload is None:
        return []

    def dump(model) -> dict:
        return model.model_dump(mode="json", by_alias=True, exclude_none=True)

    if result.kind == RescheduleKind.UPDATE:
        return [Mutation(kind=MutationKind.UPDATE, payload=dump(result.payload))]
    if result.kind == RescheduleKind.DUPLICATE:
        return [Mutation(kind=MutationKind.CREATE, payload=dump(result.payload))]
    if result.kind == RescheduleKind.FORK_AND_EXCEPTION:
        return [
            Mutation(kind=MutationKind.CREATE, payload=dump(result.payload.event)),
            Mutation(kind=MutationKind.ADD_EXCEPTION, payload=dump(result.payload.exception)),
        ]
    return []
