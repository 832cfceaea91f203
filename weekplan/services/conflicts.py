"""Service for detecting scheduling conflicts between events."""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta

from weekplan.config import settings
from weekplan.domain.models import Conflict, EventInstance, EventTemplate, Severity
from weekplan.services.recurrence import expand

logger = logging.getLogger(__name__)

PREVIEW_ID = "preview"


def overlaps(a: EventTemplate, b: EventTemplate) -> bool:
    """Half-open overlap: back-to-back events (a.end == b.start) do not conflict."""
    return a.starts_at < b.ends_at and b.starts_at < a.ends_at


def overlap_duration(a: EventTemplate, b: EventTemplate) -> timedelta:
    return max(timedelta(0), min(a.ends_at, b.ends_at) - max(a.starts_at, b.starts_at))


def severity_for(a: EventTemplate, b: EventTemplate) -> Severity:
    """Grade an overlap against the shorter of the two events."""
    shorter = min(a.ends_at - a.starts_at, b.ends_at - b.starts_at)
    ratio = overlap_duration(a, b) / shorter
    if ratio >= settings.HIGH_OVERLAP_RATIO:
        return Severity.HIGH
    if ratio >= settings.MEDIUM_OVERLAP_RATIO:
        return Severity.MEDIUM
    return Severity.LOW


def find_conflicts(
    new_start: datetime,
    new_end: datetime,
    existing_events: list[EventTemplate],
) -> list[EventTemplate]:
    """Return existing events that overlap with the given time range.

    Overlap rule: conflict if new_start < existing.ends_at AND existing.starts_at < new_end.
    Exact boundary touches (end == start) are NOT considered conflicts.
    """
    return [
        event
        for event in existing_events
        if new_start < event.ends_at and event.starts_at < new_end
    ]


def preview(
    starts_at: datetime, ends_at: datetime, event_id: str = PREVIEW_ID
) -> EventInstance:
    """A synthetic candidate for checking a slot before anything is created."""
    return EventInstance(
        id=event_id,
        title="(preview)",
        starts_at=starts_at,
        ends_at=ends_at,
        occurrence_date=starts_at.date(),
    )


def _format_slot(start: datetime, duration: timedelta) -> str:
    end = start + duration
    return f"{start.strftime('%a %b %d')} {start.strftime('%H:%M')}-{end.strftime('%H:%M')}"


def suggest_slots(
    candidate: EventTemplate,
    others: list[EventTemplate],
    limit: int | None = None,
) -> list[datetime]:
    """Nearest free start times on the candidate's day.

    Searches outward from the candidate start in fixed steps, later slot first
    at each distance, keeping the whole slot inside the day and clear of
    every event in *others*. Falls back to the same time on the next day.
    """
    limit = settings.MAX_SUGGESTIONS if limit is None else limit
    step = timedelta(minutes=settings.SUGGESTION_STEP_MINUTES)
    duration = candidate.ends_at - candidate.starts_at
    start = candidate.starts_at
    day_start = datetime.combine(start.date(), time.min, tzinfo=start.tzinfo)
    day_end = day_start + timedelta(days=1)

    busy = [(e.starts_at, e.ends_at) for e in others]

    def is_free(slot_start: datetime) -> bool:
        slot_end = slot_start + duration
        if slot_start < day_start or slot_end > day_end:
            return False
        return not any(slot_start < b_end and b_start < slot_end for b_start, b_end in busy)

    max_steps = int(timedelta(days=1) / step)
    suggestions: list[datetime] = []
    for k in range(1, max_steps + 1):
        for slot_start in (start + k * step, start - k * step):
            if len(suggestions) < limit and is_free(slot_start):
                suggestions.append(slot_start)
        if len(suggestions) >= limit:
            break

    if not suggestions and limit > 0:
        suggestions.append(start + timedelta(days=1))
    return suggestions


def detect(
    candidate: EventTemplate, all_instances: list[EventInstance]
) -> list[Conflict]:
    """Conflicts between *candidate* and every instance it overlaps.

    One ``Conflict`` per overlapping instance, ordered by that instance's start.
    The candidate's own id is ignored, so it may be a member of
    *all_instances* or a synthetic preview.
    """
    others = [i for i in all_instances if i.id != candidate.id]
    overlapping = sorted(
        (i for i in others if overlaps(candidate, i)),
        key=lambda i: (i.starts_at, i.id),
    )
    if not overlapping:
        return []

    alternatives = suggest_slots(candidate, others)
    duration = candidate.ends_at - candidate.starts_at
    suggestions = [_format_slot(s, duration) for s in alternatives]

    conflicts = [
        Conflict(
            event_id=candidate.id,
            conflicting_event_ids={other.id},
            severity=severity_for(candidate, other),
            overlap_minutes=int(overlap_duration(candidate, other).total_seconds() // 60),
            suggestions=suggestions,
            alternatives=alternatives,
        )
        for other in overlapping
    ]
    logger.debug("%s conflicts with %d events", candidate.id, len(conflicts))
    return conflicts


def detect_all(instances: list[EventInstance]) -> dict[str, list[Conflict]]:
    """Run ``detect`` for every instance of one expansion pass."""
    result: dict[str, list[Conflict]] = {}
    for instance in instances:
        conflicts = detect(instance, instances)
        if conflicts:
            result[instance.id] = conflicts
    return result


def check_recurring_conflicts(
    template: EventTemplate,
    existing: list[EventInstance],
    window_start: datetime,
    window_end: datetime,
) -> list[tuple[EventInstance, EventInstance]]:
    """Pairs of (new occurrence, existing instance) that would collide if
    *template* were saved."""
    pairs: list[tuple[EventInstance, EventInstance]] = []
    for occurrence in expand(template, window_start, window_end):
        for other in find_conflicts(occurrence.starts_at, occurrence.ends_at, existing):
            if other.id == occurrence.id or other.recurrence_parent_id == template.id:
                continue
            pairs.append((occurrence, other))
    return pairs
