"""FastAPI entry point for the scheduling engine."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from fastapi import FastAPI, HTTPException

from weekplan.domain.bus import EventBus
from weekplan.domain.errors import InvalidRuleError, LockedEventError
from weekplan.domain.events import EventCreated, EventMoved, OccurrenceExcepted
from weekplan.domain.handlers import HandlerRegistry
from weekplan.domain.models import (
    CalendarView,
    Conflict,
    ConflictCheckRequest,
    DragPayload,
    EventTemplate,
    FocusBlock,
    FocusCheckRequest,
    Mutation,
    MutationKind,
    MutationResult,
    RecurrenceParseRequest,
    RecurrenceParseResponse,
    RescheduleKind,
    RescheduleRequest,
    RescheduleResponse,
    SeriesSplit,
    SplitRequest,
    TimelineEntry,
)
from weekplan.logging_config import setup_logging
from weekplan.repos.memory import (
    EventRepository,
    TimelineRepository,
    create_focus_block_repository,
)
from weekplan.services.conflicts import PREVIEW_ID, detect, detect_all, preview
from weekplan.services.drag import reschedule as _reschedule
from weekplan.services.drag import to_mutations
from weekplan.services.focus import is_protected
from weekplan.services.layout import group_by_day, layout
from weekplan.services.parser import (
    describe_rule,
    parse_recurrence_description,
    parse_recurrence_end,
)
from weekplan.services.recurrence import (
    delete_occurrence,
    expand,
    expand_window,
    series_of,
    split_series,
)

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Weekplan Scheduling Engine")

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
event_repo = EventRepository()
timeline_repo = TimelineRepository()
focus_repo = create_focus_block_repository()

handler_registry = HandlerRegistry(
    bus=event_bus,
    event_repo=event_repo,
    timeline_repo=timeline_repo,
    focus_repo=focus_repo,
)


def _get_or_404(event_id: str) -> EventTemplate:
    event = event_repo.get(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def _owner_of(dropped: DragPayload) -> str | None:
    """The owner of the stored event (or parent series) behind a drag payload."""
    candidates = [dropped.recurrence_parent_id, series_of(dropped.id), dropped.id]
    for event_id in candidates:
        stored = event_repo.get(event_id) if event_id else None
        if stored is not None:
            return stored.user_id
    return None


def _apply(mutations: list[Mutation]) -> list[MutationResult]:
    """Apply mutations in order, stopping at the first one the store refuses.

    Domain events are published once the batch is in the store, so handlers
    never see a fork before its exception.
    """
    results: list[MutationResult] = []
    pending: list = []
    for mutation in mutations:
        previous = event_repo.get(mutation.payload.get("id", ""))
        result = event_repo.apply_mutation(mutation)
        results.append(result)
        if not result.applied:
            break
        if mutation.kind == MutationKind.CREATE:
            pending.append(EventCreated(event_id=result.event_id))
        elif mutation.kind == MutationKind.UPDATE and previous is not None:
            pending.append(
                EventMoved(event_id=result.event_id, previous_starts_at=previous.starts_at)
            )
        elif mutation.kind == MutationKind.ADD_EXCEPTION:
            created = [r.event_id for r in results if r.kind == MutationKind.CREATE]
            pending.append(
                OccurrenceExcepted(
                    parent_id=result.event_id,
                    original_date=mutation.payload["originalDate"],
                    replacement_id=created[0] if created else None,
                )
            )
    for event in pending:
        event_bus.publish(event)
    return results


# ── Routes ────────────────────────────────────────────────────────────


@app.get("/events", response_model=list[EventTemplate])
def list_events(user_id: str | None = None) -> list[EventTemplate]:
    """Return all stored templates and standalone events."""
    return event_repo.list_events(user_id)


@app.post("/events", response_model=EventTemplate)
def create_event(event: EventTemplate) -> EventTemplate:
    """Store a new template or standalone event."""
    try:
        event_repo.add(event)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info("Created event %s", event.id)
    event_bus.publish(EventCreated(event_id=event.id))
    return event


@app.get("/events/{event_id}", response_model=EventTemplate)
def get_event(event_id: str) -> EventTemplate:
    """Return a single stored event by id."""
    return _get_or_404(event_id)


@app.get("/events/{event_id}/timeline", response_model=list[TimelineEntry])
def get_timeline(event_id: str) -> list[TimelineEntry]:
    _get_or_404(event_id)
    return timeline_repo.list_for_event(event_id)


@app.get("/calendar", response_model=CalendarView)
def get_calendar(start: date, end: date, user_id: str | None = None) -> CalendarView:
    """Expand the visible window once and derive conflicts and lanes from it."""
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    expansion = expand_window(event_repo.list_events(user_id), start, end)
    instances = expansion.instances
    return CalendarView(
        instances=instances,
        conflicts=detect_all(instances),
        layout={day: layout(items) for day, items in group_by_day(instances).items()},
        truncated=expansion.truncated,
        invalid=expansion.invalid,
    )


@app.post("/conflicts/check", response_model=list[Conflict])
def check_conflicts(body: ConflictCheckRequest) -> list[Conflict]:
    """Check a proposed slot (or a stored event's new slot) against the calendar."""
    if body.ends_at <= body.starts_at:
        raise HTTPException(status_code=400, detail="ends_at must be after starts_at")
    tz = body.starts_at.tzinfo or timezone.utc
    window_start = datetime.combine(body.starts_at.date(), time.min, tzinfo=tz)
    window_end = datetime.combine(body.ends_at.date(), time.max, tzinfo=tz)
    expansion = expand_window(
        event_repo.list_events(), window_start - timedelta(days=1), window_end
    )
    candidate = preview(body.starts_at, body.ends_at, event_id=body.event_id or PREVIEW_ID)
    others = [
        i
        for i in expansion.instances
        if body.event_id is None or series_of(i.id) != body.event_id
    ]
    return detect(candidate, others)


@app.post("/reschedule", response_model=RescheduleResponse)
def reschedule_event(body: RescheduleRequest) -> RescheduleResponse:
    """Handle a drop on the week grid: move, fork an occurrence, or duplicate."""
    dropped = body.dropped
    if dropped.user_id is None:
        dropped = dropped.model_copy(update={"user_id": _owner_of(dropped)})
    try:
        result = _reschedule(
            dropped,
            body.target_date,
            body.pointer_offset_minutes,
            duplicate=body.duplicate,
        )
    except InvalidRuleError as exc:
        raise HTTPException(status_code=422, detail=exc.to_dict()) from exc

    if result.kind == RescheduleKind.REJECTED:
        raise HTTPException(
            status_code=409, detail=LockedEventError(body.dropped.id).to_dict()
        )
    return RescheduleResponse(result=result, applied=_apply(to_mutations(result)))


@app.delete("/events/{event_id}/occurrences/{occurrence_date}", response_model=MutationResult)
def delete_event_occurrence(event_id: str, occurrence_date: date) -> MutationResult:
    """Delete one occurrence of a series by adding an exception for its date."""
    parent = _get_or_404(event_id)
    try:
        occurrences = expand(parent, occurrence_date, occurrence_date)
    except InvalidRuleError as exc:
        raise HTTPException(status_code=422, detail=exc.to_dict()) from exc
    if not parent.is_recurring or not occurrences:
        raise HTTPException(status_code=404, detail="No occurrence on that date")
    return _apply([delete_occurrence(occurrences[0])])[0]


@app.post("/events/{event_id}/split", response_model=SeriesSplit)
def split_event_series(event_id: str, body: SplitRequest) -> SeriesSplit:
    """Edit "this and future" occurrences by splitting the series in two."""
    template = _get_or_404(event_id)
    try:
        split = split_series(
            template,
            body.occurrence_date,
            title=body.title,
            description=body.description,
            color=body.color,
        )
    except InvalidRuleError as exc:
        raise HTTPException(status_code=422, detail=exc.to_dict()) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    def dump(model: EventTemplate) -> dict:
        return model.model_dump(mode="json", by_alias=True, exclude_none=True)

    _apply(
        [
            Mutation(kind=MutationKind.UPDATE, payload=dump(split.original)),
            Mutation(kind=MutationKind.CREATE, payload=dump(split.new_series)),
        ]
    )
    return split


@app.post("/focus/check", response_model=FocusBlock | None)
def check_focus_time(body: FocusCheckRequest) -> FocusBlock | None:
    """Return the protected focus block covering a timestamp, if any."""
    try:
        return is_protected(body.timestamp, focus_repo.list_all(), body.time_zone)
    except InvalidRuleError as exc:
        raise HTTPException(status_code=422, detail=exc.to_dict()) from exc


@app.post("/recurrence/parse", response_model=RecurrenceParseResponse)
def parse_recurrence(body: RecurrenceParseRequest) -> RecurrenceParseResponse:
    """Turn a phrase like "every other Thursday until end of May" into a rule."""
    rule = parse_recurrence_description(body.text)
    if rule is None:
        return RecurrenceParseResponse()
    end_date = parse_recurrence_end(body.end_text, datetime.now(timezone.utc))
    if end_date is not None:
        rule = rule.model_copy(update={"end_date": end_date})
    return RecurrenceParseResponse(rule=rule, summary=describe_rule(rule))
