"""Domain events emitted when scheduling mutations are applied."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel

from weekplan.domain.models import Severity


class EventCreated(BaseModel):
    """Fired when a new EventTemplate is stored (created, forked or duplicated)."""

    event_id: str


class EventMoved(BaseModel):
    """Fired when a stored event is rescheduled in place."""

    event_id: str
    previous_starts_at: datetime


class OccurrenceExcepted(BaseModel):
    """Fired when one date is excluded from a recurring series."""

    parent_id: str
    original_date: date
    replacement_id: str | None = None


class ConflictDetected(BaseModel):
    """Fired when a created or moved event overlaps existing instances."""

    event_id: str
    conflicting_event_ids: list[str]
    severity: Severity


class FocusTimeFlagged(BaseModel):
    """Fired when an event starts inside a protected focus block."""

    event_id: str
    block_id: str
