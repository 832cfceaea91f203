"""Domain models for the recurring-event scheduling engine."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RescheduleKind(StrEnum):
    UPDATE = "update"
    FORK_AND_EXCEPTION = "forkAndException"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


class MutationKind(StrEnum):
    UPDATE = "update"
    CREATE = "create"
    ADD_EXCEPTION = "addException"


class TimelineEntryType(StrEnum):
    CREATED = "created"
    MOVED = "moved"
    EXCEPTION_ADDED = "exception_added"
    CONFLICT_DETECTED = "conflict_detected"
    FOCUS_TIME_FLAGGED = "focus_time_flagged"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _as_date(value: Any) -> Any:
    """Accept full ISO timestamps where a calendar date is expected."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return value


class CamelModel(BaseModel):
    """Snake-case attributes, camelCase on the wire; both accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class RecurrenceRule(CamelModel):
    """Recurrence parameters as stored.

    Range checks live in ``validate_rule`` so a malformed rule
    read back from the store fails only its own expansion.
    """

    frequency: str = Field(validation_alias=AliasChoices("frequency", "freq"))
    interval: int = 1
    days_of_week: list[int] = Field(default_factory=list)
    by_day: list[str] = Field(default_factory=list)
    day_of_month: int | None = None
    month_of_year: int | None = None
    end_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("endDate", "until", "end_date"),
        serialization_alias="endDate",
    )
    count: int | None = None

    @field_validator("frequency", mode="before")
    @classmethod
    def _normalise_frequency(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("end_date", mode="before")
    @classmethod
    def _end_date_from_timestamp(cls, value: Any) -> Any:
        return _as_date(value)


class EventTemplate(CamelModel):
    """A stored event: a recurring series template or a standalone event."""

    id: str = Field(default_factory=_new_id)
    user_id: str | None = None
    title: str
    description: str = ""
    starts_at: datetime
    ends_at: datetime
    color: str | None = None
    is_locked: bool = False
    is_recurring: bool = False
    recurrence_rule: RecurrenceRule | None = None
    recurrence_parent_id: str | None = None
    recurrence_exceptions: list[date] = Field(default_factory=list)
    time_zone: str | None = None

    @field_validator("starts_at", "ends_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("recurrence_exceptions", mode="before")
    @classmethod
    def _exception_dates(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set)):
            return [_as_date(v) for v in value]
        return value

    @field_validator("recurrence_exceptions")
    @classmethod
    def _unique_exceptions(cls, value: list[date]) -> list[date]:
        return sorted(set(value))

    @model_validator(mode="after")
    def _end_after_start(self) -> EventTemplate:
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class EventInstance(EventTemplate):
    """One materialised occurrence; derived, never persisted."""

    occurrence_date: date


class Conflict(CamelModel):
    event_id: str
    conflicting_event_ids: set[str]
    severity: Severity
    overlap_minutes: int
    suggestions: list[str] = Field(default_factory=list)
    alternatives: list[datetime] = Field(default_factory=list)


class LanePosition(CamelModel):
    column: int
    total_columns: int


class FocusBlock(CamelModel):
    id: str = Field(default_factory=_new_id)
    day_of_week: int = Field(ge=0, le=6)
    start_hour: int = Field(ge=0, le=24)
    end_hour: int = Field(ge=0, le=24)
    is_active: bool = True
    label: str | None = None


class DragPayload(CamelModel):
    """The record carried through drag-and-drop.

    Unknown keys are kept so the payload round-trips unchanged.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    title: str
    description: str = ""
    date: date
    time_start: str
    time_end: str
    is_locked: bool = False
    color: str | None = None
    user_id: str | None = None
    recurrence_parent_id: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    time_zone: str | None = None


class ExceptionRequest(CamelModel):
    parent_id: str
    original_date: date


class ForkPayload(CamelModel):
    exception: ExceptionRequest
    event: EventTemplate


class RescheduleResult(CamelModel):
    kind: RescheduleKind
    payload: ForkPayload | EventTemplate | DragPayload | None = None
    reason: str | None = None


class Mutation(CamelModel):
    kind: MutationKind
    payload: dict[str, Any]


class MutationResult(CamelModel):
    kind: MutationKind
    applied: bool
    event_id: str | None = None
    reason: str | None = None


class Expansion(CamelModel):
    instances: list[EventInstance] = Field(default_factory=list)
    truncated: bool = False


class WindowExpansion(CamelModel):
    instances: list[EventInstance] = Field(default_factory=list)
    truncated: list[str] = Field(default_factory=list)
    invalid: dict[str, str] = Field(default_factory=dict)


class SeriesSplit(CamelModel):
    original: EventTemplate
    new_series: EventTemplate


class TimelineEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    event_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    type: TimelineEntryType
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class RescheduleRequest(CamelModel):
    dropped: DragPayload
    target_date: date
    pointer_offset_minutes: int
    duplicate: bool = False


class RescheduleResponse(CamelModel):
    result: RescheduleResult
    applied: list[MutationResult] = Field(default_factory=list)


class ConflictCheckRequest(CamelModel):
    starts_at: datetime
    ends_at: datetime
    event_id: str | None = None


class SplitRequest(CamelModel):
    occurrence_date: date
    title: str | None = None
    description: str | None = None
    color: str | None = None


class FocusCheckRequest(CamelModel):
    timestamp: datetime
    time_zone: str | None = None


class RecurrenceParseRequest(CamelModel):
    text: str
    end_text: str | None = None


class RecurrenceParseResponse(CamelModel):
    rule: RecurrenceRule | None = None
    summary: str | None = None


class CalendarView(CamelModel):
    instances: list[EventInstance]
    conflicts: dict[str, list[Conflict]]
    layout: dict[date, dict[str, LanePosition]]
    truncated: list[str] = Field(default_factory=list)
    invalid: dict[str, str] = Field(default_factory=dict)
