"""In-memory repositories standing in for the external document store."""

from __future__ import annotations

import logging
from datetime import date

from weekplan.domain.errors import REASON_NOT_FOUND, REASON_ORPHAN_EXCEPTION
from weekplan.domain.models import (
    EventTemplate,
    ExceptionRequest,
    FocusBlock,
    Mutation,
    MutationKind,
    MutationResult,
    TimelineEntry,
)
from weekplan.services.recurrence import parse_instance_id

logger = logging.getLogger(__name__)


class EventRepository:
    """Dict-backed store for EventTemplate instances, keyed by id."""

    def __init__(self) -> None:
        self._store: dict[str, EventTemplate] = {}

    def add(self, event: EventTemplate) -> None:
        if parse_instance_id(event.id) is not None:
            raise ValueError(f"{event.id!r} has the shape of a derived instance id")
        self._store[event.id] = event

    def get(self, event_id: str) -> EventTemplate | None:
        return self._store.get(event_id)

    def list_events(self, user_id: str | None = None) -> list[EventTemplate]:
        return [
            e for e in self._store.values() if user_id is None or e.user_id == user_id
        ]

    def add_exception(self, parent_id: str, original_date: date) -> bool:
        """Exclude *original_date* from a series. Returns False for a missing
        parent or an exception that is already present."""
        parent = self._store.get(parent_id)
        if parent is None:
            logger.info(
                "Ignoring exception %s for missing parent %s", original_date, parent_id
            )
            return False
        if original_date in parent.recurrence_exceptions:
            return False
        self._store[parent_id] = parent.model_copy(
            update={
                "recurrence_exceptions": sorted(
                    [*parent.recurrence_exceptions, original_date]
                )
            }
        )
        return True

    def apply_mutation(self, mutation: Mutation) -> MutationResult:
        """Apply one mutation built by the scheduling services."""
        if mutation.kind == MutationKind.CREATE:
            event = EventTemplate.model_validate(mutation.payload)
            self.add(event)
            return MutationResult(kind=mutation.kind, applied=True, event_id=event.id)

        if mutation.kind == MutationKind.UPDATE:
            event_id = mutation.payload.get("id")
            stored = self._store.get(event_id) if event_id else None
            if stored is None:
                return MutationResult(
                    kind=mutation.kind,
                    applied=False,
                    event_id=event_id,
                    reason=REASON_NOT_FOUND,
                )
            merged = {**stored.model_dump(by_alias=True), **mutation.payload}
            self._store[stored.id] = EventTemplate.model_validate(merged)
            return MutationResult(kind=mutation.kind, applied=True, event_id=stored.id)

        request = ExceptionRequest.model_validate(mutation.payload)
        if request.parent_id not in self._store:
            logger.info(
                "Orphan exception %s for missing parent %s",
                request.original_date,
                request.parent_id,
            )
            return MutationResult(
                kind=mutation.kind,
                applied=False,
                event_id=request.parent_id,
                reason=REASON_ORPHAN_EXCEPTION,
            )
        applied = self.add_exception(request.parent_id, request.original_date)
        return MutationResult(
            kind=mutation.kind, applied=applied, event_id=request.parent_id
        )


class TimelineRepository:
    """List-backed store for TimelineEntry instances."""

    def __init__(self) -> None:
        self._entries: list[TimelineEntry] = []

    def add(self, entry: TimelineEntry) -> None:
        self._entries.append(entry)

    def list_for_event(self, event_id: str) -> list[TimelineEntry]:
        return sorted(
            [e for e in self._entries if e.event_id == event_id],
            key=lambda e: e.timestamp,
        )


class FocusBlockRepository:
    """List-backed store for FocusBlock instances."""

    def __init__(self) -> None:
        self._blocks: list[FocusBlock] = []

    def add(self, block: FocusBlock) -> None:
        self._blocks.append(block)

    def list_all(self) -> list[FocusBlock]:
        return list(self._blocks)


# ---------------------------------------------------------------------------
# Seed data: default focus blocks for a fresh calendar
# ---------------------------------------------------------------------------


def _seed_focus_blocks(repo: FocusBlockRepository) -> None:
    repo.add(
        FocusBlock(
            id="morning-focus",
            day_of_week=1,
            start_hour=9,
            end_hour=12,
            label="Morning Deep Work",
        )
    )
    repo.add(
        FocusBlock(
            id="afternoon-focus",
            day_of_week=1,
            start_hour=14,
            end_hour=16,
            label="Afternoon Focus",
        )
    )


def create_focus_block_repository() -> FocusBlockRepository:
    """Return a FocusBlockRepository pre-loaded with the default Monday blocks."""
    repo = FocusBlockRepository()
    _seed_focus_blocks(repo)
    return repo
