"""Domain event handlers, wired up at application startup."""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta

from weekplan.domain.bus import EventBus
from weekplan.domain.events import (
    ConflictDetected,
    EventCreated,
    EventMoved,
    FocusTimeFlagged,
    OccurrenceExcepted,
)
from weekplan.domain.models import (
    EventTemplate,
    Severity,
    TimelineEntry,
    TimelineEntryType,
)
from weekplan.repos.memory import (
    EventRepository,
    FocusBlockRepository,
    TimelineRepository,
)
from weekplan.services.conflicts import detect
from weekplan.services.focus import is_protected
from weekplan.services.recurrence import expand_window, series_of

logger = logging.getLogger(__name__)

_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


class HandlerRegistry:
    """Wires domain-event handlers to the bus with access to all repositories."""

    def __init__(
        self,
        bus: EventBus,
        event_repo: EventRepository,
        timeline_repo: TimelineRepository,
        focus_repo: FocusBlockRepository,
    ) -> None:
        self.bus = bus
        self.event_repo = event_repo
        self.timeline_repo = timeline_repo
        self.focus_repo = focus_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(EventCreated, self.on_event_created)
        self.bus.subscribe(EventMoved, self.on_event_moved)
        self.bus.subscribe(OccurrenceExcepted, self.on_occurrence_excepted)
        self.bus.subscribe(ConflictDetected, self.on_conflict_detected)
        self.bus.subscribe(FocusTimeFlagged, self.on_focus_time_flagged)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_event_created(self, event: EventCreated) -> None:
        stored = self.event_repo.get(event.event_id)
        if stored is None:
            return

        self.timeline_repo.add(
            TimelineEntry(event_id=event.event_id, type=TimelineEntryType.CREATED)
        )
        self._advise(stored)

    def on_event_moved(self, event: EventMoved) -> None:
        stored = self.event_repo.get(event.event_id)
        if stored is None:
            return

        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                type=TimelineEntryType.MOVED,
                payload={
                    "from": event.previous_starts_at.isoformat(),
                    "to": stored.starts_at.isoformat(),
                },
            )
        )
        self._advise(stored)

    def on_occurrence_excepted(self, event: OccurrenceExcepted) -> None:
        if self.event_repo.get(event.parent_id) is None:
            return

        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.parent_id,
                type=TimelineEntryType.EXCEPTION_ADDED,
                payload={
                    "original_date": event.original_date.isoformat(),
                    "replacement_id": event.replacement_id,
                },
            )
        )

    def on_conflict_detected(self, event: ConflictDetected) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                type=TimelineEntryType.CONFLICT_DETECTED,
                payload={
                    "conflicting_event_ids": event.conflicting_event_ids,
                    "severity": str(event.severity),
                },
            )
        )

    def on_focus_time_flagged(self, event: FocusTimeFlagged) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                type=TimelineEntryType.FOCUS_TIME_FLAGGED,
                payload={"block_id": event.block_id},
            )
        )

    # ------------------------------------------------------------------
    # Advisories
    # ------------------------------------------------------------------

    def _advise(self, stored: EventTemplate) -> None:
        """Flag overlaps and protected focus time for the event's first slot.

        Advisory only: nothing here blocks or undoes the mutation.
        """
        tz = stored.starts_at.tzinfo
        day_start = datetime.combine(stored.starts_at.date(), time.min, tzinfo=tz)
        day_end = datetime.combine(stored.ends_at.date(), time.max, tzinfo=tz)
        # Start a day early so overnight events reaching into this day are seen.
        expansion = expand_window(
            self.event_repo.list_events(stored.user_id),
            day_start - timedelta(days=1),
            day_end,
        )
        others = [
            i
            for i in expansion.instances
            if i.id != stored.id and series_of(i.id) != stored.id
        ]
        conflicts = detect(stored, others)
        if conflicts:
            worst = max((c.severity for c in conflicts), key=_SEVERITY_RANK.__getitem__)
            conflicting = sorted({cid for c in conflicts for cid in c.conflicting_event_ids})
            logger.info("%s overlaps %s", stored.id, ", ".join(conflicting))
            self.bus.publish(
                ConflictDetected(
                    event_id=stored.id,
                    conflicting_event_ids=conflicting,
                    severity=worst,
                )
            )

        block = is_protected(stored.starts_at, self.focus_repo.list_all(), stored.time_zone)
        if block is not None:
            self.bus.publish(FocusTimeFlagged(event_id=stored.id, block_id=block.id))
