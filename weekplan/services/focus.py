"""Advisory check against protected weekly focus-time blocks."""

from __future__ import annotations

from datetime import datetime

from weekplan.domain.models import EventInstance, FocusBlock
from weekplan.services.recurrence import resolve_zone


def is_protected(
    timestamp: datetime,
    focus_blocks: list[FocusBlock],
    time_zone: str | None = None,
) -> FocusBlock | None:
    """Return the active block covering *timestamp*, if any.

    The weekday (Sunday=0) and hour are read in *time_zone*, or in the
    timestamp's own zone when none is given. Blocks are half-open
    ``[start_hour, end_hour)``.
    """
    local = timestamp.astimezone(resolve_zone(time_zone)) if time_zone else timestamp
    day = (local.weekday() + 1) % 7
    for block in focus_blocks:
        if (
            block.is_active
            and block.day_of_week == day
            and block.start_hour <= local.hour < block.end_hour
        ):
            return block
    return None


def focus_conflicts(
    instances: list[EventInstance], focus_blocks: list[FocusBlock]
) -> list[tuple[EventInstance, FocusBlock]]:
    pairs = []
    for instance in instances:
        block = is_protected(instance.starts_at, focus_blocks, instance.time_zone)
        if block is not None:
            pairs.append((instance, block))
    return pairs
