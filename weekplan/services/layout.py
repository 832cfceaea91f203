"""Side-by-side lane assignment for overlapping events on one day."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime

from weekplan.domain.models import EventInstance, LanePosition


def _sweep_key(instance: EventInstance) -> tuple:
    # Earlier start first, then longer events, then id so ties never depend on input order.
    return (instance.starts_at, -(instance.ends_at - instance.starts_at), instance.id)


def layout(day_instances: list[EventInstance]) -> dict[str, LanePosition]:
    """Assign every instance a column and the column count of its overlap cluster.

    Greedy interval colouring: sweeping by start time, each event takes the
    lowest column not held by an event still open at its start. A cluster is a
    run of transitively overlapping events; all of its members share
    ``total_columns`` so they render at equal width.
    """
    positions: dict[str, LanePosition] = {}
    cluster: list[tuple[str, int]] = []
    cluster_end: datetime | None = None
    open_events: list[tuple[datetime, int]] = []

    def close_cluster() -> None:
        total = max(col for _, col in cluster) + 1
        for event_id, col in cluster:
            positions[event_id] = LanePosition(column=col, total_columns=total)
        cluster.clear()

    for instance in sorted(day_instances, key=_sweep_key):
        if cluster_end is not None and instance.starts_at >= cluster_end:
            close_cluster()
            cluster_end = None
            open_events = []

        open_events = [(end, col) for end, col in open_events if end > instance.starts_at]
        used = {col for _, col in open_events}
        column = 0
        while column in used:
            column += 1

        open_events.append((instance.ends_at, column))
        cluster.append((instance.id, column))
        if cluster_end is None or instance.ends_at > cluster_end:
            cluster_end = instance.ends_at

    if cluster:
        close_cluster()
    return positions


def group_by_day(instances: list[EventInstance]) -> dict[date, list[EventInstance]]:
    """Bucket instances by the local date they start on, days in order."""
    days: dict[date, list[EventInstance]] = defaultdict(list)
    for instance in instances:
        days[instance.starts_at.date()].append(instance)
    return dict(sorted(days.items()))


def lane_style(position: LanePosition | None) -> dict[str, str]:
    """CSS left/width percentages for a lane."""
    if position is None or position.total_columns <= 1:
        return {"left": "0", "width": "100%"}
    width = 100 / position.total_columns
    return {"left": f"{position.column * width:g}%", "width": f"{width:g}%"}
