"""Exceptions raised by the scheduling engine.

Everything here is recoverable: callers either skip the offending template
(``InvalidRuleError``) or turn the error into a structured result
(``LockedEventError``) instead of letting it reach the view.
"""

from __future__ import annotations

from typing import Any

REASON_INVALID_RULE = "invalid_rule"
REASON_LOCKED = "locked"
REASON_ORPHAN_EXCEPTION = "orphan_exception"
REASON_NOT_FOUND = "not_found"


class SchedulingError(Exception):
    """Base exception for scheduling-engine errors."""

    reason = "scheduling_error"

    def __init__(self, message: str, event_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.event_id = event_id

    def to_dict(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"reason": self.reason, "message": self.message}
        if self.event_id:
            detail["event_id"] = self.event_id
        return detail


class InvalidRuleError(SchedulingError):
    """Malformed recurrence parameters (bad interval, unknown frequency, ...)."""

    reason = REASON_INVALID_RULE


class LockedEventError(SchedulingError):
    """A locked event was dragged; no mutation may be produced."""

    reason = REASON_LOCKED

    def __init__(self, event_id: str) -> None:
        super().__init__("Event is locked. Unlock it first to move.", event_id)
