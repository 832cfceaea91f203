"""Service for expanding recurring event templates into concrete instances
for a visible window, plus the series-level edits built on top of it."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta, tzinfo

from dateutil import tz
from dateutil.rrule import (
    DAILY,
    MONTHLY,
    WEEKLY,
    YEARLY,
    FR,
    MO,
    SA,
    SU,
    TH,
    TU,
    WE,
    rrule,
)

from weekplan.config import settings
from weekplan.domain.errors import InvalidRuleError
from weekplan.domain.models import (
    EventInstance,
    EventTemplate,
    Expansion,
    Frequency,
    Mutation,
    MutationKind,
    RecurrenceRule,
    SeriesSplit,
    WindowExpansion,
)

logger = logging.getLogger(__name__)

_FREQ_MAP = {
    Frequency.DAILY.value: DAILY,
    Frequency.WEEKLY.value: WEEKLY,
    Frequency.MONTHLY.value: MONTHLY,
    Frequency.YEARLY.value: YEARLY,
}

# Index is the Sunday=0 weekday number used by stored rules.
_WEEKDAYS = [SU, MO, TU, WE, TH, FR, SA]

BY_DAY_CODES = {"SU": 0, "MO": 1, "TU": 2, "WE": 3, "TH": 4, "FR": 5, "SA": 6}

# Longest day each month can have (February counted in leap years).
_MAX_MONTH_DAY = [31, 29, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31]

_INSTANCE_ID = re.compile(r"^(?P<parent>.+)_(?P<date>\d{4}-\d{2}-\d{2})$")


# ---------------------------------------------------------------------------
# Identity and zones
# ---------------------------------------------------------------------------


def instance_id(parent_id: str, occurrence_date: date) -> str:
    return f"{parent_id}_{occurrence_date.isoformat()}"


def parse_instance_id(event_id: str) -> tuple[str, date] | None:
    """Split a synthetic ``{parent}_{YYYY-MM-DD}`` id, or ``None`` for real ids."""
    m = _INSTANCE_ID.match(event_id)
    if not m:
        return None
    try:
        return m.group("parent"), date.fromisoformat(m.group("date"))
    except ValueError:
        return None


def series_of(event_id: str) -> str | None:
    """Parent id of a synthetic instance id, or ``None`` for real ids."""
    parsed = parse_instance_id(event_id)
    return parsed[0] if parsed else None


def resolve_zone(name: str | None, fallback: tzinfo | None = None) -> tzinfo:
    """Return the tzinfo for an IANA name, falling back to *fallback* or the default zone."""
    if name:
        zone = tz.gettz(name)
        if zone is None:
            raise InvalidRuleError(f"Unknown time zone {name!r}")
        return zone
    if fallback is not None:
        return fallback
    return tz.gettz(settings.DEFAULT_TIME_ZONE) or tz.UTC


def _bound(value: datetime | date, zone: tzinfo, end: bool) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=zone)
    return datetime.combine(value, time.max if end else time.min, tzinfo=zone)


# ---------------------------------------------------------------------------
# Rule validation
# ---------------------------------------------------------------------------


def rule_weekdays(rule: RecurrenceRule) -> list[int]:
    """Sunday=0 weekday numbers from ``days_of_week`` and ``by_day`` combined."""
    days = set(rule.days_of_week)
    days.update(BY_DAY_CODES[code.upper()] for code in rule.by_day)
    return sorted(days)


def validate_rule(rule: RecurrenceRule) -> None:
    """Raise ``InvalidRuleError`` if *rule* cannot be expanded."""
    if rule.frequency not in _FREQ_MAP:
        raise InvalidRuleError(f"Unknown frequency {rule.frequency!r}")
    if rule.interval <= 0:
        raise InvalidRuleError(f"interval must be positive, got {rule.interval}")
    if rule.count is not None and rule.count <= 0:
        raise InvalidRuleError(f"count must be positive, got {rule.count}")
    if rule.count is not None and rule.end_date is not None:
        raise InvalidRuleError("A rule may be bounded by end_date or count, not both")
    bad_days = [d for d in rule.days_of_week if not 0 <= d <= 6]
    if bad_days:
        raise InvalidRuleError(f"days_of_week out of range: {bad_days}")
    bad_codes = [c for c in rule.by_day if c.upper() not in BY_DAY_CODES]
    if bad_codes:
        raise InvalidRuleError(f"Unknown by_day codes: {bad_codes}")
    if rule.day_of_month is not None and not 1 <= rule.day_of_month <= 31:
        raise InvalidRuleError(f"day_of_month out of range: {rule.day_of_month}")
    if rule.month_of_year is not None:
        if not 1 <= rule.month_of_year <= 12:
            raise InvalidRuleError(f"month_of_year out of range: {rule.month_of_year}")
        if (
            rule.day_of_month is not None
            and rule.day_of_month > _MAX_MONTH_DAY[rule.month_of_year - 1]
        ):
            raise InvalidRuleError(
                f"Month {rule.month_of_year} never has day {rule.day_of_month}"
            )


def _build_rrule(rule: RecurrenceRule, local_start: datetime) -> rrule:
    """Unbounded dateutil rule over naive local wall-clock datetimes."""
    freq = Frequency(rule.frequency)
    kwargs: dict = {
        "dtstart": local_start.replace(tzinfo=None),
        "interval": rule.interval,
        "wkst": SU,
    }
    if freq == Frequency.WEEKLY:
        days = rule_weekdays(rule) or [(local_start.weekday() + 1) % 7]
        kwargs["byweekday"] = [_WEEKDAYS[d] for d in days]
    elif freq == Frequency.MONTHLY:
        kwargs["bymonthday"] = rule.day_of_month or local_start.day
    elif freq == Frequency.YEARLY:
        kwargs["bymonth"] = rule.month_of_year or local_start.month
        kwargs["bymonthday"] = rule.day_of_month or local_start.day
    return rrule(_FREQ_MAP[rule.frequency], **kwargs)


def to_rrule_string(rule: RecurrenceRule) -> str:
    """Render *rule* as an RFC-5545 RRULE value (without DTSTART)."""
    validate_rule(rule)
    parts = [f"FREQ={rule.frequency.upper()}"]
    if rule.interval > 1:
        parts.append(f"INTERVAL={rule.interval}")
    days = rule_weekdays(rule)
    if days and rule.frequency == Frequency.WEEKLY:
        codes = {v: k for k, v in BY_DAY_CODES.items()}
        parts.append("BYDAY=" + ",".join(codes[d] for d in days))
    if rule.month_of_year and rule.frequency == Frequency.YEARLY:
        parts.append(f"BYMONTH={rule.month_of_year}")
    if rule.day_of_month and rule.frequency in (Frequency.MONTHLY, Frequency.YEARLY):
        parts.append(f"BYMONTHDAY={rule.day_of_month}")
    if rule.count is not None:
        parts.append(f"COUNT={rule.count}")
    if rule.end_date is not None:
        # RRULE UNTIL is inclusive; our end_date is exclusive.
        until = rule.end_date - timedelta(days=1)
        parts.append(f"UNTIL={until.strftime('%Y%m%d')}T235959Z")
    return ";".join(parts)


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------


def _standalone_instance(template: EventTemplate, zone: tzinfo) -> EventInstance:
    return EventInstance(
        **template.model_dump(),
        occurrence_date=template.starts_at.astimezone(zone).date(),
    )


def _occurrence(
    template: EventTemplate, starts_at: datetime, duration: timedelta
) -> EventInstance:
    data = template.model_dump(
        exclude={"id", "starts_at", "ends_at", "is_recurring", "recurrence_rule"}
    )
    data["recurrence_parent_id"] = template.id
    return EventInstance(
        **data,
        id=instance_id(template.id, starts_at.date()),
        starts_at=starts_at,
        ends_at=starts_at + duration,
        is_recurring=False,
        recurrence_rule=None,
        occurrence_date=starts_at.date(),
    )


def expand_series(
    template: EventTemplate,
    window_start: datetime | date,
    window_end: datetime | date,
    cap: int | None = None,
) -> Expansion:
    """Expand *template* into the instances that start inside the window.

    A pure function of its inputs. Exception dates are skipped and do not
    consume ``count``. At most *cap* instances are emitted; hitting the cap
    sets ``truncated`` on the result.

    Raises ``InvalidRuleError`` if the template's rule cannot be expanded.
    """
    cap = settings.EXPANSION_CAP if cap is None else cap
    rule = template.recurrence_rule
    zone = resolve_zone(template.time_zone, template.starts_at.tzinfo)

    if not template.is_recurring or rule is None:
        start = _bound(window_start, zone, end=False)
        end = _bound(window_end, zone, end=True)
        if start <= template.starts_at <= end:
            return Expansion(instances=[_standalone_instance(template, zone)])
        return Expansion()

    validate_rule(rule)
    local_start = template.starts_at.astimezone(zone)
    start = _bound(window_start, zone, end=False)
    end = _bound(window_end, zone, end=True)
    duration = template.ends_at - template.starts_at
    exceptions = set(template.recurrence_exceptions)

    instances: list[EventInstance] = []
    counted = 0
    truncated = False
    for naive in _build_rrule(rule, local_start):
        occurrence_date = naive.date()
        if rule.end_date is not None and occurrence_date >= rule.end_date:
            break
        if occurrence_date in exceptions:
            continue
        counted += 1
        if rule.count is not None and counted > rule.count:
            break
        starts_at = naive.replace(tzinfo=zone)
        if starts_at > end:
            break
        if starts_at < start:
            continue
        if len(instances) >= cap:
            truncated = True
            break
        instances.append(_occurrence(template, starts_at, duration))

    return Expansion(instances=instances, truncated=truncated)


def expand(
    template: EventTemplate,
    window_start: datetime | date,
    window_end: datetime | date,
) -> list[EventInstance]:
    """Instances of *template* inside the window (see ``expand_series``)."""
    result = expand_series(template, window_start, window_end)
    if result.truncated:
        logger.warning(
            "Expansion of %s truncated at %d instances",
            template.id,
            len(result.instances),
        )
    return result.instances


def expand_window(
    templates: list[EventTemplate],
    window_start: datetime | date,
    window_end: datetime | date,
) -> WindowExpansion:
    """Expand every stored template once for a window.

    Templates with an invalid rule are logged and reported in ``invalid``; the
    rest of the window still expands. The result is sorted by start time.
    """
    result = WindowExpansion()
    for template in templates:
        try:
            expansion = expand_series(template, window_start, window_end)
        except InvalidRuleError as exc:
            logger.warning("Skipping %s: %s", template.id, exc.message)
            result.invalid[template.id] = exc.message
            continue
        if expansion.truncated:
            logger.warning(
                "Expansion of %s truncated at %d instances",
                template.id,
                len(expansion.instances),
            )
            result.truncated.append(template.id)
        result.instances.extend(expansion.instances)

    result.instances.sort(key=lambda i: (i.starts_at, i.id))
    logger.debug(
        "Expanded %d templates into %d instances", len(templates), len(result.instances)
    )
    return result


# ---------------------------------------------------------------------------
# Series edits
# ---------------------------------------------------------------------------


def delete_occurrence(instance: EventInstance) -> Mutation:
    """Build the exception-add mutation that removes one occurrence of a series."""
    parent_id = instance.recurrence_parent_id
    original_date = instance.occurrence_date
    parsed = parse_instance_id(instance.id)
    if parsed is not None:
        parent_id, original_date = parsed
    if parent_id is None:
        raise ValueError(f"{instance.id} is not an occurrence of a recurring series")
    return Mutation(
        kind=MutationKind.ADD_EXCEPTION,
        payload={"parentId": parent_id, "originalDate": original_date.isoformat()},
    )


def split_series(
    template: EventTemplate, occurrence_date: date, **changes
) -> SeriesSplit:
    """Split a series at *occurrence_date* for a "this and future" edit.

    The original keeps every occurrence before the split. The new series
    starts at the first occurrence on or after *occurrence_date*, keeps the
    original cadence and has *changes* applied. A ``count`` bound is shared
    out between the two halves.

    Raises ``ValueError`` if no occurrence remains from *occurrence_date* on.
    """
    rule = template.recurrence_rule
    if not template.is_recurring or rule is None:
        raise ValueError(f"{template.id} is not a recurring series")
    validate_rule(rule)

    zone = resolve_zone(template.time_zone, template.starts_at.tzinfo)
    local_start = template.starts_at.astimezone(zone)
    if occurrence_date <= local_start.date():
        raise ValueError("Split date must be after the first occurrence")

    first = _build_rrule(rule, local_start).after(
        datetime.combine(occurrence_date, time.min), inc=True
    )
    if first is None or (rule.end_date is not None and first.date() >= rule.end_date):
        raise ValueError(f"Series has no occurrence on or after {occurrence_date}")
    split_date = first.date()

    # The new series starts elsewhere, so defaults taken from the start date are pinned.
    pins: dict = {}
    freq = Frequency(rule.frequency)
    if freq == Frequency.WEEKLY and not rule_weekdays(rule):
        pins["days_of_week"] = [(local_start.weekday() + 1) % 7]
    if freq in (Frequency.MONTHLY, Frequency.YEARLY) and rule.day_of_month is None:
        pins["day_of_month"] = local_start.day
    if freq == Frequency.YEARLY and rule.month_of_year is None:
        pins["month_of_year"] = local_start.month

    if rule.count is not None:
        before = expand_series(
            template, local_start, split_date - timedelta(days=1), cap=rule.count
        )
        kept = len(before.instances)
        if kept >= rule.count:
            raise ValueError("Series has no occurrences left to split off")
        pins["count"] = rule.count - kept
    new_rule = rule.model_copy(update=pins)
    original_rule = rule.model_copy(update={"end_date": split_date, "count": None})
    original = template.model_copy(update={"recurrence_rule": original_rule})

    new_start = first.replace(tzinfo=zone)
    duration = template.ends_at - template.starts_at
    exceptions = [d for d in template.recurrence_exceptions if d >= split_date]
    data = template.model_dump(exclude={"id", "recurrence_rule", "recurrence_exceptions"})
    data.update(
        starts_at=new_start,
        ends_at=new_start + duration,
        recurrence_exceptions=exceptions,
    )
    data.update({k: v for k, v in changes.items() if v is not None})
    new_series = EventTemplate(**data, recurrence_rule=new_rule)

    logger.info(
        "Split series %s at %s into %s", template.id, occurrence_date, new_series.id
    )
    return SeriesSplit(original=original, new_series=new_series)
