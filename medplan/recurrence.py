"""
recurrence.py — Recurrence Resolver

Expands weekly template slots and RCP rules into dated occurrences for one
week, then layers exceptions, attendance, holidays, overrides and (optionally)
automatic fill on top.

Pipeline for resolve_week(monday, rules, overrides, auto_fill, ledger):
  1. Template slots:  WEEKLY every week; BIWEEKLY when the week's parity
                      (counted from PARITY_EPOCH) matches the slot's parity.
  2. RCP rules:       WEEKLY every week; BIWEEKLY on ISO-week parity (ODD when
                      unset); MONTHLY when the date is the Nth such weekday of
                      its month; MANUAL when a listed date falls in the week.
  3. RCP exceptions:  cancelled → dropped; moved → new date/period/time, same
                      id; participant override → replaces the doctor list.
  4. Attendance:      PRESENT doctors become the participants (confirmed);
                      otherwise ABSENT ones are removed and the RCP stays
                      unconfirmed.
  5. Holidays:        non-RCP occurrences on a holiday are closed and
                      unassigned; RCPs are kept (see rcp_needing_exception).
  6. Overrides:       see overrides.apply_overrides.
  7. Automatic fill:  see autofill.auto_fill_week (only when requested).

Occurrence ids are "{rule_id}-{canonical date}" (identifiers.py).
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set, Tuple

from medplan.calendars import (
    iso_week_parity,
    monday_of,
    nth_weekday_of_month,
    require_monday,
    template_week_parity,
    week_dates,
)
from medplan.identifiers import encode_occurrence_id
from medplan.ledger import EquityLedger
from medplan.models import (
    ActivityDefinition,
    AttendanceStatus,
    Frequency,
    Occurrence,
    Period,
    RcpDefinition,
    RcpException,
    RcpManualInstance,
    ScheduleRules,
    SlotType,
    TemplateSlot,
    WeekParity,
    Weekday,
)
from medplan.overrides import OverrideMap, apply_overrides
from medplan.schedule_config import DEFAULT_MONTH_GRID_WEEKS, MORNING_CUTOFF_HOUR, PARITY_EPOCH

logger = logging.getLogger(__name__)

# (canonical date, period order, source rank, input index) — generation order
_GenKey = Tuple[date, int, int, int]


# ---------------------------------------------------------------------------
# Rule selection
# ---------------------------------------------------------------------------

def template_selects_week(slot: TemplateSlot, monday: date, epoch: date = PARITY_EPOCH) -> bool:
    rec = slot.recurrence
    if rec.frequency is Frequency.WEEKLY:
        return True
    wanted = (rec.parity or WeekParity.EVEN).value
    return template_week_parity(monday, epoch) == wanted


def rcp_dates_in_week(
    rcp: RcpDefinition,
    monday: date,
) -> List[Tuple[date, Optional[RcpManualInstance]]]:
    """Canonical dates this RCP rule selects in the week starting `monday`."""
    rec = rcp.recurrence
    if rec.frequency is Frequency.MANUAL:
        hits = [inst for inst in rcp.manual_instances if monday_of(inst.date) == monday]
        return [(inst.date, inst) for inst in sorted(hits, key=lambda i: i.date)]

    d = monday + timedelta(days=rcp.weekday.value)
    if rec.frequency is Frequency.BIWEEKLY:
        wanted = (rec.parity or WeekParity.ODD).value
        if iso_week_parity(d) != wanted:
            return []
    elif rec.frequency is Frequency.MONTHLY:
        if nth_weekday_of_month(d) != rec.monthly_week_number:
            return []
    return [(d, None)]


def period_for_time(time_str: Optional[str], fallback: Period) -> Period:
    """Morning before MORNING_CUTOFF_HOUR, afternoon after; fallback if unparsable."""
    if not time_str:
        return fallback
    try:
        hour = datetime.strptime(time_str.strip(), "%H:%M").hour
    except ValueError:
        logger.warning(f"Unparsable RCP time {time_str!r} — using {fallback.value}")
        return fallback
    return Period.MORNING if hour < MORNING_CUTOFF_HOUR else Period.AFTERNOON


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------

def _known(ids: Sequence[str], known_doctors: Set[str], context: str) -> List[str]:
    out: List[str] = []
    for doctor_id in ids:
        if not doctor_id:
            continue
        if doctor_id not in known_doctors:
            logger.warning(f"{context}: unknown doctor {doctor_id!r} dropped")
            continue
        if doctor_id not in out:
            out.append(doctor_id)
    return out


def _backup(doctor_id: Optional[str], known_doctors: Set[str], context: str) -> Optional[str]:
    known = _known([doctor_id or ""], known_doctors, f"{context} backup")
    return known[0] if known else None


def _apply_attendance(
    planned: List[str],
    attendance: Dict[str, AttendanceStatus],
) -> Tuple[List[str], bool]:
    """Return (participants, unconfirmed)."""
    present = [d for d, s in attendance.items() if s is AttendanceStatus.PRESENT]
    if present:
        # planned order first, then late additions by id
        ordered = [d for d in planned if d in present]
        ordered += sorted(d for d in present if d not in ordered)
        return ordered, False
    return [d for d in planned if attendance.get(d) is not AttendanceStatus.ABSENT], True


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

def _template_occurrence(
    slot: TemplateSlot,
    d: date,
    rules: ScheduleRules,
    known_doctors: Set[str],
    activities: Dict[str, ActivityDefinition],
) -> Occurrence:
    occ_id = encode_occurrence_id(slot.id, d)

    activity_id = slot.activity_id
    blocking = slot.blocking
    if activity_id:
        activity = activities.get(activity_id)
        if activity is None:
            logger.warning(f"{occ_id}: unknown activity {activity_id!r} — treated as unset")
            activity_id = None
        elif activity.allow_double_booking:
            blocking = False

    participants = _known(
        [slot.default_doctor_id or ""] + list(slot.secondary_doctor_ids), known_doctors, occ_id,
    )
    backup = _backup(slot.backup_doctor_id, known_doctors, occ_id)
    holiday = rules.holidays.name_for(d)
    closed = False
    if holiday is not None:
        logger.debug(f"{occ_id}: holiday ({holiday}) — closed")
        participants = []
        backup = None
        closed = True

    return Occurrence(
        id=occ_id,
        rule_id=slot.id,
        canonical_date=d,
        date=d,
        weekday=Weekday.of(d),
        period=slot.period,
        location=slot.location,
        slot_type=slot.slot_type,
        assigned_doctor_id=participants[0] if participants else None,
        secondary_doctor_ids=tuple(participants[1:]),
        backup_doctor_id=backup,
        activity_id=activity_id,
        closed=closed,
        time=slot.time,
        required_specialty=slot.required_specialty,
        blocking=blocking,
        holiday=holiday,
    )


def _rcp_occurrence(
    rcp: RcpDefinition,
    canonical: date,
    instance: Optional[RcpManualInstance],
    rules: ScheduleRules,
    known_doctors: Set[str],
    exceptions: Dict[Tuple[str, date], RcpException],
) -> Optional[Occurrence]:
    occ_id = encode_occurrence_id(rcp.id, canonical)

    time_str = rcp.time
    period = rcp.period
    planned: Sequence[str] = rcp.doctor_ids
    backup_id = rcp.backup_doctor_id
    if instance is not None:
        time_str = instance.time or rcp.time
        period = period_for_time(instance.time, rcp.period)
        if instance.doctor_ids:
            planned = instance.doctor_ids
        backup_id = instance.backup_doctor_id or backup_id

    effective = canonical
    exception = exceptions.get((rcp.id, canonical))
    if exception is not None:
        if exception.cancelled:
            logger.debug(f"{occ_id}: cancelled by exception")
            return None
        effective = exception.new_date or canonical
        period = exception.new_period or period
        time_str = exception.new_time or time_str
        if exception.doctor_ids is not None:
            planned = exception.doctor_ids
        if effective != canonical:
            logger.debug(f"{occ_id}: moved to {effective.isoformat()} {period.value}")

    participants = _known(list(planned), known_doctors, occ_id)
    participants, unconfirmed = _apply_attendance(
        participants, dict(rules.attendance.get(occ_id, {})),
    )
    participants = _known(participants, known_doctors, occ_id)

    return Occurrence(
        id=occ_id,
        rule_id=rcp.id,
        canonical_date=canonical,
        date=effective,
        weekday=Weekday.of(effective),
        period=period,
        location=rcp.display_location,
        slot_type=SlotType.RCP,
        assigned_doctor_id=participants[0] if participants else None,
        secondary_doctor_ids=tuple(participants[1:]),
        backup_doctor_id=_backup(backup_id, known_doctors, occ_id),
        unconfirmed=unconfirmed,
        time=time_str,
        required_specialty=rcp.required_specialty,
        blocking=True,
        holiday=rules.holidays.name_for(effective),
    )


def generate_week(monday: date, rules: ScheduleRules) -> List[Occurrence]:
    """
    Raw occurrences for one week (steps 1-5 of the pipeline), no overrides,
    no automatic fill. Sorted by effective (date, period), generation order
    preserved within a half-day.
    """
    monday = require_monday(monday)
    known_doctors = {d.id for d in rules.roster}
    activities = rules.activity_map()
    exceptions = rules.exception_map()
    generated: List[Tuple[_GenKey, Occurrence]] = []

    days = week_dates(monday)
    for idx, slot in enumerate(rules.templates):
        if not template_selects_week(slot, monday):
            continue
        d = days[slot.weekday.value]
        occ = _template_occurrence(slot, d, rules, known_doctors, activities)
        generated.append(((d, slot.period.order, 0, idx), occ))

    for idx, rcp in enumerate(rules.rcp_definitions):
        for canonical, instance in rcp_dates_in_week(rcp, monday):
            occ = _rcp_occurrence(rcp, canonical, instance, rules, known_doctors, exceptions)
            if occ is None:
                continue
            base_period = period_for_time(instance.time, rcp.period) if instance else rcp.period
            generated.append(((canonical, base_period.order, 1, idx), occ))

    generated.sort(key=lambda item: item[0])
    occurrences = [occ for _key, occ in generated]
    occurrences.sort(key=lambda o: o.sort_key)   # stable: keeps generation order
    return occurrences


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------

def resolve_week(
    week_start: date,
    rules: ScheduleRules,
    overrides: Optional[OverrideMap] = None,
    auto_fill: bool = False,
    ledger: Optional[EquityLedger] = None,
) -> List[Occurrence]:
    """
    Materialize every occurrence of the week starting on `week_start` (a Monday).

    Args:
        week_start: Monday of the week; anything else raises StructuralError.
        rules:      read-only snapshots (roster, templates, RCPs, ...).
        overrides:  occurrence id → Override; pinned ids are never changed.
        auto_fill:  run the equity balancer on open activity occurrences.
        ledger:     equity snapshot used by the balancer (empty if None).

    Returns:
        Fresh list of Occurrence, deterministic for identical inputs.

    An RCP moved by an exception stays in the week of its original date,
    even when its new date falls in another week. Conflict checks run one
    week at a time do not see it in the target week.
    """
    from medplan.autofill import auto_fill_week

    monday = require_monday(week_start)
    occurrences = generate_week(monday, rules)
    occurrences = apply_overrides(occurrences, overrides, {d.id for d in rules.roster})
    if auto_fill:
        occurrences = auto_fill_week(occurrences, rules, ledger or EquityLedger())

    unassigned = sum(1 for o in occurrences if not o.closed and o.assigned_doctor_id is None)
    logger.info(
        f"Week {monday.isoformat()}: {len(occurrences)} occurrences, "
        f"{unassigned} open{' (auto-fill)' if auto_fill else ''}"
    )
    return occurrences


def resolve_month(
    month_grid_start: date,
    rules: ScheduleRules,
    ledger: Optional[EquityLedger] = None,
    overrides: Optional[OverrideMap] = None,
    auto_fill: bool = False,
    weeks: int = DEFAULT_MONTH_GRID_WEEKS,
) -> List[Occurrence]:
    """Consecutive resolve_week calls for a month grid (no auto-fill by default)."""
    monday = require_monday(month_grid_start)
    out: List[Occurrence] = []
    for i in range(weeks):
        out.extend(resolve_week(monday + timedelta(days=7 * i), rules, overrides, auto_fill, ledger))
    return out


def rcp_needing_exception(occurrences: Sequence[Occurrence]) -> List[Occurrence]:
    """RCP occurrences displayed on a public holiday (candidates for a move/cancel)."""
    return [o for o in occurrences if o.is_rcp and o.holiday is not None and not o.closed]


def find_occurrence(occurrences: Sequence[Occurrence], occurrence_id: str) -> Optional[Occurrence]:
    for occ in occurrences:
        if occ.id == occurrence_id:
            return occ
    return None
