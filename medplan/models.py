"""
models.py — Snapshot data model for department planning

Every record is a frozen dataclass. Collections are tuples or frozensets so a
snapshot handed to the engine cannot be changed under it; the engine returns
new objects (dataclasses.replace) rather than mutating its inputs.

Supply side:  Doctor, Unavailability
Demand side:  TemplateSlot, RcpDefinition (+ RcpManualInstance, RcpException),
              ActivityDefinition
Output:       Occurrence, Conflict, ReplacementSuggestion
Bundle:       ScheduleRules (all read-only snapshots for one call)
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from medplan.calendars import HolidayCalendar
from medplan.schedule_config import DEFAULT_EQUITY_GROUP_PREFIX


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Weekday(Enum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def of(cls, d: date) -> "Weekday":
        return cls(d.weekday())

    @classmethod
    def parse(cls, raw: str) -> "Weekday":
        """Accept 'MONDAY', 'monday', 'MON' or an ISO index '0'..'6'."""
        key = str(raw).strip().upper()
        if key.isdigit():
            return cls(int(key))
        for member in cls:
            if member.name == key or member.name[:3] == key:
                return member
        raise ValueError(f"Unknown weekday: {raw!r}")


class Period(Enum):
    MORNING = "MORNING"
    AFTERNOON = "AFTERNOON"

    @property
    def order(self) -> int:
        return 0 if self is Period.MORNING else 1

    @classmethod
    def parse(cls, raw: str) -> "Period":
        key = str(raw).strip().upper()
        if key in ("AM", "MORNING", "MATIN"):
            return cls.MORNING
        if key in ("PM", "AFTERNOON", "APRES-MIDI", "APRÈS-MIDI"):
            return cls.AFTERNOON
        raise ValueError(f"Unknown period: {raw!r}")


class SlotType(Enum):
    CONSULTATION = "CONSULTATION"
    RCP = "RCP"
    MACHINE = "MACHINE"
    ACTIVITY = "ACTIVITY"
    OTHER = "OTHER"


class Frequency(Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    MANUAL = "MANUAL"


class WeekParity(Enum):
    EVEN = "EVEN"
    ODD = "ODD"


class Granularity(Enum):
    HALF_DAY = "HALF_DAY"
    WEEKLY = "WEEKLY"


class AttendanceStatus(Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"


class ConflictKind(Enum):
    DOUBLE_BOOKING = "DOUBLE_BOOKING"
    UNAVAILABLE = "UNAVAILABLE"
    COMPETENCE_MISMATCH = "COMPETENCE_MISMATCH"


class Severity(Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


# ---------------------------------------------------------------------------
# Supply: doctors and absences
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Doctor:
    id: str
    name: str
    specialties: FrozenSet[str] = frozenset()
    employment_factor: float = 1.0
    excluded_weekdays: FrozenSet[Weekday] = frozenset()
    excluded_activities: FrozenSet[str] = frozenset()
    excluded_slot_types: FrozenSet[SlotType] = frozenset()
    excluded_half_days: FrozenSet[Tuple[Weekday, Period]] = frozenset()

    def __post_init__(self):
        if not (0 < self.employment_factor <= 1):
            raise ValueError(
                f"Doctor {self.id}: employment_factor must be in (0, 1], got {self.employment_factor}"
            )

    def works_on(self, day: Weekday, period: Period) -> bool:
        """False when a recurring weekly exclusion covers this half-day."""
        if day in self.excluded_weekdays:
            return False
        return (day, period) not in self.excluded_half_days


@dataclass(frozen=True)
class Unavailability:
    id: str
    doctor_id: str
    start_date: date
    end_date: date
    period: Optional[Period] = None     # None: whole day
    reason: str = ""

    def covers(self, d: date, period: Period) -> bool:
        if not (self.start_date <= d <= self.end_date):
            return False
        return self.period is None or self.period is period


# ---------------------------------------------------------------------------
# Demand: recurring templates, RCP rules, activities
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Recurrence:
    """
    Recurrence rule shared by template slots and RCP definitions.

    Template slots accept WEEKLY and BIWEEKLY only.
    monthly_week_number: ordinal (1..5) of the weekday within its month.
    MANUAL rules take their dates from RcpDefinition.manual_instances.
    """
    frequency: Frequency = Frequency.WEEKLY
    parity: Optional[WeekParity] = None
    monthly_week_number: int = 1

    def __post_init__(self):
        if self.frequency is Frequency.MONTHLY and not (1 <= self.monthly_week_number <= 5):
            raise ValueError(f"monthly_week_number must be 1..5, got {self.monthly_week_number}")


WEEKLY = Recurrence()


@dataclass(frozen=True)
class TemplateSlot:
    id: str
    weekday: Weekday
    period: Period
    location: str
    slot_type: SlotType = SlotType.CONSULTATION
    default_doctor_id: Optional[str] = None
    secondary_doctor_ids: Tuple[str, ...] = ()
    backup_doctor_id: Optional[str] = None
    recurrence: Recurrence = WEEKLY
    time: Optional[str] = None
    activity_id: Optional[str] = None
    required_specialty: Optional[str] = None
    blocking: bool = True

    def __post_init__(self):
        if self.recurrence.frequency not in (Frequency.WEEKLY, Frequency.BIWEEKLY):
            raise ValueError(
                f"Template slot {self.id}: only WEEKLY/BIWEEKLY recurrences are allowed"
            )
        if self.slot_type is SlotType.ACTIVITY and not self.activity_id:
            raise ValueError(f"Template slot {self.id}: ACTIVITY slots need an activity_id")


@dataclass(frozen=True)
class RcpManualInstance:
    date: date
    time: Optional[str] = None
    doctor_ids: Tuple[str, ...] = ()
    backup_doctor_id: Optional[str] = None


@dataclass(frozen=True)
class RcpDefinition:
    id: str
    name: str
    weekday: Weekday
    period: Period
    recurrence: Recurrence = WEEKLY
    location: Optional[str] = None
    time: Optional[str] = None
    doctor_ids: Tuple[str, ...] = ()
    manual_instances: Tuple[RcpManualInstance, ...] = ()
    required_specialty: Optional[str] = None
    backup_doctor_id: Optional[str] = None

    @property
    def display_location(self) -> str:
        return self.location or self.name


@dataclass(frozen=True)
class RcpException:
    rcp_id: str
    original_date: date
    cancelled: bool = False
    new_date: Optional[date] = None
    new_period: Optional[Period] = None
    new_time: Optional[str] = None
    doctor_ids: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class ActivityDefinition:
    id: str
    name: str
    granularity: Granularity = Granularity.HALF_DAY
    allow_double_booking: bool = False
    equity_group: Optional[str] = None

    @property
    def group(self) -> str:
        return self.equity_group or f"{DEFAULT_EQUITY_GROUP_PREFIX}{self.id}"


# ---------------------------------------------------------------------------
# Output: occurrences, conflicts, suggestions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Occurrence:
    id: str
    rule_id: str
    canonical_date: date
    date: date
    weekday: Weekday
    period: Period
    location: str
    slot_type: SlotType
    assigned_doctor_id: Optional[str] = None
    secondary_doctor_ids: Tuple[str, ...] = ()
    backup_doctor_id: Optional[str] = None     # named stand-in, not a participant
    activity_id: Optional[str] = None
    locked: bool = False
    closed: bool = False
    unconfirmed: bool = False
    time: Optional[str] = None
    required_specialty: Optional[str] = None
    blocking: bool = True
    holiday: Optional[str] = None

    @property
    def is_rcp(self) -> bool:
        return self.slot_type is SlotType.RCP

    @property
    def participants(self) -> Tuple[str, ...]:
        """Primary doctor first, then secondaries; empty when unassigned."""
        head = (self.assigned_doctor_id,) if self.assigned_doctor_id else ()
        return head + tuple(d for d in self.secondary_doctor_ids if d != self.assigned_doctor_id)

    @property
    def sort_key(self) -> Tuple[date, int]:
        return self.date, self.period.order


@dataclass(frozen=True)
class Conflict:
    id: str
    occurrence_id: str
    doctor_id: str
    kind: ConflictKind
    description: str
    severity: Severity = Severity.HIGH
    other_occurrence_id: Optional[str] = None

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.kind.value} | {self.occurrence_id} | {self.doctor_id} → {self.description}"


@dataclass(frozen=True)
class ReplacementSuggestion:
    doctor_id: str
    score: float
    rationale: str
    replaced_doctor_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Snapshot bundle
# ---------------------------------------------------------------------------

Attendance = Mapping[str, Mapping[str, AttendanceStatus]]   # occurrence id → doctor id → status


@dataclass(frozen=True)
class ScheduleRules:
    roster: Tuple[Doctor, ...] = ()
    unavailabilities: Tuple[Unavailability, ...] = ()
    templates: Tuple[TemplateSlot, ...] = ()
    rcp_definitions: Tuple[RcpDefinition, ...] = ()
    rcp_exceptions: Tuple[RcpException, ...] = ()
    activities: Tuple[ActivityDefinition, ...] = ()
    holidays: HolidayCalendar = field(default_factory=HolidayCalendar)
    attendance: Attendance = field(default_factory=dict)

    def doctor_map(self) -> Dict[str, Doctor]:
        return {d.id: d for d in self.roster}

    def activity_map(self) -> Dict[str, ActivityDefinition]:
        return {a.id: a for a in self.activities}

    def exception_map(self) -> Dict[Tuple[str, date], RcpException]:
        return {(e.rcp_id, e.original_date): e for e in self.rcp_exceptions}
