"""
config.py — Snapshot loaders for department planning

Reads a department's planning snapshot from a config directory:

  roster.csv            doctors (mandatory)
  template.csv          weekly template slots (mandatory)
  activities.csv        activity definitions (mandatory)
  unavailabilities.csv  dated absences (optional)
  holidays.csv          date,name (optional; French calendar otherwise)
  rcp_definitions.json  RCP rules (optional)
  rcp_exceptions.json   moved / cancelled RCP instances (optional)
  attendance.json       occurrence id → doctor id → PRESENT/ABSENT (optional)
  overrides.json        occurrence id → legacy override string (optional)

List-valued CSV cells use the same forgiving separators as before
(comma, semicolon or pipe). Bad enum values raise ValueError naming the file
and row.
"""

import json
import logging
import re
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

import pandas as pd

from medplan.calendars import HolidayCalendar
from medplan.models import (
    ActivityDefinition,
    AttendanceStatus,
    Doctor,
    Frequency,
    Granularity,
    Period,
    RcpDefinition,
    RcpException,
    RcpManualInstance,
    Recurrence,
    ScheduleRules,
    SlotType,
    TemplateSlot,
    Unavailability,
    WeekParity,
    Weekday,
)
from medplan.overrides import Override, Unset, format_legacy_override, parse_legacy_override
from medplan.schedule_config import DEFAULT_HOLIDAY_YEARS

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = PROJECT_ROOT / "config"

ROSTER_FILE = "roster.csv"
TEMPLATE_FILE = "template.csv"
ACTIVITIES_FILE = "activities.csv"
UNAVAILABILITIES_FILE = "unavailabilities.csv"
HOLIDAYS_FILE = "holidays.csv"
RCP_DEFINITIONS_FILE = "rcp_definitions.json"
RCP_EXCEPTIONS_FILE = "rcp_exceptions.json"
ATTENDANCE_FILE = "attendance.json"
OVERRIDES_FILE = "overrides.json"

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_yes_no(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("yes", "true", "1", "y", "oui")


def _parse_list(raw: Any) -> List[str]:
    """
    Split a list-valued cell.
    Handles:
      - comma-separated:  "onco,radio"
      - semicolon-sep:    "onco;radio"
      - pipe-sep:         "onco|radio"
      - quoted tokens:    '"onco" "radio"'
    """
    if raw is None or isinstance(raw, float):
        return []
    s = str(raw).strip().strip('"').strip("'")
    if not s:
        return []
    s = re.sub(r'"\s+"', ",", s)
    s = re.sub(r'"\s*', "", s)
    s = s.replace(";", ",").replace("|", ",")
    return [p.strip() for p in s.split(",") if p.strip()]


def _opt(raw: Any) -> Optional[str]:
    s = str(raw).strip() if raw is not None else ""
    return s or None


def _parse_date(raw: Any) -> date:
    return date.fromisoformat(str(raw).strip())


def _parse_half_days(raw: Any) -> List[Tuple[Weekday, Period]]:
    """"TUESDAY:AFTERNOON;FRI:AM" → [(TUESDAY, AFTERNOON), (FRIDAY, MORNING)]"""
    out: List[Tuple[Weekday, Period]] = []
    for token in _parse_list(raw):
        day, _, period = token.partition(":")
        if not period:
            raise ValueError(f"Half-day exclusion {token!r} must look like DAY:PERIOD")
        out.append((Weekday.parse(day), Period.parse(period)))
    return out


def _read_csv(path: Path) -> pd.DataFrame:
    return pd.read_csv(path, dtype=str, keep_default_na=False)


def _rows(path: Path, build: Callable[[Dict[str, Any]], T]) -> List[T]:
    """Apply `build` to every CSV row; errors name the file and row."""
    df = _read_csv(path)
    out: List[T] = []
    for i, row in enumerate(df.to_dict(orient="records")):
        try:
            out.append(build(row))
        except (KeyError, ValueError) as exc:
            raise ValueError(f"{path.name} row {i + 2}: {exc}") from exc
    return out


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        logger.warning(f"{path.name} not found in {path.parent}. Using empty data.")
        return default
    with open(path) as f:
        return json.load(f)


def _require(path: Path) -> Path:
    if not path.exists():
        raise FileNotFoundError(f"Required snapshot file not found: {path}")
    return path


# ---------------------------------------------------------------------------
# CSV loaders
# ---------------------------------------------------------------------------

def load_roster(roster_path: Optional[Path] = None) -> List[Doctor]:
    """
    Load doctors from roster.csv.

    Expected columns:
      id, name, specialties, employment_factor (optional, default 1.0),
      excluded_weekdays, excluded_activities, excluded_slot_types,
      excluded_half_days (all optional)

    Roster order is file order; duplicate ids raise ValueError.
    """
    path = _require(roster_path or DEFAULT_CONFIG_DIR / ROSTER_FILE)

    def build(row: Dict[str, Any]) -> Doctor:
        return Doctor(
            id=str(row["id"]).strip(),
            name=str(row["name"]).strip(),
            specialties=frozenset(_parse_list(row.get("specialties"))),
            employment_factor=float(row.get("employment_factor") or 1.0),
            excluded_weekdays=frozenset(Weekday.parse(d) for d in _parse_list(row.get("excluded_weekdays"))),
            excluded_activities=frozenset(_parse_list(row.get("excluded_activities"))),
            excluded_slot_types=frozenset(SlotType(t.upper()) for t in _parse_list(row.get("excluded_slot_types"))),
            excluded_half_days=frozenset(_parse_half_days(row.get("excluded_half_days"))),
        )

    doctors = _rows(path, build)
    ids = [d.id for d in doctors]
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        raise ValueError(f"Duplicate doctor ids in {path.name}: {dupes}")
    logger.info(f"Loaded {len(doctors)} doctors from {path}")
    return doctors


def load_unavailabilities(path: Optional[Path] = None) -> List[Unavailability]:
    """
    Expected columns: id, doctor_id, start_date, end_date, period (blank or
    ALL_DAY for the whole day), reason.
    """
    path = path or DEFAULT_CONFIG_DIR / UNAVAILABILITIES_FILE
    if not path.exists():
        logger.warning(f"Unavailabilities not found: {path}. Returning empty list.")
        return []

    def build(row: Dict[str, Any]) -> Unavailability:
        raw_period = _opt(row.get("period"))
        start = _parse_date(row["start_date"])
        end = _parse_date(row.get("end_date") or row["start_date"])
        if end < start:
            raise ValueError(f"end_date {end} before start_date {start}")
        return Unavailability(
            id=str(row["id"]).strip(),
            doctor_id=str(row["doctor_id"]).strip(),
            start_date=start,
            end_date=end,
            period=None if raw_period in (None, "ALL_DAY") else Period.parse(raw_period),
            reason=str(row.get("reason", "")).strip(),
        )

    out = _rows(path, build)
    logger.info(f"Loaded {len(out)} unavailabilities from {path}")
    return out


def load_template(path: Optional[Path] = None) -> List[TemplateSlot]:
    """
    Expected columns:
      id, weekday, period, location, slot_type, default_doctor_id,
      secondary_doctor_ids, backup_doctor_id (optional), frequency (WEEKLY/BIWEEKLY),
      parity (EVEN/ODD), time, activity_id, required_specialty, blocking (default yes)
    """
    path = _require(path or DEFAULT_CONFIG_DIR / TEMPLATE_FILE)

    def build(row: Dict[str, Any]) -> TemplateSlot:
        parity = _opt(row.get("parity"))
        blocking = _opt(row.get("blocking"))
        return TemplateSlot(
            id=str(row["id"]).strip(),
            weekday=Weekday.parse(row["weekday"]),
            period=Period.parse(row["period"]),
            location=str(row["location"]).strip(),
            slot_type=SlotType((_opt(row.get("slot_type")) or "CONSULTATION").upper()),
            default_doctor_id=_opt(row.get("default_doctor_id")),
            secondary_doctor_ids=tuple(_parse_list(row.get("secondary_doctor_ids"))),
            backup_doctor_id=_opt(row.get("backup_doctor_id")),
            recurrence=Recurrence(
                frequency=Frequency((_opt(row.get("frequency")) or "WEEKLY").upper()),
                parity=WeekParity(parity.upper()) if parity else None,
            ),
            time=_opt(row.get("time")),
            activity_id=_opt(row.get("activity_id")),
            required_specialty=_opt(row.get("required_specialty")),
            blocking=True if blocking is None else _parse_yes_no(blocking),
        )

    slots = _rows(path, build)
    logger.info(f"Loaded {len(slots)} template slots from {path}")
    return slots


def load_activities(path: Optional[Path] = None) -> List[ActivityDefinition]:
    """Expected columns: id, name, granularity, allow_double_booking, equity_group."""
    path = _require(path or DEFAULT_CONFIG_DIR / ACTIVITIES_FILE)

    def build(row: Dict[str, Any]) -> ActivityDefinition:
        return ActivityDefinition(
            id=str(row["id"]).strip(),
            name=str(row.get("name") or row["id"]).strip(),
            granularity=Granularity((_opt(row.get("granularity")) or "HALF_DAY").upper()),
            allow_double_booking=_parse_yes_no(row.get("allow_double_booking", "no")),
            equity_group=_opt(row.get("equity_group")),
        )

    out = _rows(path, build)
    logger.info(f"Loaded {len(out)} activities from {path}")
    return out


def load_holidays(
    path: Optional[Path] = None,
    years: Optional[Iterable[int]] = None,
) -> HolidayCalendar:
    """holidays.csv (date,name) if present, else the French public calendar."""
    path = path or DEFAULT_CONFIG_DIR / HOLIDAYS_FILE
    if not path.exists():
        return HolidayCalendar.french(years or DEFAULT_HOLIDAY_YEARS)
    entries = dict(_rows(path, lambda row: (_parse_date(row["date"]), str(row.get("name", "")).strip())))
    logger.info(f"Loaded {len(entries)} holidays from {path}")
    return HolidayCalendar(entries)


# ---------------------------------------------------------------------------
# JSON loaders
# ---------------------------------------------------------------------------

def _rcp_from_dict(raw: Dict[str, Any]) -> RcpDefinition:
    parity = raw.get("parity")
    instances = tuple(
        RcpManualInstance(
            date=_parse_date(inst["date"]),
            time=inst.get("time"),
            doctor_ids=tuple(inst.get("doctor_ids", ())),
            backup_doctor_id=inst.get("backup_doctor_id"),
        )
        for inst in raw.get("manual_instances", ())
    )
    return RcpDefinition(
        id=str(raw["id"]),
        name=str(raw.get("name", raw["id"])),
        weekday=Weekday.parse(raw.get("weekday", "MONDAY")),
        period=Period.parse(raw.get("period", "MORNING")),
        recurrence=Recurrence(
            frequency=Frequency(str(raw.get("frequency", "WEEKLY")).upper()),
            parity=WeekParity(str(parity).upper()) if parity else None,
            monthly_week_number=int(raw.get("monthly_week_number", 1)),
        ),
        location=raw.get("location"),
        time=raw.get("time"),
        doctor_ids=tuple(raw.get("doctor_ids", ())),
        manual_instances=instances,
        required_specialty=raw.get("required_specialty"),
        backup_doctor_id=raw.get("backup_doctor_id"),
    )


def load_rcp_definitions(path: Optional[Path] = None) -> List[RcpDefinition]:
    path = path or DEFAULT_CONFIG_DIR / RCP_DEFINITIONS_FILE
    out: List[RcpDefinition] = []
    for i, raw in enumerate(_read_json(path, [])):
        try:
            out.append(_rcp_from_dict(raw))
        except (KeyError, ValueError) as exc:
            raise ValueError(f"{path.name} entry {i}: {exc}") from exc
    logger.info(f"Loaded {len(out)} RCP definitions")
    return out


def load_rcp_exceptions(path: Optional[Path] = None) -> List[RcpException]:
    path = path or DEFAULT_CONFIG_DIR / RCP_EXCEPTIONS_FILE
    out: List[RcpException] = []
    for i, raw in enumerate(_read_json(path, [])):
        try:
            doctor_ids = raw.get("doctor_ids")
            out.append(RcpException(
                rcp_id=str(raw["rcp_id"]),
                original_date=_parse_date(raw["original_date"]),
                cancelled=bool(raw.get("cancelled", False)),
                new_date=_parse_date(raw["new_date"]) if raw.get("new_date") else None,
                new_period=Period.parse(raw["new_period"]) if raw.get("new_period") else None,
                new_time=raw.get("new_time"),
                doctor_ids=tuple(doctor_ids) if doctor_ids is not None else None,
            ))
        except (KeyError, ValueError) as exc:
            raise ValueError(f"{path.name} entry {i}: {exc}") from exc
    logger.info(f"Loaded {len(out)} RCP exceptions")
    return out


def load_attendance(path: Optional[Path] = None) -> Dict[str, Dict[str, AttendanceStatus]]:
    path = path or DEFAULT_CONFIG_DIR / ATTENDANCE_FILE
    raw = _read_json(path, {})
    return {
        occ_id: {doctor_id: AttendanceStatus(str(s).upper()) for doctor_id, s in statuses.items()}
        for occ_id, statuses in raw.items()
    }


def load_overrides(path: Optional[Path] = None) -> Dict[str, Override]:
    """Read the legacy string store; empty / unset entries are dropped."""
    path = path or DEFAULT_CONFIG_DIR / OVERRIDES_FILE
    raw = _read_json(path, {})
    out: Dict[str, Override] = {}
    for occ_id, value in raw.items():
        override = parse_legacy_override(value)
        if not isinstance(override, Unset):
            out[occ_id] = override
    logger.info(f"Loaded {len(out)} overrides")
    return out


def save_overrides(
    overrides: Dict[str, Override],
    path: Optional[Path] = None,
) -> None:
    """Persist overrides in the legacy string format, keys sorted."""
    path = path or DEFAULT_CONFIG_DIR / OVERRIDES_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {}
    for occ_id in sorted(overrides):
        stored = format_legacy_override(overrides[occ_id])
        if stored is not None:
            data[occ_id] = stored
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    logger.info(f"Overrides saved to {path}: {len(data)} entries")


# ---------------------------------------------------------------------------
# Full snapshot
# ---------------------------------------------------------------------------

def load_rules(
    config_dir: Optional[Path] = None,
    holiday_years: Optional[Iterable[int]] = None,
) -> ScheduleRules:
    """Load every snapshot file of `config_dir` into one ScheduleRules."""
    base = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
    return ScheduleRules(
        roster=tuple(load_roster(base / ROSTER_FILE)),
        unavailabilities=tuple(load_unavailabilities(base / UNAVAILABILITIES_FILE)),
        templates=tuple(load_template(base / TEMPLATE_FILE)),
        rcp_definitions=tuple(load_rcp_definitions(base / RCP_DEFINITIONS_FILE)),
        rcp_exceptions=tuple(load_rcp_exceptions(base / RCP_EXCEPTIONS_FILE)),
        activities=tuple(load_activities(base / ACTIVITIES_FILE)),
        holidays=load_holidays(base / HOLIDAYS_FILE, holiday_years),
        attendance=load_attendance(base / ATTENDANCE_FILE),
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    rules = load_rules()
    print(f"Loaded {len(rules.roster)} doctors")
    for doc in rules.roster:
        specs = ", ".join(sorted(doc.specialties)) or "(none)"
        print(f"  {doc.id:<6} {doc.name:<24} factor={doc.employment_factor} | {specs}")
    print(f"\nTemplate slots: {len(rules.templates)} | RCPs: {len(rules.rcp_definitions)} "
          f"| Activities: {len(rules.activities)} | Holidays: {len(rules.holidays)}")
