"""
Department Planning & Equity Engine

Modules:
- recurrence: weekly / monthly occurrence resolution (templates, RCPs, exceptions)
- availability: eligible-doctor filter for one half-day
- autofill: equity-balanced automatic assignment of activities
- conflicts: double-booking, absence and competence checks
- suggestions: ranked replacement candidates
- ledger: equity ledger and history replay
- config: snapshot loaders (CSV / JSON)
"""

from .availability import eligible_for, filter_available
from .calendars import HolidayCalendar
from .conflicts import ConflictDetector, detect_conflicts, find_conflicting_occurrence
from .errors import StructuralError
from .identifiers import decode_occurrence_id, encode_occurrence_id
from .ledger import EquityLedger, replay_ledger
from .overrides import CLOSED, UNSET, AutoLocked, Closed, Manual, Unset
from .recurrence import rcp_needing_exception, resolve_month, resolve_week
from .suggestions import SuggestionPolicy, rank_replacements

__all__ = [
    "eligible_for",
    "filter_available",
    "HolidayCalendar",
    "ConflictDetector",
    "detect_conflicts",
    "find_conflicting_occurrence",
    "StructuralError",
    "decode_occurrence_id",
    "encode_occurrence_id",
    "EquityLedger",
    "replay_ledger",
    "CLOSED",
    "UNSET",
    "AutoLocked",
    "Closed",
    "Manual",
    "Unset",
    "rcp_needing_exception",
    "resolve_month",
    "resolve_week",
    "SuggestionPolicy",
    "rank_replacements",
]
