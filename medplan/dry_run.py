"""
dry_run.py — Console planning run for one or more weeks

Full orchestration:
  1. Load the snapshot (roster, template, RCPs, activities, ...) and overrides
  2. Replay the equity ledger from --history-start up to the first week
  3. Resolve each week (optionally with automatic fill)
  4. Detect conflicts and rank replacements for each one
  5. Print equity metrics per group
  6. Optionally persist automatic choices as AutoLocked overrides

With --auto-fill over several weeks, each week's automatic choices are locked
in memory before the next week is resolved, so later weeks see them in the
ledger exactly as a replay would.

Usage:
  python -m medplan.dry_run --week 2025-05-05
  python -m medplan.dry_run --week 2025-05-05 --weeks 4 --auto-fill --history-start 2025-01-06
"""

import argparse
import logging
import sys
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from medplan.availability import eligible_for
from medplan.config import DEFAULT_CONFIG_DIR, OVERRIDES_FILE, load_overrides, load_rules, save_overrides
from medplan.conflicts import detect_conflicts
from medplan.errors import StructuralError
from medplan.ledger import EquityLedger, history_before, replay_ledger
from medplan.models import Conflict, Occurrence, ScheduleRules, SlotType
from medplan.overrides import AutoLocked, Override
from medplan.recurrence import find_occurrence, rcp_needing_exception, resolve_week
from medplan.report import calculate_equity_metrics
from medplan.suggestions import rank_replacements

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def lock_auto_choices(
    occurrences: List[Occurrence],
    overrides: Dict[str, Override],
) -> int:
    """Record unlocked activity assignments as AutoLocked overrides. Returns count."""
    added = 0
    for occ in occurrences:
        if occ.slot_type is not SlotType.ACTIVITY or occ.locked or occ.closed:
            continue
        if occ.assigned_doctor_id is None or occ.id in overrides:
            continue
        overrides[occ.id] = AutoLocked(occ.assigned_doctor_id)
        added += 1
    return added


def suggest_for_conflicts(
    conflicts: List[Conflict],
    occurrences: List[Occurrence],
    rules: ScheduleRules,
    ledger: EquityLedger,
    history: List[Occurrence],
) -> Dict[str, List[Any]]:
    """conflict id → ranked ReplacementSuggestion list."""
    doctors = rules.doctor_map()
    out: Dict[str, List[Any]] = {}
    for conflict in conflicts:
        occ = find_occurrence(occurrences, conflict.occurrence_id)
        if occ is None:
            continue
        candidates = eligible_for(
            occ, rules.roster, rules.unavailabilities, occurrences, replacing=conflict.doctor_id,
        )
        out[conflict.id] = rank_replacements(
            occ, doctors.get(conflict.doctor_id), candidates, occurrences, ledger,
            history=history, activities=rules.activities,
        )
    return out


def _print_week(monday: date, occurrences: List[Occurrence]) -> None:
    print(f"\n  Week of {monday.isoformat()}")
    for occ in occurrences:
        who = ", ".join(occ.participants) or ("CLOSED" if occ.closed else "UNASSIGNED")
        flags = []
        if occ.locked:
            flags.append("locked")
        if occ.unconfirmed:
            flags.append("unconfirmed")
        if occ.backup_doctor_id:
            flags.append(f"backup: {occ.backup_doctor_id}")
        if occ.holiday:
            flags.append(f"holiday: {occ.holiday}")
        suffix = f"  [{'; '.join(flags)}]" if flags else ""
        print(f"    {occ.date.isoformat()} {occ.period.value:<9} {occ.location:<28} {who}{suffix}")


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def run_dry_run(
    week_start: date,
    weeks: int = 1,
    auto_fill: bool = False,
    history_start: Optional[date] = None,
    config_dir: Optional[Path] = None,
    save_auto: bool = False,
) -> Dict[str, Any]:
    sep = "=" * 64
    config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
    print(f"\n{sep}")
    print("  DRY RUN — planning preview")
    print(f"  Weeks: {weeks} from {week_start.isoformat()}{' (auto-fill)' if auto_fill else ''}")
    print(f"{sep}\n")

    print("Step 1/5: Loading snapshot...")
    rules = load_rules(config_dir)
    overrides = load_overrides(config_dir / OVERRIDES_FILE)
    print(f"  ✓ {len(rules.roster)} doctors | {len(rules.templates)} template slots | "
          f"{len(rules.rcp_definitions)} RCPs | {len(overrides)} overrides")

    print("\nStep 2/5: Replaying equity history...")
    ledger = history_before(week_start, history_start, rules, overrides)
    print(f"  ✓ {sum(n for _d, _g, n in ledger.items())} points across {len(ledger.groups())} group(s)")

    print("\nStep 3/5: Resolving weeks...")
    history = resolve_week(week_start - timedelta(days=7), rules, overrides)
    all_occurrences: List[Occurrence] = []
    all_conflicts: List[Conflict] = []
    suggestions: Dict[str, List[Any]] = {}
    locked = 0

    for i in range(weeks):
        monday = week_start + timedelta(days=7 * i)
        occurrences = resolve_week(monday, rules, overrides, auto_fill=auto_fill, ledger=ledger)
        _print_week(monday, occurrences)

        conflicts = detect_conflicts(occurrences, rules.unavailabilities, rules.roster, rules.activities)
        suggestions.update(suggest_for_conflicts(conflicts, occurrences, rules, ledger, history))
        all_conflicts.extend(conflicts)

        if auto_fill:
            locked += lock_auto_choices(occurrences, overrides)
        ledger = ledger + replay_ledger(monday, monday + timedelta(days=6), rules, overrides)
        history = history + occurrences
        all_occurrences.extend(occurrences)

    print("\nStep 4/5: Conflicts...")
    if not all_conflicts:
        print("  ✓ No conflicts")
    for conflict in all_conflicts:
        print(f"  ✗ {conflict}")
        for s in suggestions.get(conflict.id, []):
            print(f"      → {s.doctor_id:<6} {s.score:5.1f}  {s.rationale}")
    for occ in rcp_needing_exception(all_occurrences):
        print(f"  ⚠ RCP on public holiday ({occ.holiday}): {occ.id}")

    print("\nStep 5/5: Equity...")
    metrics = {g: calculate_equity_metrics(ledger, rules.roster, g) for g in ledger.groups()}
    for group, m in metrics.items():
        print(f"  {group:<20} mean={m['mean']:.2f} std={m['std']:.2f} CV={m['cv']:.1f}%")

    if save_auto and locked:
        save_overrides(overrides, config_dir / OVERRIDES_FILE)
        print(f"\n  ✓ {locked} automatic choice(s) saved as locked overrides")

    unassigned = sum(1 for o in all_occurrences if not o.closed and o.assigned_doctor_id is None)
    print(f"\n{sep}")
    print("  SUMMARY")
    print(f"{sep}")
    print(f"  Occurrences: {len(all_occurrences)}")
    print(f"  Unassigned:  {unassigned}")
    print(f"  Conflicts:   {len(all_conflicts)}")
    print(f"{sep}\n")

    return {
        "occurrences": all_occurrences,
        "conflicts":   all_conflicts,
        "suggestions": suggestions,
        "ledger":      ledger,
        "metrics":     metrics,
        "overrides":   overrides,
    }


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Planning dry run (console only)")
    parser.add_argument("--week",          required=True, help="Monday of the first week, YYYY-MM-DD")
    parser.add_argument("--weeks",         type=int, default=1, help="Number of weeks (default 1)")
    parser.add_argument("--auto-fill",     action="store_true", help="Run the equity balancer")
    parser.add_argument("--history-start", default=None, help="Replay the ledger from this date")
    parser.add_argument("--config-dir",    default=None, help="Snapshot directory (default: config/)")
    parser.add_argument("--save-auto",     action="store_true",
                        help="Persist automatic choices as locked overrides")
    args = parser.parse_args(argv)

    try:
        week = datetime.strptime(args.week, "%Y-%m-%d").date()
        history_start = (
            datetime.strptime(args.history_start, "%Y-%m-%d").date() if args.history_start else None
        )
    except ValueError as e:
        print(f"Invalid date format: {e}")
        sys.exit(1)

    if args.weeks < 1:
        print("Error: --weeks must be at least 1")
        sys.exit(1)

    try:
        run_dry_run(
            week,
            weeks=args.weeks,
            auto_fill=args.auto_fill,
            history_start=history_start,
            config_dir=Path(args.config_dir) if args.config_dir else None,
            save_auto=args.save_auto,
        )
    except StructuralError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
