"""
schedule_config.py — Engine constants for department planning

PARITY
──────
  Biweekly template slots alternate against PARITY_EPOCH (a Monday).
  Week 0 after the epoch is EVEN, week 1 is ODD, and so on.
  Biweekly RCP definitions use ISO week numbers instead (odd weeks by default).

MONTH GRID
──────────
  A month view is DEFAULT_MONTH_GRID_WEEKS consecutive weeks starting on the
  Monday that opens the grid.

EQUITY
──────
  Activities without an explicit equity group are accounted in their own
  bucket, "custom_<activity id>".
  Week-granularity activities count one point per doctor per week.

SUGGESTIONS
───────────
  SUGGESTION_POLICY_DEFAULTS are the tunable weights used by
  suggestions.SuggestionPolicy. They are policy, not contract: callers may pass
  their own policy object.
"""

from datetime import date
from typing import Any, Dict

PARITY_EPOCH = date(2024, 1, 1)

DEFAULT_MONTH_GRID_WEEKS = 5

# Years covered by the French holiday calendar when no holidays.csv is shipped
DEFAULT_HOLIDAY_YEARS = tuple(range(2024, 2031))

# Manual RCP instances carry a clock time; before this hour they are morning.
MORNING_CUTOFF_HOUR = 13

DEFAULT_EQUITY_GROUP_PREFIX = "custom_"

# Legacy persisted override markers
LEGACY_CLOSED_MARKER = "__CLOSED__"
LEGACY_AUTO_PREFIX = "auto:"

SUGGESTION_POLICY_DEFAULTS: Dict[str, Any] = {
    "base_score":            50.0,
    "specialty_bonus":       30.0,   # occurrence's required specialty (or replaced doctor's) matched
    "expertise_bonus":       10.0,   # a specialty of the candidate appears in the location label
    "equity_points_per_unit": 10.0,  # per unit of weighted-score deficit vs. pool mean
    "equity_cap":            20.0,   # equity contribution clamped to ±cap
    "recency_penalty":       15.0,   # held the immediately preceding instance
    "recency_decay":          0.5,   # multiplier per older instance
    "recency_lookback":        2,    # preceding instances considered
    "max_suggestions":         5,
}


def get_config() -> Dict[str, Any]:
    return {
        "parity_epoch":            PARITY_EPOCH,
        "month_grid_weeks":        DEFAULT_MONTH_GRID_WEEKS,
        "holiday_years":           DEFAULT_HOLIDAY_YEARS,
        "morning_cutoff_hour":     MORNING_CUTOFF_HOUR,
        "equity_group_prefix":     DEFAULT_EQUITY_GROUP_PREFIX,
        "suggestion_policy":       SUGGESTION_POLICY_DEFAULTS.copy(),
    }
