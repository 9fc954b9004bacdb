"""
suggestions.py — Replacement Suggestion Ranker

Ranks candidates for an occurrence whose doctor must be replaced (or which is
simply open). Pure: identical inputs give identical output, order included.

Score (clamped to 0..100), weights from SuggestionPolicy:
  base_score
  + equity:     (pool mean - candidate weighted score) * equity_points_per_unit,
                clamped to ±equity_cap. Weighted score = (ledger points in the
                occurrence's equity group + this week's assignments in the
                group) / employment_factor.
  + specialty:  candidate holds the occurrence's required specialty, or (when
                none is required) shares one with the replaced doctor
  + expertise:  one of the candidate's specialties appears in the location
  - recency:    candidate held the same rule's preceding instance(s);
                recency_penalty for the latest, times recency_decay per step back

Ordering: score desc, weighted score asc, doctor id.
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional, Sequence, Tuple

from medplan.ledger import EquityLedger
from medplan.models import (
    ActivityDefinition,
    Doctor,
    Occurrence,
    ReplacementSuggestion,
)
from medplan.schedule_config import DEFAULT_EQUITY_GROUP_PREFIX, SUGGESTION_POLICY_DEFAULTS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SuggestionPolicy:
    base_score: float = SUGGESTION_POLICY_DEFAULTS["base_score"]
    specialty_bonus: float = SUGGESTION_POLICY_DEFAULTS["specialty_bonus"]
    expertise_bonus: float = SUGGESTION_POLICY_DEFAULTS["expertise_bonus"]
    equity_points_per_unit: float = SUGGESTION_POLICY_DEFAULTS["equity_points_per_unit"]
    equity_cap: float = SUGGESTION_POLICY_DEFAULTS["equity_cap"]
    recency_penalty: float = SUGGESTION_POLICY_DEFAULTS["recency_penalty"]
    recency_decay: float = SUGGESTION_POLICY_DEFAULTS["recency_decay"]
    recency_lookback: int = SUGGESTION_POLICY_DEFAULTS["recency_lookback"]
    max_suggestions: int = SUGGESTION_POLICY_DEFAULTS["max_suggestions"]

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]] = None) -> "SuggestionPolicy":
        """Build from a (partial) dict; unknown keys raise ValueError."""
        values = dict(values or {})
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown suggestion policy keys: {sorted(unknown)}")
        return cls(**values)


DEFAULT_POLICY = SuggestionPolicy()


def equity_group_for(
    occurrence: Occurrence,
    activities: Dict[str, ActivityDefinition],
) -> str:
    activity = activities.get(occurrence.activity_id) if occurrence.activity_id else None
    if activity is not None:
        return activity.group
    return f"{DEFAULT_EQUITY_GROUP_PREFIX}{occurrence.activity_id or 'default'}"


def _week_count(
    doctor_id: str,
    group: str,
    occurrence_id: str,
    occurrences_this_week: Sequence[Occurrence],
    activities: Dict[str, ActivityDefinition],
) -> int:
    count = 0
    for occ in occurrences_this_week:
        if occ.id == occurrence_id or occ.closed or occ.assigned_doctor_id != doctor_id:
            continue
        activity = activities.get(occ.activity_id) if occ.activity_id else None
        if activity is not None and activity.group == group:
            count += 1
    return count


def _previous_instances(
    occurrence: Occurrence,
    history: Sequence[Occurrence],
    lookback: int,
) -> List[Occurrence]:
    """Most recent first: earlier instances of the same rule, at most `lookback`."""
    earlier = [
        o for o in history
        if o.rule_id == occurrence.rule_id and o.canonical_date < occurrence.canonical_date
    ]
    earlier.sort(key=lambda o: o.canonical_date, reverse=True)
    return earlier[:lookback]


def rank_replacements(
    occurrence: Occurrence,
    doctor_to_replace: Optional[Doctor],
    candidates: Sequence[Doctor],
    occurrences_this_week: Sequence[Occurrence],
    ledger: EquityLedger,
    history: Sequence[Occurrence] = (),
    activities: Sequence[ActivityDefinition] = (),
    policy: Optional[SuggestionPolicy] = None,
) -> List[ReplacementSuggestion]:
    """
    Rank `candidates` (already filtered for availability) for `occurrence`.

    Args:
        occurrence:            occurrence needing a new assignee
        doctor_to_replace:     doctor leaving it, or None for an open occurrence
        candidates:            eligible pool (availability.eligible_for)
        occurrences_this_week: the week's occurrences, for in-week equity counts
        ledger:                equity snapshot before this week
        history:               earlier occurrences (any weeks) for rotation
        activities:            activity definitions, for equity groups
        policy:                weights; DEFAULT_POLICY when None

    Returns:
        At most policy.max_suggestions suggestions; empty when nobody fits.
    """
    policy = policy or DEFAULT_POLICY
    activity_map = {a.id: a for a in activities}
    group = equity_group_for(occurrence, activity_map)
    replaced_id = doctor_to_replace.id if doctor_to_replace else None

    pool = [
        c for c in candidates
        if c.id != replaced_id
        and occurrence.slot_type not in c.excluded_slot_types
        and not (occurrence.activity_id and occurrence.activity_id in c.excluded_activities)
    ]
    if not pool:
        logger.info(f"{occurrence.id}: no replacement candidates")
        return []

    weighted: Dict[str, float] = {}
    for c in pool:
        points = ledger.get(c.id, group) + _week_count(
            c.id, group, occurrence.id, occurrences_this_week, activity_map,
        )
        weighted[c.id] = points / c.employment_factor
    pool_mean = sum(weighted.values()) / len(weighted)

    previous = _previous_instances(occurrence, history, policy.recency_lookback)
    location = occurrence.location.lower()

    ranked: List[Tuple[float, float, str, ReplacementSuggestion]] = []
    for c in pool:
        score = policy.base_score
        reasons: List[str] = []

        # equity
        deficit = round(pool_mean - weighted[c.id], 6)
        equity = max(-policy.equity_cap, min(policy.equity_cap, deficit * policy.equity_points_per_unit))
        if equity > 0:
            reasons.append(f"Owed {group} ({weighted[c.id]:.1f} vs pool {pool_mean:.1f})")
        elif equity < 0:
            reasons.append(f"Above pool average for {group} ({weighted[c.id]:.1f} vs {pool_mean:.1f})")
        score += equity

        # specialty
        if occurrence.required_specialty:
            if occurrence.required_specialty in c.specialties:
                score += policy.specialty_bonus
                reasons.append(f"Required specialty ({occurrence.required_specialty})")
        elif doctor_to_replace is not None:
            shared = sorted(c.specialties & doctor_to_replace.specialties)
            if shared:
                score += policy.specialty_bonus
                reasons.append(f"Same specialty ({', '.join(shared)})")

        # expertise
        relevant = sorted(s for s in c.specialties if s.lower() in location)
        if relevant:
            score += policy.expertise_bonus
            reasons.append(f"Relevant expertise ({relevant[0]})")

        # recency
        penalty = 0.0
        for step, prev in enumerate(previous):
            if c.id in prev.participants:
                penalty += policy.recency_penalty * (policy.recency_decay ** step)
        if penalty:
            score -= penalty
            reasons.append("Covered recent instance(s)")

        score = round(max(0.0, min(100.0, score)), 1)
        suggestion = ReplacementSuggestion(
            doctor_id=c.id,
            score=score,
            rationale="; ".join(reasons) if reasons else "Available",
            replaced_doctor_id=replaced_id,
        )
        ranked.append((-score, weighted[c.id], c.id, suggestion))

    ranked.sort(key=lambda item: item[:3])
    suggestions = [item[3] for item in ranked[: policy.max_suggestions]]
    if suggestions:
        logger.debug(
            f"{occurrence.id}: {len(suggestions)}/{len(pool)} suggestions "
            f"(top {suggestions[0].doctor_id} @ {suggestions[0].score})"
        )
    return suggestions
