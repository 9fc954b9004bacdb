"""
report.py — Equity reporting over a ledger snapshot

ledger_frame:             one row per roster doctor, one count column per
                          equity group, plus total and employment-weighted total
calculate_equity_metrics: spread of employment-normalised scores for one group
                          (mean, std, CV %, min, max, per-doctor scores)

Doctors absent from the roster (ledger entries left by former staff) are
skipped; roster doctors without entries count 0.
"""

import logging
from typing import Any, Dict, Sequence

import pandas as pd

from medplan.ledger import EquityLedger
from medplan.models import Doctor

logger = logging.getLogger(__name__)


def ledger_frame(ledger: EquityLedger, roster: Sequence[Doctor]) -> pd.DataFrame:
    groups = ledger.groups()
    rows = []
    for doc in roster:
        row: Dict[str, Any] = {
            "doctor_id": doc.id,
            "name": doc.name,
            "employment_factor": doc.employment_factor,
        }
        for group in groups:
            row[group] = ledger.get(doc.id, group)
        row["total"] = ledger.total(doc.id)
        row["weighted_total"] = row["total"] / doc.employment_factor
        rows.append(row)

    columns = ["doctor_id", "name", "employment_factor"] + groups + ["total", "weighted_total"]
    frame = pd.DataFrame(rows, columns=columns).set_index("doctor_id")

    unknown = sorted(set(ledger.doctors()) - {d.id for d in roster})
    if unknown:
        logger.warning(f"Ledger entries for doctors not in roster skipped: {unknown}")
    return frame


def calculate_equity_metrics(
    ledger: EquityLedger,
    roster: Sequence[Doctor],
    group: str,
) -> Dict[str, Any]:
    """
    Employment-normalised fairness for one equity group.

    Returns:
        {
          group, mean, std, cv, min, max,
          counts: {doctor_id: int},
          scores: {doctor_id: float},
        }
    """
    counts = pd.Series({d.id: ledger.get(d.id, group) for d in roster}, dtype="float64")
    factors = pd.Series({d.id: d.employment_factor for d in roster}, dtype="float64")
    scores = counts / factors if len(counts) else counts

    if scores.empty:
        mean_val = std_val = min_val = max_val = 0.0
    else:
        mean_val = float(scores.mean())
        std_val = float(scores.std(ddof=0))
        min_val = float(scores.min())
        max_val = float(scores.max())
    cv = (std_val / mean_val * 100) if mean_val > 0 else 0.0

    return {
        "group": group,
        "mean": round(mean_val, 3),
        "std": round(std_val, 3),
        "cv": round(cv, 2),
        "min": round(min_val, 3),
        "max": round(max_val, 3),
        "counts": {k: int(v) for k, v in counts.items()},
        "scores": {k: round(float(v), 3) for k, v in scores.items()},
    }
