"""
Attach coaching reports and their habit actions to a student.

A report's actions become the StudyActions of one month. Rebuilding a month
keeps the id and ticks of every action whose normalized description and
frequency already existed in that month.
"""
import logging
import time
from typing import Any, Dict, List, Optional

from dashboard.sync.reconcile import latest_score_month
from dashboard.utils import is_month_key

logger = logging.getLogger(__name__)

RISK_LEVELS = ("THẤP", "TRUNG BÌNH", "CAO")
FREQUENCIES = ("daily", "weekly", "monthly")
MAX_ACTIONS = 6


def normalize_frequency(value) -> str:
    text = str(value if value is not None else "").strip().lower()
    return text if text in FREQUENCIES else "weekly"


def norm_text(value) -> str:
    return " ".join(str(value if value is not None else "").strip().lower().split())


def action_key(description, frequency) -> str:
    return f"{norm_text(description)}__{normalize_frequency(frequency)}"


def _action_description(action) -> str:
    if isinstance(action, dict):
        return str(action.get("description") or "").strip()
    return str(action or "").strip()


def normalize_report(report: Dict[str, Any], month: str, fallback: Dict[str, Any]) -> Dict[str, Any]:
    """
    Coerce a generated report into the stored shape.

    Missing or invalid fields are taken from ``fallback``; actions are capped
    at six and each gets a known frequency.
    """
    result = dict(report)
    result["month"] = month
    result["summary"] = str(report.get("summary") or fallback["summary"])
    risk = str(report.get("riskLevel") or "")
    result["riskLevel"] = risk if risk in RISK_LEVELS else fallback["riskLevel"]

    for field in ("strengths", "weaknesses"):
        value = report.get(field)
        result[field] = [str(v) for v in value] if isinstance(value, list) else list(fallback[field])

    actions = []
    raw_actions = report.get("actions")
    if isinstance(raw_actions, list):
        for action in raw_actions[:MAX_ACTIONS]:
            description = _action_description(action)
            if description:
                frequency = action.get("frequency") if isinstance(action, dict) else None
                actions.append({"description": description, "frequency": normalize_frequency(frequency)})
    result["actions"] = actions or list(fallback["actions"])
    return result


def build_month_actions(
    mhs: str,
    existing: Optional[List[Dict[str, Any]]],
    actions: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    StudyActions for one month from a list of {description, frequency}.

    Actions matching an existing one keep its id and ticks; others get a new
    id ``{mhs}-{millis}-{index}`` and no ticks.
    """
    previous = {}
    for action in existing or []:
        if isinstance(action, dict):
            previous.setdefault(action_key(action.get("description"), action.get("frequency")), action)

    stamp = int(time.time() * 1000)
    built = []
    for i, action in enumerate(actions):
        description = _action_description(action)
        frequency = normalize_frequency(action.get("frequency") if isinstance(action, dict) else None)
        old = previous.get(action_key(description, frequency))
        if old is not None:
            built.append({
                "id": old.get("id"),
                "description": description,
                "frequency": frequency,
                "ticks": old.get("ticks") if isinstance(old.get("ticks"), list) else [],
            })
        else:
            built.append({
                "id": f"{mhs}-{stamp}-{i}",
                "description": description,
                "frequency": frequency,
                "ticks": [],
            })
    return built


def report_month(student: Dict[str, Any], requested: Optional[str] = None) -> str:
    """The requested month when valid, else the latest scored month."""
    requested = str(requested or "").strip()
    if is_month_key(requested):
        return requested
    return latest_score_month(student.get("scores"))


def score_for_month(student: Dict[str, Any], month: str) -> Optional[Dict[str, Any]]:
    for score in student.get("scores") or []:
        if isinstance(score, dict) and str(score.get("month") or "").strip() == month:
            return score
    return None


def attach_report(
    student: Dict[str, Any],
    report: Dict[str, Any],
    month: str,
    actions: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Store ``report`` as the student's aiReport and rebuild the month's actions.

    Args:
        student: stored student record
        report: normalized report
        month: month key the actions belong to
        actions: actions to store; the report's own actions when None

    Returns:
        dict: updated student; activeActions mirror the rebuilt month
    """
    updated = dict(student)
    updated["aiReport"] = report

    abm = dict(updated.get("actionsByMonth") or {})
    month_actions = build_month_actions(
        str(updated.get("mhs") or "").strip(),
        abm.get(month) if isinstance(abm.get(month), list) else [],
        report.get("actions", []) if actions is None else actions,
    )
    abm[month] = month_actions
    updated["actionsByMonth"] = abm
    updated["activeActions"] = month_actions

    logger.info(f"Attached report for {updated.get('mhs')} ({month}, {len(month_actions)} actions)")
    return updated
