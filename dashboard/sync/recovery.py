"""
Recover reports and actions across stored snapshots.

When a sheet was re-synced into a new id (new school year, renamed tab) the
reports and habit actions stay behind in the old row. Recovery picks, for each
student, the snapshot that holds the most of that data and copies it onto the
target. Best effort: no transaction spans several rows and nothing is rolled
back.
"""
import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dashboard.sync.reconcile import normalize_actions_storage

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """The richest snapshot of one student seen so far."""
    record_id: str
    student: Dict[str, Any]
    richness: int


def recovery_key(student: Dict[str, Any]) -> str:
    return str(student.get("mhs") or "").strip().upper()


def richness(student: Optional[Dict[str, Any]]) -> int:
    """1 for a report, plus one per month that has an actions entry."""
    if not student:
        return 0
    abm = student.get("actionsByMonth")
    months = len(abm) if isinstance(abm, dict) else 0
    return (1 if student.get("aiReport") else 0) + months


def pick_richest(records: Iterable[Dict[str, Any]]) -> Dict[str, Candidate]:
    """
    Choose the best snapshot per student.

    Args:
        records: [{"id", "state": {"students": [...]}}] in priority order

    Returns:
        dict: student key → Candidate; on equal richness the record seen first wins
    """
    best: Dict[str, Candidate] = {}
    for record in records:
        for student in record.get("state", {}).get("students", []):
            key = recovery_key(student)
            if not key:
                continue
            score = richness(student)
            current = best.get(key)
            if current is None or score > current.richness:
                best[key] = Candidate(record_id=record["id"], student=student, richness=score)
    return best


def completed_tick_count(student: Dict[str, Any]) -> int:
    abm = student.get("actionsByMonth")
    if not isinstance(abm, dict):
        return 0
    return sum(
        1
        for actions in abm.values() if isinstance(actions, list)
        for action in actions if isinstance(action, dict)
        for tick in (action.get("ticks") or []) if isinstance(tick, dict) and tick.get("completed")
    )


def _record_summary(record: Dict[str, Any]) -> Dict[str, Any]:
    students = record.get("state", {}).get("students", [])
    with_report = sum(1 for s in students if s.get("aiReport"))
    with_actions = sum(1 for s in students if isinstance(s.get("actionsByMonth"), dict) and s["actionsByMonth"])
    return {
        "id": record["id"],
        "updatedAt": record.get("updated_at"),
        "totalStudents": len(students),
        "studentsWithAI": with_report,
        "studentsWithTicks": with_actions,
        "totalTicks": sum(completed_tick_count(s) for s in students),
        "hasValuableData": with_report > 0 or with_actions > 0,
    }


def analyze_records(records: List[Dict[str, Any]], target_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Describe what each stored record holds and what could be recovered.

    Args:
        records: every stored snapshot
        target_id: when given, ``targetGains`` lists the students of that
            record a recovery would actually change

    Returns:
        dict: summary, per-record analysis, the best snapshot of every student
        that has recoverable data, and the target's gains
    """
    analysis = [_record_summary(r) for r in records]
    best = pick_richest(records)

    recoverable = [
        {
            "mhs": c.student.get("mhs"),
            "name": c.student.get("name"),
            "class": c.student.get("class"),
            "hasAI": bool(c.student.get("aiReport")),
            "actionMonths": sorted((c.student.get("actionsByMonth") or {}).keys()),
            "richness": c.richness,
            "source": c.record_id,
        }
        for c in best.values() if c.richness > 0
    ]

    gains = []
    target = next((r for r in records if r["id"] == target_id), None)
    if target is not None:
        for student in target.get("state", {}).get("students", []):
            candidate = best.get(recovery_key(student))
            have = richness(student)
            if candidate and candidate.richness > have:
                gains.append({
                    "mhs": student.get("mhs"),
                    "name": student.get("name"),
                    "source": candidate.record_id,
                    "from": have,
                    "to": candidate.richness,
                })

    return {
        "summary": {
            "totalRecords": len(records),
            "recordsWithData": sum(1 for a in analysis if a["hasValuableData"]),
            "totalStudentsWithRecoverableData": len(recoverable),
        },
        "analysis": analysis,
        "recoverableStudents": recoverable,
        "target": target_id,
        "targetGains": gains,
    }


def merge_action_months(
    target: Optional[Dict[str, Any]],
    source: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """Union of two actionsByMonth maps; on a shared month the populated list wins, the target on a tie."""
    merged = dict(target) if isinstance(target, dict) else {}
    for month, actions in (source or {}).items():
        if not isinstance(actions, list):
            continue
        current = merged.get(month)
        if not isinstance(current, list) or (not current and actions):
            merged[month] = actions
    return merged


def apply_recovery(
    target_students: List[Dict[str, Any]],
    best: Dict[str, Candidate],
) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Copy aiReport and actions from the richest snapshot onto the target students.

    Only students whose best snapshot is strictly richer than their current
    record are touched; identity, name, class and scores stay as they are.
    Action months are merged, so a month only the target holds keeps its
    actions and ticks, and the target's aiReport stays when the snapshot
    has none.

    Returns:
        (students, mhs of every recovered student)
    """
    recovered = []
    result = []
    for student in target_students:
        candidate = best.get(recovery_key(student))
        if candidate is None or candidate.richness <= richness(student):
            result.append(student)
            continue

        source = normalize_actions_storage(copy.deepcopy(candidate.student))
        updated = dict(student)
        if source.get("aiReport"):
            updated["aiReport"] = source["aiReport"]
        updated["actionsByMonth"] = merge_action_months(updated.get("actionsByMonth"), source.get("actionsByMonth"))

        result.append(normalize_actions_storage(updated))
        recovered.append(str(student.get("mhs")))

    logger.info(f"Recovered {len(recovered)} of {len(target_students)} students")
    return result, recovered
