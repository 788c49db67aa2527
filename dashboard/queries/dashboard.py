"""
Student dashboard statistics: own average, class and grade averages, and
habit leaderboards.
"""
import logging
import re
from datetime import date as date_cls
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SUBJECTS = ("math", "lit", "eng")


def score_average(score: Optional[Dict[str, Any]]) -> float:
    """Mean of the entered subjects, rounded to one decimal; 0 when none."""
    if not score:
        return 0.0
    values = [score.get(s) for s in SUBJECTS]
    values = [v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
    if not values:
        return 0.0
    return round(sum(values) / len(values), 1)


def latest_score(student: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    scores = [s for s in (student.get("scores") or []) if isinstance(s, dict) and s.get("month")]
    if not scores:
        return None
    return max(scores, key=lambda s: s["month"])


def best_average(student: Dict[str, Any]) -> float:
    return max((score_average(s) for s in (student.get("scores") or [])), default=0.0)


def grade_of(class_name: str) -> str:
    """Leading number of a class name: "8A1" → "8", "10A" → "10"."""
    match = re.match(r"\D*(\d+)", str(class_name or ""))
    return match.group(1) if match else ""


def group_average(students: List[Dict[str, Any]]) -> float:
    """Average of latest-month averages over students that have one above 0."""
    averages = [score_average(latest_score(s)) for s in students]
    averages = [a for a in averages if a > 0]
    return round(sum(averages) / len(averages), 1) if averages else 0.0


def completed_ticks(student: Dict[str, Any], month_key: str) -> int:
    """Completed ticks dated in ``month_key``, each (action, date) counted once."""
    actions = list(student.get("activeActions") or [])
    for month_actions in (student.get("actionsByMonth") or {}).values():
        if isinstance(month_actions, list):
            actions.extend(month_actions)

    seen = set()
    for action in actions:
        if not isinstance(action, dict):
            continue
        for tick in action.get("ticks") or []:
            if isinstance(tick, dict) and tick.get("completed") and str(tick.get("date", "")).startswith(month_key):
                seen.add((str(action.get("id")), str(tick.get("date"))))
    return len(seen)


def leaderboard(students: List[Dict[str, Any]], month_key: str, size: int = 3) -> List[Dict[str, Any]]:
    ranked = [
        {
            "id": s.get("mhs"),
            "name": s.get("name"),
            "class": s.get("class"),
            "score": completed_ticks(s, month_key),
        }
        for s in students
    ]
    ranked.sort(key=lambda r: r["score"], reverse=True)
    return [{**item, "rank": i + 1} for i, item in enumerate(ranked[:size])]


def dashboard_stats(
    student: Dict[str, Any],
    students: List[Dict[str, Any]],
    target_score: float = 8.5,
    leaderboard_size: int = 3,
    today: Optional[date_cls] = None,
) -> Dict[str, Any]:
    """
    Stats shown on the student's overview cards.

    Class peers share the exact class name; grade peers share the class
    name's leading number. Leaderboards rank completed ticks in the current
    calendar month.
    """
    month_key = (today or date_cls.today()).strftime("%Y-%m")
    my_class = student.get("class") or ""
    my_grade = grade_of(my_class)

    class_students = [s for s in students if (s.get("class") or "") == my_class]
    if my_grade:
        grade_students = [s for s in students if grade_of(s.get("class") or "") == my_grade]
    else:
        grade_students = class_students

    return {
        "avgScore": score_average(latest_score(student)),
        "bestScore": best_average(student),
        "classAvg": group_average(class_students),
        "gradeAvg": group_average(grade_students),
        "targetScore": target_score,
        "leaderboardClass": leaderboard(class_students, month_key, leaderboard_size),
        "leaderboardGrade": leaderboard(grade_students, month_key, leaderboard_size),
    }
