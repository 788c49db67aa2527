"""
Reconciliation of freshly parsed sheet data with the stored state.

A sheet only knows names, classes and scores. Reports, actions and ticks live
only in the stored document, so a sync must carry them forward by MHS and
never replace populated data with the sheet's empty defaults.
"""
import copy
import logging
from datetime import date as date_cls
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dashboard.utils import is_month_key

logger = logging.getLogger(__name__)


def student_key(student: Dict[str, Any]) -> str:
    return str(student.get("mhs") or "").strip()


def current_month_key(today: Optional[date_cls] = None) -> str:
    return (today or date_cls.today()).strftime("%Y-%m")


def next_month_key(month_key: str, today: Optional[date_cls] = None) -> str:
    """"2025-12" → "2026-01"; anything that is not a month key gives the current month."""
    mk = str(month_key or "").strip()
    if not is_month_key(mk):
        return current_month_key(today)
    year, month = int(mk[:4]), int(mk[5:7])
    month += 1
    if month == 13:
        month = 1
        year += 1
    return f"{year:04d}-{month:02d}"


def latest_score_month(scores: Optional[List[Dict[str, Any]]], today: Optional[date_cls] = None) -> str:
    months = [str(s.get("month") or "").strip() for s in (scores or []) if isinstance(s, dict)]
    months = [m for m in months if is_month_key(m)]
    return max(months) if months else current_month_key(today)


def task_month(scores: Optional[List[Dict[str, Any]]], today: Optional[date_cls] = None) -> str:
    """Actions are planned for the month after the latest scored month."""
    months = [str(s.get("month") or "").strip() for s in (scores or []) if isinstance(s, dict)]
    if not any(is_month_key(m) for m in months):
        return current_month_key(today)
    return next_month_key(latest_score_month(scores, today), today)


def _actions_by_month(student: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    abm = student.get("actionsByMonth")
    return dict(abm) if isinstance(abm, dict) else {}


def _list(value) -> List[Any]:
    return list(value) if isinstance(value, list) else []


def normalize_actions_storage(student: Dict[str, Any], today: Optional[date_cls] = None) -> Dict[str, Any]:
    """
    Move legacy activeActions into actionsByMonth and point activeActions at the task month.

    activeActions fill actionsByMonth[task_month] only when that slot is empty.
    Afterwards activeActions mirrors the task month, or the latest month that
    has actions, or stays as it was.
    """
    st = dict(student)
    abm = _actions_by_month(st)
    active = _list(st.get("activeActions"))
    tm = task_month(st.get("scores"), today)

    if active and not _list(abm.get(tm)):
        abm[tm] = active

    if _list(abm.get(tm)):
        st["activeActions"] = abm[tm]
    else:
        months = sorted(k for k in abm if is_month_key(k) and isinstance(abm[k], list))
        st["activeActions"] = abm[months[-1]] if months else active

    st["actionsByMonth"] = abm
    return st


def merge_scores(
    old_scores: Optional[List[Dict[str, Any]]],
    new_scores: Optional[List[Dict[str, Any]]],
    replaced_months: Iterable[str],
) -> List[Dict[str, Any]]:
    """
    Replace the synced months with the sheet's rows; keep every other month.

    A synced month the sheet left blank for this student keeps its stored
    row, so blank cells never erase scores.
    """
    replaced = set(replaced_months)
    by_month: Dict[str, Dict[str, Any]] = {}
    for sc in _list(old_scores):
        if isinstance(sc, dict) and sc.get("month"):
            by_month[sc["month"]] = sc
    for sc in _list(new_scores):
        if isinstance(sc, dict) and sc.get("month") and (sc["month"] in replaced or sc["month"] not in by_month):
            by_month[sc["month"]] = sc
    return [by_month[m] for m in sorted(by_month)]


def merge_actions_by_month(old_abm: Dict[str, Any], new_abm: Dict[str, Any]) -> Dict[str, Any]:
    """Union of both maps; an empty list never replaces a populated month."""
    merged = dict(old_abm)
    for month, actions in new_abm.items():
        if _list(actions) or month not in merged:
            merged[month] = actions
    return merged


def merge_student(
    old: Optional[Dict[str, Any]],
    new: Dict[str, Any],
    replaced_months: Iterable[str],
    today: Optional[date_cls] = None,
) -> Dict[str, Any]:
    """Sheet record + stored record → stored record with fresh name, class and scores."""
    if old is None:
        return normalize_actions_storage(new, today)

    old = normalize_actions_storage(old, today)
    merged = {**old, **new}
    merged["scores"] = merge_scores(old.get("scores"), new.get("scores"), replaced_months)

    report = old.get("aiReport") or new.get("aiReport")
    if report:
        merged["aiReport"] = report
    else:
        merged.pop("aiReport", None)

    merged["actionsByMonth"] = merge_actions_by_month(_actions_by_month(old), _actions_by_month(new))

    tm = task_month(merged["scores"], today)
    if isinstance(merged["actionsByMonth"].get(tm), list):
        merged["activeActions"] = merged["actionsByMonth"][tm]
    else:
        merged["activeActions"] = _list(old.get("activeActions")) or _list(new.get("activeActions"))

    return normalize_actions_storage(merged, today)


def merge_students(
    old_students: List[Dict[str, Any]],
    new_students: List[Dict[str, Any]],
    replaced_months: Iterable[str],
    today: Optional[date_cls] = None,
) -> List[Dict[str, Any]]:
    """
    Merge a parsed sheet into the stored student list.

    Sheet students come first in sheet order, then stored students the sheet
    no longer lists, unchanged.
    """
    replaced = list(replaced_months)
    old_map: Dict[str, Dict[str, Any]] = {}
    for st in old_students:
        key = student_key(st)
        if key:
            old_map[key] = st

    merged = []
    seen = set()
    for ns in new_students:
        key = student_key(ns)
        seen.add(key)
        merged.append(merge_student(copy.deepcopy(old_map.get(key)), copy.deepcopy(ns), replaced, today))

    kept = [st for st in old_students if student_key(st) not in seen]
    merged.extend(copy.deepcopy(kept))

    logger.info(f"Merged {len(new_students)} sheet students, kept {len(kept)} stored-only students")
    return merged


def stored_months(students: List[Dict[str, Any]]) -> set:
    months = set()
    for st in students:
        for sc in _list(st.get("scores")):
            if isinstance(sc, dict) and sc.get("month"):
                months.add(sc["month"])
    return months


def upsert_tick(action: Dict[str, Any], date: str, completed: bool) -> Dict[str, Any]:
    """
    Set the tick for one date on an action.

    The first tick for the date is updated in place and any further ticks for
    the same date are dropped, so a date appears at most once.
    """
    ticks = []
    found = False
    for tick in _list(action.get("ticks")):
        if not isinstance(tick, dict):
            continue
        if str(tick.get("date")) == str(date):
            if found:
                continue
            ticks.append({**tick, "completed": completed})
            found = True
        else:
            ticks.append(tick)
    if not found:
        ticks.append({"date": date, "completed": completed})
    return {**action, "ticks": ticks}


def _tick_in_list(actions: List[Dict[str, Any]], action_id: str, date: str, completed: bool) -> Tuple[bool, List[Dict[str, Any]]]:
    for i, action in enumerate(actions):
        if isinstance(action, dict) and str(action.get("id")) == str(action_id):
            updated = list(actions)
            updated[i] = upsert_tick(action, date, completed)
            return True, updated
    return False, actions


def apply_tick(student: Dict[str, Any], action_id: str, date: str, completed: bool) -> Tuple[bool, Dict[str, Any]]:
    """
    Record a tick on the student's action.

    Looks in actionsByMonth for the month of ``date`` first, then in every
    month, then in the legacy activeActions list.

    Returns:
        (found, updated student)
    """
    st = dict(student)
    abm = _actions_by_month(st)
    mk = str(date)[:7]
    mk = mk if is_month_key(mk) else ""

    updated = False
    if mk and isinstance(abm.get(mk), list):
        updated, abm[mk] = _tick_in_list(abm[mk], action_id, date, completed)

    if not updated:
        for month in list(abm.keys()):
            if not isinstance(abm[month], list):
                continue
            updated, abm[month] = _tick_in_list(abm[month], action_id, date, completed)
            if updated:
                break

    if not updated:
        updated, active = _tick_in_list(_list(st.get("activeActions")), action_id, date, completed)
        if updated:
            st["activeActions"] = active

    if not updated:
        return False, student

    if abm:
        st["actionsByMonth"] = abm
        if mk and isinstance(abm.get(mk), list):
            st["activeActions"] = abm[mk]

    return True, st
