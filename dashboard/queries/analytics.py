"""
Per-month academic analytics for the teacher view.

Scores are flattened into one DataFrame row per (student, month). A missing
subject counts as 0 in the three-subject average, and a student's previous
month is the score entry right before the selected one.
"""
import logging
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

SUBJECTS = ["math", "lit", "eng"]
SUBJECT_LABELS = {"math": "Toán", "lit": "Văn", "eng": "Anh"}

DANGER_AVG = 4.0
WARNING_AVG = 5.0
DROP_THRESHOLD = 1.5
WEAK_SUBJECT = 5.0
TOP_IMPROVERS = 5

RISK_ORDER = {"DANGER": 0, "WARNING": 1, "NOTICE": 2}


def scores_frame(students: List[Dict[str, Any]]) -> pd.DataFrame:
    """One row per stored score entry, with prev_avg from the student's previous entry."""
    records = []
    for st in students:
        for sc in st.get("scores") or []:
            if not isinstance(sc, dict) or not sc.get("month"):
                continue
            records.append({
                "mhs": str(st.get("mhs") or "").strip(),
                "name": st.get("name"),
                "class": st.get("class"),
                "month": sc["month"],
                **{s: sc.get(s) for s in SUBJECTS},
            })

    columns = ["mhs", "name", "class", "month"] + SUBJECTS
    df = pd.DataFrame.from_records(records, columns=columns)
    if df.empty:
        return df.assign(avg=pd.Series(dtype=float), prev_avg=pd.Series(dtype=float))

    df[SUBJECTS] = df[SUBJECTS].apply(pd.to_numeric, errors="coerce")
    df = df.sort_values(["mhs", "month"], kind="stable").reset_index(drop=True)
    df["avg"] = df[SUBJECTS].fillna(0).sum(axis=1) / len(SUBJECTS)
    df["prev_avg"] = df.groupby("mhs")["avg"].shift(1)
    return df


def available_months(students: List[Dict[str, Any]]) -> List[str]:
    months = {sc.get("month") for st in students for sc in (st.get("scores") or []) if isinstance(sc, dict)}
    return sorted((m for m in months if m), reverse=True)


def _risk_for_row(row) -> Optional[Dict[str, Any]]:
    avg = row["avg"]
    level = None
    reasons = []

    if 0 < avg < DANGER_AVG:
        level = "DANGER"
        reasons.append(f"TB < {DANGER_AVG} ({avg:.1f})")
    elif DANGER_AVG <= avg < WARNING_AVG:
        level = "WARNING"
        reasons.append(f"TB thấp ({avg:.1f})")

    prev = row["prev_avg"]
    if not pd.isna(prev) and prev - avg > DROP_THRESHOLD:
        level = level or "WARNING"
        reasons.append(f"Tụt điểm (-{prev - avg:.1f})")

    weak = []
    for subject in SUBJECTS:
        value = row[subject]
        if not pd.isna(value) and 0 < value < WEAK_SUBJECT:
            weak.append(f"{SUBJECT_LABELS[subject]}: {value:g}")
    if weak:
        level = level or "NOTICE"
        reasons.append(", ".join(weak))

    if not level:
        return None
    return {
        "mhs": row["mhs"],
        "name": row["name"],
        "class": row["class"],
        "avgScore": round(float(avg), 2),
        "level": level,
        "reasons": reasons,
    }


def academic_risk(df: pd.DataFrame, month: str) -> List[Dict[str, Any]]:
    """Students at risk in ``month``, most severe first, then lowest average."""
    month_df = df[df["month"] == month]
    risks = [r for r in (_risk_for_row(row) for _, row in month_df.iterrows()) if r]
    risks.sort(key=lambda r: (RISK_ORDER[r["level"]], r["avgScore"]))
    return risks


def top_improvers(df: pd.DataFrame, month: str, limit: int = TOP_IMPROVERS) -> List[Dict[str, Any]]:
    month_df = df[(df["month"] == month) & (df["prev_avg"] > 0)].copy()
    if month_df.empty:
        return []
    month_df["delta"] = month_df["avg"] - month_df["prev_avg"]
    month_df = month_df.sort_values("delta", ascending=False, kind="stable").head(limit)
    return [
        {
            "mhs": row["mhs"],
            "name": row["name"],
            "class": row["class"],
            "prevAvg": round(float(row["prev_avg"]), 2),
            "currAvg": round(float(row["avg"]), 2),
            "delta": round(float(row["delta"]), 2),
        }
        for _, row in month_df.iterrows()
    ]


def _band(value: float) -> str:
    if value >= 7.5:
        return "good"
    if value >= 5.0:
        return "fair"
    return "weak"


def subject_averages(df: pd.DataFrame, month: str) -> List[Dict[str, Any]]:
    """Mean of the entered scores per subject; 0 when nobody has one."""
    month_df = df[df["month"] == month]
    result = []
    for subject in SUBJECTS:
        values = month_df[subject].dropna() if not month_df.empty else pd.Series(dtype=float)
        avg = float(np.round(values.mean(), 1)) if len(values) else 0.0
        result.append({
            "subject": subject,
            "label": SUBJECT_LABELS[subject],
            "avg": avg,
            "count": int(len(values)),
            "band": _band(avg),
        })
    return result


def teacher_analytics(students: List[Dict[str, Any]], month: Optional[str] = None) -> Dict[str, Any]:
    """
    Risk list, top improvers and subject averages for one month.

    Args:
        students: stored students (already filtered to the teacher's class)
        month: month key; the latest month with scores when omitted
    """
    months = available_months(students)
    month = month or (months[0] if months else None)
    df = scores_frame(students)

    if not month or df.empty:
        return {"month": month, "months": months, "risks": [], "improvers": [], "subjects": subject_averages(df, month or "")}

    analytics = {
        "month": month,
        "months": months,
        "risks": academic_risk(df, month),
        "improvers": top_improvers(df, month),
        "subjects": subject_averages(df, month),
    }
    logger.info(f"Analytics for {month}: {len(analytics['risks'])} at risk, {len(students)} students")
    return analytics
