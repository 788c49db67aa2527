from datetime import date

import pytest

from dashboard.queries.analytics import teacher_analytics
from dashboard.queries.dashboard import (
    completed_ticks,
    dashboard_stats,
    grade_of,
    group_average,
    score_average,
)

from conftest import make_student


def sc(month, math=None, lit=None, eng=None):
    return {"month": month, "math": math, "lit": lit, "eng": eng}


@pytest.fixture
def students():
    return [
        make_student("HS001", "An", scores=[sc("2025-08", 6, 6, 6), sc("2025-09", 3, 3, 3)]),
        make_student("HS002", "Bình", scores=[sc("2025-08", 7, 7, 7), sc("2025-09", 4.5, 4.5, 4.5)]),
        make_student("HS003", "Chi", scores=[sc("2025-08", 8, 8, 8), sc("2025-09", 9, 9, 4)]),
        make_student("HS004", "Dũng", scores=[sc("2025-08", 5, 5, 5), sc("2025-09", 8, 8, 8)]),
        make_student("HS005", "Em", scores=[sc("2025-09", 10, None, None)]),
    ]


def test_teacher_analytics_defaults_to_latest_month(students):
    result = teacher_analytics(students)
    assert result["month"] == "2025-09"
    assert result["months"] == ["2025-09", "2025-08"]


def test_risk_levels(students):
    risks = {r["mhs"]: r for r in teacher_analytics(students, "2025-09")["risks"]}

    assert risks["HS001"]["level"] == "DANGER"
    assert risks["HS002"]["level"] == "WARNING"
    # 7.33 average but English below 5
    assert risks["HS003"]["level"] == "NOTICE"
    # missing subjects count as 0: 10 / 3
    assert risks["HS005"]["level"] == "DANGER"
    assert "HS004" not in risks

    levels = [r["level"] for r in teacher_analytics(students, "2025-09")["risks"]]
    assert levels == sorted(levels, key=["DANGER", "WARNING", "NOTICE"].index)


def test_drop_alone_is_a_warning():
    st = [make_student("HS001", scores=[sc("2025-08", 9, 9, 9), sc("2025-09", 7, 7, 7)])]
    [risk] = teacher_analytics(st, "2025-09")["risks"]
    assert risk["level"] == "WARNING"
    assert risk["reasons"] == ["Tụt điểm (-2.0)"]


def test_top_improvers(students):
    improvers = teacher_analytics(students, "2025-09")["improvers"]
    assert improvers[0]["mhs"] == "HS004"
    assert improvers[0]["delta"] == 3.0
    # no previous month, not ranked
    assert "HS005" not in [i["mhs"] for i in improvers]


def test_subject_averages_ignore_blank_cells(students):
    subjects = {s["subject"]: s for s in teacher_analytics(students, "2025-09")["subjects"]}
    assert subjects["math"]["count"] == 5
    assert subjects["lit"]["count"] == 4
    assert subjects["lit"]["avg"] == 6.1
    assert subjects["eng"]["band"] == "weak"


def test_teacher_analytics_empty():
    result = teacher_analytics([])
    assert result["month"] is None
    assert result["risks"] == []
    assert [s["avg"] for s in result["subjects"]] == [0.0, 0.0, 0.0]


def test_score_average_uses_entered_subjects():
    assert score_average(sc("2025-09", 8, None, 7)) == 7.5
    assert score_average(None) == 0.0


def test_grade_of():
    assert grade_of("8A1") == "8"
    assert grade_of("10A2") == "10"
    assert grade_of("Lớp 9") == "9"
    assert grade_of("") == ""


def test_group_average_skips_students_without_scores():
    assert group_average([make_student("A", scores=[sc("2025-09", 8, 8, 8)]), make_student("B")]) == 8.0


def test_completed_ticks_counts_each_action_date_once():
    st = make_student("HS001")
    a = {"id": "a1", "ticks": [{"date": "2025-10-01", "completed": True}, {"date": "2025-09-30", "completed": True}]}
    st["actionsByMonth"] = {"2025-10": [a]}
    st["activeActions"] = [a]
    assert completed_ticks(st, "2025-10") == 1


def test_dashboard_stats():
    me = make_student("HS001", class_name="8A1", scores=[sc("2025-08", 9, 9, 9), sc("2025-09", 6, 7, 8)])
    me["actionsByMonth"] = {"2025-10": [{"id": "a1", "ticks": [{"date": "2025-10-02", "completed": True}]}]}
    peers = [
        me,
        make_student("HS002", class_name="8A1", scores=[sc("2025-09", 8, 8, 8)]),
        make_student("HS003", class_name="8A2", scores=[sc("2025-09", 5, 5, 5)]),
        make_student("HS004", class_name="9A1", scores=[sc("2025-09", 10, 10, 10)]),
    ]

    stats = dashboard_stats(me, peers, target_score=8.5, leaderboard_size=2, today=date(2025, 10, 20))

    assert stats["avgScore"] == 7.0
    assert stats["bestScore"] == 9.0
    assert stats["classAvg"] == 7.5
    assert stats["gradeAvg"] == 6.7
    assert stats["targetScore"] == 8.5
    assert len(stats["leaderboardClass"]) == 2
    assert stats["leaderboardClass"][0] == {"id": "HS001", "name": "Học sinh", "class": "8A1", "score": 1, "rank": 1}
    assert [r["id"] for r in stats["leaderboardGrade"]] == ["HS001", "HS002"]
