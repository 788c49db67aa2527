from datetime import date

from dashboard.sync.reconcile import (
    apply_tick,
    merge_scores,
    merge_students,
    next_month_key,
    normalize_actions_storage,
    task_month,
    upsert_tick,
)

from conftest import make_student

TODAY = date(2025, 10, 15)


def action(action_id, ticks=None, description="Làm lại bài sai"):
    return {"id": action_id, "description": description, "frequency": "daily", "ticks": ticks or []}


def test_next_month_key_rolls_over_year():
    assert next_month_key("2025-12") == "2026-01"
    assert next_month_key("2025-09") == "2025-10"
    assert next_month_key("bad", TODAY) == "2025-10"


def test_task_month():
    assert task_month([{"month": "2025-08"}, {"month": "2025-09"}], TODAY) == "2025-10"
    assert task_month([], TODAY) == "2025-10"


def test_normalize_moves_legacy_active_actions():
    student = make_student("HS001", scores=[{"month": "2025-09", "math": 7}])
    student["activeActions"] = [action("a1")]

    st = normalize_actions_storage(student, TODAY)

    assert st["actionsByMonth"] == {"2025-10": [action("a1")]}
    assert st["activeActions"] == [action("a1")]


def test_normalize_keeps_populated_month():
    student = make_student("HS001", scores=[{"month": "2025-09", "math": 7}])
    student["actionsByMonth"] = {"2025-10": [action("new")]}
    student["activeActions"] = [action("old")]

    st = normalize_actions_storage(student, TODAY)

    assert st["actionsByMonth"]["2025-10"] == [action("new")]
    assert st["activeActions"] == [action("new")]


def test_merge_scores_blank_month_keeps_stored_row():
    old = [{"month": "2025-08", "math": 7}, {"month": "2025-09", "math": 6}]
    new = [{"month": "2025-08", "math": 8}]
    merged = merge_scores(old, new, ["2025-08", "2025-09"])
    assert merged == [{"month": "2025-08", "math": 8}, {"month": "2025-09", "math": 6}]


def test_merge_scores_unsynced_month_not_overwritten():
    old = [{"month": "2025-08", "math": 7}]
    new = [{"month": "2025-08", "math": 9}, {"month": "2025-09", "math": 5}]
    merged = merge_scores(old, new, ["2025-09"])
    assert merged == [{"month": "2025-08", "math": 7}, {"month": "2025-09", "math": 5}]


def test_merge_students_preserves_reports_and_actions():
    old = make_student(
        "HS001",
        name="Old name",
        scores=[{"month": "2025-09", "math": 6, "lit": 6, "eng": 6}],
        aiReport={"summary": "Tốt", "month": "2025-09"},
    )
    old["actionsByMonth"] = {"2025-10": [action("a1", [{"date": "2025-10-02", "completed": True}])]}
    new = make_student("HS001", name="New name", class_name="8A2",
                       scores=[{"month": "2025-09", "math": 7, "lit": 7, "eng": 7}])

    [merged] = merge_students([old], [new], ["2025-09"], TODAY)

    assert merged["name"] == "New name"
    assert merged["class"] == "8A2"
    assert merged["scores"][0]["math"] == 7
    assert merged["aiReport"] == {"summary": "Tốt", "month": "2025-09"}
    assert merged["actionsByMonth"]["2025-10"][0]["ticks"] == [{"date": "2025-10-02", "completed": True}]
    assert merged["activeActions"] == merged["actionsByMonth"]["2025-10"]


def test_merge_students_keeps_stored_only_students_after_sheet_order():
    old = [make_student("HS001"), make_student("HS009", name="Đã chuyển trường")]
    new = [make_student("HS002"), make_student("HS001")]

    merged = merge_students(old, new, [], TODAY)

    assert [s["mhs"] for s in merged] == ["HS002", "HS001", "HS009"]
    assert merged[2]["name"] == "Đã chuyển trường"


def test_merge_students_is_idempotent():
    old = [make_student("HS001", scores=[{"month": "2025-09", "math": 7, "lit": None, "eng": 8}],
                        aiReport={"summary": "x"})]
    new = [make_student("HS001", scores=[{"month": "2025-09", "math": 7, "lit": None, "eng": 8}])]

    once = merge_students(old, new, ["2025-09"], TODAY)
    twice = merge_students(once, new, ["2025-09"], TODAY)

    assert once == twice


def test_merge_does_not_mutate_inputs():
    old = [make_student("HS001", scores=[{"month": "2025-08", "math": 5}])]
    new = [make_student("HS001", scores=[{"month": "2025-09", "math": 6}])]
    merge_students(old, new, ["2025-09"], TODAY)
    assert old[0]["scores"] == [{"month": "2025-08", "math": 5}]
    assert new[0]["scores"] == [{"month": "2025-09", "math": 6}]


def test_upsert_tick_dedupes_dates():
    a = action("a1", [
        {"date": "2025-10-01", "completed": False},
        {"date": "2025-10-02", "completed": True},
        {"date": "2025-10-01", "completed": True},
    ])
    updated = upsert_tick(a, "2025-10-01", True)
    assert updated["ticks"] == [
        {"date": "2025-10-01", "completed": True},
        {"date": "2025-10-02", "completed": True},
    ]

    added = upsert_tick(a, "2025-10-03", False)
    assert added["ticks"][-1] == {"date": "2025-10-03", "completed": False}


def test_apply_tick_prefers_month_of_date():
    student = make_student("HS001")
    student["actionsByMonth"] = {
        "2025-09": [action("a1")],
        "2025-10": [action("a1")],
    }

    found, st = apply_tick(student, "a1", "2025-10-05", True)

    assert found
    assert st["actionsByMonth"]["2025-10"][0]["ticks"] == [{"date": "2025-10-05", "completed": True}]
    assert st["actionsByMonth"]["2025-09"][0]["ticks"] == []
    assert st["activeActions"] == st["actionsByMonth"]["2025-10"]


def test_apply_tick_falls_back_to_other_months_and_legacy_list():
    student = make_student("HS001")
    student["actionsByMonth"] = {"2025-09": [action("a1")]}
    found, st = apply_tick(student, "a1", "2025-10-05", True)
    assert found
    assert st["actionsByMonth"]["2025-09"][0]["ticks"][0]["date"] == "2025-10-05"

    legacy = make_student("HS002")
    legacy["activeActions"] = [action("b1")]
    found, st = apply_tick(legacy, "b1", "2025-10-05", False)
    assert found
    assert st["activeActions"][0]["ticks"] == [{"date": "2025-10-05", "completed": False}]


def test_apply_tick_unknown_action():
    student = make_student("HS001")
    student["actionsByMonth"] = {"2025-10": [action("a1")]}
    found, st = apply_tick(student, "nope", "2025-10-05", True)
    assert not found
    assert st is student
