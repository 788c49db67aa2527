from dashboard.sync.recovery import analyze_records, apply_recovery, pick_richest, richness

from conftest import make_student


def rich_student(mhs, months=("2025-10",), report=True):
    st = make_student(mhs, scores=[{"month": "2025-09", "math": 7}])
    st["actionsByMonth"] = {
        m: [{"id": f"{mhs}-{m}", "description": "x", "frequency": "daily",
             "ticks": [{"date": f"{m}-01", "completed": True}]}]
        for m in months
    }
    if report:
        st["aiReport"] = {"summary": "ok"}
    return st


def test_richness():
    assert richness(None) == 0
    assert richness(make_student("HS001")) == 0
    assert richness(rich_student("HS001", months=("2025-09", "2025-10"))) == 3


def test_pick_richest_prefers_higher_then_first_seen():
    records = [
        {"id": "old", "state": {"students": [rich_student("hs001", months=("2025-10",))]}},
        {"id": "older", "state": {"students": [rich_student("HS001", months=("2025-09",))]}},
        {"id": "oldest", "state": {"students": [rich_student("HS001", months=("2025-08", "2025-09"))]}},
    ]
    best = pick_richest(records)
    assert best["HS001"].record_id == "oldest"

    best = pick_richest(records[:2])
    assert best["HS001"].record_id == "old"


def test_apply_recovery_only_when_strictly_richer():
    target = [
        make_student("HS001", name="Tên mới", class_name="9A1"),
        rich_student("HS002", months=("2025-10",)),
    ]
    best = pick_richest([
        {"id": "backup", "state": {"students": [
            rich_student("HS001", months=("2025-09", "2025-10")),
            rich_student("HS002", months=("2025-09",)),
        ]}},
    ])

    students, recovered = apply_recovery(target, best)

    assert recovered == ["HS001"]
    assert students[0]["name"] == "Tên mới"
    assert students[0]["class"] == "9A1"
    assert students[0]["aiReport"] == {"summary": "ok"}
    assert set(students[0]["actionsByMonth"]) == {"2025-09", "2025-10"}
    assert students[1] is target[1]


def test_analyze_records():
    records = [
        {"id": "DIEM_2526", "updated_at": None, "state": {"students": [make_student("HS001"), make_student("HS003")]}},
        {"id": "main", "updated_at": None, "state": {"students": [rich_student("HS001")]}},
    ]

    result = analyze_records(records, "DIEM_2526")

    assert result["summary"] == {"totalRecords": 2, "recordsWithData": 1, "totalStudentsWithRecoverableData": 1}
    assert result["analysis"][1]["totalTicks"] == 1
    assert result["recoverableStudents"][0]["source"] == "main"
    assert result["targetGains"] == [{"mhs": "HS001", "name": "Học sinh", "source": "main", "from": 0, "to": 2}]


def test_apply_recovery_keeps_target_only_months():
    target = rich_student("HS001", months=("2026-01",), report=False)
    target["actionsByMonth"]["2025-10"] = []
    best = pick_richest([
        {"id": "main", "state": {"students": [rich_student("HS001", months=("2025-10", "2025-11"))]}},
    ])

    [student], recovered = apply_recovery([target], best)

    assert recovered == ["HS001"]
    assert student["aiReport"] == {"summary": "ok"}
    assert set(student["actionsByMonth"]) == {"2025-10", "2025-11", "2026-01"}
    assert student["actionsByMonth"]["2026-01"][0]["ticks"] == [{"date": "2026-01-01", "completed": True}]
    assert student["actionsByMonth"]["2025-10"][0]["id"] == "HS001-2025-10"


def test_apply_recovery_keeps_target_report_when_snapshot_has_none():
    target = make_student("HS001", aiReport={"summary": "mới"})
    best = pick_richest([
        {"id": "main", "state": {"students": [rich_student("HS001", months=("2025-09", "2025-10"), report=False)]}},
    ])

    [student], _ = apply_recovery([target], best)

    assert student["aiReport"] == {"summary": "mới"}
    assert set(student["actionsByMonth"]) == {"2025-09", "2025-10"}
