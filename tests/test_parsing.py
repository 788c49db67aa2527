import pytest

from dashboard.sync.parsing import (
    find_column,
    forward_fill_months,
    parse_month_value,
    parse_score,
    parse_score_grid,
    NAME_ALIASES,
)
from dashboard.utils import SheetFormatError

from conftest import score_grid


def test_find_column_is_accent_and_case_insensitive():
    headers = ["mhs", "Ho va ten", "lớp"]
    assert find_column(headers, NAME_ALIASES) == 1
    assert find_column(headers, ["LỚP"]) == 2
    assert find_column(headers, ["TOÁN"]) == -1


def test_find_column_prefers_exact_match_over_substring():
    headers = ["HỌ TÊN HS", "TÊN"]
    assert find_column(headers, ["TÊN"]) == 1


def test_parse_month_value():
    assert parse_month_value("2025-09") == "2025-09"
    assert parse_month_value("2025.09") == "2025-09"
    assert parse_month_value("2025-09-01T00:00:00.000Z") == "2025-09"
    assert parse_month_value("2025-13") == ""
    assert parse_month_value("Tháng 9") == ""


def test_forward_fill_months():
    assert forward_fill_months(["", "2025-08", "", "2025-09"], 5) == ["", "2025-08", "2025-08", "2025-09", "2025-09"]


@pytest.mark.parametrize("value,expected", [
    ("7.5", 7.5),
    ("7,5", 7.5),
    (8, 8.0),
    ("", None),
    ("abc", None),
    ("16", None),
    ("-1", None),
    (True, None),
])
def test_parse_score(value, expected):
    assert parse_score(value) == expected


def test_parse_score_recovers_timestamp_cells():
    # "7.8" auto-formatted by the spreadsheet as 7 August
    assert parse_score("2025-08-07T00:00:00.000Z") == pytest.approx(7.8)
    assert parse_score("2025-08-07T00:00:00.000Z", recover_timestamps=False) is None


def test_parse_score_grid_reads_each_month():
    rows = score_grid(
        ["2025-08", "2025-09"],
        [
            ("HS001", "Nguyễn Văn A", "8A1", "7", "6,5", "8", "9", "", "7"),
            ("HS002", "Trần Thị B", "8A2", "", "", "", "5", "5", "5"),
            ("", "Dòng trống", "", "1", "1", "1", "1", "1", "1"),
        ],
    )
    parsed = parse_score_grid(rows)

    assert parsed.month_keys == ["2025-08", "2025-09"]
    assert [s["mhs"] for s in parsed.students] == ["HS001", "HS002"]

    a = parsed.students[0]
    assert a["class"] == "8A1"
    assert a["scores"] == [
        {"month": "2025-08", "math": 7.0, "lit": 6.5, "eng": 8.0},
        {"month": "2025-09", "math": 9.0, "lit": None, "eng": 7.0},
    ]
    # a month with no score at all is not stored
    assert [s["month"] for s in parsed.students[1]["scores"]] == ["2025-09"]


def test_parse_score_grid_limits_months():
    rows = score_grid(["2025-08", "2025-09"], [("HS001", "A", "8A1", "7", "7", "7", "8", "8", "8")])
    parsed = parse_score_grid(rows, months=["2025-09"])
    assert parsed.month_keys == ["2025-08", "2025-09"]
    assert [s["month"] for s in parsed.students[0]["scores"]] == ["2025-09"]


def test_parse_score_grid_duplicate_mhs_takes_later_row():
    rows = score_grid(["2025-09"], [
        ("HS001", "A", "8A1", "5", "5", "5"),
        ("HS001", "A moved", "8A2", "6", "6", "6"),
    ])
    parsed = parse_score_grid(rows)
    assert len(parsed.students) == 1
    assert parsed.students[0]["class"] == "8A2"
    assert parsed.students[0]["scores"][0]["math"] == 6.0


def test_parse_score_grid_requires_mhs_column():
    rows = [["2025-09", "", ""], ["Tên", "Lớp", "Toán"], ["A", "8A1", "5"]]
    with pytest.raises(SheetFormatError, match="MHS"):
        parse_score_grid(rows)


def test_parse_score_grid_requires_month_row():
    rows = [["", "", ""], ["MHS", "HỌ VÀ TÊN", "TOÁN"], ["HS001", "A", "5"]]
    with pytest.raises(SheetFormatError, match="month_key"):
        parse_score_grid(rows)


def test_parse_score_grid_requires_data_rows():
    with pytest.raises(SheetFormatError):
        parse_score_grid([["2025-09"], ["MHS"]])
