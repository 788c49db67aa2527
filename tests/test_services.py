import pytest

from dashboard.reports import attach_report, build_month_actions, normalize_report
from dashboard.services.gemini import FallbackReportGenerator, GeminiReportGenerator, extract_json
from dashboard.services.gemini import client as gemini_client
from dashboard.services.sheets import AppsScriptClient, parse_csv_text
from dashboard.utils import SheetBackendError

from conftest import make_student


class FakeResponse:
    def __init__(self, payload=None, text=None, status_code=200):
        self.payload = payload
        self.text = text if text is not None else "{}"
        self.status_code = status_code

    def raise_for_status(self):
        pass

    def json(self):
        if self.payload is None:
            raise ValueError("no json")
        return self.payload


def fake_client(monkeypatch, response, secret=None):
    client = AppsScriptClient("https://script.example/exec", secret=secret)
    calls = []

    def request(method, url, **kwargs):
        calls.append((method, kwargs))
        return response

    monkeypatch.setattr(client.session, "request", request)
    return client, calls


def test_parse_csv_text_keeps_cells_as_text():
    rows = parse_csv_text('MHS,Tên,Điểm\nHS001,"Nguyễn, A",07\nHS002\n')
    assert rows[0][:3] == ["MHS", "Tên", "Điểm"]
    assert rows[1][:3] == ["HS001", "Nguyễn, A", "07"]
    assert rows[2][:1] == ["HS002"]
    assert all(cell == "" for cell in rows[2][1:])
    assert parse_csv_text("   ") == []


def test_parse_csv_text_multiline_cell_keeps_first_column():
    rows = parse_csv_text('a,"x\ny",b,c,d\n1,2,3\n')
    assert rows == [["a", "x\ny", "b", "c", "d"], ["1", "2", "3", "", ""]]


def test_apps_script_get_data(monkeypatch):
    client, calls = fake_client(monkeypatch, FakeResponse({"ok": True, "data": [["a"], ["b"]]}))
    assert client.get_data("DIEM_2526") == [["a"], ["b"]]
    assert calls[0][1]["params"] == {"action": "get_data", "sheet": "DIEM_2526"}


def test_apps_script_error_payload(monkeypatch):
    client, _ = fake_client(monkeypatch, FakeResponse({"ok": False, "error": "Sheet not found"}))
    with pytest.raises(SheetBackendError, match="Sheet not found"):
        client.get_data("NOPE")


def test_apps_script_html_answer(monkeypatch):
    client, _ = fake_client(monkeypatch, FakeResponse(text="<!DOCTYPE html><html>Sign in</html>"))
    with pytest.raises(SheetBackendError, match="HTML"):
        client.get_data("DIEM_2526")


def test_apps_script_post_action(monkeypatch):
    client, calls = fake_client(monkeypatch, FakeResponse({"ok": True, "message": "done"}), secret="s")
    assert client.post_action("add_student", mhs="HS010")["message"] == "done"
    assert calls[0][1]["json"] == {"mhs": "HS010", "secret": "s", "action": "add_student"}

    with pytest.raises(ValueError):
        client.post_action("drop_table")


def test_extract_json():
    assert extract_json('```json\n{"summary": "x"}\n```') == {"summary": "x"}
    assert extract_json('Đây là kết quả: {"a": 1} xong') == {"a": 1}
    assert extract_json("không có json") is None


def fake_gemini(monkeypatch, answer=None, error=None):
    calls = []

    class Models:
        def generate_content(self, model, contents):
            calls.append((model, contents))
            if error:
                raise error
            return type("Answer", (), {"text": answer})()

    class Client:
        def __init__(self, api_key):
            self.models = Models()

    monkeypatch.setattr(gemini_client.genai, "Client", Client)
    return calls


def test_gemini_generator_parses_model_answer(monkeypatch):
    calls = fake_gemini(monkeypatch, answer='```json\n{"summary": "Tiến bộ", "riskLevel": "THẤP"}\n```')
    student = make_student("HS001", name="An")

    report = GeminiReportGenerator("key").generate(student, "2025-10", {"math": 8})

    assert report == {"summary": "Tiến bộ", "riskLevel": "THẤP"}
    assert calls[0][0] == "gemini-2.0-flash"
    assert "Toán=8" in calls[0][1]


def test_gemini_generator_falls_back_on_error(monkeypatch):
    fake_gemini(monkeypatch, error=RuntimeError("quota"))
    student = make_student("HS001")

    report = GeminiReportGenerator("key").generate(student, "2025-10")

    assert report == FallbackReportGenerator().generate(student, "2025-10")


def test_normalize_report_fills_from_fallback():
    student = make_student("HS001")
    fallback = FallbackReportGenerator().generate(student, "2025-09")
    report = normalize_report(
        {"riskLevel": "RẤT CAO", "actions": ["Đọc sách", {"description": "Ôn toán", "frequency": "hourly"}]},
        "2025-09",
        fallback,
    )
    assert report["riskLevel"] == "TRUNG BÌNH"
    assert report["summary"] == fallback["summary"]
    assert report["actions"] == [
        {"description": "Đọc sách", "frequency": "weekly"},
        {"description": "Ôn toán", "frequency": "weekly"},
    ]


def test_normalize_report_caps_actions():
    fallback = FallbackReportGenerator().generate(make_student("HS001"), "2025-09")
    report = normalize_report({"actions": [f"việc {i}" for i in range(10)]}, "2025-09", fallback)
    assert len(report["actions"]) == 6


def test_normalize_report_uses_filing_month():
    fallback = FallbackReportGenerator().generate(make_student("HS001"), "2025-10")
    report = normalize_report({"month": "2025-01", "summary": "Tốt"}, "2025-10", fallback)
    assert report["month"] == "2025-10"


def test_build_month_actions_keeps_ids_and_ticks():
    existing = [{"id": "keep", "description": "Ôn  Toán", "frequency": "daily",
                 "ticks": [{"date": "2025-09-01", "completed": True}]}]
    built = build_month_actions("HS001", existing, [
        {"description": "ôn toán", "frequency": "daily"},
        {"description": "ôn toán", "frequency": "weekly"},
    ])
    assert built[0]["id"] == "keep"
    assert built[0]["ticks"] == [{"date": "2025-09-01", "completed": True}]
    assert built[1]["id"].startswith("HS001-")
    assert built[1]["ticks"] == []


def test_attach_report_mirrors_active_actions():
    student = make_student("HS001")
    report = {"summary": "x", "actions": [{"description": "Đọc", "frequency": "daily"}]}
    updated = attach_report(student, report, "2025-10")
    assert updated["aiReport"] is report
    assert updated["activeActions"] == updated["actionsByMonth"]["2025-10"]
    assert student["actionsByMonth"] == {}
