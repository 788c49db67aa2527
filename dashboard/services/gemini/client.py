"""
Coaching report generators.

A generator turns one student's month of scores into a report dict
(month, summary, riskLevel, strengths, weaknesses, actions). The Gemini
generator asks the model for JSON; the fallback generator is deterministic
and is used when no API key is configured or the model answer is unusable.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

from google import genai

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"

REPORT_PROMPT = """
Bạn là trợ lý giáo dục. Hãy tạo báo cáo ngắn gọn cho học sinh dựa trên điểm theo tháng.
Thông tin:
- Học sinh: {name} (MHS: {mhs}), lớp: {class_name}
- Tháng phân tích: {month}
- Điểm: Toán={math}, Ngữ văn={lit}, Tiếng Anh={eng}

Yêu cầu output JSON thuần (không markdown), dạng:
{{
  "month": "YYYY-MM",
  "summary": "string",
  "riskLevel": "THẤP" | "TRUNG BÌNH" | "CAO",
  "strengths": ["..."],
  "weaknesses": ["..."],
  "actions": [
    {{"description":"...", "frequency":"daily|weekly|monthly"}}
  ]
}}

QUAN TRỌNG (actions):
- Tuyệt đối KHÔNG yêu cầu "làm đề/chuyên đề" hay tài liệu bên ngoài.
- Chỉ đưa nhiệm vụ có thể làm ngay từ nguồn sẵn có: vở ghi, bài tập trên lớp, bài kiểm tra/bài cũ, SGK, vở bài tập, tài liệu/phiếu bài tập của nhà trường.
- Mỗi action phải cụ thể, dễ tick, thời lượng nhỏ (10-30 phút), ưu tiên "làm lại + chữa lỗi sai".
Hãy chọn 3-6 actions phù hợp với mức rủi ro.
""".strip()


class FallbackReportGenerator:
    """Fixed report with one habit per subject."""

    def generate(self, student: Dict[str, Any], month: str, score: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            "month": month,
            "summary": f"Nhận xét cơ bản cho {student.get('name') or student.get('mhs')}.",
            "riskLevel": "TRUNG BÌNH",
            "strengths": ["Đang duy trì việc học đều đặn."],
            "weaknesses": ["Cần củng cố kiến thức nền và thói quen tự học."],
            "actions": [
                {
                    "description": "Toán: làm lại và chữa 5 bài sai gần nhất trong vở/bài tập; ghi lại lỗi sai và cách sửa.",
                    "frequency": "daily",
                },
                {
                    "description": "Ngữ văn: ôn lại bài đã học (tóm tắt 10 dòng + ghi 5 ý chính/khái niệm quan trọng).",
                    "frequency": "weekly",
                },
                {
                    "description": "Tiếng Anh: ôn từ vựng theo sách/tài liệu trường 15 phút và viết 5 câu dùng từ mới.",
                    "frequency": "daily",
                },
            ],
        }


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """Parse a model answer that may wrap the JSON in prose or a code fence."""
    if not text:
        return None
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    candidates = [fenced.group(1)] if fenced else []
    candidates.append(text)
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


class GeminiReportGenerator:
    """
    Report generator backed by Gemini.

    Any model failure (network, quota, unparseable answer) falls back to the
    deterministic report so the caller always gets one.
    """

    def __init__(self, api_key: str, model_name: str = DEFAULT_MODEL):
        self.client = genai.Client(api_key=api_key)
        self.model_name = model_name
        self.fallback = FallbackReportGenerator()

    def build_prompt(self, student: Dict[str, Any], month: str, score: Optional[Dict[str, Any]]) -> str:
        score = score or {}

        def fmt(value):
            return "null" if value is None else value

        return REPORT_PROMPT.format(
            name=student.get("name") or "",
            mhs=student.get("mhs") or "",
            class_name=student.get("class") or "",
            month=month,
            math=fmt(score.get("math")),
            lit=fmt(score.get("lit")),
            eng=fmt(score.get("eng")),
        )

    def generate(self, student: Dict[str, Any], month: str, score: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        prompt = self.build_prompt(student, month, score)
        try:
            response = self.client.models.generate_content(model=self.model_name, contents=prompt)
            report = extract_json(getattr(response, "text", "") or "")
        except Exception as e:
            logger.exception(f"Gemini report generation failed for {student.get('mhs')}: {e}")
            report = None

        if report is None:
            logger.warning(f"Using fallback report for {student.get('mhs')}")
            return self.fallback.generate(student, month, score)
        return report


def get_report_generator(api_key: Optional[str] = None):
    """Gemini when an API key is available, the fallback generator otherwise."""
    if api_key:
        return GeminiReportGenerator(api_key)
    return FallbackReportGenerator()
