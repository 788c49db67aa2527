"""
Score sheet parsing.

Turns the two-header-row score grid exported by the spreadsheet backend into
student records:

    row 1:  |     |           |     | 2025-08 |         |           | 2025-09 | ...
    row 2:  | MHS | HỌ VÀ TÊN | LỚP | TOÁN    | NGỮ VĂN | TIẾNG ANH | TOÁN    | ...
    row 3+: data

A month header is written once and covers the subject columns that follow it,
so month keys are forward-filled before subject columns are looked up.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from dashboard.utils import SheetFormatError, norm_header, norm_value, strip_diacritics

logger = logging.getLogger(__name__)

NOT_FOUND = -1

MHS_ALIASES = ["MHS", "MÃ HS", "MÃ HỌC SINH", "MSHS", "STUDENT ID"]
NAME_ALIASES = ["HỌ VÀ TÊN", "HỌ TÊN", "HỌ TÊN HS", "NAME", "TÊN"]
CLASS_ALIASES = ["LỚP", "CLASS"]

SUBJECT_ALIASES = {
    "math": ["TOÁN", "MATH"],
    "lit": ["NGỮ VĂN", "VĂN", "LITERATURE"],
    "eng": ["TIẾNG ANH", "ENGLISH", "ANH"],
}

DEFAULT_SCORE_MIN = 0.0
DEFAULT_SCORE_MAX = 15.0

_MONTH_PLAIN_RE = re.compile(r"^(\d{4})[-./](\d{2})$")
_ISO_TIMESTAMP_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})T")


@dataclass
class ParsedSheet:
    """Students read from one score grid."""
    students: List[Dict[str, Any]]
    month_keys: List[str]
    months_parsed: List[str] = field(default_factory=list)
    recovered_cells: int = 0


def _header_forms(value) -> tuple:
    key = norm_header(value)
    return key, strip_diacritics(key)


def find_column(headers: Sequence[Any], aliases: Iterable[str]) -> int:
    """
    Resolve the index of the first header matching one of the aliases.

    Matching is case-insensitive and accent-insensitive. Every alias is first
    tried as an exact match, then as a substring of the header; the first alias
    (in order) that matches any column wins, and within an alias the first
    column wins.

    Args:
        headers: header cells of one row
        aliases: candidate header names, most specific first

    Returns:
        int: column index, or -1 when nothing matches
    """
    forms = [_header_forms(h) for h in headers]
    alias_forms = [_header_forms(a) for a in aliases if norm_header(a)]

    for key, plain in alias_forms:
        for i, (h_key, h_plain) in enumerate(forms):
            if h_key and (h_key == key or h_plain == plain):
                return i

    for key, plain in alias_forms:
        for i, (h_key, h_plain) in enumerate(forms):
            if h_key and (key in h_key or plain in h_plain):
                return i

    return NOT_FOUND


def parse_month_value(value) -> str:
    """
    Canonical "YYYY-MM" for a month header cell, or "" when it is not one.

    Besides "YYYY-MM" the sheet may hold "YYYY.MM" / "YYYY/MM", or a date cell
    that the backend serialized as an ISO timestamp.
    """
    text = norm_value(value)
    if not text:
        return ""
    match = _MONTH_PLAIN_RE.match(text) or _ISO_TIMESTAMP_RE.match(text)
    if not match:
        return ""
    year, month = match.group(1), match.group(2)
    if not 1 <= int(month) <= 12:
        return ""
    return f"{year}-{month}"


def forward_fill_months(month_row: Sequence[Any], width: Optional[int] = None) -> List[str]:
    """Propagate the last seen month key to the right; columns before the first key get ""."""
    width = max(width or 0, len(month_row))
    filled = []
    current = ""
    for i in range(width):
        parsed = parse_month_value(month_row[i]) if i < len(month_row) else ""
        if parsed:
            current = parsed
        filled.append(current)
    return filled


def parse_score(
    value,
    score_min: float = DEFAULT_SCORE_MIN,
    score_max: float = DEFAULT_SCORE_MAX,
    recover_timestamps: bool = True,
) -> Optional[float]:
    """
    Parse one score cell on the 15-point scale.

    Accepts "7.5" and "7,5". Values outside [score_min, score_max] are None.

    Some sheet cells hold a score that the spreadsheet auto-formatted as a
    date ("7.8" → 2025-08-07). When recover_timestamps is on, an ISO timestamp
    cell is read back as ``day + month / 10``. This is a guess, so every
    recovered value is logged.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
        if math.isfinite(number) and score_min <= number <= score_max:
            return number
        return None

    text = str(value).strip()
    if not text:
        return None

    try:
        number = float(text.replace(",", ".", 1))
    except ValueError:
        number = None
    if number is not None and math.isfinite(number) and score_min <= number <= score_max:
        return number

    if recover_timestamps:
        match = _ISO_TIMESTAMP_RE.match(text)
        if match:
            month = int(match.group(2))
            day = int(match.group(3))
            recovered = day + month / 10
            if score_min <= recovered <= score_max:
                logger.warning(f"Recovered score {recovered} from timestamp cell {text!r}")
                return recovered

    return None


def norm_student_id(value) -> str:
    """MHS cell → identity key; numeric cells lose the trailing ".0"."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return norm_value(value)


def _pad(row: Sequence[Any], width: int) -> List[Any]:
    cells = ["" if c is None else c for c in row]
    return cells + [""] * (width - len(cells))


def resolve_month_columns(headers: Sequence[Any], filled_months: Sequence[str], month_key: str) -> Dict[str, int]:
    """Subject → column index for one month, searching only that month's columns."""
    positions = [i for i, mk in enumerate(filled_months) if mk == month_key]
    sub_headers = [headers[i] for i in positions]
    columns = {}
    for subject, aliases in SUBJECT_ALIASES.items():
        local = find_column(sub_headers, aliases)
        columns[subject] = positions[local] if local != NOT_FOUND else NOT_FOUND
    return columns


def parse_score_grid(
    rows: Sequence[Sequence[Any]],
    months: Optional[Iterable[str]] = None,
    score_min: float = DEFAULT_SCORE_MIN,
    score_max: float = DEFAULT_SCORE_MAX,
    recover_timestamps: bool = True,
) -> ParsedSheet:
    """
    Build student records from a score grid.

    Args:
        rows: 2D grid; row 1 month keys, row 2 headers, data from row 3
        months: month keys to read; every month in the sheet when None
        score_min, score_max: accepted score range
        recover_timestamps: apply the timestamp-as-score heuristic

    Returns:
        ParsedSheet: students (each with scores sorted by month) and every
        month key found on row 1

    Raises:
        SheetFormatError: too few rows, no MHS column, or no month keys
    """
    if len(rows) < 3:
        raise SheetFormatError("Sheet must have 2 header rows + data rows")

    width = max(len(r) for r in rows)
    month_row = _pad(rows[0], width)
    header_row = _pad(rows[1], width)

    idx_mhs = find_column(header_row, MHS_ALIASES)
    if idx_mhs == NOT_FOUND:
        preview = " | ".join(norm_value(h) for h in header_row[:30])
        raise SheetFormatError(f"Missing column: MHS (header row 2). Header preview: {preview}")
    idx_name = find_column(header_row, NAME_ALIASES)
    idx_class = find_column(header_row, CLASS_ALIASES)

    filled = forward_fill_months(month_row, width)
    month_keys = sorted({mk for mk in filled if mk})
    if not month_keys:
        raise SheetFormatError('No month_key detected on row 1. Expected values like "2025-08".')

    if months is None:
        wanted = month_keys
    else:
        requested = set(months)
        wanted = [mk for mk in month_keys if mk in requested]

    columns = {mk: resolve_month_columns(header_row, filled, mk) for mk in wanted}

    students: Dict[str, Dict[str, Any]] = {}
    recovered = 0

    for raw in rows[2:]:
        row = _pad(raw, width)
        mhs = norm_student_id(row[idx_mhs])
        if not mhs:
            continue

        name = (norm_value(row[idx_name]) if idx_name != NOT_FOUND else "") or "Unknown"
        class_name = norm_value(row[idx_class]) if idx_class != NOT_FOUND else ""

        student = students.get(mhs)
        if student is None:
            student = {
                "mhs": mhs,
                "name": name,
                "class": class_name,
                "scores": [],
                "activeActions": [],
                "actionsByMonth": {},
            }
            students[mhs] = student
        else:
            student["name"] = name
            student["class"] = class_name

        for mk in wanted:
            cols = columns[mk]
            if all(c == NOT_FOUND for c in cols.values()):
                continue

            entry = {"month": mk}
            for subject, col in cols.items():
                cell = row[col] if col != NOT_FOUND else None
                score = parse_score(cell, score_min, score_max, recover_timestamps)
                if score is not None and recover_timestamps and isinstance(cell, str) and _ISO_TIMESTAMP_RE.match(cell.strip()):
                    recovered += 1
                entry[subject] = score

            if entry["math"] is None and entry["lit"] is None and entry["eng"] is None:
                continue

            scores = student["scores"]
            existing = next((i for i, s in enumerate(scores) if s["month"] == mk), None)
            if existing is not None:
                scores[existing] = entry
            else:
                scores.append(entry)

    for student in students.values():
        student["scores"].sort(key=lambda s: s["month"])

    logger.info(f"Parsed {len(students)} students, months {wanted} of {month_keys}")
    return ParsedSheet(
        students=list(students.values()),
        month_keys=month_keys,
        months_parsed=list(wanted),
        recovered_cells=recovered,
    )
