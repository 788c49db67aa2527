"""
Accounts and login.

Student accounts live in the ACCOUNTS sheet (MHS | name | USERNAME |
DEFAULT_PASSWORD | NEW_PASSWORD | UPDATED_AT | NOTE), teachers in the TEACHERS
sheet. A password changed through the app is also kept in the
account_overrides table, which always wins over the sheet.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from fastapi import HTTPException
from sqlalchemy.orm import Session

from dashboard.config_manager import EnvConfig
from dashboard.core.store import get_override_password
from dashboard.services.sheets import fetch_csv_rows
from dashboard.utils import SheetFormatError, norm_header, norm_value, strip_diacritics

logger = logging.getLogger(__name__)

ADMIN_USERNAME = "admin"
DEFAULT_STUDENT_PASSWORD = "123456"
HEADER_SCAN_ROWS = 7

DEFAULT_PASSWORD_KEYS = ["DEFAULT_PASSWORD", "DEFAULT PASS", "DEFAULTPASSWORD"]
NEW_PASSWORD_KEYS = ["NEW_PASSWORD", "NEW PASS", "NEWPASSWORD"]
UPDATED_AT_KEYS = ["UPDATED_AT", "UPDATEDAT", "CAP NHAT", "CAPNHAT"]
NOTE_KEYS = ["NOTE", "GHI CHU", "GHICHU"]


@dataclass
class AccountRow:
    mhs: str
    name: str
    username: str
    default_password: str
    new_password: str
    updated_at: str = ""
    note: str = ""


@dataclass
class TeacherRow:
    teacher_name: str
    teacher_class: str
    username: str
    default_password: str
    new_password: str = ""
    updated_at: str = ""
    note: str = ""


def header_key(value) -> str:
    """Header cell → unaccented upper-case key ("Họ tên HS" → "HO TEN HS")."""
    return strip_diacritics(norm_header(value))


def idx_of_any(header: Sequence[str], candidates: Sequence[str]) -> int:
    keys = [header_key(c) for c in candidates]
    for key in keys:
        if key in header:
            return header.index(key)
    return -1


def find_header_row(rows: List[List[Any]], scan: int = HEADER_SCAN_ROWS) -> Tuple[List[str], int]:
    """
    Locate the accounts header among the first rows.

    Some sheets carry title rows above the real header; the first row having
    MHS, a default-password and a new-password column wins. Falls back to row 0.
    """
    for i, raw in enumerate(rows[:scan]):
        header = [header_key(c) for c in raw]
        if (
            "MHS" in header
            and idx_of_any(header, DEFAULT_PASSWORD_KEYS) >= 0
            and idx_of_any(header, NEW_PASSWORD_KEYS) >= 0
        ):
            return header, i
    return [header_key(c) for c in (rows[0] if rows else [])], 0


def _cell(row: Sequence[Any], idx: int) -> str:
    return norm_value(row[idx]) if 0 <= idx < len(row) else ""


def parse_accounts(rows: List[List[Any]]) -> Dict[str, AccountRow]:
    """
    Accounts keyed by MHS and by username.

    A blank USERNAME means the MHS is the login.
    """
    if len(rows) < 2:
        return {}

    header, header_idx = find_header_row(rows)
    idx_mhs = idx_of_any(header, ["MHS"])
    idx_name = idx_of_any(header, ["HO TEN HS", "HO VA TEN HS", "HO VA TEN", "HO TEN", "HOVATENHS"])
    idx_username = idx_of_any(header, ["USERNAME", "USER NAME", "TAI KHOAN", "ACCOUNT"])
    idx_default = idx_of_any(header, DEFAULT_PASSWORD_KEYS)
    idx_new = idx_of_any(header, NEW_PASSWORD_KEYS)

    if idx_mhs < 0:
        raise SheetFormatError("Missing column MHS (ACCOUNTS)")
    if idx_default < 0:
        raise SheetFormatError("Missing column DEFAULT_PASSWORD (ACCOUNTS)")
    if idx_new < 0:
        raise SheetFormatError("Missing column NEW_PASSWORD (ACCOUNTS)")

    idx_updated = idx_of_any(header, UPDATED_AT_KEYS)
    idx_note = idx_of_any(header, NOTE_KEYS)

    accounts: Dict[str, AccountRow] = {}
    for row in rows[header_idx + 1:]:
        mhs = _cell(row, idx_mhs)
        username = _cell(row, idx_username) or mhs
        if not mhs and not username:
            continue
        account = AccountRow(
            mhs=mhs or username,
            name=_cell(row, idx_name),
            username=username,
            default_password=_cell(row, idx_default),
            new_password=_cell(row, idx_new),
            updated_at=_cell(row, idx_updated),
            note=_cell(row, idx_note),
        )
        accounts[account.mhs] = account
        if account.username != account.mhs:
            accounts[account.username] = account
    return accounts


def parse_teachers(rows: List[List[Any]]) -> Dict[str, TeacherRow]:
    """Teachers keyed by username; header on the first row."""
    if len(rows) < 2:
        return {}

    header = [header_key(c) for c in rows[0]]
    idx_name = idx_of_any(header, ["TEN GVCN", "GVCN", "TEACHER_NAME", "NAME", "HO VA TEN"])
    idx_class = idx_of_any(header, ["LOP", "TEACHER_CLASS", "CLASS"])
    idx_username = idx_of_any(header, ["TAI KHOAN", "USERNAME", "ACCOUNT"])
    idx_default = idx_of_any(header, DEFAULT_PASSWORD_KEYS + ["MAT KHAU"])
    idx_new = idx_of_any(header, NEW_PASSWORD_KEYS)

    if idx_class < 0:
        raise SheetFormatError("Missing column LỚP (TEACHERS)")
    if idx_username < 0:
        raise SheetFormatError("Missing column TÀI KHOẢN/USERNAME (TEACHERS)")
    if idx_default < 0:
        raise SheetFormatError("Missing column DEFAULT_PASSWORD (TEACHERS)")

    idx_updated = idx_of_any(header, UPDATED_AT_KEYS)
    idx_note = idx_of_any(header, NOTE_KEYS)

    teachers: Dict[str, TeacherRow] = {}
    for row in rows[1:]:
        username = _cell(row, idx_username)
        if not username:
            continue
        teachers[username] = TeacherRow(
            teacher_name=_cell(row, idx_name),
            teacher_class=_cell(row, idx_class),
            username=username,
            default_password=_cell(row, idx_default),
            new_password=_cell(row, idx_new),
            updated_at=_cell(row, idx_updated),
            note=_cell(row, idx_note),
        )
    return teachers


def fetch_accounts() -> Dict[str, AccountRow]:
    return parse_accounts(fetch_csv_rows(EnvConfig.get_accounts_csv_url()))


def fetch_teachers() -> Dict[str, TeacherRow]:
    return parse_teachers(fetch_csv_rows(EnvConfig.get_teachers_csv_url()))


def effective_password(override: Optional[str], row) -> str:
    """Override, else the sheet's new password, else its default password."""
    return override or row.new_password or row.default_password


def admin_passwords(db: Session) -> List[str]:
    """Passwords accepted as the admin's current password (override first, then env)."""
    override = get_override_password(db, ADMIN_USERNAME)
    _, env_password = EnvConfig.get_admin_credentials()
    accepted = []
    for value in (override, env_password):
        value = str(value or "").strip()
        if value and value not in accepted:
            accepted.append(value)
    return accepted


def _configured(getter: Callable[[], str]) -> bool:
    try:
        getter()
    except ValueError:
        return False
    return True


def authenticate(
    db: Session,
    username: str,
    password: str,
    students: List[Dict[str, Any]],
    accounts_loader: Optional[Callable[[], Dict[str, AccountRow]]] = None,
    teachers_loader: Optional[Callable[[], Dict[str, TeacherRow]]] = None,
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Check credentials and build the session payload.

    Order: admin, then teachers sheet, then students.
    The sheet loaders default to the configured CSV exports and are skipped
    when their URL is not set.

    Returns:
        (session payload, public user info)

    Raises:
        HTTPException: 401 on a wrong password, 404 when the student is not in the state
    """
    username = str(username or "").strip()
    password = str(password or "").strip()

    admin_username, env_password = EnvConfig.get_admin_credentials()
    if username == admin_username:
        override = get_override_password(db, ADMIN_USERNAME)
        if password == (override or env_password):
            logger.info("Admin login")
            return (
                {"role": "ADMIN", "mhs": None},
                {"username": ADMIN_USERNAME, "name": "Admin", "role": "ADMIN"},
            )

    if teachers_loader is None:
        teachers_loader = fetch_teachers if _configured(EnvConfig.get_teachers_csv_url) else dict
    teachers = teachers_loader()
    teacher = teachers.get(username)
    if teacher is not None:
        expected = effective_password(get_override_password(db, username), teacher)
        if not expected or password != expected:
            raise HTTPException(status_code=401, detail="Sai mật khẩu")
        logger.info(f"Teacher login: {username} ({teacher.teacher_class})")
        info = {"username": username, "name": teacher.teacher_name, "class": teacher.teacher_class}
        return (
            {"role": "TEACHER", "mhs": None, "teacher": info},
            {"username": username, "name": teacher.teacher_name or username, "role": "TEACHER", "teacherClass": teacher.teacher_class},
        )

    mhs = username
    override = get_override_password(db, mhs)
    if override:
        allowed = password == override
    else:
        if accounts_loader is None:
            accounts_loader = fetch_accounts if _configured(EnvConfig.get_accounts_csv_url) else dict
        accounts = accounts_loader()
        account = accounts.get(mhs)
        if account is not None and (account.new_password or account.default_password):
            allowed = password == (account.new_password or account.default_password)
        else:
            allowed = password in (mhs, DEFAULT_STUDENT_PASSWORD)
    if not allowed:
        raise HTTPException(status_code=401, detail="Sai mật khẩu")

    student = next((s for s in students if str(s.get("mhs") or "").strip() == mhs), None)
    if student is None:
        raise HTTPException(status_code=404, detail="Không tìm thấy học sinh")

    logger.info(f"Student login: {mhs}")
    name = student.get("name") or mhs
    return (
        {"role": "STUDENT", "mhs": mhs},
        {"username": mhs, "name": name, "role": "STUDENT"},
    )
