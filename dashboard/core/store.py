"""
Read/write helpers for the app_state documents and account overrides.

Every sync, tick and report write is a full read-modify-write of one JSON
document. Concurrent writers on the same id are last-write-wins.
"""
import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .models import AppStateRecord, AccountOverride

logger = logging.getLogger(__name__)


def empty_state() -> Dict[str, Any]:
    return {"students": []}


def _as_state(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        return empty_state()
    state = copy.deepcopy(raw)
    if not isinstance(state.get("students"), list):
        state["students"] = []
    return state


def get_app_state(db: Session, state_id: str, fallback_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Load one state document.

    Args:
        db: SQLAlchemy session
        state_id: app_state row id (e.g. "DIEM_2526")
        fallback_id: legacy row id tried when state_id has no row

    Returns:
        dict: {"students": [...], ...}; an empty state when no row exists
    """
    record = db.get(AppStateRecord, state_id)
    if record is None and fallback_id and fallback_id != state_id:
        logger.info(f"No app_state row '{state_id}', falling back to '{fallback_id}'")
        record = db.get(AppStateRecord, fallback_id)
    if record is None:
        return empty_state()
    return _as_state(record.students_json)


def set_app_state(db: Session, state_id: str, state: Dict[str, Any]) -> None:
    """Upsert one state document (whole-document overwrite)."""
    payload = _as_state(state)
    record = db.get(AppStateRecord, state_id)
    if record is None:
        record = AppStateRecord(id=state_id, students_json=payload)
        db.add(record)
    else:
        record.students_json = payload
        record.updated_at = datetime.now(timezone.utc)
    db.commit()
    logger.info(f"Saved app_state '{state_id}' ({len(payload['students'])} students)")


def list_app_states(db: Session) -> List[Dict[str, Any]]:
    """All state documents as [{"id", "state", "updated_at"}], in id order."""
    records = db.query(AppStateRecord).order_by(AppStateRecord.id).all()
    return [
        {
            "id": r.id,
            "state": _as_state(r.students_json),
            "updated_at": r.updated_at.isoformat() if r.updated_at else None,
        }
        for r in records
    ]


def get_state_record(db: Session, state_id: str) -> Optional[Dict[str, Any]]:
    record = db.get(AppStateRecord, state_id)
    if record is None:
        return None
    return {
        "id": record.id,
        "state": _as_state(record.students_json),
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }


def get_override_password(db: Session, username: str) -> Optional[str]:
    record = db.get(AccountOverride, str(username or "").strip())
    if record is None:
        return None
    value = str(record.new_password or "").strip()
    return value or None


def set_override_password(db: Session, username: str, mhs: str, new_password: str, note: str = "") -> None:
    key = str(username or "").strip()
    record = db.get(AccountOverride, key)
    if record is None:
        record = AccountOverride(username=key)
        db.add(record)
    record.mhs = str(mhs or "").strip()
    record.new_password = str(new_password or "").strip()
    record.note = note or ""
    record.updated_at = datetime.now(timezone.utc)
    db.commit()


def clear_override_password(db: Session, username: str) -> None:
    record = db.get(AccountOverride, str(username or "").strip())
    if record is not None:
        db.delete(record)
        db.commit()
