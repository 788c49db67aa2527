"""
Signed session cookie.

The cookie carries ``{role, mhs, teacher?}`` serialized and signed with
APP_SECRET. Payloads are sanitized on the way in and on the way out, so a
cookie signed for a malformed payload is never honored.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, Response
from itsdangerous import BadSignature, URLSafeSerializer

from dashboard.config_manager import EnvConfig

logger = logging.getLogger(__name__)

COOKIE_NAME = "dd_session"
SESSION_SALT = "dd-session"
ROLES = ("ADMIN", "TEACHER", "STUDENT")


def sanitize_session(obj: Any) -> Optional[Dict[str, Any]]:
    """
    Validate and normalize a session payload.

    Returns:
        dict or None: None for an unknown role, a STUDENT without mhs, or a
        TEACHER without username and class
    """
    if not isinstance(obj, dict):
        return None
    role = str(obj.get("role") or "").strip()
    if role not in ROLES:
        return None

    mhs = obj.get("mhs")
    mhs = str(mhs).strip() if mhs is not None else ""
    session = {"role": role, "mhs": mhs or None}

    if role == "TEACHER":
        teacher = obj.get("teacher")
        if not isinstance(teacher, dict):
            return None
        username = str(teacher.get("username") or "").strip()
        class_name = str(teacher.get("class") or "").strip()
        name = str(teacher.get("name") or "").strip()
        if not username or not class_name:
            return None
        session["mhs"] = None
        session["teacher"] = {"username": username, "class": class_name}
        if name:
            session["teacher"]["name"] = name

    if role == "STUDENT" and not session["mhs"]:
        return None

    return session


def _serializer(secret: Optional[str] = None) -> URLSafeSerializer:
    return URLSafeSerializer(secret or EnvConfig.get_app_secret(), salt=SESSION_SALT)


def encode_session(payload: Dict[str, Any], secret: Optional[str] = None) -> str:
    clean = sanitize_session(payload)
    if clean is None:
        raise ValueError("Invalid session payload")
    return _serializer(secret).dumps(clean)


def decode_session(value: Optional[str], secret: Optional[str] = None) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    try:
        payload = _serializer(secret).loads(value)
    except BadSignature:
        logger.warning("Rejected session cookie with a bad signature")
        return None
    return sanitize_session(payload)


def set_session(response: Response, payload: Dict[str, Any]) -> None:
    response.set_cookie(
        COOKIE_NAME,
        encode_session(payload),
        httponly=True,
        samesite="lax",
        path="/",
    )


def clear_session(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME, path="/", httponly=True, samesite="lax")


def get_session(request: Request) -> Optional[Dict[str, Any]]:
    """FastAPI dependency: the current session, or None."""
    return decode_session(request.cookies.get(COOKIE_NAME))


def require_role(session: Optional[Dict[str, Any]], *roles: str, status_code: int = 403) -> Dict[str, Any]:
    """Raise unless the session has one of ``roles``."""
    if not session:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if roles and session["role"] not in roles:
        raise HTTPException(status_code=status_code, detail="Forbidden")
    return session
