import re
import unicodedata
from fastapi import HTTPException
from functools import wraps
from requests.exceptions import RequestException
import logging
import traceback

logger = logging.getLogger(__name__)

MONTH_KEY_RE = re.compile(r"^\d{4}-\d{2}$")


class SheetFormatError(ValueError):
    """The spreadsheet does not have the expected shape (missing column, no month row, ...)."""


class SheetBackendError(RuntimeError):
    """The spreadsheet backend answered but reported a failure ({"ok": false})."""


def strip_diacritics(text: str) -> str:
    """
    Remove Vietnamese accents so "HỌ VÀ TÊN" compares equal to "HO VA TEN".

    NFD splits base letters from combining marks; Đ/đ has no decomposition
    and is mapped by hand.
    """
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return stripped.replace("Đ", "D").replace("đ", "d")


def norm_header(value) -> str:
    """Header cell → comparable key: BOM removed, whitespace collapsed, upper-cased."""
    text = "" if value is None else str(value)
    text = text.replace("\ufeff", "")
    text = re.sub(r"\s+", " ", text).strip()
    return unicodedata.normalize("NFC", text).upper()


def norm_value(value) -> str:
    return "" if value is None else str(value).strip()


def is_month_key(value) -> bool:
    return bool(MONTH_KEY_RE.match(str(value or "").strip()))


def looks_like_html(text: str) -> bool:
    """Google returns a sign-in page (HTML) when an export link is not public."""
    head = text[:500].lower()
    return "<!doctype html" in head or "<html" in head or "google sheets" in head


def handle_errors(func):
    """
    Decorator to handle common exceptions in API endpoints.

    Maps errors to `HTTPException`s, which the app renders as
    ``{"ok": false, "error": ...}``:
        - 400 for malformed sheets and client-side errors
        - 502 when the spreadsheet backend reports a failure
        - 503 for network errors while reaching the spreadsheet backend
        - 500 for anything unexpected

    Example:
        >>> @app.get("/example")
        >>> @handle_errors
        >>> def example_endpoint():
        >>>     ...
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)

        except HTTPException:
            raise

        except SheetFormatError as e:
            logger.warning(f"Sheet format error: {e}")
            raise HTTPException(status_code=400, detail=str(e))

        except SheetBackendError as e:
            logger.error(f"Sheet backend error: {e}")
            raise HTTPException(status_code=502, detail=str(e))

        except RequestException as e:
            tb = traceback.format_exc()
            logger.error(f"Network error: {e}\nTraceback:\n{tb}")
            raise HTTPException(status_code=503, detail=f"Service unavailable: {e}")

        except (ValueError, TypeError, AttributeError) as e:
            tb = traceback.format_exc()
            logger.error(f"Client-side error: {e}\nTraceback:\n{tb}")
            raise HTTPException(status_code=400, detail=str(e) or "Invalid request")

        except Exception as e:
            tb = traceback.format_exc()
            logger.error(f"Unexpected server error: {e}\nTraceback:\n{tb}")
            raise HTTPException(status_code=500, detail=str(e) or "An unexpected server error occurred.")
    return wrapper
