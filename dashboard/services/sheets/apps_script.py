"""
Apps Script Web App Client

The spreadsheet is fronted by an Apps Script deployment:
- GET  ?action=get_data&sheet=NAME   → {"ok": true, "data": [[...], ...]}
- GET  ?action=get_history&mhs=MHS   → history payload, passed through
- POST {"secret", "action", ...}     → account / roster writes
"""
import logging
from typing import Any, Dict, List, Optional

import backoff
import requests

from dashboard.utils import SheetBackendError, looks_like_html

logger = logging.getLogger(__name__)

WRITE_ACTIONS = {
    "set_new_password",
    "clear_new_password",
    "add_student",
    "add_teacher",
    "delete_student",
    "update_student",
}


def _is_client_error(e: Exception) -> bool:
    """Retry only connection failures and 5xx answers."""
    response = getattr(e, "response", None)
    return response is not None and response.status_code < 500


class AppsScriptClient:
    """
    Client for the Apps Script web app in front of the score spreadsheet.

    Features:
    - Exponential backoff on connection errors and 5xx
    - ``{"ok": false}`` answers raised as SheetBackendError
    """

    def __init__(self, url: str, secret: Optional[str] = None, timeout: float = 30.0):
        """
        Args:
            url: web app URL (read endpoint, or write endpoint for post_action)
            secret: shared secret required by doPost
            timeout: request timeout in seconds
        """
        self.url = url
        self.secret = secret
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    @backoff.on_exception(
        backoff.expo,
        requests.exceptions.RequestException,
        max_tries=3,
        giveup=_is_client_error,
    )
    def _request(self, method: str, **kwargs) -> Dict[str, Any]:
        logger.info(f"Calling Apps Script: {method} {kwargs.get('params') or kwargs.get('json', {}).get('action')}")
        response = self.session.request(method, self.url, timeout=self.timeout, allow_redirects=True, **kwargs)
        response.raise_for_status()

        if looks_like_html(response.text):
            raise SheetBackendError("Apps Script returned HTML instead of JSON; check the deployment access settings")

        try:
            return response.json()
        except ValueError:
            raise SheetBackendError(f"Apps Script returned invalid JSON: {response.text[:200]}")

    def get_data(self, sheet_name: str) -> List[List[Any]]:
        """
        Fetch the full data range of one tab.

        Returns:
            2D list of cell values; date cells arrive as ISO timestamps
        """
        payload = self._request("GET", params={"action": "get_data", "sheet": sheet_name})
        if not payload.get("ok"):
            raise SheetBackendError(payload.get("error") or "Apps Script returned error")
        data = payload.get("data")
        if not isinstance(data, list):
            raise SheetBackendError("Apps Script response has no data grid")
        logger.info(f"Fetched {len(data)} rows from sheet '{sheet_name}'")
        return data

    def get_history(self, mhs: str) -> Dict[str, Any]:
        return self._request("GET", params={"action": "get_history", "mhs": mhs})

    def post_action(self, action: str, **payload) -> Dict[str, Any]:
        """
        Send a write action to doPost.

        Raises:
            ValueError: unknown action or no secret configured
            SheetBackendError: the script answered ``ok: false``
        """
        if action not in WRITE_ACTIONS:
            raise ValueError(f"Unknown action: {action}")
        if not self.secret:
            raise ValueError("Apps Script secret is not configured")

        body = {**payload, "secret": self.secret, "action": action}
        result = self._request("POST", json=body)
        if not result.get("ok"):
            raise SheetBackendError(result.get("error") or f"Apps Script action {action} failed")
        return result
