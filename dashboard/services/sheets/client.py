"""
Google Sheets Client

Direct Sheets access through a service account, for deployments that share
the score spreadsheet with one instead of publishing an Apps Script.
"""
import os
import json
import gspread
from google.oauth2.service_account import Credentials
import backoff
import logging
from typing import Any, List, Optional
from pathlib import Path

logger = logging.getLogger(__name__)


class SheetsClient:
    """
    Google Sheets client with built-in retry logic.

    Features:
    - Automatic authentication with service account
    - Exponential backoff for rate limiting
    """

    # Read access is enough for syncing
    SCOPES = [
        'https://www.googleapis.com/auth/spreadsheets.readonly',
    ]

    def __init__(self, credentials_path: Optional[str] = None):
        """
        Initialize Google Sheets client.

        Args:
            credentials_path: Path to service account JSON.
                            If None, uses SERVICE_ACCOUNT_CREDENTIALS or GOOGLE_APPLICATION_CREDENTIALS
        """
        self.credentials_path = credentials_path
        self._gspread_client = None

    @property
    def gspread_client(self) -> gspread.Client:
        """Lazy-load gspread client."""
        if self._gspread_client is None:
            creds = self._get_credentials()
            self._gspread_client = gspread.authorize(creds)
        return self._gspread_client

    def _get_credentials(self) -> Credentials:
        """Get Google API credentials."""
        # 1) Explicit path override
        if self.credentials_path:
            return Credentials.from_service_account_file(self.credentials_path, scopes=self.SCOPES)

        # 2) JSON string in env
        json_env = os.getenv("SERVICE_ACCOUNT_CREDENTIALS")
        if json_env:
            data = json.loads(json_env)
            return Credentials.from_service_account_info(data, scopes=self.SCOPES)

        # 3) Path from GOOGLE_APPLICATION_CREDENTIALS
        gac_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
        if gac_path and Path(gac_path).exists():
            return Credentials.from_service_account_file(gac_path, scopes=self.SCOPES)

        raise ValueError("Missing env: SERVICE_ACCOUNT_CREDENTIALS or GOOGLE_APPLICATION_CREDENTIALS")

    @backoff.on_exception(
        backoff.expo,
        gspread.exceptions.APIError,
        max_tries=5,
    )
    def get_values(self, spreadsheet_id: str, worksheet_title: str) -> List[List[Any]]:
        """
        Read every cell of a worksheet.

        Args:
            spreadsheet_id: Google Sheets spreadsheet ID
            worksheet_title: tab name, e.g. "DIEM_2526"

        Returns:
            2D list of formatted cell values
        """
        logger.info(f"Reading worksheet '{worksheet_title}' from spreadsheet {spreadsheet_id}")
        spreadsheet = self.gspread_client.open_by_key(spreadsheet_id)
        worksheet = spreadsheet.worksheet(worksheet_title)
        values = worksheet.get_all_values()
        logger.info(f"Read {len(values)} rows from '{worksheet_title}'")
        return values
