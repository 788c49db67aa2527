"""
Google Sheets Service Module

Readers for the score spreadsheet: Apps Script web app, public CSV export,
and direct service-account access.
"""
from .apps_script import AppsScriptClient
from .client import SheetsClient
from .csv_export import fetch_csv_rows, parse_csv_text

__all__ = ['AppsScriptClient', 'SheetsClient', 'fetch_csv_rows', 'parse_csv_text']
