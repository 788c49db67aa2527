"""
External Service Integrations

Clients for the services the dashboard talks to.

Available Services:
- Google Sheets: score grid and account sheets (Apps Script, CSV export, gspread)
- Gemini: coaching report generation

Usage:
    from dashboard.services.sheets import AppsScriptClient, SheetsClient
    from dashboard.services.gemini import get_report_generator
"""

from .sheets import AppsScriptClient, SheetsClient, fetch_csv_rows
from .gemini import FallbackReportGenerator, GeminiReportGenerator, get_report_generator

__all__ = [
    # Sheets
    'AppsScriptClient',
    'SheetsClient',
    'fetch_csv_rows',
    # Gemini
    'FallbackReportGenerator',
    'GeminiReportGenerator',
    'get_report_generator',
]
