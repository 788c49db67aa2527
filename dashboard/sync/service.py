"""
Sheet Sync Service

Pulls the score grid of one sheet and merges it into the app_state document
the sheet is configured to sync into:
- new_only: months not stored yet (every month when only new students appeared)
- months: the months the caller picked
- all: every month on the sheet
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from dashboard.config_manager import EnvConfig, get_config_manager, get_setting, legacy_state_id
from dashboard.core.db import SessionLocal
from dashboard.core.store import get_app_state, set_app_state
from dashboard.sync.parsing import ParsedSheet, parse_score_grid
from dashboard.sync.reconcile import merge_students, normalize_actions_storage, stored_months, student_key

logger = logging.getLogger(__name__)

SYNC_MODES = ("new_only", "months", "all")
SOURCES = ("apps_script", "csv", "gspread")


class SheetSyncResult:
    """Result of a sheet sync operation."""

    def __init__(
        self,
        state_id: str,
        sheet_name: str,
        mode: str,
        selected_months: List[str],
        months_all: List[str],
        months_synced: List[str],
        new_months_detected: List[str],
        students: int,
        dry_run: bool = False,
    ):
        self.state_id = state_id
        self.sheet_name = sheet_name
        self.mode = mode
        self.selected_months = selected_months
        self.months_all = months_all
        self.months_synced = months_synced
        self.new_months_detected = new_months_detected
        self.students = students
        self.dry_run = dry_run
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "mode": self.mode,
            "stateId": self.state_id,
            "sheet": self.sheet_name,
            "selectedMonths": self.selected_months,
            "monthsAll": self.months_all,
            "monthsSynced": self.months_synced,
            "newMonthsDetected": self.new_months_detected,
            "students": self.students,
            "dryRun": self.dry_run,
            "timestamp": self.timestamp.isoformat(),
        }


def select_months(
    mode: str,
    months_all: List[str],
    old_months: set,
    selected_months: Optional[List[str]] = None,
    has_new_students: bool = False,
) -> List[str]:
    """
    Months a sync writes.

    Args:
        mode: "new_only", "months" or "all"
        months_all: every month key on the sheet, sorted
        old_months: months present in any stored score
        selected_months: caller's pick for "months" mode; empty means all
        has_new_students: the sheet lists an MHS the store does not know

    Returns:
        list of month keys in sheet order
    """
    if mode not in SYNC_MODES:
        raise ValueError(f"Unknown sync mode: {mode}. Expected one of {', '.join(SYNC_MODES)}")

    if mode == "new_only":
        fresh = [m for m in months_all if m not in old_months]
        if not fresh and has_new_students:
            return list(months_all)
        return fresh

    if mode == "months" and selected_months:
        wanted = set(selected_months)
        return [m for m in months_all if m in wanted]

    return list(months_all)


class SheetSyncService:
    """Service to synchronize one score sheet into its app_state document."""

    def __init__(
        self,
        state_id: Optional[str] = None,
        sheet_name: Optional[str] = None,
        session_factory: Callable = SessionLocal,
    ):
        # Always reload config to pick up runtime edits to config.json
        manager = get_config_manager()
        manager.reload()

        sheet = None
        for key in (state_id, sheet_name):
            if key and sheet is None:
                sheet = manager.find_sheet(key)
        if sheet is None and not (state_id and sheet_name):
            sheet = manager.default_sheet()

        self.state_id = state_id or (sheet.db_id if sheet else None)
        self.sheet_name = sheet_name or (sheet.sheet_name if sheet else None)
        if not self.state_id or not self.sheet_name:
            raise ValueError(f"Sheet configuration not found: {state_id or sheet_name or '(default)'}")

        self.session_factory = session_factory
        self.legacy_state_id = legacy_state_id(self.state_id)

    def fetch_rows(self, source: str = "apps_script") -> List[List[Any]]:
        """Download the score grid from the chosen backend."""
        if source not in SOURCES:
            raise ValueError(f"Unknown sheet source: {source}")

        logger.info(f"Fetching sheet '{self.sheet_name}' via {source}")
        if source == "apps_script":
            from dashboard.services.sheets import AppsScriptClient
            return AppsScriptClient(EnvConfig.get_apps_script_url()).get_data(self.sheet_name)
        if source == "csv":
            from dashboard.services.sheets import fetch_csv_rows
            return fetch_csv_rows(EnvConfig.get_sheet_csv_url())

        from dashboard.services.sheets import SheetsClient
        return SheetsClient().get_values(EnvConfig.get_spreadsheet_id(), self.sheet_name)

    def parse(self, rows: List[List[Any]]) -> ParsedSheet:
        return parse_score_grid(
            rows,
            score_min=float(get_setting("score_min", 0)),
            score_max=float(get_setting("score_max", 15)),
            recover_timestamps=bool(get_setting("recover_timestamp_scores", True)),
        )

    def sync(
        self,
        mode: str = "new_only",
        selected_months: Optional[List[str]] = None,
        source: str = "apps_script",
        rows: Optional[List[List[Any]]] = None,
        dry_run: bool = False,
    ) -> SheetSyncResult:
        """
        Fetch, parse and merge the sheet, then save the document.

        Args:
            mode: "new_only", "months" or "all"
            selected_months: months for "months" mode
            source: "apps_script", "csv" or "gspread" (ignored when rows is given)
            rows: an already fetched grid
            dry_run: compute the result without writing

        Returns:
            SheetSyncResult
        """
        selected_months = [m for m in (selected_months or []) if m]
        logger.info(f"Starting sheet sync: {self.sheet_name} → {self.state_id} (mode={mode})")

        if rows is None:
            rows = self.fetch_rows(source)
        parsed = self.parse(rows)

        session = self.session_factory()
        try:
            old_state = get_app_state(session, self.state_id, fallback_id=self.legacy_state_id)
            old_students = [normalize_actions_storage(s) for s in old_state.get("students", [])]
            old_keys = {student_key(s) for s in old_students}
            old_months = stored_months(old_students)

            has_new_students = any(student_key(s) not in old_keys for s in parsed.students)
            months_synced = select_months(mode, parsed.month_keys, old_months, selected_months, has_new_students)
            new_months = [m for m in parsed.month_keys if m not in old_months]

            synced = set(months_synced)
            sheet_students = [
                {**s, "scores": [sc for sc in s["scores"] if sc["month"] in synced]}
                for s in parsed.students
            ]
            merged = merge_students(old_students, sheet_students, months_synced)

            if dry_run:
                logger.info("Dry run, document not saved")
            else:
                set_app_state(session, self.state_id, {**old_state, "students": merged})
        finally:
            session.close()

        result = SheetSyncResult(
            state_id=self.state_id,
            sheet_name=self.sheet_name,
            mode=mode,
            selected_months=selected_months,
            months_all=parsed.month_keys,
            months_synced=months_synced,
            new_months_detected=new_months,
            students=len(merged),
            dry_run=dry_run,
        )
        logger.info(
            f"Sheet sync completed for {self.state_id}: "
            f"{len(months_synced)} months, {len(merged)} students"
        )
        return result


def sync_sheet(
    state_id: Optional[str] = None,
    sheet_name: Optional[str] = None,
    mode: str = "new_only",
    selected_months: Optional[List[str]] = None,
    source: str = "apps_script",
    dry_run: bool = False,
) -> Dict[str, Any]:
    """
    Convenience function to sync one sheet.

    Args:
        state_id: app_state id (e.g. 'DIEM_2526'); the configured default when omitted
        sheet_name: spreadsheet tab; looked up from config when omitted

    Returns:
        Dict with the sync result
    """
    service = SheetSyncService(state_id, sheet_name)
    return service.sync(mode, selected_months, source=source, dry_run=dry_run).to_dict()
