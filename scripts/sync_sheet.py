#!/usr/bin/env python3
"""
Sync script: merges the score sheet into its app_state document from the command line.

Usage:
    python scripts/sync_sheet.py [--sheet DIEM_2526] [--mode new_only|months|all] [--months 2025-09,2025-10] [--dry-run]
    python scripts/sync_sheet.py --recover --state-id DIEM_2526 [--apply]

Environment variables required:
    - DATABASE_URL (or POSTGRES_*)
    - APPS_SCRIPT_URL, SHEET_CSV_URL or SPREADSHEET_ID + SERVICE_ACCOUNT_CREDENTIALS, depending on --source
"""
import sys
import argparse
import json
import logging
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from dashboard.core.db import init_db, SessionLocal
from dashboard.core.store import get_app_state, set_app_state, list_app_states
from dashboard.config_manager import default_state_id
from dashboard.sync.service import SYNC_MODES, SOURCES, sync_sheet
from dashboard.sync.recovery import analyze_records, apply_recovery, pick_richest

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


def recover(state_id, apply=False, dry_run=False):
    """Print what other stored records could restore onto ``state_id``; copy it over with ``apply``."""
    session = SessionLocal()
    try:
        records = list_app_states(session)
        print(json.dumps(analyze_records(records, state_id), ensure_ascii=False, indent=2))
        if not apply:
            return []

        state = get_app_state(session, state_id)
        students, recovered = apply_recovery(state["students"], pick_richest(records))
        if dry_run:
            logger.info(f"[DRY RUN] Would recover {len(recovered)} students into {state_id}")
        else:
            set_app_state(session, state_id, {**state, "students": students})
            logger.info(f"Recovered {len(recovered)} students into {state_id}")
        return recovered
    finally:
        session.close()


def main():
    parser = argparse.ArgumentParser(description="Sync the score sheet into the dashboard database")
    parser.add_argument("--state-id", help="app_state id to write (defaults to the configured sheet's db_id)")
    parser.add_argument("--sheet", help="Spreadsheet tab to read (looked up in config.json when omitted)")
    parser.add_argument("--mode", choices=SYNC_MODES, default="new_only", help="Which months to merge")
    parser.add_argument("--months", default="", help="Comma separated months for --mode months (e.g. 2025-09,2025-10)")
    parser.add_argument("--source", choices=SOURCES, default="apps_script", help="Where to read the sheet from")
    parser.add_argument("--dry-run", action="store_true", help="Simulate without writing to DB")
    parser.add_argument("--recover", action="store_true", help="Print the recovery analysis for --state-id instead of syncing")
    parser.add_argument("--apply", action="store_true", help="With --recover, copy the richest reports and actions onto --state-id")
    args = parser.parse_args()

    logger.info("Initializing database schema...")
    init_db()

    if args.recover:
        recover(args.state_id or default_state_id(), apply=args.apply, dry_run=args.dry_run)
        return

    months = [m.strip() for m in args.months.split(",") if m.strip()]
    if args.mode == "months" and not months:
        logger.warning("--mode months without --months syncs every month")

    try:
        result = sync_sheet(
            state_id=args.state_id,
            sheet_name=args.sheet,
            mode=args.mode,
            selected_months=months,
            source=args.source,
            dry_run=args.dry_run,
        )
    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        sys.exit(1)

    print(json.dumps(result, ensure_ascii=False, indent=2))
    logger.info("Sync complete!")


if __name__ == "__main__":
    main()
