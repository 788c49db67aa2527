"""
Sheet synchronization

Parsing of the score grid, merge with the stored state, and cross-record recovery.
"""
from .parsing import ParsedSheet, find_column, parse_score, parse_score_grid
from .reconcile import apply_tick, merge_students, normalize_actions_storage, task_month, upsert_tick
from .recovery import analyze_records, apply_recovery, pick_richest
from .service import SheetSyncResult, SheetSyncService, sync_sheet

__all__ = [
    'ParsedSheet',
    'find_column',
    'parse_score',
    'parse_score_grid',
    'apply_tick',
    'merge_students',
    'normalize_actions_storage',
    'task_month',
    'upsert_tick',
    'analyze_records',
    'apply_recovery',
    'pick_richest',
    'SheetSyncResult',
    'SheetSyncService',
    'sync_sheet',
]
