"""
Unified Configuration Manager for the Student Dashboard

Loads school-year configuration from the root config.json and provides
easy access to year and sheet settings.
"""
import json
import os
from pathlib import Path
from typing import Dict, List, Optional, Any
import logging

logger = logging.getLogger(__name__)

# Default configuration file location
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.json"

# Row id of the single-document store that predates per-sheet ids
LEGACY_STATE_ID = "main"

DEFAULT_GLOBAL_SETTINGS = {
    "score_min": 0,
    "score_max": 15,
    "recover_timestamp_scores": True,
    "target_score": 8.5,
    "leaderboard_size": 3,
}


class SheetConfig:
    """One spreadsheet tab and the app_state row it syncs into."""

    def __init__(self, sheet_data: Dict[str, Any]):
        self.data = sheet_data
        self.sheet_name = sheet_data.get("sheet_name")
        self.db_id = sheet_data.get("db_id")
        self.label = sheet_data.get("label") or self.sheet_name
        # Older row this sheet was migrated from; read while db_id has no row yet
        self.legacy_id = sheet_data.get("legacy_id")

    def to_dict(self) -> Dict[str, Any]:
        data = {"sheet_name": self.sheet_name, "db_id": self.db_id, "label": self.label}
        if self.legacy_id:
            data["legacy_id"] = self.legacy_id
        return data


class YearConfig:
    """Configuration for a single school year."""

    def __init__(self, year_data: Dict[str, Any]):
        self.data = year_data
        self.id = year_data.get("id")
        self.label = year_data.get("label") or self.id
        self.sheets: List[SheetConfig] = [
            SheetConfig(s) for s in year_data.get("sheets", [])
            if s.get("sheet_name") and s.get("db_id")
        ]

    @property
    def primary_sheet(self) -> Optional[SheetConfig]:
        return self.sheets[0] if self.sheets else None

    def get_sheet(self, key: str) -> Optional[SheetConfig]:
        """Find a sheet by its spreadsheet tab name or its db id."""
        for sheet in self.sheets:
            if key in (sheet.sheet_name, sheet.db_id):
                return sheet
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "sheets": [s.to_dict() for s in self.sheets],
        }


class ConfigManager:
    """Manages application configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self.config_data: Dict[str, Any] = {}
        self.years: Dict[str, YearConfig] = {}
        self.default_year: Optional[str] = None
        self.global_settings: Dict[str, Any] = dict(DEFAULT_GLOBAL_SETTINGS)
        self._load_config()

    def _load_config(self):
        """Load configuration from JSON file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self.config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}")

        for year_data in self.config_data.get("school_years", []):
            year_config = YearConfig(year_data)
            if not year_config.id:
                logger.warning("Skipping school year entry without id: %s", year_data)
                continue
            self.years[year_config.id] = year_config

        self.default_year = self.config_data.get("default_year") or next(iter(self.years), None)
        self.global_settings.update(self.config_data.get("global_settings", {}))

        logger.info(f"Loaded configuration for {len(self.years)} school years")

    def get_year(self, year_id: Optional[str] = None) -> Optional[YearConfig]:
        """Get configuration for a school year (the default year when omitted)."""
        return self.years.get(year_id or self.default_year)

    def list_year_configs(self) -> List[YearConfig]:
        return list(self.years.values())

    def find_sheet(self, key: str) -> Optional[SheetConfig]:
        """Find a sheet across every configured year."""
        for year in self.years.values():
            sheet = year.get_sheet(key)
            if sheet:
                return sheet
        return None

    def default_sheet(self) -> Optional[SheetConfig]:
        year = self.get_year()
        return year.primary_sheet if year else None

    def get_global_setting(self, key: str, default: Any = None) -> Any:
        return self.global_settings.get(key, default)

    def reload(self):
        """Reload configuration from file."""
        self.years.clear()
        self.global_settings = dict(DEFAULT_GLOBAL_SETTINGS)
        self._load_config()


# Global configuration manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_path: Optional[Path] = None) -> ConfigManager:
    """Get or create the global configuration manager."""
    global _config_manager
    if config_path is None and os.getenv("DASHBOARD_CONFIG"):
        config_path = Path(os.environ["DASHBOARD_CONFIG"])
    if _config_manager is None or (config_path is not None and config_path != _config_manager.config_path):
        _config_manager = ConfigManager(config_path)
    return _config_manager


def get_setting(key: str, default: Any = None) -> Any:
    return get_config_manager().get_global_setting(key, default)


def default_state_id() -> str:
    """The app_state id used when a request does not name one."""
    sheet = get_config_manager().default_sheet()
    return sheet.db_id if sheet else LEGACY_STATE_ID


def legacy_state_id(state_id: str) -> Optional[str]:
    """The older row a configured sheet migrated from, if any."""
    sheet = get_config_manager().find_sheet(state_id)
    return sheet.legacy_id if sheet and sheet.legacy_id != state_id else None


# Environment variables configuration
class EnvConfig:
    """Manages environment variables."""

    @staticmethod
    def _required(name: str) -> str:
        value = os.getenv(name)
        if not value:
            raise ValueError(f"Missing env: {name}")
        return value

    @staticmethod
    def get_apps_script_url() -> str:
        """Apps Script web app URL (get_data / get_history)."""
        return EnvConfig._required("APPS_SCRIPT_URL")

    @staticmethod
    def get_sheet_csv_url() -> str:
        """Public CSV export URL of the score sheet."""
        return EnvConfig._required("SHEET_CSV_URL")

    @staticmethod
    def get_sync_secret() -> Optional[str]:
        return os.getenv("SYNC_SECRET") or None

    @staticmethod
    def get_app_secret() -> str:
        """Secret used to sign session cookies."""
        return EnvConfig._required("APP_SECRET")

    @staticmethod
    def get_admin_credentials() -> tuple[str, str]:
        username = os.getenv("ADMIN_USERNAME", "admin")
        password = os.getenv("ADMIN_PASSWORD", "admin")
        return username, password

    @staticmethod
    def get_accounts_csv_url() -> str:
        return EnvConfig._required("ACCOUNTS_CSV_URL")

    @staticmethod
    def get_teachers_csv_url() -> str:
        return EnvConfig._required("TEACHERS_CSV_URL")

    @staticmethod
    def get_accounts_write() -> tuple[str, str]:
        """Apps Script write endpoint URL and its shared secret."""
        url = os.getenv("ACCOUNTS_WRITE_URL")
        secret = os.getenv("ACCOUNTS_WRITE_SECRET")
        if not url or not secret:
            raise ValueError("ACCOUNTS_WRITE_URL and ACCOUNTS_WRITE_SECRET must be set")
        return url, secret

    @staticmethod
    def get_gemini_api_key() -> Optional[str]:
        return os.getenv("GEMINI_API_KEY") or None

    @staticmethod
    def get_spreadsheet_id() -> str:
        """Spreadsheet read through the service account (gspread source)."""
        return EnvConfig._required("SPREADSHEET_ID")
