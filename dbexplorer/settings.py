"""SQLite database for storing application settings."""

import os
import sqlite3
from pathlib import Path

from .executor import DEFAULT_ROW_LIMIT
from .table_data import DEFAULT_PAGE_SIZE

SETTINGS_ENV = "DBEXPLORER_SETTINGS"


def default_settings_path():
    override = os.environ.get(SETTINGS_ENV)
    if override:
        return Path(override)
    return Path.home() / ".dbexplorer" / "settings.db"


class Settings:
    def __init__(self, db_path=None):
        if db_path is None:
            db_path = default_settings_path()
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_conn(self):
        return sqlite3.connect(self.db_path)

    def _init_db(self):
        conn = self._get_conn()
        try:
            with conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS settings (
                        key TEXT PRIMARY KEY,
                        value TEXT
                    )
                """)
        finally:
            conn.close()

    def get_setting(self, key, default=None):
        conn = self._get_conn()
        try:
            cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row[0] if row else default
        finally:
            conn.close()

    def set_setting(self, key, value):
        conn = self._get_conn()
        try:
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                    (key, str(value))
                )
        finally:
            conn.close()

    def _positive_int(self, key, default):
        value = self.get_setting(key)
        try:
            number = int(value)
        except (TypeError, ValueError):
            return default
        return number if number > 0 else default

    def page_size(self):
        """Rows per page in the table editor."""
        return self._positive_int("page_size", DEFAULT_PAGE_SIZE)

    def row_limit(self):
        """Maximum rows kept from an ad-hoc query."""
        return self._positive_int("row_limit", DEFAULT_ROW_LIMIT)
