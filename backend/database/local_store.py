"""
Local key-value store (SQLite implementation)
Holds admin price overrides, inventory, price history and activity log
as JSON strings
"""
import json
import sqlite3
import logging
import threading
from typing import Any, Optional
from datetime import datetime, timezone
from config import Config

logger = logging.getLogger(__name__)

ADMIN_PRICES_KEY = "admin_edit_prices"
INVENTORY_KEY = "inventory_data"
PRICE_HISTORY_KEY = "admin_price_history"
ACTIVITY_LOG_KEY = "admin_activity_log"
EXTRA_OPTIONS_PRICES_KEY = "extra_options_prices"
RACK_OPTIONS_KEY = "rack_options_registry"


class LocalStore:
    """Synchronous key-value string store on SQLite"""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or Config.LOCAL_DB_PATH
        self.conn = None
        self._lock = threading.RLock()
        self._init_database()

    def _init_database(self):
        """Create database schema if not exists"""
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT
            )
        """)
        self.conn.commit()
        logger.info(f"Local store initialized: {self.db_path}")

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = cursor.fetchone()
        return row["value"] if row else default

    def set(self, key: str, value: str):
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute("""
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                """, (key, value, now))
                self.conn.commit()
            except sqlite3.Error as e:
                logger.error(f"Write failed for {key}: {e}")
                self.conn.rollback()
                raise

    def get_json(self, key: str, default: Any = None) -> Any:
        """Decode a stored JSON value; corrupt values fall back to default"""
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Stored value for {key} is not valid JSON: {e}")
            return default

    def set_json(self, key: str, value: Any):
        self.set(key, json.dumps(value, ensure_ascii=False))

    def close(self):
        """Close database connection"""
        if self.conn:
            self.conn.close()
            self.conn = None
