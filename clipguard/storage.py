import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .config import DB_PATH, MAX_LOGS
from .engine import DetectionConfig

DEFAULTS: Dict[str, Any] = {
    "whitelist": [],
    "logs": [],
    "keywords": [],
    "onScreenAlerts": True,
    "hardcodedKeywords": True,
}


def parse_keywords(raw: Union[str, Iterable[str], None]) -> List[str]:
    """Accept a newline-delimited textarea value or a list; drop blanks."""
    if raw is None:
        return []
    items = raw.split("\n") if isinstance(raw, str) else raw
    return [str(s).strip() for s in items if str(s).strip()]


class SettingsStore:
    """Key-value store for the whitelist, keywords, threat logs and toggles.

    Values are JSON documents keyed by name. Every read-modify-write runs inside one
    ``BEGIN IMMEDIATE`` transaction under a process lock so concurrent events cannot
    drop each other's updates.
    """

    def __init__(self, db_path: str = DB_PATH, max_logs: int = MAX_LOGS):
        self.db_path = db_path
        self.max_logs = max_logs
        self._write_lock = threading.Lock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self):
        return sqlite3.connect(self.db_path, timeout=5, isolation_level=None)

    def _init_db(self):
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            existing = {row[0] for row in conn.execute("SELECT key FROM settings").fetchall()}
            for key, value in DEFAULTS.items():
                if key not in existing:
                    self._write(conn, key, value)

    @contextmanager
    def _transaction(self):
        with self._write_lock:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

    @staticmethod
    def _read(conn, key: str) -> Any:
        row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if not row:
            default = DEFAULTS.get(key)
            return list(default) if isinstance(default, list) else default
        return json.loads(row[0])

    @staticmethod
    def _write(conn, key: str, value: Any) -> None:
        conn.execute(
            """
            INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, json.dumps(value, ensure_ascii=False), time.time()),
        )

    def get(self, key: str) -> Any:
        conn = self._connect()
        try:
            return self._read(conn, key)
        finally:
            conn.close()

    def set(self, key: str, value: Any) -> None:
        with self._transaction() as conn:
            self._write(conn, key, value)

    def load_config(self) -> DetectionConfig:
        conn = self._connect()
        try:
            return DetectionConfig(
                whitelist=self._list(self._read(conn, "whitelist")),
                keywords=self._list(self._read(conn, "keywords")),
                on_screen_alerts=bool(self._read(conn, "onScreenAlerts")),
                hardcoded_keywords=bool(self._read(conn, "hardcodedKeywords")),
            )
        finally:
            conn.close()

    @staticmethod
    def _list(value: Any) -> List:
        return value if isinstance(value, list) else []

    # Threat logs

    def list_logs(self) -> List[Dict]:
        return self._list(self.get("logs"))

    def get_log(self, index: int) -> Optional[Dict]:
        logs = self.list_logs()
        if 0 <= index < len(logs):
            return logs[index]
        return None

    def append_log(self, entry: Dict) -> List[Dict]:
        """Prepend ``entry`` and keep only the newest ``max_logs`` records."""
        with self._transaction() as conn:
            logs = [entry] + self._list(self._read(conn, "logs"))
            del logs[self.max_logs :]
            self._write(conn, "logs", logs)
        return logs

    def clear_logs(self) -> None:
        self.set("logs", [])

    # Whitelist

    def list_whitelist(self) -> List[str]:
        return self._list(self.get("whitelist"))

    def add_whitelist(self, host: str) -> bool:
        """Add a hostname; returns False when it is already present."""
        host = (host or "").strip().lower()
        if "." not in host:
            raise ValueError("Enter a hostname (e.g. example.com).")
        with self._transaction() as conn:
            whitelist = self._list(self._read(conn, "whitelist"))
            if host in whitelist:
                return False
            whitelist.append(host)
            self._write(conn, "whitelist", whitelist)
        return True

    def remove_whitelist(self, host: str) -> bool:
        host = (host or "").strip().lower()
        with self._transaction() as conn:
            whitelist = self._list(self._read(conn, "whitelist"))
            remaining = [h for h in whitelist if h != host]
            self._write(conn, "whitelist", remaining)
        return len(remaining) != len(whitelist)

    def clear_whitelist(self) -> None:
        self.set("whitelist", [])

    # Keywords and toggles

    def list_keywords(self) -> List[str]:
        return self._list(self.get("keywords"))

    def save_keywords(self, raw: Union[str, Iterable[str], None]) -> List[str]:
        keywords = parse_keywords(raw)
        self.set("keywords", keywords)
        return keywords

    def reset_keywords(self) -> None:
        self.set("keywords", [])

    def set_toggles(self, on_screen_alerts: Optional[bool] = None, hardcoded_keywords: Optional[bool] = None) -> None:
        with self._transaction() as conn:
            if on_screen_alerts is not None:
                self._write(conn, "onScreenAlerts", bool(on_screen_alerts))
            if hardcoded_keywords is not None:
                self._write(conn, "hardcodedKeywords", bool(hardcoded_keywords))
