"""Durable key-value stores backing conversation history and sessions.

Each key holds one serialized document. Implementations raise
``PersistenceError`` subclasses; callers decide whether to absorb them.
"""

import errno
import logging
import os
import sqlite3
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

from .errors import PersistenceError, QuotaExceeded

logger = logging.getLogger(__name__)


class Store(ABC):
    """Interface for a durable string-valued key-value store."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Returns the document stored under ``key``, or None."""
        pass

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Replaces the document stored under ``key``."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Removes ``key``; missing keys are ignored."""
        pass


class InMemory(Store):
    """Session-only store, optionally bounded like a browser's local storage.

    Parameters
    ----------
    quota_bytes : int, optional
        Maximum total size of all values (UTF-8). Writes beyond it raise
        ``QuotaExceeded`` and leave the previous value in place.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            if self.quota_bytes is not None:
                used = sum(
                    len(v.encode("utf-8")) for k, v in self._data.items() if k != key
                )
                if used + len(value.encode("utf-8")) > self.quota_bytes:
                    raise QuotaExceeded(f"Storage quota of {self.quota_bytes} bytes exceeded")
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class File(Store):
    """Stores each key as a JSON document in a directory."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("File store at %s", self.base_dir)

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Could not read {path}: {exc}") from exc

    def put(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.base_dir, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            if exc.errno in (errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)):
                raise QuotaExceeded(f"No space left to write {path}") from exc
            raise PersistenceError(f"Could not write {path}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise PersistenceError(f"Could not delete {key}: {exc}") from exc


class SQLite(Store):
    """Stores documents in a single-table SQLite database."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._run(
            "CREATE TABLE IF NOT EXISTS documents (key TEXT PRIMARY KEY, value TEXT NOT NULL)",
            (),
        )
        logger.debug("SQLite store at %s", db_path)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _run(self, sql: str, params: tuple):
        try:
            conn = self._connect()
            try:
                with conn:
                    return conn.execute(sql, params).fetchone()
            finally:
                conn.close()
        except sqlite3.OperationalError as exc:
            if "full" in str(exc).lower():
                raise QuotaExceeded(str(exc)) from exc
            raise PersistenceError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc

    def get(self, key: str) -> Optional[str]:
        row = self._run("SELECT value FROM documents WHERE key = ?", (key,))
        return row[0] if row else None

    def put(self, key: str, value: str) -> None:
        self._run(
            "INSERT INTO documents (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    def delete(self, key: str) -> None:
        self._run("DELETE FROM documents WHERE key = ?", (key,))
