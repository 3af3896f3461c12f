"""
Storage Manager Module - Classroom QR Attendance

This module provides the local key-value store used by the attendance core.
Values are JSON text blobs kept in a single SQLite table, so every write is
durable once the call returns. The ledger, the settings and the pending sync
queue each live under their own key.

Features:
- SQLite connection management (thread-local connections)
- Idempotent schema creation
- get/set of text blobs and JSON helpers
- Transaction support with automatic rollback
- Stable per-device identifier
"""

import json
import logging
import os
import secrets
import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Any, Optional

from rollcall.modules.errors import PersistenceFailure


class StorageManager:
    """
    Key-value storage backed by SQLite.
    Reads return ``None`` for missing keys; writes either commit or raise
    ``PersistenceFailure`` with the previous value left in place.
    """

    DEVICE_ID_KEY = 'deviceId'

    def __init__(self, db_path):
        """
        Initialize the storage manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file, or ``:memory:``
        """
        self.db_path = str(db_path)
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()
        self._memory_connection = None
        self._lock = threading.RLock()

        if self.db_path != ':memory:':
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        self.initialize_storage()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        File databases get one connection per thread; an in-memory database
        is shared so every thread sees the same data.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if self.db_path == ':memory:':
            if self._memory_connection is None:
                self._memory_connection = sqlite3.connect(
                    ':memory:', check_same_thread=False
                )
            connection = self._memory_connection
        else:
            if not hasattr(self._local, 'connection'):
                self._local.connection = sqlite3.connect(
                    self.db_path,
                    check_same_thread=False,
                    timeout=30.0
                )
            connection = self._local.connection

        try:
            yield connection
        except Exception as e:
            connection.rollback()
            self.logger.error(f"Storage operation failed: {str(e)}")
            raise

    def initialize_storage(self):
        """Create the key-value table. Safe to call repeatedly."""
        with self.get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()
        self.logger.info(f"Key-value storage ready at {self.db_path}")

    @contextmanager
    def transaction(self):
        """
        Context manager for a write transaction with automatic rollback.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self._lock, self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise

    def get(self, key: str) -> Optional[str]:
        """
        Read the text stored under ``key``.

        Args:
            key (str): Storage key

        Returns:
            Optional[str]: Stored text or None
        """
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        """
        Durably store ``value`` under ``key``.

        Raises:
            PersistenceFailure: if the write could not be committed
        """
        try:
            with self.transaction() as conn:
                conn.execute(
                    """INSERT INTO kv_store (key, value, updated_at)
                       VALUES (?, ?, CURRENT_TIMESTAMP)
                       ON CONFLICT(key) DO UPDATE SET
                           value = excluded.value,
                           updated_at = CURRENT_TIMESTAMP""",
                    (key, value)
                )
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to write '{key}': {str(e)}") from e

    def get_json(self, key: str, default: Any = None) -> Any:
        """
        Read and decode a JSON blob. A corrupt blob is logged and treated
        as missing.
        """
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            self.logger.error(f"Stored value for '{key}' is not valid JSON: {str(e)}")
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value))

    def get_device_id(self) -> str:
        """
        Get the identifier of this device, creating it on first use.

        Returns:
            str: Device identifier like ``device_k3j2h1g0f_1714000000000``
        """
        with self._lock:
            device_id = self.get(self.DEVICE_ID_KEY)
            if not device_id:
                device_id = f"device_{secrets.token_hex(5)[:9]}_{int(time.time() * 1000)}"
                self.set(self.DEVICE_ID_KEY, device_id)
                self.logger.info(f"Generated new device id {device_id}")
            return device_id

    def close_all_connections(self):
        """Close database connections for cleanup."""
        if hasattr(self._local, 'connection'):
            self._local.connection.close()
            del self._local.connection
        if self._memory_connection is not None:
            self._memory_connection.close()
            self._memory_connection = None
