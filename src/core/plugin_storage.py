"""
Plugin Local Storage for SlackBridge

Key-value settings store handed to every plugin. Values are kept as JSON
in a SQLite table; keys declared secure are encrypted with Fernet before
they reach the database.
"""

import json
import logging
import os
import sqlite3
import threading
from pathlib import Path
from typing import Any, Iterable, List, Optional

from cryptography.fernet import Fernet, InvalidToken


class StorageError(Exception):
    """Storage-related errors"""
    pass


def load_or_create_key(key_file: str) -> bytes:
    """Get or create the Fernet key used for secure values"""
    path = Path(key_file)

    if path.exists():
        return path.read_bytes().strip()

    key = Fernet.generate_key()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(key)
    # Set restrictive permissions
    os.chmod(path, 0o600)
    return key


class PluginLocalStorage:
    """
    Per-plugin key-value store.

    Mirrors the getItem/setItem contract plugins expect from their host:
    reads never raise for missing keys, they return the supplied default.
    """

    _SECURE_PREFIX = "fernet:"

    def __init__(self, plugin_name: str, database_path: Optional[str] = None,
                 cipher: Optional[Fernet] = None, secure_keys: Iterable[str] = ()):
        """
        Initialize plugin storage.

        Args:
            plugin_name: Namespace for all keys of this store
            database_path: SQLite file path, in-memory database when None
            cipher: Fernet cipher used for secure keys
            secure_keys: Keys whose values are encrypted at rest
        """
        self.plugin_name = plugin_name
        self.database_path = database_path or ":memory:"
        self.cipher = cipher
        self.secure_keys = set(secure_keys)
        self.logger = logging.getLogger(f"{__name__}.{plugin_name}")
        self._lock = threading.Lock()

        if self.database_path != ":memory:":
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self.database_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_storage()

    def _init_storage(self):
        """Create the storage table if needed"""
        with self._lock, self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS plugin_storage (
                    plugin_name TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (plugin_name, key)
                )
            """)

    def mark_secure(self, *keys: str):
        """Declare keys whose values must be encrypted at rest"""
        self.secure_keys.update(keys)

    def _encode(self, key: str, value: Any) -> str:
        value_json = json.dumps(value)
        if key in self.secure_keys and self.cipher is not None:
            token = self.cipher.encrypt(value_json.encode()).decode()
            return f"{self._SECURE_PREFIX}{token}"
        return value_json

    def _decode(self, key: str, raw: str) -> Any:
        if raw.startswith(self._SECURE_PREFIX):
            if self.cipher is None:
                raise StorageError(f"No cipher available to decrypt {self.plugin_name}.{key}")
            try:
                raw = self.cipher.decrypt(raw[len(self._SECURE_PREFIX):].encode()).decode()
            except InvalidToken as e:
                raise StorageError(f"Failed to decrypt {self.plugin_name}.{key}") from e
        return json.loads(raw)

    def get_item(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a stored value.

        Args:
            key: Storage key
            default: Value returned when the key is not stored

        Returns:
            Stored value or default
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM plugin_storage WHERE plugin_name = ? AND key = ?",
                (self.plugin_name, key)
            ).fetchone()

        if row is None:
            return default

        try:
            return self._decode(key, row['value'])
        except (StorageError, ValueError) as e:
            self.logger.error(f"Error reading {key}: {e}")
            return default

    def set_item(self, key: str, value: Any):
        """
        Store a value (must be JSON serializable).

        Raises:
            StorageError: If the value cannot be written
        """
        try:
            encoded = self._encode(key, value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for {key} is not JSON serializable: {e}") from e

        try:
            with self._lock, self._conn:
                self._conn.execute("""
                    INSERT OR REPLACE INTO plugin_storage
                    (plugin_name, key, value, updated_at)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                """, (self.plugin_name, key, encoded))
        except sqlite3.Error as e:
            self.logger.error(f"Error storing {key}: {e}")
            raise StorageError(str(e)) from e

    def remove_item(self, key: str) -> bool:
        """Delete a value, returns True if the key existed"""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM plugin_storage WHERE plugin_name = ? AND key = ?",
                (self.plugin_name, key)
            )
        return cursor.rowcount > 0

    def keys(self) -> List[str]:
        """List stored keys"""
        with self._lock:
            rows = self._conn.execute(
                "SELECT key FROM plugin_storage WHERE plugin_name = ? ORDER BY key",
                (self.plugin_name,)
            ).fetchall()
        return [row['key'] for row in rows]

    def close(self):
        with self._lock:
            self._conn.close()
