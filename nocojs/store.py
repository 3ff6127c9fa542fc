"""
Persistent placeholder cache backed by one SQLite file per cache directory.
"""

import hashlib
import json
import logging
import os
import sqlite3
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import CacheIOError
from .options import PreviewOptions
from .resolver import ImageSource, LocalFile, RemoteUrl

logger = logging.getLogger(__name__)

CACHE_FILE_NAME = "cache.db"
SCHEMA_VERSION = "1"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS placeholders (
        cache_key TEXT PRIMARY KEY,
        identifier TEXT NOT NULL,
        placeholder_type TEXT NOT NULL,
        placeholder TEXT NOT NULL,
        original_width INTEGER,
        original_height INTEGER,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
)


@dataclass(frozen=True)
class CacheEntry:
    """A computed placeholder plus the bookkeeping stored next to it."""
    placeholder: str
    identifier: str
    placeholder_type: str
    original_width: Optional[int] = None
    original_height: Optional[int] = None
    created_at: float = 0.0


def create_cache_key(source: ImageSource, options: PreviewOptions) -> str:
    """
    Fingerprint an image identity together with the output affecting options.

    Local files are identified by absolute path plus size and mtime, remote
    images by URL. Nothing about the importing file enters the key.
    """
    if isinstance(source, LocalFile):
        identity = {"kind": "file", "path": source.path, "signature": source.signature()}
    elif isinstance(source, RemoteUrl):
        identity = {"kind": "url", "url": source.url}
    else:
        raise ValueError(f"Cannot build a cache key for {source!r}")
    payload = {"schema": SCHEMA_VERSION, "source": identity, "options": options.fingerprint_fields()}
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


class CacheStore:
    """
    Key -> placeholder mapping persisted in ``<directory>/cache.db``.

    One connection per store, guarded by a lock so writes are serialised. An
    unreadable or corrupt file is treated as an empty cache and replaced on
    the next successful write.
    """

    def __init__(self, directory: str):
        self.directory = os.path.abspath(directory)
        self.path = os.path.join(self.directory, CACHE_FILE_NAME)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._opened = False
        self._needs_rebuild = False

    def open(self) -> int:
        """
        Open (or create) the cache file.

        Returns:
            int: Number of cached entries

        Raises:
            CacheIOError: The first time a corrupt or unreadable file is found
        """
        with self._lock:
            return self._open_locked()

    def _open_locked(self) -> int:
        if self._opened:
            return self._count_locked()
        self._opened = True
        try:
            os.makedirs(self.directory, exist_ok=True)
        except OSError as e:
            self._needs_rebuild = True
            raise CacheIOError(f"Failed to create cache directory {self.directory}: {e}", self.path) from e

        conn = None
        try:
            conn = sqlite3.connect(self.path, timeout=30, check_same_thread=False)
            self._setup(conn)
            self._conn = conn
            return self._count_locked()
        except sqlite3.Error as e:
            if conn is not None:
                conn.close()
            self._conn = None
            self._needs_rebuild = True
            raise CacheIOError(f"Cache file {self.path} is unreadable, using an empty cache: {e}", self.path) from e

    @staticmethod
    def _setup(conn: sqlite3.Connection) -> None:
        cursor = conn.cursor()
        for statement in _SCHEMA:
            cursor.execute(statement)
        row = cursor.execute("SELECT value FROM metadata WHERE key = 'version'").fetchone()
        if row is None or row[0] != SCHEMA_VERSION:
            if row is not None:
                logger.info(f"Cache schema changed ({row[0]} -> {SCHEMA_VERSION}), discarding entries")
            cursor.execute("DELETE FROM placeholders")
            cursor.execute(
                "INSERT OR REPLACE INTO metadata (key, value) VALUES ('version', ?)",
                (SCHEMA_VERSION,),
            )
        conn.commit()

    def _ensure_open_locked(self) -> None:
        # An operator may delete the cache file at any time; start over if so
        if self._conn is not None and not os.path.exists(self.path):
            logger.info(f"Cache file {self.path} was removed, recreating it")
            self._conn.close()
            self._conn = None
            self._opened = False
        if not self._opened:
            self._open_locked()

    def _count_locked(self) -> int:
        if self._conn is None:
            return 0
        try:
            return self._conn.execute("SELECT COUNT(*) FROM placeholders").fetchone()[0]
        except sqlite3.Error as e:
            raise CacheIOError(f"Failed to read cache file {self.path}: {e}", self.path) from e

    def __len__(self) -> int:
        with self._lock:
            self._ensure_open_locked()
            return self._count_locked()

    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Look up a cache entry.

        Returns:
            CacheEntry or None when absent
        """
        with self._lock:
            self._ensure_open_locked()
            if self._conn is None:
                return None
            try:
                row = self._conn.execute(
                    """
                    SELECT placeholder, identifier, placeholder_type,
                           original_width, original_height, created_at
                    FROM placeholders
                    WHERE cache_key = ?
                    """,
                    (key,),
                ).fetchone()
            except sqlite3.Error as e:
                raise CacheIOError(f"Failed to read cache file {self.path}: {e}", self.path) from e
        if row is None:
            return None
        return CacheEntry(*row)

    def put(self, key: str, entry: CacheEntry) -> None:
        """Insert or overwrite the entry for a key and commit it."""
        with self._lock:
            try:
                self._ensure_open_locked()
            except CacheIOError as e:
                logger.debug(f"Rebuilding cache after open failure: {e}")
            if self._needs_rebuild or self._conn is None:
                self._rebuild_locked()
            try:
                self._conn.execute(
                    """
                    INSERT INTO placeholders (
                        cache_key, identifier, placeholder_type, placeholder,
                        original_width, original_height, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(cache_key) DO UPDATE SET
                        identifier = excluded.identifier,
                        placeholder_type = excluded.placeholder_type,
                        placeholder = excluded.placeholder,
                        original_width = excluded.original_width,
                        original_height = excluded.original_height,
                        created_at = excluded.created_at
                    """,
                    (
                        key,
                        entry.identifier,
                        entry.placeholder_type,
                        entry.placeholder,
                        entry.original_width,
                        entry.original_height,
                        entry.created_at or time.time(),
                    ),
                )
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise CacheIOError(f"Failed to write cache file {self.path}: {e}", self.path) from e

    def _rebuild_locked(self) -> None:
        """Atomically replace an unusable cache file with a fresh database."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        tmp_path = f"{self.path}.{os.getpid()}.{threading.get_ident()}.tmp"
        try:
            os.makedirs(self.directory, exist_ok=True)
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            tmp_conn = sqlite3.connect(tmp_path)
            try:
                self._setup(tmp_conn)
            finally:
                tmp_conn.close()
            os.replace(tmp_path, self.path)
            # Journal files belonged to the old database
            for suffix in ("-journal", "-wal", "-shm"):
                if os.path.exists(self.path + suffix):
                    os.remove(self.path + suffix)
            self._conn = sqlite3.connect(self.path, timeout=30, check_same_thread=False)
        except (OSError, sqlite3.Error) as e:
            raise CacheIOError(f"Failed to rebuild cache file {self.path}: {e}", self.path) from e
        self._needs_rebuild = False
        logger.info(f"Rebuilt cache file {self.path}")

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
            self._conn = None
            self._opened = False
            self._needs_rebuild = False


_stores: Dict[str, CacheStore] = {}
_stores_lock = threading.Lock()


def open_store(directory: str) -> CacheStore:
    """Return the process-wide store for a cache directory (opened lazily)."""
    directory = os.path.abspath(directory)
    with _stores_lock:
        store = _stores.get(directory)
        if store is None:
            store = _stores[directory] = CacheStore(directory)
        return store


def close_all_stores() -> None:
    """Close every open store; later open_store calls start fresh."""
    with _stores_lock:
        stores = list(_stores.values())
        _stores.clear()
    for store in stores:
        store.close()
