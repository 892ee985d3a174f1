"""
SQLite connection handling and schema creation.

Only one live store connection may exist per process; the slot is claimed
by DatasetStore on open and released on close.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Dict, Optional

from .errors import SchemaError, StorageError
from ..util.logging import logger

BUSY_TIMEOUT_SEC = 5.0

_slot_lock = threading.Lock()
_live_owner: Optional[str] = None

RECORDS_TABLE = '''
    CREATE TABLE IF NOT EXISTS records (
        record_id INTEGER PRIMARY KEY,
        dataset TEXT NOT NULL,
        id TEXT NOT NULL,
        data TEXT NOT NULL DEFAULT '{}',
        lat REAL,
        lng REAL,
        hash TEXT,
        UNIQUE (dataset, id)
    )
'''

VECTORS_TABLE = '''
    CREATE TABLE IF NOT EXISTS records_vec (
        dataset TEXT NOT NULL,
        id TEXT NOT NULL,
        embedding BLOB NOT NULL,
        PRIMARY KEY (dataset, id)
    )
'''

LEXICAL_FTS = '''
    CREATE VIRTUAL TABLE IF NOT EXISTS records_fts USING fts5(
        dataset UNINDEXED,
        id UNINDEXED,
        content
    )
'''

# Same columns as the FTS5 table; rowid doubles as the record key
LEXICAL_PLAIN = '''
    CREATE TABLE IF NOT EXISTS records_fts (
        dataset TEXT,
        id TEXT,
        content TEXT
    )
'''

SPATIAL_RTREE = '''
    CREATE VIRTUAL TABLE IF NOT EXISTS records_rtree USING rtree(
        record_rowid,
        min_lat, max_lat,
        min_lng, max_lng
    )
'''

SPATIAL_PLAIN = '''
    CREATE TABLE IF NOT EXISTS records_rtree (
        record_rowid INTEGER PRIMARY KEY,
        min_lat REAL, max_lat REAL,
        min_lng REAL, max_lng REAL
    )
'''


def claim_connection_slot(owner: str) -> None:
    """Reserve the process-wide store slot or fail if it is taken."""
    global _live_owner
    with _slot_lock:
        if _live_owner is not None:
            raise StorageError(f"a store connection is already open ({_live_owner})")
        _live_owner = owner


def release_connection_slot() -> None:
    global _live_owner
    with _slot_lock:
        _live_owner = None


def live_connection_owner() -> Optional[str]:
    with _slot_lock:
        return _live_owner


def open_connection(path: str) -> sqlite3.Connection:
    """
    Open (or create) the SQLite database at path.

    The parent directory is created when needed. The connection runs in
    autocommit mode; transactions are opened explicitly by the store.
    """
    if not path or not str(path).strip():
        raise StorageError("database path must not be empty")

    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = sqlite3.connect(
            path,
            timeout=BUSY_TIMEOUT_SEC,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("SELECT 1").fetchone()
    except sqlite3.Error as e:
        raise StorageError(f"open database {path}: {e}") from e
    return conn


def _create_virtual(conn: sqlite3.Connection, virtual_sql: str, plain_sql: str, module: str) -> bool:
    """Create a virtual table, falling back to a plain table if the module is missing."""
    try:
        conn.execute(virtual_sql)
        return True
    except sqlite3.OperationalError as e:
        if "no such module" not in str(e):
            raise
        logger.warning(f"SQLite build lacks {module}; using a plain table instead")
        conn.execute(plain_sql)
        return False


def apply_schema(conn: sqlite3.Connection) -> Dict[str, bool]:
    """
    Create every relation if it does not exist yet. Idempotent.

    Returns:
        Which virtual table modules were available: {"fts5": ..., "rtree": ...}
    """
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(RECORDS_TABLE)
        conn.execute(VECTORS_TABLE)
        fts = _create_virtual(conn, LEXICAL_FTS, LEXICAL_PLAIN, "fts5")
        rtree = _create_virtual(conn, SPATIAL_RTREE, SPATIAL_PLAIN, "rtree")
    except sqlite3.Error as e:
        raise SchemaError(f"apply schema: {e}") from e

    features = {"fts5": fts, "rtree": rtree}
    logger.log_schema("ready", features)
    return features


def health_check(conn: sqlite3.Connection) -> bool:
    """Check that every required relation exists."""
    try:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    except sqlite3.Error:
        return False

    table_names = {row[0] for row in rows}
    required_tables = ['records', 'records_vec', 'records_fts', 'records_rtree']
    return all(table in table_names for table in required_tables)
