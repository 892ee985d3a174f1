"""
Dataset store: transactional access to the four relations of a namespace.

    records        primary record, metadata document, lat/lng, fingerprint
    records_vec    float32 embedding blob
    records_fts    concatenated embeddable text (full-text recall)
    records_rtree  degenerate point rectangle (spatial range queries)

Every mutation must run inside an open batch. A batch owns the store lock
from begin_batch() until commit_batch()/abort(), so readers on other
threads wait for the batch to commit and never see half-applied records.
A scan given an OperationContext stops waiting at its deadline.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .db import (
    apply_schema,
    claim_connection_slot,
    health_check,
    open_connection,
    release_connection_slot,
)
from .context import OperationContext
from .errors import StorageError
from .schema import ParsedRecord, StoredRecord
from ..vector.codec import decode_vector, encode_vector
from ..vector.types import StoredEmbedding
from ..util.logging import logger

# Longest wait between deadline/cancel checks while a reader waits for a batch
LOCK_POLL_SEC = 0.05


class DatasetStore:
    """Owner of the single live SQLite connection."""

    def __init__(self, path: str):
        claim_connection_slot(path)
        try:
            self._conn = open_connection(path)
        except Exception:
            release_connection_slot()
            raise

        self.path = path
        self.features: Dict[str, bool] = {}
        self._lock = threading.RLock()
        self._batch_owner: Optional[int] = None
        self._closed = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Roll back any open batch, close the connection and free the slot."""
        if self._closed:
            return
        with self._lock:
            if self._batch_owner is not None:
                self.abort()
            try:
                self._conn.close()
            finally:
                self._closed = True
                release_connection_slot()

    def __enter__(self) -> "DatasetStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def ensure_schema(self) -> Dict[str, bool]:
        """Create all relations if missing. Safe to call repeatedly."""
        with self._lock:
            self._check_open()
            self.features = apply_schema(self._conn)
            return self.features

    def health_check(self) -> bool:
        with self._lock:
            if self._closed:
                return False
            return health_check(self._conn)

    # =========================================================================
    # Batches
    # =========================================================================

    @property
    def in_batch(self) -> bool:
        return self._batch_owner is not None

    def begin_batch(self, timeout: Optional[float] = None) -> None:
        """
        Open a write transaction and take ownership of the store.

        Args:
            timeout: Seconds to wait for another thread's batch to finish
                (None waits indefinitely)
        """
        acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise StorageError("timed out waiting for the store")

        if self._batch_owner is not None:
            self._lock.release()
            raise StorageError("a batch is already open")

        try:
            self._check_open()
            self._conn.execute("BEGIN")
        except sqlite3.Error as e:
            self._lock.release()
            raise StorageError(f"begin batch: {e}") from e
        except StorageError:
            self._lock.release()
            raise
        self._batch_owner = threading.get_ident()

    def commit_batch(self) -> None:
        """Commit the open batch and release the store."""
        self._require_batch()
        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback_quietly()
            raise StorageError(f"commit batch: {e}") from e
        finally:
            self._end_batch()

    def abort(self) -> None:
        """Roll back the open batch, if any. Committed batches are untouched."""
        if self._batch_owner is None or self._batch_owner != threading.get_ident():
            return
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            raise StorageError(f"rollback batch: {e}") from e
        finally:
            self._end_batch()

    def _end_batch(self) -> None:
        self._batch_owner = None
        self._lock.release()

    def _rollback_quietly(self) -> None:
        if self._conn.in_transaction:
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error(f"Rollback after failed commit also failed: {e}")

    def _require_batch(self) -> None:
        if self._batch_owner is None:
            raise StorageError("mutation requires an open batch")
        if self._batch_owner != threading.get_ident():
            raise StorageError("batch is owned by another thread")

    @contextmanager
    def _read_lock(self, context: Optional[OperationContext] = None, operation: str = "read"):
        """
        Hold the store lock for a read.

        With a context the wait is bounded: DeadlineExceeded or
        OperationCancelled is raised instead of waiting out an open batch.
        """
        if context is None:
            self._lock.acquire()
        else:
            while True:
                context.check(operation)
                remaining = context.remaining()
                wait = LOCK_POLL_SEC if remaining is None else min(remaining, LOCK_POLL_SEC)
                if self._lock.acquire(timeout=wait):
                    break
        try:
            yield
        finally:
            self._lock.release()

    def _check_open(self) -> None:
        if self._closed:
            raise StorageError("store is closed")

    def _execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        self._check_open()
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e

    # =========================================================================
    # Mutations (inside a batch)
    # =========================================================================

    def lookup_fingerprint(self, namespace: str, record_id: str) -> Optional[str]:
        """Return the stored fingerprint for (namespace, id), if any."""
        with self._lock:
            row = self._execute(
                "SELECT hash FROM records WHERE dataset = ? AND id = ?",
                (namespace, record_id),
            ).fetchone()
        if row is None:
            return None
        return row[0]

    def upsert_record(self, namespace: str, record: ParsedRecord, fingerprint: str) -> int:
        """
        Insert or replace the primary record in place.

        Returns:
            The record's row key, stable across updates
        """
        self._require_batch()
        data = json.dumps(record.metadata, ensure_ascii=False, sort_keys=True)
        self._execute(
            '''
            INSERT INTO records (dataset, id, data, lat, lng, hash)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (dataset, id) DO UPDATE SET
                data = excluded.data,
                lat = excluded.lat,
                lng = excluded.lng,
                hash = excluded.hash
            ''',
            (namespace, record.id, data, record.lat, record.lng, fingerprint),
        )
        return self._record_rowid(namespace, record.id)

    def upsert_embedding(self, namespace: str, record_id: str, vector) -> None:
        self._require_batch()
        self._execute(
            '''
            INSERT INTO records_vec (dataset, id, embedding) VALUES (?, ?, ?)
            ON CONFLICT (dataset, id) DO UPDATE SET embedding = excluded.embedding
            ''',
            (namespace, record_id, encode_vector(vector)),
        )

    def remove_embedding(self, namespace: str, record_id: str) -> None:
        self._require_batch()
        self._execute(
            "DELETE FROM records_vec WHERE dataset = ? AND id = ?",
            (namespace, record_id),
        )

    def upsert_lexical(self, namespace: str, record_id: str, text: str) -> None:
        """Replace the full-text entry (delete, then insert)."""
        self._require_batch()
        rowid = self._record_rowid(namespace, record_id)
        self._execute("DELETE FROM records_fts WHERE rowid = ?", (rowid,))
        self._execute(
            "INSERT INTO records_fts (rowid, dataset, id, content) VALUES (?, ?, ?, ?)",
            (rowid, namespace, record_id, text),
        )

    def remove_lexical(self, namespace: str, record_id: str) -> None:
        self._require_batch()
        rowid = self._record_rowid(namespace, record_id, required=False)
        if rowid is not None:
            self._execute("DELETE FROM records_fts WHERE rowid = ?", (rowid,))

    def upsert_spatial(self, namespace: str, record_id: str, lat: float, lng: float) -> None:
        """Store the record's point as a degenerate rectangle."""
        self._require_batch()
        rowid = self._record_rowid(namespace, record_id)
        self._execute("DELETE FROM records_rtree WHERE record_rowid = ?", (rowid,))
        self._execute(
            "INSERT INTO records_rtree VALUES (?, ?, ?, ?, ?)",
            (rowid, lat, lat, lng, lng),
        )

    def remove_spatial(self, namespace: str, record_id: str) -> None:
        self._require_batch()
        rowid = self._record_rowid(namespace, record_id, required=False)
        if rowid is not None:
            self._execute("DELETE FROM records_rtree WHERE record_rowid = ?", (rowid,))

    def _record_rowid(self, namespace: str, record_id: str, required: bool = True) -> Optional[int]:
        row = self._execute(
            "SELECT record_id FROM records WHERE dataset = ? AND id = ?",
            (namespace, record_id),
        ).fetchone()
        if row is None:
            if required:
                raise StorageError(f"no record {record_id!r} in {namespace!r}")
            return None
        return row[0]

    # =========================================================================
    # Reads
    # =========================================================================

    def scan_embeddings(self, namespace: str,
                        context: Optional[OperationContext] = None) -> Iterator[StoredEmbedding]:
        """
        Lazily yield every record of the namespace that has an embedding.

        The store lock is held while the iterator is live; consume it fully
        or close it. When a context is given, waiting for an open batch
        stops at its deadline or cancellation.
        """
        with self._read_lock(context, "search"):
            cursor = self._execute(
                '''
                SELECT r.id, r.data, r.lat, r.lng, v.embedding
                FROM records AS r
                INNER JOIN records_vec AS v
                    ON r.dataset = v.dataset AND r.id = v.id
                WHERE r.dataset = ?
                ''',
                (namespace,),
            )
            try:
                for record_id, data, lat, lng, blob in cursor:
                    yield StoredEmbedding(
                        id=record_id,
                        metadata=self._decode_metadata(record_id, data),
                        lat=lat,
                        lng=lng,
                        blob=bytes(blob),
                    )
            except sqlite3.Error as e:
                raise StorageError(f"scan {namespace!r}: {e}") from e
            finally:
                cursor.close()

    def get_record(self, namespace: str, record_id: str) -> Optional[StoredRecord]:
        with self._lock:
            row = self._execute(
                "SELECT data, lat, lng, hash FROM records WHERE dataset = ? AND id = ?",
                (namespace, record_id),
            ).fetchone()
        if row is None:
            return None
        data, lat, lng, fingerprint = row
        return StoredRecord(
            namespace=namespace,
            id=record_id,
            metadata=self._decode_metadata(record_id, data),
            lat=lat,
            lng=lng,
            fingerprint=fingerprint,
        )

    def get_embedding(self, namespace: str, record_id: str) -> Optional[np.ndarray]:
        with self._lock:
            row = self._execute(
                "SELECT embedding FROM records_vec WHERE dataset = ? AND id = ?",
                (namespace, record_id),
            ).fetchone()
        if row is None:
            return None
        return decode_vector(bytes(row[0]))

    def get_lexical(self, namespace: str, record_id: str) -> Optional[str]:
        with self._lock:
            row = self._execute(
                '''
                SELECT f.content FROM records_fts AS f
                INNER JOIN records AS r ON r.record_id = f.rowid
                WHERE r.dataset = ? AND r.id = ?
                ''',
                (namespace, record_id),
            ).fetchone()
        return row[0] if row else None

    def get_spatial(self, namespace: str, record_id: str) -> Optional[Tuple[float, float, float, float]]:
        """Return (min_lat, max_lat, min_lng, max_lng) for the record's point."""
        with self._lock:
            row = self._execute(
                '''
                SELECT s.min_lat, s.max_lat, s.min_lng, s.max_lng
                FROM records_rtree AS s
                INNER JOIN records AS r ON r.record_id = s.record_rowid
                WHERE r.dataset = ? AND r.id = ?
                ''',
                (namespace, record_id),
            ).fetchone()
        return tuple(row) if row else None

    def find_within(self, namespace: str, min_lat: float, max_lat: float,
                    min_lng: float, max_lng: float) -> List[str]:
        """Ids of records whose point lies inside the given box, sorted."""
        with self._lock:
            rows = self._execute(
                '''
                SELECT r.id FROM records_rtree AS s
                INNER JOIN records AS r ON r.record_id = s.record_rowid
                WHERE r.dataset = ?
                  AND s.min_lat >= ? AND s.max_lat <= ?
                  AND s.min_lng >= ? AND s.max_lng <= ?
                ORDER BY r.id
                ''',
                (namespace, min_lat, max_lat, min_lng, max_lng),
            ).fetchall()
        return [row[0] for row in rows]

    def count_records(self, namespace: str) -> Dict[str, int]:
        """Row counts per relation for one namespace."""
        with self._lock:
            def scalar(sql: str) -> int:
                return self._execute(sql, (namespace,)).fetchone()[0]

            return {
                "records": scalar("SELECT COUNT(*) FROM records WHERE dataset = ?"),
                "embeddings": scalar("SELECT COUNT(*) FROM records_vec WHERE dataset = ?"),
                "lexical": scalar(
                    "SELECT COUNT(*) FROM records_fts AS f "
                    "INNER JOIN records AS r ON r.record_id = f.rowid WHERE r.dataset = ?"
                ),
                "spatial": scalar(
                    "SELECT COUNT(*) FROM records_rtree AS s "
                    "INNER JOIN records AS r ON r.record_id = s.record_rowid WHERE r.dataset = ?"
                ),
            }

    @staticmethod
    def _decode_metadata(record_id: str, data: Optional[str]) -> Dict[str, str]:
        if not data:
            return {}
        try:
            return json.loads(data)
        except ValueError as e:
            raise StorageError(f"decode metadata for {record_id}: {e}") from e


