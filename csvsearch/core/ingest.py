"""
Ingestion pipeline: CSV rows -> fingerprint -> (skip | embed + upsert).

Each row goes through Parse -> Fingerprint -> {Skip | Embed + Apply}. Rows
whose fingerprint matches the stored one cost neither an encoder call nor a
write, which keeps repeated ingestion of mostly-unchanged files cheap.

Changed rows are parsed and encoded first, then written in one transaction
per batch, so the store is never held across an encoder call.

The run is fail-fast: the first RecordError, EncodingError or StorageError
discards the pending batch and propagates with committed_rows set, leaving
earlier batches durable.
"""

import csv
import hashlib
import math
import re
import time
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence

import numpy as np

from .columns import resolve_columns
from .context import OperationContext
from .errors import ConfigurationError, CSVSearchError, EncodingError, RecordError
from .schema import ColumnConfig, IngestSummary, ParsedRecord, ResolvedColumns
from .store import DatasetStore
from ..vector.embeddings import SerializedEncoder
from ..util.logging import logger

DEFAULT_BATCH_SIZE = 1000
DEFAULT_NAMESPACE = "default"

# Plain decimal or exponent notation; float() alone would also take "3_5"
COORDINATE_PATTERN = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)


class PreparedRow(NamedTuple):
    """A changed row, parsed and encoded, waiting for its batch."""

    record: ParsedRecord
    fingerprint: str
    vector: Optional[np.ndarray]


def normalize_namespace(namespace: Optional[str]) -> str:
    cleaned = (namespace or "").strip()
    return cleaned or DEFAULT_NAMESPACE


def format_coordinate(value: Optional[float]) -> str:
    """Shortest positional form of a coordinate, or "" when absent."""
    if value is None:
        return ""
    return np.format_float_positional(value, trim="-")


def parse_coordinate(value: str, column: str, row: Optional[int] = None) -> Optional[float]:
    """Parse a latitude/longitude cell. Blank means absent."""
    if not value.strip():
        return None
    if not COORDINATE_PATTERN.fullmatch(value.strip()):
        raise RecordError(f"{column}: invalid number {value!r}", row=row)
    parsed = float(value)
    if not math.isfinite(parsed):
        raise RecordError(f"{column}: {value!r} is not a finite number", row=row)
    return parsed


def parse_row(values: Sequence[str], columns: ResolvedColumns, row: Optional[int] = None) -> ParsedRecord:
    """
    Extract a record from one CSV row.

    Cells beyond the end of a short row read as empty strings.

    Raises:
        RecordError: If the identifier is missing/blank or a coordinate is malformed
    """
    if columns.id.index >= len(values):
        raise RecordError("id column missing in record", row=row)

    def cell(index: int) -> str:
        if index < 0 or index >= len(values):
            return ""
        return (values[index] or "").strip()

    record_id = cell(columns.id.index)
    if not record_id:
        raise RecordError("id column is empty", row=row)

    metadata = {column.name: cell(column.index) for column in columns.metadata}
    text_parts = [cell(column.index) for column in columns.text if cell(column.index)]

    lat = lng = None
    if columns.lat is not None:
        lat = parse_coordinate(cell(columns.lat.index), columns.lat.name, row)
    if columns.lng is not None:
        lng = parse_coordinate(cell(columns.lng.index), columns.lng.name, row)

    return ParsedRecord(id=record_id, metadata=metadata, text_parts=text_parts, lat=lat, lng=lng)


def fingerprint_record(namespace: str, record: ParsedRecord) -> str:
    """SHA-256 over namespace, id, text, sorted metadata and coordinates."""
    parts = [namespace, record.id]
    if record.text_parts:
        parts.append(record.text)
    for key in sorted(record.metadata):
        parts.append(f"{key}={record.metadata[key]}")
    parts.append(format_coordinate(record.lat))
    parts.append(format_coordinate(record.lng))
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def read_csv(path: str) -> Iterator[List[str]]:
    """Yield rows from a UTF-8 CSV file (BOM tolerated, ragged rows allowed)."""
    with open(path, newline="", encoding="utf-8-sig") as handle:
        for values in csv.reader(handle):
            if not values:
                continue
            yield values


class IngestionPipeline:
    """
    Applies CSV rows to the dataset store.

    The store and encoder are owned by the caller and injected here so the
    same instances can be shared with the retrieval side.
    """

    def __init__(self, store: DatasetStore, encoder: SerializedEncoder):
        self.store = store
        self.encoder = encoder

    def run(
        self,
        namespace: str,
        rows: Iterable[Sequence[str]],
        columns: ColumnConfig,
        batch_size: int = DEFAULT_BATCH_SIZE,
        context: Optional[OperationContext] = None,
    ) -> IngestSummary:
        """
        Ingest rows (header first) into namespace.

        Args:
            namespace: Target namespace; blank means "default"
            rows: Header row followed by data rows
            columns: Column roles, resolved once against the header
            batch_size: Written rows per committed transaction
            context: Optional cancellation/deadline signal

        Returns:
            IngestSummary with row counters

        Raises:
            ConfigurationError: Before any row when columns cannot be resolved
            RecordError, EncodingError, StorageError: At the failing row,
                with committed_rows set
        """
        namespace = normalize_namespace(namespace)
        if batch_size is None or batch_size <= 0:
            batch_size = DEFAULT_BATCH_SIZE

        rows_iter = iter(rows)
        try:
            header = next(rows_iter)
        except StopIteration:
            raise ConfigurationError("input has no header row") from None
        except csv.Error as e:
            raise ConfigurationError(f"read header: {e}") from e
        resolved = resolve_columns(header, columns)

        summary = IngestSummary(namespace=namespace)
        committed = 0
        pending: List[PreparedRow] = []
        pending_fingerprints: Dict[str, str] = {}
        line = 1  # header is row 1
        started = time.time()

        try:
            while True:
                try:
                    values = next(rows_iter)
                except StopIteration:
                    break
                except csv.Error as e:
                    raise RecordError(f"read failed: {e}", row=line + 1) from e
                line += 1
                summary.rows_read += 1

                if context is not None:
                    context.check("ingest")

                record = parse_row(values, resolved, row=line)
                fingerprint = fingerprint_record(namespace, record)
                stored = pending_fingerprints.get(record.id)
                if stored is None:
                    stored = self.store.lookup_fingerprint(namespace, record.id)
                if stored == fingerprint:
                    summary.rows_skipped += 1
                    continue

                # Encoded outside the batch so readers are never blocked on the encoder
                vector = self._embed(record, line)
                pending.append(PreparedRow(record, fingerprint, vector))
                pending_fingerprints[record.id] = fingerprint
                summary.rows_written += 1
                if vector is not None:
                    summary.embeddings_written += 1

                if len(pending) >= batch_size:
                    committed = self._flush(namespace, pending, summary, committed)
                    pending = []
                    pending_fingerprints.clear()

            if pending:
                committed = self._flush(namespace, pending, summary, committed)
        except CSVSearchError as e:
            e.committed_rows = committed
            logger.log_ingest_run(namespace, "failed", {"error": str(e), "committed_rows": committed})
            raise
        finally:
            # No-op unless a flush failed part way
            self.store.abort()

        details = summary.to_dict()
        details["duration_ms"] = round((time.time() - started) * 1000, 2)
        logger.log_ingest_run(namespace, "success", details)
        return summary

    def _flush(self, namespace: str, prepared: List[PreparedRow], summary: IngestSummary,
               committed: int) -> int:
        """Apply prepared rows in one transaction. Returns the new committed total."""
        self.store.begin_batch()
        for row in prepared:
            self._apply(namespace, row.record, row.fingerprint, row.vector)
        self.store.commit_batch()

        committed += len(prepared)
        summary.batches_committed += 1
        logger.log_ingest_batch(namespace, summary.batches_committed, len(prepared), committed)
        return committed

    def run_csv(
        self,
        namespace: str,
        csv_path: str,
        columns: ColumnConfig,
        batch_size: int = DEFAULT_BATCH_SIZE,
        context: Optional[OperationContext] = None,
    ) -> IngestSummary:
        """Ingest a CSV file from disk."""
        if not csv_path or not str(csv_path).strip():
            raise ConfigurationError("csv path is required")
        if not Path(csv_path).is_file():
            raise ConfigurationError(f"csv file not found: {csv_path}")
        return self.run(namespace, read_csv(csv_path), columns, batch_size=batch_size, context=context)

    def _embed(self, record: ParsedRecord, line: int) -> Optional[np.ndarray]:
        text = record.text
        if not text.strip():
            return None
        try:
            return self.encoder.encode(text)
        except EncodingError as e:
            raise EncodingError(str(e), row=line) from e

    def _apply(self, namespace: str, record: ParsedRecord, fingerprint: str,
               vector: Optional[np.ndarray]) -> None:
        """Write all four relations for one record inside the open batch."""
        self.store.upsert_record(namespace, record, fingerprint)

        if record.text.strip():
            self.store.upsert_lexical(namespace, record.id, record.text)
        else:
            self.store.remove_lexical(namespace, record.id)

        if record.has_point:
            self.store.upsert_spatial(namespace, record.id, record.lat, record.lng)
        else:
            self.store.remove_spatial(namespace, record.id)

        if vector is not None:
            self.store.upsert_embedding(namespace, record.id, vector)
        else:
            self.store.remove_embedding(namespace, record.id)
