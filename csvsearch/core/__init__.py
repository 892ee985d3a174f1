"""
Synchronization and retrieval core: store, column resolution, ingestion, search.
"""

from .errors import (
    CSVSearchError,
    ConfigurationError,
    RecordError,
    EncodingError,
    FormatError,
    StorageError,
    SchemaError,
    OperationCancelled,
    DeadlineExceeded,
    QueryError,
)

__all__ = [
    'CSVSearchError',
    'ConfigurationError',
    'RecordError',
    'EncodingError',
    'FormatError',
    'StorageError',
    'SchemaError',
    'OperationCancelled',
    'DeadlineExceeded',
    'QueryError',
]
