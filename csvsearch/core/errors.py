"""
Error taxonomy for ingestion, storage and retrieval.

Every error raised by the core derives from CSVSearchError so outer layers
(command line, HTTP surface) can translate them in one place.
"""

from typing import Optional


class CSVSearchError(Exception):
    """Base exception for all csv-search errors.

    committed_rows is filled in by the ingestion pipeline when a run aborts,
    so callers can see how much of the input is already durable.
    """

    def __init__(self, message: str, committed_rows: Optional[int] = None):
        super().__init__(message)
        self.committed_rows = committed_rows


class ConfigurationError(CSVSearchError):
    """
    Invalid or unresolvable configuration.

    Raised when:
    - The identifier column is missing or not present in the header
    - An explicitly named column does not match any header column
    - The JSON configuration file is malformed or has unknown keys
    """
    pass


class RecordError(CSVSearchError):
    """
    A single input row cannot be ingested.

    Raised when:
    - The identifier cell is missing or blank
    - A latitude/longitude cell is non-blank but not a number
    """

    def __init__(self, message: str, row: Optional[int] = None, committed_rows: Optional[int] = None):
        if row is not None:
            message = f"row {row}: {message}"
        super().__init__(message, committed_rows=committed_rows)
        self.row = row


class EncodingError(CSVSearchError):
    """The embedding provider failed to produce a vector for some text."""

    def __init__(self, message: str, row: Optional[int] = None, committed_rows: Optional[int] = None):
        if row is not None:
            message = f"row {row}: {message}"
        super().__init__(message, committed_rows=committed_rows)
        self.row = row


class FormatError(CSVSearchError):
    """A stored vector blob is not a whole number of float32 values."""
    pass


class StorageError(CSVSearchError):
    """
    Underlying storage failure.

    Raised when:
    - A SQLite statement fails
    - A mutation is attempted outside an open batch
    - A second store connection is opened while one is live
    """
    pass


class SchemaError(StorageError):
    """Schema creation or migration failed."""
    pass


class OperationCancelled(CSVSearchError):
    """The caller cancelled a long-running operation."""
    pass


class DeadlineExceeded(CSVSearchError, TimeoutError):
    """The operation ran past its deadline. Safe to retry."""
    pass


class QueryError(CSVSearchError):
    """A search request is malformed (blank query, bad filter syntax)."""
    pass
