"""
Structured logging for schema, ingestion and search operations.
"""

import logging
import os
from typing import Any, Dict


def _default_level() -> int:
    if os.getenv("DEBUG", "false").lower() == "true":
        return logging.DEBUG
    level_name = os.getenv("CSVSEARCH_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


class StructuredLogger:
    """Structured logger for store, ingest and search operations."""

    def __init__(self, name: str = "csvsearch"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(_default_level())

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_schema(self, status: str, details: Dict[str, Any] = None):
        """Log schema creation."""
        self.log_operation("store.schema", status, details)

    def log_ingest_batch(self, namespace: str, batch_number: int, rows: int, committed_total: int):
        """Log a committed ingestion batch."""
        self.log_operation("ingest.batch", "committed", {
            "namespace": namespace,
            "batch": batch_number,
            "rows": rows,
            "committed_total": committed_total,
        })

    def log_ingest_run(self, namespace: str, status: str, details: Dict[str, Any] = None):
        """Log the outcome of an ingestion run."""
        log_details = {"namespace": namespace}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.ERROR
        self.log_operation("ingest.run", status, log_details, level=level)

    def log_search(self, namespace: str, candidates: int, returned: int, duration_ms: float, filters: int = 0):
        """Log a completed retrieval."""
        self.log_operation("search.query", "success", {
            "namespace": namespace,
            "candidates": candidates,
            "returned": returned,
            "filters": filters,
            "duration_ms": round(duration_ms, 2),
        }, level=logging.DEBUG)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
