"""
csv-search: CSV ingestion into SQLite with fingerprint-based change detection
and exhaustive semantic search.
"""

VERSION = "1.0.0"
__version__ = VERSION
