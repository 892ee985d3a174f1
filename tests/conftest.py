"""
Shared fixtures: temporary databases and a deterministic encoder.
"""

import csv

import pytest

from csvsearch.core import db as db_module
from csvsearch.core.store import DatasetStore
from csvsearch.vector.embeddings import DeterministicHashEmbedding, SerializedEncoder

TEST_DIMENSION = 32


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests away from the developer's environment and config files."""
    for name in (
        "CSVSEARCH_DB_PATH",
        "CSVSEARCH_CONFIG",
        "CSVSEARCH_EMBED_PROVIDER",
        "CSVSEARCH_EMBED_MODEL",
        "CSVSEARCH_EMBED_DIM",
        "CSVSEARCH_BATCH_SIZE",
        "CSVSEARCH_DEFAULT_TOPK",
        "CSVSEARCH_REQUEST_TIMEOUT_SEC",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    # A test that leaked an open store must not break the next one
    db_module.release_connection_slot()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "data" / "test.db")


@pytest.fixture
def store(db_path):
    """Store with the schema applied; closed after the test."""
    s = DatasetStore(db_path)
    s.ensure_schema()
    yield s
    s.close()


@pytest.fixture
def provider():
    return DeterministicHashEmbedding(dimension=TEST_DIMENSION)


@pytest.fixture
def encoder(provider):
    return SerializedEncoder(provider)


@pytest.fixture
def write_csv(tmp_path):
    """Write rows (header first) to a CSV file and return its path."""
    def _write(rows, name="input.csv"):
        path = tmp_path / name
        with open(path, "w", newline="", encoding="utf-8") as handle:
            csv.writer(handle).writerows(rows)
        return str(path)
    return _write
