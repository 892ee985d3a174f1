"""
High level facade used by the command line and the HTTP surface.

CSVSearchService owns the store and the encoder when it creates them and
releases them on close(); instances passed in by the caller are borrowed and
left open.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .columns import WILDCARD
from .config import (
    AppConfig,
    first_non_empty,
    first_positive,
    get_batch_size,
    get_embedding_provider,
    load_config,
    resolve_config_path,
    resolve_dataset,
    resolve_db_path,
    resolve_default_topk,
    resolve_table,
)
from .context import OperationContext
from .errors import ConfigurationError, QueryError, StorageError
from .ingest import IngestionPipeline
from .schema import ColumnConfig, Filter, IngestSummary
from .search_service import RetrievalEngine
from .store import DatasetStore
from ..vector.embeddings import IEmbeddingProvider, SerializedEncoder
from ..vector.types import QueryResult
from ..util.logging import logger
from .. import VERSION


@dataclass
class IngestOptions:
    """CSV ingestion request for a logical dataset. Blank fields use config defaults."""

    dataset: str = ""
    table: str = ""
    csv_path: str = ""
    batch_size: int = 0
    id_column: str = ""
    text_columns: List[str] = field(default_factory=list)
    metadata_columns: List[str] = field(default_factory=list)
    lat_column: str = ""
    lng_column: str = ""


@dataclass
class SearchOptions:
    query: str
    dataset: str = ""
    table: str = ""
    top_k: int = 0
    filters: List[Filter] = field(default_factory=list)


class CSVSearchService:
    """Wires configuration, the dataset store and the shared encoder together."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        config_required: bool = False,
        db_path: Optional[str] = None,
        store: Optional[DatasetStore] = None,
        encoder: Optional[SerializedEncoder] = None,
        provider: Optional[IEmbeddingProvider] = None,
        config: Optional[AppConfig] = None,
    ):
        self.config = config if config is not None else load_config(config_path, required=config_required)

        if store is not None:
            self.store = store
            self._owns_store = False
        else:
            self.store = DatasetStore(resolve_db_path(self.config, db_path))
            self._owns_store = True

        self._encoder = encoder
        self._provider = provider
        self._db_ready = False

    @property
    def db_path(self) -> str:
        return self.store.path

    @property
    def encoder(self) -> SerializedEncoder:
        """Shared encoder, created from configuration on first use."""
        if self._encoder is None:
            provider = self._provider or get_embedding_provider(self.config)
            self._encoder = SerializedEncoder(provider)
        return self._encoder

    def init_database(self) -> Dict[str, bool]:
        """Create the schema. Safe to call repeatedly."""
        features = self.store.ensure_schema()
        self._db_ready = True
        return features

    def _ensure_database(self) -> None:
        if not self._db_ready:
            self.init_database()

    def resolve_namespace(self, dataset: Optional[str] = None, table: Optional[str] = None) -> str:
        dataset_name, dataset_cfg, _ = resolve_dataset(self.config, dataset)
        return resolve_table(dataset_name, dataset_cfg, table)

    def dataset_csv(self, dataset: Optional[str] = None) -> str:
        """Configured CSV path for a dataset, resolved against the config file."""
        _, dataset_cfg, found = resolve_dataset(self.config, dataset)
        if not found or not dataset_cfg.csv.strip():
            return ""
        return resolve_config_path(self.config, dataset_cfg.csv)

    def default_top_k(self, override: Optional[int] = None) -> int:
        return resolve_default_topk(self.config, override)

    def ingest(self, opts: IngestOptions, context: Optional[OperationContext] = None) -> IngestSummary:
        """
        Ingest a CSV file into the namespace of a dataset.

        Explicit options win over the dataset's configuration; metadata
        columns default to every column and the id column to "id".

        Raises:
            ConfigurationError: If no CSV path can be resolved or columns are invalid
            RecordError, EncodingError, StorageError: From the ingestion run
        """
        dataset_name, dataset_cfg, has_dataset = resolve_dataset(self.config, opts.dataset)
        namespace = resolve_table(dataset_name, dataset_cfg, opts.table)

        csv_path = opts.csv_path.strip()
        if not csv_path and has_dataset:
            csv_path = dataset_cfg.csv
        csv_path = resolve_config_path(self.config, csv_path)
        if not csv_path:
            raise ConfigurationError("csv path is required")

        text_columns = list(opts.text_columns)
        if not text_columns and has_dataset:
            text_columns = list(dataset_cfg.text_columns)

        metadata_columns = list(opts.metadata_columns)
        if not metadata_columns:
            metadata_columns = list(dataset_cfg.meta_columns) if has_dataset else []
        if not metadata_columns:
            metadata_columns = [WILDCARD]

        columns = ColumnConfig(
            id=first_non_empty(opts.id_column.strip(), dataset_cfg.id_column, "id"),
            text=text_columns,
            metadata=metadata_columns,
            lat=first_non_empty(opts.lat_column.strip(), dataset_cfg.lat_column),
            lng=first_non_empty(opts.lng_column.strip(), dataset_cfg.lng_column),
        )
        batch_size = first_positive(opts.batch_size, dataset_cfg.batch_size, get_batch_size())

        self._ensure_database()
        pipeline = IngestionPipeline(self.store, self.encoder)
        logger.info(f"Ingesting {csv_path} into namespace {namespace!r} (batch size {batch_size})")
        return pipeline.run_csv(namespace, csv_path, columns, batch_size=batch_size, context=context)

    def search(self, opts: SearchOptions, context: Optional[OperationContext] = None) -> List[QueryResult]:
        """
        Encode the query and rank the namespace's records against it.

        Raises:
            QueryError: If the query text is blank
            EncodingError: If the query cannot be encoded
            DeadlineExceeded, OperationCancelled: From the context
        """
        if not opts.query or not opts.query.strip():
            raise QueryError("query is required")

        namespace = self.resolve_namespace(opts.dataset, opts.table)
        limit = self.default_top_k(opts.top_k)
        filters = [
            Filter(field=f.field.strip(), value=f.value)
            for f in opts.filters
            if f.field and f.field.strip()
        ]

        # Encode before touching the store; the encoder lock is released here
        query_vector = self.encoder.encode(opts.query)
        if context is not None:
            context.check("search")

        self._ensure_database()
        engine = RetrievalEngine(self.store)
        return engine.search(namespace, query_vector, limit=limit, filters=filters, context=context)

    def health(self) -> Dict[str, object]:
        healthy = self.store.health_check()
        return {
            "status": "healthy" if healthy else "unhealthy",
            "version": VERSION,
            "db_ok": healthy,
        }

    def close(self) -> None:
        """Release resources created by this service."""
        if self._owns_store and not self.store.closed:
            try:
                self.store.close()
            except StorageError as e:
                logger.error(f"Failed to close store: {e}")
                raise

    def __enter__(self) -> "CSVSearchService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
