"""
Configuration: environment defaults plus the optional JSON configuration file.

Environment variables are read after load_dotenv(), so a local .env file can
supply them. Settings resolve as: explicit argument > dataset config > file
defaults > environment default.
"""

import json
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator

from .errors import ConfigurationError
from ..vector.embeddings import (
    DeterministicHashEmbedding,
    IEmbeddingProvider,
    SentenceTransformerEmbedding,
)

load_dotenv()

DEFAULT_CONFIG_PATH = "csv-search_config.json"
DEFAULT_DB_PATH = "data/app.db"
DEFAULT_EMBED_PROVIDER = "hash"  # hash|sentence-transformers
DEFAULT_EMBED_MODEL = "all-MiniLM-L6-v2"
DEFAULT_EMBED_DIM = 384
DEFAULT_BATCH_SIZE = 1000
DEFAULT_TOPK = 10
DEFAULT_REQUEST_TIMEOUT_SEC = 30.0
DEFAULT_ADDR = ":8080"

EMBED_PROVIDERS = ("hash", "sentence-transformers")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def get_db_path() -> str:
    return os.getenv("CSVSEARCH_DB_PATH", "").strip()


def get_config_path() -> str:
    return os.getenv("CSVSEARCH_CONFIG", DEFAULT_CONFIG_PATH).strip() or DEFAULT_CONFIG_PATH


def get_embed_provider() -> str:
    return os.getenv("CSVSEARCH_EMBED_PROVIDER", "").strip().lower()


def get_embed_model() -> str:
    return os.getenv("CSVSEARCH_EMBED_MODEL", "").strip()


def get_embed_dim() -> int:
    return _env_int("CSVSEARCH_EMBED_DIM", DEFAULT_EMBED_DIM)


def get_batch_size() -> int:
    return _env_int("CSVSEARCH_BATCH_SIZE", DEFAULT_BATCH_SIZE)


def get_default_topk() -> int:
    return _env_int("CSVSEARCH_DEFAULT_TOPK", DEFAULT_TOPK)


def get_request_timeout() -> float:
    return _env_float("CSVSEARCH_REQUEST_TIMEOUT_SEC", DEFAULT_REQUEST_TIMEOUT_SEC)


def debug_enabled() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = ""


class EmbeddingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: str = ""
    model: str = ""
    dimension: int = 0
    max_seq_len: int = 0

    @field_validator('provider')
    @classmethod
    def provider_must_be_known(cls, v):
        v = v.strip().lower()
        if v and v not in EMBED_PROVIDERS:
            raise ValueError(f'provider must be one of: {list(EMBED_PROVIDERS)}')
        return v


class DatasetConfig(BaseModel):
    """Ingestion defaults for one named dataset."""

    model_config = ConfigDict(extra="forbid")

    table: str = ""
    csv: str = ""
    batch_size: int = 0
    id_column: str = ""
    text_columns: List[str] = Field(default_factory=list)
    meta_columns: List[str] = Field(default_factory=list)
    lat_column: str = ""
    lng_column: str = ""


class SearchConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_topk: int = 0


class AppConfig(BaseModel):
    """Contents of csv-search_config.json."""

    model_config = ConfigDict(extra="forbid")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    default_dataset: str = ""
    datasets: Dict[str, DatasetConfig] = Field(default_factory=dict)
    search: SearchConfig = Field(default_factory=SearchConfig)

    _base_dir: Optional[str] = PrivateAttr(default=None)

    @property
    def base_dir(self) -> Optional[str]:
        return self._base_dir

    def dataset(self, name: str) -> Optional[DatasetConfig]:
        return self.datasets.get(name)

    def resolve_path(self, value: str) -> str:
        """Resolve a relative path against the config file's directory."""
        if not value:
            return ""
        if os.path.isabs(value) or not self.base_dir:
            return value
        return os.path.normpath(os.path.join(self.base_dir, value))


def load_config(path: Optional[str] = None, required: bool = False) -> Optional[AppConfig]:
    """
    Load and validate the JSON configuration file.

    Args:
        path: File to read; blank means CSVSEARCH_CONFIG or csv-search_config.json
        required: When False a missing file yields None instead of an error

    Returns:
        AppConfig, or None if the file does not exist and is not required

    Raises:
        ConfigurationError: If the file is missing (and required), unreadable,
            not valid JSON, or contains unknown keys
    """
    normalized = (path or "").strip() or get_config_path()
    config_file = Path(normalized)

    if not config_file.is_file():
        if not required:
            return None
        raise ConfigurationError(f"config file not found: {normalized}")

    try:
        content = config_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"read config {normalized}: {e}") from e

    if not content.strip():
        data = {}
    else:
        try:
            data = json.loads(content)
        except ValueError as e:
            raise ConfigurationError(f"decode config: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("decode config: top level must be an object")

    try:
        cfg = AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"decode config: {e}") from e

    cfg._base_dir = str(config_file.parent)
    return cfg


def first_non_empty(*values: Optional[str]) -> str:
    for value in values:
        if value is not None and str(value).strip():
            return value
    return ""


def first_positive(*values: Optional[int]) -> int:
    for value in values:
        if value is not None and value > 0:
            return value
    return 0


def resolve_config_path(cfg: Optional[AppConfig], value: Optional[str]) -> str:
    """Resolve value against the config file's directory; unchanged without a config."""
    if cfg is None:
        return value or ""
    return cfg.resolve_path(value or "")


def resolve_dataset(cfg: Optional[AppConfig], name: Optional[str]) -> Tuple[str, DatasetConfig, bool]:
    """
    Look up a named dataset, falling back to default_dataset.

    Returns:
        (dataset name, its config or an empty one, whether it was configured)
    """
    dataset_name = (name or "").strip()
    if not dataset_name and cfg is not None and cfg.default_dataset:
        dataset_name = cfg.default_dataset
    if cfg is not None and dataset_name:
        dataset = cfg.dataset(dataset_name)
        if dataset is not None:
            return dataset_name, dataset, True
    return dataset_name, DatasetConfig(), False


def resolve_table(dataset_name: str, dataset: DatasetConfig, override: Optional[str] = None) -> str:
    """Namespace for a dataset: override > configured table > dataset name > default."""
    return first_non_empty((override or "").strip(), dataset.table, dataset_name, "default")


def resolve_db_path(cfg: Optional[AppConfig], override: Optional[str] = None) -> str:
    configured = resolve_config_path(cfg, cfg.database.path if cfg is not None else "")
    return first_non_empty((override or "").strip(), configured, get_db_path(), DEFAULT_DB_PATH)


def resolve_default_topk(cfg: Optional[AppConfig], override: Optional[int] = None) -> int:
    configured = cfg.search.default_topk if cfg is not None else 0
    return first_positive(override, configured, get_default_topk(), DEFAULT_TOPK)


def get_embedding_provider(
    cfg: Optional[AppConfig] = None,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    max_seq_len: Optional[int] = None,
) -> IEmbeddingProvider:
    """Build the embedding provider from explicit overrides, the config file and the environment."""
    embedding = cfg.embedding if cfg is not None else EmbeddingConfig()
    provider = first_non_empty((provider or "").strip().lower(), embedding.provider, get_embed_provider(), DEFAULT_EMBED_PROVIDER)

    if provider == "hash":
        dimension = first_positive(embedding.dimension, get_embed_dim(), DEFAULT_EMBED_DIM)
        return DeterministicHashEmbedding(dimension=dimension)
    elif provider == "sentence-transformers":
        configured = embedding.model
        if configured.startswith("."):
            # Local model directory relative to the config file
            configured = resolve_config_path(cfg, configured)
        model = first_non_empty(
            (model or "").strip(),
            configured,
            get_embed_model(),
            DEFAULT_EMBED_MODEL,
        )
        return SentenceTransformerEmbedding(model_name=model, max_seq_len=first_positive(max_seq_len, embedding.max_seq_len) or None)
    else:
        raise ConfigurationError(f"unknown embedding provider {provider!r}")
