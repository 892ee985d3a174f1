"""
Request and response models for the HTTP query surface.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SearchRequest(BaseModel):
    """POST /search body. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    query: str = ""
    dataset: str = ""
    topk: int = 0
    filters: Dict[str, str] = Field(default_factory=dict)
    filter: List[str] = Field(default_factory=list)

    @field_validator('query', 'dataset')
    @classmethod
    def strip_whitespace(cls, v):
        return v.strip()

    @field_validator('filters')
    @classmethod
    def filter_keys_must_not_be_empty(cls, v):
        cleaned = {}
        for key, value in v.items():
            if not key.strip():
                raise ValueError('filter key must not be empty')
            cleaned[key.strip()] = value
        return cleaned


class SearchResult(BaseModel):
    dataset: str
    id: str
    fields: Dict[str, str] = Field(default_factory=dict)
    score: float
    lat: Optional[float] = None
    lng: Optional[float] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    dataset: str


class ErrorResponse(BaseModel):
    error: str
