"""
FastAPI application exposing ranked search over one default dataset.

Endpoints:
    GET  /healthz   plain "ok"
    GET  /health    JSON health report
    GET  /search    ?q|query=&dataset|table=&topk=&filter=field=value
    POST /search    {"query", "dataset", "topk", "filters", "filter"}

Errors are returned as {"error": message}: 400 for malformed requests,
504 when the request deadline passes, 500 for everything else.
"""

from typing import Iterable, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from .schemas import ErrorResponse, HealthResponse, SearchRequest, SearchResult
from ..core.config import DEFAULT_REQUEST_TIMEOUT_SEC, DEFAULT_TOPK, debug_enabled
from ..core.context import OperationContext
from ..core.errors import (
    ConfigurationError,
    CSVSearchError,
    DeadlineExceeded,
    QueryError,
)
from ..core.schema import Filter
from ..core.service import CSVSearchService, SearchOptions
from ..util.logging import logger
from .. import VERSION


def parse_filter_values(values: Iterable[str]) -> List[Filter]:
    """Parse repeated field=value expressions, skipping blank entries."""
    filters = []
    for raw in values or []:
        trimmed = raw.strip()
        if not trimmed:
            continue
        try:
            filters.append(Filter.parse(trimmed))
        except ValueError as e:
            raise QueryError(str(e)) from None
    return filters


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def status_for(exc: CSVSearchError) -> int:
    if isinstance(exc, (QueryError, ConfigurationError)):
        return 400
    if isinstance(exc, DeadlineExceeded):
        return 504
    return 500


def create_app(
    service: CSVSearchService,
    dataset: str = "default",
    default_top_k: int = DEFAULT_TOPK,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SEC,
) -> FastAPI:
    """
    Build the API app around an initialized service.

    Args:
        service: Service whose store schema already exists
        dataset: Namespace searched when a request names none
        default_top_k: Result count when a request gives none
        request_timeout: Per-request deadline in seconds
    """
    dataset = (dataset or "").strip() or "default"
    if default_top_k is None or default_top_k <= 0:
        default_top_k = DEFAULT_TOPK
    if request_timeout is None or request_timeout <= 0:
        request_timeout = DEFAULT_REQUEST_TIMEOUT_SEC

    app = FastAPI(
        title="csv-search API",
        version=VERSION,
        description="Semantic search over CSV datasets stored in SQLite",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None,
    )
    app.state.service = service
    app.state.dataset = dataset

    @app.exception_handler(CSVSearchError)
    async def csvsearch_error_handler(request: Request, exc: CSVSearchError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return _error(status_code, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = []
        for err in exc.errors():
            location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            messages.append(f"{location}: {err.get('msg')}" if location else err.get("msg", "invalid request"))
        return _error(400, "decode request: " + "; ".join(messages))

    def run_search(query: str, target: str, topk: int, filters: List[Filter]) -> List[dict]:
        if not query.strip():
            raise QueryError("query is required")
        context = OperationContext.with_timeout(request_timeout)
        results = service.search(
            SearchOptions(
                query=query,
                table=target or dataset,
                top_k=topk if topk > 0 else default_top_k,
                filters=filters,
            ),
            context=context,
        )
        return [result.to_dict() for result in results]

    @app.get("/healthz", response_class=PlainTextResponse)
    def healthz():
        return "ok"

    @app.get("/health", response_model=HealthResponse)
    def health():
        """Check database health."""
        report = service.health()
        return HealthResponse(
            status=report["status"],
            version=VERSION,
            db_health=report["db_ok"],
            dataset=dataset,
        )

    @app.get(
        "/search",
        response_model=List[SearchResult],
        response_model_exclude_none=True,
        responses={400: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
    )
    def search_get(
        q: str = "",
        query: str = "",
        dataset_param: str = Query("", alias="dataset"),
        table: str = "",
        topk: Optional[str] = None,
        filter: List[str] = Query(default=[]),
    ):
        """Search with query-string parameters."""
        text = q.strip() or query.strip()
        target = dataset_param.strip() or table.strip()
        limit = 0
        if topk is not None and topk.strip():
            try:
                limit = int(topk.strip())
            except ValueError:
                raise QueryError(f"invalid topk value {topk.strip()!r}") from None
        return run_search(text, target, limit, parse_filter_values(filter))

    @app.post(
        "/search",
        response_model=List[SearchResult],
        response_model_exclude_none=True,
        responses={400: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
    )
    def search_post(request: SearchRequest):
        """Search with a JSON body."""
        filters = [Filter(field=key, value=value) for key, value in request.filters.items()]
        filters.extend(parse_filter_values(request.filter))
        return run_search(request.query, request.dataset, request.topk, filters)

    return app
