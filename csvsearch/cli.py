#!/usr/bin/env python3
"""
csvsearch command line: init, ingest, search and serve.
"""

import argparse
import json
import sys
from typing import List, Optional, Tuple

from .core.columns import parse_column_list
from .core.config import (
    DEFAULT_ADDR,
    get_embedding_provider,
    get_request_timeout,
    load_config,
)
from .core.context import OperationContext
from .core.errors import CSVSearchError, DeadlineExceeded
from .core.schema import Filter
from .core.service import CSVSearchService, IngestOptions, SearchOptions
from .util.logging import logger

EXIT_ERROR = 1
EXIT_DEADLINE = 2


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="",
        help="Path to the JSON configuration file (default: csv-search_config.json if present)"
    )
    parser.add_argument(
        "--db",
        default="",
        help="Path to the SQLite database"
    )


def _add_encoder(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--provider",
        choices=["hash", "sentence-transformers"],
        help="Embedding provider (default: from config or CSVSEARCH_EMBED_PROVIDER)"
    )
    parser.add_argument(
        "--model",
        default="",
        help="sentence-transformers model name or local path"
    )
    parser.add_argument(
        "--max-seq-len",
        type=int,
        default=0,
        help="Maximum sequence length for the encoder"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="csvsearch",
        description="Ingest CSV files into SQLite and run semantic search over them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init --db data/app.db
  %(prog)s ingest --csv places.csv --table places --lat-col lat --lng-col lng
  %(prog)s search --table places --query "quiet temple" --filter pref=Kyoto
  %(prog)s serve --addr 127.0.0.1:8080 --table places

Environment variables:
- CSVSEARCH_DB_PATH (default data/app.db)
- CSVSEARCH_CONFIG (default csv-search_config.json)
- CSVSEARCH_EMBED_PROVIDER=hash|sentence-transformers
- CSVSEARCH_LOG_LEVEL / DEBUG=true
        """
    )
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    subparsers.required = True

    init_parser = subparsers.add_parser("init", help="Create the database schema")
    _add_common(init_parser)

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a CSV file")
    _add_common(ingest_parser)
    _add_encoder(ingest_parser)
    ingest_parser.add_argument("--dataset", default="", help="Dataset name from the configuration file")
    ingest_parser.add_argument("--csv", default="", help="Path to the source CSV file")
    ingest_parser.add_argument("--batch", type=int, default=0, help="Rows per transaction batch")
    ingest_parser.add_argument("--table", default="", help="Logical table/dataset name to store the records")
    ingest_parser.add_argument("--id-col", default="", help="CSV column containing the primary identifier")
    ingest_parser.add_argument(
        "--text-cols",
        default="",
        help="Comma-separated columns used for embeddings (defaults to metadata columns)"
    )
    ingest_parser.add_argument(
        "--meta-cols",
        default="",
        help="Comma-separated columns to keep as metadata; use '*' to keep all"
    )
    ingest_parser.add_argument("--lat-col", default="", help="CSV column for latitude (empty to disable)")
    ingest_parser.add_argument("--lng-col", default="", help="CSV column for longitude (empty to disable)")

    search_parser = subparsers.add_parser("search", help="Run a semantic search")
    _add_common(search_parser)
    _add_encoder(search_parser)
    search_parser.add_argument("--query", "-q", default="", help="Text query")
    search_parser.add_argument("--dataset", default="", help="Dataset name from the configuration file")
    search_parser.add_argument("--table", default="", help="Logical table/dataset to search")
    search_parser.add_argument("--topk", type=int, default=0, help="Number of results to return")
    search_parser.add_argument(
        "--filter",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Metadata filter (repeatable)"
    )
    search_parser.add_argument("--timeout", type=float, default=0, help="Deadline in seconds (0 = none)")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    _add_common(serve_parser)
    _add_encoder(serve_parser)
    serve_parser.add_argument("--addr", default=DEFAULT_ADDR, help="Address for the HTTP server (host:port)")
    serve_parser.add_argument("--dataset", default="", help="Dataset name from the configuration file")
    serve_parser.add_argument("--table", default="", help="Default dataset to search")
    serve_parser.add_argument("--topk", type=int, default=0, help="Default number of results to return")
    serve_parser.add_argument(
        "--request-timeout",
        type=float,
        default=0,
        help="Maximum seconds for each search request (default: CSVSEARCH_REQUEST_TIMEOUT_SEC or 30)"
    )
    serve_parser.add_argument(
        "--no-auto-ingest",
        action="store_true",
        help="Skip ingesting the configured dataset CSV before serving"
    )

    return parser


def parse_addr(addr: str) -> Tuple[str, int]:
    """Split host:port; an empty host listens on all interfaces."""
    value = (addr or "").strip() or DEFAULT_ADDR
    host, sep, port = value.rpartition(":")
    if not sep:
        raise ValueError(f"invalid address {addr!r} (expected host:port)")
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"invalid port in address {addr!r}") from None
    return host or "0.0.0.0", port_number


def parse_filters(values: List[str]) -> List[Filter]:
    filters = []
    for raw in values:
        trimmed = raw.strip()
        if not trimmed:
            continue
        filters.append(Filter.parse(trimmed))
    return filters


def open_service(args) -> CSVSearchService:
    """Load configuration and open the store; the config file is required only when named."""
    cfg = load_config(args.config, required=bool(args.config.strip()))
    provider = None
    if hasattr(args, "provider"):
        provider = get_embedding_provider(
            cfg,
            provider=args.provider,
            model=args.model,
            max_seq_len=args.max_seq_len,
        )
    return CSVSearchService(config=cfg, db_path=args.db, provider=provider)


def cmd_init(args) -> int:
    with open_service(args) as service:
        features = service.init_database()
        print(f"Database initialized at {service.db_path}")
        if not all(features.values()):
            missing = ", ".join(name for name, ok in features.items() if not ok)
            print(f"Note: SQLite lacks {missing}; plain tables were created instead")
    return 0


def cmd_ingest(args) -> int:
    with open_service(args) as service:
        summary = service.ingest(IngestOptions(
            dataset=args.dataset,
            table=args.table,
            csv_path=args.csv,
            batch_size=args.batch,
            id_column=args.id_col,
            text_columns=parse_column_list(args.text_cols),
            metadata_columns=parse_column_list(args.meta_cols),
            lat_column=args.lat_col,
            lng_column=args.lng_col,
        ))
    print(
        f"Ingested {summary.rows_read} rows into {summary.namespace!r}: "
        f"{summary.rows_written} written, {summary.rows_skipped} unchanged, "
        f"{summary.embeddings_written} embeddings, {summary.batches_committed} batches"
    )
    return 0


def cmd_search(args) -> int:
    try:
        filters = parse_filters(args.filter)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    context = OperationContext.with_timeout(args.timeout)
    with open_service(args) as service:
        results = service.search(
            SearchOptions(
                query=args.query,
                dataset=args.dataset,
                table=args.table,
                top_k=args.topk,
                filters=filters,
            ),
            context=context,
        )
    print(json.dumps([r.to_dict() for r in results], indent=2, ensure_ascii=False))
    return 0


def cmd_serve(args) -> int:
    import uvicorn

    from .api.main import create_app

    try:
        host, port = parse_addr(args.addr)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    with open_service(args) as service:
        service.init_database()
        dataset_name = args.dataset
        namespace = service.resolve_namespace(dataset_name, args.table)

        csv_path = service.dataset_csv(dataset_name)
        if not args.no_auto_ingest and csv_path:
            service.ingest(IngestOptions(dataset=dataset_name, table=namespace))

        app = create_app(
            service,
            dataset=namespace,
            default_top_k=service.default_top_k(args.topk),
            request_timeout=args.request_timeout if args.request_timeout > 0 else get_request_timeout(),
        )
        logger.info(f"csv-search server listening on {host}:{port} (dataset={namespace})")
        uvicorn.run(app, host=host, port=port)
    return 0


COMMANDS = {
    "init": cmd_init,
    "ingest": cmd_ingest,
    "search": cmd_search,
    "serve": cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        return COMMANDS[args.command](args)
    except DeadlineExceeded as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_DEADLINE
    except CSVSearchError as e:
        print(f"error: {e}", file=sys.stderr)
        if e.committed_rows:
            print(f"{e.committed_rows} rows were committed before the failure", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
