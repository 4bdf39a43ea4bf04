from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from cashflow_import.ai.prompts import PROFESSIONS
from cashflow_import.ai.providers import get_provider
from cashflow_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, ImportConfig, load_config
from cashflow_import.db.store import Backend, InMemoryBackend, PostgresBackend
from cashflow_import.logging.error_log import ErrorLogBuffer
from cashflow_import.logging.init import get_logger, log_summary, setup_logging
from cashflow_import.models.processing_result import BatchResult
from cashflow_import.services.audit import LoggingAuditSink
from cashflow_import.services.extraction import Extractor
from cashflow_import.services.orchestrator import (
    ProcessingError,
    RequestContext,
    SourceFile,
    process_directory,
    process_files,
)
from cashflow_import.services.progress import InMemoryProgressStore
from cashflow_import.services.summary import render_summary_line

"""CLI entrypoint: ``python -m cashflow_import.cli [paths...]``.

Without paths every supported file in ``source_directory`` is imported.
Exit codes: 0 every file succeeded, 2 at least one file failed, 1 fatal
startup error (config, missing directory).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:
    """psycopg2 cursor; transactions are driven per file by the orchestrator.

    DSN resolution: DATABASE_URL / PGDSN, then config ``database.dsn``,
    then PG* variables falling back to the config ``database`` fields.
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if not dsn:
        host = os.getenv("PGHOST", db_cfg.host or "localhost")
        port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
        user = os.getenv("PGUSER", db_cfg.user or "postgres")
        password = os.getenv("PGPASSWORD", db_cfg.password or "")
        database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"

    conn = psycopg2.connect(dsn)
    try:
        conn.autocommit = True  # BEGIN/COMMIT issued explicitly per file
        with conn.cursor() as cur:
            yield cur
    finally:
        conn.close()


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="cashflow_import",
        description="Import contracts, receivables and expenses from spreadsheets and documents",
    )
    p.add_argument("paths", nargs="*", type=Path, help="Files to import (default: source_directory)")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config file")
    p.add_argument("--team", help="Team id (overrides team_id from the config)")
    p.add_argument("--hint", help="Free-text hint passed to the AI extraction")
    p.add_argument("--profession", choices=sorted(PROFESSIONS), help="Business profile")
    p.add_argument("--json", action="store_true", help="Print the batch summary as JSON on stdout")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _run(
    cfg: ImportConfig,
    args: argparse.Namespace,
    ctx: RequestContext,
    backend: Backend,
    extractor: Extractor,
    error_log: ErrorLogBuffer,
) -> BatchResult:
    options = {
        "extractor": extractor,
        "backend": backend,
        "hint": args.hint,
        "profession": args.profession,
        "error_log": error_log,
    }
    if args.paths:
        files = [SourceFile(name=p.name, path=p) for p in args.paths]
        return process_files(files, ctx, config=cfg, **options)
    return process_directory(cfg, ctx, **options)


def _build_context(cfg: ImportConfig, args: argparse.Namespace) -> RequestContext:
    return RequestContext(
        team_id=args.team or cfg.team_id,
        actor=os.getenv("USER"),
        audit=LoggingAuditSink(),
        progress=InMemoryProgressStore(ttl_seconds=cfg.progress.ttl_seconds),
    )


def _open_backend(cfg: ImportConfig, stack: ExitStack) -> tuple[Backend, str]:
    logger = get_logger()
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
        return InMemoryBackend(), "mock"
    try:
        cursor = stack.enter_context(_db_connection(cfg))
    except psycopg2.Error as e:
        logger.info("DB connection failed -> fallback to mock mode: %s", e)
        return InMemoryBackend(), "mock"
    return PostgresBackend(cursor), "live"


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug, stream=sys.stderr if args.json else None)

    load_dotenv(dotenv_path=Path(".env"), override=True)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error("config: %s", e)
        return EXIT_FATAL

    if not args.paths:
        directory = Path(cfg.source_directory)
        if not directory.is_dir():
            logger.error("directory not found: %s", directory)
            return EXIT_FATAL
        logger.info("Processing files from: %s", directory)

    provider = get_provider(cfg.ai.provider, api_key_env=cfg.ai.api_key_env)
    extractor = Extractor(cfg, provider)
    ctx = _build_context(cfg, args)
    error_log = ErrorLogBuffer()

    try:
        with ExitStack() as stack:
            backend, db_mode = _open_backend(cfg, stack)
            batch = _run(cfg, args, ctx, backend, extractor, error_log)
    except ProcessingError as e:
        logger.error("processing: %s", e)
        return EXIT_FATAL

    logger.info("mode=%s team=%s", db_mode, ctx.team_id)
    snapshot = ctx.progress.get(ctx.request_id) if ctx.progress else None
    if snapshot is not None:
        logger.debug("progress request=%s %s", ctx.request_id, snapshot.to_dict())
    log_summary(render_summary_line(batch).removeprefix("SUMMARY "))

    if args.json:
        print(json.dumps(batch.to_dict(), ensure_ascii=False, indent=2))

    return EXIT_SUCCESS_ALL if batch.success else EXIT_PARTIAL_FAILURE


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
