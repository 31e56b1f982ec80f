from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config, resolve_api_key, resolve_dsn
from ..db.postgres_store import PostgresDocumentStore
from ..db.store import DocumentStore, InMemoryDocumentStore, StoreError
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, setup_logging
from ..models.config_models import ImportConfig
from ..models.enums import ImportType
from ..parsing.reader import ImportSource, SourceReadError, read_upload
from ..parsing.sections import describe_section, split_sections
from ..services.cleaning_adapter import build_adapter
from ..services.pipeline import PipelineResult, run_import
from ..services.reconciliation import render_reconciliation_report
from ..services.summary import render_summary_line

"""CLI entrypoint: import one borrower / loan spreadsheet.

    python -m loan_import.cli FILE [--type customers|loans|mixed] [--dry-run]
        [--use-ai] [--match-loans] [--inspect] [--agency ID] [--user ID]
        [--config PATH] [--debug]

Exit codes:
    0  every row was imported (or skipped)
    2  some rows failed or were quarantined for review
    1  fatal: bad config, unreadable input, database unavailable
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

INSPECT_SAMPLE_ROWS = 3


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True により .env の値で既存環境変数を上書きし、DB 接続情報を最優先化。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="loan_import", description="Borrower / loan spreadsheet importer")
    p.add_argument("file", type=Path, help="CSV, text or .xlsx file to import")
    p.add_argument(
        "--type",
        choices=[t.value for t in ImportType],
        default=None,
        help="Import mode (default: detected from the section types)",
    )
    p.add_argument("--dry-run", action="store_true", help="Classify and count rows without writing anything")
    p.add_argument("--use-ai", action="store_true", help="Refine rows through the LLM cleaning adapter")
    p.add_argument(
        "--match-loans",
        action="store_true",
        help="Match loan rows to existing customers (id, NRC, fuzzy name) before importing",
    )
    p.add_argument("--inspect", action="store_true", help="Print detected sections and first rows, then exit")
    p.add_argument("--agency", default=None, help="Agency id (overrides agency_id in the config)")
    p.add_argument("--user", default="cli", help="User id recorded on created records")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to import.yml")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _inspect(source: ImportSource) -> int:
    sections = split_sections(source.text)
    print(f"FILE: {source.file_name} ({source.file_size} bytes) sections={len(sections)}")
    for section in sections:
        print(f"  SECTION: {section.name} type={section.inferred_type.value} [{describe_section(section)}]")
        print(f"    headers={list(section.headers)}")
        for row in section.rows[:INSPECT_SAMPLE_ROWS]:
            print(f"    row {row.index}: {row.original()}")
        if section.dropped_lines:
            print(f"    dropped_lines={len(section.dropped_lines)}")
    return EXIT_SUCCESS_ALL


@contextmanager
def _open_store(cfg: ImportConfig, logger: logging.Logger) -> Iterator[DocumentStore]:
    """PostgreSQL when a DSN resolves, otherwise an in-memory store.

    Raises:
        StoreError: a DSN is configured but the connection or schema setup fails
    """
    dsn = resolve_dsn(cfg.database)
    if dsn is None:
        logger.info("no database configured -> in-memory store (nothing is persisted)")
        yield InMemoryDocumentStore()
        return
    store = PostgresDocumentStore.connect(dsn)
    try:
        store.ensure_schema()
        logger.info("store=postgres")
        yield store
    finally:
        store.close()


def _report(outcome: PipelineResult, logger: logging.Logger) -> None:
    for s in outcome.sections:
        extra = f", {s.rows_quarantined} quarantined" if s.rows_quarantined else ""
        dropped = f", {s.lines_dropped} line(s) dropped" if s.lines_dropped else ""
        logger.info(f"section {s.name}: {s.label}{extra}{dropped}")
    stats = outcome.cleaning
    logger.info(
        f"cleaned={stats.rows_cleaned} needing_review={stats.rows_needing_review} "
        f"avg_confidence={stats.average_confidence:.2f}"
    )
    for err in outcome.result.errors:
        logger.warning(f"row {err.row_index}: {err.error_type}: {err.error}")
    if outcome.quarantined:
        logger.warning(f"{outcome.quarantined} row(s) quarantined for review (batch {outcome.batch_id})")
    if outcome.match_report is not None:
        print(render_reconciliation_report(outcome.match_report))
    if outcome.error_log_path is not None:
        logger.info(f"error log: {outcome.error_log_path}")


def main(argv: list[str] | None = None) -> int:
    # NOTE: 空リスト [] が与えられた場合に sys.argv[1:] が混入しないよう None のときのみ読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    # .env を最優先で読み込む (DB 接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    if args.agency:
        cfg = replace(cfg, agency_id=args.agency)
    if args.use_ai:
        cfg = replace(cfg, cleaning=replace(cfg.cleaning, use_ai=True))

    try:
        source = read_upload(args.file)
    except SourceReadError as e:
        logger.error(f"input: {e}")
        return EXIT_FATAL

    if args.inspect:
        return _inspect(source)

    adapter = build_adapter(cfg.cleaning, resolve_api_key())
    try:
        with _open_store(cfg, logger) as store:
            outcome = run_import(
                source,
                cfg,
                store,
                user_id=args.user,
                import_type=ImportType(args.type) if args.type else None,
                dry_run=args.dry_run,
                adapter=adapter,
                match_loans=args.match_loans,
                error_log=ErrorLogBuffer(),
            )
    except StoreError as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    finally:
        if adapter is not None:
            adapter.close()

    _report(outcome, logger)
    log_summary(render_summary_line(outcome.result, outcome.quarantined)[len("SUMMARY "):])

    if outcome.fully_imported:
        return EXIT_SUCCESS_ALL
    return EXIT_PARTIAL_FAILURE


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
