from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any

import httpx
import psycopg2
from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config, resolve_dsn
from ..db.batch_insert import PostgresChunkSubmitter
from ..excel.reader import ParseError, detect_header, extract
from ..http.submitter import DryRunSubmitter, HttpChunkSubmitter
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, setup_logging
from ..models.config_models import ImportConfig, TargetMode
from ..models.processing_result import ImportReport
from ..models.import_stage import ImportStage
from ..services.dispatcher import ChunkSubmitter, pacer_from_config
from ..services.field_mapper import FieldMapper, is_placeholder_sheet
from ..services.orchestrator import ImportPipeline, ProcessingError
from ..services.progress import ProgressTracker
from ..services.summary import render_error_details, render_summary_line

"""CLI entrypoint: ``roster-import FILE``.

Flow:
- Load .env (overrides the process environment) and the YAML config
- Read the input file (spreadsheet / CSV, or a JSON list of records)
- Run ImportPipeline against the configured target (postgres | http | dry-run)
- Print SUMMARY and per-record error detail

Exit codes: 0 all records imported, 2 some records failed, 1 fatal.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

MAX_ERROR_DETAILS = 20


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Context manager to provide a psycopg2 cursor.

    PostgresChunkSubmitter commits after every chunk; anything left open when
    the block exits abnormally is rolled back.
    """
    conn = psycopg2.connect(resolve_dsn(cfg.database))
    conn.autocommit = False
    cur = conn.cursor()
    try:
        yield cur
    except BaseException:
        conn.rollback()
        raise
    finally:
        cur.close()
        conn.close()


@asynccontextmanager
async def _open_submitter(cfg: ImportConfig) -> AsyncIterator[ChunkSubmitter]:
    target = cfg.target
    if target.mode is TargetMode.DRY_RUN:
        yield DryRunSubmitter()
    elif target.mode is TargetMode.HTTP:
        api_key = os.getenv(target.api_key_env) if target.api_key_env else None
        async with httpx.AsyncClient(timeout=target.timeout_seconds) as client:
            yield HttpChunkSubmitter(client, target.url or "", api_key=api_key)
    else:
        with _db_connection(cfg) as cur:
            yield PostgresChunkSubmitter(cur, target.table)


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True により .env の値で既存環境変数を上書きし、接続情報を最優先化。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="roster-import", description="Bulk client roster importer")
    p.add_argument("file", type=Path, help="Spreadsheet (.xlsx), CSV, or JSON records file")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config path")
    p.add_argument("--records-json", action="store_true", help="FILE is a JSON list of already extracted records")
    p.add_argument("--dry-run", action="store_true", help="Validate and chunk without submitting anything")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--inspect-data", action="store_true", help="Print detected headers & first rows then exit")
    return p.parse_args(argv)


def _json_default(value: Any) -> Any:
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def _inspect_data(path: Path, data: bytes) -> int:
    try:
        sheets = extract(data, path.name)
    except ParseError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    mapper = FieldMapper()
    print(f"FILE: {path.name}")
    for sheet in sheets:
        if is_placeholder_sheet(sheet.name):
            print(f"  SHEET: {sheet.name} (skipped: template/example)")
            continue
        if sheet.is_empty:
            print(f"  SHEET: {sheet.name} (empty)")
            continue
        header = detect_header(sheet)
        plan = mapper.plan(sheet, header)
        print(
            f"  SHEET: {sheet.name} layout={plan.layout.value} header_row={header.header_row_index} "
            f"columns={plan.columns}"
        )
        if header.preceding_key_values:
            print("    metadata=", json.dumps(header.preceding_key_values, ensure_ascii=False))
        sample = sheet.cells[header.header_row_index + 1:header.header_row_index + 4]
        print("    sample_rows=", json.dumps([list(r) for r in sample], ensure_ascii=False, default=_json_default))
    return EXIT_SUCCESS_ALL


def _load_records(data: bytes) -> list[Any]:
    try:
        body = json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ParseError(f"invalid records JSON: {e}") from e
    if isinstance(body, dict) and isinstance(body.get("clients"), list):
        body = body["clients"]
    if not isinstance(body, list):
        raise ParseError("records JSON must be a list (or an object with a 'clients' list)")
    return body


async def _run(cfg: ImportConfig, args: argparse.Namespace, data: bytes, logger: logging.Logger) -> ImportReport:
    error_log = ErrorLogBuffer(cfg.log_dir)
    async with _open_submitter(cfg) as submit:
        with ProgressTracker(description=args.file.name) as progress:
            pipeline = ImportPipeline(
                submit,
                policy=cfg.policy,
                pacer=pacer_from_config(cfg.pacing),
                progress_sink=progress,
                error_log=error_log,
                file_name=args.file.name,
                max_file_bytes=cfg.max_file_bytes,
            )
            try:
                if args.records_json:
                    return await pipeline.run_records(_load_records(data))
                return await pipeline.run(data, args.file.name)
            except asyncio.CancelledError:
                if pipeline.stage is ImportStage.DISPATCHING:
                    partial = pipeline.partial_report()
                    logger.warning("interrupted; partial result over finished chunks:")
                    log_summary(render_summary_line(partial)[8:])
                    error_log.extend_from_errors(args.file.name, partial.errors)
                    error_log.flush()
                raise


def main(argv: list[str] | None = None) -> int:
    # NOTE: 空リスト [] が与えられた場合に sys.argv[1:] が混入しないよう None のときのみ読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    # .env を最優先で読み込む (接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)

    path: Path = args.file
    if not path.is_file():
        logger.error(f"file not found: {path}")
        return EXIT_FATAL
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.error(f"cannot read {path}: {e}")
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(path, data)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    if args.dry_run:
        cfg = replace(cfg, target=replace(cfg.target, mode=TargetMode.DRY_RUN))

    logger.info(f"Importing {path.name} (target={cfg.target.mode.value})")
    try:
        report = asyncio.run(_run(cfg, args, data, logger))
    except ParseError as e:
        logger.error(f"parse: {e}")
        return EXIT_FATAL
    except ProcessingError as e:
        logger.error(f"processing: {e}")
        return EXIT_FATAL
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.error("interrupted")
        return EXIT_FATAL

    for line in render_error_details(report, limit=MAX_ERROR_DETAILS):
        logger.warning(line)
    log_summary(render_summary_line(report)[8:])  # log_summary adds the "SUMMARY " prefix

    if report.total_failed > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
