from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import asyncpg
from dotenv import load_dotenv

from site_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from site_import.db.pool import PoolExhaustedError
from site_import.excel.reader import (
    InvalidHeadersError,
    UnsupportedFileError,
    read_table,
    validate_headers,
)
from site_import.logging.init import setup_logging
from site_import.models.config_models import ImportConfig
from site_import.models.conflict import Resolution
from site_import.models.import_job import ImportJobStatus
from site_import.services.error_report import ReportUnavailableError, template_csv, write_csv
from site_import.services.ledger import JobNotFoundError
from site_import.services.pipeline import ImportPipeline
from site_import.services.resolver import ConflictUnresolvedError

"""CLI entrypoint: ``python -m site_import.cli <command>``.

Commands:
    detect FILE                      classify rows, print the conflict report
    commit FILE [--resolutions JSON] commit the file as one import job
    status JOB_ID                    print an import job
    errors JOB_ID [--out PATH]       error report CSV of a finished job
    template [--out PATH]            import template CSV

Exit codes: 0 success, 2 partial/failed import or unresolved conflicts,
1 fatal (config, file, database).
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2


def _load_env_file(path: Path, override: bool = True) -> None:
    """.env wins over variables already in the environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="site_import", description="Project-site CSV/XLSX importer")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    detect = sub.add_parser("detect", help="Report conflicts without writing")
    detect.add_argument("file", type=Path)

    commit = sub.add_parser("commit", help="Import a file")
    commit.add_argument("file", type=Path)
    commit.add_argument("--resolutions", type=Path, help="JSON list of {rowIndex, action}")

    status = sub.add_parser("status", help="Show an import job")
    status.add_argument("job_id", type=int)

    errors = sub.add_parser("errors", help="Error report CSV for a job")
    errors.add_argument("job_id", type=int)
    errors.add_argument("--out", type=Path)

    template = sub.add_parser("template", help="Print the import template CSV")
    template.add_argument("--out", type=Path)
    return p.parse_args(argv)


def _load_resolutions(path: Path | None) -> list[Resolution]:
    if path is None:
        return []
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("resolutions", [])
    return [Resolution.from_dict(item) for item in data]


def _read_rows(path: Path) -> list[dict[str, Any]]:
    table = read_table(path)
    validate_headers(table.columns)
    return table.rows


def _emit(content: str, out: Path | None) -> None:
    if out is None:
        sys.stdout.write(content)
    else:
        write_csv(content, out)


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


async def _open_pipeline(cfg: ImportConfig) -> ImportPipeline:
    return await ImportPipeline.from_config(cfg)


async def _run(args: argparse.Namespace, cfg: ImportConfig, logger: logging.Logger) -> int:
    # input problems surface before any connection is opened
    rows = _read_rows(args.file) if args.command in ("detect", "commit") else []

    async with await _open_pipeline(cfg) as pipeline:
        if args.command == "detect":
            report = await pipeline.detect_conflicts(rows)
            _print_json(report.to_dict())
            return EXIT_SUCCESS

        if args.command == "commit":
            try:
                result = await pipeline.commit_import(
                    rows, _load_resolutions(args.resolutions), args.file.name
                )
            except ConflictUnresolvedError as e:
                logger.error(f"commit refused: {e}")
                return EXIT_PARTIAL_FAILURE
            if result.status is ImportJobStatus.COMPLETED:
                return EXIT_SUCCESS
            return EXIT_PARTIAL_FAILURE

        if args.command == "status":
            data = await pipeline.job_status(args.job_id)
            if data is None:
                logger.error(f"import job {args.job_id} not found")
                return EXIT_FATAL
            _print_json(data)
            return EXIT_SUCCESS

        if args.command == "errors":
            _emit(await pipeline.error_report(args.job_id), args.out)
            return EXIT_SUCCESS

    return EXIT_FATAL


def main(argv: list[str] | None = None) -> int:
    # only read sys.argv when no list is given; main([]) must not see pytest's args
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(logging.DEBUG if args.debug else logging.INFO)
    if args.debug:
        logger.setLevel(logging.DEBUG)
        for h in logger.handlers:
            h.setLevel(logging.DEBUG)
        logger.debug("debug mode enabled")

    if args.command == "template":
        _emit(template_csv(), args.out)
        return EXIT_SUCCESS

    _load_env_file(Path(".env"))
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        return asyncio.run(_run(args, cfg, logger))
    except (UnsupportedFileError, InvalidHeadersError) as e:
        logger.error(f"input: {e}")
        return EXIT_FATAL
    except (JobNotFoundError, ReportUnavailableError) as e:
        logger.error(f"{e}")
        return EXIT_FATAL
    except PoolExhaustedError as e:
        logger.error(f"database busy, retry later: {e}")
        return EXIT_FATAL
    except asyncpg.PostgresError as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    except (OSError, ValueError) as e:
        logger.error(f"fatal: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
