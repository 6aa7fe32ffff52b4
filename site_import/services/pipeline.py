from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..db.audit_repository import AuditRepository
from ..db.job_repository import JobRepository
from ..db.pool import create_pool
from ..db.site_repository import SiteRepository
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary
from ..models.config_models import ImportConfig
from ..models.conflict import Conflict, DetectionResult, Resolution
from ..models.error_record import ErrorRecord, ErrorType
from ..models.import_job import BATCH_ROW, ImportJob, ImportJobStatus, ImportResult, RowError
from ..models.site_record import NormalizedRecord, RawRow
from .audit import AuditAction, AuditEntity, AuditEntry, AuditLogger
from .detector import ConflictDetector
from .error_report import error_report_csv
from .importer import CommitError, TransactionalImporter
from .ledger import ImportJobLedger
from .normalizer import normalize_rows
from .progress import RowProgress
from .resolver import ensure_resolved, resolve
from .summary import render_summary_line
from .validation import RecordValidator

"""Import pipeline facade.

The two calls the HTTP layer and the CLI make:

- ``detect_conflicts(rows)``: normalize, validate and classify without writing
  anything; the operator reviews the conflicts it returns
- ``commit_import(rows, resolutions, filename)``: run the same steps again,
  apply the operator's resolutions and commit the batch as one import job

Row-level problems are collected and reported; they never stop the rest of
the batch.
"""

__all__ = [
    "DetectionReport",
    "ImportPipeline",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionReport:
    detection: DetectionResult
    errors: list[RowError] = field(default_factory=list)
    total_rows: int = 0
    max_reported_errors: int | None = None

    @property
    def conflicts(self) -> list[Conflict]:
        """Rows that matched an existing site (NoMatch rows are plain inserts)."""
        return [c for c in self.detection.conflicts if c.needs_resolution]

    @property
    def new_entry_count(self) -> int:
        return self.detection.new_count

    def to_dict(self) -> dict[str, Any]:
        errors = self.errors
        if self.max_reported_errors is not None:
            errors = errors[: self.max_reported_errors]
        return {
            "conflicts": [c.to_dict() for c in self.conflicts],
            "newEntryCount": self.new_entry_count,
            "totalRows": self.total_rows,
            "errorCount": len(self.errors),
            "errors": [e.to_dict() for e in errors],
        }


class ImportPipeline:
    """Wires the pipeline components around one connection pool.

    The pool is injected; ``from_config`` creates one and the pipeline then
    owns it (``close`` releases it).
    """

    def __init__(
        self,
        pool: Any,
        config: ImportConfig | None = None,
        *,
        sites: SiteRepository | None = None,
        jobs: JobRepository | None = None,
        audits: AuditRepository | None = None,
        error_log: ErrorLogBuffer | None = None,
        owns_pool: bool = False,
    ) -> None:
        self.config = config or ImportConfig()
        timeout = self.config.pool.acquire_timeout
        settings = self.config.import_settings

        self._pool = pool
        self._owns_pool = owns_pool
        self.validator = RecordValidator(settings.site_code_pattern)
        self.ledger = ImportJobLedger(pool, jobs, acquire_timeout=timeout)
        self.audit = AuditLogger(pool, audits, acquire_timeout=timeout)
        self.detector = ConflictDetector(pool, sites, acquire_timeout=timeout)
        self.importer = TransactionalImporter(
            pool,
            self.ledger,
            sites=sites,
            audit=self.audit,
            validator=self.validator,
            acquire_timeout=timeout,
        )
        self.error_log = error_log or ErrorLogBuffer(settings.error_log_dir)

    @classmethod
    async def from_config(cls, config: ImportConfig) -> ImportPipeline:
        pool = await create_pool(config)
        return cls(pool, config, owns_pool=True)

    async def close(self) -> None:
        if self._owns_pool and self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> ImportPipeline:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _prepare(
        self, rows: Sequence[RawRow], job: ImportJob | None = None
    ) -> tuple[list[NormalizedRecord], list[RowError]]:
        """Normalize and validate; with a job, row errors also go to the error log."""
        with RowProgress(len(rows), description="Normalizing") as progress:
            records, norm_errors = normalize_rows(rows, on_progress=progress.advance)
        valid, invalid = self.validator.partition(records)

        normalization = [RowError(e.row_index, e.reason) for e in norm_errors]
        validation = [RowError(e.row_index, e.message, e.site_code) for e in invalid]
        if job is not None:
            self._log_row_errors(normalization, job, ErrorType.NORMALIZATION)
            self._log_row_errors(validation, job, ErrorType.VALIDATION)

        errors = normalization + validation
        errors.sort(key=lambda e: e.row_index)
        return valid, errors

    def _log_row_errors(self, errors: Iterable[RowError], job: ImportJob, error_type: str) -> None:
        for e in errors:
            self.error_log.append(
                ErrorRecord.create(
                    job.filename, e.row_index, error_type, e.message,
                    job_id=job.id, site_code=e.site_code,
                )
            )

    async def detect_conflicts(self, rows: Iterable[RawRow]) -> DetectionReport:
        """Classify rows against the store. Read-only."""
        rows = list(rows)
        valid, errors = self._prepare(rows)
        detection = await self.detector.detect(valid)
        logger.info(
            "detected %d conflict(s), %d new, %d row error(s) in %d rows",
            detection.conflict_count, detection.new_count, len(errors), len(rows),
        )
        return DetectionReport(
            detection=detection,
            errors=errors,
            total_rows=len(rows),
            max_reported_errors=self.config.import_settings.max_reported_errors,
        )

    async def commit_import(
        self,
        rows: Iterable[RawRow],
        resolutions: Iterable[Resolution],
        filename: str,
    ) -> ImportResult:
        """Create an import job and commit the resolved batch.

        Raises:
            ConflictUnresolvedError: a conflicting row has no resolution. The
                job stays Pending and nothing is written.
            PoolExhaustedError: retryable; the job stays Pending.
        """
        rows = list(rows)
        job = await self.ledger.start(filename, len(rows))
        try:
            valid, errors = self._prepare(rows, job)

            detection = await self.detector.detect(valid)
            resolved = resolve(detection.conflicts, resolutions)
            ensure_resolved(resolved, job)

            try:
                result, finished = await self.importer.commit(
                    detection.new_records,
                    resolved.to_override,
                    job,
                    skipped=len(resolved.to_skip),
                    prior_errors=errors,
                )
            except CommitError as e:
                finished = e.job
                if finished is None or not finished.is_terminal:
                    finished = await self.ledger.fail(finished or job, str(e), e.row_errors)
                self.error_log.append(
                    ErrorRecord.create(filename, BATCH_ROW, ErrorType.COMMIT, str(e), job_id=job.id)
                )
                result = ImportResult(
                    inserted=0,
                    updated=0,
                    skipped=0,
                    failed_rows=finished.errors,
                    job_id=job.id,
                    status=ImportJobStatus.FAILED,
                )

            await self.audit.record_audit(
                AuditEntry(
                    AuditEntity.CSV_IMPORTS,
                    AuditAction.IMPORT,
                    job.id,
                    new_values={
                        "filename": filename,
                        "status": result.status.value if result.status else None,
                        "totalRows": len(rows),
                        "inserted": result.inserted,
                        "updated": result.updated,
                        "skipped": result.skipped,
                        "errors": len(result.failed_rows),
                    },
                )
            )
            # the SUMMARY label comes from the log formatter
            log_summary(render_summary_line(finished, result).removeprefix("SUMMARY "))
            return result
        finally:
            path = self.error_log.flush()
            if path is not None:
                logger.info("row errors written to %s", path)

    async def get_job(self, job_id: int) -> ImportJob | None:
        return await self.ledger.get(job_id)

    async def job_status(self, job_id: int) -> dict[str, Any] | None:
        """Job as returned to a polling client; errors capped at max_reported_errors."""
        job = await self.ledger.get(job_id)
        if job is None:
            return None
        data = job.to_dict()
        data["errors"] = data["errors"][: self.config.import_settings.max_reported_errors]
        return data

    async def list_jobs(self, page: int = 1, limit: int = 10) -> tuple[list[ImportJob], int]:
        return await self.ledger.list_jobs(page, limit)

    async def delete_job(self, job_id: int) -> bool:
        return await self.ledger.delete(job_id)

    async def error_report(self, job_id: int) -> str:
        """CSV error report for a finished job.

        Raises:
            JobNotFoundError: unknown job id.
            ReportUnavailableError: job still Pending or Processing.
        """
        return error_report_csv(await self.ledger.require(job_id))
