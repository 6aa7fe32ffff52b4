from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from ..db.job_repository import JobRepository
from ..db.pool import acquire
from ..models.import_job import (
    ALLOWED_TRANSITIONS,
    BATCH_ROW,
    ImportJob,
    ImportJobStatus,
    ImportResult,
    RowError,
)

"""Import job ledger (``csv_imports``).

Owns the job state machine; every status change goes through here so that an
illegal transition fails loudly instead of corrupting the record.
"""

__all__ = [
    "ImportJobLedger",
    "InvalidTransitionError",
    "JobNotFoundError",
    "final_status",
]

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10


class InvalidTransitionError(Exception):
    def __init__(self, job: ImportJob, target: ImportJobStatus) -> None:
        self.job = job
        self.target = target
        super().__init__(f"job {job.id}: cannot move from {job.status.value} to {target.value}")


class JobNotFoundError(LookupError):
    def __init__(self, job_id: int) -> None:
        self.job_id = job_id
        super().__init__(f"import job {job_id} not found")


def final_status(success_count: int, error_count: int) -> ImportJobStatus:
    if error_count == 0:
        return ImportJobStatus.COMPLETED
    if success_count == 0:
        return ImportJobStatus.FAILED
    return ImportJobStatus.PARTIAL


def _check(job: ImportJob, target: ImportJobStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[job.status]:
        raise InvalidTransitionError(job, target)


class ImportJobLedger:
    def __init__(
        self,
        pool: Any,
        repository: JobRepository | None = None,
        *,
        acquire_timeout: float | None = None,
    ) -> None:
        self._pool = pool
        self._repository = repository or JobRepository()
        self._acquire_timeout = acquire_timeout

    @asynccontextmanager
    async def _connection(self, conn: Any = None) -> AsyncIterator[Any]:
        # reuse the caller's connection when given one
        if conn is not None:
            yield conn
            return
        async with acquire(self._pool, self._acquire_timeout) as own:
            yield own

    async def start(self, filename: str, total_rows: int) -> ImportJob:
        async with self._connection() as conn:
            job = await self._repository.insert_job(conn, filename, total_rows)
        logger.info("import job %s created: file=%s rows=%d", job.id, filename, total_rows)
        return job

    async def mark_processing(self, job: ImportJob, *, conn: Any = None) -> ImportJob:
        _check(job, ImportJobStatus.PROCESSING)
        updated = replace(job, status=ImportJobStatus.PROCESSING, started_at=datetime.now(UTC))
        async with self._connection(conn) as c:
            await self._repository.update_job(c, updated)
        return updated

    async def finish(self, job: ImportJob, result: ImportResult, *, conn: Any = None) -> ImportJob:
        """Record the outcome of a commit.

        Every row that did not succeed counts as an error, so
        ``success_count + error_count == total_rows`` always holds.
        """
        success_count = min(result.success_count, job.total_rows)
        error_count = job.total_rows - success_count
        status = final_status(success_count, error_count)
        _check(job, status)
        finished = replace(
            job,
            success_count=success_count,
            error_count=error_count,
            errors=tuple(result.failed_rows),
            status=status,
            completed_at=datetime.now(UTC),
        )
        async with self._connection(conn) as c:
            await self._repository.update_job(c, finished)
        logger.info(
            "import job %s %s: success=%d errors=%d",
            job.id, status.value.lower(), success_count, error_count,
        )
        return finished

    async def fail(
        self,
        job: ImportJob,
        message: str,
        errors: Sequence[RowError] = (),
        *,
        conn: Any = None,
    ) -> ImportJob:
        """Mark the whole batch failed: nothing was written."""
        _check(job, ImportJobStatus.FAILED)
        failed = replace(
            job,
            success_count=0,
            error_count=job.total_rows,
            errors=(*errors, RowError(BATCH_ROW, message)),
            status=ImportJobStatus.FAILED,
            completed_at=datetime.now(UTC),
        )
        async with self._connection(conn) as c:
            await self._repository.update_job(c, failed)
        logger.error("import job %s failed: %s", job.id, message)
        return failed

    async def get(self, job_id: int) -> ImportJob | None:
        async with self._connection() as conn:
            return await self._repository.fetch_job(conn, job_id)

    async def require(self, job_id: int) -> ImportJob:
        job = await self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(
        self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE
    ) -> tuple[list[ImportJob], int]:
        """Newest first. Returns (jobs on the page, total job count)."""
        page = max(page, 1)
        limit = max(limit, 1)
        async with self._connection() as conn:
            return await self._repository.list_jobs(conn, limit, (page - 1) * limit)

    async def delete(self, job_id: int) -> bool:
        async with self._connection() as conn:
            deleted = await self._repository.delete_job(conn, job_id)
        if deleted:
            logger.info("import job %s deleted", job_id)
        return deleted
