from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from site_import.models.import_job import ImportJob, ImportJobStatus, RowError

"""SQL for the ``csv_imports`` table (the import job ledger)."""

__all__ = [
    "JobRepository",
]

_JOB_COLUMNS = (
    "id, filename, total_rows, success_count, error_count, errors, status, "
    "started_at, completed_at, created_at"
)

INSERT_JOB = f"""
INSERT INTO csv_imports (filename, total_rows, status, created_at)
VALUES ($1, $2, $3, NOW())
RETURNING {_JOB_COLUMNS}
"""

UPDATE_JOB = """
UPDATE csv_imports
SET success_count = $2,
    error_count = $3,
    errors = $4::jsonb,
    status = $5,
    started_at = $6,
    completed_at = $7
WHERE id = $1
"""

SELECT_JOB = f"SELECT {_JOB_COLUMNS} FROM csv_imports WHERE id = $1"

LIST_JOBS = f"""
SELECT {_JOB_COLUMNS} FROM csv_imports
ORDER BY created_at DESC, id DESC
LIMIT $1 OFFSET $2
"""

COUNT_JOBS = "SELECT COUNT(*) FROM csv_imports"

DELETE_JOB = "DELETE FROM csv_imports WHERE id = $1 RETURNING id"


def _job_from_row(row: Mapping[str, Any]) -> ImportJob:
    raw_errors = row["errors"]
    if isinstance(raw_errors, str):
        raw_errors = json.loads(raw_errors)
    errors = tuple(RowError.from_dict(e) for e in (raw_errors or []))
    return ImportJob(
        id=row["id"],
        filename=row["filename"],
        total_rows=row["total_rows"],
        success_count=row["success_count"] or 0,
        error_count=row["error_count"] or 0,
        errors=errors,
        status=ImportJobStatus(row["status"]),
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
    )


class JobRepository:
    async def insert_job(self, conn: Any, filename: str, total_rows: int) -> ImportJob:
        row = await conn.fetchrow(INSERT_JOB, filename, total_rows, ImportJobStatus.PENDING.value)
        return _job_from_row(row)

    async def update_job(self, conn: Any, job: ImportJob) -> None:
        await conn.execute(
            UPDATE_JOB,
            job.id,
            job.success_count,
            job.error_count,
            json.dumps([e.to_dict() for e in job.errors], ensure_ascii=False),
            job.status.value,
            job.started_at,
            job.completed_at,
        )

    async def fetch_job(self, conn: Any, job_id: int) -> ImportJob | None:
        row = await conn.fetchrow(SELECT_JOB, job_id)
        return _job_from_row(row) if row is not None else None

    async def list_jobs(self, conn: Any, limit: int, offset: int) -> tuple[list[ImportJob], int]:
        total = await conn.fetchval(COUNT_JOBS)
        rows = await conn.fetch(LIST_JOBS, limit, offset)
        return [_job_from_row(r) for r in rows], int(total or 0)

    async def delete_job(self, conn: Any, job_id: int) -> bool:
        return await conn.fetchval(DELETE_JOB, job_id) is not None
