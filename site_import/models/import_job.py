from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

"""ImportJob domain model and its status enum.

One ImportJob exists per import attempt. State transitions:
pending -> processing -> (completed | failed | partial)

Terminal states never transition again.
"""

__all__ = [
    "ALLOWED_TRANSITIONS",
    "BATCH_ROW",
    "ImportJob",
    "ImportJobStatus",
    "ImportResult",
    "RowError",
    "TERMINAL_STATUSES",
]

# row_index used for errors that belong to the whole batch rather than a row
BATCH_ROW = -1


class ImportJobStatus(Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    PARTIAL = "Partial"


TERMINAL_STATUSES = frozenset(
    {ImportJobStatus.COMPLETED, ImportJobStatus.FAILED, ImportJobStatus.PARTIAL}
)

ALLOWED_TRANSITIONS: dict[ImportJobStatus, frozenset[ImportJobStatus]] = {
    ImportJobStatus.PENDING: frozenset({ImportJobStatus.PROCESSING}),
    ImportJobStatus.PROCESSING: TERMINAL_STATUSES,
    ImportJobStatus.COMPLETED: frozenset(),
    ImportJobStatus.FAILED: frozenset(),
    ImportJobStatus.PARTIAL: frozenset(),
}


@dataclass(frozen=True)
class RowError:
    """Error attributed to one input row (BATCH_ROW for batch-level failures)."""
    row_index: int
    message: str
    site_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"rowIndex": self.row_index, "siteCode": self.site_code, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RowError:
        return cls(
            row_index=int(data.get("rowIndex", BATCH_ROW)),
            message=str(data.get("message", "")),
            site_code=data.get("siteCode"),
        )


@dataclass(frozen=True)
class ImportJob:
    """Durable record of one import attempt."""
    id: int | None
    filename: str
    total_rows: int
    success_count: int = 0
    error_count: int = 0
    errors: tuple[RowError, ...] = ()
    status: ImportJobStatus = ImportJobStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress(self) -> int:
        """Percent complete as shown to callers polling the job."""
        if self.status in (ImportJobStatus.COMPLETED, ImportJobStatus.PARTIAL):
            return 100
        if self.status is ImportJobStatus.PROCESSING and self.total_rows > 0:
            return round((self.success_count + self.error_count) / self.total_rows * 100)
        return 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "status": self.status.value,
            "progress": self.progress,
            "totalRows": self.total_rows,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "errors": [e.to_dict() for e in self.errors],
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class ImportResult:
    """Per-batch outcome returned by the importer and the pipeline."""
    inserted: int
    updated: int
    skipped: int = 0
    failed_rows: tuple[RowError, ...] = ()
    job_id: int | None = None
    status: ImportJobStatus | None = None

    @property
    def success_count(self) -> int:
        return self.inserted + self.updated + self.skipped

    @property
    def failed_row_count(self) -> int:
        return len({e.row_index for e in self.failed_rows if e.row_index != BATCH_ROW})
