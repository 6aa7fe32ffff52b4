from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

Every rejected row (and every batch-level failure, with row=-1) is written as
one record. The key set is fixed; see ``ERROR_LOG_SCHEMA`` in
``site_import.logging.error_log``.
"""

__all__ = [
    "ErrorRecord",
    "ErrorType",
]


class ErrorType:
    """error_type values written to the log (UPPER_SNAKE)."""
    NORMALIZATION = "NORMALIZATION_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    COMMIT = "COMMIT_ERROR"


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        job_id: Import job the error belongs to (None before the job exists)
        file: Uploaded file name
        row: 1-based data row. -1 for batch-level errors
        site_code: Site code of the row when known
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Human-readable description
    """
    timestamp: str
    job_id: int | None
    file: str
    row: int
    site_code: str | None
    error_type: str
    message: str

    @staticmethod
    def create(
        file: str,
        row: int,
        error_type: str,
        message: str,
        *,
        job_id: int | None = None,
        site_code: str | None = None,
    ) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            job_id=job_id,
            file=file,
            row=row,
            site_code=site_code,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
