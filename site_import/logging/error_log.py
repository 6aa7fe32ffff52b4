from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from site_import.models.error_record import ErrorRecord

"""Row error log (JSON Lines).

- Fixed record schema (no extra keys), see ERROR_LOG_SCHEMA
- One ``errors-YYYYMMDD-HHMMSS.log`` file (UTC) per run, created lazily
- Records are buffered and written on flush()
"""

__all__ = [
    "ERROR_LOG_SCHEMA",
    "ErrorLogBuffer",
    "ErrorRecord",
]

DEFAULT_LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"

ERROR_LOG_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "required": ["timestamp", "job_id", "file", "row", "site_code", "error_type", "message"],
    "properties": {
        "timestamp": {"type": "string", "pattern": "Z$"},
        "job_id": {"type": ["integer", "null"]},
        "file": {"type": "string"},
        "row": {"type": "integer", "minimum": -1},
        "site_code": {"type": ["string", "null"]},
        "error_type": {"type": "string", "pattern": "^[A-Z][A-Z_]*$"},
        "message": {"type": "string"},
    },
}


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush writes JSON Lines.

    Not thread safe; the pipeline runs on a single event loop.
    """

    def __init__(self, logs_dir: Path | str = DEFAULT_LOGS_DIR) -> None:
        self._logs_dir = Path(logs_dir)
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def extend(self, records: list[ErrorRecord]) -> None:
        self._records.extend(records)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records to the log file; None when nothing was buffered."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
