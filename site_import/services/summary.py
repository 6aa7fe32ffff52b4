from __future__ import annotations

from ..models.import_job import ImportJob, ImportResult

"""SUMMARY line rendering for finished import jobs.

Format:
    SUMMARY job={id} file={filename} status={status} rows={total}
    success={success} errors={errors} inserted={n} updated={n} skipped={n}
    elapsed_sec={elapsed}

(one line; ``inserted``/``updated``/``skipped`` are 0 when no ImportResult is
available, e.g. for a job that failed in the transaction)
"""

__all__ = [
    "format_seconds",
    "render_summary_line",
]


def format_seconds(seconds: float) -> str:
    """Seconds without scientific notation or trailing zeros."""
    if seconds <= 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    return f"{seconds:.3f}".rstrip("0").rstrip(".") or "0"


def render_summary_line(job: ImportJob, result: ImportResult | None = None) -> str:
    elapsed = 0.0
    if job.started_at is not None and job.completed_at is not None:
        elapsed = (job.completed_at - job.started_at).total_seconds()
    return (
        f"SUMMARY job={job.id} "
        f"file={job.filename} "
        f"status={job.status.value} "
        f"rows={job.total_rows} "
        f"success={job.success_count} "
        f"errors={job.error_count} "
        f"inserted={result.inserted if result else 0} "
        f"updated={result.updated if result else 0} "
        f"skipped={result.skipped if result else 0} "
        f"elapsed_sec={format_seconds(elapsed)}"
    )
