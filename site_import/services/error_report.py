from __future__ import annotations

from pathlib import Path

import pandas as pd

from ..models.import_job import ImportJob
from ..models.site_record import COLUMN_ALIASES

"""Downloadable CSV artefacts: per-job error report and the import template."""

__all__ = [
    "ERROR_REPORT_COLUMNS",
    "ReportUnavailableError",
    "TEMPLATE_EXAMPLE_ROW",
    "error_report_csv",
    "template_csv",
    "write_csv",
]

ERROR_REPORT_COLUMNS = ["Row Number", "Site Code", "Error Messages"]

TEMPLATE_EXAMPLE_ROW = {
    "site_code": "UNDP-TEST-001",
    "project_name": "Free-WIFI for All",
    "site_name": "Test Barangay Hall - AP 1",
    "barangay": "Raele",
    "municipality": "Itbayat",
    "province": "Batanes",
    "district": "District I",
    "latitude": "20.728794",
    "longitude": "121.804235",
    "date_of_activation": "2024-04-29",
    "status": "Pending",
}


class ReportUnavailableError(Exception):
    """The job has not finished yet, so there is no error report."""

    def __init__(self, job: ImportJob) -> None:
        self.job = job
        super().__init__(f"import job {job.id} is {job.status.value}; error report not available yet")


def error_report_csv(job: ImportJob) -> str:
    """One line per recorded error; header only when the job had none.

    Raises:
        ReportUnavailableError: the job is still Pending or Processing.
    """
    if not job.is_terminal:
        raise ReportUnavailableError(job)
    df = pd.DataFrame(
        [(e.row_index, e.site_code or "", e.message) for e in job.errors],
        columns=ERROR_REPORT_COLUMNS,
    )
    return df.to_csv(index=False, lineterminator="\n")


def template_csv() -> str:
    """Human-readable header row plus one example row."""
    df = pd.DataFrame(
        [[TEMPLATE_EXAMPLE_ROW[c] for c in COLUMN_ALIASES]],
        columns=list(COLUMN_ALIASES.values()),
    )
    return df.to_csv(index=False, lineterminator="\n")


def write_csv(content: str, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path
