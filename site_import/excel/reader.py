from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from site_import.models.site_record import COLUMN_ALIASES

"""Tabular file reader (CSV / XLSX).

The first row is the header; every following row is a data row. CSV cells are
read as text so site codes such as ``007`` keep their zeros. XLSX cells keep
their native type, so date serials arrive as numbers and formatted dates as
Timestamps; the normalizer copes with both.
"""

__all__ = [
    "REQUIRED_COLUMNS",
    "InvalidHeadersError",
    "TableData",
    "UnsupportedFileError",
    "read_table",
    "validate_headers",
]

# Canonical names. Either the canonical or the human-readable header satisfies
# the requirement.
REQUIRED_COLUMNS: tuple[str, ...] = (
    "site_code",
    "project_name",
    "site_name",
    "municipality",
    "province",
    "latitude",
    "longitude",
    "date_of_activation",
    "status",
)

CSV_SUFFIXES = {".csv", ".txt"}
EXCEL_SUFFIXES = {".xlsx", ".xlsm"}


class UnsupportedFileError(Exception):
    """Raised for file types other than CSV / XLSX, or unreadable files."""


class InvalidHeadersError(Exception):
    """Raised when required columns are missing from the header row."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        labels = ", ".join(COLUMN_ALIASES.get(c, c) for c in missing)
        super().__init__(f"Missing required columns: {labels}")


@dataclass
class TableData:
    columns: list[str]
    rows: list[dict[str, Any]]  # column name -> cell value (None for blanks)

    @property
    def total_rows(self) -> int:
        return len(self.rows)


def _clean_cell(value: Any) -> Any:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        # list-like cells; leave them to the normalizer
        return value
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    return value


def _frame_to_rows(df: pd.DataFrame) -> list[dict[str, Any]]:
    columns = [str(c).strip() for c in df.columns]
    rows: list[dict[str, Any]] = []
    for raw in df.itertuples(index=False, name=None):
        row = {col: _clean_cell(val) for col, val in zip(columns, raw, strict=False)}
        # fully blank lines (trailing rows in exported sheets)
        if all(v is None for v in row.values()):
            continue
        rows.append(row)
    return rows


def read_table(path: Path, sheet_name: str | int = 0) -> TableData:
    """Read a CSV or XLSX file into header + row dicts."""
    suffix = path.suffix.lower()
    try:
        if suffix in CSV_SUFFIXES:
            df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        elif suffix in EXCEL_SUFFIXES:
            df = pd.read_excel(path, sheet_name=sheet_name, dtype=object, engine="openpyxl")
        else:
            raise UnsupportedFileError(f"unsupported file type: {path.name}")
    except FileNotFoundError as e:
        raise UnsupportedFileError(f"file not found: {path}") from e
    except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as e:
        raise UnsupportedFileError(f"failed to parse {path.name}: {e}") from e

    return TableData(columns=[str(c).strip() for c in df.columns], rows=_frame_to_rows(df))


def validate_headers(
    columns: Iterable[str], required: Iterable[str] = REQUIRED_COLUMNS
) -> None:
    """Raise InvalidHeadersError when a required column has neither header variant."""
    present = {c.strip() for c in columns}
    missing = [
        name for name in required
        if name not in present and COLUMN_ALIASES.get(name) not in present
    ]
    if missing:
        raise InvalidHeadersError(missing)
