from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta
from typing import Any

from ..models.site_record import (
    COLUMN_ALIASES,
    NormalizedRecord,
    ProjectType,
    RawRow,
    SiteStatus,
)

"""Row normalizer: raw spreadsheet row -> NormalizedRecord.

Pure functions, no I/O. Rows that cannot be identified at all (no site code
and no site name) raise NormalizationError; ``normalize_rows`` collects those
instead of aborting the batch.
"""

__all__ = [
    "NormalizationError",
    "derive_project_type",
    "excel_serial_to_date",
    "normalize",
    "normalize_rows",
    "normalize_status",
    "parse_activation_date",
]


class NormalizationError(Exception):
    """Row carries no identifying information and cannot be processed."""

    def __init__(self, row_index: int, reason: str) -> None:
        self.row_index = row_index
        self.reason = reason
        super().__init__(f"row {row_index}: {reason}")


# Checked in order; first substring hit wins.
PROJECT_TYPE_KEYWORDS: tuple[tuple[str, ProjectType], ...] = (
    ("WIFI", ProjectType.FREE_WIFI),
    ("PNPKI", ProjectType.PNPKI),
    ("IIDB", ProjectType.IIDB),
    ("ELGU", ProjectType.ELGU),
)
DEFAULT_PROJECT_TYPE = ProjectType.FREE_WIFI

STATUS_MAP: dict[str, SiteStatus] = {
    "DONE": SiteStatus.DONE,
    "COMPLETED": SiteStatus.DONE,
    "PENDING": SiteStatus.PENDING,
    "IN PROGRESS": SiteStatus.PENDING,
    "ONGOING": SiteStatus.PENDING,
    "CANCELLED": SiteStatus.CANCELLED,
    "CANCELED": SiteStatus.CANCELLED,
    "DELAYED": SiteStatus.CANCELLED,
}
DEFAULT_STATUS = SiteStatus.PENDING

# 1900 date system. Excel believes 1900-02-29 existed (serial 60), so real
# dates from 1900-03-01 on are offset by one day against a 1899-12-31 epoch.
_EPOCH_BEFORE_LEAP_BUG = date(1899, 12, 31)
_EPOCH_AFTER_LEAP_BUG = date(1899, 12, 30)
_FICTITIOUS_LEAP_DAY = 60
_MAX_SERIAL = 2958465  # 9999-12-31


def _pick(raw: RawRow, canonical: str) -> Any:
    """Canonical column wins when both spellings carry a value."""
    value = raw.get(canonical)
    if _is_blank(value):
        value = raw.get(COLUMN_ALIASES.get(canonical, canonical))
    return None if _is_blank(value) else value


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _text(value: Any) -> str | None:
    if _is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        # numeric cells such as a district number typed as 1
        value = int(value)
    return str(value).strip()


def derive_project_type(project_name: Any) -> ProjectType:
    """Map free-text project name to a ProjectType.

    Unrecognised names fall back to FreeWifi. That default mirrors the
    behaviour of the spreadsheets this pipeline replaced; it can hide a
    misclassified row.
    """
    text = _text(project_name)
    if text is None:
        return DEFAULT_PROJECT_TYPE
    upper = text.upper()
    for keyword, project_type in PROJECT_TYPE_KEYWORDS:
        if keyword in upper:
            return project_type
    return DEFAULT_PROJECT_TYPE


def normalize_status(status: Any) -> SiteStatus:
    """Map free-text status; anything unmapped becomes Pending."""
    text = _text(status)
    if text is None:
        return DEFAULT_STATUS
    return STATUS_MAP.get(" ".join(text.upper().split()), DEFAULT_STATUS)


def excel_serial_to_date(serial: float) -> date | None:
    """Convert an Excel 1900-system serial to a calendar date.

    The time-of-day fraction is dropped. Serial 60 (the non-existent
    1900-02-29) maps to 1900-02-28. Returns None for serials outside the range
    Excel itself accepts.
    """
    if isinstance(serial, bool) or math.isnan(serial) or math.isinf(serial):
        return None
    days = int(math.floor(serial))
    if days < 1 or days > _MAX_SERIAL:
        return None
    if days < _FICTITIOUS_LEAP_DAY:
        return _EPOCH_BEFORE_LEAP_BUG + timedelta(days=days)
    if days == _FICTITIOUS_LEAP_DAY:
        return date(1900, 2, 28)
    return _EPOCH_AFTER_LEAP_BUG + timedelta(days=days)


def parse_activation_date(value: Any) -> date | None:
    """Best-effort activation date; never raises.

    Accepts Excel serials (numbers or numeric strings), date/datetime values
    and ISO ``YYYY-MM-DD`` strings. Anything else is treated as unknown.
    """
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return excel_serial_to_date(float(value))
    text = str(value).strip()
    try:
        return excel_serial_to_date(float(text))
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _coordinate(raw: RawRow, canonical: str, issues: list[str]) -> float | None:
    value = _pick(raw, canonical)
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        issues.append(f"{COLUMN_ALIASES[canonical]} '{value}' is not a number")
        return None
    if math.isnan(number) or math.isinf(number):
        issues.append(f"{COLUMN_ALIASES[canonical]} '{value}' is not a finite number")
        return None
    return number


def normalize(raw: RawRow, row_index: int) -> NormalizedRecord:
    """Turn one raw row into a NormalizedRecord.

    Raises:
        NormalizationError: site code and site name are both empty.
    """
    site_code = _text(_pick(raw, "site_code"))
    site_name = _text(_pick(raw, "site_name"))
    if site_code is None and site_name is None:
        raise NormalizationError(row_index, "Site Code and Site Name are both empty")

    issues: list[str] = []
    latitude = _coordinate(raw, "latitude", issues)
    longitude = _coordinate(raw, "longitude", issues)

    return NormalizedRecord(
        row_index=row_index,
        site_code=site_code or "",
        project_type=derive_project_type(_pick(raw, "project_name")),
        site_name=site_name,
        barangay=_text(_pick(raw, "barangay")),
        municipality=_text(_pick(raw, "municipality")),
        province=_text(_pick(raw, "province")),
        district=_text(_pick(raw, "district")),
        latitude=latitude,
        longitude=longitude,
        activation_date=parse_activation_date(_pick(raw, "date_of_activation")),
        status=normalize_status(_pick(raw, "status")),
        issues=tuple(issues),
    )


def normalize_rows(
    rows: Iterable[RawRow],
    on_progress: Callable[[int], None] | None = None,
) -> tuple[list[NormalizedRecord], list[NormalizationError]]:
    """Normalize every row; row indexes are 1-based in input order."""
    records: list[NormalizedRecord] = []
    errors: list[NormalizationError] = []
    for row_index, raw in enumerate(rows, start=1):
        try:
            records.append(normalize(raw, row_index))
        except NormalizationError as e:
            errors.append(e)
        if on_progress is not None:
            on_progress(1)
    return records, errors
