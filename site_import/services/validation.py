from __future__ import annotations

import re
from collections.abc import Iterable

from ..models.site_record import NormalizedRecord

"""Field-level validation run before anything touches the database.

A record that fails validation is excluded from detection and commit and is
reported as a row error; it never blocks the rows that do validate.
"""

__all__ = [
    "RecordValidator",
    "ValidationError",
]

LATITUDE_RANGE = (-90.0, 90.0)
LONGITUDE_RANGE = (-180.0, 180.0)


class ValidationError(Exception):
    """Row parsed but violates one or more field constraints."""

    def __init__(self, row_index: int, messages: list[str], site_code: str | None = None) -> None:
        self.row_index = row_index
        self.messages = messages
        self.site_code = site_code
        super().__init__(f"row {row_index}: {'; '.join(messages)}")

    @property
    def message(self) -> str:
        return "; ".join(self.messages)


class RecordValidator:
    """Checks coordinates, site code presence/format and in-file duplicates.

    ``site_code_pattern`` is optional; the legacy template format is
    ``^[A-Z]+-[A-Z]+-\\d+[A-Z]?$``.
    """

    def __init__(self, site_code_pattern: str | None = None) -> None:
        self._pattern = re.compile(site_code_pattern) if site_code_pattern else None

    def check(self, record: NormalizedRecord) -> list[str]:
        problems = list(record.issues)
        if not record.site_code:
            problems.append("Site Code is required")
        elif self._pattern is not None and not self._pattern.match(record.site_code):
            problems.append(f'Site Code "{record.site_code}" does not match the expected format')
        if record.latitude is not None and not (
            LATITUDE_RANGE[0] <= record.latitude <= LATITUDE_RANGE[1]
        ):
            problems.append("Latitude must be a number between -90 and 90")
        if record.longitude is not None and not (
            LONGITUDE_RANGE[0] <= record.longitude <= LONGITUDE_RANGE[1]
        ):
            problems.append("Longitude must be a number between -180 and 180")
        return problems

    def validate(self, record: NormalizedRecord) -> None:
        problems = self.check(record)
        if problems:
            raise ValidationError(record.row_index, problems, record.site_code or None)

    def partition(
        self, records: Iterable[NormalizedRecord]
    ) -> tuple[list[NormalizedRecord], list[ValidationError]]:
        """Split records into (valid, errors).

        A site code repeated within the same batch is only accepted the first
        time; later rows would collide on the unique key inside the commit
        transaction and take the whole batch down with them.
        """
        valid: list[NormalizedRecord] = []
        errors: list[ValidationError] = []
        seen: dict[str, int] = {}
        for record in records:
            problems = self.check(record)
            if not problems and record.site_code in seen:
                problems.append(
                    f'Site Code "{record.site_code}" already appears in row {seen[record.site_code]}'
                )
            if problems:
                errors.append(ValidationError(record.row_index, problems, record.site_code or None))
                continue
            seen[record.site_code] = record.row_index
            valid.append(record)
        return valid, errors
