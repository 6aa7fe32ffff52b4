from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum
from typing import Any

from ..db.pool import acquire
from ..db.site_repository import SiteRepository
from ..models.conflict import Conflict, ConflictType, DetectionResult
from ..models.site_record import MUTABLE_FIELDS, ExistingRecord, NormalizedRecord

"""Duplicate / conflict detection.

Read-only: looks up every incoming site code in one query and classifies each
row against what is stored. Running it twice on the same input gives the same
answer.
"""

__all__ = [
    "COORDINATE_TOLERANCE",
    "ConflictDetector",
    "classify",
    "diff_fields",
]

logger = logging.getLogger(__name__)

# project_sites keeps coordinates as DECIMAL(10,8)/(11,8)
COORDINATE_TOLERANCE = 1e-7

_COORDINATE_FIELDS = frozenset({"latitude", "longitude"})


def _comparable(value: Any) -> Any:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _same(field_name: str, stored: Any, incoming: Any) -> bool:
    a, b = _comparable(stored), _comparable(incoming)
    if a is None or b is None:
        return a is None and b is None
    if field_name in _COORDINATE_FIELDS:
        return abs(float(a) - float(b)) <= COORDINATE_TOLERANCE
    return a == b


def diff_fields(existing: ExistingRecord, incoming: NormalizedRecord) -> tuple[str, ...]:
    """Names of the mutable fields that differ, in MUTABLE_FIELDS order."""
    return tuple(
        name
        for name in MUTABLE_FIELDS
        if not _same(name, getattr(existing, name), getattr(incoming, name))
    )


def classify(incoming: NormalizedRecord, existing: ExistingRecord | None) -> Conflict:
    if existing is None:
        return Conflict(incoming.row_index, ConflictType.NO_MATCH, None, incoming)
    differences = diff_fields(existing, incoming)
    if not differences:
        return Conflict(incoming.row_index, ConflictType.EXACT_DUPLICATE, existing, incoming)
    return Conflict(
        incoming.row_index,
        ConflictType.SITE_CODE_MATCH_DIFFERENT_DATA,
        existing,
        incoming,
        differences,
    )


class ConflictDetector:
    """Classifies validated records against ``project_sites``."""

    def __init__(
        self,
        pool: Any,
        repository: SiteRepository | None = None,
        *,
        acquire_timeout: float | None = None,
    ) -> None:
        self._pool = pool
        self._repository = repository or SiteRepository()
        self._acquire_timeout = acquire_timeout

    async def detect(self, records: Sequence[NormalizedRecord]) -> DetectionResult:
        if not records:
            return DetectionResult(conflicts=[], new_count=0, total_count=0)

        async with acquire(self._pool, self._acquire_timeout) as conn:
            existing = await self._repository.fetch_by_site_codes(
                conn, (r.site_code for r in records)
            )

        conflicts = [classify(r, existing.get(r.site_code)) for r in records]
        new_count = sum(1 for c in conflicts if c.conflict_type is ConflictType.NO_MATCH)
        logger.debug(
            "detect: %d rows, %d new, %d matched existing",
            len(conflicts), new_count, len(conflicts) - new_count,
        )
        return DetectionResult(conflicts=conflicts, new_count=new_count, total_count=len(conflicts))
