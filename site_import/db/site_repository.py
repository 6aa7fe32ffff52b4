from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Any

from site_import.db.batch_write import BatchMetrics, batch_write, columns_to_arrays
from site_import.models.site_record import MUTABLE_FIELDS, ExistingRecord, NormalizedRecord

"""SQL for the ``project_sites`` table.

Every method takes the connection to run on, so callers decide the
transaction boundary.
"""

__all__ = [
    "SITE_COLUMNS",
    "SiteRepository",
]

SITE_COLUMNS: tuple[str, ...] = (
    "site_code",
    "project_type",
    "site_name",
    "barangay",
    "municipality",
    "province",
    "district",
    "latitude",
    "longitude",
    "activation_date",
    "status",
)

_ARRAY_TYPES: dict[str, str] = {
    "latitude": "float8[]",
    "longitude": "float8[]",
    "activation_date": "date[]",
}


def _unnest_params() -> str:
    return ", ".join(
        f"${i}::{_ARRAY_TYPES.get(col, 'text[]')}" for i, col in enumerate(SITE_COLUMNS, start=1)
    )


SELECT_BY_SITE_CODES = """
SELECT id, site_code, project_type, site_name, barangay, municipality, province,
       district, latitude, longitude, activation_date, status
FROM project_sites
WHERE site_code = ANY($1::text[])
"""

_UPDATABLE = [c for c in SITE_COLUMNS if c != "site_code"]

# Detection runs outside the commit transaction, so another import may have
# created a site code since. Concurrent imports are last-writer-wins.
INSERT_SITES = f"""
INSERT INTO project_sites ({", ".join(SITE_COLUMNS)})
SELECT * FROM unnest({_unnest_params()})
ON CONFLICT (site_code) DO UPDATE
SET {", ".join(f"{c} = EXCLUDED.{c}" for c in _UPDATABLE)},
    updated_at = NOW()
RETURNING id, site_code
"""


def _incoming(col: str) -> str:
    # the store keeps coordinates as NUMERIC(10,8)/(11,8)
    if col == "latitude":
        return "u.latitude::numeric(10, 8)"
    if col == "longitude":
        return "u.longitude::numeric(11, 8)"
    return f"u.{col}"


# Rows whose compared fields (MUTABLE_FIELDS, as in detection) already equal
# the incoming ones are left untouched, so overriding an exact duplicate
# changes nothing, project_type included.
UPDATE_SITES = f"""
UPDATE project_sites AS ps
SET {", ".join(f"{c} = {_incoming(c)}" for c in _UPDATABLE)},
    updated_at = NOW()
FROM unnest({_unnest_params()}) AS u({", ".join(SITE_COLUMNS)})
WHERE ps.site_code = u.site_code
  AND ({", ".join(f"ps.{c}" for c in MUTABLE_FIELDS)})
      IS DISTINCT FROM ({", ".join(_incoming(c) for c in MUTABLE_FIELDS)})
RETURNING ps.id, ps.site_code
"""


def _db_row(record: NormalizedRecord) -> dict[str, Any]:
    return {
        "site_code": record.site_code,
        "project_type": record.project_type.value,
        "site_name": record.site_name,
        "barangay": record.barangay,
        "municipality": record.municipality,
        "province": record.province,
        "district": record.district,
        "latitude": record.latitude,
        "longitude": record.longitude,
        "activation_date": record.activation_date,
        "status": record.status.value,
    }


class SiteRepository:
    async def fetch_by_site_codes(
        self, conn: Any, site_codes: Iterable[str]
    ) -> dict[str, ExistingRecord]:
        """One query for the whole batch, keyed by site code."""
        codes = sorted({c for c in site_codes if c})
        if not codes:
            return {}
        rows = await conn.fetch(SELECT_BY_SITE_CODES, codes)
        return {row["site_code"]: ExistingRecord.from_row(row) for row in rows}

    async def insert_sites(
        self,
        conn: Any,
        records: Sequence[NormalizedRecord],
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
    ) -> dict[str, int]:
        """Insert records; returns site_code -> new id."""
        arrays = columns_to_arrays([_db_row(r) for r in records], SITE_COLUMNS)
        rows = await batch_write(
            conn, INSERT_SITES, arrays,
            label="insert project_sites", metrics_callback=metrics_callback,
        )
        return {row["site_code"]: row["id"] for row in rows}

    async def update_sites(
        self,
        conn: Any,
        records: Sequence[NormalizedRecord],
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
    ) -> dict[str, int]:
        """Update by site code; returns site_code -> id for rows that changed."""
        arrays = columns_to_arrays([_db_row(r) for r in records], SITE_COLUMNS)
        rows = await batch_write(
            conn, UPDATE_SITES, arrays,
            label="update project_sites", metrics_callback=metrics_callback,
        )
        return {row["site_code"]: row["id"] for row in rows}
