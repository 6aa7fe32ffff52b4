from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

"""Project-site record models for the bulk-import pipeline.

A spreadsheet row travels through three shapes:

- ``RawRow``: whatever the reader produced (column name -> cell value)
- ``NormalizedRecord``: canonical, typed view of one row
- ``ExistingRecord``: the persisted ``project_sites`` row the incoming one is
  compared against
"""

__all__ = [
    "COLUMN_ALIASES",
    "MUTABLE_FIELDS",
    "ExistingRecord",
    "NormalizedRecord",
    "ProjectType",
    "RawRow",
    "SiteStatus",
]

RawRow = Mapping[str, Any]

# canonical column name -> human-readable spreadsheet header
COLUMN_ALIASES: dict[str, str] = {
    "site_code": "Site Code",
    "project_name": "Project Name",
    "site_name": "Site Name",
    "barangay": "Barangay",
    "municipality": "Municipality",
    "province": "Province",
    "district": "District",
    "latitude": "Latitude",
    "longitude": "Longitude",
    "date_of_activation": "Date of Activation",
    "status": "Status",
}

# Compared field by field during detection. The order is part of the output
# contract: Conflict.differences always follows it.
MUTABLE_FIELDS: tuple[str, ...] = (
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


class ProjectType(Enum):
    """Programme a site belongs to."""
    FREE_WIFI = "FreeWifi"
    PNPKI = "PNPKI"
    IIDB = "IIDB"
    ELGU = "eLGU"


class SiteStatus(Enum):
    """Lifecycle status of a project site."""
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    DONE = "Done"
    CANCELLED = "Cancelled"
    ON_HOLD = "OnHold"


@dataclass(frozen=True)
class NormalizedRecord:
    """Canonical view of one spreadsheet row.

    ``row_index`` is the 1-based data row number (header excluded).
    ``issues`` carries parse problems found while normalizing (for example a
    latitude that is not a number); the validator turns them into row errors.
    It does not take part in equality.
    """
    row_index: int
    site_code: str
    project_type: ProjectType
    site_name: str | None
    barangay: str | None
    municipality: str | None
    province: str | None
    district: str | None
    latitude: float | None
    longitude: float | None
    activation_date: date | None
    status: SiteStatus
    issues: tuple[str, ...] = field(default=(), compare=False)

    def to_values(self) -> dict[str, Any]:
        """Column values as persisted (enums flattened to their labels)."""
        return {
            "site_code": self.site_code,
            "project_type": self.project_type.value,
            "site_name": self.site_name,
            "barangay": self.barangay,
            "municipality": self.municipality,
            "province": self.province,
            "district": self.district,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "activation_date": self.activation_date.isoformat() if self.activation_date else None,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ExistingRecord:
    """Persisted ``project_sites`` row, read-only outside the importer."""
    id: int
    site_code: str
    project_type: ProjectType | None
    site_name: str | None
    barangay: str | None
    municipality: str | None
    province: str | None
    district: str | None
    latitude: float | None
    longitude: float | None
    activation_date: date | None
    status: SiteStatus

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ExistingRecord:
        project_type = row.get("project_type")
        lat = row.get("latitude")
        lng = row.get("longitude")
        return cls(
            id=row["id"],
            site_code=row["site_code"],
            project_type=ProjectType(project_type) if project_type else None,
            site_name=row.get("site_name"),
            barangay=row.get("barangay"),
            municipality=row.get("municipality"),
            province=row.get("province"),
            district=row.get("district"),
            # DECIMAL columns come back as Decimal
            latitude=float(lat) if lat is not None else None,
            longitude=float(lng) if lng is not None else None,
            activation_date=row.get("activation_date"),
            status=SiteStatus(row["status"]),
        )

    def to_values(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "site_code": self.site_code,
            "project_type": self.project_type.value if self.project_type else None,
            "site_name": self.site_name,
            "barangay": self.barangay,
            "municipality": self.municipality,
            "province": self.province,
            "district": self.district,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "activation_date": self.activation_date.isoformat() if self.activation_date else None,
            "status": self.status.value,
        }
