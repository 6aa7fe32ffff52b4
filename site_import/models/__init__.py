"""Domain models for the project-site import pipeline."""

from .config_models import DatabaseConfig, ImportConfig, ImportSettings, PoolConfig
from .conflict import (
    Conflict,
    ConflictType,
    DetectionResult,
    Resolution,
    ResolutionAction,
    ResolveResult,
)
from .error_record import ErrorRecord, ErrorType
from .import_job import BATCH_ROW, ImportJob, ImportJobStatus, ImportResult, RowError
from .site_record import (
    COLUMN_ALIASES,
    MUTABLE_FIELDS,
    ExistingRecord,
    NormalizedRecord,
    ProjectType,
    RawRow,
    SiteStatus,
)

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "ImportSettings",
    "PoolConfig",
    # Records
    "COLUMN_ALIASES",
    "MUTABLE_FIELDS",
    "ExistingRecord",
    "NormalizedRecord",
    "ProjectType",
    "RawRow",
    "SiteStatus",
    # Reconciliation
    "Conflict",
    "ConflictType",
    "DetectionResult",
    "Resolution",
    "ResolutionAction",
    "ResolveResult",
    # Jobs and errors
    "BATCH_ROW",
    "ErrorRecord",
    "ErrorType",
    "ImportJob",
    "ImportJobStatus",
    "ImportResult",
    "RowError",
]
