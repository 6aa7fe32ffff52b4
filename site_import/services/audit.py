from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from ..db.audit_repository import AuditRepository
from ..db.pool import acquire

"""Audit trail writer.

Best effort: a failed audit write is logged and swallowed, it never undoes the
data change it describes. Only tables listed in ``AuditEntity`` can be
audited; anything else is dropped with a warning before reaching SQL.
"""

__all__ = [
    "AuditAction",
    "AuditEntity",
    "AuditEntry",
    "AuditLogger",
    "AuditWriteError",
]

logger = logging.getLogger(__name__)


class AuditEntity(Enum):
    PROJECT_SITES = "project_sites"
    USERS = "users"
    CSV_IMPORTS = "csv_imports"
    PROJECT_TYPES = "project_types"
    PROVINCES = "provinces"
    MUNICIPALITIES = "municipalities"
    BARANGAYS = "barangays"
    DISTRICTS = "districts"


class AuditAction(Enum):
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    IMPORT = "Import"


class AuditWriteError(Exception):
    pass


@dataclass(frozen=True)
class AuditEntry:
    entity: AuditEntity | str
    action: AuditAction
    record_id: int | None
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    user_id: int | None = None


def _known_entity(entry: AuditEntry) -> AuditEntry | None:
    if isinstance(entry.entity, AuditEntity):
        return entry
    try:
        return replace(entry, entity=AuditEntity(entry.entity))
    except ValueError:
        logger.warning(
            "audit entry skipped: unknown entity %r (action=%s record_id=%s)",
            entry.entity, entry.action.value, entry.record_id,
        )
        return None


class AuditLogger:
    def __init__(
        self,
        pool: Any,
        repository: AuditRepository | None = None,
        *,
        acquire_timeout: float | None = None,
    ) -> None:
        self._pool = pool
        self._repository = repository or AuditRepository()
        self._acquire_timeout = acquire_timeout

    async def record_audit(self, entry: AuditEntry) -> bool:
        return await self.record_many([entry]) == 1

    async def record_many(self, entries: Iterable[AuditEntry]) -> int:
        """Write entries in one round trip; returns how many were written.

        Entries for unknown entities are skipped. A database failure is
        logged as AuditWriteError and reported as 0 written.
        """
        accepted = [e for e in map(_known_entity, entries) if e is not None]
        if not accepted:
            return 0
        try:
            async with acquire(self._pool, self._acquire_timeout) as conn:
                await self._repository.insert_entries(conn, accepted)
        except Exception as e:
            err = AuditWriteError(f"failed to write {len(accepted)} audit entries: {e}")
            logger.error("%s", err)
            return 0
        return len(accepted)
