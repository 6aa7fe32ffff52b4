from __future__ import annotations

from collections.abc import Iterable

from ..models.conflict import Conflict, ConflictType, Resolution, ResolutionAction, ResolveResult
from ..models.import_job import ImportJob

"""Applies operator resolutions to detected conflicts.

Pure function over its inputs. NoMatch rows are not part of the result; they
go to the importer as inserts.
"""

__all__ = [
    "ConflictUnresolvedError",
    "ensure_resolved",
    "resolve",
]


class ConflictUnresolvedError(Exception):
    """Conflicting rows with no operator decision; nothing was written."""

    def __init__(self, row_indexes: list[int], job: ImportJob | None = None) -> None:
        self.row_indexes = sorted(row_indexes)
        self.job = job
        rows = ", ".join(str(i) for i in self.row_indexes)
        super().__init__(f"{len(self.row_indexes)} conflict(s) need a resolution (rows {rows})")


def resolve(conflicts: Iterable[Conflict], resolutions: Iterable[Resolution]) -> ResolveResult:
    """Partition conflicts into override / skip / unresolved.

    - ExactDuplicate: Skip unless an explicit Override is given
    - SiteCodeMatchDifferentData: needs a resolution, otherwise unresolved
    - resolutions for rows that are not conflicts are ignored
    """
    by_row: dict[int, ResolutionAction] = {}
    for resolution in resolutions:
        by_row[resolution.row_index] = resolution.action

    result = ResolveResult()
    for conflict in conflicts:
        if conflict.conflict_type is ConflictType.NO_MATCH:
            continue
        action = by_row.get(conflict.row_index)
        if action is None and conflict.conflict_type is ConflictType.EXACT_DUPLICATE:
            action = ResolutionAction.SKIP

        if action is ResolutionAction.OVERRIDE:
            result.to_override.append(conflict)
        elif action is ResolutionAction.SKIP:
            result.to_skip.append(conflict)
        else:
            result.unresolved.append(conflict)
    return result


def ensure_resolved(result: ResolveResult, job: ImportJob | None = None) -> None:
    if result.unresolved:
        raise ConflictUnresolvedError([c.row_index for c in result.unresolved], job)
