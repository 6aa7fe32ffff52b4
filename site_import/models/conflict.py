from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .site_record import ExistingRecord, NormalizedRecord

"""Conflict / resolution models.

The detector emits exactly one ``Conflict`` per normalized row (``NO_MATCH``
included), the operator answers with ``Resolution`` objects, and the resolver
partitions the conflicts into a ``ResolveResult``.
"""

__all__ = [
    "Conflict",
    "ConflictType",
    "DetectionResult",
    "Resolution",
    "ResolutionAction",
    "ResolveResult",
]


class ConflictType(Enum):
    """Relationship between an incoming row and the store."""
    EXACT_DUPLICATE = "ExactDuplicate"
    SITE_CODE_MATCH_DIFFERENT_DATA = "SiteCodeMatchDifferentData"
    NO_MATCH = "NoMatch"


class ResolutionAction(Enum):
    OVERRIDE = "Override"
    SKIP = "Skip"


@dataclass(frozen=True)
class Conflict:
    """Classification of one incoming row.

    Invariant: NO_MATCH <=> existing is None <=> differences == ().
    """
    row_index: int
    conflict_type: ConflictType
    existing: ExistingRecord | None
    incoming: NormalizedRecord
    differences: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        no_match = self.conflict_type is ConflictType.NO_MATCH
        if no_match != (self.existing is None):
            raise ValueError(
                f"row {self.row_index}: {self.conflict_type.value} requires "
                f"existing to be {'None' if no_match else 'set'}"
            )
        if no_match and self.differences:
            raise ValueError(f"row {self.row_index}: NoMatch cannot carry differences")
        if self.conflict_type is ConflictType.EXACT_DUPLICATE and self.differences:
            raise ValueError(f"row {self.row_index}: ExactDuplicate cannot carry differences")
        if self.conflict_type is ConflictType.SITE_CODE_MATCH_DIFFERENT_DATA and not self.differences:
            raise ValueError(f"row {self.row_index}: SiteCodeMatchDifferentData needs differences")

    @property
    def needs_resolution(self) -> bool:
        return self.conflict_type is not ConflictType.NO_MATCH

    def to_dict(self) -> dict[str, Any]:
        """Wire shape consumed by the HTTP layer / diff UI."""
        return {
            "rowIndex": self.row_index,
            "conflictType": self.conflict_type.value,
            "existing": self.existing.to_values() if self.existing else None,
            "incoming": self.incoming.to_values(),
            "differences": list(self.differences),
        }


@dataclass(frozen=True)
class Resolution:
    """Operator decision for one conflicting row."""
    row_index: int
    action: ResolutionAction

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Resolution:
        """Accepts both ``rowIndex`` (UI payloads) and ``row_index`` keys."""
        row_index = data.get("rowIndex", data.get("row_index"))
        if row_index is None:
            raise ValueError(f"resolution without row index: {dict(data)}")
        action = str(data.get("action", "")).strip().capitalize()
        return cls(row_index=int(row_index), action=ResolutionAction(action))


@dataclass(frozen=True)
class DetectionResult:
    conflicts: list[Conflict]
    new_count: int
    total_count: int

    @property
    def conflict_count(self) -> int:
        return self.total_count - self.new_count

    @property
    def new_records(self) -> list[NormalizedRecord]:
        return [c.incoming for c in self.conflicts if c.conflict_type is ConflictType.NO_MATCH]


@dataclass(frozen=True)
class ResolveResult:
    to_override: list[Conflict] = field(default_factory=list)
    to_skip: list[Conflict] = field(default_factory=list)
    unresolved: list[Conflict] = field(default_factory=list)
