from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

"""SQL for the ``audit_logs`` table."""

INSERT_AUDIT = """
INSERT INTO audit_logs (user_id, table_name, record_id, action, old_values, new_values, created_at)
VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, NOW())
"""


def _json(values: dict[str, Any] | None) -> str | None:
    return json.dumps(values, ensure_ascii=False, default=str) if values is not None else None


class AuditRepository:
    async def insert_entries(self, conn: Any, entries: Sequence[Any]) -> None:
        """Write AuditEntry objects in one executemany call."""
        if not entries:
            return
        await conn.executemany(
            INSERT_AUDIT,
            [
                (
                    e.user_id,
                    e.entity.value,
                    e.record_id,
                    e.action.value,
                    _json(e.old_values),
                    _json(e.new_values),
                )
                for e in entries
            ],
        )
