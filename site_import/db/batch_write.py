from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

"""Batched writes through array parameters.

One statement per batch: every column travels as one array parameter and the
statement expands them with ``unnest``. Keeps a commit to a couple of round
trips regardless of row count.
"""

__all__ = [
    "BatchMetrics",
    "BatchWriteError",
    "batch_write",
    "columns_to_arrays",
]


class BatchWriteError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing for a single batch statement."""
    statement: str  # short label, e.g. "insert project_sites"
    batch_size: int
    elapsed_seconds: float
    start_time: float
    end_time: float


def columns_to_arrays(rows: Sequence[dict[str, Any]], columns: Sequence[str]) -> list[list[Any]]:
    """Row dicts -> one list per column, in ``columns`` order."""
    return [[row.get(col) for row in rows] for col in columns]


async def batch_write(
    conn: Any,
    sql: str,
    arrays: Sequence[list[Any]],
    *,
    label: str,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> list[Any]:
    """Run one array-parameter statement and return its RETURNING rows.

    metrics_callback is not invoked for empty batches (nothing is executed).
    """
    batch_size = len(arrays[0]) if arrays else 0
    if batch_size == 0:
        return []

    start_time = time.time()
    try:
        returned = await conn.fetch(sql, *arrays)
    except Exception as e:
        raise BatchWriteError(f"{label}: {e}") from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    statement=label,
                    batch_size=batch_size,
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )
    return list(returned)
