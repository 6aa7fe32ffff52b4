from __future__ import annotations

import asyncio

import pytest

from site_import.db.batch_write import (
    BatchMetrics,
    BatchWriteError,
    batch_write,
    columns_to_arrays,
)


class DummyConnection:
    def __init__(self, returned=None, error: Exception | None = None) -> None:
        self.calls: list[tuple] = []
        self.returned = returned or []
        self.error = error

    async def fetch(self, sql, *args):
        self.calls.append((sql, args))
        if self.error is not None:
            raise self.error
        return self.returned


def test_columns_to_arrays():
    rows = [{"a": 1, "b": "x"}, {"a": 2}]
    assert columns_to_arrays(rows, ["a", "b"]) == [[1, 2], ["x", None]]


def test_batch_write_single_statement():
    conn = DummyConnection(returned=[{"id": 1}, {"id": 2}])
    metrics: list[BatchMetrics] = []
    rows = asyncio.run(
        batch_write(conn, "INSERT ...", [[1, 2], ["a", "b"]], label="insert t", metrics_callback=metrics.append)
    )
    assert rows == [{"id": 1}, {"id": 2}]
    assert conn.calls == [("INSERT ...", ([1, 2], ["a", "b"]))]
    assert len(metrics) == 1
    assert metrics[0].statement == "insert t"
    assert metrics[0].batch_size == 2
    assert metrics[0].elapsed_seconds >= 0


def test_batch_write_empty_is_noop():
    conn = DummyConnection()
    metrics: list[BatchMetrics] = []
    assert asyncio.run(batch_write(conn, "X", [[], []], label="t", metrics_callback=metrics.append)) == []
    assert asyncio.run(batch_write(conn, "X", [], label="t")) == []
    assert conn.calls == []
    assert metrics == []


def test_batch_write_wraps_driver_errors():
    conn = DummyConnection(error=RuntimeError("unique violation"))
    metrics: list[BatchMetrics] = []
    with pytest.raises(BatchWriteError, match="update t: unique violation"):
        asyncio.run(batch_write(conn, "X", [[1]], label="update t", metrics_callback=metrics.append))
    # timing is still reported for the failed statement
    assert len(metrics) == 1
