from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Row progress display with tqdm (TTY only).

Non-TTY runs (CI, cron, piped output) get no bar at all so logs stay free of
control sequences.
"""

__all__ = [
    "RowProgress",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class RowProgress:
    """Counts rows through one pipeline stage.

    ``advance`` has the ``on_progress`` callback shape used by
    ``normalize_rows``, so an instance can be passed straight in.
    """

    def __init__(self, total_rows: int, *, description: str = "Rows") -> None:
        self.total_rows = total_rows
        self.description = description
        self.done = 0
        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None = None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                leave=False,
                ncols=80,
                ascii=True,
            )

    def advance(self, n: int = 1) -> None:
        self.done += n
        if self.pbar is not None:
            self.pbar.update(n)

    def set_stage(self, description: str) -> None:
        self.description = description
        if self.pbar is not None:
            self.pbar.set_description(description)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> RowProgress:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
