from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the site import pipeline.

Environment variables take precedence over the database section; see
``site_import.db.pool.resolve_dsn``.
"""


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection fallback used when env vars are not set."""
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class PoolConfig:
    """asyncpg pool sizing.

    ``max_size`` bounds how many imports can sit in their commit phase at the
    same time; ``acquire_timeout`` (seconds) is how long a caller waits for a
    connection before getting a retryable PoolExhaustedError.
    """
    min_size: int = 1
    max_size: int = 10
    acquire_timeout: float = 10.0


@dataclass(frozen=True)
class ImportSettings:
    error_log_dir: str = "./logs"
    max_reported_errors: int = 100  # errors shown when a job is polled
    site_code_pattern: str | None = None  # e.g. ^[A-Z]+-[A-Z]+-\d+[A-Z]?$


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    import_settings: ImportSettings = field(default_factory=ImportSettings)
