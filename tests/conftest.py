# Shared pytest fixtures: in-memory stand-ins for the asyncpg pool and repositories
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from pathlib import Path

import pytest

from site_import.db.batch_write import BatchWriteError
from site_import.logging.error_log import ErrorLogBuffer
from site_import.logging.init import LOGGER_NAME, reset_logging
from site_import.models.config_models import ImportConfig, ImportSettings
from site_import.models.import_job import ImportJob
from site_import.models.site_record import MUTABLE_FIELDS, ExistingRecord, ProjectType, SiteStatus
from site_import.services.pipeline import ImportPipeline


@dataclass
class FakeStore:
    sites: dict[str, ExistingRecord] = field(default_factory=dict)
    jobs: dict[int, ImportJob] = field(default_factory=dict)
    audit: list = field(default_factory=list)
    next_site_id: int = 100
    next_job_id: int = 1

    def snapshot(self) -> tuple:
        return dict(self.sites), dict(self.jobs), list(self.audit), self.next_site_id

    def restore(self, snap: tuple) -> None:
        sites, jobs, audit, next_site_id = snap
        self.sites, self.jobs, self.audit, self.next_site_id = dict(sites), dict(jobs), list(audit), next_site_id


class FakeConnection:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.transactions = 0
        self.rollbacks = 0

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        snap = self.store.snapshot()
        try:
            yield self
        except BaseException:
            self.rollbacks += 1
            self.store.restore(snap)
            raise


class FakePool:
    def __init__(self, store: FakeStore) -> None:
        self.store = store
        self.acquired = 0
        self.released = 0
        self.exhausted = False
        self.limit: int | None = None  # acquires served before the pool runs dry
        self.closed = False
        self.connections: list[FakeConnection] = []

    async def acquire(self, timeout=None):
        if self.exhausted or (self.limit is not None and self.acquired >= self.limit):
            raise asyncio.TimeoutError()
        self.acquired += 1
        conn = FakeConnection(self.store)
        self.connections.append(conn)
        return conn

    async def release(self, conn) -> None:
        self.released += 1

    async def close(self) -> None:
        self.closed = True


def _as_existing(record, record_id: int) -> ExistingRecord:
    return ExistingRecord(
        id=record_id,
        site_code=record.site_code,
        project_type=record.project_type,
        site_name=record.site_name,
        barangay=record.barangay,
        municipality=record.municipality,
        province=record.province,
        district=record.district,
        latitude=record.latitude,
        longitude=record.longitude,
        activation_date=record.activation_date,
        status=record.status,
    )


class FakeSiteRepository:
    """Mirrors SiteRepository on FakeStore.sites (update skips unchanged rows)."""

    def __init__(self) -> None:
        self.fail_on: str | None = None  # "insert" | "update"
        self.fetch_calls: list[list[str]] = []
        self.changed_rows = 0

    async def fetch_by_site_codes(self, conn, site_codes):
        codes = sorted({c for c in site_codes if c})
        self.fetch_calls.append(codes)
        return {c: conn.store.sites[c] for c in codes if c in conn.store.sites}

    async def insert_sites(self, conn, records, metrics_callback=None):
        if self.fail_on == "insert" and records:
            raise BatchWriteError("insert project_sites: duplicate key value")
        ids = {}
        store = conn.store
        for r in records:
            current = store.sites.get(r.site_code)
            if current is not None:
                # ON CONFLICT (site_code) DO UPDATE: the last writer wins
                record_id = current.id
            else:
                store.next_site_id += 1
                record_id = store.next_site_id
            store.sites[r.site_code] = _as_existing(r, record_id)
            ids[r.site_code] = record_id
        return ids

    async def update_sites(self, conn, records, metrics_callback=None):
        if self.fail_on == "update" and records:
            raise BatchWriteError("update project_sites: connection reset")
        ids = {}
        for r in records:
            current = conn.store.sites.get(r.site_code)
            if current is None:
                continue
            updated = _as_existing(r, current.id)
            if any(getattr(updated, f) != getattr(current, f) for f in MUTABLE_FIELDS):
                conn.store.sites[r.site_code] = updated
                ids[r.site_code] = current.id
                self.changed_rows += 1
        return ids


class FakeJobRepository:
    async def insert_job(self, conn, filename, total_rows):
        store = conn.store
        job = ImportJob(
            id=store.next_job_id,
            filename=filename,
            total_rows=total_rows,
            created_at=datetime.now(UTC),
        )
        store.jobs[job.id] = job
        store.next_job_id += 1
        return job

    async def update_job(self, conn, job):
        conn.store.jobs[job.id] = job

    async def fetch_job(self, conn, job_id):
        return conn.store.jobs.get(job_id)

    async def list_jobs(self, conn, limit, offset):
        jobs = sorted(conn.store.jobs.values(), key=lambda j: j.id, reverse=True)
        return jobs[offset : offset + limit], len(jobs)

    async def delete_job(self, conn, job_id):
        return conn.store.jobs.pop(job_id, None) is not None


class FakeAuditRepository:
    def __init__(self) -> None:
        self.fail = False

    async def insert_entries(self, conn, entries):
        if self.fail:
            raise RuntimeError("audit_logs unavailable")
        conn.store.audit.extend(entries)


@pytest.fixture(autouse=True)
def _reset_logging():
    # setup_logging() detaches site_import from the root logger; undo it so caplog sees records
    def _clean() -> None:
        reset_logging()
        lg = logging.getLogger(LOGGER_NAME)
        lg.handlers.clear()
        lg.propagate = True
        lg.setLevel(logging.NOTSET)

    _clean()
    yield
    _clean()


@pytest.fixture()
def temp_workdir(monkeypatch, tmp_path: Path) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    (tmp_path / "logs").mkdir()
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: sitesdb
pool:
  min_size: 1
  max_size: 4
  acquire_timeout: 2
import:
  error_log_dir: ./logs
  max_reported_errors: 50
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def pool(store: FakeStore) -> FakePool:
    return FakePool(store)


@pytest.fixture()
def site_repo() -> FakeSiteRepository:
    return FakeSiteRepository()


@pytest.fixture()
def job_repo() -> FakeJobRepository:
    return FakeJobRepository()


@pytest.fixture()
def audit_repo() -> FakeAuditRepository:
    return FakeAuditRepository()


@pytest.fixture()
def import_config(tmp_path: Path) -> ImportConfig:
    return ImportConfig(import_settings=ImportSettings(error_log_dir=str(tmp_path / "logs")))


@pytest.fixture()
def pipeline(pool, import_config, site_repo, job_repo, audit_repo) -> ImportPipeline:
    return ImportPipeline(
        pool,
        import_config,
        sites=site_repo,
        jobs=job_repo,
        audits=audit_repo,
        error_log=ErrorLogBuffer(import_config.import_settings.error_log_dir),
    )


@pytest.fixture()
def make_existing():
    def _make(site_code: str = "S1", record_id: int = 1, **overrides) -> ExistingRecord:
        values = dict(
            id=record_id,
            site_code=site_code,
            project_type=ProjectType.FREE_WIFI,
            site_name="Brgy Hall",
            barangay="Raele",
            municipality="Itbayat",
            province="Batanes",
            district="District I",
            latitude=20.728794,
            longitude=121.804235,
            activation_date=date(2024, 4, 29),
            status=SiteStatus.PENDING,
        )
        values.update(overrides)
        return ExistingRecord(**values)

    return _make


@pytest.fixture()
def make_row():
    """Raw spreadsheet row (human-readable headers) matching make_existing defaults."""

    def _make(site_code: str = "S1", **overrides) -> dict:
        row = {
            "Site Code": site_code,
            "Project Name": "Free-WIFI for All",
            "Site Name": "Brgy Hall",
            "Barangay": "Raele",
            "Municipality": "Itbayat",
            "Province": "Batanes",
            "District": "District I",
            "Latitude": "20.728794",
            "Longitude": "121.804235",
            "Date of Activation": "2024-04-29",
            "Status": "Pending",
        }
        row.update(overrides)
        return row

    return _make


@pytest.fixture()
def seed(store: FakeStore):
    def _seed(*records: ExistingRecord) -> None:
        for r in records:
            store.sites[r.site_code] = r
            store.next_site_id = max(store.next_site_id, r.id)

    return _seed


@pytest.fixture()
def pending_job(store: FakeStore):
    """Pending job registered in the store, as ImportJobLedger.start leaves it."""

    def _make(total_rows: int = 3, job_id: int = 7) -> ImportJob:
        job = ImportJob(id=job_id, filename="sites.csv", total_rows=total_rows)
        store.jobs[job_id] = job
        return job

    return _make

