from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Any

from ..db.batch_write import BatchMetrics
from ..db.pool import acquire
from ..db.site_repository import SiteRepository
from ..models.conflict import Conflict
from ..models.import_job import ImportJob, ImportResult, RowError
from ..models.site_record import NormalizedRecord
from .audit import AuditAction, AuditEntity, AuditEntry, AuditLogger
from .ledger import ImportJobLedger
from .validation import RecordValidator

"""Transactional importer.

Commits one resolved batch on a single pooled connection:

    acquire -> mark job Processing -> BEGIN -> insert new rows
    -> update overridden rows -> finish job -> COMMIT -> release -> audit

The job reaches its final state on the connection that ran the batch, so a
committed batch never leaves the job Processing. Any failure inside the
transaction rolls back every write of the batch, marks the job Failed on the
same connection and surfaces as CommitError. Audit entries are only written
once the data is committed.
"""

__all__ = [
    "CommitError",
    "TransactionalImporter",
]

logger = logging.getLogger(__name__)


class CommitError(Exception):
    """The batch transaction was rolled back; nothing was written.

    ``job`` is the job after the failure: Failed, or still Processing when the
    failure could not be recorded on the batch connection. ``row_errors`` are
    the row-level errors collected before the transaction.
    """

    def __init__(
        self,
        message: str,
        job: ImportJob | None = None,
        row_errors: Sequence[RowError] = (),
    ) -> None:
        self.job = job
        self.row_errors = tuple(row_errors)
        super().__init__(message)


class TransactionalImporter:
    def __init__(
        self,
        pool: Any,
        ledger: ImportJobLedger,
        *,
        sites: SiteRepository | None = None,
        audit: AuditLogger | None = None,
        validator: RecordValidator | None = None,
        acquire_timeout: float | None = None,
        metrics_callback: Callable[[BatchMetrics], None] | None = None,
    ) -> None:
        self._pool = pool
        self._ledger = ledger
        self._sites = sites or SiteRepository()
        self._audit = audit or AuditLogger(pool, acquire_timeout=acquire_timeout)
        self._validator = validator or RecordValidator()
        self._acquire_timeout = acquire_timeout
        self._metrics_callback = metrics_callback

    def _drop_invalid(
        self, records: Sequence[NormalizedRecord], errors: list[RowError]
    ) -> list[NormalizedRecord]:
        kept = []
        for record in records:
            problems = self._validator.check(record)
            if problems:
                errors.append(RowError(record.row_index, "; ".join(problems), record.site_code or None))
            else:
                kept.append(record)
        return kept

    async def commit(
        self,
        new_records: Sequence[NormalizedRecord],
        to_override: Sequence[Conflict],
        job: ImportJob,
        *,
        skipped: int = 0,
        prior_errors: Sequence[RowError] = (),
    ) -> tuple[ImportResult, ImportJob]:
        """Write the batch and close the job.

        Returns the ImportResult (carrying the final status) and the finished
        job.

        Raises:
            CommitError: the transaction failed and was rolled back.
            PoolExhaustedError: no connection; the job is left Pending.
        """
        row_errors = list(prior_errors)
        inserts = self._drop_invalid(new_records, row_errors)
        overrides = {c.incoming.site_code: c for c in to_override}
        updates = self._drop_invalid([c.incoming for c in to_override], row_errors)
        result = ImportResult(
            inserted=len(inserts),
            updated=len(updates),
            skipped=skipped,
            failed_rows=tuple(sorted(row_errors, key=lambda e: e.row_index)),
            job_id=job.id,
        )

        async with acquire(self._pool, self._acquire_timeout) as conn:
            job = await self._ledger.mark_processing(job, conn=conn)
            try:
                async with conn.transaction():
                    inserted_ids = await self._sites.insert_sites(
                        conn, inserts, self._metrics_callback
                    )
                    updated_ids = await self._sites.update_sites(
                        conn, updates, self._metrics_callback
                    )
                    finished = await self._ledger.finish(job, result, conn=conn)
            except Exception as e:
                logger.error("import job %s rolled back: %s", job.id, e)
                message = f"Import transaction failed: {e}"
                try:
                    job = await self._ledger.fail(job, message, row_errors, conn=conn)
                except Exception as fail_err:
                    logger.error("import job %s: could not record failure: %s", job.id, fail_err)
                raise CommitError(message, job, row_errors) from e

        entries = [
            AuditEntry(
                AuditEntity.PROJECT_SITES, AuditAction.CREATE, inserted_ids.get(r.site_code),
                new_values=r.to_values(),
            )
            for r in inserts
        ]
        # rows whose stored values already matched are not reported as changed
        entries.extend(
            AuditEntry(
                AuditEntity.PROJECT_SITES, AuditAction.UPDATE, record_id,
                old_values=overrides[code].existing.to_values() if overrides[code].existing else None,
                new_values=overrides[code].incoming.to_values(),
            )
            for code, record_id in updated_ids.items()
        )
        await self._audit.record_many(entries)

        logger.debug(
            "import job %s committed: inserted=%d updated=%d (changed=%d) skipped=%d",
            job.id, result.inserted, result.updated, len(updated_ids), result.skipped,
        )
        return replace(result, status=finished.status), finished
