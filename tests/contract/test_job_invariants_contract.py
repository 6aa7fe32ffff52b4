from __future__ import annotations

import asyncio

import pytest

from site_import.models.conflict import Resolution, ResolutionAction
from site_import.models.import_job import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, ImportJobStatus
from site_import.services.resolver import ConflictUnresolvedError

"""Import job contract: counts always add up and finished jobs never move."""


def _scenarios(make_row):
    return {
        "clean": ([make_row("S1"), make_row("S2")], ImportJobStatus.COMPLETED),
        "partial": ([make_row("S1"), make_row("S2", Latitude="-91")], ImportJobStatus.PARTIAL),
        "all_invalid": ([make_row("S1", Latitude="x"), make_row("S2", Longitude="181")], ImportJobStatus.FAILED),
        "empty_rows": ([make_row("S1"), {"Site Code": "", "Site Name": ""}], ImportJobStatus.PARTIAL),
    }


@pytest.mark.parametrize("name", ["clean", "partial", "all_invalid", "empty_rows"])
def test_counts_add_up(pipeline, make_row, name):
    rows, expected = _scenarios(make_row)[name]
    result = asyncio.run(pipeline.commit_import(rows, [], f"{name}.csv"))
    job = asyncio.run(pipeline.get_job(result.job_id))

    assert job.status is expected
    assert result.status is expected
    assert job.success_count + job.error_count == job.total_rows == len(rows)
    assert job.started_at is not None and job.completed_at is not None
    assert job.progress == (0 if expected is ImportJobStatus.FAILED else 100)


def test_counts_add_up_after_rollback(pipeline, site_repo, make_row, store):
    site_repo.fail_on = "update"
    store.sites.clear()
    result = asyncio.run(pipeline.commit_import([make_row("S1"), make_row("S2")], [], "x.csv"))
    job = asyncio.run(pipeline.get_job(result.job_id))
    # nothing to update, so the insert goes through
    assert job.status is ImportJobStatus.COMPLETED

    site_repo.fail_on = "insert"
    result = asyncio.run(pipeline.commit_import([make_row("S3")], [], "y.csv"))
    job = asyncio.run(pipeline.get_job(result.job_id))
    assert job.status is ImportJobStatus.FAILED
    assert (job.success_count, job.error_count) == (0, 1)
    assert "S3" not in store.sites


def test_unresolved_commit_leaves_job_pending(pipeline, make_row, make_existing, seed):
    seed(make_existing("S1"))
    with pytest.raises(ConflictUnresolvedError) as exc:
        asyncio.run(pipeline.commit_import([make_row("S1", Status="Done")], [], "x.csv"))
    job = asyncio.run(pipeline.get_job(exc.value.job.id))
    assert job.status is ImportJobStatus.PENDING


def test_resolved_commit_counts_override_and_skip(pipeline, make_row, make_existing, seed):
    seed(make_existing("S1", record_id=1), make_existing("S2", record_id=2))
    rows = [make_row("S1", Status="Done"), make_row("S2", Barangay="Mayan"), make_row("S3")]
    resolutions = [Resolution(1, ResolutionAction.OVERRIDE), Resolution(2, ResolutionAction.SKIP)]
    result = asyncio.run(pipeline.commit_import(rows, resolutions, "x.csv"))
    assert (result.inserted, result.updated, result.skipped) == (1, 1, 1)
    job = asyncio.run(pipeline.get_job(result.job_id))
    assert (job.success_count, job.error_count) == (3, 0)


def test_terminal_states_have_no_exits():
    for status in TERMINAL_STATUSES:
        assert ALLOWED_TRANSITIONS[status] == frozenset()
    assert ALLOWED_TRANSITIONS[ImportJobStatus.PENDING] == {ImportJobStatus.PROCESSING}
