from __future__ import annotations

import asyncio
import json
from pathlib import Path

import jsonschema

from site_import.logging.error_log import ERROR_LOG_SCHEMA, ErrorRecord

"""Error log contract: every line is one JSON object with the fixed key set."""


def _log_lines(logs_dir: Path) -> list[dict]:
    files = sorted(logs_dir.glob("errors-*.log"))
    assert len(files) == 1
    return [json.loads(line) for line in files[0].read_text(encoding="utf-8").splitlines()]


def test_row_errors_match_schema(pipeline, make_row, import_config):
    rows = [
        make_row("S1"),
        make_row("S2", Latitude="95"),
        {"Site Code": None, "Site Name": None},
        make_row("S4", Longitude="east"),
    ]
    asyncio.run(pipeline.commit_import(rows, [], "sites.csv"))

    lines = _log_lines(Path(import_config.import_settings.error_log_dir))
    assert [line["row"] for line in lines] == [3, 2, 4]
    assert [line["error_type"] for line in lines] == [
        "NORMALIZATION_ERROR", "VALIDATION_ERROR", "VALIDATION_ERROR",
    ]
    for line in lines:
        jsonschema.validate(line, ERROR_LOG_SCHEMA)
        assert line["job_id"] == 1
        assert line["file"] == "sites.csv"


def test_commit_failure_logged_as_batch_row(pipeline, site_repo, make_row, import_config):
    site_repo.fail_on = "insert"
    asyncio.run(pipeline.commit_import([make_row("S1")], [], "sites.csv"))

    lines = _log_lines(Path(import_config.import_settings.error_log_dir))
    assert lines[-1]["row"] == -1
    assert lines[-1]["error_type"] == "COMMIT_ERROR"
    for line in lines:
        jsonschema.validate(line, ERROR_LOG_SCHEMA)


def test_schema_rejects_extra_keys():
    data = json.loads(ErrorRecord.create("a.csv", 1, "VALIDATION_ERROR", "x").to_json_line())
    data["extra"] = 1
    try:
        jsonschema.validate(data, ERROR_LOG_SCHEMA)
    except jsonschema.ValidationError:
        return
    raise AssertionError("extra key accepted")
