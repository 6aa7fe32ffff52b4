from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pandas as pd
import pytest

import site_import.cli.__main__ as cli
from site_import.cli.__main__ import main as cli_main
from site_import.models.site_record import SiteStatus


@pytest.fixture()
def use_pipeline(monkeypatch, pipeline):
    """Route the CLI to the in-memory pipeline instead of a real pool."""

    async def _open(cfg):
        return pipeline

    monkeypatch.setattr(cli, "_open_pipeline", _open)
    return pipeline


@pytest.fixture()
def write_sheet(temp_workdir: Path):
    def _write(rows: list[dict], name: str = "sites.csv") -> Path:
        path = temp_workdir / "data" / name
        pd.DataFrame(rows).to_csv(path, index=False)
        return path

    return _write


def test_template_to_stdout(capsys):
    code = cli_main(["template"])
    out = capsys.readouterr().out
    assert code == 0
    assert out.startswith("Site Code,Project Name,Site Name,")
    assert "UNDP-TEST-001" in out


def test_template_to_file(temp_workdir: Path):
    out = temp_workdir / "out" / "template.csv"
    assert cli_main(["template", "--out", str(out)]) == 0
    assert out.read_text(encoding="utf-8").startswith("Site Code,")


def test_missing_config_is_fatal(temp_workdir: Path, capsys):
    code = cli_main(["--config", str(temp_workdir / "config" / "missing.yml"), "status", "1"])
    assert code == 1
    assert "ERROR config: config file not found" in capsys.readouterr().out


def test_detect_prints_report(write_config, use_pipeline, write_sheet, make_row, capsys):
    path = write_sheet([make_row("S1"), make_row("S2")])
    code = cli_main(["detect", str(path)])
    out = capsys.readouterr().out
    assert code == 0
    assert '"newEntryCount": 2' in out
    assert '"totalRows": 2' in out


def test_commit_clean_file(write_config, use_pipeline, write_sheet, make_row, store, capsys):
    path = write_sheet([make_row("S1"), make_row("S2")])
    code = cli_main(["commit", str(path)])
    out = capsys.readouterr().out
    assert code == 0
    assert set(store.sites) == {"S1", "S2"}
    assert "SUMMARY job=1 file=sites.csv status=Completed rows=2" in out


def test_commit_refused_when_unresolved(write_config, use_pipeline, write_sheet, make_row, make_existing, seed, store, capsys):
    seed(make_existing("S1"))
    path = write_sheet([make_row("S1", Status="Done")])
    code = cli_main(["commit", str(path)])
    assert code == 2
    assert "ERROR commit refused: 1 conflict(s) need a resolution" in capsys.readouterr().out
    assert store.sites["S1"].status is SiteStatus.PENDING


def test_commit_with_resolutions_file(write_config, use_pipeline, write_sheet, make_row, make_existing, seed, store, temp_workdir):
    seed(make_existing("S1"))
    path = write_sheet([make_row("S1", Status="Done"), make_row("S2")])
    res = temp_workdir / "resolutions.json"
    res.write_text(json.dumps({"resolutions": [{"rowIndex": 1, "action": "Override"}]}), encoding="utf-8")
    assert cli_main(["commit", str(path), "--resolutions", str(res)]) == 0
    assert store.sites["S1"].status is SiteStatus.DONE


def test_commit_partial_exits_2(write_config, use_pipeline, write_sheet, make_row, capsys):
    path = write_sheet([make_row("S1"), make_row("S2", Latitude="95")])
    assert cli_main(["commit", str(path)]) == 2
    assert "status=Partial" in capsys.readouterr().out


def test_missing_headers_is_fatal(write_config, use_pipeline, temp_workdir: Path, capsys):
    path = temp_workdir / "data" / "bad.csv"
    path.write_text("Site Code,Site Name\nS1,Hall\n", encoding="utf-8")
    assert cli_main(["detect", str(path)]) == 1
    assert "ERROR input: Missing required columns: Project Name" in capsys.readouterr().out


def test_unsupported_file_is_fatal(write_config, use_pipeline, temp_workdir: Path, capsys):
    path = temp_workdir / "data" / "sites.json"
    path.write_text("[]", encoding="utf-8")
    assert cli_main(["commit", str(path)]) == 1
    assert "ERROR input: unsupported file type" in capsys.readouterr().out


def test_status_and_error_report(write_config, use_pipeline, write_sheet, make_row, temp_workdir, capsys):
    path = write_sheet([make_row("S1"), make_row("S2", Latitude="95")])
    cli_main(["commit", str(path)])
    capsys.readouterr()

    assert cli_main(["status", "1"]) == 0
    assert '"status": "Partial"' in capsys.readouterr().out

    report = temp_workdir / "out" / "errors.csv"
    assert cli_main(["errors", "1", "--out", str(report)]) == 0
    lines = report.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "Row Number,Site Code,Error Messages"
    assert lines[1].startswith("2,S2,")


def test_unknown_job_is_fatal(write_config, use_pipeline, capsys):
    assert cli_main(["status", "99"]) == 1
    assert "ERROR import job 99 not found" in capsys.readouterr().out
    assert cli_main(["errors", "99"]) == 1


def test_pool_exhausted_is_fatal(write_config, use_pipeline, write_sheet, make_row, pool, capsys):
    pool.exhausted = True
    path = write_sheet([make_row("S1")])
    assert cli_main(["detect", str(path)]) == 1
    assert "ERROR database busy, retry later" in capsys.readouterr().out


def test_debug_flag(write_config, use_pipeline, capsys):
    cli_main(["--debug", "status", "99"])
    assert "DEBUG debug mode enabled" in capsys.readouterr().out


def test_pipeline_not_closed_by_cli(write_config, use_pipeline, pool):
    cli_main(["status", "99"])
    assert pool.closed is False
    # pipeline stays usable after the CLI returns
    assert asyncio.run(use_pipeline.get_job(99)) is None
