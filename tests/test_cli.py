from __future__ import annotations

import logging
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

from policy_exporter import cli
from policy_exporter.export.workbook import write_workbook
from policy_exporter.logging import setup_logging
from policy_exporter.model.records import Attachment, Policy, PolicyParameter
from policy_exporter.pipeline import ReconciledDefinitions


@pytest.fixture(autouse=True)
def _reset(monkeypatch) -> None:
    for name in ("POLICY_EXPORTER_MANAGEMENT_GROUPS", "POLICY_EXPORTER_EXCEL_FILE", "AZURE_SUBSCRIPTION_ID"):
        monkeypatch.delenv(name, raising=False)
    setattr(setup_logging, "_configured", False)


def _run_main(monkeypatch, argv) -> int:
    monkeypatch.setattr(sys, "argv", ["policy-exporter"] + argv)
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    return excinfo.value.code


def test_validate_workbook_decodes_exported_workbook(tmp_path: Path, monkeypatch, capsys) -> None:
    definitions = ReconciledDefinitions(
        builtin_policies=[
            Policy(
                display_name="Audit VMs",
                category="Compute",
                effect="Audit",
                management_groups={"Root": Attachment(enabled=True, effect="Audit")},
            )
        ],
        policy_set_parameters=[PolicyParameter(internal_name="retentionDays", type="Integer")],
    )
    path = write_workbook(definitions, tmp_path, ["Root"])

    code = _run_main(monkeypatch, ["validate-workbook", "--excel-file", str(path), "--management-groups", "Root"])

    assert code == 0
    out = capsys.readouterr().out
    assert f"OK: {path.name} decoded; built-in policies=1, custom policies=0, policy set parameters=1" in out


def test_validate_workbook_requires_file(monkeypatch) -> None:
    assert _run_main(monkeypatch, ["validate-workbook"]) == 2


def test_export_requires_management_groups(tmp_path: Path, monkeypatch) -> None:
    assert _run_main(monkeypatch, ["export-final", str(tmp_path)]) == 2
    assert _run_main(monkeypatch, ["export-intermediate", str(tmp_path)]) == 2


def test_export_failure_maps_exit_code(tmp_path: Path, monkeypatch) -> None:
    missing = tmp_path / "missing.xlsx"
    code = _run_main(
        monkeypatch,
        ["export-final", str(tmp_path / "out"), "--management-groups", "Root", "--excel-file", str(missing), "--source", "excel"],
    )
    # unreadable workbook is a runtime error, not a configuration one
    assert code == 5


def test_run_export_renders_nothing_when_not_interactive(tmp_path: Path, monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(cli, "render_category_summary_table", lambda **kw: calls.append(kw["enabled"]))
    monkeypatch.setattr(cli, "render_files_table", lambda **kw: calls.append(kw["enabled"]))
    cfg = SimpleNamespace(outdir=tmp_path, json_logs=True)
    result = {"definitions": ReconciledDefinitions(), "files": [tmp_path / "a.json"], "sources": ["yaml"]}

    assert cli._run_export(cfg, "export-final", lambda c: result) == 0
    assert calls == [False, False]


def test_log_event_records_duration(caplog) -> None:
    timers = cli._StepTimers()
    logger = logging.getLogger("unit.cli")
    with caplog.at_level(logging.INFO, logger="unit.cli"):
        cli._log_event(logger, logging.INFO, "started", step="export", phase="start", timers=timers)
        cli._log_event(logger, logging.INFO, "done", step="export", phase="complete", timers=timers, files=2)

    start, done = caplog.records
    assert start.event == "export.start"
    assert not hasattr(start, "duration_ms")
    assert done.event == "export.complete"
    assert done.duration_ms >= 0
    assert done.files == 2
    assert timers.finish("export") is None
