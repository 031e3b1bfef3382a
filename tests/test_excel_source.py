from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest
from openpyxl import Workbook

from policy_exporter.sources.excel import (
    baseline_excel_provider,
    excel_provider,
    load_sheet_rows,
    read_obsolete_policy_definition,
    read_policy_definition,
)
from policy_exporter.tabular.sheets import SHEET_NAME_BUILTIN_POLICIES, SHEET_NAME_POLICY_SET_PARAMETERS
from policy_exporter.util.errors import ConfigError, SourceReadError


def _baseline_workbook(path: Path) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_NAME_BUILTIN_POLICIES
    ws.append(["Id", "Name", "c", "d", "e", "f", "g", "Category", "Justification"])
    ws.append(["1", "Audit VMs", None, None, None, None, None, "Compute", "Keeps costs visible"])
    ws.append([None] * 9)
    params = wb.create_sheet(SHEET_NAME_POLICY_SET_PARAMETERS)
    params.append(["Name", "b", "c", "d", "e", "f", "g", "Justification", "Cost"])
    params.append(["retentionDays", None, None, None, None, None, None, "", "Low"])
    params.append(["retentionDays", None, None, None, None, None, None, "Compliance", "High"])
    wb.save(path)


def test_obsolete_workbook_read_by_position(tmp_path: Path) -> None:
    path = tmp_path / "baseline.xlsx"
    _baseline_workbook(path)

    definition = read_obsolete_policy_definition(path)
    [policy] = definition.builtin_policies
    assert policy.display_name == "Audit VMs"
    assert policy.category == "Compute"
    assert policy.justification == "Keeps costs visible"

    # duplicated parameter rows collapse into one, first non-empty value wins
    [param] = definition.policy_set_parameters
    assert param.internal_name == "retentionDays"
    assert param.justification == "Compliance"
    assert param.cost_impact == "Low"
    assert definition.custom_policies == []


def test_missing_sheet_raises(tmp_path: Path) -> None:
    path = tmp_path / "empty.xlsx"
    Workbook().save(path)
    with pytest.raises(SourceReadError):
        read_policy_definition(path, ["Root"])


def test_missing_or_invalid_workbook_raises(tmp_path: Path) -> None:
    with pytest.raises(SourceReadError):
        load_sheet_rows(tmp_path / "missing.xlsx")
    bad = tmp_path / "bad.xlsx"
    bad.write_text("not a workbook", encoding="utf-8")
    with pytest.raises(SourceReadError):
        load_sheet_rows(bad)


def test_providers_require_paths_and_expose_readers(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        excel_provider(SimpleNamespace(excel_file=None, management_groups=[], subscriptions=[]))
    with pytest.raises(ConfigError):
        baseline_excel_provider(SimpleNamespace(old_baseline_excel_file=None))

    path = tmp_path / "baseline.xlsx"
    _baseline_workbook(path)
    provider = baseline_excel_provider(SimpleNamespace(old_baseline_excel_file=path))
    assert provider.custom_policies is None
    assert [p.display_name for p in provider.builtin_policies()] == ["Audit VMs"]
