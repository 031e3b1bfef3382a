from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from openpyxl import load_workbook

from ..logging import get_logger
from ..model.records import Policy, PolicyParameter
from ..reconcile.reconciler import SourceBatch, reconcile
from ..tabular.codec import cell_text, row_to_parameter, row_to_policy, rows_to_records
from ..tabular.sheets import (
    BUILTIN_POLICIES_SHEET,
    CUSTOM_POLICIES_SHEET,
    POLICY_SET_PARAMETERS_SHEET,
    groups_for,
)
from ..util.errors import ConfigError, SourceReadError
from .base import PolicyDefinitionProvider

LOG = get_logger(__name__)

SheetRowsByName = Dict[str, List[List[Any]]]


@dataclass
class ExcelPolicyDefinition:
    builtin_policies: List[Policy] = field(default_factory=list)
    custom_policies: List[Policy] = field(default_factory=list)
    policy_set_parameters: List[PolicyParameter] = field(default_factory=list)


def load_sheet_rows(path: Path) -> SheetRowsByName:
    """
    Read every sheet of a workbook as lists of raw cell values (formulas resolved
    to their cached values).
    """
    if not path.exists():
        raise SourceReadError(f"Workbook not found: {path}")
    try:
        workbook = load_workbook(path, read_only=True, data_only=True)
    except Exception as e:
        raise SourceReadError(f"Failed to open workbook {path}: {e}") from e
    try:
        return {ws.title: [list(row) for row in ws.iter_rows(values_only=True)] for ws in workbook.worksheets}
    finally:
        workbook.close()


def _sheet(rows_by_name: SheetRowsByName, name: str, path: Path) -> List[List[Any]]:
    rows = rows_by_name.get(name)
    if rows is None:
        raise SourceReadError(f"Sheet '{name}' not found in workbook {path}")
    return rows


def read_policy_definition(
    path: Path,
    management_groups: Sequence[str],
    subscriptions: Sequence[str] = (),
) -> ExcelPolicyDefinition:
    """
    Read the human-edited intermediate workbook. Columns are matched by header
    name so reordered or extra columns are tolerated.
    """
    rows_by_name = load_sheet_rows(path)
    result = ExcelPolicyDefinition(
        builtin_policies=rows_to_records(
            _sheet(rows_by_name, BUILTIN_POLICIES_SHEET.name, path),
            groups_for(BUILTIN_POLICIES_SHEET, management_groups, subscriptions),
            row_to_policy,
        ),
        custom_policies=rows_to_records(
            _sheet(rows_by_name, CUSTOM_POLICIES_SHEET.name, path),
            groups_for(CUSTOM_POLICIES_SHEET, management_groups, subscriptions),
            row_to_policy,
        ),
        policy_set_parameters=rows_to_records(
            _sheet(rows_by_name, POLICY_SET_PARAMETERS_SHEET.name, path),
            groups_for(POLICY_SET_PARAMETERS_SHEET, management_groups, subscriptions),
            row_to_parameter,
        ),
    )
    LOG.info(
        "Read intermediate workbook",
        extra={
            "step": "source",
            "phase": "excel",
            "builtin_policies": len(result.builtin_policies),
            "custom_policies": len(result.custom_policies),
            "policy_set_parameters": len(result.policy_set_parameters),
        },
    )
    return result


def _at(row: Sequence[Any], position: int) -> str:
    if position >= len(row):
        return ""
    return cell_text(row[position]).strip()


def _data_rows(rows: List[List[Any]]) -> List[List[Any]]:
    return [row for row in rows[1:] if any(cell_text(v).strip() for v in row)]


def read_obsolete_policy_definition(path: Path) -> ExcelPolicyDefinition:
    """
    Read the retired baseline workbook. Its layout is frozen, so cells are read
    by position rather than by header name.
    """
    rows_by_name = load_sheet_rows(path)
    policies = [
        Policy(display_name=_at(row, 1), category=_at(row, 7), justification=_at(row, 8))
        for row in _data_rows(_sheet(rows_by_name, BUILTIN_POLICIES_SHEET.name, path))
    ]
    parameters = [
        PolicyParameter(internal_name=_at(row, 0), justification=_at(row, 7), cost_impact=_at(row, 8))
        for row in _data_rows(_sheet(rows_by_name, POLICY_SET_PARAMETERS_SHEET.name, path))
    ]
    # the retired sheet lists some parameters more than once
    parameters = reconcile([SourceBatch("baseline-excel", parameters)], kind="baseline parameter")
    return ExcelPolicyDefinition(builtin_policies=policies, policy_set_parameters=parameters)


class _LazyDefinition:
    def __init__(self, load) -> None:
        self._load = load
        self._value: Optional[ExcelPolicyDefinition] = None

    def get(self) -> ExcelPolicyDefinition:
        if self._value is None:
            self._value = self._load()
        return self._value


def _require_path(value: Optional[Path], key: str, source: str) -> Path:
    if not value:
        raise ConfigError(f"Source '{source}' requires '{key}' to be configured")
    return Path(value)


def excel_provider(cfg: Any) -> PolicyDefinitionProvider:
    path = _require_path(cfg.excel_file, "excel_file", "excel")
    definition = _LazyDefinition(
        lambda: read_policy_definition(path, cfg.management_groups, cfg.subscriptions)
    )
    return PolicyDefinitionProvider(
        name="excel",
        builtin_policies=lambda: list(definition.get().builtin_policies),
        custom_policies=lambda: list(definition.get().custom_policies),
        policy_set_parameters=lambda: list(definition.get().policy_set_parameters),
    )


def baseline_excel_provider(cfg: Any) -> PolicyDefinitionProvider:
    path = _require_path(cfg.old_baseline_excel_file, "old_baseline_excel_file", "baseline-excel")
    definition = _LazyDefinition(lambda: read_obsolete_policy_definition(path))
    return PolicyDefinitionProvider(
        name="baseline-excel",
        builtin_policies=lambda: list(definition.get().builtin_policies),
        policy_set_parameters=lambda: list(definition.get().policy_set_parameters),
    )
