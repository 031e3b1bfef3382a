from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter

from ..logging import get_logger
from ..pipeline import PolicyDefinitionExporter, ReconciledDefinitions
from ..tabular.codec import SheetRows, custom_policy_to_row, parameter_to_row, policy_to_row, records_to_rows
from ..tabular.sheets import (
    BUILTIN_POLICIES_SHEET,
    CUSTOM_POLICIES_SHEET,
    POLICY_SET_PARAMETERS_SHEET,
    groups_for,
    layout_for,
)
from ..util.errors import ExportError
from ..util.time import date_stamp

LOG = get_logger(__name__)

WORKBOOK_NAME_PREFIX = "Azure Policy Baseline"


def workbook_file_name(now: Optional[datetime] = None) -> str:
    return f"{WORKBOOK_NAME_PREFIX} - {date_stamp(now)}.xlsx"


def build_sheet_rows(
    definitions: ReconciledDefinitions,
    management_groups: Sequence[str],
    subscriptions: Sequence[str] = (),
) -> List[tuple]:
    """
    Encode the three record lists into (sheet, rows) pairs in sheet order.
    """
    plan = (
        (BUILTIN_POLICIES_SHEET, definitions.builtin_policies, policy_to_row),
        (CUSTOM_POLICIES_SHEET, definitions.custom_policies, custom_policy_to_row),
        (POLICY_SET_PARAMETERS_SHEET, definitions.policy_set_parameters, parameter_to_row),
    )
    out = []
    for sheet, records, to_row in sorted(plan, key=lambda item: item[0].order):
        layout = layout_for(sheet, groups_for(sheet, management_groups, subscriptions))
        out.append((sheet, records_to_rows(records, layout, to_row)))
    return out


def _write_sheet(ws: Any, rows: SheetRows) -> None:
    wrap = Alignment(vertical="center", wrap_text=True)
    ws.append(list(rows.headers))
    for row in rows.rows:
        ws.append([cell.value for cell in row])
    for row in ws.iter_rows():
        for cell in row:
            cell.alignment = wrap
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for position, width in enumerate(rows.widths, start=1):
        ws.column_dimensions[get_column_letter(position)].width = width
    ws.freeze_panes = "A2"


def write_workbook(
    definitions: ReconciledDefinitions,
    outdir: Path,
    management_groups: Sequence[str],
    subscriptions: Sequence[str] = (),
    *,
    now: Optional[datetime] = None,
) -> Path:
    """
    Write the intermediate workbook, replacing a file of the same name.
    """
    outdir.mkdir(parents=True, exist_ok=True)
    path = outdir / workbook_file_name(now)

    wb = Workbook()
    wb.remove(wb.active)
    for sheet, rows in build_sheet_rows(definitions, management_groups, subscriptions):
        _write_sheet(wb.create_sheet(title=sheet.name), rows)
        LOG.info(
            "Prepared sheet %s",
            sheet.name,
            extra={"step": "export", "phase": "workbook", "sheet": sheet.name, "rows": len(rows.rows)},
        )

    if path.exists():
        LOG.info("Replacing existing workbook %s", path)
        path.unlink()
    try:
        wb.save(path)
    except OSError as e:
        raise ExportError(f"Failed to write workbook {path}: {e}") from e
    return path


def workbook_exporter(cfg: Any) -> PolicyDefinitionExporter:
    def export(definitions: ReconciledDefinitions, outdir: Path) -> List[Path]:
        return [write_workbook(definitions, outdir, cfg.management_groups, cfg.subscriptions)]

    return PolicyDefinitionExporter(name="workbook", export=export)
