from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Sequence

from rich.console import Console
from rich.table import Table

from ..model.records import group_by_category


def render_category_summary_table(
    *,
    enabled: bool,
    definitions: Any,
    console: Optional[Console] = None,
) -> None:
    """Policies per category, built-in and custom counted separately."""
    if not enabled:
        return
    table = Table(title="Policies found", show_header=True, header_style="bold")
    table.add_column("Category", style="cyan")
    table.add_column("Built-in", justify="right")
    table.add_column("Custom", justify="right")
    builtin = {c.name: len(c.policies) for c in group_by_category(definitions.builtin_policies)}
    custom = {c.name: len(c.policies) for c in group_by_category(definitions.custom_policies)}
    for name in sorted(set(builtin) | set(custom)):
        table.add_row(name, str(builtin.get(name, 0)), str(custom.get(name, 0)))
    table.add_row("Policy set parameters", str(len(definitions.policy_set_parameters)), "", style="dim")
    (console or Console()).print(table)


def render_files_table(
    *,
    enabled: bool,
    status: str,
    files: Sequence[Path],
    sources: Sequence[str],
    console: Optional[Console] = None,
) -> None:
    if not enabled:
        return
    table = Table(title="Export Summary", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Status", status)
    table.add_row("Sources", ", ".join(sources))
    for path in files:
        table.add_row("Written", str(path))
    (console or Console()).print(table)
