from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Sequence

from ..logging import get_logger
from ..model.records import Policy, PolicyParameter
from ..model.values import render_value
from ..pipeline import PolicyDefinitionExporter, ReconciledDefinitions
from ..util.errors import ExportError
from ..util.time import doc_timestamp

LOG = get_logger(__name__)

BUILTIN_POLICIES_DOC = "BuiltInPolicies.mdx"
CUSTOM_POLICIES_DOC = "CustomPolicies.mdx"
POLICY_SET_PARAMETERS_DOC = "ASCPolicySetParameters.mdx"


def _md_cell(value: str) -> str:
    # Newlines become <br> and pipes are escaped so a value never splits a row.
    v = (value or "").replace("\n", "<br>").strip()
    v = v.replace("|", "\\|")
    return v


def _md_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> List[str]:
    hdr = [_md_cell(str(h)) for h in headers]
    out: List[str] = []
    out.append("| " + " | ".join(hdr) + " |")
    out.append("| " + " | ".join(["---"] * len(headers)) + " |")
    for r in rows:
        rr = [_md_cell(str(c)) for c in r]
        out.append("| " + " | ".join(rr) + " |")
    return out


def _document(table: List[str], now: Optional[datetime]) -> str:
    lines = ["", f"The content is update at {doc_timestamp(now)}", ""]
    lines.extend(table)
    lines.append("")
    return "\n".join(lines)


def _group_effect(policy: Policy, group: str) -> str:
    attachment = policy.management_groups.get(group)
    if attachment is None or not attachment.enabled:
        return ""
    return attachment.effect or policy.default_effect()


def policy_table(policies: Sequence[Policy], groups: Sequence[str]) -> List[str]:
    headers = ["ResourceId", "DisplayName", *groups, "Description", "Justification"]
    rows = [
        [p.resource_id, p.display_name, *[_group_effect(p, g) for g in groups], p.description, p.justification]
        for p in policies
    ]
    return _md_table(headers, rows)


def policy_set_parameter_table(parameters: Sequence[PolicyParameter], groups: Sequence[str]) -> List[str]:
    headers = ["Internal Name", "Policy Definition", *groups, "Description", "Justification", "Cost Impact"]
    rows = []
    for param in parameters:
        values = [param.management_groups.get(g) for g in groups]
        rows.append(
            [
                param.internal_name,
                param.display_name,
                *[render_value(v) if v is not None else "" for v in values],
                param.description,
                param.justification,
                param.cost_impact,
            ]
        )
    return _md_table(headers, rows)


def _write(path: Path, text: str) -> Path:
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise ExportError(f"Failed to write {path}: {e}") from e
    LOG.info("Wrote %s", path, extra={"step": "export", "phase": "mdx"})
    return path


def write_mdx_documents(
    definitions: ReconciledDefinitions,
    outdir: Path,
    management_groups: Sequence[str],
    subscriptions: Sequence[str] = (),
    *,
    now: Optional[datetime] = None,
) -> List[Path]:
    """
    Write the built-in, custom and policy set parameter documentation pages.
    Parameter pages list subscription columns when subscriptions are configured.
    """
    outdir.mkdir(parents=True, exist_ok=True)
    parameter_groups = list(subscriptions) or list(management_groups)
    return [
        _write(
            outdir / BUILTIN_POLICIES_DOC,
            _document(policy_table(definitions.builtin_policies, management_groups), now),
        ),
        _write(
            outdir / CUSTOM_POLICIES_DOC,
            _document(policy_table(definitions.custom_policies, management_groups), now),
        ),
        _write(
            outdir / POLICY_SET_PARAMETERS_DOC,
            _document(policy_set_parameter_table(definitions.policy_set_parameters, parameter_groups), now),
        ),
    ]


def mdx_exporter(cfg: Any) -> PolicyDefinitionExporter:
    def export(definitions: ReconciledDefinitions, outdir: Path) -> List[Path]:
        return write_mdx_documents(definitions, outdir, cfg.management_groups, cfg.subscriptions)

    return PolicyDefinitionExporter(name="mdx", export=export)
