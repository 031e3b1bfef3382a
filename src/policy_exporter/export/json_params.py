from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Sequence

from ..logging import get_logger
from ..model.records import Attachment, Category, Policy, PolicyParameter, group_by_category
from ..model.values import to_python
from ..pipeline import PolicyDefinitionExporter, ReconciledDefinitions
from ..util.errors import ExportError
from ..util.serialization import dumps_pretty

LOG = get_logger(__name__)

POLICY_PARAMETERS_FILE = "governance-policy-parameters.json"
POLICY_SET_PARAMETERS_FILE_TEMPLATE = "ASC_policy_{group}.json"
DISABLED_VALUE = "Disabled"


def _attachment_json(attachment: Attachment) -> Dict[str, Any]:
    return {
        "enabled": attachment.enabled,
        "parameters": {name: to_python(value) for name, value in sorted(attachment.parameters.items())},
        "location": attachment.location,
    }


def _policy_json(policy: Policy) -> Dict[str, Any]:
    return {
        "name": policy.display_name,
        "managementGroups": {
            group: _attachment_json(attachment) for group, attachment in sorted(policy.management_groups.items())
        },
    }


def is_deployable(policy: Policy) -> bool:
    # `required` is ANDed across sources, so a policy stays required only when
    # every source that knows it says so. A YAML `Required: true` is cancelled
    # by any earlier source holding the same policy without the flag.
    return policy.required or any(a.enabled for a in policy.management_groups.values())


def policy_parameters_document(policies: Sequence[Policy]) -> Dict[str, Any]:
    """
    Landing zone parameter document: categories, each with the policies that
    are enabled on at least one group or marked required.
    """
    categories: List[Category] = group_by_category(p for p in policies if is_deployable(p))
    return {
        "category": [
            {"name": category.name, "policies": [_policy_json(p) for p in category.policies]}
            for category in categories
        ]
    }


def policy_set_parameters_document(parameters: Sequence[PolicyParameter], group: str) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for param in parameters:
        value = param.management_groups.get(group)
        values[param.internal_name] = {"value": to_python(value) if value is not None else DISABLED_VALUE}
    return {"parameters": values}


def _write(path: Path, document: Dict[str, Any]) -> Path:
    try:
        path.write_text(dumps_pretty(document), encoding="utf-8")
    except OSError as e:
        raise ExportError(f"Failed to write {path}: {e}") from e
    LOG.info("Wrote %s", path, extra={"step": "export", "phase": "json"})
    return path


def write_json_parameters(
    definitions: ReconciledDefinitions,
    outdir: Path,
    policy_set_groups: Sequence[str],
) -> List[Path]:
    outdir.mkdir(parents=True, exist_ok=True)
    written = [_write(outdir / POLICY_PARAMETERS_FILE, policy_parameters_document(definitions.all_policies))]
    for group in policy_set_groups:
        path = outdir / POLICY_SET_PARAMETERS_FILE_TEMPLATE.format(group=group)
        written.append(_write(path, policy_set_parameters_document(definitions.policy_set_parameters, group)))
    return written


def json_parameters_exporter(cfg: Any) -> PolicyDefinitionExporter:
    def export(definitions: ReconciledDefinitions, outdir: Path) -> List[Path]:
        return write_json_parameters(definitions, outdir, cfg.policy_set_parameter_groups)

    return PolicyDefinitionExporter(name="json", export=export)
