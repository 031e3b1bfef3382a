from __future__ import annotations

import json
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..logging import get_logger
from ..model.records import EFFECT_PARAMETER, Policy, PolicyParameter
from ..model.values import StringValue, from_python
from ..util.errors import ConfigError, SourceReadError
from .base import PolicyDefinitionProvider

LOG = get_logger(__name__)

TEMPLATES_DIR = Path("Governance") / "Policies" / "Templates"


class TemplateKind(str, Enum):
    POLICY_DEFINITION = "policy-definition"
    POLICY_PARAMETERS = "policy-parameters"
    INITIATIVE_DEFINITION = "initiative-definition"
    INITIATIVE_PARAMETERS = "initiative-parameters"


@dataclass(frozen=True)
class TemplateFileInfo:
    kind: TemplateKind
    parameter_file_name: str


def template_file_info(name: str) -> Optional[TemplateFileInfo]:
    """
    Classify a template file by naming convention:
      <name>.rules.json         policy definition
      <name>.parameters.json    policy parameters
      .<name>.initiative.json   initiative definition
      .<name>.parameters.json   initiative parameters
    Returns None for files that do not follow the convention.
    """
    stem, dot, _ext = name.rpartition(".")
    if not dot or not stem:
        return None
    base, dot, marker = stem.rpartition(".")
    if not dot or not base:
        return None
    marker = marker.lower()
    if marker == "initiative":
        kind = TemplateKind.INITIATIVE_DEFINITION
    elif marker == "rules":
        kind = TemplateKind.POLICY_DEFINITION
    elif marker == "parameters":
        kind = TemplateKind.INITIATIVE_PARAMETERS if name.startswith(".") else TemplateKind.POLICY_PARAMETERS
    else:
        return None
    is_initiative = kind in (TemplateKind.INITIATIVE_DEFINITION, TemplateKind.INITIATIVE_PARAMETERS)
    if is_initiative and (not base.startswith(".") or len(base) == 1):
        return None
    if not is_initiative and base.startswith("."):
        return None
    return TemplateFileInfo(kind=kind, parameter_file_name=f"{base}.parameters.json")


def _load_json(path: Path) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise SourceReadError(f"Failed to read template {path}: {e}") from e
    if not isinstance(data, dict):
        raise SourceReadError(f"Template {path} must contain a JSON object")
    return data


def _parameter_from_template(name: str, data: Dict[str, Any]) -> PolicyParameter:
    metadata = data.get("metadata") or {}
    default = metadata.get("defaultValue", data.get("defaultValue"))
    allowed = metadata.get("allowedValues", data.get("allowedValues"))
    return PolicyParameter(
        internal_name=name,
        type=str(data.get("type") or ""),
        display_name=str(metadata.get("displayName") or ""),
        description=str(metadata.get("description") or ""),
        default_value=from_python(default) if default is not None else None,
        allowed_values=[from_python(v) for v in allowed] if isinstance(allowed, list) else None,
    )


def policy_from_parameters_template(data: Dict[str, Any]) -> Policy:
    params = data.get("parameters") or {}
    return Policy(
        display_name=str(data.get("displayName") or ""),
        description=str(data.get("description") or ""),
        parameters=[_parameter_from_template(name, value or {}) for name, value in params.items()],
    )


def category_from_path(root: Path, path: Path) -> str:
    relative = path.relative_to(root)
    if len(relative.parts) < 2:
        raise SourceReadError(f"template file is supposed to be under a category folder: {path}")
    return relative.parts[0]


def fill_effect_from_definition(policy: Policy, definition_path: Path) -> Policy:
    """
    Take the effect from the rules file when neither the policy nor its effect
    parameter default carries one.
    """
    effect_param = policy.effect_parameter()
    if effect_param is not None and effect_param.default_value is not None:
        return policy
    rules = _load_json(definition_path)
    effect = (rules.get("then") or {}).get("effect")
    if not isinstance(effect, str):
        raise SourceReadError(f"the effect is not found within the policy rules: {definition_path}")
    if effect_param is None:
        return replace(policy, effect=effect)
    parameters = [
        replace(p, default_value=StringValue(effect)) if p.internal_name == EFFECT_PARAMETER else p
        for p in policy.parameters
    ]
    return replace(policy, effect=effect, parameters=parameters)


def read_custom_policies(repository_dir: Path) -> List[Policy]:
    root = repository_dir / TEMPLATES_DIR
    if not root.is_dir():
        raise SourceReadError(f"Policy template directory not found: {root}")
    LOG.info("Reading custom policies", extra={"step": "source", "phase": "local-repository", "path": str(root)})

    policies: List[Policy] = []
    for path in sorted(root.rglob("*.json")):
        if not path.is_file():
            continue
        info = template_file_info(path.name)
        if info is None:
            LOG.warning("Template file name %s does not follow the naming convention and is skipped", path.name)
            continue
        if info.kind in (TemplateKind.POLICY_PARAMETERS, TemplateKind.INITIATIVE_PARAMETERS):
            continue
        parameter_path = path.parent / info.parameter_file_name
        if not parameter_path.exists():
            continue
        policy = policy_from_parameters_template(_load_json(parameter_path))
        policy = replace(
            policy,
            category=category_from_path(root, path),
            is_initiative=info.kind is TemplateKind.INITIATIVE_DEFINITION,
        )
        if info.kind is TemplateKind.POLICY_DEFINITION:
            policy = fill_effect_from_definition(policy, path)
        policies.append(policy.normalize_effect_parameter())

    LOG.info(
        "Read custom policies",
        extra={"step": "source", "phase": "local-repository", "policies": len(policies)},
    )
    return policies


def local_repository_provider(cfg: Any) -> PolicyDefinitionProvider:
    if not cfg.local_repo_dir:
        raise ConfigError("Source 'local-repository' requires 'local_repo_dir' to be configured")
    repository_dir = Path(cfg.local_repo_dir)
    return PolicyDefinitionProvider(
        name="local-repository",
        custom_policies=lambda: read_custom_policies(repository_dir),
    )
