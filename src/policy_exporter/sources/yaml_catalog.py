from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..logging import get_logger
from ..model.records import DEFAULT_ATTACHMENT_LOCATION, Attachment, Policy, PolicyParameter
from ..model.values import from_python
from ..util.errors import ConfigError, SourceReadError
from .base import PolicyDefinitionProvider

LOG = get_logger(__name__)


def _mapping(value: Any, where: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SourceReadError(f"{where} must be a mapping")
    return value


def _items(value: Any, where: str) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise SourceReadError(f"{where} must be a list of mappings")
    return value


def _text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


def _attachment(data: Dict[str, Any], where: str) -> Attachment:
    params = _mapping(data.get("Parameters"), f"{where}.Parameters")
    return Attachment(
        enabled=bool(data.get("Enabled", False)),
        effect=_text(data, "Effect"),
        parameters={str(k): from_python(v) for k, v in params.items()},
        location=_text(data, "Location") or DEFAULT_ATTACHMENT_LOCATION,
        linked_scopes=[str(s) for s in data.get("LinkedScopes") or []],
    )


def policy_from_yaml(data: Dict[str, Any]) -> Policy:
    name = _text(data, "DisplayName")
    groups = _mapping(data.get("ManagementGroups"), f"policy '{name}' ManagementGroups")
    return Policy(
        display_name=name,
        category=_text(data, "Category"),
        description=_text(data, "Description"),
        resource_id=_text(data, "ResourceID"),
        justification=_text(data, "Justification"),
        cost_impact=_text(data, "CostImpact"),
        effect=_text(data, "Effect"),
        management_groups={
            str(group): _attachment(_mapping(value, f"policy '{name}' group '{group}'"), f"policy '{name}' group '{group}'")
            for group, value in groups.items()
        },
        recommend=bool(data.get("Recommend", False)),
        required=bool(data.get("Required", False)),
    )


def parameter_from_yaml(data: Dict[str, Any]) -> PolicyParameter:
    default = data.get("DefaultValue")
    allowed = data.get("AllowedValues")
    groups = _mapping(data.get("ManagementGroups"), f"parameter '{_text(data, 'InternalName')}' ManagementGroups")
    return PolicyParameter(
        internal_name=_text(data, "InternalName"),
        type=_text(data, "Type"),
        display_name=_text(data, "DisplayName"),
        description=_text(data, "Description"),
        default_value=from_python(default) if default is not None else None,
        allowed_values=[from_python(v) for v in allowed] if isinstance(allowed, list) else None,
        justification=_text(data, "Justification"),
        cost_impact=_text(data, "CostImpact"),
        management_groups={str(k): from_python(v) for k, v in groups.items()},
        required=bool(data.get("Required", False)),
    )


class YamlPolicyCatalog:
    """
    Declarative catalog with BuiltInPolicies, CustomPolicies and
    ASCPolicySetParameters lists.
    """

    def __init__(self, data: Dict[str, Any]) -> None:
        self.builtin_policies = [policy_from_yaml(p) for p in _items(data.get("BuiltInPolicies"), "BuiltInPolicies")]
        self.custom_policies = [policy_from_yaml(p) for p in _items(data.get("CustomPolicies"), "CustomPolicies")]
        self.policy_set_parameters = [
            parameter_from_yaml(p) for p in _items(data.get("ASCPolicySetParameters"), "ASCPolicySetParameters")
        ]
        self.management_groups = [str(g) for g in data.get("ManagementGroups") or []]

    @classmethod
    def from_file(cls, path: Path) -> YamlPolicyCatalog:
        if not path.exists():
            raise SourceReadError(f"YAML catalog not found: {path}")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise SourceReadError(f"Failed to parse YAML catalog {path}: {e}") from e
        if not isinstance(data, dict):
            raise SourceReadError("Top-level YAML catalog must be a mapping")
        catalog = cls(data)
        LOG.info(
            "Read YAML catalog",
            extra={
                "step": "source",
                "phase": "yaml",
                "builtin_policies": len(catalog.builtin_policies),
                "custom_policies": len(catalog.custom_policies),
                "policy_set_parameters": len(catalog.policy_set_parameters),
            },
        )
        return catalog


def yaml_provider(cfg: Any) -> PolicyDefinitionProvider:
    if not cfg.yaml_file:
        raise ConfigError("Source 'yaml' requires 'yaml_file' to be configured")
    path = Path(cfg.yaml_file)
    cache: Dict[str, Optional[YamlPolicyCatalog]] = {"catalog": None}

    def catalog() -> YamlPolicyCatalog:
        if cache["catalog"] is None:
            cache["catalog"] = YamlPolicyCatalog.from_file(path)
        return cache["catalog"]  # type: ignore[return-value]

    return PolicyDefinitionProvider(
        name="yaml",
        builtin_policies=lambda: list(catalog().builtin_policies),
        custom_policies=lambda: list(catalog().custom_policies),
        policy_set_parameters=lambda: list(catalog().policy_set_parameters),
    )
