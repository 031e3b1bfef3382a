from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional

from ..azure.clients import get_policy_client, resolve_context
from ..logging import get_logger
from ..model.records import Policy, PolicyParameter
from ..model.values import from_python
from ..util.errors import SourceReadError, map_azure_error
from .base import PolicyDefinitionProvider

LOG = get_logger(__name__)

SKIPPED_DISPLAY_NAME_PREFIXES = ("[Deprecated]", "[Preview]")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _field(obj: Any, name: str) -> Any:
    """SDK models expose snake_case attributes, raw payloads are camelCase dicts."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        if name in obj:
            return obj[name]
        return obj.get(_camel(name))
    return getattr(obj, name, None)


def _type_name(value: Any) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value))


def parameters_from_definitions(definitions: Optional[Mapping[str, Any]]) -> List[PolicyParameter]:
    params: List[PolicyParameter] = []
    for internal_name, definition in (definitions or {}).items():
        metadata = _field(definition, "metadata")
        default = _field(definition, "default_value")
        allowed = _field(definition, "allowed_values")
        params.append(
            PolicyParameter(
                internal_name=internal_name,
                type=_type_name(_field(definition, "type")),
                display_name=_field(metadata, "display_name") or "",
                description=_field(metadata, "description") or "",
                default_value=from_python(default) if default is not None else None,
                allowed_values=[from_python(v) for v in allowed] if allowed is not None else None,
            )
        )
    return params


def static_effect(policy_rule: Any) -> Optional[str]:
    then = _field(policy_rule, "then")
    effect = _field(then, "effect")
    if effect is None:
        return None
    return str(effect)


def category_of(metadata: Any) -> str:
    category = _field(metadata, "category")
    return category if isinstance(category, str) else ""


def policies_from_definitions(definitions: Iterable[Any]) -> List[Policy]:
    policies: List[Policy] = []
    for definition in definitions:
        display_name = _field(definition, "display_name") or ""
        if display_name.startswith(SKIPPED_DISPLAY_NAME_PREFIXES):
            continue
        effect = static_effect(_field(definition, "policy_rule"))
        if effect is None:
            raise SourceReadError(f"the effect is not found within the policy definition: '{display_name}'")
        policy = Policy(
            display_name=display_name,
            category=category_of(_field(definition, "metadata")),
            description=_field(definition, "description") or "",
            resource_id=_field(definition, "id") or "",
            effect=effect,
            parameters=parameters_from_definitions(_field(definition, "parameters")),
        )
        policies.append(policy.normalize_effect_parameter())
    return policies


def list_builtin_policies(client: Any, management_group: str) -> List[Policy]:
    """
    List the built-in policies visible at a management group, skipping
    deprecated and preview definitions.
    """
    try:
        policies = policies_from_definitions(client.policy_definitions.list_by_management_group(management_group))
    except SourceReadError:
        raise
    except Exception as e:
        mapped = map_azure_error(e, f"Azure SDK error while listing policies of management group '{management_group}'")
        if mapped:
            raise mapped from e
        raise
    LOG.info(
        "Listed built-in policies",
        extra={"step": "source", "phase": "azure", "management_group": management_group, "policies": len(policies)},
    )
    return policies


def get_policy_set_parameters(client: Any, policy_set_name: str) -> List[PolicyParameter]:
    try:
        policy_set = client.policy_set_definitions.get_built_in(policy_set_name)
    except Exception as e:
        mapped = map_azure_error(e, f"Azure SDK error while reading policy set '{policy_set_name}'")
        if mapped:
            raise mapped from e
        raise
    params = parameters_from_definitions(_field(policy_set, "parameters"))
    LOG.info(
        "Read policy set parameters",
        extra={"step": "source", "phase": "azure", "policy_set": policy_set_name, "parameters": len(params)},
    )
    return params


def azure_provider(cfg: Any) -> PolicyDefinitionProvider:
    ctx = resolve_context(cfg.subscription_id)

    def read_builtin() -> List[Policy]:
        return list_builtin_policies(get_policy_client(ctx), cfg.policy_query_management_group)

    def read_parameters() -> List[PolicyParameter]:
        return get_policy_set_parameters(get_policy_client(ctx), cfg.policy_set_name)

    return PolicyDefinitionProvider(
        name="azure",
        builtin_policies=read_builtin,
        policy_set_parameters=read_parameters,
    )
