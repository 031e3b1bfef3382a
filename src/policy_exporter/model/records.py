from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, TypeVar, runtime_checkable

from .values import CellValue, StringValue, is_empty_value, render_value

EFFECT_PARAMETER = "effect"
# Internal names starting with this prefix are placeholders, never real policy parameters.
PLACEHOLDER_PREFIX = "*"
EFFECT_PLACEHOLDER = PLACEHOLDER_PREFIX + EFFECT_PARAMETER
UNKNOWN_CATEGORY = "Unknown"
# ARM template expression resolved at deployment time.
DEFAULT_ATTACHMENT_LOCATION = "[variables('managedIdentityLocation')]"

T = TypeVar("T")


@runtime_checkable
class Identifiable(Protocol):
    """
    Records joined across sources by an exact, case-sensitive identity key.
    """

    @property
    def identity_key(self) -> str:
        ...


@runtime_checkable
class Mergeable(Protocol[T]):
    """
    Fill-only merge contract: non-empty fields of the receiver are never
    overwritten. Implementations must not mutate either operand.
    """

    def merge(self, other: T) -> T:
        ...


RT = TypeVar("RT", bound="Reconcilable")


@runtime_checkable
class Reconcilable(Identifiable, Mergeable["Reconcilable"], Protocol):
    """
    What the reconciler accepts: an identity key and a fill-only merge with a
    record of the same kind.
    """

    def merge(self: RT, other: RT) -> RT:
        ...


def _fill(mine: str, theirs: str) -> str:
    return mine if mine else theirs


def _fill_value(mine: Optional[CellValue], theirs: Optional[CellValue]) -> Optional[CellValue]:
    return theirs if is_empty_value(mine) else mine


def _fill_map(mine: Dict[str, T], theirs: Dict[str, T]) -> Dict[str, T]:
    merged = dict(mine)
    for key, value in theirs.items():
        merged.setdefault(key, value)
    return merged


def is_placeholder(name: str) -> bool:
    return name.startswith(PLACEHOLDER_PREFIX)


@dataclass
class Attachment:
    """Binding of a policy to one management group or subscription."""

    enabled: bool = False
    effect: str = ""
    parameters: Dict[str, CellValue] = field(default_factory=dict)
    location: str = ""
    linked_scopes: List[str] = field(default_factory=list)

    def merge(self, other: Attachment) -> Attachment:
        return Attachment(
            enabled=self.enabled or other.enabled,
            effect=_fill(self.effect, other.effect),
            parameters=_fill_map(self.parameters, other.parameters),
            location=_fill(self.location, other.location),
            linked_scopes=list(self.linked_scopes or other.linked_scopes),
        )


@dataclass
class PolicyParameter:
    internal_name: str = ""
    type: str = ""
    display_name: str = ""
    description: str = ""
    default_value: Optional[CellValue] = None
    allowed_values: Optional[List[CellValue]] = None
    justification: str = ""
    cost_impact: str = ""
    # per management group (or subscription) value
    management_groups: Dict[str, CellValue] = field(default_factory=dict)
    required: bool = False

    @property
    def identity_key(self) -> str:
        return self.internal_name

    def merge(self, other: PolicyParameter) -> PolicyParameter:
        return PolicyParameter(
            internal_name=_fill(self.internal_name, other.internal_name),
            type=_fill(self.type, other.type),
            display_name=_fill(self.display_name, other.display_name),
            description=_fill(self.description, other.description),
            default_value=_fill_value(self.default_value, other.default_value),
            allowed_values=list(self.allowed_values) if self.allowed_values is not None else other.allowed_values,
            justification=_fill(self.justification, other.justification),
            cost_impact=_fill(self.cost_impact, other.cost_impact),
            management_groups=_fill_map(self.management_groups, other.management_groups),
            required=self.required and other.required,
        )


def merge_parameter_lists(
    mine: Sequence[PolicyParameter], theirs: Sequence[PolicyParameter]
) -> List[PolicyParameter]:
    """
    Merge parameters by internal name, keeping the receiver's order and appending
    parameters only the other side knows about.
    """
    by_name = {p.internal_name: p for p in theirs}
    merged: List[PolicyParameter] = []
    seen = set()
    for param in mine:
        other = by_name.get(param.internal_name)
        merged.append(param.merge(other) if other is not None else param)
        seen.add(param.internal_name)
    for param in theirs:
        if param.internal_name not in seen:
            merged.append(param)
            seen.add(param.internal_name)
    return merged


@dataclass
class Policy:
    display_name: str = ""
    category: str = ""
    description: str = ""
    resource_id: str = ""
    justification: str = ""
    cost_impact: str = ""
    effect: str = ""
    parameters: List[PolicyParameter] = field(default_factory=list)
    management_groups: Dict[str, Attachment] = field(default_factory=dict)
    initiative_ids: List[str] = field(default_factory=list)
    is_initiative: bool = False
    recommend: bool = False
    required: bool = False

    @property
    def identity_key(self) -> str:
        return self.display_name

    def merge(self, other: Policy) -> Policy:
        groups = dict(self.management_groups)
        for name, attachment in other.management_groups.items():
            existing = groups.get(name)
            groups[name] = existing.merge(attachment) if existing is not None else attachment
        return Policy(
            display_name=_fill(self.display_name, other.display_name),
            category=_fill(self.category, other.category),
            description=_fill(self.description, other.description),
            resource_id=_fill(self.resource_id, other.resource_id),
            justification=_fill(self.justification, other.justification),
            cost_impact=_fill(self.cost_impact, other.cost_impact),
            effect=_fill(self.effect, other.effect),
            parameters=merge_parameter_lists(self.parameters, other.parameters),
            management_groups=groups,
            initiative_ids=list(self.initiative_ids or other.initiative_ids),
            is_initiative=self.is_initiative or other.is_initiative,
            recommend=self.recommend or other.recommend,
            required=self.required and other.required,
        )

    def effect_parameter(self) -> Optional[PolicyParameter]:
        for param in self.parameters:
            if param.internal_name == EFFECT_PARAMETER:
                return param
        return None

    def default_effect(self) -> str:
        """
        Effect applied when a group is enabled without overrides.
        """
        param = self.effect_parameter()
        if param is not None:
            if param.default_value is None:
                return ""
            return render_value(param.default_value)
        return self.effect

    def parameters_for_export(self) -> List[PolicyParameter]:
        """
        Parameters as shown in the workbook. Policies with a fixed effect get a
        synthetic '*effect' entry so every row shows its effect the same way.
        """
        if self.is_initiative or self.effect_parameter() is not None:
            return list(self.parameters)
        effect = StringValue(self.effect) if self.effect else None
        placeholder = PolicyParameter(
            internal_name=EFFECT_PLACEHOLDER,
            type="string",
            default_value=effect,
            allowed_values=[effect] if effect is not None else None,
        )
        return [placeholder] + list(self.parameters)

    def normalize_effect_parameter(self) -> Policy:
        """
        Drop a parameter reference such as "[parameters('effect')]" from the effect
        when the effect is configurable, using the parameter default instead.
        """
        param = self.effect_parameter()
        if param is None or not self.effect.startswith("["):
            return self
        effect = render_value(param.default_value) if param.default_value is not None else ""
        return replace(self, effect=effect)


@dataclass
class Category:
    """Display grouping of policies, derived at export time."""

    name: str
    policies: List[Policy] = field(default_factory=list)


def sort_by_identity(records: Iterable[T]) -> List[T]:
    return sorted(records, key=lambda r: r.identity_key)  # type: ignore[attr-defined]


def group_by_category(policies: Iterable[Policy]) -> List[Category]:
    by_name: Dict[str, Category] = {}
    for policy in policies:
        name = policy.category or UNKNOWN_CATEGORY
        by_name.setdefault(name, Category(name=name)).policies.append(policy)
    categories = [by_name[name] for name in sorted(by_name)]
    for category in categories:
        category.policies = sort_by_identity(category.policies)
    return categories
