from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from ..logging import get_logger
from ..model.records import (
    DEFAULT_ATTACHMENT_LOCATION,
    EFFECT_PARAMETER,
    EFFECT_PLACEHOLDER,
    Attachment,
    Policy,
    PolicyParameter,
    is_placeholder,
)
from ..model.values import CellValue, render_value
from ..util.errors import LayoutError, MissingColumnError, MissingTypeError
from .cells import (
    ENABLED,
    NO_DEFAULT,
    NOT_APPLIED,
    TYPE_STRING,
    decode_cell,
    decode_single,
    encode_cell,
    format_placeholder,
    is_enabled,
    is_not_applied,
    parse_typed,
)
from .layout import ColumnLayout
from .sheets import (
    COLUMN_BELONGING_INITIATIVES,
    COLUMN_CATEGORY,
    COLUMN_COST_IMPACT,
    COLUMN_DEFAULT_VALUES,
    COLUMN_DESCRIPTION,
    COLUMN_DISPLAY_NAME,
    COLUMN_JUSTIFICATION,
    COLUMN_PARAMETER_TYPES,
    COLUMN_POLICY_TYPE,
    COLUMN_POSSIBLE_VALUES,
    COLUMN_RECOMMENDATION,
    COLUMN_REFERENCE_ID,
    COLUMN_RESOURCE_ID,
)
from .widths import Cell, ColumnWidths, cell_of_lines

LOG = get_logger(__name__)

R = TypeVar("R")
PartialRow = Dict[str, Cell]
ToRow = Callable[[Any, Sequence[str]], PartialRow]

POLICY_TYPE_BUILTIN = "Builtin"
POLICY_TYPE_CUSTOM = "Custom"
POLICY_SET_PARAMETER_CATEGORY = "Security Center"
ALLOWED_VALUE_SEPARATOR = ";"
RECOMMEND_YES = "Yes"
RECOMMEND_NO = "No"


@dataclass(frozen=True)
class SheetRows:
    headers: Tuple[str, ...]
    rows: List[Tuple[Cell, ...]] = field(default_factory=list)
    widths: List[float] = field(default_factory=list)

    def values(self) -> List[List[str]]:
        return [list(self.headers)] + [[c.value for c in row] for row in self.rows]


# ---------
# Export
# ---------


def _possible_values_line(param: PolicyParameter) -> str:
    if param.allowed_values:
        rendered = ALLOWED_VALUE_SEPARATOR.join(render_value(v) for v in param.allowed_values)
    else:
        rendered = format_placeholder(param.type)
    return encode_cell([(param.internal_name, rendered)])


def _default_value_line(param: PolicyParameter) -> str:
    rendered = render_value(param.default_value) if param.default_value is not None else NO_DEFAULT
    return encode_cell([(param.internal_name, rendered)])


def _type_line(param: PolicyParameter) -> str:
    return encode_cell([(param.internal_name, param.type)])


def _parameter_cells(params: Sequence[PolicyParameter]) -> PartialRow:
    return {
        COLUMN_POSSIBLE_VALUES: cell_of_lines(_possible_values_line(p) for p in params),
        COLUMN_DEFAULT_VALUES: cell_of_lines(_default_value_line(p) for p in params),
        COLUMN_PARAMETER_TYPES: cell_of_lines(_type_line(p) for p in params),
    }


def _override_pairs(policy: Policy, attachment: Attachment) -> List[Tuple[str, str]]:
    known = [p.internal_name for p in policy.parameters]
    names = [n for n in known if n in attachment.parameters]
    names += sorted(n for n in attachment.parameters if n not in known)
    return [(n, render_value(attachment.parameters[n])) for n in names]


def attachment_cell(policy: Policy, attachment: Optional[Attachment]) -> str:
    """
    Render one group column of a policy row.
    """
    if attachment is None:
        return ""
    if not attachment.enabled:
        return NOT_APPLIED
    effect_overridden = bool(attachment.effect) and attachment.effect != policy.default_effect()
    if not attachment.parameters and not effect_overridden:
        return ENABLED
    pairs = _override_pairs(policy, attachment)
    if effect_overridden and EFFECT_PARAMETER not in attachment.parameters:
        name = EFFECT_PARAMETER if policy.effect_parameter() is not None else EFFECT_PLACEHOLDER
        pairs.insert(0, (name, attachment.effect))
    return encode_cell(pairs)


def policy_to_row(policy: Policy, groups: Sequence[str]) -> PartialRow:
    row: PartialRow = {
        COLUMN_DISPLAY_NAME: Cell(policy.display_name),
        COLUMN_DESCRIPTION: Cell(policy.description),
        COLUMN_CATEGORY: Cell(policy.category),
        COLUMN_POLICY_TYPE: Cell(POLICY_TYPE_BUILTIN),
        COLUMN_RESOURCE_ID: Cell(policy.resource_id),
        COLUMN_JUSTIFICATION: Cell(policy.justification),
        COLUMN_COST_IMPACT: Cell(policy.cost_impact),
        COLUMN_BELONGING_INITIATIVES: cell_of_lines(policy.initiative_ids),
        COLUMN_RECOMMENDATION: Cell(RECOMMEND_YES if policy.recommend else RECOMMEND_NO),
    }
    row.update(_parameter_cells(policy.parameters_for_export()))
    for group in groups:
        row[group] = Cell(attachment_cell(policy, policy.management_groups.get(group)))
    return row


def custom_policy_to_row(policy: Policy, groups: Sequence[str]) -> PartialRow:
    row = policy_to_row(policy, groups)
    row[COLUMN_POLICY_TYPE] = Cell(POLICY_TYPE_CUSTOM)
    row.pop(COLUMN_RESOURCE_ID, None)
    row.pop(COLUMN_BELONGING_INITIATIVES, None)
    return row


def parameter_to_row(parameter: PolicyParameter, groups: Sequence[str]) -> PartialRow:
    row: PartialRow = {
        COLUMN_DISPLAY_NAME: Cell(parameter.display_name),
        COLUMN_DESCRIPTION: Cell(parameter.description),
        COLUMN_CATEGORY: Cell(POLICY_SET_PARAMETER_CATEGORY),
        COLUMN_POLICY_TYPE: Cell(POLICY_TYPE_BUILTIN),
        COLUMN_REFERENCE_ID: Cell(parameter.internal_name),
        COLUMN_JUSTIFICATION: Cell(parameter.justification),
        COLUMN_COST_IMPACT: Cell(parameter.cost_impact),
    }
    row.update(_parameter_cells([parameter]))
    for group in groups:
        value = parameter.management_groups.get(group)
        row[group] = Cell(render_value(value) if value is not None else "")
    return row


def records_to_rows(records: Iterable[R], layout: ColumnLayout, to_row: ToRow) -> SheetRows:
    """
    Place the partial rows produced by to_row into the layout's column order.
    Columns missing from a partial row stay empty; columns unknown to the layout
    are logged and dropped.
    """
    widths = ColumnWidths(layout.headers)
    rows: List[Tuple[Cell, ...]] = []
    unknown: set = set()
    for record in records:
        partial = to_row(record, layout.dynamic_columns)
        cells = [Cell() for _ in layout.headers]
        for name, cell in partial.items():
            position = layout.index.get(name)
            if position is None:
                unknown.add(name)
                continue
            cells[position] = cell
        widths.observe(cells)
        rows.append(tuple(cells))
    for name in sorted(unknown):
        LOG.warning("Column %s from row values is not part of the sheet layout", name)
    return SheetRows(headers=layout.headers, rows=rows, widths=widths.fitted())


# ---------
# Import
# ---------


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def header_index(header_row: Sequence[Any]) -> Dict[str, int]:
    index: Dict[str, int] = {}
    for position, raw in enumerate(header_row):
        name = cell_text(raw).strip()
        if not name:
            continue
        if name in index:
            raise LayoutError(f"duplicate column name '{name}' in sheet header")
        index[name] = position
    return index


class NamedRow:
    """
    One data row addressed by header name, never by position.
    """

    def __init__(
        self,
        index: Mapping[str, int],
        values: Sequence[Any],
        groups: Sequence[str] = (),
        number: Optional[int] = None,
    ) -> None:
        self._index = index
        self._values = [cell_text(v) for v in values]
        self.groups = tuple(g for g in groups if g in index)
        # first configured dynamic column, even when an edited sheet dropped it
        self.root_group: Optional[str] = groups[0] if groups else None
        self.number = number

    def get(self, column: str, default: str = "") -> str:
        position = self._index.get(column)
        if position is None or position >= len(self._values):
            return default
        return self._values[position]

    def must_get(self, column: str) -> str:
        if column not in self._index:
            raise MissingColumnError(column, self.number)
        return self.get(column)

    def group_values(self) -> Dict[str, str]:
        return {group: self.get(group) for group in self.groups}

    def is_blank(self) -> bool:
        return not any(v.strip() for v in self._values)


def _root_wins(values: Dict[str, R], root: Optional[str]) -> Dict[str, R]:
    # A value on the root management group replaces every other group of the row.
    if root is not None and root in values:
        return {root: values[root]}
    return values


def _parse_allowed(raw: Optional[str], declared_type: str) -> Optional[List[CellValue]]:
    if raw is None or raw == format_placeholder(declared_type) or raw == "":
        return None
    return [parse_typed(part.strip(), declared_type) for part in raw.split(ALLOWED_VALUE_SEPARATOR)]


def _parse_default(raw: Optional[str], declared_type: str) -> Optional[CellValue]:
    if raw is None or raw == NO_DEFAULT:
        return None
    return parse_typed(raw, declared_type)


def _parameters_from_row(row: NamedRow, types: Dict[str, str]) -> Tuple[List[PolicyParameter], str]:
    """
    Rebuild parameters from the types, defaults and possible values columns.
    Returns the parameters and the effect carried by the synthetic '*effect' entry.
    """
    names = list(types)
    defaults = decode_cell(row.get(COLUMN_DEFAULT_VALUES), known_keys=names)
    allowed = decode_cell(row.get(COLUMN_POSSIBLE_VALUES), known_keys=names)
    for name in list(defaults) + list(allowed):
        if name and name not in types and not is_placeholder(name):
            raise MissingTypeError(name)

    raw_effect = defaults.get(EFFECT_PLACEHOLDER)
    effect = "" if raw_effect in (None, NO_DEFAULT) else raw_effect

    params: List[PolicyParameter] = []
    for name, declared_type in types.items():
        if not name or is_placeholder(name):
            continue
        params.append(
            PolicyParameter(
                internal_name=name,
                type=declared_type,
                default_value=_parse_default(defaults.get(name), declared_type),
                allowed_values=_parse_allowed(allowed.get(name), declared_type),
            )
        )
    return params, effect


def _overrides_to_attachment(text: str, types: Dict[str, str]) -> Attachment:
    attachment = Attachment(enabled=True, location=DEFAULT_ATTACHMENT_LOCATION)
    for name, raw in decode_cell(text, known_keys=list(types)).items():
        if name in ("", EFFECT_PLACEHOLDER):
            attachment.effect = raw
            continue
        declared_type = types.get(name)
        if declared_type is None:
            raise MissingTypeError(name)
        value = parse_typed(raw, declared_type)
        attachment.parameters[name] = value
        if name == EFFECT_PARAMETER:
            attachment.effect = render_value(value)
    return attachment


def row_to_policy(row: NamedRow) -> Policy:
    display_name = row.must_get(COLUMN_DISPLAY_NAME).strip()
    types = decode_cell(row.get(COLUMN_PARAMETER_TYPES))
    parameters, effect = _parameters_from_row(row, types)
    policy = Policy(
        display_name=display_name,
        category=row.get(COLUMN_CATEGORY).strip(),
        description=row.get(COLUMN_DESCRIPTION).strip(),
        resource_id=row.get(COLUMN_RESOURCE_ID).strip(),
        justification=row.get(COLUMN_JUSTIFICATION).strip(),
        cost_impact=row.get(COLUMN_COST_IMPACT).strip(),
        effect=effect,
        parameters=parameters,
        initiative_ids=[line.strip() for line in row.get(COLUMN_BELONGING_INITIATIVES).splitlines() if line.strip()],
        recommend=row.get(COLUMN_RECOMMENDATION).strip().lower() == RECOMMEND_YES.lower(),
    )

    attachments: Dict[str, Attachment] = {}
    for group, text in row.group_values().items():
        text = text.strip()
        if not text or is_not_applied(text):
            continue
        if is_enabled(text):
            attachments[group] = Attachment(
                enabled=True,
                effect=policy.default_effect(),
                location=DEFAULT_ATTACHMENT_LOCATION,
            )
        else:
            attachment = _overrides_to_attachment(text, types)
            attachment.effect = attachment.effect or policy.default_effect()
            attachments[group] = attachment
    policy.management_groups = _root_wins(attachments, row.root_group)
    return policy


def _single_value(text: str, name: str) -> str:
    values = decode_cell(text, known_keys=[name])
    if name in values:
        return values[name]
    return decode_single(text)


def _group_value(text: str, name: str) -> str:
    """
    A parameter group cell holds one bare value, which may itself contain
    colons (URLs, timestamps). A leading "name:" written by hand is tolerated.
    """
    prefix = f"{name}:"
    if name and text.startswith(prefix):
        return text[len(prefix):].strip()
    return text


def row_to_parameter(row: NamedRow) -> PolicyParameter:
    internal_name = row.must_get(COLUMN_REFERENCE_ID).strip()
    types_text = row.must_get(COLUMN_PARAMETER_TYPES)
    declared_type = _single_value(types_text, internal_name) or TYPE_STRING
    default_text = row.get(COLUMN_DEFAULT_VALUES)
    default_value = _parse_default(_single_value(default_text, internal_name) if default_text.strip() else None, declared_type)
    allowed_text = row.get(COLUMN_POSSIBLE_VALUES)
    allowed_values = _parse_allowed(_single_value(allowed_text, internal_name) if allowed_text.strip() else None, declared_type)

    values: Dict[str, CellValue] = {}
    for group, text in row.group_values().items():
        text = text.strip()
        if not text or is_not_applied(text):
            continue
        if is_enabled(text):
            if default_value is None:
                LOG.warning(
                    "Parameter %s is enabled for %s but has no default value, skipped",
                    internal_name,
                    group,
                )
                continue
            values[group] = default_value
        else:
            values[group] = parse_typed(_group_value(text, internal_name), declared_type)

    return PolicyParameter(
        internal_name=internal_name,
        type=declared_type,
        display_name=row.get(COLUMN_DISPLAY_NAME).strip(),
        description=row.get(COLUMN_DESCRIPTION).strip(),
        default_value=default_value,
        allowed_values=allowed_values,
        justification=row.get(COLUMN_JUSTIFICATION).strip(),
        cost_impact=row.get(COLUMN_COST_IMPACT).strip(),
        management_groups=_root_wins(values, row.root_group),
    )


def rows_to_records(
    rows: Sequence[Sequence[Any]],
    groups: Sequence[str],
    to_record: Callable[[NamedRow], R],
) -> List[R]:
    """
    Decode sheet rows (header row first) into records. Any row error aborts the
    whole import.
    """
    if not rows:
        return []
    index = header_index(rows[0])
    missing = [g for g in groups if g not in index]
    if missing:
        LOG.warning("Group columns not found in sheet header: %s", ", ".join(missing))
    records: List[R] = []
    for number, values in enumerate(rows[1:], start=2):
        row = NamedRow(index, values, groups=groups, number=number)
        if row.is_blank():
            continue
        records.append(to_record(row))
    return records
