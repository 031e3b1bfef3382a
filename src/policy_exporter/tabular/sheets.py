from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .layout import ColumnLayout, build_layout

# Column names double as lookup keys when rows are read back.
COLUMN_DISPLAY_NAME = "DisplayName"
COLUMN_POSSIBLE_VALUES = "Parameters: Possible values"
COLUMN_DEFAULT_VALUES = "Default values"
COLUMN_DESCRIPTION = "Description"
COLUMN_CATEGORY = "Category"
COLUMN_POLICY_TYPE = "Policy Type"
COLUMN_RESOURCE_ID = "ResourceID"
COLUMN_JUSTIFICATION = "Justification"
COLUMN_COST_IMPACT = "Cost Impact"
COLUMN_REFERENCE_ID = "Reference ID"
COLUMN_BELONGING_INITIATIVES = "Belonging Initiatives"
COLUMN_PARAMETER_TYPES = "Parameter Types"
COLUMN_RECOMMENDATION = "Baseline Recommendation"

SHEET_NAME_BUILTIN_POLICIES = "Built-in policies"
SHEET_NAME_CUSTOM_POLICIES = "Nordcloud custom policies"
SHEET_NAME_POLICY_SET_PARAMETERS = "Security policies"

DYNAMIC_MANAGEMENT_GROUPS = "management_groups"
DYNAMIC_SUBSCRIPTIONS = "subscriptions"


@dataclass(frozen=True)
class SheetDefinition:
    name: str
    order: int
    columns: Tuple[str, ...]
    insert_after: str = COLUMN_DEFAULT_VALUES
    # which configured scope list supplies the dynamic columns
    dynamic: str = DYNAMIC_MANAGEMENT_GROUPS


BUILTIN_POLICIES_SHEET = SheetDefinition(
    name=SHEET_NAME_BUILTIN_POLICIES,
    order=0,
    columns=(
        COLUMN_DISPLAY_NAME,
        COLUMN_POSSIBLE_VALUES,
        COLUMN_DEFAULT_VALUES,
        COLUMN_DESCRIPTION,
        COLUMN_CATEGORY,
        COLUMN_POLICY_TYPE,
        COLUMN_RESOURCE_ID,
        COLUMN_JUSTIFICATION,
        COLUMN_COST_IMPACT,
        COLUMN_BELONGING_INITIATIVES,
        COLUMN_PARAMETER_TYPES,
        COLUMN_RECOMMENDATION,
    ),
)

CUSTOM_POLICIES_SHEET = SheetDefinition(
    name=SHEET_NAME_CUSTOM_POLICIES,
    order=1,
    columns=(
        COLUMN_DISPLAY_NAME,
        COLUMN_POSSIBLE_VALUES,
        COLUMN_DEFAULT_VALUES,
        COLUMN_DESCRIPTION,
        COLUMN_CATEGORY,
        COLUMN_POLICY_TYPE,
        COLUMN_JUSTIFICATION,
        COLUMN_COST_IMPACT,
        COLUMN_RECOMMENDATION,
        COLUMN_PARAMETER_TYPES,
    ),
)

POLICY_SET_PARAMETERS_SHEET = SheetDefinition(
    name=SHEET_NAME_POLICY_SET_PARAMETERS,
    order=2,
    columns=(
        COLUMN_DISPLAY_NAME,
        COLUMN_POSSIBLE_VALUES,
        COLUMN_DEFAULT_VALUES,
        COLUMN_DESCRIPTION,
        COLUMN_CATEGORY,
        COLUMN_POLICY_TYPE,
        COLUMN_REFERENCE_ID,
        COLUMN_JUSTIFICATION,
        COLUMN_COST_IMPACT,
        COLUMN_PARAMETER_TYPES,
    ),
    dynamic=DYNAMIC_SUBSCRIPTIONS,
)

ALL_SHEETS = (BUILTIN_POLICIES_SHEET, CUSTOM_POLICIES_SHEET, POLICY_SET_PARAMETERS_SHEET)


def layout_for(sheet: SheetDefinition, groups: Sequence[str]) -> ColumnLayout:
    return build_layout(sheet.columns, groups, sheet.insert_after)


def groups_for(sheet: SheetDefinition, management_groups: Sequence[str], subscriptions: Sequence[str]) -> List[str]:
    """Dynamic columns of a sheet: subscriptions or management groups."""
    return list(subscriptions if sheet.dynamic == DYNAMIC_SUBSCRIPTIONS else management_groups)
