from __future__ import annotations

from policy_exporter.model.records import (
    EFFECT_PLACEHOLDER,
    UNKNOWN_CATEGORY,
    Attachment,
    Policy,
    PolicyParameter,
    group_by_category,
    sort_by_identity,
)
from policy_exporter.model.values import ArrayValue, IntValue, StringValue, from_python, render_value


def _full_policy() -> Policy:
    return Policy(
        display_name="Audit VMs",
        category="Compute",
        description="d",
        effect="Audit",
        parameters=[PolicyParameter(internal_name="tagName", type="String")],
        management_groups={"Root": Attachment(enabled=True, effect="Audit")},
        recommend=True,
        required=True,
    )


def test_merge_is_idempotent() -> None:
    policy = _full_policy()
    assert policy.merge(policy) == policy


def test_merge_with_empty_is_identity() -> None:
    policy = _full_policy()
    merged = policy.merge(Policy(display_name="Audit VMs"))
    assert merged.description == "d"
    assert merged.management_groups == policy.management_groups
    # required only survives when both sides agree
    assert merged.required is False
    assert merged.recommend is True


def test_merge_does_not_mutate_operands() -> None:
    first = Policy(display_name="P", management_groups={"Root": Attachment(enabled=False)})
    second = Policy(display_name="P", management_groups={"Root": Attachment(enabled=True)})
    first.merge(second)
    assert first.management_groups["Root"].enabled is False


def test_parameter_merge_fills_blanks() -> None:
    mine = PolicyParameter(internal_name="effect", default_value=StringValue(""))
    theirs = PolicyParameter(internal_name="effect", type="String", default_value=StringValue("Audit"))
    merged = mine.merge(theirs)
    assert merged.type == "String"
    assert merged.default_value == StringValue("Audit")


def test_fixed_effect_policies_export_placeholder_parameter() -> None:
    policy = Policy(display_name="P", effect="Deny")
    params = policy.parameters_for_export()
    assert params[0].internal_name == EFFECT_PLACEHOLDER
    assert params[0].default_value == StringValue("Deny")
    assert policy.default_effect() == "Deny"


def test_configurable_effect_uses_parameter_default() -> None:
    policy = Policy(
        display_name="P",
        effect="[parameters('effect')]",
        parameters=[PolicyParameter(internal_name="effect", type="String", default_value=StringValue("Audit"))],
    )
    assert [p.internal_name for p in policy.parameters_for_export()] == ["effect"]
    assert policy.default_effect() == "Audit"
    assert policy.normalize_effect_parameter().effect == "Audit"


def test_initiatives_get_no_placeholder() -> None:
    policy = Policy(display_name="I", is_initiative=True)
    assert policy.parameters_for_export() == []


def test_group_by_category_sorts_and_defaults() -> None:
    categories = group_by_category(
        [Policy(display_name="b", category="Network"), Policy(display_name="a"), Policy(display_name="a", category="Network")]
    )
    assert [c.name for c in categories] == ["Network", UNKNOWN_CATEGORY]
    assert [p.display_name for p in categories[0].policies] == ["a", "b"]


def test_sort_by_identity_is_case_sensitive() -> None:
    params = [PolicyParameter(internal_name="b"), PolicyParameter(internal_name="B"), PolicyParameter(internal_name="a")]
    assert [p.internal_name for p in sort_by_identity(params)] == ["B", "a", "b"]


def test_render_value_variants() -> None:
    assert render_value(from_python([1, 2])) == "<1,2>"
    assert render_value(from_python(True)) == "true"
    assert render_value(from_python({"b": 1, "a": [2]})) == '{"a":[2],"b":1}'
    assert render_value(ArrayValue((StringValue("a,b"), IntValue(3)))) == '<"a,b",3>'
    assert render_value(from_python(2.0)) == "2"
