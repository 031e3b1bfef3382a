from __future__ import annotations

from dataclasses import dataclass

import pytest

from policy_exporter.model.records import Attachment, Policy, PolicyParameter, Reconcilable
from policy_exporter.model.values import StringValue
from policy_exporter.reconcile.reconciler import SourceBatch, SourceMode, reconcile
from policy_exporter.util.errors import EmptyIdentityWarning


def _policy(name: str, **kwargs) -> Policy:
    return Policy(display_name=name, **kwargs)


def test_first_non_empty_value_wins() -> None:
    a = SourceBatch("azure", [_policy("P1", description="from azure")])
    b = SourceBatch("excel", [_policy("P1", description="from excel", justification="needed")])

    merged = reconcile([a, b])
    assert len(merged) == 1
    assert merged[0].description == "from azure"
    assert merged[0].justification == "needed"


def test_source_order_changes_result() -> None:
    a = SourceBatch("azure", [_policy("P1", description="from azure")])
    b = SourceBatch("excel", [_policy("P1", description="from excel")])

    assert reconcile([a, b])[0].description == "from azure"
    assert reconcile([b, a])[0].description == "from excel"


def test_result_keeps_first_seen_order() -> None:
    a = SourceBatch("a", [_policy("B"), _policy("A")])
    b = SourceBatch("b", [_policy("C"), _policy("A")])
    assert [p.display_name for p in reconcile([a, b])] == ["B", "A", "C"]


def test_fill_only_never_inserts() -> None:
    azure = SourceBatch("azure", [_policy("P1")])
    excel = SourceBatch("excel", [_policy("P1", justification="ok"), _policy("Gone")], SourceMode.FILL_ONLY)

    merged = reconcile([azure, excel])
    assert [p.display_name for p in merged] == ["P1"]
    assert merged[0].justification == "ok"


def test_new_only_never_touches_existing() -> None:
    azure = SourceBatch("azure", [_policy("P1")])
    yaml_batch = SourceBatch("yaml", [_policy("P1", justification="x"), _policy("P2")], SourceMode.NEW_ONLY)

    merged = reconcile([azure, yaml_batch])
    assert [p.display_name for p in merged] == ["P1", "P2"]
    assert merged[0].justification == ""


def test_empty_identity_dropped_with_warning() -> None:
    batch = SourceBatch("yaml", [_policy(""), _policy("P1")])
    with pytest.warns(EmptyIdentityWarning):
        merged = reconcile([batch])
    assert [p.display_name for p in merged] == ["P1"]


def test_attachments_and_parameters_merge_deeply() -> None:
    first = _policy(
        "P1",
        parameters=[PolicyParameter(internal_name="effect", type="String")],
        management_groups={"Root": Attachment(enabled=True, parameters={"effect": StringValue("Deny")})},
    )
    second = _policy(
        "P1",
        parameters=[
            PolicyParameter(internal_name="effect", default_value=StringValue("Audit")),
            PolicyParameter(internal_name="tagName", type="String"),
        ],
        management_groups={
            "Root": Attachment(enabled=False, location="westeurope", parameters={"effect": StringValue("Audit")}),
            "Child": Attachment(enabled=True),
        },
    )

    merged = reconcile([SourceBatch("a", [first]), SourceBatch("b", [second])])[0]
    assert [p.internal_name for p in merged.parameters] == ["effect", "tagName"]
    assert merged.parameters[0].type == "String"
    assert merged.parameters[0].default_value == StringValue("Audit")
    assert merged.management_groups["Root"].enabled is True
    assert merged.management_groups["Root"].location == "westeurope"
    assert merged.management_groups["Root"].parameters == {"effect": StringValue("Deny")}
    assert set(merged.management_groups) == {"Root", "Child"}


def test_source_mode_parse() -> None:
    assert SourceMode.parse("fill_only") is SourceMode.FILL_ONLY
    assert SourceMode.parse(" New-Only ") is SourceMode.NEW_ONLY
    with pytest.raises(ValueError):
        SourceMode.parse("replace")


@dataclass
class _Tag:
    name: str
    value: str = ""

    @property
    def identity_key(self) -> str:
        return self.name

    def merge(self, other: "_Tag") -> "_Tag":
        return _Tag(name=self.name, value=self.value or other.value)


def test_any_reconcilable_record_kind() -> None:
    assert isinstance(_Tag("env"), Reconcilable)
    assert isinstance(Policy(), Reconcilable)
    assert isinstance(PolicyParameter(), Reconcilable)

    first = SourceBatch("a", [_Tag("env"), _Tag("owner", "ops")])
    second = SourceBatch("b", [_Tag("env", "prod"), _Tag("owner", "dev"), _Tag("", "lost")])
    with pytest.warns(EmptyIdentityWarning):
        merged = reconcile([first, second], kind="tag")
    assert merged == [_Tag("env", "prod"), _Tag("owner", "ops")]
