from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from policy_exporter import pipeline
from policy_exporter.model.records import Policy, PolicyParameter
from policy_exporter.pipeline import (
    DEFAULT_FINAL_SOURCES,
    DEFAULT_INTERMEDIATE_SOURCES,
    PolicyDefinitionExporter,
    ReconciledDefinitions,
    collect_definitions,
    default_source_specs,
    run_exporters,
)
from policy_exporter.reconcile.reconciler import SourceMode
from policy_exporter.sources import (
    build_provider,
    is_source_registered,
    list_registered_sources,
    parse_source_spec,
    register_source,
)
from policy_exporter.sources.base import PolicyDefinitionProvider
from policy_exporter.util.errors import ConfigError, SourceReadError


def test_readers_called_in_source_order_and_merged() -> None:
    calls = []

    def reader(name, records):
        def _read():
            calls.append(name)
            return records

        return _read

    azure = PolicyDefinitionProvider(
        name="azure",
        builtin_policies=reader("azure", [Policy(display_name="P2"), Policy(display_name="P1", description="api")]),
        policy_set_parameters=reader("azure-params", [PolicyParameter(internal_name="x")]),
    )
    excel = PolicyDefinitionProvider(
        name="excel",
        builtin_policies=reader("excel", [Policy(display_name="P1", justification="why"), Policy(display_name="P3")]),
        mode=SourceMode.FILL_ONLY,
    )

    defs = collect_definitions([azure, excel])
    assert calls == ["azure", "azure-params", "excel"]
    assert [p.display_name for p in defs.builtin_policies] == ["P1", "P2"]
    assert defs.builtin_policies[0].description == "api"
    assert defs.builtin_policies[0].justification == "why"
    assert defs.custom_policies == []
    assert [p.internal_name for p in defs.policy_set_parameters] == ["x"]
    assert [p.display_name for p in defs.all_policies] == ["P1", "P2"]


def test_reader_errors_abort_collection() -> None:
    def _fail():
        raise SourceReadError("boom")

    later = []
    providers = [
        PolicyDefinitionProvider(name="a", builtin_policies=_fail),
        PolicyDefinitionProvider(name="b", builtin_policies=lambda: later.append(1) or []),
    ]
    with pytest.raises(SourceReadError):
        collect_definitions(providers)
    assert later == []


def test_run_exporters_in_sequence(tmp_path: Path) -> None:
    order = []

    def _exporter(name):
        def _export(defs, outdir):
            order.append(name)
            path = outdir / f"{name}.txt"
            path.write_text(name, encoding="utf-8")
            return [path]

        return PolicyDefinitionExporter(name=name, export=_export)

    outdir = tmp_path / "out"
    written = run_exporters(ReconciledDefinitions(), [_exporter("a"), _exporter("b")], outdir)
    assert order == ["a", "b"]
    assert [p.name for p in written] == ["a.txt", "b.txt"]


def test_default_sources_skip_unconfigured_inputs() -> None:
    cfg = SimpleNamespace(excel_file="book.xlsx", old_baseline_excel_file=None, local_repo_dir=None, yaml_file=None)
    assert default_source_specs(DEFAULT_INTERMEDIATE_SOURCES, cfg) == ["azure", "excel:fill-only"]
    assert default_source_specs(DEFAULT_FINAL_SOURCES, cfg) == ["excel", "azure"]


def test_parse_source_spec() -> None:
    assert parse_source_spec("excel") == ("excel", SourceMode.MERGE)
    assert parse_source_spec("excel:fill-only") == ("excel", SourceMode.FILL_ONLY)
    with pytest.raises(ConfigError):
        parse_source_spec(":merge")
    with pytest.raises(ConfigError):
        parse_source_spec("excel:sometimes")


def test_builtin_sources_registered() -> None:
    assert {"azure", "excel", "baseline-excel", "yaml", "local-repository"} <= set(list_registered_sources())
    with pytest.raises(ConfigError):
        build_provider("nope", SimpleNamespace())


def test_build_provider_applies_spec_mode() -> None:
    register_source("unit-test", lambda cfg: PolicyDefinitionProvider(name="whatever", builtin_policies=lambda: []))
    assert is_source_registered("unit-test")
    provider = build_provider("unit-test:new-only", SimpleNamespace())
    assert provider.name == "unit-test"
    assert provider.mode is SourceMode.NEW_ONLY


def test_export_final_uses_configured_sources(tmp_path: Path, monkeypatch) -> None:
    register_source(
        "unit-final",
        lambda cfg: PolicyDefinitionProvider(
            name="unit-final",
            builtin_policies=lambda: [Policy(display_name="P1", category="General", required=True)],
            policy_set_parameters=lambda: [PolicyParameter(internal_name="x")],
        ),
    )
    cfg = SimpleNamespace(
        outdir=tmp_path,
        final_sources=["unit-final"],
        management_groups=["Root"],
        subscriptions=[],
        policy_set_parameter_groups=["Prod"],
    )
    result = pipeline.export_final(cfg)
    names = sorted(p.name for p in result["files"])
    assert names == [
        "ASCPolicySetParameters.mdx",
        "ASC_policy_Prod.json",
        "BuiltInPolicies.mdx",
        "CustomPolicies.mdx",
        "governance-policy-parameters.json",
    ]
    assert result["sources"] == ["unit-final"]
    assert [p.display_name for p in result["definitions"].builtin_policies] == ["P1"]


def test_export_intermediate_writes_workbook(tmp_path: Path) -> None:
    register_source(
        "unit-intermediate",
        lambda cfg: PolicyDefinitionProvider(
            name="unit-intermediate",
            builtin_policies=lambda: [Policy(display_name="P1", category="General", effect="Audit")],
        ),
    )
    cfg = SimpleNamespace(
        outdir=tmp_path / "out",
        intermediate_sources=["unit-intermediate"],
        management_groups=["Root"],
        subscriptions=[],
    )
    result = pipeline.export_intermediate(cfg)
    [path] = result["files"]
    assert path.parent == tmp_path / "out"
    assert path.name.startswith("Azure Policy Baseline - ")
    assert path.suffix == ".xlsx"
