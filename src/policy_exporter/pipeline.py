from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, Dict, List, Optional, Sequence

from .logging import get_logger
from .model.records import Policy, PolicyParameter, sort_by_identity
from .reconcile.reconciler import SourceBatch, reconcile
from .sources import build_provider
from .sources.base import PolicyDefinitionProvider

LOG = get_logger(__name__)

# Source order matters: merging is fill-only, so the first source to set a field wins.
DEFAULT_INTERMEDIATE_SOURCES = ("azure", "local-repository", "excel:fill-only", "baseline-excel:fill-only")
DEFAULT_FINAL_SOURCES = ("excel", "azure", "local-repository", "yaml")

# config attribute each default source needs before it is included
_SOURCE_INPUTS = {
    "local-repository": "local_repo_dir",
    "excel": "excel_file",
    "baseline-excel": "old_baseline_excel_file",
    "yaml": "yaml_file",
}


@dataclass(frozen=True)
class ReconciledDefinitions:
    builtin_policies: List[Policy] = field(default_factory=list)
    custom_policies: List[Policy] = field(default_factory=list)
    policy_set_parameters: List[PolicyParameter] = field(default_factory=list)

    @property
    def all_policies(self) -> List[Policy]:
        return list(self.builtin_policies) + list(self.custom_policies)


ExportFn = Callable[[ReconciledDefinitions, Path], List[Path]]


@dataclass(frozen=True)
class PolicyDefinitionExporter:
    """An exporter writes its own files under the target directory and returns their paths."""

    name: str
    export: ExportFn


def _timed_read(provider: PolicyDefinitionProvider, kind: str, reader: Callable[[], List[Any]]) -> List[Any]:
    started = perf_counter()
    records = reader()
    LOG.info(
        "Read %s records from %s",
        kind,
        provider.name,
        extra={
            "step": "source",
            "phase": provider.name,
            "kind": kind,
            "records": len(records),
            "duration_ms": int((perf_counter() - started) * 1000),
        },
    )
    return records


def collect_definitions(providers: Sequence[PolicyDefinitionProvider]) -> ReconciledDefinitions:
    """
    Call every reader strictly in provider order, reconcile per record kind and
    sort by identity key.
    """
    builtin: List[SourceBatch] = []
    custom: List[SourceBatch] = []
    parameters: List[SourceBatch] = []
    for provider in providers:
        if provider.builtin_policies is not None:
            records = _timed_read(provider, "built-in policy", provider.builtin_policies)
            builtin.append(SourceBatch(provider.name, records, provider.mode))
        if provider.custom_policies is not None:
            records = _timed_read(provider, "custom policy", provider.custom_policies)
            custom.append(SourceBatch(provider.name, records, provider.mode))
        if provider.policy_set_parameters is not None:
            records = _timed_read(provider, "policy set parameter", provider.policy_set_parameters)
            parameters.append(SourceBatch(provider.name, records, provider.mode))

    return ReconciledDefinitions(
        builtin_policies=sort_by_identity(reconcile(builtin, kind="built-in policy")),
        custom_policies=sort_by_identity(reconcile(custom, kind="custom policy")),
        policy_set_parameters=sort_by_identity(reconcile(parameters, kind="policy set parameter")),
    )


def run_exporters(
    definitions: ReconciledDefinitions,
    exporters: Sequence[PolicyDefinitionExporter],
    outdir: Path,
) -> List[Path]:
    outdir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for exporter in exporters:
        started = perf_counter()
        paths = exporter.export(definitions, outdir)
        LOG.info(
            "Exporter %s wrote %d file(s)",
            exporter.name,
            len(paths),
            extra={
                "step": "export",
                "phase": exporter.name,
                "files": [str(p) for p in paths],
                "duration_ms": int((perf_counter() - started) * 1000),
            },
        )
        written.extend(paths)
    return written


def default_source_specs(defaults: Sequence[str], cfg: Any) -> List[str]:
    """
    Keep the default sources whose inputs are configured.
    """
    specs: List[str] = []
    for spec in defaults:
        name = spec.split(":", 1)[0]
        attr = _SOURCE_INPUTS.get(name)
        if attr is not None and not getattr(cfg, attr, None):
            LOG.debug("Skipping default source %s: %s is not configured", name, attr)
            continue
        specs.append(spec)
    return specs


def build_providers(specs: Sequence[str], cfg: Any) -> List[PolicyDefinitionProvider]:
    return [build_provider(spec, cfg) for spec in specs]


def _resolve_specs(explicit: Optional[Sequence[str]], defaults: Sequence[str], cfg: Any) -> List[str]:
    if explicit:
        return list(explicit)
    return default_source_specs(defaults, cfg)


def _export(cfg: Any, specs: List[str], exporters: Sequence[PolicyDefinitionExporter]) -> Dict[str, Any]:
    LOG.log(logging.INFO, "Using sources: %s", ", ".join(specs), extra={"step": "sources", "phase": "resolved"})
    definitions = collect_definitions(build_providers(specs, cfg))
    written = run_exporters(definitions, exporters, Path(cfg.outdir))
    return {"definitions": definitions, "files": written, "sources": specs}


def export_intermediate(cfg: Any) -> Dict[str, Any]:
    """
    Write the intermediate workbook used to collect justifications and
    per-group settings from reviewers.
    """
    from .export.workbook import workbook_exporter

    specs = _resolve_specs(cfg.intermediate_sources, DEFAULT_INTERMEDIATE_SOURCES, cfg)
    return _export(cfg, specs, [workbook_exporter(cfg)])


def export_final(cfg: Any) -> Dict[str, Any]:
    """
    Write landing zone JSON parameter files and MDX documentation.
    """
    from .export.json_params import json_parameters_exporter
    from .export.mdx import mdx_exporter

    specs = _resolve_specs(cfg.final_sources, DEFAULT_FINAL_SOURCES, cfg)
    return _export(cfg, specs, [json_parameters_exporter(cfg), mdx_exporter(cfg)])
