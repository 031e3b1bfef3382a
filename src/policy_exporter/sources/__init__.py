from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, List, Tuple

from ..reconcile.reconciler import SourceMode
from ..util.errors import ConfigError
from .base import PolicyDefinitionProvider

SourceFactory = Callable[[Any], PolicyDefinitionProvider]


class SourceRegistry:
    """
    Registry mapping source names (as used in source order settings) to
    provider factories. Factories receive the run configuration.
    """

    def __init__(self) -> None:
        self._map: Dict[str, SourceFactory] = {}

    def register(self, name: str, factory: SourceFactory) -> None:
        self._map[name] = factory

    def is_registered(self, name: str) -> bool:
        return name in self._map

    def registered_names(self) -> List[str]:
        return sorted(self._map.keys())

    def get(self, name: str) -> SourceFactory:
        factory = self._map.get(name)
        if factory is None:
            raise ConfigError(
                f"Unknown policy source '{name}' (registered: {', '.join(self.registered_names())})"
            )
        return factory


_global_registry = SourceRegistry()


def register_source(name: str, factory: SourceFactory) -> None:
    _global_registry.register(name, factory)


def is_source_registered(name: str) -> bool:
    return _global_registry.is_registered(name)


def list_registered_sources() -> List[str]:
    return _global_registry.registered_names()


def parse_source_spec(spec: str) -> Tuple[str, SourceMode]:
    """
    Split "name[:mode]" into the source name and its reconciliation mode.
    """
    name, _, mode = spec.strip().partition(":")
    name = name.strip()
    if not name:
        raise ConfigError(f"Invalid source entry '{spec}'")
    if not mode.strip():
        return name, SourceMode.MERGE
    try:
        return name, SourceMode.parse(mode)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def build_provider(spec: str, cfg: Any) -> PolicyDefinitionProvider:
    name, mode = parse_source_spec(spec)
    provider = _global_registry.get(name)(cfg)
    return replace(provider, name=name, mode=mode)


def _register_builtin_sources() -> None:
    from .azure_api import azure_provider
    from .excel import baseline_excel_provider, excel_provider
    from .local_repository import local_repository_provider
    from .yaml_catalog import yaml_provider

    register_source("azure", azure_provider)
    register_source("excel", excel_provider)
    register_source("baseline-excel", baseline_excel_provider)
    register_source("yaml", yaml_provider)
    register_source("local-repository", local_repository_provider)


_register_builtin_sources()
