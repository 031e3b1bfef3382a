from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..logging import get_logger
from ..util.errors import AuthResolutionError, map_azure_error

try:
    from azure.identity import DefaultAzureCredential  # type: ignore
    from azure.mgmt.resource.policy import PolicyClient  # type: ignore
except Exception:  # pragma: no cover - import error surfaced at runtime
    DefaultAzureCredential = None  # type: ignore
    PolicyClient = None  # type: ignore

LOG = get_logger(__name__)

ENV_SUBSCRIPTION_ID = "AZURE_SUBSCRIPTION_ID"
ENV_DISABLE_CLIENT_CACHE = "POLICY_EXPORTER_DISABLE_CLIENT_CACHE"

_CLIENT_CACHE: Dict[Tuple[str, str], Any] = {}


@dataclass(frozen=True)
class AzureContext:
    """
    Resolved credential and subscription used to construct Azure SDK clients.
    """

    subscription_id: str
    credential: Any


def _require_sdk() -> None:
    if DefaultAzureCredential is None or PolicyClient is None:
        raise AuthResolutionError(
            "Azure SDK not installed. Install dependencies and try again: pip install ."
        )


def resolve_subscription_id(subscription_id: Optional[str]) -> str:
    resolved = (subscription_id or os.getenv(ENV_SUBSCRIPTION_ID) or "").strip()
    if not resolved:
        raise AuthResolutionError(
            f"Subscription ID is required for the Azure source. Pass --subscription-id or set {ENV_SUBSCRIPTION_ID}."
        )
    return resolved


def resolve_context(subscription_id: Optional[str]) -> AzureContext:
    """
    Resolve credentials the way the Azure CLI and SDKs do: environment, managed
    identity, then developer logins (DefaultAzureCredential chain).
    """
    _require_sdk()
    resolved = resolve_subscription_id(subscription_id)
    try:
        credential = DefaultAzureCredential()  # type: ignore[misc]
    except Exception as e:
        mapped = map_azure_error(e, "Azure SDK error while resolving credentials")
        if mapped:
            raise mapped from e
        raise AuthResolutionError(f"Failed to resolve Azure credentials: {e}") from e
    return AzureContext(subscription_id=resolved, credential=credential)


def _cache_enabled() -> bool:
    return (os.getenv(ENV_DISABLE_CLIENT_CACHE) or "").strip().lower() not in ("1", "true", "yes", "on")


def get_policy_client(ctx: AzureContext) -> Any:
    """
    Return a PolicyClient for the context's subscription, reused across sources.
    """
    _require_sdk()
    key = ("policy", ctx.subscription_id)
    if _cache_enabled() and key in _CLIENT_CACHE:
        return _CLIENT_CACHE[key]
    LOG.debug("Creating PolicyClient", extra={"step": "azure", "phase": "client"})
    client = PolicyClient(ctx.credential, ctx.subscription_id)  # type: ignore[misc]
    if _cache_enabled():
        _CLIENT_CACHE[key] = client
    return client


def clear_client_cache() -> None:
    _CLIENT_CACHE.clear()
