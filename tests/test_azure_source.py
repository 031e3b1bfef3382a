from __future__ import annotations

from types import SimpleNamespace

import pytest

from policy_exporter.azure import clients
from policy_exporter.model.values import ArrayValue, StringValue
from policy_exporter.sources import azure_api
from policy_exporter.sources.azure_api import get_policy_set_parameters, list_builtin_policies
from policy_exporter.util.errors import AuthResolutionError, AzureClientError, SourceReadError


def _definition(display_name: str, effect, parameters=None, category="Compute"):
    return SimpleNamespace(
        id=f"/providers/Microsoft.Authorization/policyDefinitions/{display_name.lower().replace(' ', '-')}",
        display_name=display_name,
        description=f"{display_name} description",
        metadata={"category": category, "version": "1.0.0"},
        policy_rule={"if": {"field": "type"}, "then": {"effect": effect}} if effect is not None else {"if": {}},
        parameters=parameters,
    )


def _parameter(type_, default=None, allowed=None, display_name=""):
    return SimpleNamespace(
        type=SimpleNamespace(value=type_),
        metadata=SimpleNamespace(display_name=display_name, description=None),
        default_value=default,
        allowed_values=allowed,
    )


class _FakePolicyDefinitions:
    def __init__(self, items) -> None:
        self.items = items
        self.calls = []

    def list_by_management_group(self, management_group_id):
        self.calls.append(management_group_id)
        return iter(self.items)


def test_list_builtin_policies_maps_definitions_and_skips_previews() -> None:
    items = [
        _definition(
            "Allowed locations",
            "[parameters('effect')]",
            parameters={
                "effect": _parameter("String", default="Deny", allowed=["Deny", "Audit"], display_name="Effect"),
                "listOfAllowedLocations": _parameter("Array", default=["westeurope"]),
            },
            category="General",
        ),
        _definition("[Preview]: Something new", "Audit"),
        _definition("[Deprecated]: Old", "Audit"),
        _definition("Audit VMs", "audit"),
    ]
    client = SimpleNamespace(policy_definitions=_FakePolicyDefinitions(items))

    policies = list_builtin_policies(client, "Sandbox")
    assert client.policy_definitions.calls == ["Sandbox"]
    assert [p.display_name for p in policies] == ["Allowed locations", "Audit VMs"]

    locations = policies[0]
    assert locations.category == "General"
    assert locations.effect == "Deny"
    assert locations.resource_id.endswith("/allowed-locations")
    assert locations.parameters[0].type == "String"
    assert locations.parameters[0].display_name == "Effect"
    assert locations.parameters[0].allowed_values == [StringValue("Deny"), StringValue("Audit")]
    assert locations.parameters[1].default_value == ArrayValue((StringValue("westeurope"),))
    assert policies[1].effect == "audit"
    assert policies[1].parameters == []


def test_definition_without_effect_raises() -> None:
    client = SimpleNamespace(policy_definitions=_FakePolicyDefinitions([_definition("Broken", None)]))
    with pytest.raises(SourceReadError):
        list_builtin_policies(client, "Sandbox")


def test_sdk_errors_are_wrapped(monkeypatch) -> None:
    class HttpResponseError(Exception):
        pass

    HttpResponseError.__module__ = "azure.core.exceptions"

    class _Failing:
        def get_built_in(self, name):
            raise HttpResponseError("forbidden")

    client = SimpleNamespace(policy_set_definitions=_Failing())
    with pytest.raises(AzureClientError):
        get_policy_set_parameters(client, "1f3afdf9")


def test_policy_set_parameters_read_from_initiative() -> None:
    policy_set = {
        "parameters": {
            "diskEncryptionMonitoringEffect": {
                "type": "String",
                "defaultValue": "AuditIfNotExists",
                "metadata": {"displayName": "Disk encryption"},
            }
        }
    }

    class _Sets:
        def get_built_in(self, name):
            assert name == "1f3afdf9"
            return policy_set

    [param] = get_policy_set_parameters(SimpleNamespace(policy_set_definitions=_Sets()), "1f3afdf9")
    assert param.internal_name == "diskEncryptionMonitoringEffect"
    assert param.display_name == "Disk encryption"
    assert param.default_value == StringValue("AuditIfNotExists")


def test_azure_provider_uses_configured_group_and_policy_set(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(azure_api, "resolve_context", lambda sub: SimpleNamespace(subscription_id=sub))
    monkeypatch.setattr(azure_api, "get_policy_client", lambda ctx: "client")
    monkeypatch.setattr(azure_api, "list_builtin_policies", lambda client, mg: calls.append(("list", client, mg)) or [])
    monkeypatch.setattr(
        azure_api, "get_policy_set_parameters", lambda client, name: calls.append(("set", client, name)) or []
    )
    cfg = SimpleNamespace(subscription_id="sub", policy_query_management_group="Sandbox", policy_set_name="asb")

    provider = azure_api.azure_provider(cfg)
    assert provider.custom_policies is None
    assert provider.builtin_policies() == []
    assert provider.policy_set_parameters() == []
    assert calls == [("list", "client", "Sandbox"), ("set", "client", "asb")]


def test_client_cache_reuses_by_subscription(monkeypatch) -> None:
    created = []

    class _FakePolicyClient:
        def __init__(self, credential, subscription_id) -> None:
            created.append(subscription_id)

    monkeypatch.setattr(clients, "PolicyClient", _FakePolicyClient)
    monkeypatch.setattr(clients, "DefaultAzureCredential", lambda: object())
    monkeypatch.delenv("POLICY_EXPORTER_DISABLE_CLIENT_CACHE", raising=False)
    clients.clear_client_cache()

    ctx_a = clients.AzureContext(subscription_id="a", credential=object())
    ctx_b = clients.AzureContext(subscription_id="b", credential=object())
    c1 = clients.get_policy_client(ctx_a)
    c2 = clients.get_policy_client(ctx_a)
    c3 = clients.get_policy_client(ctx_b)

    assert c1 is c2
    assert c1 is not c3
    assert created == ["a", "b"]
    clients.clear_client_cache()


def test_client_cache_can_be_disabled(monkeypatch) -> None:
    monkeypatch.setattr(clients, "PolicyClient", lambda credential, subscription_id: object())
    monkeypatch.setattr(clients, "DefaultAzureCredential", lambda: object())
    monkeypatch.setenv("POLICY_EXPORTER_DISABLE_CLIENT_CACHE", "1")
    clients.clear_client_cache()

    ctx = clients.AzureContext(subscription_id="a", credential=object())
    assert clients.get_policy_client(ctx) is not clients.get_policy_client(ctx)


def test_subscription_falls_back_to_environment(monkeypatch) -> None:
    monkeypatch.setattr(clients, "DefaultAzureCredential", lambda: "cred")
    monkeypatch.setattr(clients, "PolicyClient", object)
    monkeypatch.setenv("AZURE_SUBSCRIPTION_ID", "from-env")
    ctx = clients.resolve_context(None)
    assert ctx.subscription_id == "from-env"
    assert ctx.credential == "cred"

    monkeypatch.delenv("AZURE_SUBSCRIPTION_ID")
    with pytest.raises(AuthResolutionError):
        clients.resolve_context("")


def test_missing_sdk_is_reported(monkeypatch) -> None:
    monkeypatch.setattr(clients, "PolicyClient", None)
    with pytest.raises(AuthResolutionError):
        clients.resolve_context("sub")
