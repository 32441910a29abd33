from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from execution.executor import HttpCommandExecutor, HttpReferenceData
from shared.errors import ReferenceDataUnavailableError


def _patch_clients(monkeypatch, handler) -> None:
    real_async = httpx.AsyncClient

    def async_factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_async(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", async_factory)


def test_execute_posts_action_and_parses_camel_case_result(monkeypatch):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "success": False,
                "needsInput": True,
                "message": "Customer not found.",
                "pendingAction": "CONFIRM_CREATE_CUSTOMER",
                "context": {"customerName": "Bob"},
            },
        )

    _patch_clients(monkeypatch, handler)
    executor = HttpCommandExecutor("http://executor.local/", auth_token="secret")
    result = asyncio.run(executor.execute("CREATE_JOB", {"customerName": "Bob"}))

    assert str(seen[0].url) == "http://executor.local/execute"
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert json.loads(seen[0].content) == {"action": "CREATE_JOB", "parameters": {"customerName": "Bob"}}
    assert result.needs_input is True
    assert result.pending_action == "CONFIRM_CREATE_CUSTOMER"


def test_non_200_becomes_failure(monkeypatch):
    _patch_clients(monkeypatch, lambda request: httpx.Response(500, text="boom"))
    result = asyncio.run(HttpCommandExecutor("http://executor.local").execute("ADD_STOCK", {}))
    assert not result.success
    assert result.message == "Executor returned status 500"
    assert result.data == {"status_code": 500, "body": "boom"}


def test_network_error_becomes_failure(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _patch_clients(monkeypatch, handler)
    result = asyncio.run(HttpCommandExecutor("http://executor.local").execute("ADD_STOCK", {}))
    assert not result.success
    assert result.message.startswith("Network error connecting to executor")


def test_malformed_body_becomes_failure(monkeypatch):
    _patch_clients(monkeypatch, lambda request: httpx.Response(200, text="not json"))
    result = asyncio.run(HttpCommandExecutor("http://executor.local").execute("ADD_STOCK", {}))
    assert not result.success
    assert result.message.startswith("Malformed executor response")


def _loaded_suppliers(monkeypatch, response: httpx.Response) -> list[str]:
    _patch_clients(monkeypatch, lambda request: response)
    reference = HttpReferenceData("http://executor.local")
    asyncio.run(reference.refresh())
    return reference.supplier_names()


def test_reference_data_accepts_data_envelope(monkeypatch):
    response = httpx.Response(200, json={"data": [{"name": "Acme Corp"}, {"id": 2}]})
    assert _loaded_suppliers(monkeypatch, response) == ["Acme Corp"]


def test_reference_data_accepts_bare_list(monkeypatch):
    response = httpx.Response(200, json=[{"name": "City Electrical"}])
    assert _loaded_suppliers(monkeypatch, response) == ["City Electrical"]


def test_reference_data_is_fetched_with_the_async_client(monkeypatch):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"name": "Acme Corp"}])

    real_async = httpx.AsyncClient

    def async_factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_async(*args, **kwargs)

    def blocking_client(*args, **kwargs):
        raise AssertionError("supplier lookups must not use the blocking client")

    monkeypatch.setattr(httpx, "AsyncClient", async_factory)
    monkeypatch.setattr(httpx, "Client", blocking_client)

    reference = HttpReferenceData("http://executor.local", auth_token="secret")
    asyncio.run(reference.refresh())
    assert reference.supplier_names() == ["Acme Corp"]
    assert str(seen[0].url) == "http://executor.local/suppliers"
    assert seen[0].headers["Authorization"] == "Bearer secret"

    reference.supplier_names()
    assert len(seen) == 1


def test_reference_data_http_errors_become_unavailable(monkeypatch):
    _patch_clients(monkeypatch, lambda request: httpx.Response(503))
    reference = HttpReferenceData("http://executor.local")
    with pytest.raises(ReferenceDataUnavailableError, match="Could not load suppliers"):
        asyncio.run(reference.refresh())


def test_reference_data_rejects_malformed_payloads(monkeypatch):
    _patch_clients(monkeypatch, lambda request: httpx.Response(200, json={"data": "nope"}))
    reference = HttpReferenceData("http://executor.local")
    with pytest.raises(ReferenceDataUnavailableError):
        asyncio.run(reference.refresh())


def test_supplier_names_before_refresh_is_an_error():
    with pytest.raises(ReferenceDataUnavailableError):
        HttpReferenceData("http://executor.local").supplier_names()
