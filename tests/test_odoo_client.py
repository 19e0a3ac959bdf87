from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from kpis.domain import ErrorKind
from kpis.infrastructure import InMemoryRecordStore, OdooClient, OdooError, classify_exception


def _client(handler) -> OdooClient:
    transport = httpx.MockTransport(handler)
    http_client = httpx.AsyncClient(transport=transport)
    return OdooClient(
        "https://erp.example.com/",
        "kpis",
        "bot@example.com",
        "secret",
        http_client=http_client,
    )


def test_search_read_authenticates_once_and_sends_execute_kw():
    captured: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == "https://erp.example.com/jsonrpc"
        body = json.loads(request.content.decode("utf-8"))
        captured.append(body)
        params = body["params"]
        if params["service"] == "common":
            assert params["method"] == "authenticate"
            assert params["args"][:3] == ["kpis", "bot@example.com", "secret"]
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": 7})
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": body["id"], "result": [{"id": 1, "amount_untaxed": 0.0}]},
        )

    client = _client(handler)

    async def scenario():
        first = await client.search_read("account.move", [["id", "=", 1]], fields=["id", "amount_untaxed"], limit=1)
        second = await client.search_read("account.move", [["id", "=", 1]])
        return first, second

    first, second = asyncio.run(scenario())

    assert first == [{"id": 1, "amount_untaxed": 0.0}]
    assert second == first
    assert [body["params"]["service"] for body in captured] == ["common", "object", "object"]
    db, uid, password, model, method, args, kwargs = captured[1]["params"]["args"]
    assert (db, uid, password, model, method) == ("kpis", 7, "secret", "account.move", "search_read")
    assert args == [[["id", "=", 1]]]
    assert kwargs == {"fields": ["id", "amount_untaxed"], "limit": 1}


def test_write_and_execute_kw_pass_positional_args():
    calls: list[list] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        if body["params"]["service"] == "common":
            return httpx.Response(200, json={"result": 2})
        calls.append(body["params"]["args"][3:])
        return httpx.Response(200, json={"result": True})

    client = _client(handler)

    async def scenario():
        await client.write("account.move", [5], {"message_main_attachment_id": 9})
        await client.execute_kw("account.move", "action_reload_ai_data", [[5]])

    asyncio.run(scenario())

    assert calls[0] == ["account.move", "write", [[5], {"message_main_attachment_id": 9}], {}]
    assert calls[1] == ["account.move", "action_reload_ai_data", [[5]], {}]


def test_rejected_credentials_raise_authentication_error():
    client = _client(lambda request: httpx.Response(200, json={"result": False}))

    with pytest.raises(OdooError) as excinfo:
        asyncio.run(client.search_count("account.move", []))
    assert excinfo.value.kind is ErrorKind.AUTHENTICATION


def test_rpc_error_payload_maps_to_error_kind():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        if body["params"]["service"] == "common":
            return httpx.Response(200, json={"result": 2})
        return httpx.Response(
            200,
            json={
                "error": {
                    "code": 200,
                    "message": "Odoo Server Error",
                    "data": {"name": "odoo.exceptions.AccessError", "message": "You are not allowed"},
                }
            },
        )

    client = _client(handler)
    with pytest.raises(OdooError) as excinfo:
        asyncio.run(client.execute_kw("account.move", "action_reload_ai_data", [[1]]))
    assert excinfo.value.kind is ErrorKind.PERMISSION
    assert str(excinfo.value) == "You are not allowed"


@pytest.mark.parametrize(
    ("status", "kind"),
    [
        (401, ErrorKind.AUTHENTICATION),
        (403, ErrorKind.PERMISSION),
        (404, ErrorKind.NOT_FOUND),
        (500, ErrorKind.SERVER),
        (503, ErrorKind.UNAVAILABLE),
    ],
)
def test_http_status_maps_to_error_kind(status, kind):
    client = _client(lambda request: httpx.Response(status))
    with pytest.raises(OdooError) as excinfo:
        asyncio.run(client.authenticate())
    assert excinfo.value.kind is kind
    assert excinfo.value.code == status


def test_transport_failures_are_classified():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(OdooError) as excinfo:
        asyncio.run(client.authenticate())
    assert excinfo.value.kind is ErrorKind.NETWORK
    assert str(excinfo.value).startswith("Network error")


def test_classify_exception_handles_foreign_errors():
    assert classify_exception(asyncio.TimeoutError()) is ErrorKind.TIMEOUT
    assert classify_exception(RuntimeError("boom")) is ErrorKind.UNKNOWN
    assert classify_exception(OdooError("x", ErrorKind.SERVER)) is ErrorKind.SERVER


def test_url_must_include_scheme():
    with pytest.raises(ValueError):
        OdooClient("erp.example.com", "db", "user", "pw")


def test_in_memory_store_rejects_unknown_operators():
    store = InMemoryRecordStore()
    store.add_record("account.move", {"id": 1, "amount_untaxed": 10.0})

    with pytest.raises(ValueError):
        asyncio.run(store.search_read("account.move", [["amount_untaxed", ">=", 1]]))
