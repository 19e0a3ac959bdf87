"""Access to the Odoo record store.

Two implementations share the :class:`RecordStore` contract: the JSON-RPC
client talking to a real Odoo instance, and an in-memory store used by the
tests and by local runs without ERP credentials.
"""
from __future__ import annotations

import asyncio
import copy
import itertools
from collections.abc import Callable, Sequence
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

from kpis.core.invoices import many2one_id
from kpis.domain import ErrorKind

Domain = Sequence[Any]


class OdooError(RuntimeError):
    """Raised when a call to the record store fails."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.ODOO, *, code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.code = code


def kind_for_status(status_code: int) -> ErrorKind:
    if status_code == 401:
        return ErrorKind.AUTHENTICATION
    if status_code == 403:
        return ErrorKind.PERMISSION
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code in (502, 503, 504):
        return ErrorKind.UNAVAILABLE
    if status_code >= 500:
        return ErrorKind.SERVER
    return ErrorKind.ODOO


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map any exception raised around a remote call to an :class:`ErrorKind`."""

    if isinstance(exc, OdooError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.NETWORK
    if isinstance(exc, httpx.HTTPStatusError):
        return kind_for_status(exc.response.status_code)
    return ErrorKind.UNKNOWN


class RecordStore(Protocol):
    """Remote record operations consumed by the invoice services."""

    async def search_read(
        self,
        model: str,
        domain: Domain,
        *,
        fields: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def search_count(self, model: str, domain: Domain) -> int: ...

    async def write(self, model: str, ids: Sequence[int], values: dict[str, Any]) -> bool: ...

    async def execute_kw(
        self,
        model: str,
        method: str,
        args: Sequence[Any],
        kwargs: dict[str, Any] | None = None,
    ) -> Any: ...


class OdooClient:
    """Async client for Odoo's ``/jsonrpc`` endpoint."""

    def __init__(
        self,
        url: str,
        db: str,
        username: str,
        password: str,
        *,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("url must include scheme and host")

        self._endpoint = f"{url.rstrip('/')}/jsonrpc"
        self._db = db
        self._username = username
        self._password = password
        self._uid: int | None = None
        self._ids = itertools.count(1)
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------
    async def _call(self, service: str, method: str, *args: Any) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": "call",
            "params": {"service": service, "method": method, "args": list(args)},
            "id": next(self._ids),
        }
        try:
            response = await self._client.post(self._endpoint, json=payload)
        except httpx.TimeoutException as exc:
            raise OdooError(f"Odoo API timeout: {exc}", ErrorKind.TIMEOUT) from exc
        except httpx.TransportError as exc:
            raise OdooError(f"Network error: {exc}", ErrorKind.NETWORK) from exc

        if response.status_code >= 400:
            raise OdooError(
                f"Odoo API request failed with status {response.status_code}",
                kind_for_status(response.status_code),
                code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise OdooError("Odoo API returned a non-JSON response", ErrorKind.SERVER) from exc

        error = body.get("error")
        if error:
            data = error.get("data") or {}
            name = str(data.get("name") or "")
            message = str(data.get("message") or error.get("message") or "Odoo API error")
            if "AccessDenied" in name:
                kind = ErrorKind.AUTHENTICATION
            elif "AccessError" in name:
                kind = ErrorKind.PERMISSION
            else:
                kind = ErrorKind.ODOO
            raise OdooError(message, kind, code=error.get("code"))
        return body.get("result")

    async def authenticate(self) -> int:
        if self._uid is None:
            uid = await self._call("common", "authenticate", self._db, self._username, self._password, {})
            if not uid:
                raise OdooError("Authentication error: Odoo rejected the credentials", ErrorKind.AUTHENTICATION)
            self._uid = int(uid)
        return self._uid

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    async def execute_kw(
        self,
        model: str,
        method: str,
        args: Sequence[Any],
        kwargs: dict[str, Any] | None = None,
    ) -> Any:
        uid = await self.authenticate()
        return await self._call(
            "object",
            "execute_kw",
            self._db,
            uid,
            self._password,
            model,
            method,
            list(args),
            dict(kwargs or {}),
        )

    async def search_read(
        self,
        model: str,
        domain: Domain,
        *,
        fields: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        kwargs: dict[str, Any] = {}
        if fields is not None:
            kwargs["fields"] = list(fields)
        if limit is not None:
            kwargs["limit"] = limit
        if offset is not None:
            kwargs["offset"] = offset
        result = await self.execute_kw(model, "search_read", [list(domain)], kwargs)
        return list(result or [])

    async def search_count(self, model: str, domain: Domain) -> int:
        result = await self.execute_kw(model, "search_count", [list(domain)])
        return int(result or 0)

    async def write(self, model: str, ids: Sequence[int], values: dict[str, Any]) -> bool:
        result = await self.execute_kw(model, "write", [list(ids), values])
        return bool(result)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _compare(actual: Any, operator: str, expected: Any) -> bool:
    if isinstance(actual, (list, tuple)) and (
        operator in ("in", "not in") or not isinstance(expected, (list, tuple))
    ):
        actual = many2one_id(actual)
    if operator == "=":
        return actual == expected
    if operator == "!=":
        return actual != expected
    if operator == "in":
        return actual in expected
    if operator == "not in":
        return actual not in expected
    raise ValueError(f"unsupported domain operator: {operator}")


MethodHandler = Callable[..., Any]


class InMemoryRecordStore:
    """Record store backed by plain dictionaries.

    Only conjunctive domains are understood. Every write and ``execute_kw``
    call is appended to :attr:`calls` so tests can assert on side effects.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[int, dict[str, Any]]] = {}
        self._methods: dict[tuple[str, str], MethodHandler] = {}
        self._id_counter = itertools.count(1)
        self.calls: list[tuple[str, str, tuple[Any, ...]]] = []

    # ------------------------------------------------------------------
    # fixtures
    # ------------------------------------------------------------------
    def add_record(self, model: str, record: dict[str, Any]) -> int:
        data = dict(record)
        record_id = int(data.get("id") or next(self._id_counter))
        data["id"] = record_id
        self._records.setdefault(model, {})[record_id] = data
        return record_id

    def get_record(self, model: str, record_id: int) -> dict[str, Any] | None:
        record = self._records.get(model, {}).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def register_method(self, model: str, method: str, handler: MethodHandler) -> None:
        """Install ``handler(*args, **kwargs)`` for ``execute_kw(model, method)``."""

        self._methods[(model, method)] = handler

    def writes(self, model: str | None = None) -> list[tuple[Any, ...]]:
        return [args for kind, name, args in self.calls if kind == "write" and (model is None or name == model)]

    def reset(self) -> None:
        self._records.clear()
        self._methods.clear()
        self.calls.clear()

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------
    def _filter(self, model: str, domain: Domain) -> list[dict[str, Any]]:
        rows = []
        for record in self._records.get(model, {}).values():
            matched = True
            for term in domain:
                if isinstance(term, str):
                    continue
                field_name, operator, expected = term
                if not _compare(record.get(field_name, False), operator, expected):
                    matched = False
                    break
            if matched:
                rows.append(record)
        rows.sort(key=lambda item: item["id"])
        return rows

    async def search_read(
        self,
        model: str,
        domain: Domain,
        *,
        fields: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = self._filter(model, domain)
        if offset:
            rows = rows[offset:]
        if limit:
            rows = rows[:limit]
        if fields:
            keys = set(fields) | {"id"}
            return [{key: copy.deepcopy(row.get(key, False)) for key in keys} for row in rows]
        return [copy.deepcopy(row) for row in rows]

    async def search_count(self, model: str, domain: Domain) -> int:
        return len(self._filter(model, domain))

    async def write(self, model: str, ids: Sequence[int], values: dict[str, Any]) -> bool:
        self.calls.append(("write", model, (list(ids), dict(values))))
        table = self._records.get(model, {})
        for record_id in ids:
            if record_id not in table:
                raise OdooError(f"Record {model}({record_id}) does not exist", ErrorKind.NOT_FOUND)
            table[record_id].update(values)
        return True

    async def execute_kw(
        self,
        model: str,
        method: str,
        args: Sequence[Any],
        kwargs: dict[str, Any] | None = None,
    ) -> Any:
        self.calls.append(("execute_kw", f"{model}.{method}", tuple(args)))
        if method == "search_count":
            return await self.search_count(model, args[0])
        handler = self._methods.get((model, method))
        if handler is None:
            raise OdooError(f"The method '{method}' does not exist on the model '{model}'", ErrorKind.ODOO)
        result = handler(*args, **(kwargs or {}))
        if asyncio.iscoroutine(result):
            result = await result
        return result


_store: RecordStore = InMemoryRecordStore()


def configure_record_store(store: RecordStore) -> None:
    """Install the record store used by the invoice services."""

    global _store
    _store = store


def get_record_store() -> RecordStore:
    """Return the currently configured record store."""

    return _store
