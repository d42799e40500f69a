"""HTTP adapter for the hosted backend (PostgREST dialect)."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from ...core.domain.models import AuthSession
from ...core.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    PermissionDenied,
    QueryError,
    TransientBackendError,
    ValidationError,
    WriteError,
)
from ...core.ports.backend import BackendClient, Filter, Op, Query
from ..config import Settings
from .retry import retry_transient

logger = logging.getLogger(__name__)

IDEMPOTENT_RPCS = frozenset({
    "count_unread_messages",
    "find_complementary_matches",
    "get_or_create_thread",
    "mark_thread_read",
})


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _quoted(value: Any) -> str:
    s = _literal(value)
    if any(ch in s for ch in ',()"'):
        return '"' + s.replace('"', '\\"') + '"'
    return s


def _operand(f: Filter) -> str:
    if f.op is Op.in_:
        return "in.(" + ",".join(_quoted(v) for v in f.value) + ")"
    if f.op is Op.ilike:
        return "ilike." + str(f.value).replace("%", "*")
    return f"{f.op.value}.{_literal(f.value)}"


def encode_filters(filters: list[Filter], any_of: list[Filter] | None = None) -> list[tuple[str, str]]:
    params = [(f.column, _operand(f)) for f in filters]
    if any_of:
        params.append(("or", "(" + ",".join(f"{f.column}.{_operand(f)}" for f in any_of) + ")"))
    return params


def encode_query(query: Query) -> list[tuple[str, str]]:
    params: list[tuple[str, str]] = [("select", query.columns)]
    params.extend(encode_filters(query.filters, query.any_of))
    if query.order:
        params.append(("order", ",".join(f"{col}.{'desc' if desc else 'asc'}" for col, desc in query.order)))
    if query.limit is not None:
        params.append(("limit", str(query.limit)))
    return params


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300] or f"backend_error_{response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error_description") or body.get("error") or body)
    return str(body)


class RestBackendClient(BackendClient):
    def __init__(self, settings: Settings, session: AuthSession, http: httpx.AsyncClient | None = None) -> None:
        if not settings.BACKEND_URL and http is None:
            raise ValidationError("BACKEND_URL is not configured")
        self.settings = settings
        self.session = session
        self.http = http or httpx.AsyncClient(
            base_url=f"{settings.BACKEND_URL}/rest/v1",
            timeout=httpx.Timeout(settings.BACKEND_TIMEOUT_SECONDS, connect=5.0),
        )

    @property
    def user_id(self) -> str:
        return self.session.user_id

    async def aclose(self) -> None:
        await self.http.aclose()

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.settings.BACKEND_ANON_KEY:
            headers["apikey"] = self.settings.BACKEND_ANON_KEY
        token = self.session.access_token or self.settings.BACKEND_ANON_KEY
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _call(
        self,
        method: str,
        path: str,
        *,
        write: bool,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        try:
            response = await self.http.request(method, path, params=params, json=json, headers=self._headers(prefer))
        except httpx.TimeoutException as exc:
            raise TransientBackendError(f"backend_timeout: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise TransientBackendError(f"backend_connection_failed: {exc}") from exc

        status = response.status_code
        if status >= 400:
            message = _error_message(response)
            logger.warning("BACKEND_ERROR method=%s path=%s status=%s msg=%s", method, path, status, message)
            if status == 401:
                raise AuthError(message)
            if status == 403:
                raise PermissionDenied(message) if write else AuthError(message)
            if status == 404:
                raise NotFoundError(message)
            if status == 409:
                raise ConflictError(message)
            if status >= 500:
                raise TransientBackendError(message)
            raise WriteError(message) if write else QueryError(message)
        if status == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise (WriteError if write else QueryError)("backend returned invalid JSON") from exc

    async def _read(self, name: str, method: str, path: str, **kwargs: Any) -> Any:
        try:
            return await retry_transient(
                lambda: self._call(method, path, write=False, **kwargs),
                name=name,
                max_attempts=self.settings.READ_RETRY_ATTEMPTS,
                backoff_seconds=self.settings.READ_RETRY_BACKOFF_SECONDS,
            )
        except TransientBackendError as exc:
            raise QueryError(str(exc)) from exc

    async def _write(self, method: str, path: str, **kwargs: Any) -> Any:
        # writes are never retried: a lost response may still have committed
        try:
            return await self._call(method, path, write=True, **kwargs)
        except TransientBackendError as exc:
            raise WriteError(str(exc)) from exc

    async def select(self, query: Query) -> list[dict[str, Any]]:
        data = await self._read(f"select:{query.table}", "GET", f"/{query.table}", params=encode_query(query))
        return list(data or [])

    async def insert(self, table: str, values: dict[str, Any]) -> list[dict[str, Any]]:
        data = await self._write("POST", f"/{table}", json=_jsonable(values), prefer="return=representation")
        return list(data or [])

    async def update(self, table: str, values: dict[str, Any], filters: list[Filter]) -> list[dict[str, Any]]:
        if not filters:
            raise WriteError("refusing to update without filters")
        data = await self._write(
            "PATCH", f"/{table}", params=encode_filters(filters), json=_jsonable(values), prefer="return=representation"
        )
        return list(data or [])

    async def delete(self, table: str, filters: list[Filter]) -> list[dict[str, Any]]:
        if not filters:
            raise WriteError("refusing to delete without filters")
        data = await self._write("DELETE", f"/{table}", params=encode_filters(filters), prefer="return=representation")
        return list(data or [])

    async def rpc(self, name: str, params: dict[str, Any]) -> Any:
        path = f"/rpc/{name}"
        if name in IDEMPOTENT_RPCS:
            return await self._read(f"rpc:{name}", "POST", path, json=_jsonable(params))
        return await self._write("POST", path, json=_jsonable(params))


def _jsonable(values: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in values.items()}


__all__ = ["RestBackendClient", "encode_query", "encode_filters", "IDEMPOTENT_RPCS"]
