"""RecordStore over Supabase PostgREST (direct httpx, no SDK)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from cyncro.errors import StorageError
from cyncro.storage.records import Filter, Order, SelectResult

logger = logging.getLogger(__name__)


def _encode(f: Filter) -> str:
    """PostgREST operator syntax for one filter (value side)."""
    if f.op == "not_null":
        return "not.is.null"
    if f.op == "ilike":
        return f"ilike.*{f.value}*"
    if isinstance(f.value, bool):
        return f"{f.op}.{str(f.value).lower()}"
    return f"{f.op}.{f.value}"


class PostgrestRecordStore:
    """Reads and writes domain tables with the service-role key.

    Every request carries an explicit ``user_id=eq.<id>`` filter.
    """

    def __init__(
        self,
        supabase_url: str,
        service_role_key: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = f"{supabase_url.rstrip('/')}/rest/v1"
        self._key = service_role_key
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        self._owns_http = http_client is None

    def _headers(self, **extra: str) -> dict[str, str]:
        return {
            "apikey": self._key,
            "authorization": f"Bearer {self._key}",
            "content-type": "application/json",
            **extra,
        }

    async def _request(
        self,
        method: str,
        table: str,
        params: list[tuple[str, str]],
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._http.request(
                method,
                f"{self._base_url}/{table}",
                params=params,
                json=json,
                headers=headers or self._headers(),
            )
        except httpx.HTTPError as e:
            raise StorageError(f"{method} {table} failed: {e}") from e
        if response.status_code >= 400:
            try:
                message = response.json().get("message") or response.text
            except ValueError:
                message = response.text
            logger.warning("PostgREST %s %s -> %d: %s", method, table, response.status_code, message[:200])
            raise StorageError(f"{method} {table} failed: {message[:200]}")
        return response

    async def select(
        self,
        table: str,
        user_id: str,
        *,
        columns: str = "*",
        filters: tuple[Filter, ...] | list[Filter] = (),
        any_of: tuple[Filter, ...] | list[Filter] = (),
        order: Order | None = None,
        limit: int | None = None,
    ) -> SelectResult:
        params: list[tuple[str, str]] = [("select", columns), ("user_id", f"eq.{user_id}")]
        params.extend((f.column, _encode(f)) for f in filters)
        if any_of:
            params.append(("or", "(" + ",".join(f"{f.column}.{_encode(f)}" for f in any_of) + ")"))
        if order is not None:
            params.append(("order", f"{order.column}.{'desc' if order.descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))

        response = await self._request("GET", table, params, headers=self._headers(prefer="count=exact"))
        rows = response.json()
        count = len(rows)
        content_range = response.headers.get("content-range", "")
        total = content_range.rpartition("/")[2]
        if total.isdigit():
            count = int(total)
        return SelectResult(rows=rows, count=count)

    async def get(self, table: str, user_id: str, record_id: str, *, columns: str = "*") -> dict[str, Any] | None:
        result = await self.select(table, user_id, columns=columns, filters=[Filter("id", "eq", record_id)], limit=1)
        return result.rows[0] if result.rows else None

    async def insert(self, table: str, user_id: str, values: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "POST", table, [], json={**values, "user_id": user_id},
            headers=self._headers(prefer="return=representation"),
        )
        rows = response.json()
        return rows[0] if isinstance(rows, list) else rows

    async def update(
        self, table: str, user_id: str, record_id: str, values: dict[str, Any]
    ) -> dict[str, Any] | None:
        response = await self._request(
            "PATCH", table, [("id", f"eq.{record_id}"), ("user_id", f"eq.{user_id}")],
            json=values, headers=self._headers(prefer="return=representation"),
        )
        rows = response.json()
        return rows[0] if rows else None

    async def delete(self, table: str, user_id: str, record_id: str) -> bool:
        response = await self._request(
            "DELETE", table, [("id", f"eq.{record_id}"), ("user_id", f"eq.{user_id}")],
            headers=self._headers(prefer="return=representation"),
        )
        return bool(response.json())

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()
