"""User-scoped access to domain records (purchases, subscriptions, ...).

Every operation takes the caller's user_id and only ever touches rows
owned by that user.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal, Protocol

Op = Literal["eq", "gte", "lte", "ilike", "not_null"]


@dataclass(frozen=True)
class Filter:
    column: str
    op: Op
    value: Any = None


@dataclass(frozen=True)
class Order:
    column: str
    descending: bool = False


@dataclass
class SelectResult:
    rows: list[dict[str, Any]]
    count: int


class RecordStore(Protocol):
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
    ) -> SelectResult: ...

    async def get(self, table: str, user_id: str, record_id: str, *, columns: str = "*") -> dict[str, Any] | None: ...

    async def insert(self, table: str, user_id: str, values: dict[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, table: str, user_id: str, record_id: str, values: dict[str, Any]
    ) -> dict[str, Any] | None: ...

    async def delete(self, table: str, user_id: str, record_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


def _matches(row: dict[str, Any], f: Filter) -> bool:
    value = row.get(f.column)
    if f.op == "not_null":
        return value is not None
    if f.op == "eq":
        return value == f.value
    if value is None:
        return False
    if f.op == "gte":
        return value >= f.value
    if f.op == "lte":
        return value <= f.value
    # ilike: case-insensitive substring
    return str(f.value).lower() in str(value).lower()


class InMemoryRecordStore:
    """Dict-backed RecordStore for development and tests.

    Embedded-resource column lists (``*, documents(*)``) are ignored; rows
    are returned as stored.
    """

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {}

    def rows(self, table: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._tables.get(table, {}).values()]

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
        rows = [
            r for r in self._tables.get(table, {}).values()
            if r.get("user_id") == user_id
            and all(_matches(r, f) for f in filters)
            and (not any_of or any(_matches(r, f) for f in any_of))
        ]
        if order is not None:
            present = [r for r in rows if r.get(order.column) is not None]
            missing = [r for r in rows if r.get(order.column) is None]
            present.sort(key=lambda r: r[order.column], reverse=order.descending)
            rows = present + missing
        count = len(rows)
        if limit is not None:
            rows = rows[:limit]
        return SelectResult(rows=[copy.deepcopy(r) for r in rows], count=count)

    async def get(self, table: str, user_id: str, record_id: str, *, columns: str = "*") -> dict[str, Any] | None:
        row = self._tables.get(table, {}).get(record_id)
        if row is None or row.get("user_id") != user_id:
            return None
        return copy.deepcopy(row)

    async def insert(self, table: str, user_id: str, values: dict[str, Any]) -> dict[str, Any]:
        now = datetime.now(UTC).isoformat()
        row = {"id": str(uuid.uuid4()), "created_at": now, **values, "user_id": user_id}
        self._tables.setdefault(table, {})[row["id"]] = row
        return copy.deepcopy(row)

    async def update(
        self, table: str, user_id: str, record_id: str, values: dict[str, Any]
    ) -> dict[str, Any] | None:
        row = self._tables.get(table, {}).get(record_id)
        if row is None or row.get("user_id") != user_id:
            return None
        row.update({k: v for k, v in values.items() if k not in ("id", "user_id")})
        return copy.deepcopy(row)

    async def delete(self, table: str, user_id: str, record_id: str) -> bool:
        rows = self._tables.get(table, {})
        row = rows.get(record_id)
        if row is None or row.get("user_id") != user_id:
            return False
        del rows[record_id]
        return True
