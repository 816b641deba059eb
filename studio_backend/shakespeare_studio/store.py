"""
Row storage for stories, workflows, videos and detected faces.

SupabaseStore talks to the hosted PostgREST and storage APIs over httpx.
MemoryStore keeps the same tables in process for local development and tests.
Filters are (column, op, value) tuples; supported ops are eq, neq, in, gte,
lte, ilike and is (value None).
"""
import copy
import logging
import re
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from . import settings
from .errors import StoreError, now_iso

logger = logging.getLogger(__name__)

Filter = Tuple[str, str, Any]


def _like_pattern(pattern: str) -> "re.Pattern":
    parts = [re.escape(chunk) for chunk in pattern.split("%")]
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _matches(row: Dict[str, Any], filters: Iterable[Filter]) -> bool:
    for column, op, value in filters:
        current = row.get(column)
        if op == "eq":
            if current != value:
                return False
        elif op == "neq":
            if current == value:
                return False
        elif op == "in":
            if current not in value:
                return False
        elif op == "gte":
            if current is None or current < value:
                return False
        elif op == "lte":
            if current is None or current > value:
                return False
        elif op == "ilike":
            if current is None or not _like_pattern(value).match(str(current)):
                return False
        elif op == "is":
            if current is not value:
                return False
        else:
            raise ValueError(f"unsupported filter op: {op}")
    return True


class MemoryStore:
    name = "memory"

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.objects: Dict[str, set] = {}

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self.tables.setdefault(table, {})

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        record = copy.deepcopy(row)
        record.setdefault("id", str(uuid.uuid4()))
        stamp = now_iso()
        record.setdefault("created_at", stamp)
        record.setdefault("updated_at", stamp)
        self._table(table)[record["id"]] = record
        return copy.deepcopy(record)

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Optional[str] = None,
        desc: bool = True,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        rows = [r for r in self._table(table).values() if _matches(r, filters)]
        if order:
            # nulls sort last ascending and first descending, as in PostgREST
            present = sorted((r for r in rows if r.get(order) is not None), key=lambda r: r[order], reverse=desc)
            missing = [r for r in rows if r.get(order) is None]
            rows = missing + present if desc else present + missing
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return [copy.deepcopy(r) for r in rows]

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        return sum(1 for r in self._table(table).values() if _matches(r, filters))

    async def update(self, table: str, filters: Sequence[Filter], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        updated = []
        for row in self._table(table).values():
            if _matches(row, filters):
                row.update(copy.deepcopy(values))
                row["updated_at"] = now_iso()
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, table: str, filters: Sequence[Filter]) -> int:
        rows = self._table(table)
        doomed = [key for key, row in rows.items() if _matches(row, filters)]
        for key in doomed:
            del rows[key]
        return len(doomed)

    def put_object(self, bucket: str, name: str) -> None:
        self.objects.setdefault(bucket, set()).add(name)

    async def remove_object(self, bucket: str, name: str) -> None:
        names = self.objects.get(bucket, set())
        if name not in names:
            raise StoreError(f"Object not found: {bucket}/{name}")
        names.discard(name)


class SupabaseStore:
    name = "supabase"

    def __init__(self, url: str, service_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.transport = transport

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=10, transport=self.transport)

    @staticmethod
    def _params(filters: Iterable[Filter]) -> List[Tuple[str, str]]:
        params = []
        for column, op, value in filters:
            if op == "in":
                params.append((column, f"in.({','.join(_literal(v) for v in value)})"))
            elif op == "ilike":
                params.append((column, f"ilike.{value.replace('%', '*')}"))
            elif op == "is":
                params.append((column, "is.null"))
            else:
                params.append((column, f"{op}.{_literal(value)}"))
        return params

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, f"{self.url}{path}", **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPError as e:
            logger.error(f"Store request {method} {path} failed: {e}")
            raise StoreError("Database request failed") from e

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request(
            "POST", f"/rest/v1/{table}",
            headers=self._headers("return=representation"),
            json=row,
        )
        rows = response.json()
        return rows[0] if isinstance(rows, list) else rows

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Optional[str] = None,
        desc: bool = True,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        params = [("select", "*")] + self._params(filters)
        if order:
            params.append(("order", f"{order}.{'desc' if desc else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset:
            params.append(("offset", str(offset)))
        response = await self._request("GET", f"/rest/v1/{table}", headers=self._headers(), params=params)
        return response.json()

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        params = [("select", "id"), ("limit", "1")] + self._params(filters)
        response = await self._request(
            "GET", f"/rest/v1/{table}",
            headers=self._headers("count=exact"),
            params=params,
        )
        # Content-Range looks like "0-0/42" or "*/0"
        content_range = response.headers.get("content-range", "*/0")
        return int(content_range.rsplit("/", 1)[-1])

    async def update(self, table: str, filters: Sequence[Filter], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        body = dict(values)
        body["updated_at"] = now_iso()
        response = await self._request(
            "PATCH", f"/rest/v1/{table}",
            headers=self._headers("return=representation"),
            params=self._params(filters),
            json=body,
        )
        return response.json()

    async def delete(self, table: str, filters: Sequence[Filter]) -> int:
        response = await self._request(
            "DELETE", f"/rest/v1/{table}",
            headers=self._headers("return=representation"),
            params=self._params(filters),
        )
        return len(response.json())

    async def remove_object(self, bucket: str, name: str) -> None:
        response = await self._request(
            "DELETE", f"/storage/v1/object/{bucket}",
            headers=self._headers(),
            json={"prefixes": [name]},
        )
        if not response.json():
            raise StoreError(f"Object not found: {bucket}/{name}")


def build_store():
    if settings.has_store_config():
        logger.info("Supabase store enabled")
        return SupabaseStore(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)
    logger.warning("Supabase not configured - falling back to in-memory storage")
    return MemoryStore()
