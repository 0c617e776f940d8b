"""
Supabase Store
Store implementation over Supabase (PostgREST) tables
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

from salescaller.domain.interfaces.store import Store

logger = logging.getLogger(__name__)


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SupabaseStore(Store):
    """
    Store backed by Supabase.

    Compare-and-set updates are a single UPDATE ... WHERE id = ? AND <expected>
    statement, so two concurrent webhooks cannot both apply a transition.
    """

    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_credentials(cls, url: str, key: str) -> "SupabaseStore":
        return cls(create_client(url, key))

    @property
    def name(self) -> str:
        return "supabase"

    def _apply_filters(self, query, filters: Optional[Dict[str, Any]]):
        for key, value in (filters or {}).items():
            if key.endswith("__gte"):
                query = query.gte(key[:-5], _normalize(value))
            elif key.endswith("__lte"):
                query = query.lte(key[:-5], _normalize(value))
            elif isinstance(value, (list, tuple, set)):
                query = query.in_(key, [_normalize(v) for v in value])
            elif value is None:
                query = query.is_(key, "null")
            else:
                query = query.eq(key, _normalize(value))
        return query

    async def create(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        record = {k: _normalize(v) for k, v in data.items()}
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", datetime.utcnow().isoformat())

        response = self.client.table(table).insert(record).execute()
        return response.data[0] if response.data else record

    async def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        response = self.client.table(table).select("*").eq("id", record_id).limit(1).execute()
        return response.data[0] if response.data else None

    async def update(
        self,
        table: str,
        record_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        payload = {k: _normalize(v) for k, v in changes.items()}
        payload["updated_at"] = datetime.utcnow().isoformat()

        query = self.client.table(table).update(payload).eq("id", record_id)
        query = self._apply_filters(query, expected)
        response = query.execute()

        if not response.data:
            logger.debug(f"No {table} row updated for id={record_id} (expected={expected})")
            return None
        return response.data[0]

    async def find_first(
        self,
        table: str,
        filters: Dict[str, Any],
        order_by: Optional[str] = None,
        descending: bool = False
    ) -> Optional[Dict[str, Any]]:
        rows = await self.find_all(table, filters, order_by, descending, limit=1)
        return rows[0] if rows else None

    async def find_all(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        query = self._apply_filters(self.client.table(table).select("*"), filters)
        if order_by:
            query = query.order(order_by, desc=descending)
        if limit is not None:
            query = query.limit(limit)
        response = query.execute()
        return response.data or []
