"""
In-Memory Store
Dict-backed Store for development and tests
"""
import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from salescaller.domain.interfaces.store import Store, ALL_TABLES

logger = logging.getLogger(__name__)


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _split_filter(key: str) -> Tuple[str, str]:
    """'created_at__gte' -> ('created_at', 'gte'); 'status' -> ('status', 'eq')"""
    for op in ("gte", "lte"):
        suffix = f"__{op}"
        if key.endswith(suffix):
            return key[:-len(suffix)], op
    return key, "eq"


def matches(record: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """True when the record satisfies every filter."""
    for key, expected in (filters or {}).items():
        field, op = _split_filter(key)
        actual = _normalize(record.get(field))

        if op == "eq":
            if isinstance(expected, (list, tuple, set)):
                if actual not in [_normalize(v) for v in expected]:
                    return False
            elif actual != _normalize(expected):
                return False
        else:
            if actual is None:
                return False
            bound = _normalize(expected)
            if op == "gte" and actual < bound:
                return False
            if op == "lte" and actual > bound:
                return False
    return True


class InMemoryStore(Store):
    """
    Keeps every table in a dict.

    There is no await between matching `expected` and writing the
    change, so compare-and-set updates are atomic within the event loop.
    """

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {t: {} for t in ALL_TABLES}
        self._sequence = 0

    @property
    def name(self) -> str:
        return "memory"

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(table, {})

    async def create(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        record = {k: _normalize(v) for k, v in copy.deepcopy(data).items()}
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", datetime.utcnow().isoformat())

        self._sequence += 1
        record["_seq"] = self._sequence

        rows = self._table(table)
        if record["id"] in rows:
            raise ValueError(f"Duplicate id {record['id']} in {table}")
        rows[record["id"]] = record
        return self._public(record)

    async def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._table(table).get(record_id)
        return self._public(record) if record else None

    async def update(
        self,
        table: str,
        record_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        record = self._table(table).get(record_id)
        if record is None:
            return None
        if expected and not matches(record, expected):
            return None

        record.update({k: _normalize(v) for k, v in copy.deepcopy(changes).items()})
        record["updated_at"] = datetime.utcnow().isoformat()
        return self._public(record)

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
        rows = [r for r in self._table(table).values() if matches(r, filters)]

        if order_by:
            # Insertion sequence breaks ties so "latest" is deterministic
            rows.sort(
                key=lambda r: (r.get(order_by) is not None, r.get(order_by) or "", r["_seq"]),
                reverse=descending
            )
        elif descending:
            rows.reverse()

        if limit is not None:
            rows = rows[:limit]
        return [self._public(r) for r in rows]

    @staticmethod
    def _public(record: Dict[str, Any]) -> Dict[str, Any]:
        return {k: copy.deepcopy(v) for k, v in record.items() if k != "_seq"}
