"""
Persistent Store Interface
Abstract base class for the record store backing all workflows
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

# Table names
LEADS = "leads"
LEAD_ACTIVITIES = "lead_activities"
CALL_LOGS = "call_logs"
ORDERS = "orders"
PAYMENTS = "payments"
WHATSAPP_LOGS = "whatsapp_logs"
PRODUCTS = "products"

ALL_TABLES = [LEADS, LEAD_ACTIVITIES, CALL_LOGS, ORDERS, PAYMENTS, WHATSAPP_LOGS, PRODUCTS]


class Store(ABC):
    """
    Record store used by services and the webhook reconciler.

    Records are plain dicts keyed by "id". Filters map a field to a value;
    a list value means "one of", and the suffixes "__gte" / "__lte" give
    range comparisons (e.g. {"created_at__gte": "2024-01-01"}).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name"""
        pass

    @abstractmethod
    async def create(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a record.

        An "id" is generated when the data has none, and "created_at" is
        filled in when missing.

        Returns:
            The stored record
        """
        pass

    @abstractmethod
    async def get(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a record by id, or None"""
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        record_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Update a record, optionally as a compare-and-set.

        Args:
            table: Table name
            record_id: Record id
            changes: Fields to set
            expected: Filters the current record must match for the
                update to apply (same syntax as find filters)

        Returns:
            The updated record, or None when the record does not exist
            or did not match `expected`
        """
        pass

    @abstractmethod
    async def find_first(
        self,
        table: str,
        filters: Dict[str, Any],
        order_by: Optional[str] = None,
        descending: bool = False
    ) -> Optional[Dict[str, Any]]:
        """First record matching filters in the given order, or None"""
        pass

    @abstractmethod
    async def find_all(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """All records matching filters"""
        pass

    async def close(self) -> None:
        """Release resources"""
        return None
