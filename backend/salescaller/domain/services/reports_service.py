"""
Reports Service
Read-only call, revenue, WhatsApp, conversion, agent and dashboard summaries
"""
import logging
from collections import Counter, defaultdict
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from salescaller.domain.exceptions import ValidationError
from salescaller.domain.interfaces.store import CALL_LOGS, LEAD_ACTIVITIES, LEADS, ORDERS, WHATSAPP_LOGS, Store
from salescaller.domain.models.call import CallStatus
from salescaller.domain.models.lead import LeadStatus
from salescaller.domain.models.order import OrderStatus, to_money
from salescaller.domain.models.whatsapp import MessageDirection, MessageStatus

logger = logging.getLogger(__name__)

# Orders whose money has been received
REVENUE_STATUSES = [OrderStatus.PAID.value, OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value]

# created_at prefix length per grouping ("2024-05-01T..." -> "2024-05-01" / "2024-05")
PERIOD_LENGTH = {"daily": 10, "monthly": 7}


def _percent(part: int, whole: int) -> int:
    return round(part * 100 / whole) if whole else 0


class ReportsService:
    """Aggregates over the store. Nothing here writes."""

    def __init__(self, store: Store):
        self.store = store

    @staticmethod
    def _window(start: Optional[str], end: Optional[str]) -> Dict[str, Any]:
        filters = {}
        if start:
            filters["created_at__gte"] = start
        if end:
            filters["created_at__lte"] = end
        return filters

    @staticmethod
    def _check_group_by(group_by: str) -> None:
        if group_by not in PERIOD_LENGTH:
            raise ValidationError(f"group_by must be one of {sorted(PERIOD_LENGTH)}")

    @staticmethod
    def _period(record: Dict[str, Any], group_by: str) -> str:
        return str(record.get("created_at") or "")[:PERIOD_LENGTH[group_by]]

    async def call_stats(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        group_by: str = "daily"
    ) -> Dict[str, Any]:
        self._check_group_by(group_by)
        calls = await self.store.find_all(CALL_LOGS, self._window(start, end), order_by="created_at")

        by_status = Counter(call["status"] for call in calls)
        completed = by_status.get(CallStatus.COMPLETED.value, 0)
        durations = [call["duration_sec"] for call in calls if call.get("duration_sec") is not None]

        periods: Dict[str, Dict[str, int]] = defaultdict(lambda: {"total": 0, "success": 0})
        for call in calls:
            bucket = periods[self._period(call, group_by)]
            bucket["total"] += 1
            if call["status"] == CallStatus.COMPLETED.value:
                bucket["success"] += 1

        return {
            "total": len(calls),
            "by_status": dict(by_status),
            "success_rate": _percent(completed, len(calls)),
            "avg_duration_sec": round(sum(durations) / len(durations), 1) if durations else 0,
            "periods": [{"period": key, **value} for key, value in periods.items()],
        }

    async def revenue_stats(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        group_by: str = "daily"
    ) -> Dict[str, Any]:
        self._check_group_by(group_by)
        filters = {**self._window(start, end), "status": REVENUE_STATUSES}
        orders = await self.store.find_all(ORDERS, filters, order_by="created_at")

        total = Decimal("0")
        periods: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for order in orders:
            amount = to_money(order.get("total_amount") or 0)
            total += amount
            periods[self._period(order, group_by)] += amount

        return {
            "total_revenue": str(to_money(total)),
            "order_count": len(orders),
            "periods": [{"period": key, "amount": str(to_money(value))} for key, value in periods.items()],
        }

    async def whatsapp_stats(self, start: Optional[str] = None, end: Optional[str] = None) -> Dict[str, Any]:
        logs = await self.store.find_all(WHATSAPP_LOGS, self._window(start, end))

        outbound = [log for log in logs if log["direction"] == MessageDirection.OUTBOUND.value]
        inbound = [log for log in logs if log["direction"] == MessageDirection.INBOUND.value]
        failed = sum(1 for log in outbound if log["status"] == MessageStatus.FAILED.value)
        delivered = len(outbound) - failed

        return {
            "outbound": len(outbound),
            "sent": delivered,
            "failed": failed,
            "inbound": len(inbound),
            "delivery_rate": _percent(delivered, len(outbound)),
        }

    async def conversion_stats(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        group_by: str = "daily"
    ) -> Dict[str, Any]:
        self._check_group_by(group_by)
        leads = await self.store.find_all(LEADS, self._window(start, end), order_by="created_at")

        by_status = Counter(lead["status"] for lead in leads)
        converted = by_status.get(LeadStatus.CLOSED.value, 0)

        periods: Dict[str, Dict[str, int]] = defaultdict(lambda: {"leads": 0, "converted": 0})
        for lead in leads:
            bucket = periods[self._period(lead, group_by)]
            bucket["leads"] += 1
            if lead["status"] == LeadStatus.CLOSED.value:
                bucket["converted"] += 1

        return {
            "total_leads": len(leads),
            "by_status": dict(by_status),
            "converted": converted,
            "conversion_rate": _percent(converted, len(leads)),
            "periods": [
                {"period": key, **value, "rate": _percent(value["converted"], value["leads"])}
                for key, value in periods.items()
            ],
        }

    async def agent_stats(
        self,
        agent_id: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Per-agent call performance.

        Paid orders and revenue are credited to every agent who called
        the order's lead within the window.
        """
        filters = self._window(start, end)
        if agent_id:
            filters["agent_id"] = agent_id
        calls = await self.store.find_all(CALL_LOGS, filters)

        calls_by_agent: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for call in calls:
            calls_by_agent[call["agent_id"]].append(call)

        lead_ids = sorted({call["lead_id"] for call in calls})
        paid_orders = await self.store.find_all(
            ORDERS, {"lead_id": lead_ids, "status": REVENUE_STATUSES}
        ) if lead_ids else []

        results = []
        for agent, agent_calls in sorted(calls_by_agent.items()):
            agent_leads = {call["lead_id"] for call in agent_calls}
            agent_orders = [order for order in paid_orders if order["lead_id"] in agent_leads]
            durations = [c["duration_sec"] for c in agent_calls if c.get("duration_sec") is not None]
            completed = sum(1 for c in agent_calls if c["status"] == CallStatus.COMPLETED.value)

            results.append({
                "agent_id": agent,
                "calls": {
                    "total": len(agent_calls),
                    "completed": completed,
                    "success_rate": _percent(completed, len(agent_calls)),
                    "avg_duration_sec": round(sum(durations) / len(durations), 1) if durations else 0,
                },
                "orders": len(agent_orders),
                "revenue": str(to_money(sum(
                    (to_money(o.get("total_amount") or 0) for o in agent_orders), Decimal("0")
                ))),
            })
        return results

    async def _period_totals(self, start: str, end: str) -> Dict[str, Any]:
        leads = await self.store.find_all(LEADS, self._window(start, end))
        calls = await self.store.find_all(CALL_LOGS, {"started_at__gte": start, "started_at__lte": end})
        orders = await self.store.find_all(ORDERS, {**self._window(start, end), "status": REVENUE_STATUSES})
        revenue = sum((to_money(o.get("total_amount") or 0) for o in orders), Decimal("0"))
        return {"leads": len(leads), "calls": len(calls), "revenue": str(to_money(revenue))}

    async def dashboard(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Headline numbers for today and the current month.

        Calls are counted by when they started. The top five agents are
        ranked by calls started this month, and recent activity covers
        the last seven days.
        """
        now = now or datetime.utcnow()
        end = datetime.combine(now.date(), time.max).isoformat()
        today = now.date().isoformat()
        month = now.date().replace(day=1).isoformat()

        month_calls = await self.store.find_all(CALL_LOGS, {"started_at__gte": month, "started_at__lte": end})
        per_agent = Counter(call["agent_id"] for call in month_calls if call.get("agent_id"))
        top_agents = sorted(per_agent.items(), key=lambda item: (-item[1], item[0]))[:5]

        recent = await self.store.find_all(
            LEAD_ACTIVITIES,
            {"created_at__gte": (now - timedelta(days=7)).isoformat()},
            order_by="created_at",
            descending=True,
            limit=10
        )

        return {
            "today": await self._period_totals(today, end),
            "month": await self._period_totals(month, end),
            "top_agents": [{"agent_id": agent, "calls": count} for agent, count in top_agents],
            "recent_activity": recent,
        }
