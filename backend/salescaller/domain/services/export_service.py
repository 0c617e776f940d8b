"""
Export Service
CSV exports of leads, calls and orders, produced on the exports lane
"""
import asyncio
import csv
import functools
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from salescaller.domain.exceptions import ValidationError
from salescaller.domain.interfaces.store import CALL_LOGS, LEADS, ORDERS, Store
from salescaller.domain.models.job import ExportJobPayload, ExportType, Job, JobContext, JobType, Lane, parse_payload
from salescaller.domain.services.queue_service import JobQueue

logger = logging.getLogger(__name__)

EXPORT_TABLES = {
    ExportType.LEADS.value: LEADS,
    ExportType.CALLS.value: CALL_LOGS,
    ExportType.ORDERS.value: ORDERS,
}

EXPORT_COLUMNS: Dict[str, List[str]] = {
    ExportType.LEADS.value: [
        "id", "phone", "name", "email", "status", "priority", "source", "tags",
        "assigned_to", "created_at",
    ],
    ExportType.CALLS.value: [
        "id", "lead_id", "agent_id", "provider", "provider_call_id", "call_type", "status",
        "started_at", "ended_at", "duration_sec", "recording_url", "error", "created_at",
    ],
    ExportType.ORDERS.value: [
        "id", "order_no", "lead_id", "user_id", "channel", "status", "items", "total_amount",
        "currency", "payment_link", "paid_at", "created_at",
    ],
}

SUPPORTED_FORMATS = {"CSV"}

# Filter keys with a meaning beyond column equality
RANGE_FILTERS = {"from": "created_at__gte", "to": "created_at__lte"}


def _cell(column: str, value: Any) -> Any:
    if value is None:
        return ""
    if column == "items" and isinstance(value, list):
        return ", ".join(f"{item.get('product_name')} x{item.get('quantity')}" for item in value)
    if isinstance(value, list):
        return ";".join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True)
    return value


def write_csv(path: Path, columns: List[str], rows: List[Dict[str, Any]]) -> None:
    """Write rows to a CSV file with a header line."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow({column: _cell(column, row.get(column)) for column in columns})


class ExportService:
    """
    Data exports.

    The artifact name derives from the job id, so a redelivered export
    job overwrites its own file instead of leaving a second one.
    """

    def __init__(self, store: Store, queue: JobQueue, export_dir: str = "./exports"):
        self.store = store
        self.queue = queue
        self.export_dir = Path(export_dir)

    async def enqueue_export(
        self,
        export_type: str,
        filters: Optional[Dict[str, Any]] = None,
        user_id: str = "",
        export_format: str = "CSV"
    ) -> Job:
        """
        Queue an export job.

        Raises:
            ValidationError: Unknown type or unsupported format
        """
        payload = parse_payload(ExportJobPayload, {
            "type": export_type,
            "filters": filters or {},
            "userId": user_id,
            "format": export_format,
        })
        self._check_format(payload.format)
        return await self.queue.enqueue(Lane.EXPORTS, JobType.EXPORT_DATA, payload.model_dump(by_alias=True))

    @staticmethod
    def _check_format(export_format: str) -> str:
        export_format = (export_format or "CSV").upper()
        if export_format not in SUPPORTED_FORMATS:
            raise ValidationError(f"Unsupported export format: {export_format}")
        return export_format

    @staticmethod
    def build_filters(filters: Dict[str, Any], columns: List[str]) -> Dict[str, Any]:
        """
        Translate export filters into store filters.

        "from" / "to" bound created_at; every other key must be an
        exported column and is matched by equality.
        """
        store_filters: Dict[str, Any] = {}
        for key, value in filters.items():
            if value in (None, ""):
                continue
            if key in RANGE_FILTERS:
                store_filters[RANGE_FILTERS[key]] = value
            elif key in columns:
                store_filters[key] = value
            else:
                raise ValidationError(f"Unknown export filter: {key}")
        return store_filters

    async def handle_export_job(self, payload: Dict[str, Any], context: JobContext) -> Dict[str, Any]:
        """
        Execute an export-data job.

        Returns:
            {"artifact_location", "row_count", "type", "format"}
        """
        data = parse_payload(ExportJobPayload, payload)
        export_format = self._check_format(data.format)

        export_type = data.type
        columns = EXPORT_COLUMNS[export_type]
        filters = self.build_filters(data.filters, columns)

        rows = await self.store.find_all(EXPORT_TABLES[export_type], filters, order_by="created_at")

        path = self.export_dir / f"{export_type.lower()}-{context.job_id}.csv"
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, functools.partial(write_csv, path, columns, rows))

        logger.info(f"Exported {len(rows)} {export_type} row(s) to {path} for user {data.user_id}")
        return {
            "artifact_location": str(path),
            "row_count": len(rows),
            "type": export_type,
            "format": export_format,
        }
