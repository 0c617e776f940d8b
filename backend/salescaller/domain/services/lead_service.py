"""
Lead Service
Lead lifecycle: creation, pipeline status, do-not-contact and callbacks
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from salescaller.domain.exceptions import ConflictError, NotFoundError, ValidationError
from salescaller.domain.interfaces.store import LEAD_ACTIVITIES, LEADS, Store
from salescaller.domain.models.job import CallJobPayload, Job, JobOptions, JobType, Lane
from salescaller.domain.models.lead import ActivityType, Lead, LeadStatus
from salescaller.domain.services.activity import record_activity
from salescaller.domain.services.queue_service import JobQueue
from salescaller.domain.services.state_machines import LEAD_STATE_MACHINE
from salescaller.utils.phone import digits_only

logger = logging.getLogger(__name__)


def phone_variants(phone: str) -> List[str]:
    """Spellings a stored lead phone may use for the same number."""
    digits = digits_only(phone)
    variants = [phone.strip(), digits, f"+{digits}"]
    if digits.startswith("60"):
        variants.append("0" + digits[2:])
    return list(dict.fromkeys(v for v in variants if v))


class LeadService:
    """
    Lead workflows.

    Status changes go through LEAD_STATE_MACHINE as compare-and-set
    updates, so nothing ever moves a lead out of DNC, and each applied
    change appends one activity.
    """

    def __init__(self, store: Store, queue: JobQueue):
        self.store = store
        self.queue = queue

    async def create_lead(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a lead.

        Raises:
            ValidationError: Missing or malformed fields
            ConflictError: A lead with this phone already exists
        """
        try:
            lead = Lead.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid lead: {e.errors(include_url=False)}")

        existing = await self.find_by_phone(lead.phone)
        if existing:
            raise ConflictError(
                f"Lead with phone {lead.phone} already exists",
                {"lead_id": existing["id"]}
            )

        record = await self.store.create(LEADS, lead.to_record())
        await record_activity(
            self.store, record["id"], ActivityType.NOTE, "Lead Created",
            metadata={"source": lead.source}
        )
        logger.info(f"Created lead {record['id']}")
        return record

    async def get_lead(self, lead_id: str) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: Unknown lead id
        """
        lead = await self.store.get(LEADS, lead_id)
        if lead is None:
            raise NotFoundError(f"Lead {lead_id} not found")
        return lead

    async def list_leads(
        self,
        status: Optional[str] = None,
        source: Optional[str] = None,
        assigned_to: Optional[str] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """
        Leads newest first, optionally filtered.

        Raises:
            ValidationError: Unknown status
        """
        filters: Dict[str, Any] = {}
        if status:
            try:
                filters["status"] = LeadStatus(status.upper()).value
            except ValueError:
                raise ValidationError(f"Unknown lead status: {status}")
        if source:
            filters["source"] = source
        if assigned_to:
            filters["assigned_to"] = assigned_to
        return await self.store.find_all(LEADS, filters, order_by="created_at", descending=True, limit=limit)

    async def find_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        return await self.store.find_first(LEADS, {"phone": phone_variants(phone)})

    async def transition(
        self,
        lead: Dict[str, Any],
        target: str,
        user_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Move a lead to `target` if its current status allows it.

        Returns:
            The updated lead, or None when the status had already moved on
        """
        target = getattr(target, "value", target)
        updated = await self.store.update(
            LEADS,
            lead["id"],
            {"status": target},
            expected={"status": LEAD_STATE_MACHINE.sources_for(target)}
        )
        if updated is None:
            return None

        await record_activity(
            self.store,
            lead["id"],
            ActivityType.STATUS_CHANGE,
            f"Status changed to {target}",
            content=reason,
            metadata={"from": lead.get("status"), "to": target},
            user_id=user_id,
        )
        return updated

    async def update_status(
        self,
        lead_id: str,
        status: str,
        user_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Set a lead's pipeline status.

        Raises:
            ValidationError: Unknown status
            NotFoundError: Unknown lead
            ConflictError: Transition not allowed (e.g. out of DNC)
        """
        try:
            status = LeadStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown lead status: {status}")

        if status == LeadStatus.DNC.value:
            return await self.mark_dnc(lead_id, reason=reason, user_id=user_id)

        lead = await self.get_lead(lead_id)
        if lead["status"] == status:
            return lead
        LEAD_STATE_MACHINE.assert_transition(lead["status"], status)

        updated = await self.transition(lead, status, user_id=user_id, reason=reason)
        if updated is None:
            raise ConflictError(f"Lead {lead_id} changed while updating status")
        return updated

    async def mark_dnc(
        self,
        lead_id: str,
        reason: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Mark a lead do-not-contact. Marking a DNC lead again changes nothing."""
        lead = await self.get_lead(lead_id)
        if lead["status"] == LeadStatus.DNC.value:
            return lead

        updated = await self.store.update(
            LEADS,
            lead_id,
            {"status": LeadStatus.DNC.value},
            expected={"status": LEAD_STATE_MACHINE.sources_for(LeadStatus.DNC.value)}
        )
        if updated is None:
            return await self.get_lead(lead_id)

        await record_activity(
            self.store, lead_id, ActivityType.DNC, "Marked Do Not Contact",
            content=reason, metadata={"from": lead["status"]}, user_id=user_id
        )
        logger.info(f"Lead {lead_id} marked DNC")
        return updated

    async def schedule_callback(
        self,
        lead_id: str,
        user_id: str,
        delay_seconds: float,
        call_type: str = "SALES",
        note: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Put a lead in FOLLOW_UP and enqueue a delayed call job.

        Returns:
            {"lead": ..., "job": ...}

        Raises:
            ConflictError: Lead is DNC
        """
        if delay_seconds < 0:
            raise ValidationError("delay_seconds must not be negative")

        lead = await self.get_lead(lead_id)
        if lead["status"] == LeadStatus.DNC.value:
            raise ConflictError(f"Lead {lead_id} is DNC and cannot be called back")

        if lead["status"] != LeadStatus.FOLLOW_UP.value:
            lead = await self.transition(lead, LeadStatus.FOLLOW_UP, user_id=user_id, reason=note) or lead

        payload = CallJobPayload(lead_id=lead_id, user_id=user_id, call_type=call_type)
        job: Job = await self.queue.enqueue(
            Lane.CALLS,
            JobType.MAKE_CALL,
            payload.model_dump(by_alias=True),
            JobOptions(delay=delay_seconds)
        )

        await record_activity(
            self.store, lead_id, ActivityType.CALLBACK_SCHEDULED, "Callback Scheduled",
            content=note,
            metadata={"job_id": job.job_id, "run_at": job.run_at.isoformat() if job.run_at else None},
            user_id=user_id,
        )
        return {"lead": lead, "job": job}

    async def timeline(self, lead_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Activities of a lead, newest first."""
        await self.get_lead(lead_id)
        return await self.store.find_all(
            LEAD_ACTIVITIES,
            {"lead_id": lead_id},
            order_by="created_at",
            descending=True,
            limit=limit
        )
