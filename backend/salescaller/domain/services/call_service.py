"""
Call Service
Outbound call workflow and the call status state machine
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from salescaller.domain.exceptions import ConflictError, NotFoundError, ProviderError
from salescaller.domain.interfaces.call_provider import CallProvider
from salescaller.domain.interfaces.store import CALL_LOGS, LEADS, Store
from salescaller.domain.models.call import (
    CallEvent,
    CallEventType,
    CallLog,
    CallStatus,
    NO_ANSWER_OUTCOMES,
)
from salescaller.domain.models.job import CallJobPayload, Job, JobContext, JobOptions, JobType, Lane, parse_payload
from salescaller.domain.models.lead import ActivityType, LeadStatus
from salescaller.domain.services.activity import record_activity
from salescaller.domain.services.lead_service import LeadService
from salescaller.domain.services.queue_service import JobQueue
from salescaller.domain.services.state_machines import CALL_STATE_MACHINE

logger = logging.getLogger(__name__)

# Call event -> CallLog status it moves to
EVENT_TARGETS = {
    CallEventType.STARTED.value: CallStatus.IN_PROGRESS.value,
    CallEventType.ENDED.value: CallStatus.COMPLETED.value,
    CallEventType.FAILED.value: CallStatus.FAILED.value,
}

# A no-answer never overrides these lead statuses
NO_ANSWER_PROTECTED = {LeadStatus.DNC.value, LeadStatus.CLOSED.value, LeadStatus.NO_ANSWER.value}


class CallService:
    """
    Outbound calls.

    The make-call handler creates the CallLog in SCHEDULED keyed by the
    job's idempotency key, so a redelivered job finds its own log instead
    of dialling twice. Webhooks then drive the log through
    CALL_STATE_MACHINE with compare-and-set updates.
    """

    def __init__(
        self,
        store: Store,
        queue: JobQueue,
        provider: CallProvider,
        leads: LeadService,
        initiate_timeout: Optional[float] = None
    ):
        self.store = store
        self.queue = queue
        self.provider = provider
        self.leads = leads
        self.initiate_timeout = initiate_timeout

    async def enqueue_call(
        self,
        lead_id: str,
        user_id: str,
        call_type: str = "SALES",
        delay: float = 0
    ) -> Job:
        """
        Queue a call to a lead.

        Raises:
            NotFoundError: Unknown lead
            ConflictError: Lead is DNC
        """
        lead = await self.leads.get_lead(lead_id)
        if lead["status"] == LeadStatus.DNC.value:
            raise ConflictError(f"Lead {lead_id} is DNC and cannot be called")

        payload = CallJobPayload(lead_id=lead_id, user_id=user_id, call_type=call_type)
        return await self.queue.enqueue(
            Lane.CALLS,
            JobType.MAKE_CALL,
            payload.model_dump(by_alias=True),
            JobOptions(delay=delay)
        )

    async def get_call(self, call_id: str) -> Dict[str, Any]:
        call = await self.store.get(CALL_LOGS, call_id)
        if call is None:
            raise NotFoundError(f"Call {call_id} not found")
        return call

    # ===== Job handler =====

    async def handle_call_job(self, payload: Dict[str, Any], context: JobContext) -> Dict[str, Any]:
        """
        Execute a make-call job.

        Raises:
            ValidationError: Malformed payload
            NotFoundError: Lead no longer exists
            ConflictError: Lead is DNC (checked before the provider is called)
            ProviderError: Provider rejected the call; the queue retries
        """
        data = parse_payload(CallJobPayload, payload)

        lead = await self.store.get(LEADS, data.lead_id)
        if lead is None:
            raise NotFoundError(f"Lead {data.lead_id} not found")
        if lead["status"] == LeadStatus.DNC.value:
            raise ConflictError(f"Lead {data.lead_id} is DNC and cannot be called")

        call = await self.store.find_first(CALL_LOGS, {"job_key": context.idempotency_key})
        if call is not None:
            if call["status"] in (CallStatus.IN_PROGRESS.value, CallStatus.COMPLETED.value):
                logger.info(f"Call for job {context.idempotency_key} already placed: {call['id']}")
                return self._job_result(call)
            if call["status"] == CallStatus.FAILED.value:
                raise ProviderError(call["provider"], call.get("error") or "Previous delivery failed")
        else:
            call_log = CallLog(
                lead_id=data.lead_id,
                agent_id=data.user_id,
                provider=self.provider.name,
                call_type=data.call_type,
                job_key=context.idempotency_key,
            )
            call = await self.store.create(CALL_LOGS, call_log.to_record())

        agent_context = {
            "call_log_id": call["id"],
            "user_id": data.user_id,
            "call_type": data.call_type,
        }

        try:
            initiation = await asyncio.wait_for(
                self.provider.initiate_call(lead, agent_context),
                timeout=self.initiate_timeout
            )
        except asyncio.TimeoutError:
            error = f"No answer from provider within {self.initiate_timeout}s"
            await self._record_failed_call(call, data, context, error)
            raise ProviderError(self.provider.name, error)
        except asyncio.CancelledError:
            # Lane timeout or worker shutdown
            await self._record_failed_call(call, data, context, "Call attempt cancelled")
            raise
        except Exception as e:
            await self._record_failed_call(call, data, context, str(e))
            raise

        changes = {
            "provider_call_id": initiation.provider_call_id,
            "status": CallStatus.IN_PROGRESS.value,
            "started_at": datetime.utcnow(),
            "metadata": {**call.get("metadata", {}), **initiation.metadata},
        }
        updated = await self.store.update(
            CALL_LOGS,
            call["id"],
            changes,
            expected={"status": CallStatus.SCHEDULED.value}
        )
        if updated is None:
            # A webhook got there first; keep its status, just record the id
            updated = await self.store.update(
                CALL_LOGS, call["id"], {"provider_call_id": initiation.provider_call_id}
            )

        if lead["status"] == LeadStatus.NEW.value:
            await self.leads.transition(lead, LeadStatus.CONTACTED, user_id=data.user_id,
                                        reason="Outbound call placed")

        await record_activity(
            self.store, data.lead_id, ActivityType.CALL, "Call Initiated",
            metadata={
                "call_log_id": call["id"],
                "provider": self.provider.name,
                "provider_call_id": initiation.provider_call_id,
            },
            user_id=data.user_id,
        )
        logger.info(f"Call {call['id']} placed via {self.provider.name}: {initiation.provider_call_id}")
        return self._job_result(updated)

    async def _record_failed_call(
        self,
        call: Dict[str, Any],
        data: CallJobPayload,
        context: JobContext,
        error: str
    ) -> None:
        await self.store.update(
            CALL_LOGS,
            call["id"],
            {"status": CallStatus.FAILED.value, "error": error, "ended_at": datetime.utcnow()},
            expected={"status": CALL_STATE_MACHINE.sources_for(CallStatus.FAILED.value)}
        )
        await record_activity(
            self.store, data.lead_id, ActivityType.CALL, "Call Failed",
            content=error,
            metadata={"call_log_id": call["id"], "attempt": context.attempt},
            user_id=data.user_id,
        )
        logger.error(f"Call to lead {data.lead_id} failed (attempt {context.attempt}): {error}")

    @staticmethod
    def _job_result(call: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "call_log_id": call["id"],
            "provider_call_id": call.get("provider_call_id"),
            "status": call["status"],
        }

    # ===== Webhook events =====

    async def apply_call_event(self, event: CallEvent) -> Dict[str, Any]:
        """
        Apply a normalized provider callback to its CallLog.

        Unknown call ids and events that no longer apply (duplicates,
        late "started" after "ended") change nothing.

        Returns:
            {"status": "processed" | "ignored", ...}
        """
        call = await self.store.find_first(CALL_LOGS, {"provider_call_id": event.provider_call_id})
        if call is None:
            logger.warning(f"Call webhook for unknown provider call id {event.provider_call_id}")
            return {"status": "ignored", "reason": "unknown call"}

        target = EVENT_TARGETS[event.event]
        now = datetime.utcnow()
        changes: Dict[str, Any] = {"status": target}

        if event.event == CallEventType.STARTED.value:
            changes["started_at"] = now
        elif event.event == CallEventType.ENDED.value:
            changes.update({
                "ended_at": now,
                "duration_sec": event.duration_sec,
                "transcript": event.transcript,
                "recording_url": event.recording_url,
            })
            if not call.get("started_at"):
                changes["started_at"] = now
        else:
            changes.update({"ended_at": now, "error": event.error or event.outcome or "Call failed"})

        changes = {k: v for k, v in changes.items() if v is not None}
        updated = await self.store.update(
            CALL_LOGS,
            call["id"],
            changes,
            expected={"status": CALL_STATE_MACHINE.sources_for(target)}
        )
        if updated is None:
            logger.info(
                f"Ignoring {event.event} for call {call['id']}: already {call['status']}"
            )
            return {"status": "ignored", "reason": f"call is {call['status']}", "call_log_id": call["id"]}

        await record_activity(
            self.store,
            call["lead_id"],
            ActivityType.CALL,
            f"Call {target.replace('_', ' ').title()}",
            content=event.transcript if event.event == CallEventType.ENDED.value else event.error,
            metadata={
                "call_log_id": call["id"],
                "provider_call_id": event.provider_call_id,
                "duration_sec": event.duration_sec,
                "outcome": event.outcome,
            },
            user_id=call.get("agent_id"),
        )

        if event.event == CallEventType.FAILED.value and (event.outcome or "").lower() in NO_ANSWER_OUTCOMES:
            await self._mark_no_answer(call["lead_id"], event.outcome)

        logger.info(f"Call {call['id']} -> {target}")
        return {"status": "processed", "call_log_id": call["id"], "call_status": target}

    async def _mark_no_answer(self, lead_id: str, outcome: str) -> None:
        lead = await self.store.get(LEADS, lead_id)
        if lead is None or lead["status"] in NO_ANSWER_PROTECTED:
            return
        await self.leads.transition(lead, LeadStatus.NO_ANSWER, reason=f"Call outcome: {outcome}")
