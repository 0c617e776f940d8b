"""
Retell AI Call Provider
Outbound AI voice calls via the Retell REST API
"""
import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from salescaller.domain.exceptions import ProviderError, ValidationError
from salescaller.domain.interfaces.call_provider import CallProvider
from salescaller.domain.models.call import (
    CallEvent,
    CallEventType,
    CallInitiation,
    CallProviderName,
    parse_duration,
)
from salescaller.domain.models.webhook import WebhookRequest
from salescaller.infrastructure.http import json_body, provider_request
from salescaller.infrastructure.signatures import require_hmac_signature
from salescaller.utils.phone import normalize_number

logger = logging.getLogger(__name__)


class RetellCallProvider(CallProvider):
    """
    Retell AI phone agent.

    Requirements:
    - RETELL_API_KEY
    - RETELL_FROM_NUMBER (number purchased in Retell)
    - RETELL_AGENT_ID (defaults to the Bahasa Malaysia sales persona)

    Callbacks come in two shapes and both are accepted:
    - {"event": "call_started" | "call_ended", "call": {...}} from Retell itself
    - {"callId", "event": "call.started" | "call.ended" | "call.failed", "data": {...}}
    """

    API_BASE_URL = "https://api.retellai.com"

    STARTED_EVENTS = {"call_started", "call.started"}
    ENDED_EVENTS = {"call_ended", "call.ended"}
    FAILED_EVENTS = {"call_failed", "call.failed"}

    # disconnection_reason values meaning the call never connected
    FAILED_DISCONNECTIONS = {
        "dial_failed",
        "dial_busy",
        "dial_no_answer",
        "invalid_destination",
        "telephony_provider_permission_denied",
        "telephony_provider_unavailable",
        "sip_routing_error",
        "marked_as_spam",
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        agent_id: str = "sales-agent-bm",
        from_number: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: float = 30.0,
        simulate: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._api_key = api_key
        self._agent_id = agent_id
        self._from_number = from_number
        self._webhook_secret = webhook_secret
        self._timeout = timeout
        self._transport = transport
        self.simulate = simulate or not api_key

        if self.simulate:
            logger.warning("Retell credentials not configured - calls will be simulated")

    @property
    def name(self) -> str:
        return CallProviderName.RETELL.value

    async def initiate_call(
        self,
        lead: Dict[str, Any],
        agent_context: Dict[str, Any]
    ) -> CallInitiation:
        to_number = normalize_number(lead["phone"])

        if self.simulate:
            call_id = f"sim-retell-{uuid.uuid4().hex[:12]}"
            logger.warning(f"Simulating Retell call to {to_number[:6]}... ({call_id})")
            return CallInitiation(provider_call_id=call_id, metadata={"simulated": True})

        if not self._from_number:
            raise ProviderError(self.name, "RETELL_FROM_NUMBER not configured")

        body = {
            "from_number": normalize_number(self._from_number),
            "to_number": to_number,
            "override_agent_id": agent_context.get("agent_id") or self._agent_id,
            "metadata": {
                "call_log_id": agent_context.get("call_log_id"),
                "lead_id": lead.get("id"),
                "user_id": agent_context.get("user_id"),
                "call_type": agent_context.get("call_type"),
            },
            "retell_llm_dynamic_variables": {
                "customer_name": lead.get("name") or "",
                "call_type": str(agent_context.get("call_type") or ""),
            },
        }

        logger.info(f"Initiating Retell call to {to_number[:6]}...")
        response = await provider_request(
            self.name,
            "POST",
            f"{self.API_BASE_URL}/v2/create-phone-call",
            timeout=self._timeout,
            transport=self._transport,
            json=body,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        data = json_body(self.name, response)

        call_id = data.get("call_id")
        if not call_id:
            raise ProviderError(self.name, "No call_id returned")

        logger.info(f"Retell call accepted: {call_id}")
        return CallInitiation(
            provider_call_id=call_id,
            metadata={"call_status": data.get("call_status"), "agent_id": body["override_agent_id"]}
        )

    def authenticate(self, request: WebhookRequest) -> None:
        require_hmac_signature(
            request,
            self._webhook_secret,
            ["x-retell-signature", "x-webhook-signature"],
            "retell"
        )

    def parse_callback(self, request: WebhookRequest) -> Optional[CallEvent]:
        payload = request.json()
        event = payload.get("event")

        if "call" in payload:
            call = payload.get("call") or {}
            if not isinstance(call, dict):
                raise ValidationError("Retell callback 'call' is not an object")
            call_id = call.get("call_id")
            duration_ms = parse_duration(call.get("duration_ms"))
            if duration_ms is None and call.get("start_timestamp") and call.get("end_timestamp"):
                duration_ms = parse_duration(call["end_timestamp"]) - parse_duration(call["start_timestamp"])
            data = {
                "duration": round(duration_ms / 1000) if duration_ms is not None else None,
                "transcript": call.get("transcript"),
                "recordingUrl": call.get("recording_url"),
                "error": call.get("disconnection_reason"),
            }
        else:
            call_id = payload.get("callId") or payload.get("call_id")
            data = payload.get("data") or {}
            if not isinstance(data, dict):
                raise ValidationError("Retell callback 'data' is not an object")

        if not call_id or not event:
            raise ValidationError("Retell callback missing call id or event")
        if not isinstance(call_id, str) or not isinstance(event, str):
            raise ValidationError("Retell callback call id and event must be strings")

        if event in self.STARTED_EVENTS:
            return CallEvent(provider_call_id=call_id, event=CallEventType.STARTED, raw=payload)

        if event in self.FAILED_EVENTS:
            return CallEvent(
                provider_call_id=call_id,
                event=CallEventType.FAILED,
                error=data.get("error") or "Call failed",
                raw=payload,
            )

        if event in self.ENDED_EVENTS:
            reason = data.get("error")
            if reason is not None and not isinstance(reason, str):
                reason = str(reason)
            if reason and (reason in self.FAILED_DISCONNECTIONS or reason.startswith("error")):
                return CallEvent(
                    provider_call_id=call_id,
                    event=CallEventType.FAILED,
                    error=reason,
                    outcome=reason,
                    raw=payload,
                )
            return CallEvent(
                provider_call_id=call_id,
                event=CallEventType.ENDED,
                duration_sec=parse_duration(data.get("duration")),
                transcript=data.get("transcript"),
                recording_url=data.get("recordingUrl") or data.get("recording_url"),
                outcome=reason,
                raw=payload,
            )

        # call_analyzed and friends carry nothing for the state machine
        logger.debug(f"Ignoring Retell event {event} for {call_id}")
        return None

