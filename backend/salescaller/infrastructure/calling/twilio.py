"""
Twilio Call Provider
Outbound calls via the Twilio Voice REST API
"""
import hmac
import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from salescaller.domain.exceptions import ProviderError, ValidationError, WebhookAuthenticationError
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
from salescaller.infrastructure.signatures import twilio_signature
from salescaller.utils.phone import normalize_number

logger = logging.getLogger(__name__)


# Twilio CallStatus to our event vocabulary
TWILIO_STATUS_MAP = {
    "queued": None,
    "initiated": None,
    "ringing": None,
    "in-progress": CallEventType.STARTED,
    "answered": CallEventType.STARTED,
    "completed": CallEventType.ENDED,
    "busy": CallEventType.FAILED,
    "no-answer": CallEventType.FAILED,
    "failed": CallEventType.FAILED,
    "canceled": CallEventType.FAILED,
}


class TwilioCallProvider(CallProvider):
    """
    Twilio Voice outbound calls.

    Requirements:
    - TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN
    - TWILIO_PHONE_NUMBER (caller ID)
    - twiml_url: where Twilio fetches call instructions once answered

    Status callbacks are form-encoded and signed with X-Twilio-Signature.
    """

    API_BASE_URL = "https://api.twilio.com/2010-04-01"

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        twiml_url: Optional[str] = None,
        status_callback_url: Optional[str] = None,
        timeout: float = 30.0,
        simulate: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._twiml_url = twiml_url
        self._status_callback_url = status_callback_url
        self._timeout = timeout
        self._transport = transport
        self.simulate = simulate or not (account_sid and auth_token)

        if self.simulate:
            logger.warning("Twilio credentials not configured - calls will be simulated")

    @property
    def name(self) -> str:
        return CallProviderName.TWILIO.value

    async def initiate_call(
        self,
        lead: Dict[str, Any],
        agent_context: Dict[str, Any]
    ) -> CallInitiation:
        to_number = normalize_number(lead["phone"])

        if self.simulate:
            call_sid = f"CAsim{uuid.uuid4().hex[:28]}"
            logger.warning(f"Simulating Twilio call to {to_number[:6]}... ({call_sid})")
            return CallInitiation(provider_call_id=call_sid, metadata={"simulated": True})

        if not self._from_number:
            raise ProviderError(self.name, "TWILIO_PHONE_NUMBER not configured")
        if not self._twiml_url:
            raise ProviderError(self.name, "TwiML URL not configured")

        twiml_url = self._twiml_url
        if agent_context.get("call_log_id"):
            separator = "&" if "?" in twiml_url else "?"
            twiml_url = f"{twiml_url}{separator}callId={agent_context['call_log_id']}"

        form = {
            "To": to_number,
            "From": normalize_number(self._from_number),
            "Url": twiml_url,
            "Record": "true",
        }
        if self._status_callback_url:
            form["StatusCallback"] = self._status_callback_url
            form["StatusCallbackEvent"] = ["initiated", "ringing", "answered", "completed"]

        logger.info(f"Initiating Twilio call to {to_number[:6]}...")
        response = await provider_request(
            self.name,
            "POST",
            f"{self.API_BASE_URL}/Accounts/{self._account_sid}/Calls.json",
            timeout=self._timeout,
            transport=self._transport,
            data=form,
            auth=(self._account_sid, self._auth_token),
        )
        data = json_body(self.name, response)

        call_sid = data.get("sid")
        if not call_sid:
            raise ProviderError(self.name, "No call SID returned")

        logger.info(f"Twilio call accepted: {call_sid}")
        return CallInitiation(provider_call_id=call_sid, metadata={"call_status": data.get("status")})

    def authenticate(self, request: WebhookRequest) -> None:
        if not self._auth_token:
            return

        signature = request.header("x-twilio-signature")
        if not signature:
            raise WebhookAuthenticationError("missing twilio signature header")

        expected = twilio_signature(request.url, request.form(), self._auth_token)
        if not hmac.compare_digest(signature.encode(), expected.encode()):
            raise WebhookAuthenticationError("invalid twilio signature")

    def parse_callback(self, request: WebhookRequest) -> Optional[CallEvent]:
        payload = request.params()
        call_sid = payload.get("CallSid")
        call_status = (payload.get("CallStatus") or "").lower()

        if not call_sid or not call_status:
            raise ValidationError("Twilio callback missing CallSid or CallStatus")

        if call_status not in TWILIO_STATUS_MAP:
            raise ValidationError(f"Unknown Twilio CallStatus: {call_status}")

        event = TWILIO_STATUS_MAP[call_status]
        if event is None:
            return None

        if event == CallEventType.ENDED:
            return CallEvent(
                provider_call_id=call_sid,
                event=event,
                duration_sec=parse_duration(payload.get("CallDuration") or payload.get("Duration")),
                recording_url=payload.get("RecordingUrl"),
                outcome=call_status,
                raw=dict(payload),
            )

        if event == CallEventType.FAILED:
            return CallEvent(
                provider_call_id=call_sid,
                event=event,
                error=payload.get("ErrorMessage") or call_status,
                outcome=call_status,
                raw=dict(payload),
            )

        return CallEvent(provider_call_id=call_sid, event=event, outcome=call_status, raw=dict(payload))
