"""
Call Domain Models
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

from salescaller.domain.exceptions import ValidationError


class CallStatus(str, Enum):
    """CallLog status. COMPLETED and FAILED are terminal."""
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CallProviderName(str, Enum):
    RETELL = "RETELL"
    TWILIO = "TWILIO"


class CallEventType(str, Enum):
    """Normalized call webhook vocabulary"""
    STARTED = "started"
    ENDED = "ended"
    FAILED = "failed"


# Outcomes reported as failures that say nothing bad about the number itself
NO_ANSWER_OUTCOMES = {"busy", "no-answer", "no_answer", "dial_busy", "dial_no_answer"}


class CallLog(BaseModel):
    """One outbound call attempt"""
    id: Optional[str] = None
    lead_id: str
    agent_id: str
    provider: CallProviderName
    provider_call_id: Optional[str] = None
    call_type: str = "SALES"
    status: CallStatus = CallStatus.SCHEDULED
    job_key: Optional[str] = None  # "<job id>:<attempt>" of the job that created it
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_sec: Optional[int] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = {}
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class CallInitiation(BaseModel):
    """Result of a provider accepting an outbound call"""
    provider_call_id: str
    metadata: Dict[str, Any] = {}


class CallEvent(BaseModel):
    """Provider callback normalized to the shared vocabulary"""
    provider_call_id: str
    event: CallEventType
    duration_sec: Optional[int] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    error: Optional[str] = None
    outcome: Optional[str] = None  # raw provider status, e.g. "busy"
    raw: Dict[str, Any] = {}

    model_config = {"use_enum_values": True}


def parse_duration(value: Any) -> Optional[int]:
    """Whole seconds from a provider duration field ("125", 125.4, None)."""
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid call duration: {value!r}")
