"""
Job Queue Models
Jobs, lanes, retry policy and the payloads each job type carries
"""
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError
from typing import Optional, Dict, Any, List, Type, TypeVar
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import json
import uuid

from salescaller.domain.exceptions import ValidationError


class Lane(str, Enum):
    """Independent queue lanes, each with its own workers"""
    CALLS = "calls"
    MESSAGING = "messaging"
    EXPORTS = "exports"


class JobType(str, Enum):
    MAKE_CALL = "make-call"
    SEND_MESSAGE = "send-message"
    EXPORT_DATA = "export-data"


LANE_FOR_JOB_TYPE: Dict[str, Lane] = {
    JobType.MAKE_CALL.value: Lane.CALLS,
    JobType.SEND_MESSAGE.value: Lane.MESSAGING,
    JobType.EXPORT_DATA.value: Lane.EXPORTS,
}


class JobStatus(str, Enum):
    """Status of a queued job"""
    WAITING = "waiting"
    DELAYED = "delayed"      # Explicit delay or waiting for a retry
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"        # Attempts exhausted or non-retryable error
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = {JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value}


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class BackoffPolicy(BaseModel):
    """Delay applied between attempts of a failing job"""
    type: BackoffType = BackoffType.EXPONENTIAL
    delay: float = Field(default=2.0, ge=0, description="Base delay in seconds")

    model_config = {"use_enum_values": True}

    def compute_delay(self, attempt_index: int) -> float:
        """
        Delay before the next attempt.

        Args:
            attempt_index: Zero-based index of the attempt that just failed

        Returns:
            Delay in seconds
        """
        if self.type == BackoffType.FIXED:
            return self.delay
        return self.delay * (2 ** max(attempt_index, 0))


class JobOptions(BaseModel):
    """Per-enqueue overrides of the lane defaults"""
    delay: float = Field(default=0, ge=0, description="Seconds before the job becomes available")
    max_attempts: Optional[int] = Field(default=None, ge=1)
    backoff: Optional[BackoffPolicy] = None
    job_id: Optional[str] = None


class Job(BaseModel):
    """
    A unit of asynchronous work.

    Job records live in Redis and are the operator-visible history of
    the work: terminal failures keep their error here so they can be
    queried by job id.
    """

    job_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    lane: Lane
    job_type: JobType
    payload: Dict[str, Any] = {}

    status: JobStatus = JobStatus.WAITING
    attempts_made: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    retry_delays: List[float] = []

    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    run_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = {"use_enum_values": True, "validate_assignment": True}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def should_retry(self) -> bool:
        """True while the job has attempts left."""
        return self.attempts_made < self.max_attempts

    def next_retry_delay(self) -> float:
        """Backoff delay after the attempt that just ran."""
        return self.backoff.compute_delay(self.attempts_made - 1)

    def to_redis(self) -> str:
        """Serialize for Redis storage."""
        return self.model_dump_json()

    @classmethod
    def from_redis(cls, data: str) -> "Job":
        """Deserialize from Redis storage."""
        return cls.model_validate(json.loads(data))

    def __repr__(self) -> str:
        return (
            f"Job(id={self.job_id[:8]}..., "
            f"type={self.job_type}, "
            f"status={self.status}, "
            f"attempt={self.attempts_made}/{self.max_attempts})"
        )


@dataclass
class JobContext:
    """What a handler knows about the delivery it is running under."""
    job_id: str
    attempt: int
    lane: str

    @property
    def idempotency_key(self) -> str:
        """Stable across redeliveries of the same attempt"""
        return f"{self.job_id}:{self.attempt}"


# ===== Payloads =====

class _Payload(BaseModel):
    # Payloads arrive camelCased from the dashboard and snake_cased from services
    model_config = {"populate_by_name": True, "use_enum_values": True}


class CallJobPayload(_Payload):
    lead_id: str = Field(alias="leadId")
    user_id: str = Field(alias="userId")
    call_type: str = Field(default="SALES", alias="callType")


class MessageJobPayload(_Payload):
    lead_id: str = Field(alias="leadId")
    order_id: Optional[str] = Field(default=None, alias="orderId")
    message: Optional[str] = None
    template_name: Optional[str] = Field(default=None, alias="templateName")
    template_data: Dict[str, Any] = Field(default_factory=dict, alias="templateData")


class ExportType(str, Enum):
    LEADS = "LEADS"
    CALLS = "CALLS"
    ORDERS = "ORDERS"


class ExportJobPayload(_Payload):
    type: ExportType
    filters: Dict[str, Any] = {}
    user_id: str = Field(alias="userId")
    format: str = "CSV"


PayloadT = TypeVar("PayloadT", bound=BaseModel)


def parse_payload(model: Type[PayloadT], payload: Dict[str, Any]) -> PayloadT:
    """Validate a job payload, raising the domain ValidationError on bad input."""
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {model.__name__}: {e.errors(include_url=False)}")
