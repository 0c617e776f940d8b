"""
WhatsApp Domain Models
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class MessageDirection(str, Enum):
    OUTBOUND = "OUTBOUND"
    INBOUND = "INBOUND"


class MessageStatus(str, Enum):
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"


class WhatsAppLog(BaseModel):
    """One inbound or outbound WhatsApp message"""
    id: Optional[str] = None
    lead_id: Optional[str] = None
    order_id: Optional[str] = None
    phone: str
    direction: MessageDirection
    status: MessageStatus
    message: str
    message_id: Optional[str] = None
    job_id: Optional[str] = None  # outbound: job that sent it
    received_at: Optional[str] = None  # inbound: provider timestamp, used for dedupe
    error: Optional[str] = None
    metadata: Dict[str, Any] = {}
    created_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = {"use_enum_values": True}

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class InboundMessage(BaseModel):
    """WhatsApp inbound webhook body"""
    phone: str
    message: str
    timestamp: datetime

    @field_validator("phone")
    @classmethod
    def _strip_phone(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("phone must not be empty")
        return value

    @property
    def keyword(self) -> str:
        """Trimmed, upper-cased body for exact keyword matching"""
        return self.message.strip().upper()


@dataclass
class MessageResult:
    """Result of a messaging provider send."""
    success: bool
    message_id: Optional[str] = None
    provider: str = ""
    error: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message_id": self.message_id,
            "provider": self.provider,
            "error": self.error,
        }
