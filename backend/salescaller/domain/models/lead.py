"""
Lead Domain Models
Lead is the aggregate root for calls, orders and messages of one customer
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


class LeadStatus(str, Enum):
    """Sales pipeline status of a lead"""
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    INTERESTED = "INTERESTED"
    NO_ANSWER = "NO_ANSWER"
    FOLLOW_UP = "FOLLOW_UP"
    CLOSED = "CLOSED"
    DNC = "DNC"  # Do not contact, terminal


class ActivityType(str, Enum):
    """Kind of entry on a lead's timeline"""
    CALL = "CALL"
    WHATSAPP = "WHATSAPP"
    PAYMENT = "PAYMENT"
    ORDER = "ORDER"
    NOTE = "NOTE"
    DNC = "DNC"
    CALLBACK_SCHEDULED = "CALLBACK_SCHEDULED"
    STATUS_CHANGE = "STATUS_CHANGE"


class Lead(BaseModel):
    """Prospective customer"""
    id: Optional[str] = None
    phone: str
    name: str = ""
    email: Optional[str] = None
    status: LeadStatus = LeadStatus.NEW
    priority: int = Field(default=0, ge=0)
    source: Optional[str] = None
    tags: List[str] = []
    assigned_to: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    @field_validator("phone")
    @classmethod
    def _strip_phone(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("phone must not be empty")
        return value

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: List[str]) -> List[str]:
        # Tags behave as a set but keep insertion order for display
        return list(dict.fromkeys(value))

    @property
    def is_dnc(self) -> bool:
        return self.status == LeadStatus.DNC

    def to_record(self) -> Dict[str, Any]:
        """Serialize for the persistent store."""
        return self.model_dump(mode="json", exclude_none=True)


class LeadActivity(BaseModel):
    """Immutable timeline entry attached to a lead"""
    id: Optional[str] = None
    lead_id: str
    type: ActivityType
    title: str
    content: Optional[str] = None
    metadata: Dict[str, Any] = {}
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = {"use_enum_values": True}

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
