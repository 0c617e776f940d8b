"""
Payment Domain Models
"""
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class PaymentStatus(str, Enum):
    """Payment status. COMPLETED and FAILED are terminal."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PaymentProviderName(str, Enum):
    STRIPE = "STRIPE"
    BILLPLZ = "BILLPLZ"
    TOYYIBPAY = "TOYYIBPAY"


class Payment(BaseModel):
    """One payment attempt for an order"""
    id: Optional[str] = None
    order_id: str
    provider: PaymentProviderName
    provider_txn_id: str
    amount: Decimal
    currency: str = "myr"
    status: PaymentStatus = PaymentStatus.PENDING
    payment_url: Optional[str] = None
    error: Optional[str] = None
    paid_at: Optional[datetime] = None
    metadata: Dict[str, Any] = {}
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class PaymentLink(BaseModel):
    """Hosted payment page created by a provider"""
    payment_url: str
    provider_txn_id: str
    metadata: Dict[str, Any] = {}


class PaymentNotification(BaseModel):
    """Payment webhook normalized across providers"""
    provider_txn_id: str
    paid: bool
    failed: bool = False
    raw: Dict[str, Any] = {}
