"""
Order Domain Models
Orders, their line items and the catalog products they snapshot prices from
"""
from decimal import Decimal, ROUND_HALF_UP
from pydantic import BaseModel, Field, computed_field, model_validator
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Round a numeric value to two decimal places."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Any) -> int:
    """Convert an amount in ringgit/dollars to sen/cents."""
    return int((to_money(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    COD_CONFIRMED = "COD_CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class OrderChannel(str, Enum):
    ONLINE = "ONLINE"
    COD = "COD"


class Product(BaseModel):
    """Catalog product (read-only to the workflows)"""
    id: Optional[str] = None
    sku: Optional[str] = None
    name: str
    description: Optional[str] = None
    price: Decimal = Field(ge=0)
    active: bool = True

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class OrderItem(BaseModel):
    """Order line with the unit price captured at order time"""
    product_id: str
    product_name: str
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)

    @computed_field
    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


class Order(BaseModel):
    """Customer order. total_amount always equals the sum of line totals."""
    id: Optional[str] = None
    order_no: str = Field(default_factory=lambda: f"ORD-{int(datetime.utcnow().timestamp() * 1000)}")
    lead_id: str
    user_id: Optional[str] = None
    channel: OrderChannel = OrderChannel.ONLINE
    shipping_address: Optional[str] = None
    items: List[OrderItem] = []
    total_amount: Decimal = Decimal("0.00")
    currency: str = "myr"
    status: OrderStatus = OrderStatus.PENDING
    payment_link: Optional[str] = None
    active_payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    @model_validator(mode="after")
    def _recompute_total(self) -> "Order":
        self.total_amount = self.compute_total(self.items)
        return self

    @staticmethod
    def compute_total(items: List[OrderItem]) -> Decimal:
        return to_money(sum((item.line_total for item in items), Decimal("0")))

    @property
    def product_summary(self) -> str:
        """Human readable item list, e.g. 'Serum x2, Toner x1'"""
        return ", ".join(f"{item.product_name} x{item.quantity}" for item in self.items)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
