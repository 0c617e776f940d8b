"""
WhatsApp Template Manager
Message copy sent to leads (order confirmation, COD, follow-up, payment receipt)
"""
import logging
from typing import Any, Dict, List
from dataclasses import dataclass
from enum import Enum

from salescaller.domain.exceptions import ValidationError

logger = logging.getLogger(__name__)


class WhatsAppTemplateType(str, Enum):
    """Types of WhatsApp templates available."""
    ORDER_CONFIRMATION = "order_confirmation"
    COD_CONFIRMATION = "cod_confirmation"
    FOLLOW_UP = "follow_up"
    PAYMENT_RECEIVED = "payment_received"


@dataclass
class WhatsAppTemplate:
    """WhatsApp template with content and metadata."""
    name: str
    template_type: WhatsAppTemplateType
    content: str
    description: str
    required_vars: List[str]

    def render(self, **kwargs) -> str:
        """
        Render the template with provided variables.

        Raises:
            ValidationError: If required variables are missing
        """
        missing = [var for var in self.required_vars if kwargs.get(var) in (None, "")]
        if missing:
            raise ValidationError(f"Missing template variables for {self.template_type.value}: {missing}")

        try:
            return self.content.format(**kwargs)
        except KeyError as e:
            raise ValidationError(f"Template variable not provided: {e}")


# Copy is Bahasa Malaysia, as the sales team writes it
WHATSAPP_TEMPLATES: Dict[str, WhatsAppTemplate] = {
    WhatsAppTemplateType.ORDER_CONFIRMATION.value: WhatsAppTemplate(
        name="Order Confirmation",
        template_type=WhatsAppTemplateType.ORDER_CONFIRMATION,
        content="Hai {name}, terima kasih order {product}. Klik sini untuk bayar: {payment_link}",
        description="Sent after an order is created, carries the payment link",
        required_vars=["name", "product", "payment_link"],
    ),

    WhatsAppTemplateType.COD_CONFIRMATION.value: WhatsAppTemplate(
        name="COD Confirmation",
        template_type=WhatsAppTemplateType.COD_CONFIRMATION,
        content="Hai {name}, order anda confirmed untuk COD. Kami akan call untuk arrange delivery.",
        description="Reply to an inbound COD confirmation",
        required_vars=["name"],
    ),

    WhatsAppTemplateType.FOLLOW_UP.value: WhatsAppTemplate(
        name="Follow Up",
        template_type=WhatsAppTemplateType.FOLLOW_UP,
        content="Hi {name}, ada questions tentang {product}? Reply je message ni.",
        description="Nudge for a lead who showed interest in a product",
        required_vars=["name", "product"],
    ),

    WhatsAppTemplateType.PAYMENT_RECEIVED.value: WhatsAppTemplate(
        name="Payment Received",
        template_type=WhatsAppTemplateType.PAYMENT_RECEIVED,
        content="Hai {name}, bayaran untuk order {order_no} telah diterima. Terima kasih!",
        description="Sent once when an order becomes PAID",
        required_vars=["name", "order_no"],
    ),
}


class WhatsAppTemplateManager:
    """Looks up and renders WhatsApp templates by name."""

    def __init__(self, templates: Dict[str, WhatsAppTemplate] = None):
        self.templates = dict(templates or WHATSAPP_TEMPLATES)

    def get_template(self, template_name: str) -> WhatsAppTemplate:
        """
        Raises:
            ValidationError: Unknown template name
        """
        template = self.templates.get(template_name)
        if template is None:
            raise ValidationError(f"Unknown WhatsApp template: {template_name}")
        return template

    def render_template(self, template_name: str, **context: Any) -> str:
        return self.get_template(template_name).render(**context)

    def list_templates(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": key,
                "name": t.name,
                "description": t.description,
                "required_vars": t.required_vars,
            }
            for key, t in self.templates.items()
        ]
