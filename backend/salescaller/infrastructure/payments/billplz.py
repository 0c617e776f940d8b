"""
Billplz Payment Provider
FPX bills via the Billplz v3 API
"""
import hmac
import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from salescaller.domain.exceptions import ProviderError, ValidationError, WebhookAuthenticationError
from salescaller.domain.interfaces.payment_provider import PaymentProvider
from salescaller.domain.models.order import to_minor_units
from salescaller.domain.models.payment import PaymentLink, PaymentNotification, PaymentProviderName
from salescaller.domain.models.webhook import WebhookRequest
from salescaller.infrastructure.http import json_body, provider_request
from salescaller.infrastructure.signatures import billplz_x_signature

logger = logging.getLogger(__name__)


class BillplzPaymentProvider(PaymentProvider):
    """
    Billplz bills.

    Requirements:
    - BILLPLZ_SECRET_KEY (basic auth username)
    - BILLPLZ_COLLECTION_ID
    - BILLPLZ_X_SIGNATURE_KEY (callback signing)

    Callbacks are form-encoded: id, paid ("true"/"false"), state,
    amount, paid_at and x_signature.
    """

    API_BASE_URL = "https://www.billplz.com/api/v3"
    SANDBOX_API_BASE_URL = "https://www.billplz-sandbox.com/api/v3"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        collection_id: Optional[str] = None,
        x_signature_key: Optional[str] = None,
        callback_url: str = "",
        app_base_url: str = "http://localhost:8000",
        sandbox: bool = False,
        timeout: float = 30.0,
        simulate: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._secret_key = secret_key
        self._collection_id = collection_id
        self._x_signature_key = x_signature_key
        self._callback_url = callback_url
        self._app_base_url = app_base_url.rstrip("/")
        self._api_base_url = self.SANDBOX_API_BASE_URL if sandbox else self.API_BASE_URL
        self._timeout = timeout
        self._transport = transport
        self.mock_mode = simulate or not (secret_key and collection_id)

        logger.info(f"BillplzPaymentProvider initialized (mock_mode={self.mock_mode})")

    @property
    def name(self) -> str:
        return PaymentProviderName.BILLPLZ.value

    async def create_payment(
        self,
        order: Dict[str, Any],
        lead: Dict[str, Any]
    ) -> PaymentLink:
        order_id = order["id"]

        if self.mock_mode:
            bill_id = f"mock{uuid.uuid4().hex[:8]}"
            return PaymentLink(
                payment_url=f"{self._app_base_url}/mock-checkout/{bill_id}",
                provider_txn_id=bill_id,
                metadata={"mock_mode": True}
            )

        body = {
            "collection_id": self._collection_id,
            "email": lead.get("email") or "",
            "mobile": lead.get("phone"),
            "name": lead.get("name") or lead.get("phone"),
            "amount": to_minor_units(order["total_amount"]),
            "description": f"Order {order.get('order_no', order_id)}",
            "callback_url": self._callback_url,
            "redirect_url": f"{self._app_base_url}/orders/{order_id}/status",
            "reference_1_label": "Order ID",
            "reference_1": order_id,
        }

        response = await provider_request(
            self.name,
            "POST",
            f"{self._api_base_url}/bills",
            timeout=self._timeout,
            transport=self._transport,
            json=body,
            auth=(self._secret_key, ""),
        )
        data = json_body(self.name, response)

        if not data.get("id") or not data.get("url"):
            raise ProviderError(self.name, "Bill id or url missing from response")

        logger.info(f"Created Billplz bill {data['id']} for order {order_id}")
        return PaymentLink(payment_url=data["url"], provider_txn_id=data["id"])

    async def verify_payment(self, provider_txn_id: str) -> bool:
        if self.mock_mode:
            logger.warning(f"Billplz mock mode - cannot verify {provider_txn_id}")
            return False

        response = await provider_request(
            self.name,
            "GET",
            f"{self._api_base_url}/bills/{provider_txn_id}",
            timeout=self._timeout,
            transport=self._transport,
            auth=(self._secret_key, ""),
        )
        return json_body(self.name, response).get("paid") is True

    async def parse_webhook(self, request: WebhookRequest) -> Optional[PaymentNotification]:
        params = request.params()

        if not self.mock_mode:
            if not self._x_signature_key:
                raise WebhookAuthenticationError("Billplz X Signature key not configured")
            provided = params.get("x_signature")
            if not provided:
                raise WebhookAuthenticationError("missing billplz x_signature")
            expected = billplz_x_signature({k: str(v) for k, v in params.items()}, self._x_signature_key)
            if not hmac.compare_digest(expected, str(provided)):
                raise WebhookAuthenticationError("invalid billplz x_signature")

        bill_id = params.get("id")
        if not bill_id:
            raise ValidationError("Billplz callback missing bill id")

        # An unpaid bill stays payable, so "false" is not a terminal failure
        paid = str(params.get("paid", "")).lower() == "true"
        return PaymentNotification(
            provider_txn_id=str(bill_id),
            paid=paid,
            raw={"state": params.get("state"), "paid_at": params.get("paid_at")}
        )
