"""
toyyibPay Payment Provider
FPX bills via the toyyibPay API
"""
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

logger = logging.getLogger(__name__)

# billpaymentStatus / callback status codes
STATUS_PAID = "1"
STATUS_PENDING = "2"
STATUS_FAILED = "3"


class ToyyibPayPaymentProvider(PaymentProvider):
    """
    toyyibPay bills.

    toyyibPay callbacks are unsigned, so a callback claiming payment is
    only trusted after getBillTransactions confirms it.
    """

    API_BASE_URL = "https://toyyibpay.com"
    SANDBOX_API_BASE_URL = "https://dev.toyyibpay.com"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        category_code: Optional[str] = None,
        callback_url: str = "",
        app_base_url: str = "http://localhost:8000",
        sandbox: bool = False,
        timeout: float = 30.0,
        simulate: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._secret_key = secret_key
        self._category_code = category_code
        self._callback_url = callback_url
        self._app_base_url = app_base_url.rstrip("/")
        self._api_base_url = self.SANDBOX_API_BASE_URL if sandbox else self.API_BASE_URL
        self._timeout = timeout
        self._transport = transport
        self.mock_mode = simulate or not (secret_key and category_code)

        logger.info(f"ToyyibPayPaymentProvider initialized (mock_mode={self.mock_mode})")

    @property
    def name(self) -> str:
        return PaymentProviderName.TOYYIBPAY.value

    async def create_payment(
        self,
        order: Dict[str, Any],
        lead: Dict[str, Any]
    ) -> PaymentLink:
        order_id = order["id"]

        if self.mock_mode:
            bill_code = f"mock{uuid.uuid4().hex[:6]}"
            return PaymentLink(
                payment_url=f"{self._app_base_url}/mock-checkout/{bill_code}",
                provider_txn_id=bill_code,
                metadata={"mock_mode": True}
            )

        description = ", ".join(
            f"{item['product_name']} x{item['quantity']}" for item in order.get("items", [])
        )
        form = {
            "userSecretKey": self._secret_key,
            "categoryCode": self._category_code,
            "billName": f"Order {order.get('order_no', order_id)}"[:30],
            "billDescription": (description or f"Order {order_id}")[:100],
            "billPriceSetting": "1",
            "billPayorInfo": "1",
            "billAmount": str(to_minor_units(order["total_amount"])),
            "billReturnUrl": f"{self._app_base_url}/orders/{order_id}/status",
            "billCallbackUrl": self._callback_url,
            "billExternalReferenceNo": order_id,
            "billTo": lead.get("name") or lead.get("phone"),
            "billEmail": lead.get("email") or "",
            "billPhone": lead.get("phone"),
        }

        response = await provider_request(
            self.name,
            "POST",
            f"{self._api_base_url}/index.php/api/createBill",
            timeout=self._timeout,
            transport=self._transport,
            data=form,
        )
        data = json_body(self.name, response)

        bill_code = None
        if isinstance(data, list) and data:
            bill_code = data[0].get("BillCode")
        if not bill_code:
            raise ProviderError(self.name, f"BillCode missing from response: {str(data)[:200]}")

        logger.info(f"Created toyyibPay bill {bill_code} for order {order_id}")
        return PaymentLink(payment_url=f"{self._api_base_url}/{bill_code}", provider_txn_id=bill_code)

    async def verify_payment(self, provider_txn_id: str) -> bool:
        if self.mock_mode:
            logger.warning(f"toyyibPay mock mode - cannot verify {provider_txn_id}")
            return False

        response = await provider_request(
            self.name,
            "POST",
            f"{self._api_base_url}/index.php/api/getBillTransactions",
            timeout=self._timeout,
            transport=self._transport,
            data={"billCode": provider_txn_id},
        )
        transactions = json_body(self.name, response)
        if not isinstance(transactions, list):
            return False
        return any(
            str(tx.get("billpaymentStatus", tx.get("status"))) == STATUS_PAID
            for tx in transactions
            if isinstance(tx, dict)
        )

    async def parse_webhook(self, request: WebhookRequest) -> Optional[PaymentNotification]:
        params = request.params()
        bill_code = params.get("billcode") or params.get("billCode")
        status = str(params.get("status", params.get("status_id", "")))

        if not bill_code or not status:
            raise ValidationError("toyyibPay callback missing billcode or status")

        paid = status == STATUS_PAID
        if paid and not self.mock_mode:
            confirmed = await self.verify_payment(bill_code)
            if not confirmed:
                raise WebhookAuthenticationError(
                    f"toyyibPay callback for {bill_code} not confirmed by getBillTransactions"
                )

        # Failed attempts leave the bill payable, so status 3 is not terminal
        return PaymentNotification(
            provider_txn_id=str(bill_code),
            paid=paid,
            raw={"status": status, "refno": params.get("refno"), "reason": params.get("reason")}
        )
