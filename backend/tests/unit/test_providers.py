"""
Unit Tests for Provider Adapters
Retell, Twilio, Stripe, Billplz, toyyibPay and Wasapbot against mocked HTTP
"""
import json
from urllib.parse import parse_qsl, urlencode

import httpx
import pytest

from salescaller.core.config import Settings
from salescaller.domain.exceptions import ProviderError, ValidationError, WebhookAuthenticationError
from salescaller.domain.models.webhook import WebhookRequest
from salescaller.infrastructure.calling.factory import CallProviderFactory
from salescaller.infrastructure.calling.retell import RetellCallProvider
from salescaller.infrastructure.calling.twilio import TwilioCallProvider
from salescaller.infrastructure.messaging.factory import MessagingProviderFactory
from salescaller.infrastructure.messaging.wasapbot import WasapbotMessagingProvider
from salescaller.infrastructure.payments.billplz import BillplzPaymentProvider
from salescaller.infrastructure.payments.factory import PaymentProviderFactory
from salescaller.infrastructure.payments.stripe_provider import StripePaymentProvider
from salescaller.infrastructure.payments.toyyibpay import ToyyibPayPaymentProvider
from salescaller.infrastructure.signatures import billplz_x_signature, hmac_sha256_hex, twilio_signature

LEAD = {"id": "lead-1", "phone": "012-345 6789", "name": "Aisyah", "email": "aisyah@example.com"}
ORDER = {
    "id": "order-1",
    "order_no": "ORD-1",
    "total_amount": "299.00",
    "items": [{"product_name": "Serum", "quantity": 2, "unit_price": "149.50"}],
}


def json_request(payload, headers=None, secret=None, header_name="x-retell-signature"):
    body = json.dumps(payload).encode()
    headers = dict(headers or {})
    if secret:
        headers[header_name] = hmac_sha256_hex(secret, body)
    headers.setdefault("content-type", "application/json")
    return WebhookRequest(body=body, headers=headers)


def form_request(params, headers=None, url=""):
    headers = dict(headers or {})
    headers["content-type"] = "application/x-www-form-urlencoded"
    return WebhookRequest(body=urlencode(params).encode(), headers=headers, url=url)


class TestRetellCallProvider:
    """Tests for RetellCallProvider"""

    @pytest.mark.asyncio
    async def test_initiate_call_posts_normalized_numbers(self):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(201, json={"call_id": "call_1", "call_status": "registered"})

        provider = RetellCallProvider(api_key="key", from_number="0311112222",
                                      transport=httpx.MockTransport(handler))

        result = await provider.initiate_call(LEAD, {"call_log_id": "log-1", "user_id": "u1", "call_type": "SALES"})

        assert result.provider_call_id == "call_1"
        assert captured["url"].endswith("/v2/create-phone-call")
        assert captured["auth"] == "Bearer key"
        assert captured["body"]["to_number"] == "+60123456789"
        assert captured["body"]["from_number"] == "+60311112222"
        assert captured["body"]["metadata"]["call_log_id"] == "log-1"

    @pytest.mark.asyncio
    async def test_http_error_becomes_provider_error(self):
        provider = RetellCallProvider(
            api_key="key", from_number="0311112222",
            transport=httpx.MockTransport(lambda r: httpx.Response(500, text="upstream down"))
        )

        with pytest.raises(ProviderError, match="HTTP 500"):
            await provider.initiate_call(LEAD, {})

    @pytest.mark.asyncio
    async def test_timeout_becomes_provider_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        provider = RetellCallProvider(api_key="key", from_number="0311112222",
                                      transport=httpx.MockTransport(handler))

        with pytest.raises(ProviderError, match="timed out"):
            await provider.initiate_call(LEAD, {})

    @pytest.mark.asyncio
    async def test_simulated_without_credentials(self):
        provider = RetellCallProvider()

        result = await provider.initiate_call(LEAD, {})

        assert provider.simulate is True
        assert result.provider_call_id.startswith("sim-retell-")

    def test_parse_ended_event(self):
        provider = RetellCallProvider(api_key="key")
        request = json_request({"callId": "call_1", "event": "call.ended",
                                "data": {"duration": 125, "transcript": "Hello"}})

        event = provider.parse_callback(request)

        assert event.event == "ended"
        assert event.duration_sec == 125
        assert event.transcript == "Hello"

    def test_parse_native_retell_payload(self):
        provider = RetellCallProvider(api_key="key")
        request = json_request({"event": "call_ended", "call": {
            "call_id": "call_2", "duration_ms": 61400, "recording_url": "https://rec/1"
        }})

        event = provider.parse_callback(request)

        assert event.provider_call_id == "call_2"
        assert event.duration_sec == 61
        assert event.recording_url == "https://rec/1"

    def test_dial_no_answer_is_failure(self):
        provider = RetellCallProvider(api_key="key")
        request = json_request({"event": "call_ended", "call": {
            "call_id": "call_3", "disconnection_reason": "dial_no_answer"
        }})

        event = provider.parse_callback(request)

        assert event.event == "failed"
        assert event.outcome == "dial_no_answer"

    def test_untracked_event_returns_none(self):
        provider = RetellCallProvider(api_key="key")

        assert provider.parse_callback(json_request({"event": "call_analyzed", "call": {"call_id": "c"}})) is None

    def test_missing_call_id_is_validation_error(self):
        provider = RetellCallProvider(api_key="key")

        with pytest.raises(ValidationError):
            provider.parse_callback(json_request({"event": "call.ended"}))

    @pytest.mark.parametrize("payload", [
        {"event": "call_ended", "call": "abc"},
        {"event": "call.ended", "callId": "call_1", "data": ["x"]},
        {"event": "call.ended", "callId": 42},
    ])
    def test_non_object_fields_are_validation_errors(self, payload):
        provider = RetellCallProvider(api_key="key")

        with pytest.raises(ValidationError):
            provider.parse_callback(json_request(payload))

    def test_signature_required_when_secret_set(self):
        provider = RetellCallProvider(api_key="key", webhook_secret="whsec")
        payload = {"callId": "call_1", "event": "call.started"}

        provider.authenticate(json_request(payload, secret="whsec"))
        with pytest.raises(WebhookAuthenticationError):
            provider.authenticate(json_request(payload, secret="wrong"))
        with pytest.raises(WebhookAuthenticationError, match="missing"):
            provider.authenticate(json_request(payload))


class TestTwilioCallProvider:
    """Tests for TwilioCallProvider"""

    URL = "https://sales.example.com/api/v1/webhooks/calls/twilio"

    @pytest.mark.asyncio
    async def test_initiate_call_posts_form_with_basic_auth(self):
        captured = {}

        def handler(request):
            captured["form"] = dict(parse_qsl(request.content.decode()))
            captured["auth"] = request.headers["authorization"]
            return httpx.Response(201, json={"sid": "CA123", "status": "queued"})

        provider = TwilioCallProvider(
            account_sid="AC1", auth_token="tok", from_number="+60311112222",
            twiml_url="https://sales.example.com/twiml", transport=httpx.MockTransport(handler)
        )

        result = await provider.initiate_call(LEAD, {"call_log_id": "log-9"})

        assert result.provider_call_id == "CA123"
        assert captured["form"]["To"] == "+60123456789"
        assert captured["form"]["Url"] == "https://sales.example.com/twiml?callId=log-9"
        assert captured["auth"].startswith("Basic ")

    def test_status_mapping(self):
        provider = TwilioCallProvider(account_sid="AC1", auth_token="tok")

        ringing = provider.parse_callback(form_request({"CallSid": "CA1", "CallStatus": "ringing"}))
        answered = provider.parse_callback(form_request({"CallSid": "CA1", "CallStatus": "in-progress"}))
        completed = provider.parse_callback(form_request(
            {"CallSid": "CA1", "CallStatus": "completed", "CallDuration": "42"}
        ))
        busy = provider.parse_callback(form_request({"CallSid": "CA1", "CallStatus": "busy"}))

        assert ringing is None
        assert answered.event == "started"
        assert completed.event == "ended" and completed.duration_sec == 42
        assert busy.event == "failed" and busy.outcome == "busy"

    def test_unknown_status_is_validation_error(self):
        provider = TwilioCallProvider(account_sid="AC1", auth_token="tok")

        with pytest.raises(ValidationError):
            provider.parse_callback(form_request({"CallSid": "CA1", "CallStatus": "teleported"}))

    def test_signature_over_url_and_sorted_params(self):
        provider = TwilioCallProvider(account_sid="AC1", auth_token="tok")
        params = {"CallSid": "CA1", "CallStatus": "completed"}
        good = twilio_signature(self.URL, params, "tok")

        provider.authenticate(form_request(params, {"x-twilio-signature": good}, url=self.URL))
        with pytest.raises(WebhookAuthenticationError):
            provider.authenticate(form_request(params, {"x-twilio-signature": "forged"}, url=self.URL))
        with pytest.raises(WebhookAuthenticationError):
            provider.authenticate(form_request(params, {"x-twilio-signature": "s\u00e9gnature"}, url=self.URL))


class TestStripePaymentProvider:
    """Tests for StripePaymentProvider in mock mode"""

    @pytest.mark.asyncio
    async def test_mock_mode_creates_fake_link(self):
        provider = StripePaymentProvider(app_base_url="https://sales.example.com")

        link = await provider.create_payment(ORDER, LEAD)

        assert provider.mock_mode is True
        assert link.provider_txn_id.startswith("cs_mock_")
        assert link.payment_url.startswith("https://sales.example.com/mock-checkout/")

    @pytest.mark.asyncio
    async def test_completed_paid_session_is_paid_notification(self):
        provider = StripePaymentProvider()
        request = json_request({"type": "checkout.session.completed",
                                "data": {"object": {"id": "cs_1", "payment_status": "paid"}}})

        notification = await provider.parse_webhook(request)

        assert notification.provider_txn_id == "cs_1"
        assert notification.paid is True

    @pytest.mark.asyncio
    async def test_unpaid_completion_and_other_events_ignored(self):
        provider = StripePaymentProvider()

        unpaid = await provider.parse_webhook(json_request({
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_1", "payment_status": "unpaid"}}
        }))
        other = await provider.parse_webhook(json_request({
            "type": "customer.created", "data": {"object": {"id": "cus_1"}}
        }))

        assert unpaid is None
        assert other is None

    @pytest.mark.asyncio
    async def test_async_failure_is_terminal(self):
        provider = StripePaymentProvider()

        notification = await provider.parse_webhook(json_request({
            "type": "checkout.session.async_payment_failed", "data": {"object": {"id": "cs_2"}}
        }))

        assert notification.failed is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [{"object": "cs_1"}, {"object": {"payment_status": "paid"}}, "cs_1"])
    async def test_malformed_session_is_validation_error(self, data):
        provider = StripePaymentProvider()

        with pytest.raises(ValidationError):
            await provider.parse_webhook(json_request({"type": "checkout.session.completed", "data": data}))

    @pytest.mark.asyncio
    async def test_live_mode_requires_signature(self):
        provider = StripePaymentProvider(secret_key="sk_test_x", webhook_secret="whsec_x")

        with pytest.raises(WebhookAuthenticationError, match="missing"):
            await provider.parse_webhook(json_request({"type": "checkout.session.completed"}))


class TestBillplzPaymentProvider:
    """Tests for BillplzPaymentProvider"""

    @pytest.mark.asyncio
    async def test_create_bill_sends_amount_in_sen(self):
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "bill_1", "url": "https://billplz.com/bills/bill_1"})

        provider = BillplzPaymentProvider(secret_key="sk", collection_id="col", x_signature_key="xs",
                                          transport=httpx.MockTransport(handler))

        link = await provider.create_payment(ORDER, LEAD)

        assert link.provider_txn_id == "bill_1"
        assert captured["body"]["amount"] == 29900
        assert captured["body"]["reference_1"] == "order-1"

    @pytest.mark.asyncio
    async def test_signed_paid_callback(self):
        provider = BillplzPaymentProvider(secret_key="sk", collection_id="col", x_signature_key="xs")
        params = {"id": "bill_1", "paid": "true", "state": "paid", "amount": "29900"}
        params["x_signature"] = billplz_x_signature(params, "xs")

        notification = await provider.parse_webhook(form_request(params))

        assert notification.paid is True
        assert notification.provider_txn_id == "bill_1"

    @pytest.mark.asyncio
    async def test_unpaid_callback_is_not_failure(self):
        provider = BillplzPaymentProvider(secret_key="sk", collection_id="col", x_signature_key="xs")
        params = {"id": "bill_1", "paid": "false", "state": "due"}
        params["x_signature"] = billplz_x_signature(params, "xs")

        notification = await provider.parse_webhook(form_request(params))

        assert notification.paid is False
        assert notification.failed is False

    @pytest.mark.asyncio
    async def test_bad_x_signature_rejected(self):
        provider = BillplzPaymentProvider(secret_key="sk", collection_id="col", x_signature_key="xs")

        with pytest.raises(WebhookAuthenticationError):
            await provider.parse_webhook(form_request({"id": "bill_1", "paid": "true", "x_signature": "nope"}))

    @pytest.mark.asyncio
    async def test_verify_payment_reads_paid_flag(self):
        provider = BillplzPaymentProvider(
            secret_key="sk", collection_id="col",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"id": "bill_1", "paid": True}))
        )

        assert await provider.verify_payment("bill_1") is True


class TestToyyibPayPaymentProvider:
    """Tests for ToyyibPayPaymentProvider"""

    @pytest.mark.asyncio
    async def test_create_bill(self):
        captured = {}

        def handler(request):
            captured["form"] = dict(parse_qsl(request.content.decode()))
            return httpx.Response(200, json=[{"BillCode": "abc123"}])

        provider = ToyyibPayPaymentProvider(secret_key="sk", category_code="cat",
                                            transport=httpx.MockTransport(handler))

        link = await provider.create_payment(ORDER, LEAD)

        assert link.provider_txn_id == "abc123"
        assert link.payment_url == "https://toyyibpay.com/abc123"
        assert captured["form"]["billAmount"] == "29900"

    @pytest.mark.asyncio
    async def test_paid_callback_is_confirmed_with_provider(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json=[{"billpaymentStatus": "1"}]))
        provider = ToyyibPayPaymentProvider(secret_key="sk", category_code="cat", transport=transport)

        notification = await provider.parse_webhook(form_request({"billcode": "abc123", "status": "1"}))

        assert notification.paid is True

    @pytest.mark.asyncio
    async def test_unconfirmed_paid_callback_rejected(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json=[{"billpaymentStatus": "2"}]))
        provider = ToyyibPayPaymentProvider(secret_key="sk", category_code="cat", transport=transport)

        with pytest.raises(WebhookAuthenticationError):
            await provider.parse_webhook(form_request({"billcode": "abc123", "status": "1"}))

    @pytest.mark.asyncio
    async def test_failed_status_keeps_bill_payable(self):
        provider = ToyyibPayPaymentProvider()

        notification = await provider.parse_webhook(form_request({"billcode": "abc123", "status": "3"}))

        assert notification.paid is False
        assert notification.failed is False


class TestWasapbotMessagingProvider:
    """Tests for WasapbotMessagingProvider"""

    @pytest.mark.asyncio
    async def test_send_message_posts_digits_only_phone(self):
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            captured["auth"] = request.headers["authorization"]
            return httpx.Response(200, json={"messageId": "wamid.1"})

        provider = WasapbotMessagingProvider(endpoint="https://wasapbot.example.com/send", api_key="k",
                                             transport=httpx.MockTransport(handler))

        result = await provider.send_message("+60 12-345 6789", "Hai")

        assert result.message_id == "wamid.1"
        assert captured["body"] == {"phone": "60123456789", "message": "Hai"}
        assert captured["auth"] == "Bearer k"

    @pytest.mark.asyncio
    async def test_gateway_error_is_provider_error(self):
        provider = WasapbotMessagingProvider(
            endpoint="https://wasapbot.example.com/send", api_key="k",
            transport=httpx.MockTransport(lambda r: httpx.Response(429, text="slow down"))
        )

        with pytest.raises(ProviderError, match="429"):
            await provider.send_message("60123456789", "Hai")

    def test_inbound_signature(self):
        provider = WasapbotMessagingProvider(webhook_secret="wsec")
        payload = {"phone": "60123456789", "message": "COD", "timestamp": "2024-05-01T10:00:00Z"}

        provider.authenticate(json_request(payload, secret="wsec", header_name="x-hub-signature-256"))
        with pytest.raises(WebhookAuthenticationError):
            provider.authenticate(json_request(payload, secret="other", header_name="x-hub-signature-256"))


class TestProviderFactories:
    """Tests for provider selection by name"""

    def test_factories_build_configured_providers(self):
        settings = Settings(_env_file=None, provider_mock_mode=True)

        assert CallProviderFactory.create("RETELL", settings).name == "RETELL"
        assert CallProviderFactory.create("twilio", settings).name == "TWILIO"
        assert PaymentProviderFactory.create("billplz", settings).name == "BILLPLZ"
        assert PaymentProviderFactory.create("toyyibpay", settings).name == "TOYYIBPAY"
        assert MessagingProviderFactory.create("wasapbot", settings).name == "wasapbot"

    def test_unknown_provider_lists_available(self):
        settings = Settings(_env_file=None)

        with pytest.raises(ValueError, match="Available: stripe, billplz, toyyibpay"):
            PaymentProviderFactory.create("paypal", settings)
