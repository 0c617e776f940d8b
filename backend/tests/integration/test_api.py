"""
Integration Tests for the HTTP API
Routes, error mapping and webhook flows against an injected container
"""
import asyncio
import json
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from salescaller.domain.exceptions import WebhookAuthenticationError
from salescaller.domain.models.call import CallEvent
from salescaller.domain.models.payment import PaymentNotification
from salescaller.main import create_app

API = "/api/v1"


@pytest.fixture
async def client(container):
    app = create_app(container)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def create_lead(client, phone="60123456789", name="Aisyah"):
    response = await client.post(f"{API}/leads", json={"phone": phone, "name": name})
    assert response.status_code == 201
    return response.json()


class TestLeadsApi:
    """Tests for /leads"""

    @pytest.mark.asyncio
    async def test_create_and_get_lead(self, client):
        lead = await create_lead(client)

        response = await client.get(f"{API}/leads/{lead['id']}")

        assert response.status_code == 200
        assert response.json()["status"] == "NEW"

    @pytest.mark.asyncio
    async def test_duplicate_phone_conflicts(self, client):
        lead = await create_lead(client)

        response = await client.post(f"{API}/leads", json={"phone": "+60123456789"})

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "ConflictError"
        assert body["details"] == {"lead_id": lead["id"]}

    @pytest.mark.asyncio
    async def test_blank_phone_is_422(self, client):
        response = await client.post(f"{API}/leads", json={"phone": "  "})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_leads_filtered_by_status(self, client):
        first = await create_lead(client)
        await create_lead(client, phone="60111111111", name="Ben")
        await client.post(f"{API}/leads/{first['id']}/status", json={"status": "INTERESTED"})

        everyone = (await client.get(f"{API}/leads")).json()["leads"]
        interested = (await client.get(f"{API}/leads", params={"status": "INTERESTED"})).json()["leads"]

        assert len(everyone) == 2
        assert [row["id"] for row in interested] == [first["id"]]
        assert (await client.get(f"{API}/leads", params={"status": "ASLEEP"})).status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_lead_is_404(self, client):
        response = await client.get(f"{API}/leads/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    @pytest.mark.asyncio
    async def test_dnc_without_body_then_call_refused(self, client):
        lead = await create_lead(client)

        dnc = await client.post(f"{API}/leads/{lead['id']}/dnc")
        call = await client.post(f"{API}/calls", json={"lead_id": lead["id"], "user_id": "agent-1"})

        assert dnc.status_code == 200
        assert dnc.json()["status"] == "DNC"
        assert call.status_code == 409

    @pytest.mark.asyncio
    async def test_callback_returns_delayed_job(self, client):
        lead = await create_lead(client)

        response = await client.post(
            f"{API}/leads/{lead['id']}/callback",
            json={"user_id": "agent-1", "delay_seconds": 600, "note": "after lunch"},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["lead"]["status"] == "FOLLOW_UP"
        assert body["job"]["status"] == "delayed"
        timeline = (await client.get(f"{API}/leads/{lead['id']}/timeline", params={"limit": 1})).json()
        assert timeline[0]["type"] == "CALLBACK_SCHEDULED"


class TestCallsApi:
    """Tests for /calls and the call webhook"""

    @pytest.mark.asyncio
    async def test_call_queued_placed_and_completed(self, client, container, call_provider):
        lead = await create_lead(client)
        call_provider.call_ids = ["call_1"]

        accepted = await client.post(f"{API}/calls", json={"lead_id": lead["id"], "user_id": "agent-1"})

        assert accepted.status_code == 202
        job = accepted.json()
        assert job["lane"] == "calls"
        assert job["job_type"] == "make-call"
        assert job["status"] == "waiting"

        await container.worker_pool.workers["calls"].run_pending()
        done = (await client.get(f"{API}/jobs/{job['job_id']}")).json()
        assert done["status"] == "completed"

        call_provider.events = [CallEvent(provider_call_id="call_1", event="ended", duration_sec=125)]
        webhook = await client.post(f"{API}/webhooks/calls/retell", content=json.dumps({"event": "call_ended"}))

        assert webhook.status_code == 200
        assert webhook.json()["status"] == "processed"
        call = (await client.get(f"{API}/calls/{done['result']['call_log_id']}")).json()
        assert call["status"] == "COMPLETED"
        assert call["duration_sec"] == 125

    @pytest.mark.asyncio
    async def test_webhook_for_inactive_provider_is_404(self, client):
        response = await client.post(f"{API}/webhooks/calls/twilio", content=b"{}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_forged_webhook_is_403(self, client, call_provider):
        call_provider.authenticate = MagicMock(side_effect=WebhookAuthenticationError("Invalid signature"))

        response = await client.post(f"{API}/webhooks/calls/retell", content=b"{}")

        assert response.status_code == 403
        assert response.json()["error"] == "WebhookAuthenticationError"

    @pytest.mark.asyncio
    async def test_webhook_request_carries_public_url(self, client, call_provider):
        seen = []
        call_provider.authenticate = lambda request: seen.append(request.url)
        call_provider.events = [None]

        await client.post(f"{API}/webhooks/calls/retell?attempt=2", content=b"{}")

        assert seen == ["http://localhost:8000/api/v1/webhooks/calls/retell?attempt=2"]


class TestOrdersApi:
    """Tests for /orders, payments and the payment webhook"""

    @pytest.mark.asyncio
    async def test_order_paid_through_webhook(self, client, product, payment_provider):
        lead = await create_lead(client)
        payment_provider.txn_ids = ["txn_1"]

        created = await client.post(f"{API}/orders", json={
            "lead_id": lead["id"], "items": [{"product_id": "prod-serum", "quantity": 2}],
        })
        assert created.status_code == 201
        order = created.json()
        assert order["total_amount"] == "299.00"

        link = await client.post(f"{API}/orders/{order['id']}/payment-link")
        assert link.status_code == 201
        assert link.json()["payment_url"] == "https://pay.example.com/txn_1"

        payment_provider.notifications = [PaymentNotification(provider_txn_id="txn_1", paid=True)]
        webhook = await client.post(f"{API}/webhooks/payments/stripe", content=b"{}")

        assert webhook.status_code == 200
        assert webhook.json()["order_status"] == "PAID"
        assert (await client.get(f"{API}/orders/{order['id']}")).json()["status"] == "PAID"
        payment = (await client.get(f"{API}/payments/{link.json()['id']}")).json()
        assert payment["status"] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_list_orders_by_lead(self, client, product):
        lead = await create_lead(client)
        created = (await client.post(f"{API}/orders", json={
            "lead_id": lead["id"], "items": [{"product_id": "prod-serum"}],
        })).json()

        response = await client.get(f"{API}/orders", params={"lead_id": lead["id"], "status": "PENDING"})

        assert response.status_code == 200
        assert [row["id"] for row in response.json()["orders"]] == [created["id"]]

    @pytest.mark.asyncio
    async def test_paid_status_cannot_be_posted(self, client, product):
        lead = await create_lead(client)
        order = (await client.post(f"{API}/orders", json={
            "lead_id": lead["id"], "items": [{"product_id": "prod-serum"}],
        })).json()

        response = await client.post(f"{API}/orders/{order['id']}/status", json={"status": "PAID"})

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_payment_link_provider_failure_is_502(self, client, product, payment_provider):
        lead = await create_lead(client)
        order = (await client.post(f"{API}/orders", json={
            "lead_id": lead["id"], "items": [{"product_id": "prod-serum"}],
        })).json()
        payment_provider.fail_create = True

        response = await client.post(f"{API}/orders/{order['id']}/payment-link")

        assert response.status_code == 502


class TestMessagingApi:
    """Tests for /whatsapp and the inbound webhook"""

    @pytest.mark.asyncio
    async def test_templates_listed(self, client):
        response = await client.get(f"{API}/whatsapp/templates")

        assert len(response.json()["templates"]) == 4

    @pytest.mark.asyncio
    async def test_send_requires_message_or_template(self, client):
        lead = await create_lead(client)

        response = await client.post(f"{API}/whatsapp/send", json={"lead_id": lead["id"]})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_inbound_cod(self, client, product):
        lead = await create_lead(client)
        order = (await client.post(f"{API}/orders", json={
            "lead_id": lead["id"], "items": [{"product_id": "prod-serum"}],
        })).json()

        response = await client.post(f"{API}/webhooks/whatsapp", json={
            "phone": "60123456789", "message": "COD", "timestamp": "2024-05-01T10:00:00",
        })

        assert response.json()["action"] == "cod_confirmed"
        assert (await client.get(f"{API}/orders/{order['id']}")).json()["status"] == "COD_CONFIRMED"

    @pytest.mark.asyncio
    async def test_malformed_inbound_acknowledged(self, client):
        response = await client.post(f"{API}/webhooks/whatsapp", content=b"not json")

        assert response.status_code == 200
        assert response.json()["status"] == "discarded"


class TestJobsApi:
    """Tests for exports and queue inspection"""

    @pytest.mark.asyncio
    async def test_export_queued_and_cancelled(self, client):
        accepted = await client.post(f"{API}/exports", json={"type": "LEADS", "user_id": "admin-1"})

        assert accepted.status_code == 202
        job_id = accepted.json()["job_id"]
        stats = (await client.get(f"{API}/jobs/exports/stats")).json()
        assert stats["waiting"] == 1

        cancelled = await client.delete(f"{API}/jobs/{job_id}")
        assert cancelled.json()["status"] == "cancelled"
        assert (await client.delete(f"{API}/jobs/{job_id}")).status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_lane_is_422(self, client):
        response = await client.get(f"{API}/jobs/sms/stats")

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_job_is_404(self, client):
        response = await client.get(f"{API}/jobs/nope")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_reports_reachable(self, client):
        assert (await client.get(f"{API}/reports/calls")).json()["total"] == 0
        assert (await client.get(f"{API}/reports/agents")).json() == {"agents": []}
        assert (await client.get(f"{API}/reports/revenue", params={"group_by": "weekly"})).status_code == 422

    @pytest.mark.asyncio
    async def test_dashboard_counts_todays_lead(self, client):
        await create_lead(client)

        board = (await client.get(f"{API}/reports/dashboard")).json()

        assert board["today"]["leads"] == 1
        assert board["month"]["leads"] == 1
        assert board["recent_activity"][0]["title"] == "Lead Created"


class TestAppLifespan:
    """The app started through its lifespan with an injected container"""

    def test_root_and_health(self, settings, config, redis_client, store,
                             call_provider, payment_provider, messaging_provider):
        from salescaller.container import build_container

        container = asyncio.run(build_container(
            settings, config,
            redis_client=redis_client,
            store=store,
            call_provider=call_provider,
            payment_provider=payment_provider,
            messaging_provider=messaging_provider,
        ))

        with TestClient(create_app(container)) as client:
            root = client.get("/")
            health = client.get(f"{API}/health")

        assert root.json() == {"message": "Sales Caller API", "status": "running"}
        body = health.json()
        assert body["status"] == "healthy"
        assert body["store"] == "memory"
        assert body["providers"] == {"calling": "RETELL", "payment": "STRIPE", "messaging": "wasapbot"}
        assert set(body["queues"]) == {"calls", "messaging", "exports"}
        # The injected container is not closed by the app
        assert redis_client.closed is False
