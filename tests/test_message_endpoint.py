from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from funnelbot.database import get_db
from funnelbot.main import app
from funnelbot.models import Handover
from funnelbot.services import calling_service, tag_service

from tests.helpers import BOT, CALLING_CONFIG, COUNTERPART, TENANT


@pytest.fixture
def client(db_session):
    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def inbound(**kwargs):
    body = {"tenant_id": TENANT, "bot_id": BOT, "counterpart": COUNTERPART, "counterpart_name": "Ana"}
    body.update(kwargs)
    return body


def payment_key():
    return {"tenant_id": TENANT, "bot_id": BOT, "counterpart": COUNTERPART}


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestInboundMessage:
    def test_first_contact_then_handle(self, client, active_funnel):
        first = client.post("/messages/inbound", json=inbound(text="hello"))

        assert first.status_code == 200
        data = first.json()
        assert data["success"] is True
        assert data["outcome"] == "entered"
        assert data["reply"] == "Hi! Want to know more?"
        assert data["state"]["current_node_id"] == "1"

        second = client.post("/messages/inbound", json=inbound(text="yes please", matched_handle="yes"))

        data = second.json()
        assert data["outcome"] == "moved"
        assert data["reply"] == "Great, which plan fits you?"
        assert data["state"]["current_node_id"] == "2"

    def test_unmatched_handle_holds(self, client, active_funnel):
        client.post("/messages/inbound", json=inbound())

        response = client.post("/messages/inbound", json=inbound(matched_handle="maybe"))

        data = response.json()
        assert data["outcome"] == "held"
        assert data["reply"] is None
        assert data["state"]["waiting_for_reply"] is True

    def test_without_funnel_only_records_contact(self, client):
        response = client.post("/messages/inbound", json=inbound(text="hello"))

        data = response.json()
        assert data["outcome"] == "inactive"
        assert data["state"]["counterpart_name"] == "Ana"

    def test_calling_runs_after_transition(self, client, db_session, active_funnel, active_subscription):
        calling_service.save_calling_config(db_session, TENANT, BOT, CALLING_CONFIG)
        db_session.commit()

        response = client.post("/messages/inbound", json=inbound(text="tell me more", calling_key="interested"))

        data = response.json()
        assert data["state"]["current_node_id"] == "1"
        assert data["calling"]["calling_key"] == "interested"
        assert data["calling"]["executed"] is True
        assert tag_service.list_tags(db_session, TENANT, BOT, COUNTERPART) == ["lead"]

    def test_human_request_alerts_after_commit(self, client, db_session, active_funnel, active_subscription):
        calling_service.save_calling_config(db_session, TENANT, BOT, CALLING_CONFIG)
        calling_service.update_calling_statuses(db_session, TENANT, BOT, [{"key": "human", "enabled": True}])
        db_session.commit()

        def alert(message, context):
            assert not db_session.in_transaction()
            return True

        with patch("funnelbot.services.escalation_service.alert_warning", side_effect=alert) as mock_alert:
            response = client.post("/messages/inbound", json=inbound(text="a person please", calling_key="human"))

        assert response.json()["calling"]["executed"] is True
        mock_alert.assert_called_once()
        assert db_session.query(Handover).one().notified_at is not None

    def test_missing_fields_rejected(self, client):
        response = client.post("/messages/inbound", json={"tenant_id": TENANT})
        assert response.status_code == 422


class TestPaymentEndpoints:
    def test_intent_then_webhook(self, client):
        intent = client.post(
            "/payments/intents",
            json={**payment_key(), "session_id": "sess-1", "amount": 5000, "gateway": "mercado-pago"},
        )
        assert intent.status_code == 200
        assert intent.json()["status"] == "pending"

        paid = client.post(
            "/payments/webhook",
            json={
                "session_key": payment_key(),
                "transaction_id": "tx-1",
                "amount_minor_units": 5000,
                "raw_status": "approved",
            },
        )
        assert paid.json()["result"] == "applied"
        assert paid.json()["status"] == "paid"

        late = client.post("/payments/poll", json={"session_key": payment_key(), "raw_status": "pending"})
        assert late.json()["result"] == "rejected"
        assert late.json()["status"] == "paid"

    def test_unknown_session_is_404(self, client):
        response = client.post("/payments/webhook", json={"session_key": payment_key(), "raw_status": "paid"})

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_unknown_status_is_400(self, client):
        client.post(
            "/payments/intents",
            json={**payment_key(), "session_id": "sess-1", "amount": 5000, "gateway": "stripe"},
        )

        response = client.post("/payments/webhook", json={"session_key": payment_key(), "raw_status": "teleported"})

        assert response.status_code == 400
        assert response.json()["success"] is False


class TestBillingEndpoints:
    def test_subscription_then_conflict(self, client):
        body = {"tenant_id": TENANT, "plan_name": "business", "payment_id": "pay-1"}

        created = client.post("/billing/subscriptions", json=body)
        assert created.status_code == 200
        assert created.json()["plan_name"] == "business"
        assert created.json()["status"] == "active"

        again = client.post("/billing/subscriptions", json={**body, "payment_id": "pay-2"})
        assert again.status_code == 409

    def test_slots_and_refund(self, client, active_subscription):
        slots = client.post("/billing/slots", json={"tenant_id": TENANT, "count": 2, "payment_id": "slot-pay-1"})
        assert slots.status_code == 200
        assert slots.json()["extra_slots"] == [{"count": 2, "payment_id": "slot-pay-1"}]

        refund = client.post(
            "/billing/refunds",
            json={
                "tenant_id": TENANT,
                "payment_id": "slot-pay-1",
                "session_id": "sess-9",
                "amount": 2000,
                "reason": "changed mind",
            },
        )
        assert refund.status_code == 200
        assert refund.json()["revoked"] == "extra_slots"

    def test_expire_job(self, client):
        response = client.post("/jobs/subscriptions/expire")
        assert response.json() == {"expired": 0}
