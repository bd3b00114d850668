"""
Tests for Stripe checkout and webhook handling
"""
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import stripe
from fastapi.testclient import TestClient

from coachhub.core.errors import (
    ExternalServiceError,
    InvalidRequestError,
    NotFoundError,
    ServiceNotConfiguredError,
)
from coachhub.main import app
from coachhub.services import billing


def event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


def signed(body, secret="whsec_test"):
    """Serialize an event and sign it the way Stripe signs webhook deliveries."""
    payload = json.dumps(body)
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return payload.encode(), f"t={timestamp},v1={signature}"


def ts(dt):
    return int(dt.timestamp())


class TestHelpers:

    @pytest.mark.parametrize("stripe_status,expected", [
        ("active", "active"),
        ("incomplete", "past_due"),
        ("unpaid", "past_due"),
        ("incomplete_expired", "canceled"),
        ("paused", "none"),
        (None, "none"),
    ])
    def test_map_stripe_status(self, stripe_status, expected):
        assert billing.map_stripe_status(stripe_status).value == expected

    def test_tier_from_price_id(self, stripe_configured):
        assert billing.get_tier_from_price_id("price_plus_m") == "plus"
        assert billing.get_tier_from_price_id("price_premium_y") == "premium"
        assert billing.get_tier_from_price_id("price_other") is None

    def test_missing_price_id(self, stripe_configured):
        with pytest.raises(InvalidRequestError):
            billing.get_price_id("plus", "yearly")


class TestCheckout:

    def test_checkout_creates_customer_once(self, fake_db, team, stripe_configured):
        with patch("stripe.Customer.create", return_value={"id": "cus_1"}) as create_customer, \
                patch("stripe.checkout.Session.create", return_value={"url": "https://stripe.test/s"}) as create_session:
            url = billing.create_checkout_session(team, "user-1", "coach@example.com", "plus", "monthly")
            team = fake_db.rows("teams", id=team["id"])[0]
            billing.create_checkout_session(team, "user-1", "coach@example.com", "plus", "monthly")

        assert url == "https://stripe.test/s"
        assert create_customer.call_count == 1
        kwargs = create_session.call_args.kwargs
        assert kwargs["customer"] == "cus_1"
        assert kwargs["line_items"] == [{"price": "price_plus_m", "quantity": 1}]
        assert kwargs["metadata"]["team_id"] == team["id"]
        assert fake_db.rows("organizations")[0]["stripe_customer_id"] == "cus_1"

    def test_basic_needs_no_checkout(self, fake_db, team, stripe_configured):
        with pytest.raises(InvalidRequestError):
            billing.create_checkout_session(team, "user-1", None, "basic", "monthly")

    def test_not_configured(self, fake_db, team):
        with pytest.raises(ServiceNotConfiguredError):
            billing.create_checkout_session(team, "user-1", None, "plus", "monthly")

    def test_token_checkout_metadata(self, fake_db, team, stripe_configured):
        with patch("stripe.Customer.create", return_value={"id": "cus_1"}), \
                patch("stripe.checkout.Session.create", return_value={"url": "https://stripe.test/t"}) as create_session:
            billing.create_token_checkout(team, "user-1", None, 3, "opponent")

        kwargs = create_session.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["line_items"][0]["quantity"] == 3
        assert kwargs["metadata"] == {
            "purchase_type": "tokens",
            "team_id": team["id"],
            "user_id": "user-1",
            "quantity": "3",
            "game_type": "opponent",
        }

    def test_stripe_error_becomes_502(self, fake_db, team, stripe_configured):
        with patch("stripe.Customer.create", side_effect=stripe.StripeError("boom")):
            with pytest.raises(ExternalServiceError):
                billing.create_checkout_session(team, "user-1", None, "plus", "monthly")

    def test_cancel_requires_paid_subscription(self, fake_db, team, stripe_configured):
        with pytest.raises(NotFoundError):
            billing.cancel_subscription(team["id"], "user-1")

    def test_cancel_at_period_end(self, fake_db, team, stripe_configured):
        fake_db.tables["subscriptions"][0]["stripe_subscription_id"] = "sub_1"
        with patch("stripe.Subscription.modify") as modify:
            subscription = billing.cancel_subscription(team["id"], "user-1")

        modify.assert_called_once_with("sub_1", cancel_at_period_end=True)
        assert subscription["cancel_at_period_end"] is True
        assert fake_db.rows("audit_logs", action="subscription.cancel_requested")


class TestWebhookVerification:

    def test_missing_secret(self, fake_db):
        with pytest.raises(ServiceNotConfiguredError) as exc:
            billing.construct_webhook_event(b"{}", "sig")
        assert exc.value.status_code == 500

    def test_missing_signature(self, stripe_configured):
        with pytest.raises(InvalidRequestError):
            billing.construct_webhook_event(b"{}", None)

    def test_bad_signature(self, stripe_configured):
        with patch("stripe.Webhook.construct_event", side_effect=stripe.SignatureVerificationError("bad", "sig")):
            with pytest.raises(InvalidRequestError):
                billing.construct_webhook_event(b"{}", "sig")

    def test_route_rejects_bad_signature(self, client, stripe_configured):
        with patch("stripe.Webhook.construct_event", side_effect=stripe.SignatureVerificationError("bad", "sig")):
            response = client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "sig"})
        assert response.status_code == 400

    def test_signed_event_returns_plain_dict(self, stripe_configured):
        payload, header = signed(event("invoice.paid", {"id": "in_1", "object": "invoice"}))

        parsed = billing.construct_webhook_event(payload, header)

        assert type(parsed) is dict
        assert parsed["data"]["object"].get("id") == "in_1"

    def test_wrong_secret_rejected(self, stripe_configured):
        payload, header = signed(event("invoice.paid", {"id": "in_1"}), secret="whsec_other")
        with pytest.raises(InvalidRequestError):
            billing.construct_webhook_event(payload, header)

    def test_route_applies_signed_token_purchase(self, client, fake_db, team, token_balance, stripe_configured):
        session = {"id": "cs_1", "object": "checkout.session", "payment_intent": "pi_1",
                   "metadata": {"purchase_type": "tokens", "team_id": team["id"], "quantity": "2"}}
        payload, header = signed(event("checkout.session.completed", session))

        response = client.post("/api/webhooks/stripe", content=payload, headers={"stripe-signature": header})

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert fake_db.rows("token_balance")[0]["team_purchased_tokens_available"] == 3


class TestWebhookEvents:

    def test_token_purchase_is_idempotent(self, fake_db, team, token_balance):
        session = {"id": "cs_1", "payment_intent": "pi_1",
                   "metadata": {"purchase_type": "tokens", "team_id": team["id"], "quantity": "2",
                                "game_type": "opponent"}}
        billing.handle_webhook_event(event("checkout.session.completed", session))
        billing.handle_webhook_event(event("checkout.session.completed", session))

        assert fake_db.rows("token_balance")[0]["opponent_purchased_tokens_available"] == 2

    def test_subscription_updated_writes_row(self, fake_db, team, stripe_configured):
        now = datetime.now(timezone.utc)
        subscription = {
            "id": "sub_1",
            "status": "active",
            "metadata": {"team_id": team["id"]},
            "items": {"data": [{"price": {"id": "price_plus_m"}}]},
            "current_period_start": ts(now),
            "current_period_end": ts(now + timedelta(days=30)),
            "cancel_at_period_end": False,
        }
        billing.handle_webhook_event(event("customer.subscription.updated", subscription))

        row = fake_db.rows("subscriptions", team_id=team["id"])[0]
        assert row["tier"] == "plus"
        assert row["status"] == "active"
        assert row["stripe_subscription_id"] == "sub_1"
        assert row["billing_waived"] is False
        # No balance yet, so the tier's allocation is granted
        assert fake_db.rows("token_balance")[0]["team_subscription_tokens_available"] == 2

    def test_past_due_starts_grace_period_once(self, fake_db, team):
        subscription = {"id": "sub_1", "status": "past_due", "metadata": {"team_id": team["id"], "tier": "plus"}}
        billing.handle_webhook_event(event("customer.subscription.updated", subscription))
        first = fake_db.rows("subscriptions")[0]["past_due_since"]
        assert first

        billing.handle_webhook_event(event("customer.subscription.updated", subscription))
        assert fake_db.rows("subscriptions")[0]["past_due_since"] == first

        subscription["status"] = "active"
        billing.handle_webhook_event(event("customer.subscription.updated", subscription))
        assert fake_db.rows("subscriptions")[0]["past_due_since"] is None

    def test_signup_flow_subscription_has_no_team(self, fake_db):
        subscription = {"id": "sub_9", "status": "active",
                        "metadata": {"signup_flow": "true", "user_id": "user-9", "tier": "premium"}}
        billing.handle_webhook_event(event("customer.subscription.created", subscription))
        billing.handle_webhook_event(event("customer.subscription.updated", subscription))

        rows = fake_db.rows("subscriptions", user_id="user-9")
        assert len(rows) == 1
        assert rows[0]["team_id"] is None
        assert rows[0]["tier"] == "premium"

    def test_subscription_deleted(self, fake_db, team):
        billing.handle_webhook_event(event("customer.subscription.deleted", {"id": "sub_1", "metadata": {"team_id": team["id"]}}))
        assert fake_db.rows("subscriptions")[0]["status"] == "canceled"

    def test_cycle_invoice_refreshes_tokens(self, fake_db, team, token_balance):
        fake_db.tables["subscriptions"][0]["stripe_subscription_id"] = "sub_1"
        org = fake_db.seed("organizations", name="Eagles", stripe_customer_id="cus_1")
        now = datetime.now(timezone.utc)
        invoice = {
            "id": "in_1",
            "customer": "cus_1",
            "subscription": "sub_1",
            "billing_reason": "subscription_cycle",
            "amount_paid": 7900,
            "currency": "usd",
            "lines": {"data": [{"period": {"start": ts(now), "end": ts(now + timedelta(days=30))}}]},
        }
        billing.handle_webhook_event(event("invoice.paid", invoice))
        assert fake_db.rows("token_balance")[0]["team_subscription_tokens_available"] == 6

        billing.handle_webhook_event(event("invoice.paid", invoice))
        invoices = fake_db.rows("invoices")
        assert len(invoices) == 1
        assert invoices[0]["organization_id"] == org["id"]
        assert fake_db.rows("audit_logs", action="tokens.refreshed")

    def test_failed_invoice_marks_past_due(self, fake_db, team):
        fake_db.tables["subscriptions"][0]["stripe_subscription_id"] = "sub_1"
        billing.handle_webhook_event(event("invoice.payment_failed", {"id": "in_2", "subscription": "sub_1"}))

        row = fake_db.rows("subscriptions")[0]
        assert row["status"] == "past_due"
        assert row["past_due_since"]
        assert fake_db.rows("audit_logs", action="stripe.invoice_failed")

    def test_unknown_event_ignored(self, fake_db):
        assert billing.handle_webhook_event(event("customer.created", {})) == {"received": True}

    def test_handler_failure_still_acknowledged(self, fake_db, monkeypatch):
        failing = MagicMock(side_effect=RuntimeError("db down"))
        monkeypatch.setitem(billing.EVENT_HANDLERS, "invoice.paid", failing)

        assert billing.handle_webhook_event(event("invoice.paid", {"id": "in_3"})) == {"received": True}
        failing.assert_called_once()


class TestRoutes:

    def test_token_summary(self, client, team, token_balance):
        body = client.get(f"/api/teams/{team['id']}/tokens").json()
        assert body["team_available"] == 3
        assert body["opponent_available"] == 1

    def test_checkout_route_owner_only(self, client, fake_db, user, stripe_configured):
        shared = fake_db.seed("teams", name="Bears", user_id="someone-else")
        fake_db.seed("team_memberships", team_id=shared["id"], user_id=str(user.id), role="coach", is_active=True)

        response = client.post(f"/api/teams/{shared['id']}/billing/checkout", json={"tier": "plus"})
        assert response.status_code == 403

    def test_checkout_route(self, client, team, stripe_configured):
        with patch("stripe.Customer.create", return_value={"id": "cus_1"}), \
                patch("stripe.checkout.Session.create", return_value={"url": "https://stripe.test/s"}):
            response = client.post(f"/api/teams/{team['id']}/billing/checkout",
                                   json={"tier": "premium", "billing_cycle": "yearly"})
        assert response.json() == {"url": "https://stripe.test/s"}

    def test_portal_needs_customer(self, client, team, stripe_configured):
        response = client.post(f"/api/teams/{team['id']}/billing/portal")
        assert response.status_code == 400

    def test_public_tier_list(self, fake_db):
        tiers = TestClient(app).get("/api/billing/tiers").json()["tiers"]
        assert [t["tier"] for t in tiers] == ["basic", "plus", "premium"]

    def test_subscription_with_entitlements(self, client, team):
        body = client.get(f"/api/teams/{team['id']}/subscription").json()
        assert body["subscription"]["tier"] == "premium"
        assert body["entitlements"]["has_access"] is True
