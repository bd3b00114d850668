"""
Stripe billing: checkout, customer portal, cancellation and webhooks.

Subscription state is written from webhooks only; checkout just sends the
coach to Stripe with team metadata that comes back on every event.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import stripe

from coachhub.core.config import settings
from coachhub.core.errors import (
    ExternalServiceError,
    InvalidRequestError,
    NotFoundError,
    ServiceNotConfiguredError,
)
from coachhub.db import database as db
from coachhub.models.schemas import BillingCycle, GameType, SubscriptionStatus, SubscriptionTier
from coachhub.services import tiers, tokens

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def _configure_stripe() -> None:
    if not settings.stripe_configured:
        raise ServiceNotConfiguredError("Billing is not configured")
    stripe.api_key = settings.stripe_secret_key


def map_stripe_status(status: Optional[str]) -> SubscriptionStatus:
    return STATUS_MAP.get(status or "", SubscriptionStatus.NONE)


def get_tier_from_price_id(price_id: Optional[str]) -> Optional[str]:
    for key, configured in settings.price_ids().items():
        if configured and configured == price_id:
            return key.split("_")[0]
    return None


def get_price_id(tier: str, billing_cycle: str) -> str:
    price_id = settings.price_ids().get(f"{tier}_{billing_cycle}")
    if not price_id:
        raise InvalidRequestError(f"No Stripe price configured for {tier} ({billing_cycle})")
    return price_id


def _from_timestamp(value: Optional[int]) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


# =============================================================================
# Customers
# =============================================================================

def _get_organization(team: dict) -> dict:
    """Organization that owns the team's Stripe customer; created on first checkout."""
    client = db.require_client()
    if team.get("organization_id"):
        org = db.first_row(
            client.table("organizations")
            .select("*")
            .eq("id", team["organization_id"])
            .limit(1)
            .execute()
        )
        if org:
            return org

    org = client.table("organizations").insert({
        "name": team.get("name") or "Team",
        "owner_user_id": team.get("user_id"),
    }).execute().data[0]
    client.table("teams").update({"organization_id": org["id"]}).eq("id", team["id"]).execute()
    return org


def get_or_create_customer(team: dict, email: Optional[str]) -> str:
    org = _get_organization(team)
    if org.get("stripe_customer_id"):
        return org["stripe_customer_id"]

    try:
        customer = stripe.Customer.create(
            email=email,
            name=org.get("name"),
            metadata={"organization_id": str(org["id"]), "team_id": str(team["id"])},
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe customer creation failed: {e}")
        raise ExternalServiceError("Could not create billing customer")

    db.require_client().table("organizations").update({
        "stripe_customer_id": customer["id"],
    }).eq("id", org["id"]).execute()
    logger.info(f"Created Stripe customer {customer['id']} for organization {org['id']}")
    return customer["id"]


# =============================================================================
# Checkout / portal / cancel
# =============================================================================

def create_checkout_session(team: dict, user_id: str, email: Optional[str], tier: str, billing_cycle: str) -> str:
    _configure_stripe()
    if tier == SubscriptionTier.BASIC.value:
        raise InvalidRequestError("The basic plan does not need checkout")

    price_id = get_price_id(tier, billing_cycle)
    customer_id = get_or_create_customer(team, email)
    metadata = {
        "team_id": str(team["id"]),
        "user_id": str(user_id),
        "tier": tier,
        "billing_cycle": billing_cycle,
    }
    try:
        session = stripe.checkout.Session.create(
            customer=customer_id,
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{settings.app_url}/teams/{team['id']}/settings?checkout=success",
            cancel_url=f"{settings.app_url}/teams/{team['id']}/settings?checkout=canceled",
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout failed for team {team['id']}: {e}")
        raise ExternalServiceError("Could not start checkout")
    return session["url"]


def create_token_checkout(team: dict, user_id: str, email: Optional[str], quantity: int, game_type: str) -> str:
    _configure_stripe()
    customer_id = get_or_create_customer(team, email)
    try:
        session = stripe.checkout.Session.create(
            customer=customer_id,
            mode="payment",
            line_items=[{
                "price_data": {
                    "currency": "usd",
                    "unit_amount": settings.token_pack_price_cents,
                    "product_data": {"name": f"Film upload token ({game_type})"},
                },
                "quantity": quantity,
            }],
            success_url=f"{settings.app_url}/teams/{team['id']}/settings?tokens=success",
            cancel_url=f"{settings.app_url}/teams/{team['id']}/settings?tokens=canceled",
            metadata={
                "purchase_type": "tokens",
                "team_id": str(team["id"]),
                "user_id": str(user_id),
                "quantity": str(quantity),
                "game_type": game_type,
            },
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe token checkout failed for team {team['id']}: {e}")
        raise ExternalServiceError("Could not start checkout")
    return session["url"]


def create_portal_session(team: dict) -> str:
    _configure_stripe()
    org = _get_organization(team)
    if not org.get("stripe_customer_id"):
        raise InvalidRequestError("This team has no billing account yet")
    try:
        session = stripe.billing_portal.Session.create(
            customer=org["stripe_customer_id"],
            return_url=f"{settings.app_url}/teams/{team['id']}/settings",
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe portal session failed: {e}")
        raise ExternalServiceError("Could not open billing portal")
    return session["url"]


def cancel_subscription(team_id: str, user_id: str) -> dict:
    _configure_stripe()
    subscription = tiers.get_subscription(team_id)
    if not subscription or not subscription.get("stripe_subscription_id"):
        raise NotFoundError("No paid subscription to cancel")

    try:
        stripe.Subscription.modify(subscription["stripe_subscription_id"], cancel_at_period_end=True)
    except stripe.StripeError as e:
        logger.error(f"Stripe cancel failed for team {team_id}: {e}")
        raise ExternalServiceError("Could not cancel subscription")

    result = (
        db.require_client().table("subscriptions")
        .update({"cancel_at_period_end": True, "updated_at": db.now_iso()})
        .eq("team_id", str(team_id))
        .execute()
    )
    db.log_audit_event("subscription.cancel_requested", actor_id=user_id, target_type="team", target_id=team_id,
                       metadata={"stripe_subscription_id": subscription["stripe_subscription_id"]})
    return result.data[0] if result.data else {**subscription, "cancel_at_period_end": True}


# =============================================================================
# Webhooks
# =============================================================================

def construct_webhook_event(payload: bytes, signature: Optional[str]) -> dict:
    """Verify the Stripe signature and return the event as plain JSON."""
    if not settings.stripe_webhook_secret:
        raise ServiceNotConfiguredError("Stripe webhook secret is not configured", status_code=500)
    if not signature:
        raise InvalidRequestError("Missing stripe-signature header")
    try:
        stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning(f"Stripe webhook signature verification failed: {e}")
        raise InvalidRequestError("Invalid signature")
    return json.loads(payload)


def _handle_checkout_completed(session: dict) -> None:
    metadata = session.get("metadata") or {}
    team_id = metadata.get("team_id")

    if metadata.get("purchase_type") == "tokens":
        if not team_id:
            logger.error(f"Token checkout {session.get('id')} has no team_id")
            return
        payment_id = session.get("payment_intent") or session.get("id")
        quantity = int(metadata.get("quantity") or 1) * settings.tokens_per_pack
        tokens.add_purchased_tokens(team_id, quantity, payment_id, metadata.get("game_type") or GameType.TEAM.value)
        return

    user_id = metadata.get("user_id")
    if metadata.get("signup_flow") == "true" and user_id:
        db.log_audit_event("stripe.signup_checkout_completed", target_type="user", target_id=user_id,
                           metadata={"session_id": session.get("id"), "tier": metadata.get("tier"),
                                     "billing_cycle": metadata.get("billing_cycle"), "customer": session.get("customer")})
        return

    if not team_id:
        logger.error(f"Checkout {session.get('id')} completed without team_id")
        return
    db.log_audit_event("stripe.checkout_completed", target_type="team", target_id=team_id,
                       metadata={"session_id": session.get("id"), "tier": metadata.get("tier"),
                                 "billing_cycle": metadata.get("billing_cycle"), "customer": session.get("customer")})


def _subscription_price(subscription: dict) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0]["price"]["id"] if items else None


def _handle_subscription_updated(subscription: dict) -> None:
    metadata = subscription.get("metadata") or {}
    team_id = metadata.get("team_id")
    user_id = metadata.get("user_id")
    price_id = _subscription_price(subscription)
    tier = metadata.get("tier") or get_tier_from_price_id(price_id) or SubscriptionTier.PLUS.value
    status = map_stripe_status(subscription.get("status")).value
    period_start = _from_timestamp(subscription.get("current_period_start"))
    period_end = _from_timestamp(subscription.get("current_period_end"))
    client = db.require_client()

    if metadata.get("signup_flow") == "true" and user_id and not team_id:
        row = {
            "user_id": user_id,
            "tier": tier,
            "status": status,
            "stripe_subscription_id": subscription.get("id"),
            "stripe_price_id": price_id,
            "current_period_start": period_start,
            "current_period_end": period_end,
            "updated_at": db.now_iso(),
        }
        existing = db.first_row(
            client.table("subscriptions").select("id").eq("user_id", user_id).is_("team_id", "null").limit(1).execute()
        )
        if existing:
            client.table("subscriptions").update(row).eq("id", existing["id"]).execute()
        else:
            client.table("subscriptions").insert({**row, "team_id": None}).execute()
        db.log_audit_event("subscription.signup_created", target_type="user", target_id=user_id,
                           metadata={"status": status, "tier": tier, "stripe_subscription_id": subscription.get("id")})
        return

    if not team_id:
        logger.error(f"Subscription {subscription.get('id')} has no team_id")
        return

    previous = tiers.get_subscription(team_id) or {}
    row = {
        "team_id": team_id,
        "tier": tier,
        "status": status,
        "stripe_subscription_id": subscription.get("id"),
        "stripe_price_id": price_id,
        "current_period_start": period_start,
        "current_period_end": period_end,
        "trial_ends_at": _from_timestamp(subscription.get("trial_end")),
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        "canceled_at": _from_timestamp(subscription.get("canceled_at")),
        "billing_waived": False,
        "updated_at": db.now_iso(),
    }
    was_past_due = previous.get("status") == SubscriptionStatus.PAST_DUE.value
    if status == SubscriptionStatus.PAST_DUE.value and not was_past_due:
        row["past_due_since"] = db.now_iso()
        logger.info(f"Team {team_id} entered past_due; grace period started")
    elif status != SubscriptionStatus.PAST_DUE.value and was_past_due:
        row["past_due_since"] = None

    client.table("subscriptions").upsert(row, on_conflict="team_id").execute()

    if tokens.get_balance(team_id) is None:
        start = db.parse_timestamp(period_start) or db.utc_now()
        end = db.parse_timestamp(period_end) or start + timedelta(days=tokens.PERIOD_DAYS)
        tokens.initialize_subscription_tokens(team_id, tier, start, end)

    db.log_audit_event("subscription.updated", target_type="team", target_id=team_id,
                       metadata={"status": status, "tier": tier, "stripe_subscription_id": subscription.get("id"),
                                 "period_end": period_end})
    logger.info(f"Subscription for team {team_id}: status={status}, tier={tier}")


def _handle_subscription_deleted(subscription: dict) -> None:
    team_id = (subscription.get("metadata") or {}).get("team_id")
    if not team_id:
        logger.error(f"Deleted subscription {subscription.get('id')} has no team_id")
        return

    db.require_client().table("subscriptions").update({
        "status": SubscriptionStatus.CANCELED.value,
        "canceled_at": db.now_iso(),
        "updated_at": db.now_iso(),
    }).eq("team_id", team_id).execute()
    db.log_audit_event("subscription.canceled", target_type="team", target_id=team_id,
                       metadata={"stripe_subscription_id": subscription.get("id")})


def _subscription_by_stripe_id(stripe_subscription_id: Optional[str]) -> Optional[dict]:
    if not stripe_subscription_id:
        return None
    return db.first_row(
        db.require_client().table("subscriptions")
        .select("*")
        .eq("stripe_subscription_id", stripe_subscription_id)
        .limit(1)
        .execute()
    )


def _organization_by_customer(customer_id: Optional[str]) -> Optional[dict]:
    if not customer_id:
        return None
    return db.first_row(
        db.require_client().table("organizations")
        .select("*")
        .eq("stripe_customer_id", customer_id)
        .limit(1)
        .execute()
    )


def _handle_invoice_paid(invoice: dict) -> None:
    subscription = _subscription_by_stripe_id(invoice.get("subscription"))

    if invoice.get("billing_reason") == "subscription_cycle" and subscription and subscription.get("team_id"):
        lines = (invoice.get("lines") or {}).get("data") or []
        period = (lines[0].get("period") or {}) if lines else {}
        start = db.parse_timestamp(_from_timestamp(period.get("start"))) or db.utc_now()
        end = db.parse_timestamp(_from_timestamp(period.get("end"))) or start + timedelta(days=tokens.PERIOD_DAYS)
        tokens.refresh_subscription_tokens(subscription["team_id"], subscription.get("tier"), start, end)
        db.log_audit_event("tokens.refreshed", target_type="team", target_id=subscription["team_id"],
                           metadata={"tier": subscription.get("tier"), "invoice_id": invoice.get("id"),
                                     "period_start": start.isoformat(), "period_end": end.isoformat()})

    org = _organization_by_customer(invoice.get("customer"))
    if not org:
        logger.info(f"No organization for Stripe customer {invoice.get('customer')}")
        return

    db.require_client().table("invoices").upsert({
        "organization_id": org["id"],
        "stripe_invoice_id": invoice.get("id"),
        "amount_cents": invoice.get("amount_paid"),
        "currency": invoice.get("currency"),
        "status": "paid",
        "invoice_date": _from_timestamp(invoice.get("created")),
        "paid_at": db.now_iso(),
        "invoice_pdf_url": invoice.get("invoice_pdf"),
    }, on_conflict="stripe_invoice_id").execute()


def _handle_invoice_failed(invoice: dict) -> None:
    subscription = _subscription_by_stripe_id(invoice.get("subscription"))
    if subscription and subscription.get("team_id"):
        update = {"status": SubscriptionStatus.PAST_DUE.value, "updated_at": db.now_iso()}
        if not subscription.get("past_due_since"):
            update["past_due_since"] = db.now_iso()
        db.require_client().table("subscriptions").update(update).eq("team_id", subscription["team_id"]).execute()

    org = _organization_by_customer(invoice.get("customer"))
    target_type, target_id = ("organization", org["id"]) if org else ("team", (subscription or {}).get("team_id"))
    db.log_audit_event("stripe.invoice_failed", target_type=target_type, target_id=target_id,
                       metadata={"stripe_invoice_id": invoice.get("id"), "amount": invoice.get("amount_due"),
                                 "attempt_count": invoice.get("attempt_count")})


EVENT_HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    "customer.subscription.created": _handle_subscription_updated,
    "customer.subscription.updated": _handle_subscription_updated,
    "customer.subscription.deleted": _handle_subscription_deleted,
    "invoice.paid": _handle_invoice_paid,
    "invoice.payment_failed": _handle_invoice_failed,
}


def handle_webhook_event(event: dict) -> dict:
    """Dispatch a verified event. Handler failures are logged and still acknowledged."""
    event_type = event["type"]
    handler = EVENT_HANDLERS.get(event_type)
    if not handler:
        logger.info(f"Ignoring Stripe event {event_type}")
        return {"received": True}

    try:
        handler(event["data"]["object"])
    except Exception:
        logger.exception(f"Error handling Stripe event {event_type} ({event.get('id')})")
    return {"received": True}
