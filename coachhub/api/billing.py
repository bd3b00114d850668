"""Token, subscription and Stripe billing routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.concurrency import run_in_threadpool

from coachhub.auth.auth import TeamContext, require_team_access, require_team_owner, require_team_staff
from coachhub.models.schemas import CheckoutRequest, TokenCheckoutRequest
from coachhub.services import billing, tiers, tokens

router = APIRouter(tags=["billing"])


# ===== Tokens =====

@router.get("/api/teams/{team_id}/tokens")
def get_tokens(ctx: TeamContext = Depends(require_team_access)):
    return tokens.get_balance_summary(ctx.team_id)


@router.get("/api/teams/{team_id}/tokens/transactions")
def get_token_transactions(
    limit: int = Query(50, ge=1, le=200),
    transaction_type: Optional[str] = None,
    ctx: TeamContext = Depends(require_team_access),
):
    return {"transactions": tokens.get_transactions(ctx.team_id, limit, transaction_type)}


@router.post("/api/teams/{team_id}/tokens/checkout")
def buy_tokens(data: TokenCheckoutRequest, ctx: TeamContext = Depends(require_team_staff)):
    url = billing.create_token_checkout(ctx.team, ctx.user_id, ctx.user.email, data.quantity, data.game_type.value)
    return {"url": url}


# ===== Subscription =====

@router.get("/api/teams/{team_id}/subscription")
def get_subscription(ctx: TeamContext = Depends(require_team_access)):
    return {"subscription": tiers.get_subscription(ctx.team_id), "entitlements": tiers.get_team_entitlements(ctx.team_id)}


@router.get("/api/teams/{team_id}/entitlements")
def get_entitlements(ctx: TeamContext = Depends(require_team_access)):
    return tiers.get_team_entitlements(ctx.team_id)


@router.get("/api/billing/tiers")
def list_tiers():
    return {"tiers": tiers.list_tier_configs()}


@router.post("/api/teams/{team_id}/billing/checkout")
def start_checkout(data: CheckoutRequest, ctx: TeamContext = Depends(require_team_owner)):
    url = billing.create_checkout_session(
        ctx.team, ctx.user_id, ctx.user.email, data.tier.value, data.billing_cycle.value,
    )
    return {"url": url}


@router.post("/api/teams/{team_id}/billing/portal")
def open_portal(ctx: TeamContext = Depends(require_team_owner)):
    return {"url": billing.create_portal_session(ctx.team)}


@router.post("/api/teams/{team_id}/billing/cancel")
def cancel(ctx: TeamContext = Depends(require_team_owner)):
    return {"subscription": billing.cancel_subscription(ctx.team_id, ctx.user_id)}


# ===== Webhooks =====

@router.post("/api/webhooks/stripe")
async def stripe_webhook(request: Request, stripe_signature: Optional[str] = Header(default=None)):
    payload = await request.body()
    event = billing.construct_webhook_event(payload, stripe_signature)
    return await run_in_threadpool(billing.handle_webhook_event, event)
