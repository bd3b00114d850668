"""Admin-managed free trials: a trialing subscription plus an AI credit allowance."""

import logging
import math
from datetime import timedelta
from typing import Any, Optional

from coachhub.core.config import settings
from coachhub.core.errors import InvalidRequestError, NotFoundError
from coachhub.db import database as db
from coachhub.models.schemas import SubscriptionStatus, TrialStatus
from coachhub.services import tiers

logger = logging.getLogger(__name__)


def get_platform_config(key: str) -> Any:
    client = db.require_client()
    row = db.first_row(client.table("platform_config").select("value").eq("key", key).limit(1).execute())
    return row.get("value") if row else None


def _current_credits(team_id: str) -> Optional[dict]:
    client = db.require_client()
    result = (
        client.table("ai_credits")
        .select("*")
        .eq("team_id", str(team_id))
        .gte("period_end", db.now_iso())
        .order("period_end", desc=True)
        .limit(1)
        .execute()
    )
    return db.first_row(result)


def get_trial_status(team_id: str) -> TrialStatus:
    team = db.require_team(team_id)
    subscription = tiers.get_subscription(team_id)

    status = TrialStatus(
        team_id=team["id"],
        team_name=team.get("name") or "",
        has_had_trial=bool(team.get("has_had_trial")),
    )
    if not subscription:
        return status

    status.tier = subscription.get("tier")
    status.status = subscription.get("status") or SubscriptionStatus.NONE.value
    status.is_trialing = status.status == SubscriptionStatus.TRIALING.value
    status.trial_ends_at = db.parse_timestamp(subscription.get("trial_ends_at"))

    if status.is_trialing:
        if status.trial_ends_at:
            seconds = (status.trial_ends_at - db.utc_now()).total_seconds()
            status.days_remaining = max(0, math.ceil(seconds / 86400))
        credits = _current_credits(team_id)
        if credits:
            status.ai_credits_used = credits.get("credits_used") or 0
            status.ai_credits_allowed = credits.get("credits_allowed") or 0
    return status


def start_trial(
    team_id: str,
    admin_id: str,
    tier: str,
    duration_days: Optional[int] = None,
    ai_credits_limit: Optional[int] = None,
) -> dict:
    team = db.require_team(team_id)
    duration_days = duration_days or get_platform_config("trial_duration_days") or settings.trial_default_days
    ai_credits_limit = ai_credits_limit if ai_credits_limit is not None else (
        get_platform_config("trial_ai_credits_limit") or settings.trial_default_ai_credits
    )

    now = db.utc_now()
    trial_end = now + timedelta(days=int(duration_days))
    client = db.require_client()

    client.table("subscriptions").upsert({
        "team_id": str(team_id),
        "tier": tier,
        "status": SubscriptionStatus.TRIALING.value,
        "trial_ends_at": trial_end.isoformat(),
        "billing_waived": False,
        "current_period_start": now.isoformat(),
        "current_period_end": trial_end.isoformat(),
        "updated_at": now.isoformat(),
    }, on_conflict="team_id").execute()

    client.table("ai_credits").upsert({
        "team_id": str(team_id),
        "credits_allowed": int(ai_credits_limit),
        "credits_used": 0,
        "period_start": now.isoformat(),
        "period_end": trial_end.isoformat(),
    }, on_conflict="team_id,period_start").execute()

    client.table("teams").update({"has_had_trial": True}).eq("id", str(team_id)).execute()

    db.log_audit_event("trial.started", actor_id=admin_id, target_type="team", target_id=team_id,
                       metadata={"team_name": team.get("name"), "tier": tier, "duration_days": duration_days,
                                 "ai_credits_limit": ai_credits_limit})
    logger.info(f"Started {duration_days}-day {tier} trial for team {team_id}")
    return {
        "success": True,
        "trial_ends_at": trial_end.isoformat(),
        "tier": tier,
        "duration_days": duration_days,
        "ai_credits_limit": ai_credits_limit,
    }


def _require_subscription(team_id: str) -> dict:
    subscription = tiers.get_subscription(team_id)
    if not subscription:
        raise NotFoundError("No subscription found for this team")
    return subscription


def extend_trial(team_id: str, admin_id: str, additional_days: int) -> dict:
    subscription = _require_subscription(team_id)
    if subscription.get("status") != SubscriptionStatus.TRIALING.value:
        raise InvalidRequestError("Team is not currently in a trial")

    now = db.utc_now()
    current_end = db.parse_timestamp(subscription.get("trial_ends_at")) or now
    new_end = max(current_end, now) + timedelta(days=additional_days)

    client = db.require_client()
    client.table("subscriptions").update({
        "trial_ends_at": new_end.isoformat(),
        "current_period_end": new_end.isoformat(),
    }).eq("team_id", str(team_id)).execute()
    (
        client.table("ai_credits")
        .update({"period_end": new_end.isoformat()})
        .eq("team_id", str(team_id))
        .gte("period_end", now.isoformat())
        .execute()
    )

    db.log_audit_event("trial.extended", actor_id=admin_id, target_type="team", target_id=team_id,
                       metadata={"additional_days": additional_days,
                                 "previous_end": subscription.get("trial_ends_at"), "new_end": new_end.isoformat()})
    return {
        "success": True,
        "previous_end": subscription.get("trial_ends_at"),
        "new_end": new_end.isoformat(),
        "additional_days": additional_days,
    }


def end_trial(team_id: str, admin_id: str, convert_to: Optional[str] = None) -> dict:
    subscription = _require_subscription(team_id)
    now = db.now_iso()
    client = db.require_client()

    if convert_to:
        update = {"status": SubscriptionStatus.ACTIVE.value, "tier": convert_to}
    else:
        update = {"status": SubscriptionStatus.CANCELED.value, "trial_ends_at": now, "canceled_at": now}
        (
            client.table("ai_credits")
            .update({"credits_allowed": 0, "period_end": now})
            .eq("team_id", str(team_id))
            .gte("period_end", now)
            .execute()
        )

    client.table("subscriptions").update({**update, "updated_at": now}).eq("team_id", str(team_id)).execute()

    db.log_audit_event("trial.ended", actor_id=admin_id, target_type="team", target_id=team_id,
                       metadata={"old_status": subscription.get("status"), "new_status": update["status"],
                                 "tier": convert_to or subscription.get("tier")})
    return {"success": True, "status": update["status"], "tier": convert_to or subscription.get("tier")}
