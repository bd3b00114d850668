"""Platform admin console queries and audited admin actions."""

import logging
from collections import Counter
from typing import Optional

from coachhub.core.errors import NotFoundError
from coachhub.db import database as db
from coachhub.models.schemas import SubscriptionStatus
from coachhub.services import tiers, tokens

logger = logging.getLogger(__name__)


def _count(table: str) -> int:
    client = db.require_client()
    result = client.table(table).select("id", count="exact").execute()
    return result.count or 0


def get_dashboard() -> dict:
    client = db.require_client()
    subscriptions = client.table("subscriptions").select("team_id, tier, status").execute().data or []

    prices = {c.tier.value: c.price_monthly_cents for c in tiers.list_tier_configs()}
    active = [s for s in subscriptions if s.get("status") == SubscriptionStatus.ACTIVE.value]
    mrr_cents = sum(prices.get(s.get("tier"), 0) for s in active)

    return {
        "teams": _count("teams"),
        "users": _count("profiles"),
        "games": _count("games"),
        "videos": _count("videos"),
        "subscriptions_by_status": dict(Counter(s.get("status") or "none" for s in subscriptions)),
        "subscriptions_by_tier": dict(Counter(s.get("tier") or "none" for s in subscriptions)),
        "mrr_cents": mrr_cents,
    }


def list_teams(search: Optional[str] = None, page: int = 1, page_size: int = 25) -> dict:
    client = db.require_client()
    query = client.table("teams").select("*", count="exact")
    if search:
        query = query.ilike("name", f"%{search}%")
    offset = (page - 1) * page_size
    result = query.order("created_at", desc=True).range(offset, offset + page_size - 1).execute()
    teams = result.data or []

    subscriptions = {}
    team_ids = [t["id"] for t in teams]
    if team_ids:
        rows = client.table("subscriptions").select("*").in_("team_id", team_ids).execute().data or []
        subscriptions = {r["team_id"]: r for r in rows}

    return {
        "teams": [
            {
                **team,
                "subscription": {
                    "tier": subscriptions.get(team["id"], {}).get("tier"),
                    "status": subscriptions.get(team["id"], {}).get("status") or SubscriptionStatus.NONE.value,
                    "trial_ends_at": subscriptions.get(team["id"], {}).get("trial_ends_at"),
                },
            }
            for team in teams
        ],
        "total": result.count if result.count is not None else len(teams),
        "page": page,
        "page_size": page_size,
    }


def list_users(search: Optional[str] = None, limit: int = 100) -> list[dict]:
    client = db.require_client()
    query = client.table("profiles").select("id, email, full_name, is_platform_admin, created_at")
    if search:
        query = query.ilike("email", f"%{search}%")
    return query.order("created_at", desc=True).limit(limit).execute().data or []


def set_platform_admin(user_id: str, is_admin: bool, actor_id: str) -> dict:
    if not db.get_profile(user_id):
        raise NotFoundError("User not found")

    client = db.require_client()
    result = (
        client.table("profiles")
        .update({"is_platform_admin": is_admin, "updated_at": db.now_iso()})
        .eq("id", str(user_id))
        .execute()
    )
    action = "user.admin_granted" if is_admin else "user.admin_revoked"
    db.log_audit_event(action, actor_id=actor_id, target_type="user", target_id=user_id,
                       metadata={"is_platform_admin": is_admin})
    logger.info(f"{action} for {user_id} by {actor_id}")
    return result.data[0]


def team_audit_log(team_id: str, limit: int = 100) -> list[dict]:
    db.require_team(team_id)
    return db.list_audit_logs(target_type="team", target_id=team_id, limit=limit)


def adjust_team_tokens(team_id: str, game_type: str, delta: int, notes: Optional[str], actor_id: str) -> dict:
    db.require_team(team_id)
    balance = tokens.admin_adjust_tokens(team_id, game_type, delta, notes, actor_id)
    db.log_audit_event("tokens.admin_adjusted", actor_id=actor_id, target_type="team", target_id=team_id,
                       metadata={"game_type": game_type, "delta": delta, "notes": notes})
    return balance
