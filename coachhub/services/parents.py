"""Parent invitations and parent/player links."""

import logging
import secrets
from datetime import timedelta
from typing import Optional

from coachhub.core.errors import InvalidRequestError, NotFoundError
from coachhub.db import database as db
from coachhub.models.schemas import AcceptInviteRequest, ParentInviteRequest

logger = logging.getLogger(__name__)

INVITE_EXPIRY_DAYS = 7
STATUS_PENDING = "pending"
STATUS_ACCEPTED = "accepted"


def _pending_invite(team_id: str, email: str) -> Optional[dict]:
    client = db.require_client()
    result = (
        client.table("parent_invitations")
        .select("*")
        .eq("team_id", str(team_id))
        .eq("parent_email", email)
        .eq("status", STATUS_PENDING)
        .limit(1)
        .execute()
    )
    return db.first_row(result)


def invite_parent(team_id: str, invited_by: str, data: ParentInviteRequest) -> dict:
    """Create an invitation, or refresh the token and expiry of a pending one for the same email."""
    email = data.email.strip().lower()
    player_ids = [str(p) for p in data.player_ids]
    for player_id in player_ids:
        if not db.get_player(team_id, player_id):
            raise InvalidRequestError(f"Player {player_id} is not on this team")

    row = {
        "team_id": str(team_id),
        "invited_by": str(invited_by),
        "parent_email": email,
        "first_name": data.first_name,
        "last_name": data.last_name,
        "relationship": data.relationship,
        "player_ids": player_ids,
        "token": secrets.token_urlsafe(32),
        "status": STATUS_PENDING,
        "expires_at": (db.utc_now() + timedelta(days=INVITE_EXPIRY_DAYS)).isoformat(),
    }

    client = db.require_client()
    existing = _pending_invite(team_id, email)
    if existing:
        invite = client.table("parent_invitations").update(row).eq("id", existing["id"]).execute().data[0]
        logger.info(f"Refreshed parent invitation {invite['id']} for team {team_id}")
    else:
        invite = client.table("parent_invitations").insert(row).execute().data[0]
        logger.info(f"Created parent invitation {invite['id']} for team {team_id}")
    return invite


def accept_invitation(user_id: str, email: Optional[str], data: AcceptInviteRequest) -> dict:
    client = db.require_client()
    invite = db.first_row(
        client.table("parent_invitations").select("*").eq("token", data.token).limit(1).execute()
    )
    if not invite:
        raise NotFoundError("Invitation not found")
    if invite.get("status") != STATUS_PENDING:
        raise InvalidRequestError("This invitation has already been used")
    expires_at = db.parse_timestamp(invite.get("expires_at"))
    if expires_at and expires_at < db.utc_now():
        raise InvalidRequestError("This invitation has expired")

    profile = db.first_row(
        client.table("parent_profiles").select("*").eq("user_id", str(user_id)).limit(1).execute()
    )
    if not profile:
        profile = client.table("parent_profiles").insert({
            "user_id": str(user_id),
            "email": email or invite["parent_email"],
            "first_name": data.first_name or invite.get("first_name"),
            "last_name": data.last_name or invite.get("last_name"),
            "phone": data.phone,
        }).execute().data[0]

    links = [
        {
            "parent_id": profile["id"],
            "player_id": player_id,
            "relationship": invite.get("relationship") or "parent",
        }
        for player_id in invite.get("player_ids") or []
    ]
    if links:
        client.table("player_parent_links").upsert(links, on_conflict="parent_id,player_id").execute()

    client.table("parent_invitations").update({
        "status": STATUS_ACCEPTED,
        "accepted_at": db.now_iso(),
        "accepted_by": str(user_id),
    }).eq("id", invite["id"]).execute()

    logger.info(f"Parent {profile['id']} accepted invitation {invite['id']}")
    return {"parent": profile, "team_id": invite["team_id"], "player_ids": invite.get("player_ids") or []}


def list_parents(team_id: str) -> list[dict]:
    """Parents linked to any player on the team, with the players they're linked to."""
    players = {str(p["id"]): p for p in db.list_players(team_id, include_inactive=True)}
    if not players:
        return []

    client = db.require_client()
    links = (
        client.table("player_parent_links")
        .select("*")
        .in_("player_id", list(players.keys()))
        .execute()
    ).data or []
    if not links:
        return []

    parent_ids = list({str(l["parent_id"]) for l in links})
    parents = client.table("parent_profiles").select("*").in_("id", parent_ids).execute().data or []

    by_parent: dict[str, list[dict]] = {}
    for link in links:
        player = players[str(link["player_id"])]
        by_parent.setdefault(str(link["parent_id"]), []).append({
            "player_id": player["id"],
            "first_name": player.get("first_name"),
            "last_name": player.get("last_name"),
            "jersey_number": player.get("jersey_number"),
            "relationship": link.get("relationship"),
        })

    return [
        {**parent, "players": by_parent.get(str(parent["id"]), [])}
        for parent in sorted(parents, key=lambda p: ((p.get("last_name") or ""), (p.get("first_name") or "")))
    ]
