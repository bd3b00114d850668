"""Database operations using Supabase."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel
from supabase import create_client, Client

from coachhub.core.config import settings
from coachhub.core.errors import NotFoundError, ServiceNotConfiguredError

logger = logging.getLogger(__name__)


def get_supabase_client() -> Optional[Client]:
    """Get Supabase client if configured."""
    if not settings.supabase_configured:
        return None
    return create_client(settings.supabase_url, settings.supabase_anon_key)


def get_service_client() -> Optional[Client]:
    """Get Supabase client with service role (admin) permissions."""
    if not settings.supabase_configured or not settings.supabase_service_role_key:
        return None
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


def require_client() -> Client:
    """Service client for server-side reads and writes; access checks happen in the API layer."""
    client = get_service_client()
    if not client:
        raise ServiceNotConfiguredError("Supabase not configured")
    return client


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utc_now().isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Postgres timestamptz string; naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def first_row(result) -> Optional[dict]:
    return result.data[0] if result.data else None


def to_row(model: BaseModel, exclude_unset: bool = False) -> dict[str, Any]:
    """JSON-safe dict for a pydantic model (UUIDs and dates become strings)."""
    return model.model_dump(mode="json", exclude_unset=exclude_unset)


# =============================================================================
# Profile Operations
# =============================================================================

def get_profile(user_id: str) -> Optional[dict]:
    client = require_client()
    result = client.table("profiles").select("*").eq("id", str(user_id)).limit(1).execute()
    return first_row(result)


def is_platform_admin(user_id: str) -> bool:
    profile = get_profile(user_id)
    return bool(profile and profile.get("is_platform_admin"))


# =============================================================================
# Team Operations
# =============================================================================

def create_team(user_id: str, data: dict) -> dict:
    client = require_client()
    result = client.table("teams").insert({**data, "user_id": str(user_id)}).execute()
    team = result.data[0]

    client.table("team_memberships").insert({
        "team_id": team["id"],
        "user_id": str(user_id),
        "role": "owner",
        "is_active": True,
    }).execute()
    return team


def get_team(team_id: str) -> Optional[dict]:
    client = require_client()
    result = client.table("teams").select("*").eq("id", str(team_id)).limit(1).execute()
    return first_row(result)


def require_team(team_id: str) -> dict:
    team = get_team(team_id)
    if not team:
        raise NotFoundError("Team not found")
    return team


def list_user_teams(user_id: str) -> list[dict]:
    """Teams the user owns plus teams where they hold an active membership."""
    client = require_client()
    owned = client.table("teams").select("*").eq("user_id", str(user_id)).execute().data or []

    memberships = (
        client.table("team_memberships")
        .select("team_id")
        .eq("user_id", str(user_id))
        .eq("is_active", True)
        .execute()
    ).data or []

    owned_ids = {t["id"] for t in owned}
    member_ids = [m["team_id"] for m in memberships if m["team_id"] not in owned_ids]
    shared = []
    if member_ids:
        shared = client.table("teams").select("*").in_("id", member_ids).execute().data or []

    return sorted(owned + shared, key=lambda t: t.get("name", ""))


def update_team(team_id: str, data: dict) -> dict:
    client = require_client()
    result = client.table("teams").update({**data, "updated_at": now_iso()}).eq("id", str(team_id)).execute()
    if not result.data:
        raise NotFoundError("Team not found")
    return result.data[0]


def delete_team(team_id: str) -> None:
    client = require_client()
    client.table("teams").delete().eq("id", str(team_id)).execute()


def get_membership(team_id: str, user_id: str) -> Optional[dict]:
    client = require_client()
    result = (
        client.table("team_memberships")
        .select("*")
        .eq("team_id", str(team_id))
        .eq("user_id", str(user_id))
        .eq("is_active", True)
        .limit(1)
        .execute()
    )
    return first_row(result)


def list_team_members(team_id: str) -> list[dict]:
    client = require_client()
    result = (
        client.table("team_memberships")
        .select("*")
        .eq("team_id", str(team_id))
        .eq("is_active", True)
        .execute()
    )
    return result.data or []


# =============================================================================
# Player Operations
# =============================================================================

def list_players(team_id: str, include_inactive: bool = False) -> list[dict]:
    client = require_client()
    query = client.table("players").select("*").eq("team_id", str(team_id))
    if not include_inactive:
        query = query.eq("is_active", True)
    players = query.execute().data or []

    def jersey_key(p: dict):
        number = p.get("jersey_number")
        return (0, int(number)) if number and str(number).isdigit() else (1, str(number or ""))

    return sorted(players, key=jersey_key)


def get_player(team_id: str, player_id: str) -> Optional[dict]:
    client = require_client()
    result = (
        client.table("players")
        .select("*")
        .eq("id", str(player_id))
        .eq("team_id", str(team_id))
        .limit(1)
        .execute()
    )
    return first_row(result)


def find_active_player_by_jersey(team_id: str, jersey_number: str) -> Optional[dict]:
    client = require_client()
    result = (
        client.table("players")
        .select("id")
        .eq("team_id", str(team_id))
        .eq("jersey_number", jersey_number)
        .eq("is_active", True)
        .limit(1)
        .execute()
    )
    return first_row(result)


def create_player(team_id: str, data: dict) -> dict:
    client = require_client()
    result = client.table("players").insert({**data, "team_id": str(team_id)}).execute()
    return result.data[0]


def update_player(team_id: str, player_id: str, data: dict) -> dict:
    client = require_client()
    result = (
        client.table("players")
        .update({**data, "updated_at": now_iso()})
        .eq("id", str(player_id))
        .eq("team_id", str(team_id))
        .execute()
    )
    if not result.data:
        raise NotFoundError("Player not found")
    return result.data[0]


def delete_player(team_id: str, player_id: str) -> None:
    client = require_client()
    client.table("players").delete().eq("id", str(player_id)).eq("team_id", str(team_id)).execute()


# =============================================================================
# Game Operations
# =============================================================================

def list_games(team_id: str) -> list[dict]:
    client = require_client()
    result = (
        client.table("games")
        .select("*")
        .eq("team_id", str(team_id))
        .order("date", desc=True)
        .execute()
    )
    return result.data or []


def get_game(team_id: str, game_id: str) -> Optional[dict]:
    client = require_client()
    result = (
        client.table("games")
        .select("*")
        .eq("id", str(game_id))
        .eq("team_id", str(team_id))
        .limit(1)
        .execute()
    )
    return first_row(result)


def require_game(team_id: str, game_id: str) -> dict:
    game = get_game(team_id, game_id)
    if not game:
        raise NotFoundError("Game not found")
    return game


def count_games(team_id: str, is_opponent_game: bool) -> int:
    client = require_client()
    result = (
        client.table("games")
        .select("id", count="exact")
        .eq("team_id", str(team_id))
        .eq("is_opponent_game", is_opponent_game)
        .execute()
    )
    return result.count or 0


def create_game(team_id: str, user_id: str, data: dict) -> dict:
    client = require_client()
    result = client.table("games").insert({
        **data,
        "team_id": str(team_id),
        "user_id": str(user_id),
    }).execute()
    return result.data[0]


def update_game(team_id: str, game_id: str, data: dict) -> dict:
    client = require_client()
    result = (
        client.table("games")
        .update({**data, "updated_at": now_iso()})
        .eq("id", str(game_id))
        .eq("team_id", str(team_id))
        .execute()
    )
    if not result.data:
        raise NotFoundError("Game not found")
    return result.data[0]


def delete_game(team_id: str, game_id: str) -> None:
    client = require_client()
    client.table("games").delete().eq("id", str(game_id)).eq("team_id", str(team_id)).execute()


# =============================================================================
# Video Operations
# =============================================================================

def list_game_videos(game_id: str) -> list[dict]:
    client = require_client()
    result = (
        client.table("videos")
        .select("*")
        .eq("game_id", str(game_id))
        .order("camera_order")
        .execute()
    )
    return result.data or []


def get_video(video_id: str) -> Optional[dict]:
    client = require_client()
    result = client.table("videos").select("*").eq("id", str(video_id)).limit(1).execute()
    return first_row(result)


def require_team_video(team_id: str, video_id: str, game_id: Optional[str] = None) -> dict:
    video = get_video(video_id)
    if not video or str(video.get("team_id")) != str(team_id):
        raise NotFoundError("Video not found")
    if game_id is not None and str(video.get("game_id")) != str(game_id):
        raise NotFoundError("Video not found")
    return video


def create_video(data: dict) -> dict:
    client = require_client()
    result = client.table("videos").insert(data).execute()
    return result.data[0]


def update_video(video_id: str, data: dict) -> dict:
    client = require_client()
    result = client.table("videos").update(data).eq("id", str(video_id)).execute()
    if not result.data:
        raise NotFoundError("Video not found")
    return result.data[0]


def delete_video(video_id: str) -> None:
    client = require_client()
    client.table("videos").delete().eq("id", str(video_id)).execute()


def delete_game_videos(game_id: str) -> None:
    client = require_client()
    client.table("videos").delete().eq("game_id", str(game_id)).execute()


def count_video_play_instances(video_ids: list[str]) -> int:
    if not video_ids:
        return 0
    client = require_client()
    result = client.table("play_instances").select("id").in_("video_id", video_ids).execute()
    return len(result.data or [])


def delete_video_dependents(video_ids: list[str]) -> None:
    """Remove tags and timeline placements that reference the given videos."""
    client = require_client()
    client.table("play_instances").delete().in_("video_id", video_ids).execute()
    client.table("video_group_members").delete().in_("video_id", video_ids).execute()


def delete_game_timelines(game_id: str) -> None:
    client = require_client()
    client.table("video_groups").delete().eq("game_id", str(game_id)).execute()


# =============================================================================
# Play Instance Operations
# =============================================================================

def list_play_instances(
    team_id: str,
    game_id: Optional[str] = None,
    video_id: Optional[str] = None,
    is_opponent_play: Optional[bool] = None,
) -> list[dict]:
    client = require_client()
    query = client.table("play_instances").select("*").eq("team_id", str(team_id))
    if game_id:
        query = query.eq("game_id", str(game_id))
    if video_id:
        query = query.eq("video_id", str(video_id))
    if is_opponent_play is not None:
        query = query.eq("is_opponent_play", is_opponent_play)
    return query.order("timestamp_start").execute().data or []


def get_play_instance(team_id: str, play_id: str) -> Optional[dict]:
    client = require_client()
    result = (
        client.table("play_instances")
        .select("*")
        .eq("id", str(play_id))
        .eq("team_id", str(team_id))
        .limit(1)
        .execute()
    )
    return first_row(result)


def create_play_instance(team_id: str, data: dict) -> dict:
    client = require_client()
    result = client.table("play_instances").insert({**data, "team_id": str(team_id)}).execute()
    return result.data[0]


def update_play_instance(team_id: str, play_id: str, data: dict) -> dict:
    client = require_client()
    result = (
        client.table("play_instances")
        .update({**data, "updated_at": now_iso()})
        .eq("id", str(play_id))
        .eq("team_id", str(team_id))
        .execute()
    )
    if not result.data:
        raise NotFoundError("Play not found")
    return result.data[0]


def delete_play_instance(team_id: str, play_id: str) -> None:
    client = require_client()
    client.table("play_instances").delete().eq("id", str(play_id)).eq("team_id", str(team_id)).execute()


# =============================================================================
# Playbook Operations
# =============================================================================

def list_playbook(
    team_id: str,
    side: Optional[str] = None,
    category: Optional[str] = None,
    include_archived: bool = False,
) -> list[dict]:
    client = require_client()
    query = client.table("playbook_plays").select("*").eq("team_id", str(team_id))
    if side:
        query = query.eq("side", side)
    if category:
        query = query.eq("category", category)
    if not include_archived:
        query = query.eq("is_archived", False)
    return query.order("play_code").execute().data or []


def get_playbook_play(team_id: str, play_code: str) -> Optional[dict]:
    client = require_client()
    result = (
        client.table("playbook_plays")
        .select("*")
        .eq("team_id", str(team_id))
        .eq("play_code", play_code)
        .limit(1)
        .execute()
    )
    return first_row(result)


def create_playbook_play(team_id: str, data: dict) -> dict:
    client = require_client()
    result = client.table("playbook_plays").insert({
        **data,
        "team_id": str(team_id),
        "is_archived": False,
    }).execute()
    return result.data[0]


def update_playbook_play(team_id: str, play_code: str, data: dict) -> dict:
    client = require_client()
    result = (
        client.table("playbook_plays")
        .update({**data, "updated_at": now_iso()})
        .eq("team_id", str(team_id))
        .eq("play_code", play_code)
        .execute()
    )
    if not result.data:
        raise NotFoundError("Play not found in playbook")
    return result.data[0]


def delete_playbook_play(team_id: str, play_code: str) -> None:
    client = require_client()
    client.table("playbook_plays").delete().eq("team_id", str(team_id)).eq("play_code", play_code).execute()


# =============================================================================
# Audit Log
# =============================================================================

def log_audit_event(
    action: str,
    actor_id: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    """Append an audit record. Failures are logged, never raised."""
    client = get_service_client()
    if not client:
        logger.warning(f"Audit event {action} dropped: Supabase not configured")
        return

    try:
        client.table("audit_logs").insert({
            "actor_id": str(actor_id) if actor_id else None,
            "action": action,
            "target_type": target_type,
            "target_id": str(target_id) if target_id else None,
            "metadata": metadata or {},
        }).execute()
    except Exception as e:
        logger.error(f"Failed to write audit event {action}: {e}")


def list_audit_logs(target_type: Optional[str] = None, target_id: Optional[str] = None, limit: int = 100) -> list[dict]:
    client = require_client()
    query = client.table("audit_logs").select("*")
    if target_type:
        query = query.eq("target_type", target_type)
    if target_id:
        query = query.eq("target_id", str(target_id))
    return query.order("created_at", desc=True).limit(limit).execute().data or []
