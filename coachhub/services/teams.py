"""Team setup, game creation and film registration with tier and token checks."""

import logging
import os
import shutil
import tempfile
from datetime import timedelta
from typing import Optional

from coachhub.core.errors import ExternalServiceError, InvalidRequestError, LimitExceededError
from coachhub.db import database as db
from coachhub.models.schemas import (
    GameCreate,
    GameType,
    PlayerCreate,
    PlayerUpdate,
    SubscriptionStatus,
    SubscriptionTier,
    TeamCreate,
    VideoStatus,
    VideoUploadRequest,
)
from coachhub.services import clipper, storage, tiers, tokens

logger = logging.getLogger(__name__)


# =============================================================================
# Teams
# =============================================================================

def create_team(user_id: str, data: TeamCreate) -> dict:
    """Create a team with a waived subscription on its default tier and fresh tokens."""
    tier = (data.default_tier or SubscriptionTier.BASIC).value
    row = db.to_row(data)
    row["default_tier"] = tier
    team = db.create_team(user_id, row)

    now = db.utc_now()
    period_end = now + timedelta(days=tokens.PERIOD_DAYS)
    client = db.require_client()
    client.table("subscriptions").upsert({
        "team_id": team["id"],
        "tier": tier,
        "status": SubscriptionStatus.WAIVED.value,
        "billing_waived": True,
        "current_period_start": now.isoformat(),
        "current_period_end": period_end.isoformat(),
    }, on_conflict="team_id").execute()
    tokens.initialize_subscription_tokens(team["id"], tier, now, period_end)

    db.log_audit_event("team.created", actor_id=user_id, target_type="team", target_id=team["id"],
                       metadata={"name": team.get("name"), "tier": tier})
    logger.info(f"Created team {team['id']} on {tier}")
    return team


# =============================================================================
# Players
# =============================================================================

def _check_jersey_free(team_id: str, jersey_number: Optional[str], player_id: Optional[str] = None) -> None:
    if not jersey_number:
        return
    existing = db.find_active_player_by_jersey(team_id, jersey_number)
    if existing and str(existing["id"]) != str(player_id):
        raise InvalidRequestError(f"Jersey #{jersey_number} is already assigned to an active player")


def add_player(team_id: str, data: PlayerCreate) -> dict:
    if data.is_active:
        _check_jersey_free(team_id, data.jersey_number)
    return db.create_player(team_id, db.to_row(data))


def edit_player(team_id: str, player_id: str, data: PlayerUpdate) -> dict:
    if data.jersey_number is not None:
        _check_jersey_free(team_id, data.jersey_number, player_id)
    return db.update_player(team_id, player_id, db.to_row(data, exclude_unset=True))


# =============================================================================
# Games
# =============================================================================

def create_game(team_id: str, user_id: str, data: GameCreate) -> dict:
    """Insert a game and spend one designated token; the game is removed if the token isn't spent."""
    tiers.check_game_limit(team_id, data.is_opponent_game)

    row = db.to_row(data)
    row["date"] = row.pop("game_date")
    game = db.create_game(team_id, user_id, row)

    game_type = GameType.OPPONENT.value if data.is_opponent_game else GameType.TEAM.value
    try:
        result = tokens.consume_designated_token(team_id, game["id"], game_type, user_id)
    except Exception:
        logger.error(f"Token consumption failed for game {game['id']}; removing the game")
        db.delete_game(team_id, game["id"])
        raise
    if not result.success:
        db.delete_game(team_id, game["id"])
        raise LimitExceededError(result.message, code="NO_TOKENS")

    return {**game, "token_source": result.source.value if result.source else None}


def delete_game(team_id: str, game_id: str, user_id: str) -> bool:
    """
    Delete a game with its film, tags and timeline.

    A game deleted before any play was tagged gets its token back. The refund
    runs before anything is deleted. Returns whether a token was refunded.
    """
    game = db.require_game(team_id, game_id)
    videos = db.list_game_videos(game_id)
    video_ids = [str(v["id"]) for v in videos]

    refunded = False
    if db.count_video_play_instances(video_ids) == 0:
        game_type = GameType.OPPONENT.value if game.get("is_opponent_game") else GameType.TEAM.value
        refunded = tokens.refund_token(
            team_id, game_id, game_type,
            notes=f'Token refunded - game "{game.get("name")}" deleted before any plays were tagged',
            user_id=user_id,
        )
        if not refunded:
            logger.error(f"Token refund failed for game {game_id}; deleting anyway")

    if video_ids:
        db.delete_video_dependents(video_ids)
        for video in videos:
            if video.get("r2_key"):
                storage.delete_object(video["r2_key"])
        db.delete_game_videos(game_id)
    db.delete_game_timelines(game_id)
    db.delete_game(team_id, game_id)

    logger.info(f"Deleted game {game_id} with {len(video_ids)} video(s); refunded={refunded}")
    return refunded


# =============================================================================
# Film
# =============================================================================

def _video_row(team_id: str, game_id: str, user_id: str, filename: str, r2_key: str, data: VideoUploadRequest) -> dict:
    return {
        "team_id": str(team_id),
        "game_id": str(game_id),
        "uploaded_by": str(user_id),
        "name": filename,
        "r2_key": r2_key,
        "file_size": data.file_size or 0,
        "camera_label": data.camera_label,
        "camera_order": data.camera_order,
        "status": VideoStatus.UPLOADING.value,
    }


def create_upload(team_id: str, game_id: str, user_id: str, data: VideoUploadRequest) -> dict:
    """Reserve a video row and hand back a presigned PUT URL for the browser."""
    db.require_game(team_id, game_id)
    tiers.check_video_limits(team_id, game_id, None, data.camera_order)

    r2_key = storage.generate_film_key(team_id, game_id, data.filename)
    upload_url = storage.generate_presigned_url(r2_key, for_upload=True, content_type=data.content_type)
    if not upload_url:
        raise ExternalServiceError("Could not create upload URL")

    video = db.create_video(_video_row(team_id, game_id, user_id, data.filename, r2_key, data))
    return {"video_id": video["id"], "upload_url": upload_url, "r2_key": r2_key, "expires_in": 3600}


def complete_upload(
    team_id: str,
    video_id: str,
    duration_seconds: float,
    file_size: Optional[int],
    game_id: Optional[str] = None,
) -> dict:
    video = db.require_team_video(team_id, video_id, game_id)
    try:
        tiers.check_video_limits(team_id, video["game_id"], duration_seconds, video.get("camera_order") or 1)
    except LimitExceededError:
        db.update_video(video_id, {"status": VideoStatus.ERROR.value})
        raise

    update = {"status": VideoStatus.READY.value, "duration_seconds": duration_seconds}
    if file_size is not None:
        update["file_size"] = file_size
    return db.update_video(video_id, update)


def upload_film_file(
    team_id: str,
    game_id: str,
    user_id: str,
    filename: str,
    content: bytes,
    data: VideoUploadRequest,
) -> dict:
    """Direct upload: inspect the file locally, enforce limits, then push to R2."""
    db.require_game(team_id, game_id)

    temp_dir = tempfile.mkdtemp(prefix="upload_")
    temp_path = os.path.join(temp_dir, storage.safe_filename(filename or "film.mp4"))
    try:
        with open(temp_path, "wb") as f:
            f.write(content)

        try:
            info = clipper.get_video_info(temp_path)
        except Exception as e:
            raise InvalidRequestError(f"Invalid video file: {e}")

        tiers.check_video_limits(team_id, game_id, info["duration"], data.camera_order)

        r2_key = storage.generate_film_key(team_id, game_id, filename)
        if not storage.upload_file(temp_path, r2_key, data.content_type):
            raise ExternalServiceError("Failed to upload to storage")

        row = _video_row(team_id, game_id, user_id, filename, r2_key, data)
        row.update({
            "file_size": info["size"],
            "duration_seconds": info["duration"],
            "has_audio": info.get("has_audio", False),
            "status": VideoStatus.READY.value,
        })
        return db.create_video(row)
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def delete_film(team_id: str, video_id: str, game_id: Optional[str] = None) -> None:
    video = db.require_team_video(team_id, video_id, game_id)
    if video.get("r2_key") and not storage.delete_object(video["r2_key"]):
        logger.warning(f"Film object {video['r2_key']} was not removed from storage")
    db.delete_video(video_id)
