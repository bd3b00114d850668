"""Game and game film routes."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.concurrency import run_in_threadpool

from coachhub.auth.auth import TeamContext, require_team_access, require_team_staff
from coachhub.core.config import settings
from coachhub.db import database as db
from coachhub.models.schemas import GameCreate, GameUpdate, VideoCompleteRequest, VideoUploadRequest
from coachhub.services import storage, teams

router = APIRouter(prefix="/api/teams/{team_id}/games", tags=["games"])


@router.get("")
def list_games(ctx: TeamContext = Depends(require_team_access)):
    return {"games": db.list_games(ctx.team_id)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_game(data: GameCreate, ctx: TeamContext = Depends(require_team_staff)):
    return teams.create_game(ctx.team_id, ctx.user_id, data)


@router.get("/{game_id}")
def get_game(game_id: UUID, ctx: TeamContext = Depends(require_team_access)):
    game = db.require_game(ctx.team_id, str(game_id))
    return {**game, "videos": db.list_game_videos(str(game_id))}


@router.patch("/{game_id}")
def update_game(game_id: UUID, data: GameUpdate, ctx: TeamContext = Depends(require_team_staff)):
    row = db.to_row(data, exclude_unset=True)
    if "game_date" in row:
        row["date"] = row.pop("game_date")
    return db.update_game(ctx.team_id, str(game_id), row)


@router.delete("/{game_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_game(game_id: UUID, ctx: TeamContext = Depends(require_team_staff)):
    teams.delete_game(ctx.team_id, str(game_id), ctx.user_id)


# ===== Film =====

@router.get("/{game_id}/videos")
def list_videos(game_id: UUID, ctx: TeamContext = Depends(require_team_access)):
    db.require_game(ctx.team_id, str(game_id))
    return {"videos": db.list_game_videos(str(game_id))}


@router.post("/{game_id}/videos/upload-url", status_code=status.HTTP_201_CREATED)
def create_upload_url(game_id: UUID, data: VideoUploadRequest, ctx: TeamContext = Depends(require_team_staff)):
    return teams.create_upload(ctx.team_id, str(game_id), ctx.user_id, data)


@router.post("/{game_id}/videos/{video_id}/complete")
def complete_upload(
    game_id: UUID,
    video_id: UUID,
    data: VideoCompleteRequest,
    ctx: TeamContext = Depends(require_team_staff),
):
    return teams.complete_upload(ctx.team_id, str(video_id), data.duration_seconds, data.file_size, str(game_id))


@router.post("/{game_id}/videos", status_code=status.HTTP_201_CREATED)
async def upload_video(
    game_id: UUID,
    file: UploadFile = File(...),
    camera_label: Optional[str] = Form(default=None),
    camera_order: int = Form(default=1),
    ctx: TeamContext = Depends(require_team_staff),
):
    """Direct multipart upload for small films."""
    content = await file.read()
    data = VideoUploadRequest(
        filename=file.filename or "film.mp4",
        content_type=file.content_type or "video/mp4",
        file_size=len(content),
        camera_label=camera_label,
        camera_order=camera_order,
    )
    return await run_in_threadpool(
        teams.upload_film_file, ctx.team_id, str(game_id), ctx.user_id, data.filename, content, data,
    )


@router.get("/{game_id}/videos/{video_id}")
def get_video(game_id: UUID, video_id: UUID, ctx: TeamContext = Depends(require_team_access)):
    video = db.require_team_video(ctx.team_id, str(video_id), str(game_id))
    url = storage.get_film_url(video["r2_key"]) if video.get("r2_key") and settings.r2_configured else None
    return {**video, "url": url}


@router.delete("/{game_id}/videos/{video_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_video(game_id: UUID, video_id: UUID, ctx: TeamContext = Depends(require_team_staff)):
    teams.delete_film(ctx.team_id, str(video_id), str(game_id))
