"""Play tagging and playbook routes."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status

from coachhub.auth.auth import TeamContext, require_team_access, require_team_staff
from coachhub.core.errors import NotFoundError
from coachhub.db import database as db
from coachhub.models.schemas import (
    PlaybookPlayCreate,
    PlaybookPlayUpdate,
    PlaybookSide,
    PlayInstanceCreate,
    PlayInstanceUpdate,
)
from coachhub.services import plays

router = APIRouter(prefix="/api/teams/{team_id}", tags=["plays"])


# ===== Play instances =====

@router.get("/plays")
def list_plays(
    game_id: Optional[UUID] = None,
    video_id: Optional[UUID] = None,
    is_opponent_play: Optional[bool] = None,
    ctx: TeamContext = Depends(require_team_access),
):
    return {
        "plays": db.list_play_instances(
            ctx.team_id,
            game_id=str(game_id) if game_id else None,
            video_id=str(video_id) if video_id else None,
            is_opponent_play=is_opponent_play,
        )
    }


@router.post("/plays", status_code=status.HTTP_201_CREATED)
def create_play(data: PlayInstanceCreate, ctx: TeamContext = Depends(require_team_staff)):
    return plays.create_play(ctx.team_id, ctx.user_id, data)


@router.patch("/plays/{play_id}")
def update_play(play_id: UUID, data: PlayInstanceUpdate, ctx: TeamContext = Depends(require_team_staff)):
    return plays.update_play(ctx.team_id, str(play_id), data)


@router.delete("/plays/{play_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_play(play_id: UUID, ctx: TeamContext = Depends(require_team_staff)):
    db.delete_play_instance(ctx.team_id, str(play_id))


# ===== Playbook =====

@router.get("/playbook")
def list_playbook(
    side: Optional[PlaybookSide] = None,
    category: Optional[str] = None,
    include_archived: bool = False,
    ctx: TeamContext = Depends(require_team_access),
):
    return {
        "plays": db.list_playbook(
            ctx.team_id,
            side=side.value if side else None,
            category=category,
            include_archived=include_archived,
        )
    }


@router.post("/playbook", status_code=status.HTTP_201_CREATED)
def create_playbook_play(data: PlaybookPlayCreate, ctx: TeamContext = Depends(require_team_staff)):
    return plays.create_playbook_play(ctx.team_id, data)


@router.get("/playbook/{play_code}")
def get_playbook_play(play_code: str, ctx: TeamContext = Depends(require_team_access)):
    play = db.get_playbook_play(ctx.team_id, play_code)
    if not play:
        raise NotFoundError("Play not found in playbook")
    return play


@router.patch("/playbook/{play_code}")
def update_playbook_play(play_code: str, data: PlaybookPlayUpdate, ctx: TeamContext = Depends(require_team_staff)):
    return db.update_playbook_play(ctx.team_id, play_code, db.to_row(data, exclude_unset=True))


@router.delete("/playbook/{play_code}", status_code=status.HTTP_204_NO_CONTENT)
def delete_playbook_play(play_code: str, ctx: TeamContext = Depends(require_team_staff)):
    db.delete_playbook_play(ctx.team_id, play_code)
