"""Team, player and opponent analytics routes."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from coachhub.auth.auth import TeamContext, require_team_access
from coachhub.core.errors import NotFoundError
from coachhub.db import database as db
from coachhub.services import analytics

router = APIRouter(prefix="/api/teams/{team_id}/analytics", tags=["analytics"])


@router.get("")
def get_team_analytics(game_id: Optional[UUID] = None, ctx: TeamContext = Depends(require_team_access)):
    if game_id:
        db.require_game(ctx.team_id, str(game_id))
    return analytics.team_analytics(ctx.team_id, str(game_id) if game_id else None)


@router.get("/players/{player_id}")
def get_player_stats(player_id: UUID, ctx: TeamContext = Depends(require_team_access)):
    if not db.get_player(ctx.team_id, str(player_id)):
        raise NotFoundError("Player not found")
    return analytics.player_stats(ctx.team_id, str(player_id))


@router.get("/opponents")
def get_opponent_tendencies(
    opponent: str = Query(..., min_length=1),
    ctx: TeamContext = Depends(require_team_access),
):
    return analytics.opponent_tendencies(ctx.team_id, opponent)
