"""Team, roster and membership routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from coachhub.auth.auth import TeamContext, require_auth, require_team_access, require_team_owner, require_team_staff
from coachhub.core.errors import NotFoundError
from coachhub.db import database as db
from coachhub.models.schemas import PlayerCreate, PlayerUpdate, TeamCreate, TeamUpdate, User
from coachhub.services import teams

router = APIRouter(prefix="/api/teams", tags=["teams"])


@router.get("")
def list_teams(user: User = Depends(require_auth)):
    return {"teams": db.list_user_teams(str(user.id))}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_team(data: TeamCreate, user: User = Depends(require_auth)):
    return teams.create_team(str(user.id), data)


@router.get("/{team_id}")
def get_team(ctx: TeamContext = Depends(require_team_access)):
    return {**ctx.team, "role": ctx.role}


@router.patch("/{team_id}")
def update_team(data: TeamUpdate, ctx: TeamContext = Depends(require_team_staff)):
    return db.update_team(ctx.team_id, db.to_row(data, exclude_unset=True))


@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_team(ctx: TeamContext = Depends(require_team_owner)):
    db.delete_team(ctx.team_id)
    db.log_audit_event("team.deleted", actor_id=ctx.user_id, target_type="team", target_id=ctx.team_id)


@router.get("/{team_id}/members")
def list_members(ctx: TeamContext = Depends(require_team_access)):
    return {"members": db.list_team_members(ctx.team_id)}


# ===== Players =====

@router.get("/{team_id}/players")
def list_players(include_inactive: bool = False, ctx: TeamContext = Depends(require_team_access)):
    return {"players": db.list_players(ctx.team_id, include_inactive=include_inactive)}


@router.post("/{team_id}/players", status_code=status.HTTP_201_CREATED)
def create_player(data: PlayerCreate, ctx: TeamContext = Depends(require_team_staff)):
    return teams.add_player(ctx.team_id, data)


@router.get("/{team_id}/players/{player_id}")
def get_player(player_id: UUID, ctx: TeamContext = Depends(require_team_access)):
    player = db.get_player(ctx.team_id, str(player_id))
    if not player:
        raise NotFoundError("Player not found")
    return player


@router.patch("/{team_id}/players/{player_id}")
def update_player(player_id: UUID, data: PlayerUpdate, ctx: TeamContext = Depends(require_team_staff)):
    return teams.edit_player(ctx.team_id, str(player_id), data)


@router.delete("/{team_id}/players/{player_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_player(player_id: UUID, ctx: TeamContext = Depends(require_team_staff)):
    db.delete_player(ctx.team_id, str(player_id))
