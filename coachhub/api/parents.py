"""Parent communication routes."""

from fastapi import APIRouter, Depends, status

from coachhub.auth.auth import TeamContext, require_auth, require_team_access, require_team_staff
from coachhub.models.schemas import AcceptInviteRequest, ParentInviteRequest, User
from coachhub.services import parents

router = APIRouter(tags=["parents"])


@router.get("/api/teams/{team_id}/parents")
def list_parents(ctx: TeamContext = Depends(require_team_access)):
    return {"parents": parents.list_parents(ctx.team_id)}


@router.post("/api/teams/{team_id}/parents/invite", status_code=status.HTTP_201_CREATED)
def invite_parent(data: ParentInviteRequest, ctx: TeamContext = Depends(require_team_staff)):
    return parents.invite_parent(ctx.team_id, ctx.user_id, data)


@router.post("/api/parents/accept")
def accept_invite(data: AcceptInviteRequest, user: User = Depends(require_auth)):
    return parents.accept_invitation(str(user.id), user.email, data)
