"""Platform admin console routes."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from coachhub.auth.auth import require_platform_admin
from coachhub.models.schemas import (
    AdminFlagRequest,
    TokenAdjustRequest,
    TrialEndRequest,
    TrialExtendRequest,
    TrialStartRequest,
    User,
)
from coachhub.services import admin, tokens, trials

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/dashboard")
def dashboard(admin_user: User = Depends(require_platform_admin)):
    return admin.get_dashboard()


@router.get("/teams")
def list_teams(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    admin_user: User = Depends(require_platform_admin),
):
    return admin.list_teams(search, page, page_size)


@router.get("/users")
def list_users(search: Optional[str] = None, admin_user: User = Depends(require_platform_admin)):
    return {"users": admin.list_users(search)}


@router.put("/users/{user_id}/admin")
def set_admin_flag(user_id: UUID, data: AdminFlagRequest, admin_user: User = Depends(require_platform_admin)):
    return admin.set_platform_admin(str(user_id), data.is_platform_admin, str(admin_user.id))


@router.get("/teams/{team_id}/audit-log")
def team_audit_log(
    team_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    admin_user: User = Depends(require_platform_admin),
):
    return {"logs": admin.team_audit_log(str(team_id), limit)}


# ===== Tokens =====

@router.get("/teams/{team_id}/tokens")
def team_tokens(team_id: UUID, admin_user: User = Depends(require_platform_admin)):
    return {
        "balance": tokens.get_balance_summary(str(team_id)),
        "transactions": tokens.get_transactions(str(team_id)),
    }


@router.post("/teams/{team_id}/tokens")
def adjust_tokens(team_id: UUID, data: TokenAdjustRequest, admin_user: User = Depends(require_platform_admin)):
    return admin.adjust_team_tokens(str(team_id), data.game_type.value, data.delta, data.notes, str(admin_user.id))


# ===== Trials =====

@router.get("/teams/{team_id}/trial")
def get_trial(team_id: UUID, admin_user: User = Depends(require_platform_admin)):
    return trials.get_trial_status(str(team_id))


@router.post("/teams/{team_id}/trial")
def start_trial(team_id: UUID, data: TrialStartRequest, admin_user: User = Depends(require_platform_admin)):
    return trials.start_trial(
        str(team_id), str(admin_user.id), data.tier.value, data.duration_days, data.ai_credits_limit,
    )


@router.put("/teams/{team_id}/trial")
def extend_trial(team_id: UUID, data: TrialExtendRequest, admin_user: User = Depends(require_platform_admin)):
    return trials.extend_trial(str(team_id), str(admin_user.id), data.additional_days)


@router.delete("/teams/{team_id}/trial")
def end_trial(team_id: UUID, data: Optional[TrialEndRequest] = None, admin_user: User = Depends(require_platform_admin)):
    convert_to = data.convert_to.value if data and data.convert_to else None
    return trials.end_trial(str(team_id), str(admin_user.id), convert_to)
