"""AI practice planning routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from coachhub.auth.auth import TeamContext, require_team_access, require_team_staff
from coachhub.models.schemas import PracticePlanRequest, RefinePlanRequest, SavePracticeRequest
from coachhub.services import practice_plan, tiers

router = APIRouter(prefix="/api/teams/{team_id}/practice", tags=["practice"])


@router.get("")
def list_plans(ctx: TeamContext = Depends(require_team_access)):
    return {"plans": practice_plan.list_practice_plans(ctx.team_id)}


@router.get("/{plan_id}")
def get_plan(plan_id: UUID, ctx: TeamContext = Depends(require_team_access)):
    return practice_plan.get_practice_plan(ctx.team_id, str(plan_id))


@router.post("/generate")
def generate_plan(data: PracticePlanRequest, ctx: TeamContext = Depends(require_team_staff)):
    tiers.check_feature_access(ctx.team_id, "ai_film_tagging")
    return {"plan": practice_plan.generate_practice_plan(ctx.team, data)}


@router.post("/refine")
def refine_plan(data: RefinePlanRequest, ctx: TeamContext = Depends(require_team_staff)):
    tiers.check_feature_access(ctx.team_id, "ai_film_tagging")
    return {"plan": practice_plan.refine_practice_plan(data.plan, data.feedback, ctx.team.get("level"))}


@router.post("", status_code=status.HTTP_201_CREATED)
def save_plan(data: SavePracticeRequest, ctx: TeamContext = Depends(require_team_staff)):
    return practice_plan.save_practice_plan(
        ctx.team_id,
        ctx.user_id,
        data.plan,
        practice_date=data.practice_date.isoformat() if data.practice_date else None,
        location=data.location,
    )
