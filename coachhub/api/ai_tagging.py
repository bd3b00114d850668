"""AI film tagging routes (Server-Sent Events for clip analysis)."""

import json
import logging
from typing import Iterator

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from coachhub.auth.auth import TeamContext, require_team_access, require_team_staff
from coachhub.core.errors import CoachHubError
from coachhub.db import database as db
from coachhub.models.schemas import (
    AnalyzeClipRequest,
    CorrectionRequest,
    QualityAssessmentRequest,
    TaggingTier,
)
from coachhub.services import corrections, play_analyzer, tagging, tiers

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/teams/{team_id}/ai-tagging", tags=["ai-tagging"])


def sse_event(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def _event_stream(events: Iterator[tuple[str, dict]]) -> Iterator[str]:
    try:
        for event, data in events:
            yield sse_event(event, data)
    except CoachHubError as e:
        logger.warning(f"Play analysis failed: {e.message}")
        yield sse_event("error", {"error": e.message, "code": e.code})
    except Exception as e:
        logger.exception("Play analysis failed")
        yield sse_event("error", {"error": f"Analysis failed: {e}", "code": "INTERNAL_ERROR"})


@router.get("/tiers")
def list_tagging_tiers(play_count: int = Query(1, ge=1, le=500), ctx: TeamContext = Depends(require_team_access)):
    result = []
    for tier in TaggingTier:
        config = tagging.get_config_for_tier(tier.value)
        result.append({
            "tier": tier.value,
            "model": config.model_display_name,
            "description": config.description,
            "fields": config.fields,
            "estimate": tagging.estimate_batch_time(tier.value, play_count),
        })
    return {"tiers": result}


@router.post("/analyze")
def analyze_clip(data: AnalyzeClipRequest, ctx: TeamContext = Depends(require_team_staff)):
    tiers.check_feature_access(ctx.team_id, "ai_film_tagging")
    play_analyzer.validate_analysis_request(data.clip_start_seconds, data.clip_end_seconds, data.tier.value)
    video = db.require_team_video(ctx.team_id, str(data.video_id))

    events = play_analyzer.iter_play_analysis(
        ctx.team,
        video,
        ctx.user_id,
        data.clip_start_seconds,
        data.clip_end_seconds,
        data.tier.value,
        offense_or_defense=data.offense_or_defense,
        previous_play_context=data.previous_play_context,
        play_instance_id=str(data.play_instance_id) if data.play_instance_id else None,
    )
    return StreamingResponse(
        _event_stream(events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/quality-assessment")
def assess_quality(data: QualityAssessmentRequest, ctx: TeamContext = Depends(require_team_staff)):
    tiers.check_feature_access(ctx.team_id, "ai_film_tagging")
    video = db.require_team_video(ctx.team_id, str(data.video_id))
    return play_analyzer.assess_film_quality(ctx.team_id, video)


@router.get("/quality-assessment/{video_id}")
def get_quality(video_id: str, ctx: TeamContext = Depends(require_team_access)):
    db.require_team_video(ctx.team_id, video_id)
    return {"assessment": play_analyzer.get_film_quality(video_id)}


@router.post("/corrections")
def submit_corrections(data: CorrectionRequest, ctx: TeamContext = Depends(require_team_staff)):
    recorded = corrections.record_corrections(
        ctx.team_id,
        str(data.prediction_id),
        data.coach_values,
        ctx.user_id,
        str(data.play_instance_id) if data.play_instance_id else None,
    )
    return {"corrections": recorded, "count": len(recorded)}


@router.get("/corrections/stats")
def get_correction_stats(ctx: TeamContext = Depends(require_team_access)):
    return corrections.correction_stats(ctx.team_id)
