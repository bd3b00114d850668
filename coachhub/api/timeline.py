"""Multi-camera game timeline routes."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query

from coachhub.auth.auth import TeamContext, require_team_access, require_team_staff
from coachhub.db import database as db
from coachhub.models.timeline import AddClipRequest, LaneLabelRequest, MAX_LANES, MoveClipRequest, TrimClipRequest
from coachhub.services import timeline as timeline_service
from coachhub.services import timeline_playback as playback
from coachhub.services.camera_sync import find_clip_for_time, game_time_to_video_time

router = APIRouter(prefix="/api/teams/{team_id}/games/{game_id}", tags=["timeline"])


def _timeline(ctx: TeamContext, game_id: UUID):
    db.require_game(ctx.team_id, str(game_id))
    return timeline_service.get_or_create_timeline(str(game_id), ctx.team_id)


@router.get("/timeline")
def get_timeline(game_id: UUID, ctx: TeamContext = Depends(require_team_access)):
    return _timeline(ctx, game_id)


@router.post("/timeline/clips")
def add_clip(game_id: UUID, data: AddClipRequest, ctx: TeamContext = Depends(require_team_staff)):
    db.require_game(ctx.team_id, str(game_id))
    return timeline_service.add_clip(
        ctx.team_id, str(game_id), str(data.video_id), data.camera_lane, data.lane_position_ms, data.camera_label,
    )


@router.patch("/timeline/clips/{clip_id}/move")
def move_clip(game_id: UUID, clip_id: str, data: MoveClipRequest, ctx: TeamContext = Depends(require_team_staff)):
    db.require_game(ctx.team_id, str(game_id))
    return timeline_service.move_clip(ctx.team_id, str(game_id), clip_id, data.lane_position_ms, data.camera_lane)


@router.patch("/timeline/clips/{clip_id}/trim")
def trim_clip(game_id: UUID, clip_id: str, data: TrimClipRequest, ctx: TeamContext = Depends(require_team_staff)):
    db.require_game(ctx.team_id, str(game_id))
    return timeline_service.trim_clip(ctx.team_id, str(game_id), clip_id, data.start_offset_ms, data.end_offset_ms)


@router.delete("/timeline/clips/{clip_id}")
def remove_clip(game_id: UUID, clip_id: str, ctx: TeamContext = Depends(require_team_staff)):
    db.require_game(ctx.team_id, str(game_id))
    return timeline_service.remove_clip(ctx.team_id, str(game_id), clip_id)


@router.put("/timeline/lanes/{lane}/label")
def update_lane_label(
    game_id: UUID,
    data: LaneLabelRequest,
    lane: int = Path(..., ge=1, le=MAX_LANES),
    ctx: TeamContext = Depends(require_team_staff),
):
    db.require_game(ctx.team_id, str(game_id))
    return timeline_service.update_lane_label(ctx.team_id, str(game_id), lane, data.label)


@router.get("/timeline/playback")
def get_playback_state(
    game_id: UUID,
    time_ms: int = Query(0, ge=0),
    ctx: TeamContext = Depends(require_team_access),
):
    """Active clip per lane plus what the player should buffer next."""
    timeline = _timeline(ctx, game_id)
    return {
        "time_ms": time_ms,
        "lanes": playback.get_active_clips_for_all_lanes(timeline, time_ms),
        "next_boundary_ms": playback.get_next_clip_boundary(timeline, time_ms),
        "preload": playback.get_clips_to_preload(timeline, time_ms),
        "gaps": {
            lane.lane: playback.find_gaps_in_lane(lane, timeline.total_duration_ms) for lane in timeline.lanes
        },
    }


@router.get("/camera-selections")
def get_camera_selections(
    game_id: UUID,
    time_ms: int = Query(0, ge=0),
    preferred_lane: Optional[int] = Query(None, ge=1, le=MAX_LANES),
    ctx: TeamContext = Depends(require_team_access),
):
    """Which clip each camera shows at a game time, and which one to play."""
    timeline = _timeline(ctx, game_id)
    cameras = []
    for lane in timeline.lanes:
        info = playback.get_active_clip_for_lane(lane, time_ms)
        cameras.append({
            "lane": lane.lane,
            "label": lane.label,
            "clip": info.clip,
            "video_id": info.clip.video_id if info.clip else None,
            "seek_time_seconds": game_time_to_video_time(time_ms, info.clip) if info.clip else 0,
            "is_in_gap": info.is_in_gap,
            "next_clip_start_ms": info.next_clip_start_ms,
        })
    return {
        "time_ms": time_ms,
        "selection": find_clip_for_time(timeline.lanes, time_ms, preferred_lane),
        "cameras": cameras,
    }
