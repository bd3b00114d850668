"""Game timelines stored as video_groups / video_group_members rows."""

import logging
from typing import Optional

from coachhub.core.errors import InvalidRequestError, LimitExceededError, NotFoundError
from coachhub.db import database as db
from coachhub.models.timeline import (
    DEFAULT_LANE_LABELS,
    MAX_LANES,
    CameraLane,
    GameTimeline,
    TimelineClip,
)
from coachhub.services import tiers
from coachhub.services.camera_sync import calculate_timeline_duration
from coachhub.services.timeline_playback import can_place_clip

logger = logging.getLogger(__name__)


def _find_timeline_group(game_id: str) -> Optional[dict]:
    client = db.require_client()
    result = (
        client.table("video_groups")
        .select("*")
        .eq("game_id", str(game_id))
        .eq("is_timeline_mode", True)
        .order("created_at")
        .limit(1)
        .execute()
    )
    return db.first_row(result)


def get_or_create_timeline(game_id: str, team_id: str) -> GameTimeline:
    """Load the game's timeline, creating it from the game's film on first use."""
    group = _find_timeline_group(game_id)
    if group:
        return load_timeline(group["id"], game_id)

    client = db.require_client()
    group = client.table("video_groups").insert({
        "name": f"Timeline for game {game_id}",
        "team_id": str(team_id),
        "group_type": "sequence",
        "is_timeline_mode": True,
        "game_id": str(game_id),
    }).execute().data[0]
    logger.info(f"Created timeline {group['id']} for game {game_id}")

    max_cameras = _max_cameras(team_id)
    members = []
    seeded_lanes: set[int] = set()
    for index, video in enumerate(db.list_game_videos(game_id)):
        lane_no = video.get("camera_order") or index + 1
        # film beyond the plan's camera count stays off the timeline
        if lane_no > MAX_LANES or (lane_no not in seeded_lanes and len(seeded_lanes) >= max_cameras):
            logger.info(f"Leaving video {video['id']} off the timeline for game {game_id}: lane {lane_no} not allowed")
            continue
        seeded_lanes.add(lane_no)
        members.append({
            "video_group_id": group["id"],
            "video_id": video["id"],
            "camera_lane": lane_no,
            "camera_label": video.get("camera_label") or video.get("name") or f"Camera {index + 1}",
            "lane_position_ms": 0,
            "start_offset_ms": 0,
            "end_offset_ms": int((video.get("duration_seconds") or 0) * 1000),
        })

    if members:
        client.table("video_group_members").insert(members).execute()
        return load_timeline(group["id"], game_id)

    return GameTimeline(game_id=str(game_id), video_group_id=group["id"])


def _clip_from_member(member: dict, video: Optional[dict]) -> TimelineClip:
    start_offset = member.get("start_offset_ms") or 0
    end_offset = member.get("end_offset_ms")
    duration_seconds = (video or {}).get("duration_seconds")

    if duration_seconds:
        duration_ms = end_offset - start_offset if end_offset else int(duration_seconds * 1000)
    else:
        duration_ms = 0

    return TimelineClip(
        id=str(member["id"]),
        video_id=str(member["video_id"]),
        video_name=(video or {}).get("name") or "Unknown",
        video_url=(video or {}).get("url"),
        camera_lane=member.get("camera_lane") or 1,
        lane_position_ms=member.get("lane_position_ms") or 0,
        duration_ms=max(0, duration_ms),
        start_offset_ms=start_offset,
        end_offset_ms=end_offset,
        thumbnail_url=(video or {}).get("thumbnail_url"),
    )


def _load_members(video_group_id: str) -> list[dict]:
    client = db.require_client()
    result = (
        client.table("video_group_members")
        .select("*")
        .eq("video_group_id", str(video_group_id))
        .execute()
    )
    return result.data or []


def load_timeline(video_group_id: str, game_id: str) -> GameTimeline:
    members = _load_members(video_group_id)

    videos = {}
    video_ids = list({str(m["video_id"]) for m in members})
    if video_ids:
        client = db.require_client()
        rows = client.table("videos").select("*").in_("id", video_ids).execute().data or []
        videos = {str(v["id"]): v for v in rows}

    lanes_map: dict[int, list[TimelineClip]] = {}
    labels: dict[int, str] = {}
    for member in members:
        clip = _clip_from_member(member, videos.get(str(member["video_id"])))
        lanes_map.setdefault(clip.camera_lane, []).append(clip)
        if member.get("camera_label") and clip.camera_lane not in labels:
            labels[clip.camera_lane] = member["camera_label"]

    lanes = [
        CameraLane(
            lane=lane_no,
            label=labels.get(lane_no) or DEFAULT_LANE_LABELS.get(lane_no, f"Camera {lane_no}"),
            clips=sorted(clips, key=lambda c: c.lane_position_ms),
        )
        for lane_no, clips in sorted(lanes_map.items())
    ]

    return GameTimeline(
        game_id=str(game_id),
        video_group_id=str(video_group_id),
        total_duration_ms=calculate_timeline_duration(lanes),
        lanes=lanes,
    )


# =============================================================================
# Editing
# =============================================================================

def _lane(timeline: GameTimeline, lane_no: int) -> CameraLane:
    return next((l for l in timeline.lanes if l.lane == lane_no), CameraLane(lane=lane_no))


def _tier_config(team_id: str):
    subscription = tiers.get_subscription(team_id)
    return tiers.get_tier_config((subscription or {}).get("tier"))


def _max_cameras(team_id: str) -> int:
    return _tier_config(team_id).max_cameras_per_game


def _validate_lane(team_id: str, timeline: GameTimeline, lane_no: int) -> None:
    if not 1 <= lane_no <= MAX_LANES:
        raise InvalidRequestError(f"Camera lane must be between 1 and {MAX_LANES}")

    config = _tier_config(team_id)
    used = {l.lane for l in timeline.lanes if l.clips}
    if lane_no not in used and len(used) + 1 > config.max_cameras_per_game:
        raise LimitExceededError(
            f"The {config.display_name} plan allows {config.max_cameras_per_game} camera angle(s) per game",
            code="CAMERA_LIMIT_REACHED",
        )


def _clip_in_timeline(timeline: GameTimeline, clip_id: str) -> TimelineClip:
    for lane in timeline.lanes:
        for clip in lane.clips:
            if clip.id == str(clip_id):
                return clip
    raise NotFoundError("Clip not found")


def add_clip(
    team_id: str,
    game_id: str,
    video_id: str,
    camera_lane: int,
    lane_position_ms: int,
    label: Optional[str] = None,
) -> GameTimeline:
    timeline = get_or_create_timeline(game_id, team_id)
    video = db.require_team_video(team_id, video_id)
    _validate_lane(team_id, timeline, camera_lane)

    duration_ms = int((video.get("duration_seconds") or 0) * 1000)
    if not can_place_clip(_lane(timeline, camera_lane), lane_position_ms, duration_ms):
        raise InvalidRequestError("Clip would overlap another clip on this camera lane")

    client = db.require_client()
    client.table("video_group_members").insert({
        "video_group_id": timeline.video_group_id,
        "video_id": str(video_id),
        "camera_lane": camera_lane,
        "camera_label": label or video.get("camera_label") or DEFAULT_LANE_LABELS[camera_lane],
        "lane_position_ms": lane_position_ms,
        "start_offset_ms": 0,
        "end_offset_ms": duration_ms,
    }).execute()
    return load_timeline(timeline.video_group_id, game_id)


def move_clip(
    team_id: str,
    game_id: str,
    clip_id: str,
    lane_position_ms: int,
    camera_lane: Optional[int] = None,
) -> GameTimeline:
    timeline = get_or_create_timeline(game_id, team_id)
    clip = _clip_in_timeline(timeline, clip_id)
    target_lane = camera_lane or clip.camera_lane

    if target_lane != clip.camera_lane:
        _validate_lane(team_id, timeline, target_lane)

    if not can_place_clip(_lane(timeline, target_lane), lane_position_ms, clip.duration_ms, exclude_clip_id=clip.id):
        raise InvalidRequestError("Clip would overlap another clip on this camera lane")

    client = db.require_client()
    client.table("video_group_members").update({
        "lane_position_ms": lane_position_ms,
        "camera_lane": target_lane,
    }).eq("id", clip.id).execute()
    return load_timeline(timeline.video_group_id, game_id)


def trim_clip(
    team_id: str,
    game_id: str,
    clip_id: str,
    start_offset_ms: int,
    end_offset_ms: Optional[int] = None,
) -> GameTimeline:
    timeline = get_or_create_timeline(game_id, team_id)
    clip = _clip_in_timeline(timeline, clip_id)

    if start_offset_ms < 0:
        raise InvalidRequestError("Trim start cannot be negative")
    if end_offset_ms is not None and end_offset_ms <= start_offset_ms:
        raise InvalidRequestError("Trim end must be after trim start")

    if end_offset_ms is not None:
        new_duration = end_offset_ms - start_offset_ms
        lane = _lane(timeline, clip.camera_lane)
        if not can_place_clip(lane, clip.lane_position_ms, new_duration, exclude_clip_id=clip.id):
            raise InvalidRequestError("Trimmed clip would overlap another clip on this camera lane")

    client = db.require_client()
    client.table("video_group_members").update({
        "start_offset_ms": start_offset_ms,
        "end_offset_ms": end_offset_ms,
    }).eq("id", clip.id).execute()
    return load_timeline(timeline.video_group_id, game_id)


def remove_clip(team_id: str, game_id: str, clip_id: str) -> GameTimeline:
    timeline = get_or_create_timeline(game_id, team_id)
    clip = _clip_in_timeline(timeline, clip_id)

    client = db.require_client()
    client.table("video_group_members").delete().eq("id", clip.id).execute()
    return load_timeline(timeline.video_group_id, game_id)


def update_lane_label(team_id: str, game_id: str, lane_no: int, label: str) -> GameTimeline:
    timeline = get_or_create_timeline(game_id, team_id)
    if not any(l.lane == lane_no for l in timeline.lanes):
        raise NotFoundError(f"Camera lane {lane_no} has no clips")

    client = db.require_client()
    (
        client.table("video_group_members")
        .update({"camera_label": label})
        .eq("video_group_id", timeline.video_group_id)
        .eq("camera_lane", lane_no)
        .execute()
    )
    return load_timeline(timeline.video_group_id, game_id)
