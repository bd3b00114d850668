"""
Camera synchronisation between game time and per-camera video time.

Game time is the shared timeline clock in milliseconds. Video time is the
playback position inside one camera's source file, in seconds. A clip maps
between them through its lane position and its start trim:

    video_seconds = (game_ms - lane_position_ms + start_offset_ms) / 1000
"""

from typing import Optional

from coachhub.models.timeline import (
    CameraLane,
    ClipSelectionResult,
    TimelineClip,
    find_active_clip_for_time,
    find_lane_for_video,
)


# =============================================================================
# Time conversion
# =============================================================================

def game_time_to_video_time(game_time_ms: float, clip: TimelineClip) -> float:
    """Convert game time (ms) to a seek position in the clip's video (seconds)."""
    video_ms = game_time_ms - clip.lane_position_ms + clip.start_offset_ms
    return max(0.0, video_ms / 1000)


def video_time_to_game_time(video_time_seconds: float, clip: TimelineClip) -> float:
    """Convert a video playback position (seconds) back to game time (ms)."""
    return clip.lane_position_ms + (video_time_seconds * 1000 - clip.start_offset_ms)


def legacy_game_time_to_video_time(game_time_ms: float, sync_offset_seconds: float) -> float:
    """Conversion for videos synced with a single per-video offset instead of lanes."""
    return max(0.0, (game_time_ms - sync_offset_seconds * 1000) / 1000)


def legacy_video_time_to_game_time(video_time_seconds: float, sync_offset_seconds: float) -> float:
    return video_time_seconds * 1000 + sync_offset_seconds * 1000


# =============================================================================
# Clip lookup
# =============================================================================

def find_next_coverage_start(lanes: list[CameraLane], after_ms: float) -> Optional[int]:
    """Earliest clip start on any lane strictly after the given time."""
    starts = [
        clip.lane_position_ms
        for lane in lanes
        for clip in lane.clips
        if clip.lane_position_ms > after_ms
    ]
    return min(starts) if starts else None


def find_clip_for_time(
    lanes: list[CameraLane],
    target_time_ms: float,
    preferred_lane: Optional[int] = None,
) -> ClipSelectionResult:
    """
    Pick the clip to show at a game time.

    The preferred lane wins when it has coverage. If it is in a gap, the gap
    is reported for that lane so the player can hold the viewer's chosen
    camera; a lane with no clips at all is one long gap. With no preferred
    lane, lanes are scanned in order.
    """
    if preferred_lane is not None:
        info = find_active_clip_for_time(lanes, preferred_lane, target_time_ms)
        if info.clip is not None:
            return ClipSelectionResult(
                clip=info.clip,
                video_id=info.clip.video_id,
                seek_time_seconds=game_time_to_video_time(target_time_ms, info.clip),
                is_in_gap=False,
                lane_number=preferred_lane,
            )
        return ClipSelectionResult(
            is_in_gap=True,
            next_coverage_start_ms=info.next_clip_start_ms,
            lane_number=preferred_lane,
        )

    for lane in lanes:
        info = find_active_clip_for_time(lanes, lane.lane, target_time_ms)
        if info.clip is not None:
            return ClipSelectionResult(
                clip=info.clip,
                video_id=info.clip.video_id,
                seek_time_seconds=game_time_to_video_time(target_time_ms, info.clip),
                is_in_gap=False,
                lane_number=lane.lane,
            )

    return ClipSelectionResult(
        is_in_gap=True,
        next_coverage_start_ms=find_next_coverage_start(lanes, target_time_ms),
        lane_number=None,
    )


def is_video_active_at_time(video_id: str, lanes: list[CameraLane], time_ms: float) -> bool:
    for lane in lanes:
        for clip in lane.clips:
            if clip.video_id == video_id and clip.covers(time_ms):
                return True
    return False


def get_clip_for_video(video_id: str, lanes: list[CameraLane], time_ms: float) -> Optional[TimelineClip]:
    """The video's clip covering the game time, looked up on the first lane holding the video."""
    lane_number = find_lane_for_video(lanes, video_id)
    if lane_number is None:
        return None
    lane = next(l for l in lanes if l.lane == lane_number)
    return next((c for c in lane.clips if c.video_id == video_id and c.covers(time_ms)), None)


def get_video_offset(clip: TimelineClip) -> int:
    """Game time at which the clip's source video would be at 0:00."""
    return clip.lane_position_ms - clip.start_offset_ms


def get_clip_end_time(clip: TimelineClip) -> int:
    return clip.end_ms


def find_next_clip_on_lane(current_clip: TimelineClip, lanes: list[CameraLane]) -> Optional[TimelineClip]:
    """The clip that follows on the same lane once the current one ends."""
    lane = next((l for l in lanes if l.lane == current_clip.camera_lane), None)
    if lane is None:
        return None

    current_end = current_clip.end_ms
    candidates = [
        c for c in lane.clips
        if c.id != current_clip.id and c.lane_position_ms >= current_end
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda c: c.lane_position_ms)


def calculate_timeline_duration(lanes: list[CameraLane]) -> int:
    ends = [clip.end_ms for lane in lanes for clip in lane.clips]
    return max(ends) if ends else 0
