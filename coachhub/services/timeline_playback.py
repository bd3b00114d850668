"""Playback navigation and clip placement on a multi-camera timeline."""

from typing import Optional

from coachhub.models.timeline import (
    DEFAULT_PRELOAD_WINDOW_MS,
    ActiveClipInfo,
    CameraLane,
    ClipBoundary,
    GameTimeline,
    LaneGap,
    TimelineClip,
)


def _all_clips(timeline: GameTimeline) -> list[TimelineClip]:
    return [clip for lane in timeline.lanes for clip in lane.clips]


# =============================================================================
# Active clips
# =============================================================================

def get_active_clip_for_lane(lane: CameraLane, timeline_ms: float) -> ActiveClipInfo:
    """Active clip on a lane; clip_time_ms is the position inside the source video."""
    sorted_clips = sorted(lane.clips, key=lambda c: c.lane_position_ms)

    for clip in sorted_clips:
        if clip.covers(timeline_ms):
            return ActiveClipInfo(
                clip=clip,
                clip_time_ms=to_clip_time(clip, timeline_ms),
                is_in_gap=False,
            )

    next_clip = next((c for c in sorted_clips if c.lane_position_ms > timeline_ms), None)
    return ActiveClipInfo(
        clip=None,
        clip_time_ms=0,
        is_in_gap=True,
        next_clip_start_ms=next_clip.lane_position_ms if next_clip else None,
    )


def get_active_clips_for_all_lanes(timeline: GameTimeline, timeline_ms: float) -> dict[int, ActiveClipInfo]:
    return {lane.lane: get_active_clip_for_lane(lane, timeline_ms) for lane in timeline.lanes}


def to_clip_time(clip: TimelineClip, timeline_ms: float) -> float:
    return timeline_ms - clip.lane_position_ms + clip.start_offset_ms


def to_timeline_time(clip: TimelineClip, clip_ms: float) -> float:
    return clip.lane_position_ms + clip_ms - clip.start_offset_ms


# =============================================================================
# Navigation
# =============================================================================

def get_next_clip_boundary(timeline: GameTimeline, timeline_ms: float) -> Optional[int]:
    """Nearest clip start or end strictly after the given time."""
    boundaries = []
    for clip in _all_clips(timeline):
        if clip.lane_position_ms > timeline_ms:
            boundaries.append(clip.lane_position_ms)
        if clip.end_ms > timeline_ms:
            boundaries.append(clip.end_ms)
    return min(boundaries) if boundaries else None


def is_in_gap(lane: CameraLane, timeline_ms: float) -> bool:
    return not any(clip.covers(timeline_ms) for clip in lane.clips)


def get_next_clip_after_time(lane: CameraLane, timeline_ms: float) -> Optional[TimelineClip]:
    upcoming = [c for c in lane.clips if c.lane_position_ms > timeline_ms]
    return min(upcoming, key=lambda c: c.lane_position_ms) if upcoming else None


def get_previous_clip_before_time(lane: CameraLane, timeline_ms: float) -> Optional[TimelineClip]:
    finished = [c for c in lane.clips if c.end_ms <= timeline_ms]
    return max(finished, key=lambda c: c.end_ms) if finished else None


def get_resume_time(lane: CameraLane, timeline_ms: float) -> Optional[int]:
    """Where playback picks up on this lane after a gap."""
    next_clip = get_next_clip_after_time(lane, timeline_ms)
    return next_clip.lane_position_ms if next_clip else None


def get_clips_to_preload(
    timeline: GameTimeline,
    timeline_ms: float,
    window_ms: int = DEFAULT_PRELOAD_WINDOW_MS,
) -> list[TimelineClip]:
    horizon = timeline_ms + window_ms
    return [
        clip for clip in _all_clips(timeline)
        if timeline_ms < clip.lane_position_ms <= horizon
    ]


def get_all_clip_boundaries(timeline: GameTimeline) -> list[ClipBoundary]:
    boundaries = []
    for lane in timeline.lanes:
        for clip in lane.clips:
            boundaries.append(ClipBoundary(time=clip.lane_position_ms, type="start", clip=clip, lane=lane.lane))
            boundaries.append(ClipBoundary(time=clip.end_ms, type="end", clip=clip, lane=lane.lane))
    return sorted(boundaries, key=lambda b: b.time)


# =============================================================================
# Placement
# =============================================================================

def find_gaps_in_lane(lane: CameraLane, total_duration_ms: int) -> list[LaneGap]:
    gaps = []
    cursor = 0
    for clip in sorted(lane.clips, key=lambda c: c.lane_position_ms):
        if clip.lane_position_ms > cursor:
            gaps.append(LaneGap(start=cursor, end=clip.lane_position_ms))
        cursor = max(cursor, clip.end_ms)
    if cursor < total_duration_ms:
        gaps.append(LaneGap(start=cursor, end=total_duration_ms))
    return gaps


def can_place_clip(
    lane: CameraLane,
    position_ms: int,
    duration_ms: int,
    exclude_clip_id: Optional[str] = None,
) -> bool:
    """True if [position, position + duration) overlaps no other clip on the lane."""
    new_end = position_ms + duration_ms
    for clip in lane.clips:
        if exclude_clip_id and clip.id == exclude_clip_id:
            continue
        if position_ms < clip.end_ms and new_end > clip.lane_position_ms:
            return False
    return True


def find_closest_valid_position(
    lane: CameraLane,
    target_position_ms: int,
    duration_ms: int,
    exclude_clip_id: Optional[str] = None,
) -> int:
    """
    Position near the target where the clip overlaps nothing.

    Tries the target itself, then the end of each existing clip in lane
    order, then just before the start of each existing clip. If nothing fits the clip goes after
    the last clip on the lane.
    """
    if can_place_clip(lane, target_position_ms, duration_ms, exclude_clip_id):
        return target_position_ms

    others = sorted(
        (c for c in lane.clips if c.id != exclude_clip_id),
        key=lambda c: c.lane_position_ms,
    )

    for clip in others:
        if can_place_clip(lane, clip.end_ms, duration_ms, exclude_clip_id):
            return clip.end_ms

    for clip in others:
        before = clip.lane_position_ms - duration_ms
        if before >= 0 and can_place_clip(lane, before, duration_ms, exclude_clip_id):
            return before

    return max((c.end_ms for c in others), default=0)


def calculate_sync_offset(reference_time_1_ms: float, reference_time_2_ms: float) -> float:
    """Offset to apply to camera 2 so the same moment lines up with camera 1."""
    return reference_time_1_ms - reference_time_2_ms
