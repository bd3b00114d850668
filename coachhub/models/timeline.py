"""Multi-camera game timeline models and pure timeline helpers.

All timeline positions and durations are integer milliseconds of game time.
A clip occupies the half-open interval [lane_position_ms, lane_position_ms + duration_ms).
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

# =============================================================================
# Constants
# =============================================================================

MAX_LANES = 5
SNAP_GRID_MS = 1000
ZOOM_LEVELS = [1, 2, 4, 8, 16]
PIXELS_PER_SECOND_BASE = 0.25
DEFAULT_PRELOAD_WINDOW_MS = 10000

DEFAULT_LANE_LABELS = {lane: f"Camera {lane}" for lane in range(1, MAX_LANES + 1)}

SUGGESTED_LANE_LABELS = [
    "Sideline",
    "End Zone",
    "Press Box",
    "Aerial",
    "All-22",
    "Parent/Fan",
    "Game Broadcast",
    "Coaches Film",
]


# =============================================================================
# Models
# =============================================================================

class TimelineClip(BaseModel):
    """A video placed on a camera lane."""
    id: str
    video_id: str
    video_name: str = ""
    video_url: Optional[str] = None
    camera_lane: int = Field(..., ge=1, le=MAX_LANES)
    lane_position_ms: int = Field(default=0, ge=0, description="Where the clip starts on the game timeline")
    duration_ms: int = Field(..., ge=0, description="Visible duration after trimming")
    start_offset_ms: int = Field(default=0, ge=0, description="Trim from the start of the source video")
    end_offset_ms: Optional[int] = Field(default=None, ge=0, description="Trim end point in the source video")
    thumbnail_url: Optional[str] = None

    @property
    def end_ms(self) -> int:
        return self.lane_position_ms + self.duration_ms

    def covers(self, time_ms: float) -> bool:
        return self.lane_position_ms <= time_ms < self.end_ms


class CameraLane(BaseModel):
    lane: int = Field(..., ge=1, le=MAX_LANES)
    label: str = ""
    clips: list[TimelineClip] = Field(default_factory=list)
    sync_offset_ms: int = 0


class GameTimeline(BaseModel):
    game_id: str
    video_group_id: Optional[str] = None
    total_duration_ms: int = 0
    lanes: list[CameraLane] = Field(default_factory=list)
    is_timeline_mode: bool = True


class ActiveClipInfo(BaseModel):
    """What a single lane shows at a given game time."""
    clip: Optional[TimelineClip] = None
    clip_time_ms: float = 0
    is_in_gap: bool = True
    next_clip_start_ms: Optional[int] = None


class ClipSelectionResult(BaseModel):
    """Which clip to play, and where to seek, for a requested game time."""
    clip: Optional[TimelineClip] = None
    video_id: Optional[str] = None
    seek_time_seconds: float = 0
    is_in_gap: bool = True
    next_coverage_start_ms: Optional[int] = None
    lane_number: Optional[int] = None


class ClipBoundary(BaseModel):
    time: int
    type: str  # start | end
    clip: TimelineClip
    lane: int


class LaneGap(BaseModel):
    start: int
    end: int


# Request bodies for timeline editing

class AddClipRequest(BaseModel):
    video_id: UUID
    camera_lane: int = Field(..., ge=1, le=MAX_LANES)
    lane_position_ms: int = Field(default=0, ge=0)
    camera_label: Optional[str] = None


class MoveClipRequest(BaseModel):
    lane_position_ms: int = Field(..., ge=0)
    camera_lane: Optional[int] = Field(default=None, ge=1, le=MAX_LANES)


class TrimClipRequest(BaseModel):
    start_offset_ms: int = Field(..., ge=0)
    end_offset_ms: Optional[int] = Field(default=None, ge=0)


class LaneLabelRequest(BaseModel):
    label: str = Field(..., min_length=1, max_length=50)


# =============================================================================
# Pure helpers
# =============================================================================

def find_active_clip_for_time(lanes: list[CameraLane], lane_number: int, time_ms: float) -> ActiveClipInfo:
    """Find the clip playing on one lane at a game time, or describe the gap."""
    lane = next((l for l in lanes if l.lane == lane_number), None)
    if lane is None or not lane.clips:
        return ActiveClipInfo(clip=None, clip_time_ms=0, is_in_gap=True, next_clip_start_ms=None)

    sorted_clips = sorted(lane.clips, key=lambda c: c.lane_position_ms)

    for clip in sorted_clips:
        if clip.covers(time_ms):
            return ActiveClipInfo(
                clip=clip,
                clip_time_ms=time_ms - clip.lane_position_ms,
                is_in_gap=False,
                next_clip_start_ms=None,
            )

    next_clip = next((c for c in sorted_clips if c.lane_position_ms > time_ms), None)
    return ActiveClipInfo(
        clip=None,
        clip_time_ms=0,
        is_in_gap=True,
        next_clip_start_ms=next_clip.lane_position_ms if next_clip else None,
    )


def find_lane_for_video(lanes: list[CameraLane], video_id: str) -> Optional[int]:
    for lane in lanes:
        if any(c.video_id == video_id for c in lane.clips):
            return lane.lane
    return None


def format_time_ms(ms: float) -> str:
    """Format milliseconds as m:ss, or h:mm:ss from one hour up."""
    total_seconds = int(ms // 1000)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def parse_time_to_ms(value: str) -> int:
    """Parse m:ss or h:mm:ss into milliseconds. Unparseable input gives 0."""
    parts = value.strip().split(":")
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        return 0

    if len(numbers) == 3:
        hours, minutes, seconds = numbers
        return (hours * 3600 + minutes * 60 + seconds) * 1000
    if len(numbers) == 2:
        minutes, seconds = numbers
        return (minutes * 60 + seconds) * 1000
    return 0


def snap_to_grid(ms: float, grid_ms: int = SNAP_GRID_MS) -> int:
    # Half-up rounding; Python's round() would bank 500 down to 0
    return int((ms + grid_ms / 2) // grid_ms) * grid_ms


def time_to_pixels(ms: float, zoom_level: float) -> float:
    return (ms / 1000) * PIXELS_PER_SECOND_BASE * zoom_level


def pixels_to_time(pixels: float, zoom_level: float) -> float:
    return (pixels / (PIXELS_PER_SECOND_BASE * zoom_level)) * 1000
