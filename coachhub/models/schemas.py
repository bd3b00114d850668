"""Pydantic models for Coach Hub."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# Enums
class TeamLevel(str, Enum):
    YOUTH = "youth"
    MIDDLE_SCHOOL = "middle_school"
    HIGH_SCHOOL_JV = "high_school_jv"
    HIGH_SCHOOL = "high_school"


class MemberRole(str, Enum):
    OWNER = "owner"
    COACH = "coach"
    ANALYST = "analyst"
    VIEWER = "viewer"


class VideoStatus(str, Enum):
    """Status of a film upload."""
    UPLOADING = "uploading"
    READY = "ready"
    PROCESSING = "processing"
    ERROR = "error"


class GameType(str, Enum):
    """Which upload-token pool a game draws from."""
    TEAM = "team"
    OPPONENT = "opponent"


class TaggingTier(str, Enum):
    """Depth of play tagging; decides fields and AI model."""
    QUICK = "quick"
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"


class SubscriptionTier(str, Enum):
    BASIC = "basic"
    PLUS = "plus"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    NONE = "none"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    WAIVED = "waived"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class TokenTransactionType(str, Enum):
    MONTHLY_ALLOCATION = "monthly_allocation"
    ROLLOVER = "rollover"
    CONSUMPTION = "consumption"
    PURCHASE = "purchase"
    REFUND = "refund"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class TokenSource(str, Enum):
    SUBSCRIPTION = "subscription"
    PURCHASED = "purchased"


class PlaybookSide(str, Enum):
    OFFENSE = "offense"
    DEFENSE = "defense"
    SPECIAL_TEAMS = "special_teams"


class ContactLevel(str, Enum):
    NO_CONTACT = "no_contact"
    THUD = "thud"
    LIVE = "live"


class EquipmentWorn(str, Enum):
    HELMETS = "helmets"
    SHELLS = "shells"
    FULL_PADS = "full_pads"


# User models
class User(BaseModel):
    """Authenticated Supabase user."""
    id: UUID
    email: Optional[str] = None
    created_at: Optional[datetime] = None
    last_sign_in_at: Optional[datetime] = None


# Team and roster models
class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    level: TeamLevel = TeamLevel.HIGH_SCHOOL
    colors: Optional[dict[str, str]] = None
    default_tier: Optional[SubscriptionTier] = None


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    level: Optional[TeamLevel] = None
    colors: Optional[dict[str, str]] = None


class PlayerCreate(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    jersey_number: Optional[str] = Field(default=None, max_length=3)
    primary_position: Optional[str] = None
    position_depths: dict[str, int] = Field(default_factory=dict, description="Position code to depth (1 = starter)")
    grade_level: Optional[str] = None
    is_active: bool = True


class PlayerUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    jersey_number: Optional[str] = Field(default=None, max_length=3)
    primary_position: Optional[str] = None
    position_depths: Optional[dict[str, int]] = None
    grade_level: Optional[str] = None
    is_active: Optional[bool] = None


# Game and film models
class GameCreate(BaseModel):
    name: str = Field(..., min_length=1)
    opponent: Optional[str] = None
    game_date: Optional[date] = None
    location: Optional[str] = None
    is_opponent_game: bool = False
    tagging_tier: Optional[TaggingTier] = None


class GameUpdate(BaseModel):
    name: Optional[str] = None
    opponent: Optional[str] = None
    game_date: Optional[date] = None
    location: Optional[str] = None
    team_score: Optional[int] = Field(default=None, ge=0)
    opponent_score: Optional[int] = Field(default=None, ge=0)
    tagging_tier: Optional[TaggingTier] = None


class VideoUploadRequest(BaseModel):
    filename: str = Field(..., min_length=1)
    content_type: str = "video/mp4"
    file_size: Optional[int] = Field(default=None, ge=0)
    camera_label: Optional[str] = None
    camera_order: int = Field(default=1, ge=1, le=5)


class VideoCompleteRequest(BaseModel):
    duration_seconds: float = Field(..., gt=0)
    file_size: Optional[int] = Field(default=None, ge=0)


# Play tagging models
class PlayInstanceCreate(BaseModel):
    video_id: UUID
    timestamp_start: float = Field(..., ge=0, description="Seconds into the video")
    timestamp_end: Optional[float] = Field(default=None, ge=0)
    play_code: Optional[str] = None
    is_opponent_play: bool = False
    down: Optional[int] = Field(default=None, ge=1, le=4)
    distance: Optional[int] = Field(default=None, ge=0)
    yard_line: Optional[int] = Field(default=None, ge=0, le=100)
    hash_mark: Optional[str] = None
    quarter: Optional[int] = Field(default=None, ge=1, le=5)
    play_type: Optional[str] = None
    direction: Optional[str] = None
    formation: Optional[str] = None
    personnel: Optional[str] = None
    result: Optional[str] = None
    yards_gained: Optional[int] = None
    resulted_in_first_down: bool = False
    is_turnover: bool = False
    is_interception: bool = False
    ball_carrier_id: Optional[UUID] = None
    qb_id: Optional[UUID] = None
    target_id: Optional[UUID] = None
    notes: Optional[str] = None
    tagged_by_ai: bool = False
    ai_prediction_id: Optional[UUID] = None


class PlayInstanceUpdate(BaseModel):
    timestamp_start: Optional[float] = Field(default=None, ge=0)
    timestamp_end: Optional[float] = Field(default=None, ge=0)
    play_code: Optional[str] = None
    down: Optional[int] = Field(default=None, ge=1, le=4)
    distance: Optional[int] = Field(default=None, ge=0)
    yard_line: Optional[int] = Field(default=None, ge=0, le=100)
    hash_mark: Optional[str] = None
    quarter: Optional[int] = Field(default=None, ge=1, le=5)
    play_type: Optional[str] = None
    direction: Optional[str] = None
    formation: Optional[str] = None
    personnel: Optional[str] = None
    result: Optional[str] = None
    yards_gained: Optional[int] = None
    resulted_in_first_down: Optional[bool] = None
    is_turnover: Optional[bool] = None
    is_interception: Optional[bool] = None
    ball_carrier_id: Optional[UUID] = None
    qb_id: Optional[UUID] = None
    target_id: Optional[UUID] = None
    notes: Optional[str] = None


class PlaybookPlayCreate(BaseModel):
    play_code: str = Field(..., min_length=1, max_length=20)
    play_name: str = Field(..., min_length=1)
    side: PlaybookSide = PlaybookSide.OFFENSE
    formation: Optional[str] = None
    play_type: Optional[str] = None
    category: Optional[str] = None
    diagram: Optional[dict[str, Any]] = None


class PlaybookPlayUpdate(BaseModel):
    play_name: Optional[str] = None
    side: Optional[PlaybookSide] = None
    formation: Optional[str] = None
    play_type: Optional[str] = None
    category: Optional[str] = None
    diagram: Optional[dict[str, Any]] = None
    is_archived: Optional[bool] = None


# Subscription and billing models
class TierConfig(BaseModel):
    """Limits and allocations for one subscription tier."""
    tier: SubscriptionTier
    display_name: str
    price_monthly_cents: int = 0
    price_yearly_cents: int = 0
    max_cameras_per_game: int = 1
    max_active_games: Optional[int] = None
    max_team_games: Optional[int] = None
    max_opponent_games: Optional[int] = None
    retention_days: int = 30
    monthly_upload_tokens: int = 2
    monthly_team_tokens: Optional[int] = None
    monthly_opponent_tokens: Optional[int] = None
    team_rollover_cap: int = 0
    opponent_rollover_cap: int = 0
    max_video_duration_seconds: int = 10800
    ai_film_tagging_enabled: bool = True
    ai_chat_enabled: bool = False

    @property
    def team_allocation(self) -> int:
        if self.monthly_team_tokens is not None:
            return self.monthly_team_tokens
        return -(-self.monthly_upload_tokens // 2)

    @property
    def opponent_allocation(self) -> int:
        if self.monthly_opponent_tokens is not None:
            return self.monthly_opponent_tokens
        return self.monthly_upload_tokens // 2


class ConsumeTokenResult(BaseModel):
    success: bool
    message: str = ""
    source: Optional[TokenSource] = None
    game_type: Optional[GameType] = None


class TokenBalanceSummary(BaseModel):
    team_id: UUID
    team_available: int = 0
    team_subscription_available: int = 0
    team_purchased_available: int = 0
    team_used_this_period: int = 0
    opponent_available: int = 0
    opponent_subscription_available: int = 0
    opponent_purchased_available: int = 0
    opponent_used_this_period: int = 0
    total_available: int = 0
    monthly_team_allocation: int = 0
    monthly_opponent_allocation: int = 0
    team_rollover_cap: int = 0
    opponent_rollover_cap: int = 0
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    has_active_subscription: bool = False


class CheckoutRequest(BaseModel):
    tier: SubscriptionTier
    billing_cycle: BillingCycle = BillingCycle.MONTHLY


class TokenCheckoutRequest(BaseModel):
    quantity: int = Field(default=1, ge=1, le=50)
    game_type: GameType = GameType.TEAM


class TokenAdjustRequest(BaseModel):
    game_type: GameType
    delta: int
    notes: Optional[str] = None


# Trial models
class TrialStartRequest(BaseModel):
    tier: SubscriptionTier = SubscriptionTier.PLUS
    duration_days: Optional[int] = Field(default=None, ge=1, le=90)
    ai_credits_limit: Optional[int] = Field(default=None, ge=0)


class TrialExtendRequest(BaseModel):
    additional_days: int = Field(..., ge=1, le=90)


class TrialEndRequest(BaseModel):
    convert_to: Optional[SubscriptionTier] = None


class TrialStatus(BaseModel):
    team_id: UUID
    team_name: str
    has_had_trial: bool = False
    is_trialing: bool = False
    trial_ends_at: Optional[datetime] = None
    days_remaining: Optional[int] = None
    tier: Optional[str] = None
    status: str = SubscriptionStatus.NONE.value
    ai_credits_used: int = 0
    ai_credits_allowed: int = 0


# AI tagging models
class AnalyzeClipRequest(BaseModel):
    video_id: UUID
    clip_start_seconds: float = Field(..., ge=0)
    clip_end_seconds: float = Field(..., gt=0)
    tier: TaggingTier = TaggingTier.QUICK
    play_instance_id: Optional[UUID] = None
    offense_or_defense: str = "offense"
    previous_play_context: Optional[str] = None


class QualityAssessmentRequest(BaseModel):
    video_id: UUID


class CorrectionRequest(BaseModel):
    prediction_id: UUID
    play_instance_id: Optional[UUID] = None
    coach_values: dict[str, Any]


class FieldPrediction(BaseModel):
    value: Any = None
    confidence: float = Field(default=0, ge=0, le=100)
    notes: Optional[str] = None


class AnalysisResult(BaseModel):
    success: bool
    predictions: dict[str, FieldPrediction] = Field(default_factory=dict)
    overall_confidence: int = 0
    fields_analyzed: list[str] = Field(default_factory=list)
    fields_uncertain: list[str] = Field(default_factory=list)
    reasoning: Optional[str] = None
    audio_used: bool = False
    model_used: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0
    latency_ms: int = 0
    error: Optional[str] = None
    prediction_id: Optional[str] = None


# Practice planning models
class PracticePlanRequest(BaseModel):
    duration_minutes: int = Field(default=90, ge=30, le=240)
    focus_areas: list[str] = Field(default_factory=list)
    opponent_prep_notes: Optional[str] = None
    contact_level: Optional[ContactLevel] = None
    equipment_worn: Optional[EquipmentWorn] = None
    equipment_needed: list[str] = Field(default_factory=list)
    coach_count: int = Field(default=2, ge=1, le=10)
    conditioning_type: Optional[str] = None
    conditioning_minutes: int = Field(default=5, ge=0, le=30)
    game_id: Optional[UUID] = None


class RefinePlanRequest(BaseModel):
    plan: dict[str, Any]
    feedback: str = Field(..., min_length=1)


class SavePracticeRequest(BaseModel):
    plan: dict[str, Any]
    practice_date: Optional[date] = None
    location: Optional[str] = None


# Admin models
class AdminFlagRequest(BaseModel):
    is_platform_admin: bool


# Parent communication models
class ParentInviteRequest(BaseModel):
    email: str = Field(..., min_length=3)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    relationship: str = "parent"
    player_ids: list[UUID] = Field(default_factory=list)


class AcceptInviteRequest(BaseModel):
    token: str = Field(..., min_length=10)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
