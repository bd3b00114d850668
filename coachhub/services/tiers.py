"""Subscription tiers, entitlements and tier limits."""

import logging
import math
from datetime import timedelta
from typing import Optional

from coachhub.core.errors import LimitExceededError
from coachhub.db import database as db
from coachhub.models.schemas import SubscriptionStatus, SubscriptionTier, TierConfig

logger = logging.getLogger(__name__)

GRACE_PERIOD_DAYS = 7

ACCESS_STATUSES = {
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.TRIALING.value,
    SubscriptionStatus.WAIVED.value,
}

# Mirrors the seeded tier_config rows; used when a row is missing
DEFAULT_TIER_CONFIGS: dict[str, TierConfig] = {
    SubscriptionTier.BASIC.value: TierConfig(
        tier=SubscriptionTier.BASIC,
        display_name="Basic",
        price_monthly_cents=0,
        price_yearly_cents=0,
        max_cameras_per_game=1,
        max_active_games=2,
        max_team_games=1,
        max_opponent_games=1,
        retention_days=30,
        monthly_upload_tokens=2,
        monthly_team_tokens=1,
        monthly_opponent_tokens=1,
        team_rollover_cap=1,
        opponent_rollover_cap=1,
        ai_chat_enabled=False,
    ),
    SubscriptionTier.PLUS.value: TierConfig(
        tier=SubscriptionTier.PLUS,
        display_name="Plus",
        price_monthly_cents=2900,
        price_yearly_cents=29000,
        max_cameras_per_game=3,
        retention_days=180,
        monthly_upload_tokens=4,
        monthly_team_tokens=2,
        monthly_opponent_tokens=2,
        team_rollover_cap=4,
        opponent_rollover_cap=4,
        ai_chat_enabled=False,
    ),
    SubscriptionTier.PREMIUM.value: TierConfig(
        tier=SubscriptionTier.PREMIUM,
        display_name="Premium",
        price_monthly_cents=7900,
        price_yearly_cents=79000,
        max_cameras_per_game=5,
        retention_days=365,
        monthly_upload_tokens=8,
        monthly_team_tokens=4,
        monthly_opponent_tokens=4,
        team_rollover_cap=8,
        opponent_rollover_cap=8,
        ai_chat_enabled=True,
    ),
}


# =============================================================================
# Tier configuration
# =============================================================================

def get_tier_config(tier: Optional[str]) -> TierConfig:
    """Tier limits from the tier_config table, falling back to built-in defaults."""
    tier = tier or SubscriptionTier.BASIC.value
    default = DEFAULT_TIER_CONFIGS.get(tier, DEFAULT_TIER_CONFIGS[SubscriptionTier.BASIC.value])

    client = db.get_service_client()
    if not client:
        return default

    row = db.first_row(client.table("tier_config").select("*").eq("tier", tier).limit(1).execute())
    if not row:
        return default

    overrides = {
        k: v for k, v in row.items()
        if k in TierConfig.model_fields and k != "tier" and v is not None
    }
    # Nullable limits mean unlimited and must be able to override a default cap
    for key in ("max_active_games", "max_team_games", "max_opponent_games"):
        if key in row:
            overrides[key] = row[key]
    return default.model_copy(update=overrides)


def list_tier_configs() -> list[TierConfig]:
    return [get_tier_config(tier.value) for tier in SubscriptionTier]


# =============================================================================
# Subscriptions and entitlements
# =============================================================================

def get_subscription(team_id: str) -> Optional[dict]:
    client = db.require_client()
    result = client.table("subscriptions").select("*").eq("team_id", str(team_id)).limit(1).execute()
    return db.first_row(result)


def _grace_days_remaining(subscription: dict) -> int:
    since = db.parse_timestamp(subscription.get("past_due_since"))
    if not since:
        return GRACE_PERIOD_DAYS
    remaining = (since + timedelta(days=GRACE_PERIOD_DAYS)) - db.utc_now()
    return max(0, math.ceil(remaining.total_seconds() / 86400))


def get_team_entitlements(team_id: str) -> dict:
    """Tier limits plus whether the subscription currently grants access."""
    subscription = get_subscription(team_id)
    tier = (subscription or {}).get("tier") or SubscriptionTier.BASIC.value
    status = (subscription or {}).get("status") or SubscriptionStatus.NONE.value
    config = get_tier_config(tier)

    in_grace = False
    grace_days = None
    if status in ACCESS_STATUSES:
        has_access = True
    elif status == SubscriptionStatus.PAST_DUE.value:
        grace_days = _grace_days_remaining(subscription)
        in_grace = grace_days > 0
        has_access = in_grace
    else:
        has_access = False

    return {
        "team_id": str(team_id),
        "tier": tier,
        "status": status,
        "has_access": has_access,
        "is_in_grace_period": in_grace,
        "grace_days_remaining": grace_days,
        "config": config.model_dump(mode="json"),
    }


def check_feature_access(team_id: str, feature: str) -> dict:
    """Raise unless the team's tier includes the feature and access isn't suspended."""
    entitlements = get_team_entitlements(team_id)
    if not entitlements["has_access"]:
        raise LimitExceededError(
            "Your subscription is inactive. Update billing to continue.",
            code="SUBSCRIPTION_INACTIVE",
        )

    flag = f"{feature}_enabled"
    if not entitlements["config"].get(flag, False):
        raise LimitExceededError(
            f"{feature.replace('_', ' ').title()} is not included in the {entitlements['tier']} plan",
            code="FEATURE_NOT_AVAILABLE",
        )
    return entitlements


# =============================================================================
# Limits
# =============================================================================

def check_game_limit(team_id: str, is_opponent_game: bool) -> None:
    subscription = get_subscription(team_id)
    config = get_tier_config((subscription or {}).get("tier"))

    limit = config.max_opponent_games if is_opponent_game else config.max_team_games
    if limit is None:
        return

    existing = db.count_games(team_id, is_opponent_game)
    if existing >= limit:
        kind = "opponent scouting" if is_opponent_game else "team"
        raise LimitExceededError(
            f"The {config.display_name} plan allows {limit} {kind} game(s). Upgrade to add more.",
            code="GAME_LIMIT_REACHED",
        )


def check_video_limits(team_id: str, game_id: str, duration_seconds: Optional[float], camera_order: int) -> None:
    """Enforce max film length and the per-game camera count for the team's tier."""
    subscription = get_subscription(team_id)
    config = get_tier_config((subscription or {}).get("tier"))

    if duration_seconds is not None and duration_seconds > config.max_video_duration_seconds:
        raise LimitExceededError(
            f"Video is longer than the {config.max_video_duration_seconds // 3600} hour limit",
            code="VIDEO_TOO_LONG",
        )

    cameras = {v.get("camera_order") or 1 for v in db.list_game_videos(game_id)}
    cameras.add(camera_order)
    if len(cameras) > config.max_cameras_per_game:
        raise LimitExceededError(
            f"The {config.display_name} plan allows {config.max_cameras_per_game} camera angle(s) per game",
            code="CAMERA_LIMIT_REACHED",
        )
