"""
Tagging tiers, Gemini model selection and film-analysis prompts.

Each tagging tier decides which play fields the AI fills in, which Gemini
model runs the analysis, and which prompt template is sent with the clip.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

from coachhub.core.config import settings
from coachhub.models.schemas import TaggingTier

# =============================================================================
# PROMPTS
# =============================================================================

QUALITY_ASSESSMENT_PROMPT = """Analyze this football game film sample (first 30 seconds) and assess recording quality for AI-assisted play tagging.

**Evaluate:**

1. Camera:
   - Angle: sideline, endzone, elevated (press box), drone, or mixed
   - Stability: steady (tripod), moderate (handheld stable), shaky
   - Field visibility: full (whole field), partial (60-80%), limited (<60%)

2. Audio (if present):
   - Can you hear whistles clearly?
   - Can you hear snap cadence?

3. Quality Score: 1-10 overall usefulness for AI play tagging

**Based on this assessment, indicate what AI can reliably detect:**
- Play type (run/pass): high/medium/low confidence expected
- Direction (left/middle/right): high/medium/low
- Formation: high/medium/low
- Result: high/medium/low
- Yards gained: high/medium/low

**Provide 2-3 specific tips for better film next game.**

Return ONLY valid JSON (no markdown):
{
  "camera_angle": "sideline",
  "stability": "steady",
  "field_visibility": "partial",
  "quality_score": 7,
  "audio": {
    "available": true,
    "quality": "moderate",
    "can_hear_whistle": true,
    "can_hear_cadence": false
  },
  "ai_capabilities": {
    "play_type": { "expected_confidence": "high", "notes": "" },
    "direction": { "expected_confidence": "high", "notes": "" },
    "formation": { "expected_confidence": "medium", "notes": "Distance limits detail" },
    "result": { "expected_confidence": "high", "notes": "" },
    "yards_gained": { "expected_confidence": "low", "notes": "Yard markers not fully visible" }
  },
  "improvement_tips": [
    "Move camera to midfield for balanced view of both directions",
    "Elevate camera 10-15 feet to see over players on sideline"
  ]
}"""

_CONTEXT_BLOCK = """**Context:**
- Team level: {team_level}
- Our team is on: {offense_or_defense}
- Film quality: {quality_score}/10
- Audio available: {audio_available}"""

_SPECIAL_TEAMS_BLOCK = """**If play_type is "special_teams", also return:**
- special_teams_unit: "kickoff", "kick_return", "punt", "punt_return", "field_goal", "pat"
- kick_result: "made", "missed", "blocked", "returned", "touchback", "fair_catch", "out_of_bounds"
- kick_distance: Yards the kick travelled
- return_yards: Yards gained on the return"""

_CONFIDENCE_GUIDE = """**Confidence Guidelines:**
- 80-100: Very clear, high certainty
- 60-79: Reasonably confident
- 40-59: Best guess, coach should verify
- Below 40: Uncertain, flag for review"""

QUICK_TAG_PROMPT = f"""Analyze this football play clip and suggest tags for QUICK tagging mode.

{_CONTEXT_BLOCK}

**Analyze these Quick Tag fields ONLY:**
- play_type: "run", "pass", or "special_teams"
- direction: "left", "middle", "right"
- result: For runs (gain, loss, no_gain, fumble, touchdown). For passes (complete, incomplete, interception, touchdown, sack)
- yards_gained: Estimate yards (negative for losses, use your best judgment)

{_SPECIAL_TEAMS_BLOCK}

**If audio is available, use it to:**
- Confirm play timing (whistle, snap)
- Increase confidence when audio confirms visual

Return ONLY valid JSON (no markdown):
{{
  "play_type": {{ "value": "pass", "confidence": 85 }},
  "direction": {{ "value": "right", "confidence": 78 }},
  "result": {{ "value": "complete", "confidence": 90 }},
  "yards_gained": {{ "value": 12, "confidence": 55, "notes": "Estimated - yard lines partially visible" }},
  "audio_used": true,
  "reasoning": "Brief explanation of what you observed"
}}

{_CONFIDENCE_GUIDE}"""

STANDARD_TAG_PROMPT = f"""Analyze this football play clip and suggest tags for STANDARD tagging mode.

{_CONTEXT_BLOCK}
- Previous play context: {{previous_play_context}}

**Analyze these Standard Tag fields:**

Basic (from Quick):
- play_type: "run", "pass", "special_teams"
- direction: "left", "middle", "right"
- result: (see Quick Tag options)
- yards_gained: Estimate

Additional Standard fields:
- formation: Common formations (shotgun, pistol, i_form, singleback, empty, spread, wing_t, goal_line, etc.)
- personnel: If identifiable (11, 12, 21, 22, 10, etc. - first digit = RBs, second = TEs)
- hash: "left", "middle", "right" (where ball is spotted)
- down: 1-4 if visible or deducible
- distance: Yards to go if visible

{_SPECIAL_TEAMS_BLOCK}
- is_touchback: true/false
- is_fair_catch: true/false

Return ONLY valid JSON (no markdown):
{{
  "play_type": {{ "value": "pass", "confidence": 85 }},
  "direction": {{ "value": "right", "confidence": 78 }},
  "result": {{ "value": "complete", "confidence": 90 }},
  "yards_gained": {{ "value": 12, "confidence": 55 }},
  "formation": {{ "value": "shotgun", "confidence": 72, "notes": "4 WR visible" }},
  "personnel": {{ "value": "11", "confidence": 65 }},
  "hash": {{ "value": "left", "confidence": 80 }},
  "down": {{ "value": 2, "confidence": 40, "notes": "Not visible, guessing from context" }},
  "distance": {{ "value": 7, "confidence": 40 }},
  "audio_used": false,
  "fields_uncertain": ["down", "distance", "yards_gained"],
  "reasoning": "Brief explanation of what you observed"
}}"""

COMPREHENSIVE_TAG_PROMPT = f"""Analyze this football play clip in detail for COMPREHENSIVE tagging mode.

{_CONTEXT_BLOCK}
- Previous play context: {{previous_play_context}}
- Team's playbook formations: {{playbook_formations}}

**Analyze ALL detectable fields:**

Basic (Quick):
- play_type, direction, result, yards_gained

Formation & Personnel (Standard):
- formation (match to team's playbook if possible)
- personnel
- hash
- down, distance

Situational (Comprehensive):
- field_zone: "own_territory", "midfield", "opponent_territory", "red_zone"
- quarter: 1-4 if visible
- motion: true/false (was there pre-snap motion?)
- play_action: true/false (for passes)

Play Details (if detectable):
- run_concept: "inside_zone", "outside_zone", "power", "counter", "sweep", "draw", "dive" (for runs)
- pass_concept: "quick_game", "dropback", "screen", "play_action", "rollout" (for passes)

{_SPECIAL_TEAMS_BLOCK}
- is_touchback, is_fair_catch, is_muffed: true/false
- punt_type: "standard", "rugby", "pooch", "directional"
- kickoff_type: "deep", "squib", "onside", "pooch"

**Do NOT guess at:**
- Specific play name from playbook
- Player grades
- Individual blocking assignments

Return ONLY valid JSON (no markdown):
{{
  "play_type": {{ "value": "pass", "confidence": 85 }},
  "direction": {{ "value": "right", "confidence": 78 }},
  "result": {{ "value": "complete", "confidence": 90 }},
  "yards_gained": {{ "value": 12, "confidence": 55 }},
  "formation": {{ "value": "shotgun", "confidence": 72 }},
  "personnel": {{ "value": "11", "confidence": 65 }},
  "hash": {{ "value": "left", "confidence": 80 }},
  "down": {{ "value": 2, "confidence": 40 }},
  "distance": {{ "value": 7, "confidence": 40 }},
  "field_zone": {{ "value": "midfield", "confidence": 75 }},
  "quarter": {{ "value": 2, "confidence": 30 }},
  "motion": {{ "value": true, "confidence": 85 }},
  "play_action": {{ "value": false, "confidence": 90 }},
  "pass_concept": {{ "value": "quick_game", "confidence": 60 }},
  "audio_used": false,
  "fields_uncertain": ["down", "distance", "quarter"],
  "reasoning": "Detailed explanation of what you observed and why you made these predictions"
}}"""


def build_prompt(
    template: str,
    team_level: Optional[str] = None,
    offense_or_defense: Optional[str] = None,
    quality_score: Optional[int] = None,
    audio_available: bool = False,
    previous_play_context: Optional[str] = None,
    playbook_formations: Optional[list[str]] = None,
) -> str:
    """Fill a tagging prompt's placeholders, using defaults for anything unknown."""
    replacements = {
        "{team_level}": team_level or "High School",
        "{offense_or_defense}": offense_or_defense or "offense",
        "{quality_score}": str(quality_score or 7),
        "{audio_available}": "Yes" if audio_available else "No",
        "{previous_play_context}": previous_play_context or "None",
        "{playbook_formations}": ", ".join(playbook_formations) if playbook_formations else "Standard formations",
    }
    for placeholder, value in replacements.items():
        template = template.replace(placeholder, value)
    return template


# =============================================================================
# TIERS AND MODELS
# =============================================================================

SPECIAL_TEAMS_FIELDS = ["special_teams_unit", "kick_result", "kick_distance", "return_yards"]
QUICK_FIELDS = ["play_type", "direction", "result", "yards_gained"]
STANDARD_FIELDS = QUICK_FIELDS + ["formation", "personnel", "hash", "down", "distance"]
COMPREHENSIVE_FIELDS = STANDARD_FIELDS + [
    "field_zone", "quarter", "motion", "play_action", "run_concept", "pass_concept",
]

UNCERTAIN_CONFIDENCE = 50


@dataclass
class TaggingTierConfig:
    model_id: str
    model_display_name: str
    prompt: str
    fields: list[str] = field(default_factory=list)
    description: str = ""
    estimated_seconds: int = 2


def flash_model() -> str:
    return settings.gemini_flash_model


def pro_model() -> str:
    return settings.gemini_pro_model


def get_config_for_tier(tier: str) -> TaggingTierConfig:
    tier = TaggingTier(tier).value
    if tier == TaggingTier.QUICK.value:
        return TaggingTierConfig(
            model_id=flash_model(),
            model_display_name="Gemini Flash",
            prompt=QUICK_TAG_PROMPT,
            fields=QUICK_FIELDS + SPECIAL_TEAMS_FIELDS,
            description="Fast analysis for basic game logging",
            estimated_seconds=2,
        )
    if tier == TaggingTier.STANDARD.value:
        return TaggingTierConfig(
            model_id=pro_model(),
            model_display_name="Gemini Pro",
            prompt=STANDARD_TAG_PROMPT,
            fields=STANDARD_FIELDS + SPECIAL_TEAMS_FIELDS + ["is_touchback", "is_fair_catch"],
            description="Detailed analysis for tendency tracking and game planning",
            estimated_seconds=4,
        )
    return TaggingTierConfig(
        model_id=pro_model(),
        model_display_name="Gemini Pro",
        prompt=COMPREHENSIVE_TAG_PROMPT,
        fields=COMPREHENSIVE_FIELDS + SPECIAL_TEAMS_FIELDS + [
            "is_touchback", "is_fair_catch", "is_muffed", "punt_type", "kickoff_type",
        ],
        description="Full analysis for deep film study",
        estimated_seconds=5,
    )


def get_model_fallback_chain(tier: str) -> list[str]:
    """Models to try in order when the preferred one is unavailable."""
    if TaggingTier(tier) == TaggingTier.QUICK:
        chain = [flash_model(), "gemini-1.5-flash-latest", "gemini-1.5-flash-8b", pro_model()]
    else:
        chain = [pro_model(), "gemini-1.5-pro-latest", "gemini-1.5-pro-002", flash_model()]
    # Configured models may already appear later in the chain
    return list(dict.fromkeys(chain))


def is_model_unavailable_error(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in ("not found", "not supported", "does not exist", "deprecated", "404"))


def estimate_batch_time(tier: str, play_count: int) -> dict:
    total_seconds = get_config_for_tier(tier).estimated_seconds * play_count
    if total_seconds < 60:
        return {"seconds": total_seconds, "formatted": f"~{total_seconds} seconds"}

    minutes = math.ceil(total_seconds / 60)
    return {"seconds": total_seconds, "formatted": f"~{minutes} minute{'s' if minutes > 1 else ''}"}


# USD per token
FLASH_RATES = {"input": 0.075 / 1_000_000, "output": 0.30 / 1_000_000}
PRO_RATES = {"input": 1.25 / 1_000_000, "output": 5.0 / 1_000_000}


def calculate_cost(model_id: str, input_tokens: int, output_tokens: int) -> float:
    """Approximate USD cost of one request; unknown models are billed at flash rates."""
    rates = PRO_RATES if "pro" in model_id.lower() else FLASH_RATES
    return input_tokens * rates["input"] + output_tokens * rates["output"]
