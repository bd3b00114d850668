"""
AI practice plans.

Gemini receives level-specific coaching guidelines, the required practice
structure and the team's analytics, and answers with a JSON plan made of
periods and drills. Plans can be refined with coach feedback and saved as
practice_plans / practice_periods / practice_drills rows.
"""

import json
import logging
from typing import Optional

from google.genai import types

from coachhub.core.config import settings
from coachhub.core.errors import ExternalServiceError, NotFoundError
from coachhub.db import database as db
from coachhub.models.schemas import PracticePlanRequest
from coachhub.services import analytics
from coachhub.services.play_analyzer import get_client

logger = logging.getLogger(__name__)

DURATION_TOLERANCE_MINUTES = 5
PERIOD_TYPES = {"warmup", "drill", "team", "special_teams", "conditioning", "other"}
POSITION_GROUPS = {"All", "OL", "RB", "WR", "TE", "QB", "DL", "LB", "DB"}

# =============================================================================
# PROMPTS
# =============================================================================

TEAM_LEVEL_GUIDELINES = {
    "youth": """
## 8U-10U Guidelines (Youth)
- Focus on FUNDAMENTALS: stance, hand placement, basic tackling form
- Short drills: 5-8 minutes maximum per drill
- High variety: change activities often to keep players engaged
- Fun emphasis: include games and competitions
- No complex schemes and no live tackling
- Every player gets repetitions""",

    "middle_school": """
## 11U-12U Guidelines (Middle School)
- Basic concepts: zone vs man coverage, pulling guards
- 8-10 minute drills with clear coaching points
- Start grouping by position for some drills
- Simple reads: 1-2 read progressions for QB, basic gap responsibility
- Limited contact: thud tempo, controlled scrimmage""",

    "high_school_jv": """
## JV High School Guidelines
- Basic offensive and defensive scheme installation
- 10-12 minute drill periods
- Dedicated position work with position coaches
- Competitive drills with winners and losers
- Football-specific conditioning
- Mirror varsity terminology and concepts""",

    "high_school": """
## Varsity High School Guidelines
- Full complexity: advanced schemes, motions, audibles
- 10-15 minute concentrated periods
- Situational work: red zone, 2-minute, goal line
- Correct specific game film mistakes
- Scout-specific periods when preparing for an opponent
- Plan tempo and contact level thoughtfully""",

    "default": """
## General Practice Guidelines
- Age-appropriate drill selection
- Balance fundamentals with scheme installation
- Mix individual, group, and team periods
- Ensure all position groups have work""",
}

PRACTICE_STRUCTURE = """
## REQUIRED Practice Structure (in this order)

1. Coach Talk (5-10 min, period_type "other")
2. Warmup (10-15 min, period_type "warmup")
3. Individual/Position Drills (15-25 min, period_type "drill"), 2-4 named drills per period
4. Group Work (10-20 min, period_type "drill")
5. Team Periods (20-40 min, period_type "team"), include playbook plays when available
6. Special Teams (5-10 min, period_type "special_teams"), optional
7. Conditioning (5-15 min, period_type "conditioning")

Concurrent periods run at the same time: mark them "is_concurrent": true with the
same "start_time" (minutes from practice start). Their duration counts once.

Every drill needs a name AND a 1-2 sentence description of how to run it.
Non-concurrent period durations must add up to EXACTLY the requested duration.
"""

OUTPUT_FORMAT = """
## Output Format

Return valid JSON matching this structure:
{
  "title": "Practice Title",
  "duration_minutes": 90,
  "focus_areas": ["Area 1", "Area 2"],
  "ai_reasoning": "Brief explanation of focus selection based on data",
  "periods": [
    {
      "name": "Period Name",
      "duration_minutes": 15,
      "period_type": "warmup|drill|team|special_teams|conditioning|other",
      "is_concurrent": false,
      "start_time": 0,
      "notes": "Coaching points and emphasis",
      "drills": [
        {
          "drill_name": "Drill Name",
          "position_group": "All|OL|RB|WR|TE|QB|DL|LB|DB",
          "description": "How the drill is run",
          "equipment_needed": "cones, blocking pads",
          "play_codes": ["P-001"]
        }
      ]
    }
  ]
}
"""

CONTACT_LABELS = {
    "no_contact": "NO CONTACT - air/walk-through only. No tackling, live blocking or hitting.",
    "thud": "THUD - controlled contact. Blocking drills allowed, stop before going to ground. No live tackling.",
    "live": "LIVE - full contact drills allowed, including live tackling and full-speed blocking.",
}

EQUIPMENT_LABELS = {
    "helmets": "Helmets only - plan drills appropriate for minimal protection",
    "shells": "Shells (helmets + shoulder pads) - some contact is fine",
    "full_pads": "Full pads - all drills appropriate",
}

CONDITIONING_DETAILS = {
    "sprints": "40-yard sprints with walk-back recovery",
    "gassers": "sideline-to-sideline gassers",
    "ladders": "agility ladder footwork drills",
    "shuttles": "pro agility 5-10-5 shuttle runs",
    "intervals": "run-walk-run interval training",
    "bear_crawls": "bear crawls combined with bodyweight exercises",
}

GAME_PREP_KEYWORDS = ("opponent", "scout", "game plan", "situational")


def get_system_prompt(team_level: Optional[str]) -> str:
    guidelines = TEAM_LEVEL_GUIDELINES.get(team_level or "", TEAM_LEVEL_GUIDELINES["default"])
    return (
        "You are an expert football coach assistant helping to create practice plans.\n\n"
        "You will receive team analytics data and must generate a structured, age-appropriate practice plan.\n"
        f"{guidelines}\n{PRACTICE_STRUCTURE}{OUTPUT_FORMAT}"
    )


def format_analytics_context(stats: dict) -> str:
    """Short text summary of team_analytics output for the prompt."""
    overall = stats.get("overall") or {}
    if not overall.get("plays"):
        return "## Team Analytics\nNo tagged plays yet. Build a balanced fundamentals practice."

    lines = [
        "## Team Analytics",
        f"- Plays tagged: {overall['plays']}, {overall['yards_per_play']} yards/play, "
        f"{overall['success_rate']}% success rate, {overall.get('turnovers', 0)} turnovers",
    ]
    third = (stats.get("by_down") or {}).get("3") or {}
    if third.get("plays"):
        lines.append(f"- Third down: {third.get('conversions', 0)}/{third['plays']} converted ({third.get('conversion_rate', 0)}%)")
    red_zone = stats.get("red_zone") or {}
    if red_zone.get("attempts"):
        lines.append(f"- Red zone: {red_zone['touchdowns']} TDs on {red_zone['attempts']} plays")
    if stats.get("top_plays"):
        lines.append("- Best plays: " + ", ".join(f"{p['play_name']} ({p['success_rate']}%)" for p in stats["top_plays"][:3]))
    if stats.get("bottom_plays"):
        lines.append("- Plays needing drilling: " + ", ".join(f"{p['play_name']} ({p['success_rate']}%)" for p in stats["bottom_plays"][:3]))
    return "\n".join(lines)


def get_user_prompt(request: PracticePlanRequest, analytics_context: str) -> str:
    duration = request.duration_minutes
    sections = [f"Generate a {duration}-minute practice plan for this team.", analytics_context]

    if request.focus_areas:
        sections.append(f"**Requested Focus Areas:** {', '.join(request.focus_areas)}")
        game_prep = [f for f in request.focus_areas if any(k in f.lower() for k in GAME_PREP_KEYWORDS)]
        if game_prep:
            sections.append(
                "**Game Preparation Required:** include a scout report discussion, a game plan "
                "walk-through and situational team work covering:\n" + "\n".join(f"- {f}" for f in game_prep)
            )
    if request.opponent_prep_notes:
        sections.append(f"**Coach Notes for Opponent Prep:** {request.opponent_prep_notes}")
    if request.contact_level:
        sections.append(f"**Contact Level:** {CONTACT_LABELS[request.contact_level.value]}")
    if request.equipment_worn:
        sections.append(f"**Equipment Worn:** {EQUIPMENT_LABELS[request.equipment_worn.value]}")
    if request.equipment_needed:
        sections.append(f"**Equipment Available:** {', '.join(request.equipment_needed)}. Use these in drill descriptions where appropriate.")

    coaches = request.coach_count
    if coaches == 1:
        sections.append("**Coaches Available:** 1 coach. Keep all drills sequential (no concurrent periods).")
    else:
        sections.append(
            f"**Coaches Available:** {coaches} coaches. Split individual work into at most "
            f"{min(coaches, 4)} concurrent periods with the same start_time."
        )

    if request.conditioning_type == "none" or request.conditioning_minutes == 0:
        sections.append("**Conditioning:** NO CONDITIONING. Use that time for more team work.")
    else:
        kind = request.conditioning_type or "sprints"
        detail = CONDITIONING_DETAILS.get(kind, "football-specific conditioning")
        sections.append(f"**Conditioning:** End practice with {request.conditioning_minutes} minutes of {kind} - {detail}")

    sections.append(
        f"The non-concurrent periods MUST add up to EXACTLY {duration} minutes.\n"
        "Return ONLY the JSON object, starting with { and ending with }."
    )
    return "\n\n".join(sections)


def get_refinement_prompt(current_plan: dict, feedback: str) -> str:
    return (
        "The coach has requested changes to the practice plan.\n\n"
        f"Current Plan:\n{json.dumps(current_plan, indent=2)}\n\n"
        f"Coach's Requested Changes:\n{feedback}\n\n"
        "Update the practice plan based on this feedback. Keep the same JSON structure.\n"
        "Only modify what's necessary to address the coach's request.\n"
        "Return ONLY the updated JSON object."
    )


# =============================================================================
# PARSING
# =============================================================================

def parse_plan_response(text: str) -> dict:
    """Pull the plan JSON out of a model reply; raises on anything that isn't a plan."""
    body = (text or "").strip()
    if body.startswith("```json"):
        body = body[7:]
    elif body.startswith("```"):
        body = body[3:]
    if body.endswith("```"):
        body = body[:-3]
    body = body.strip()

    start, end = body.find("{"), body.rfind("}")
    if start != -1 and end != -1:
        body = body[start:end + 1]

    try:
        plan = json.loads(body)
    except json.JSONDecodeError:
        logger.error(f"Failed to parse practice plan response: {body[:500]}")
        raise ExternalServiceError("Invalid response from AI")

    if not isinstance(plan, dict) or not plan.get("title") or not isinstance(plan.get("periods"), list):
        raise ExternalServiceError("Invalid response from AI")
    return plan


def planned_minutes(plan: dict) -> int:
    """Total minutes with each group of concurrent periods counted once."""
    total = 0
    concurrent: dict[int, int] = {}
    for period in plan.get("periods", []):
        minutes = period.get("duration_minutes") or 0
        if period.get("is_concurrent"):
            start = period.get("start_time") or 0
            concurrent[start] = max(concurrent.get(start, 0), minutes)
        else:
            total += minutes
    return total + sum(concurrent.values())


def validate_plan(plan: dict, expected_minutes: int) -> dict:
    total = planned_minutes(plan)
    if abs(total - expected_minutes) > DURATION_TOLERANCE_MINUTES:
        logger.warning(f"Plan duration mismatch: expected {expected_minutes}, got {total}")

    for period in plan["periods"]:
        if period.get("period_type") not in PERIOD_TYPES:
            period["period_type"] = "drill"
        for drill in period.get("drills") or []:
            if drill.get("position_group") not in POSITION_GROUPS:
                drill["position_group"] = "All"
    return plan


# =============================================================================
# GENERATION
# =============================================================================

def _generate(system_prompt: str, prompt: str) -> str:
    client = get_client()
    try:
        response = client.models.generate_content(
            model=settings.gemini_pro_model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=0.7,
            ),
        )
    except Exception as e:
        logger.error(f"Practice plan generation failed: {e}")
        raise ExternalServiceError("Practice plan generation failed")
    return response.text or ""


def generate_practice_plan(team: dict, request: PracticePlanRequest) -> dict:
    stats = analytics.team_analytics(team["id"])
    prompt = get_user_prompt(request, format_analytics_context(stats))
    text = _generate(get_system_prompt(team.get("level")), prompt)
    plan = validate_plan(parse_plan_response(text), request.duration_minutes)
    logger.info(f"Generated practice plan '{plan['title']}' for team {team['id']}")
    return plan


def refine_practice_plan(plan: dict, feedback: str, team_level: Optional[str]) -> dict:
    text = _generate(get_system_prompt(team_level), get_refinement_prompt(plan, feedback))
    refined = parse_plan_response(text)
    return validate_plan(refined, refined.get("duration_minutes") or plan.get("duration_minutes") or 90)


# =============================================================================
# PERSISTENCE
# =============================================================================

def save_practice_plan(
    team_id: str,
    user_id: str,
    plan: dict,
    practice_date: Optional[str] = None,
    location: Optional[str] = None,
) -> dict:
    plan = validate_plan(parse_plan_response(json.dumps(plan)), plan.get("duration_minutes") or 90)
    client = db.require_client()

    notes = f"Focus: {', '.join(plan.get('focus_areas') or [])}"
    if plan.get("ai_reasoning"):
        notes += f"\n\nAI Reasoning: {plan['ai_reasoning']}"

    saved = client.table("practice_plans").insert({
        "team_id": str(team_id),
        "title": plan["title"],
        "date": practice_date,
        "duration_minutes": plan.get("duration_minutes") or planned_minutes(plan),
        "location": location,
        "notes": notes,
        "is_template": False,
        "created_by": str(user_id),
    }).execute().data[0]

    periods = []
    for order, period_data in enumerate(plan["periods"], start=1):
        period = client.table("practice_periods").insert({
            "practice_plan_id": saved["id"],
            "period_order": order,
            "name": period_data.get("name") or f"Period {order}",
            "duration_minutes": period_data.get("duration_minutes") or 0,
            "period_type": period_data["period_type"],
            "is_concurrent": bool(period_data.get("is_concurrent")),
            "start_time": period_data.get("start_time"),
            "notes": period_data.get("notes"),
        }).execute().data[0]

        drills = [
            {
                "period_id": period["id"],
                "drill_order": drill_order,
                "drill_name": drill.get("drill_name") or "Drill",
                "position_group": None if drill.get("position_group") == "All" else drill.get("position_group"),
                "description": drill.get("description"),
                "equipment_needed": drill.get("equipment_needed"),
                "play_codes": drill.get("play_codes") or [],
            }
            for drill_order, drill in enumerate(period_data.get("drills") or [], start=1)
        ]
        if drills:
            drills = client.table("practice_drills").insert(drills).execute().data or drills
        periods.append({**period, "drills": drills})

    logger.info(f"Saved practice plan {saved['id']} with {len(periods)} periods")
    return {**saved, "periods": periods}


def list_practice_plans(team_id: str) -> list[dict]:
    client = db.require_client()
    return (
        client.table("practice_plans")
        .select("*")
        .eq("team_id", str(team_id))
        .order("date", desc=True)
        .execute()
    ).data or []


def get_practice_plan(team_id: str, plan_id: str) -> dict:
    client = db.require_client()
    plan = db.first_row(
        client.table("practice_plans")
        .select("*")
        .eq("id", str(plan_id))
        .eq("team_id", str(team_id))
        .limit(1)
        .execute()
    )
    if not plan:
        raise NotFoundError("Practice plan not found")

    periods = (
        client.table("practice_periods")
        .select("*")
        .eq("practice_plan_id", plan["id"])
        .order("period_order")
        .execute()
    ).data or []
    period_ids = [p["id"] for p in periods]
    drills = []
    if period_ids:
        drills = (
            client.table("practice_drills")
            .select("*")
            .in_("period_id", period_ids)
            .order("drill_order")
            .execute()
        ).data or []

    by_period: dict[str, list[dict]] = {}
    for drill in drills:
        by_period.setdefault(drill["period_id"], []).append(drill)

    return {**plan, "periods": [{**p, "drills": by_period.get(p["id"], [])} for p in periods]}
