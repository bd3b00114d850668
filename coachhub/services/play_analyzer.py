"""
AI play tagging with Gemini.

A play clip is cut from the game film in R2, uploaded to the Gemini Files API,
and analysed with the tagging tier's prompt. The model answers with one
{"value", "confidence"} object per field; the result is scored, stored as an
ai_tag_predictions row, and added to the team's monthly AI usage.
"""

import json
import logging
import os
import shutil
import tempfile
import time
from datetime import date, timedelta
from typing import Any, Callable, Iterator, Optional

from google import genai
from google.genai import types

from coachhub.core.config import settings
from coachhub.core.errors import ExternalServiceError, InvalidRequestError, ServiceNotConfiguredError
from coachhub.db import database as db
from coachhub.models.schemas import AnalysisResult, FieldPrediction, TaggingTier
from coachhub.services import clipper, storage, tagging

logger = logging.getLogger(__name__)

# =============================================================================
# CONFIGURATION
# =============================================================================

MIN_CLIP_SECONDS = 2
MAX_CLIP_SECONDS = 60
QUALITY_SAMPLE_SECONDS = 30
POLL_INTERVAL_SECONDS = 2
MAX_POLLS = 60


def get_generation_config() -> types.GenerateContentConfig:
    """Low temperature for consistent tags across similar plays."""
    return types.GenerateContentConfig(
        temperature=0.2,
        top_p=0.8,
        top_k=40,
    )


# =============================================================================
# GEMINI HELPERS
# =============================================================================

def get_client() -> genai.Client:
    """Create and return a Gemini client."""
    if not settings.gemini_configured:
        raise ServiceNotConfiguredError("AI tagging is not configured")
    return genai.Client(api_key=settings.google_api_key)


def upload_clip(client: genai.Client, clip_path: str) -> types.File:
    """Upload a clip to Gemini and wait for processing."""
    video_file = client.files.upload(file=clip_path)
    logger.debug(f"Gemini upload started: {video_file.name}")

    polls = 0
    while video_file.state == types.FileState.PROCESSING:
        polls += 1
        if polls > MAX_POLLS:
            raise ExternalServiceError(f"Gemini is still processing {video_file.name}")
        time.sleep(POLL_INTERVAL_SECONDS)
        video_file = client.files.get(name=video_file.name)

    if video_file.state == types.FileState.FAILED:
        raise ExternalServiceError(f"Video processing failed: {video_file.name}")

    return video_file


def delete_uploaded_file(client: genai.Client, video_file: types.File) -> None:
    try:
        client.files.delete(name=video_file.name)
    except Exception as e:
        logger.warning(f"Could not delete Gemini file {video_file.name}: {e}")


def generate_with_fallback(
    client: genai.Client,
    video_file: types.File,
    prompt: str,
    tier: str,
) -> tuple[Any, str]:
    """
    Call Gemini, walking the tier's fallback chain while models are unavailable.

    Returns the response and the model that produced it. Any error other than
    "model unavailable" is raised immediately.
    """
    last_error = None
    for model_id in tagging.get_model_fallback_chain(tier):
        try:
            response = client.models.generate_content(
                model=model_id,
                contents=[
                    types.Content(
                        role="user",
                        parts=[
                            types.Part.from_uri(
                                file_uri=video_file.uri,
                                mime_type=video_file.mime_type,
                            ),
                            types.Part.from_text(text=prompt),
                        ],
                    ),
                ],
                config=get_generation_config(),
            )
            return response, model_id
        except Exception as e:
            if not tagging.is_model_unavailable_error(e):
                raise
            logger.warning(f"Model {model_id} unavailable, trying next: {e}")
            last_error = e

    raise ExternalServiceError(f"No Gemini model available: {last_error}")


def parse_json_response(response_text: str) -> Optional[dict]:
    """
    Parse JSON from Gemini response, handling markdown code blocks.
    """
    try:
        if "```json" in response_text:
            response_text = response_text.split("```json")[1].split("```")[0].strip()
        elif "```" in response_text:
            response_text = response_text.split("```")[1].split("```")[0].strip()

        parsed = json.loads(response_text)
        return parsed if isinstance(parsed, dict) else None

    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse JSON response: {e}; response was: {response_text[:500]}")
        return None


def usage_counts(response) -> tuple[int, int]:
    usage = getattr(response, "usage_metadata", None)
    if not usage:
        return 0, 0
    return usage.prompt_token_count or 0, usage.candidates_token_count or 0


# =============================================================================
# SCORING
# =============================================================================

def build_analysis_result(raw: dict, fields: list[str]) -> AnalysisResult:
    """Score a parsed model answer: overall confidence is the mean over predicted fields."""
    predictions: dict[str, FieldPrediction] = {}
    for name in fields:
        entry = raw.get(name)
        if isinstance(entry, dict) and entry.get("value") is not None:
            predictions[name] = FieldPrediction(
                value=entry.get("value"),
                confidence=max(0, min(100, float(entry.get("confidence") or 0))),
                notes=entry.get("notes"),
            )

    confidences = [p.confidence for p in predictions.values()]
    overall = round(sum(confidences) / len(confidences)) if confidences else 0

    uncertain = [name for name, p in predictions.items() if p.confidence < tagging.UNCERTAIN_CONFIDENCE]
    for name in raw.get("fields_uncertain") or []:
        if name in predictions and name not in uncertain:
            uncertain.append(name)

    return AnalysisResult(
        success=True,
        predictions=predictions,
        overall_confidence=overall,
        fields_analyzed=list(predictions.keys()),
        fields_uncertain=uncertain,
        reasoning=raw.get("reasoning"),
        audio_used=bool(raw.get("audio_used")),
    )


def validate_analysis_request(clip_start: float, clip_end: float, tier: str) -> float:
    """Return the clip duration or raise for a clip or tier the analyzer can't handle."""
    try:
        TaggingTier(tier)
    except ValueError:
        raise InvalidRequestError(f"Unknown tagging tier: {tier}")

    duration = clip_end - clip_start
    if duration < MIN_CLIP_SECONDS or duration > MAX_CLIP_SECONDS:
        raise InvalidRequestError(
            f"Clip must be between {MIN_CLIP_SECONDS} and {MAX_CLIP_SECONDS} seconds (got {duration:.1f}s)"
        )
    if not settings.gemini_configured:
        raise ServiceNotConfiguredError("AI tagging is not configured")
    return duration


# =============================================================================
# PERSISTENCE
# =============================================================================

def get_film_quality(video_id: str) -> Optional[dict]:
    client = db.require_client()
    result = (
        client.table("film_quality_assessments")
        .select("*")
        .eq("video_id", str(video_id))
        .limit(1)
        .execute()
    )
    return db.first_row(result)


def save_prediction(
    team_id: str,
    video_id: str,
    user_id: str,
    tier: str,
    clip_start: float,
    clip_end: float,
    result: AnalysisResult,
    play_instance_id: Optional[str] = None,
) -> Optional[str]:
    client = db.require_client()
    row = client.table("ai_tag_predictions").insert({
        "team_id": str(team_id),
        "video_id": str(video_id),
        "play_instance_id": str(play_instance_id) if play_instance_id else None,
        "created_by": str(user_id),
        "tagging_tier": tier,
        "clip_start_seconds": clip_start,
        "clip_end_seconds": clip_end,
        "model_used": result.model_used,
        "predictions": {k: v.model_dump() for k, v in result.predictions.items()},
        "overall_confidence": result.overall_confidence,
        "fields_analyzed": result.fields_analyzed,
        "fields_uncertain": result.fields_uncertain,
        "reasoning": result.reasoning,
        "audio_used": result.audio_used,
        "input_tokens": result.input_tokens,
        "output_tokens": result.output_tokens,
        "cost_usd": result.cost_usd,
        "latency_ms": result.latency_ms,
        "status": "completed" if result.success else "failed",
        "error_message": result.error,
    }).execute()
    return row.data[0]["id"] if row.data else None


def record_usage(team_id: str, tier: str, input_tokens: int, output_tokens: int, cost_usd: float) -> dict:
    """Add one analysed play to the team's ai_tagging_usage row for this month."""
    client = db.require_client()
    today = date.today()
    period_start = today.replace(day=1)
    next_month = (period_start.replace(day=28) + timedelta(days=4)).replace(day=1)
    period_end = next_month - timedelta(days=1)

    existing = db.first_row(
        client.table("ai_tagging_usage")
        .select("*")
        .eq("team_id", str(team_id))
        .eq("period_start", period_start.isoformat())
        .limit(1)
        .execute()
    )
    row = existing or {
        "team_id": str(team_id),
        "period_start": period_start.isoformat(),
        "period_end": period_end.isoformat(),
        "plays_analyzed": 0,
        "quick_count": 0,
        "standard_count": 0,
        "comprehensive_count": 0,
        "total_input_tokens": 0,
        "total_output_tokens": 0,
        "total_cost_usd": 0,
    }
    tier_key = f"{tier}_count"
    row = {
        **row,
        "plays_analyzed": (row.get("plays_analyzed") or 0) + 1,
        tier_key: (row.get(tier_key) or 0) + 1,
        "total_input_tokens": (row.get("total_input_tokens") or 0) + input_tokens,
        "total_output_tokens": (row.get("total_output_tokens") or 0) + output_tokens,
        "total_cost_usd": float(row.get("total_cost_usd") or 0) + cost_usd,
        "updated_at": db.now_iso(),
    }
    result = client.table("ai_tagging_usage").upsert(row, on_conflict="team_id,period_start").execute()
    return result.data[0] if result.data else row


# =============================================================================
# ANALYSIS
# =============================================================================

def _playbook_formations(team_id: str) -> list[str]:
    formations = {p.get("formation") for p in db.list_playbook(team_id) if p.get("formation")}
    return sorted(formations)


def iter_play_analysis(
    team: dict,
    video: dict,
    user_id: str,
    clip_start: float,
    clip_end: float,
    tier: str,
    offense_or_defense: str = "offense",
    previous_play_context: Optional[str] = None,
    play_instance_id: Optional[str] = None,
) -> Iterator[tuple[str, dict]]:
    """
    Run one clip analysis, yielding ("progress", {...}) events and finishing
    with ("result", AnalysisResult dict).
    """
    validate_analysis_request(clip_start, clip_end, tier)
    config = tagging.get_config_for_tier(tier)
    team_id = str(team["id"])
    started = time.monotonic()

    quality = get_film_quality(video["id"]) or {}
    prompt = tagging.build_prompt(
        config.prompt,
        team_level=(team.get("level") or "high_school").replace("_", " ").title(),
        offense_or_defense=offense_or_defense,
        quality_score=quality.get("quality_score"),
        audio_available=bool(quality.get("audio_available", video.get("has_audio"))),
        previous_play_context=previous_play_context,
        playbook_formations=_playbook_formations(team_id) if tier == TaggingTier.COMPREHENSIVE.value else None,
    )

    temp_dir = tempfile.mkdtemp(prefix="ai_tag_")
    client = get_client()
    video_file = None
    try:
        yield "progress", {"stage": "downloading", "message": "Fetching film..."}
        film_path = os.path.join(temp_dir, "film.mp4")
        if not storage.download_file(video["r2_key"], film_path):
            raise ExternalServiceError("Could not download film from storage")

        yield "progress", {"stage": "extracting", "message": "Cutting play clip..."}
        clip_path = clipper.extract_clip(film_path, clip_start, clip_end, os.path.join(temp_dir, "clip.mp4"))

        yield "progress", {"stage": "uploading", "message": "Uploading clip for analysis..."}
        video_file = upload_clip(client, clip_path)

        yield "progress", {"stage": "analyzing", "message": f"Analyzing with {config.model_display_name}..."}
        response, model_used = generate_with_fallback(client, video_file, prompt, tier)

        raw = parse_json_response((response.text or "").strip())
        input_tokens, output_tokens = usage_counts(response)
        if raw is None:
            result = AnalysisResult(success=False, error="Could not parse AI response")
        else:
            result = build_analysis_result(raw, config.fields)

        result.model_used = model_used
        result.input_tokens = input_tokens
        result.output_tokens = output_tokens
        result.cost_usd = tagging.calculate_cost(model_used, input_tokens, output_tokens)
        result.latency_ms = int((time.monotonic() - started) * 1000)

        yield "progress", {"stage": "saving", "message": "Saving predictions..."}
        result.prediction_id = save_prediction(
            team_id, video["id"], user_id, tier, clip_start, clip_end, result, play_instance_id,
        )
        record_usage(team_id, tier, input_tokens, output_tokens, result.cost_usd)

        logger.info(
            f"Analyzed clip {clip_start:.1f}-{clip_end:.1f}s of video {video['id']} "
            f"with {model_used}: confidence {result.overall_confidence}"
        )
        yield "result", result.model_dump(mode="json")
    finally:
        if video_file is not None:
            delete_uploaded_file(client, video_file)
        shutil.rmtree(temp_dir, ignore_errors=True)


def analyze_play_clip(
    team: dict,
    video: dict,
    user_id: str,
    clip_start: float,
    clip_end: float,
    tier: str,
    progress_callback: Optional[Callable[[str, str], None]] = None,
    **context,
) -> AnalysisResult:
    """Blocking form of iter_play_analysis."""
    final = None
    for event, data in iter_play_analysis(team, video, user_id, clip_start, clip_end, tier, **context):
        if event == "progress" and progress_callback:
            progress_callback(data["stage"], data["message"])
        elif event == "result":
            final = AnalysisResult(**data)
    return final


def assess_film_quality(team_id: str, video: dict) -> dict:
    """Score the first 30 seconds of a film and store it for later prompts."""
    client = get_client()
    temp_dir = tempfile.mkdtemp(prefix="ai_quality_")
    video_file = None
    try:
        film_path = os.path.join(temp_dir, "film.mp4")
        if not storage.download_file(video["r2_key"], film_path):
            raise ExternalServiceError("Could not download film from storage")

        sample_path = clipper.extract_clip(film_path, 0, QUALITY_SAMPLE_SECONDS, os.path.join(temp_dir, "sample.mp4"))
        video_file = upload_clip(client, sample_path)
        response, model_used = generate_with_fallback(
            client, video_file, tagging.QUALITY_ASSESSMENT_PROMPT, TaggingTier.QUICK.value,
        )
    finally:
        if video_file is not None:
            delete_uploaded_file(client, video_file)
        shutil.rmtree(temp_dir, ignore_errors=True)

    assessment = parse_json_response((response.text or "").strip())
    if assessment is None:
        raise ExternalServiceError("Invalid response from AI")

    audio = assessment.get("audio") or {}
    row = {
        "video_id": str(video["id"]),
        "team_id": str(team_id),
        "camera_angle": assessment.get("camera_angle"),
        "stability": assessment.get("stability"),
        "field_visibility": assessment.get("field_visibility"),
        "quality_score": assessment.get("quality_score"),
        "audio_available": bool(audio.get("available")),
        "audio_quality": audio.get("quality"),
        "ai_capabilities": assessment.get("ai_capabilities") or {},
        "improvement_tips": assessment.get("improvement_tips") or [],
        "model_used": model_used,
    }
    result = db.require_client().table("film_quality_assessments").upsert(row, on_conflict="video_id").execute()
    return result.data[0] if result.data else row
