"""Coach corrections of AI tag predictions, kept for accuracy tracking."""

import logging
from collections import Counter
from typing import Any, Optional

from coachhub.core.errors import NotFoundError
from coachhub.db import database as db

logger = logging.getLogger(__name__)


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def identify_corrections(predictions: dict[str, dict], coach_values: dict[str, Any]) -> list[dict]:
    """One entry per predicted field whose coach value differs from the AI value."""
    corrections = []
    for field, prediction in predictions.items():
        if field not in coach_values or coach_values[field] is None:
            continue
        ai_value = (prediction or {}).get("value")
        coach_value = coach_values[field]
        if _normalize(ai_value) == _normalize(coach_value):
            continue
        corrections.append({
            "field_name": field,
            "ai_value": ai_value,
            "ai_confidence": (prediction or {}).get("confidence"),
            "coach_value": coach_value,
        })
    return corrections


def _get_prediction(team_id: str, prediction_id: str) -> dict:
    client = db.require_client()
    row = db.first_row(
        client.table("ai_tag_predictions")
        .select("*")
        .eq("id", str(prediction_id))
        .eq("team_id", str(team_id))
        .limit(1)
        .execute()
    )
    if not row:
        raise NotFoundError("Prediction not found")
    return row


def record_corrections(
    team_id: str,
    prediction_id: str,
    coach_values: dict[str, Any],
    user_id: str,
    play_instance_id: Optional[str] = None,
) -> list[dict]:
    prediction = _get_prediction(team_id, prediction_id)
    corrections = identify_corrections(prediction.get("predictions") or {}, coach_values)

    client = db.require_client()
    client.table("ai_tag_predictions").update({
        "play_instance_id": str(play_instance_id) if play_instance_id else prediction.get("play_instance_id"),
        "was_reviewed": True,
        "corrections_count": len(corrections),
    }).eq("id", str(prediction_id)).execute()

    if not corrections:
        return []

    rows = [
        {
            **c,
            "team_id": str(team_id),
            "prediction_id": str(prediction_id),
            "play_instance_id": str(play_instance_id) if play_instance_id else prediction.get("play_instance_id"),
            "video_id": prediction.get("video_id"),
            "tagging_tier": prediction.get("tagging_tier"),
            "model_used": prediction.get("model_used"),
            "corrected_by": str(user_id),
        }
        for c in corrections
    ]
    result = client.table("ai_tag_corrections").insert(rows).execute()
    logger.info(f"Recorded {len(rows)} correction(s) for prediction {prediction_id}")
    return result.data or rows


def correction_stats(team_id: str) -> dict:
    client = db.require_client()
    predictions = (
        client.table("ai_tag_predictions")
        .select("id, fields_analyzed, was_reviewed")
        .eq("team_id", str(team_id))
        .eq("was_reviewed", True)
        .execute()
    ).data or []
    corrections = (
        client.table("ai_tag_corrections")
        .select("field_name")
        .eq("team_id", str(team_id))
        .execute()
    ).data or []

    fields_predicted = sum(len(p.get("fields_analyzed") or []) for p in predictions)
    by_field = Counter(c["field_name"] for c in corrections)
    accuracy = 1 - len(corrections) / fields_predicted if fields_predicted else None

    return {
        "reviewed_predictions": len(predictions),
        "fields_predicted": fields_predicted,
        "total_corrections": len(corrections),
        "corrections_by_field": dict(by_field.most_common()),
        "accuracy": round(accuracy, 3) if accuracy is not None else None,
    }
