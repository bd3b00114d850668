"""
Tests for AI play tagging: prompts, model fallback, scoring, corrections and SSE routes
"""
import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from coachhub.api.ai_tagging import _event_stream, sse_event
from coachhub.core.config import settings
from coachhub.core.errors import ExternalServiceError, InvalidRequestError, NotFoundError, ServiceNotConfiguredError
from coachhub.services import corrections, play_analyzer, tagging

QUICK_ANSWER = {
    "play_type": {"value": "run", "confidence": 90},
    "direction": {"value": "left", "confidence": 40},
    "result": {"value": None, "confidence": 80},
    "formation": {"value": "shotgun", "confidence": 99},
    "fields_uncertain": ["play_type"],
    "reasoning": "Back takes the handoff and bounces left",
}


@pytest.fixture
def video(fake_db, team):
    game = fake_db.seed("games", team_id=team["id"], name="Week 1")
    return fake_db.seed("videos", team_id=team["id"], game_id=game["id"], r2_key="teams/t/games/g/film.mp4",
                        camera_order=1, status="ready", has_audio=True)


def gemini_file():
    return SimpleNamespace(name="files/abc", uri="https://generativelanguage.test/files/abc", mime_type="video/mp4")


def parse_sse(body):
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.split("\n"))
        events.append((lines["event"], json.loads(lines["data"])))
    return events


class TestTagging:

    def test_build_prompt_defaults(self):
        prompt = tagging.build_prompt(tagging.QUICK_TAG_PROMPT)
        assert "Team level: High School" in prompt
        assert "Film quality: 7/10" in prompt
        assert "Audio available: No" in prompt
        assert "{" in prompt  # JSON example survives

    def test_build_prompt_playbook(self):
        prompt = tagging.build_prompt(tagging.COMPREHENSIVE_TAG_PROMPT, playbook_formations=["Trips", "Wing T"],
                                      audio_available=True)
        assert "Team's playbook formations: Trips, Wing T" in prompt
        assert "Audio available: Yes" in prompt
        assert "{playbook_formations}" not in prompt

    def test_tier_fields(self):
        assert tagging.get_config_for_tier("quick").fields[:4] == tagging.QUICK_FIELDS
        assert "field_zone" in tagging.get_config_for_tier("comprehensive").fields
        with pytest.raises(ValueError):
            tagging.get_config_for_tier("deluxe")

    def test_fallback_chain_dedupes(self, monkeypatch):
        monkeypatch.setattr(settings, "gemini_flash_model", "gemini-1.5-flash-latest")
        monkeypatch.setattr(settings, "gemini_pro_model", "gemini-1.5-pro")

        assert tagging.get_model_fallback_chain("quick") == [
            "gemini-1.5-flash-latest", "gemini-1.5-flash-8b", "gemini-1.5-pro",
        ]

    @pytest.mark.parametrize("message,expected", [
        ("404 models/gemini-x is not found", True),
        ("Model is deprecated", True),
        ("429 quota exceeded", False),
    ])
    def test_unavailable_errors(self, message, expected):
        assert tagging.is_model_unavailable_error(RuntimeError(message)) is expected

    @pytest.mark.parametrize("tier,plays,formatted", [
        ("quick", 10, "~20 seconds"),
        ("quick", 30, "~1 minute"),
        ("comprehensive", 30, "~3 minutes"),
    ])
    def test_estimate_batch_time(self, tier, plays, formatted):
        assert tagging.estimate_batch_time(tier, plays)["formatted"] == formatted

    def test_calculate_cost(self):
        assert tagging.calculate_cost("gemini-1.5-pro", 1_000_000, 1_000_000) == pytest.approx(6.25)
        assert tagging.calculate_cost("gemini-1.5-flash", 1_000_000, 0) == pytest.approx(0.075)


class TestScoring:

    def test_build_analysis_result(self):
        result = play_analyzer.build_analysis_result(QUICK_ANSWER, tagging.QUICK_FIELDS)

        assert result.fields_analyzed == ["play_type", "direction"]
        assert result.overall_confidence == 65
        assert result.fields_uncertain == ["direction", "play_type"]
        assert result.reasoning.startswith("Back takes")

    def test_confidence_clamped(self):
        result = play_analyzer.build_analysis_result({"yards_gained": {"value": 5, "confidence": 150}}, ["yards_gained"])
        assert result.predictions["yards_gained"].confidence == 100

    def test_empty_answer(self):
        result = play_analyzer.build_analysis_result({}, tagging.QUICK_FIELDS)
        assert result.overall_confidence == 0
        assert result.predictions == {}

    @pytest.mark.parametrize("text", [
        '{"play_type": {"value": "pass"}}',
        '```json\n{"play_type": {"value": "pass"}}\n```',
        'Here you go:\n```\n{"play_type": {"value": "pass"}}\n```',
    ])
    def test_parse_json_response(self, text):
        assert play_analyzer.parse_json_response(text) == {"play_type": {"value": "pass"}}

    def test_parse_json_rejects_garbage(self):
        assert play_analyzer.parse_json_response("The play was a run.") is None
        assert play_analyzer.parse_json_response("[1, 2]") is None


class TestValidation:

    def test_valid_request(self, gemini_configured):
        assert play_analyzer.validate_analysis_request(10.0, 16.5, "standard") == 6.5

    def test_unknown_tier(self, gemini_configured):
        with pytest.raises(InvalidRequestError):
            play_analyzer.validate_analysis_request(0, 5, "deluxe")

    @pytest.mark.parametrize("start,end", [(10, 11), (0, 61)])
    def test_clip_length(self, gemini_configured, start, end):
        with pytest.raises(InvalidRequestError):
            play_analyzer.validate_analysis_request(start, end, "quick")

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "google_api_key", "")
        with pytest.raises(ServiceNotConfiguredError):
            play_analyzer.validate_analysis_request(0, 5, "quick")


class TestGemini:

    def test_falls_back_when_model_missing(self, monkeypatch):
        monkeypatch.setattr(settings, "gemini_flash_model", "gemini-1.5-flash")
        client = MagicMock()
        answer = SimpleNamespace(text="{}")
        client.models.generate_content.side_effect = [RuntimeError("404 model not found"), answer]

        response, model_used = play_analyzer.generate_with_fallback(client, gemini_file(), "prompt", "quick")

        assert response is answer
        assert model_used == "gemini-1.5-flash-latest"
        assert client.models.generate_content.call_count == 2

    def test_other_errors_propagate(self):
        client = MagicMock()
        client.models.generate_content.side_effect = RuntimeError("429 quota exceeded")

        with pytest.raises(RuntimeError):
            play_analyzer.generate_with_fallback(client, gemini_file(), "prompt", "quick")
        assert client.models.generate_content.call_count == 1

    def test_all_models_unavailable(self):
        client = MagicMock()
        client.models.generate_content.side_effect = RuntimeError("model not supported")

        with pytest.raises(ExternalServiceError):
            play_analyzer.generate_with_fallback(client, gemini_file(), "prompt", "standard")

    def test_upload_waits_for_processing(self, monkeypatch):
        monkeypatch.setattr(play_analyzer.time, "sleep", lambda seconds: None)
        client = MagicMock()
        processing = SimpleNamespace(name="files/abc", state=play_analyzer.types.FileState.PROCESSING)
        active = SimpleNamespace(name="files/abc", state=play_analyzer.types.FileState.ACTIVE)
        client.files.upload.return_value = processing
        client.files.get.return_value = active

        assert play_analyzer.upload_clip(client, "/tmp/clip.mp4") is active

    def test_upload_failure(self):
        client = MagicMock()
        client.files.upload.return_value = SimpleNamespace(name="files/abc", state=play_analyzer.types.FileState.FAILED)

        with pytest.raises(ExternalServiceError):
            play_analyzer.upload_clip(client, "/tmp/clip.mp4")


class TestPlayAnalysis:

    def run_analysis(self, team, video, answer_text):
        response = SimpleNamespace(
            text=answer_text,
            usage_metadata=SimpleNamespace(prompt_token_count=1000, candidates_token_count=200),
        )
        client = MagicMock()
        with patch.object(play_analyzer.storage, "download_file", return_value=True), \
                patch.object(play_analyzer.clipper, "extract_clip", return_value="/tmp/clip.mp4") as extract, \
                patch.object(play_analyzer, "get_client", return_value=client), \
                patch.object(play_analyzer, "upload_clip", return_value=gemini_file()), \
                patch.object(play_analyzer, "generate_with_fallback", return_value=(response, "gemini-1.5-flash")):
            events = list(play_analyzer.iter_play_analysis(team, video, "coach-1", 12.0, 18.0, "quick"))
        return events, extract, client

    def test_analysis_events_and_storage(self, fake_db, team, video, gemini_configured):
        events, extract, client = self.run_analysis(team, video, "```json\n" + json.dumps(QUICK_ANSWER) + "\n```")

        stages = [data["stage"] for event, data in events if event == "progress"]
        assert stages == ["downloading", "extracting", "uploading", "analyzing", "saving"]

        kind, result = events[-1]
        assert kind == "result"
        assert result["success"]
        assert result["model_used"] == "gemini-1.5-flash"
        assert result["input_tokens"] == 1000
        assert result["prediction_id"]

        assert extract.call_args.args[1:3] == (12.0, 18.0)
        client.files.delete.assert_called_once_with(name="files/abc")

        prediction = fake_db.rows("ai_tag_predictions")[0]
        assert prediction["status"] == "completed"
        assert prediction["predictions"]["play_type"]["value"] == "run"

        usage = fake_db.rows("ai_tagging_usage")[0]
        assert usage["plays_analyzed"] == 1
        assert usage["quick_count"] == 1

    def test_unparseable_answer_saved_as_failed(self, fake_db, team, video, gemini_configured):
        events, _, _ = self.run_analysis(team, video, "I could not see the play.")

        assert events[-1][1]["success"] is False
        assert fake_db.rows("ai_tag_predictions")[0]["status"] == "failed"

    def test_blocking_analysis_reports_progress(self, fake_db, team, video, gemini_configured):
        response = SimpleNamespace(text=json.dumps(QUICK_ANSWER), usage_metadata=None)
        stages = []
        with patch.object(play_analyzer.storage, "download_file", return_value=True), \
                patch.object(play_analyzer.clipper, "extract_clip", return_value="/tmp/clip.mp4"), \
                patch.object(play_analyzer, "get_client", return_value=MagicMock()), \
                patch.object(play_analyzer, "upload_clip", return_value=gemini_file()), \
                patch.object(play_analyzer, "generate_with_fallback", return_value=(response, "gemini-1.5-flash")):
            result = play_analyzer.analyze_play_clip(
                team, video, "coach-1", 12.0, 18.0, "quick",
                progress_callback=lambda stage, message: stages.append(stage),
            )

        assert stages[0] == "downloading"
        assert stages[-1] == "saving"
        assert result.success
        assert result.input_tokens == 0

    def test_record_usage_accumulates(self, fake_db, team):
        play_analyzer.record_usage(team["id"], "quick", 100, 10, 0.01)
        play_analyzer.record_usage(team["id"], "standard", 200, 20, 0.02)

        rows = fake_db.rows("ai_tagging_usage")
        assert len(rows) == 1
        assert rows[0]["plays_analyzed"] == 2
        assert rows[0]["standard_count"] == 1
        assert rows[0]["total_input_tokens"] == 300
        assert rows[0]["total_cost_usd"] == pytest.approx(0.03)

    def test_quality_assessment_stored(self, fake_db, team, video, gemini_configured):
        answer = {"camera_angle": "sideline", "quality_score": 8, "audio": {"available": True, "quality": "good"},
                  "improvement_tips": ["Use a tripod"]}
        response = SimpleNamespace(text=json.dumps(answer))
        with patch.object(play_analyzer.storage, "download_file", return_value=True), \
                patch.object(play_analyzer.clipper, "extract_clip", return_value="/tmp/sample.mp4"), \
                patch.object(play_analyzer, "get_client", return_value=MagicMock()), \
                patch.object(play_analyzer, "upload_clip", return_value=gemini_file()), \
                patch.object(play_analyzer, "generate_with_fallback", return_value=(response, "gemini-1.5-flash")):
            row = play_analyzer.assess_film_quality(team["id"], video)

        assert row["quality_score"] == 8
        assert row["audio_available"] is True
        assert play_analyzer.get_film_quality(video["id"])["camera_angle"] == "sideline"


class TestCorrections:

    def test_identify_corrections(self):
        predictions = {
            "play_type": {"value": "Run", "confidence": 80},
            "direction": {"value": "left", "confidence": 60},
            "result": {"value": "gain", "confidence": 70},
        }
        found = corrections.identify_corrections(predictions, {"play_type": " run ", "direction": "right", "result": None})

        assert found == [{"field_name": "direction", "ai_value": "left", "ai_confidence": 60, "coach_value": "right"}]

    def test_record_and_stats(self, fake_db, team):
        prediction = fake_db.seed(
            "ai_tag_predictions", team_id=team["id"], tagging_tier="quick", model_used="gemini-1.5-flash",
            predictions={"play_type": {"value": "run"}, "direction": {"value": "left"}},
            fields_analyzed=["play_type", "direction", "result", "yards_gained"],
        )
        recorded = corrections.record_corrections(team["id"], prediction["id"], {"direction": "middle"}, "coach-1")

        assert [c["field_name"] for c in recorded] == ["direction"]
        assert fake_db.rows("ai_tag_predictions")[0]["was_reviewed"] is True

        stats = corrections.correction_stats(team["id"])
        assert stats["total_corrections"] == 1
        assert stats["accuracy"] == 0.75

    def test_unknown_prediction(self, fake_db, team):
        with pytest.raises(NotFoundError):
            corrections.record_corrections(team["id"], "missing", {}, "coach-1")


class TestRoutes:

    def test_sse_event_format(self):
        assert sse_event("progress", {"stage": "saving"}) == 'event: progress\ndata: {"stage": "saving"}\n\n'

    def test_stream_reports_failure(self):
        def events():
            yield "progress", {"stage": "downloading"}
            raise ExternalServiceError("Could not download film from storage")

        chunks = list(_event_stream(events()))
        assert chunks[0].startswith("event: progress")
        assert parse_sse(chunks[1]) == [("error", {"error": "Could not download film from storage",
                                                   "code": "EXTERNAL_SERVICE_ERROR"})]

    def test_analyze_streams_events(self, client, team, video, gemini_configured):
        def fake_analysis(*args, **kwargs):
            yield "progress", {"stage": "analyzing", "message": "Analyzing..."}
            yield "result", {"success": True, "overall_confidence": 80}

        with patch.object(play_analyzer, "iter_play_analysis", side_effect=fake_analysis):
            response = client.post(f"/api/teams/{team['id']}/ai-tagging/analyze", json={
                "video_id": video["id"], "clip_start_seconds": 10, "clip_end_seconds": 16, "tier": "quick",
            })

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert [e for e, _ in parse_sse(response.text)] == ["progress", "result"]

    def test_analyze_rejects_long_clip_before_streaming(self, client, team, video, gemini_configured):
        response = client.post(f"/api/teams/{team['id']}/ai-tagging/analyze", json={
            "video_id": video["id"], "clip_start_seconds": 0, "clip_end_seconds": 90,
        })
        assert response.status_code == 400

    def test_analyze_requires_plan_access(self, client, fake_db, team, video, gemini_configured):
        fake_db.tables["subscriptions"][0]["status"] = "canceled"
        response = client.post(f"/api/teams/{team['id']}/ai-tagging/analyze", json={
            "video_id": video["id"], "clip_start_seconds": 10, "clip_end_seconds": 16,
        })
        assert response.status_code == 403
        assert response.json()["code"] == "SUBSCRIPTION_INACTIVE"

    def test_tiers(self, client, team):
        response = client.get(f"/api/teams/{team['id']}/ai-tagging/tiers", params={"play_count": 30})
        tiers = {t["tier"]: t for t in response.json()["tiers"]}

        assert set(tiers) == {"quick", "standard", "comprehensive"}
        assert tiers["quick"]["estimate"]["formatted"] == "~1 minute"

    def test_corrections_route(self, client, fake_db, team):
        prediction = fake_db.seed("ai_tag_predictions", team_id=team["id"],
                                  predictions={"result": {"value": "gain"}}, fields_analyzed=["result"])

        response = client.post(f"/api/teams/{team['id']}/ai-tagging/corrections", json={
            "prediction_id": prediction["id"], "coach_values": {"result": "touchdown"},
        })
        assert response.json()["count"] == 1
        assert client.get(f"/api/teams/{team['id']}/ai-tagging/corrections/stats").json()["accuracy"] == 0.0
