"""
Tests for timeline models, playback helpers and the stored timeline
"""
import pytest

from coachhub.core.errors import InvalidRequestError, LimitExceededError, NotFoundError
from coachhub.models import timeline as tl
from coachhub.models.timeline import CameraLane, GameTimeline, TimelineClip
from coachhub.services import timeline as timeline_service
from coachhub.services import timeline_playback as playback


def make_clip(clip_id, lane, position, duration, start_offset=0):
    return TimelineClip(
        id=clip_id,
        video_id=f"video-{clip_id}",
        camera_lane=lane,
        lane_position_ms=position,
        duration_ms=duration,
        start_offset_ms=start_offset,
    )


class TestTimeFormatting:

    @pytest.mark.parametrize("ms,expected", [
        (0, "0:00"),
        (65_000, "1:05"),
        (3_600_000, "1:00:00"),
        (3_725_999, "1:02:05"),
    ])
    def test_format_time_ms(self, ms, expected):
        assert tl.format_time_ms(ms) == expected

    @pytest.mark.parametrize("value,expected", [
        ("1:05", 65_000),
        ("1:02:05", 3_725_000),
        ("garbage", 0),
        ("5", 0),
    ])
    def test_parse_time_to_ms(self, value, expected):
        assert tl.parse_time_to_ms(value) == expected

    def test_snap_to_grid_rounds_half_up(self):
        assert tl.snap_to_grid(1_499) == 1_000
        assert tl.snap_to_grid(1_500) == 2_000
        assert tl.snap_to_grid(500) == 1_000

    def test_pixels_round_trip(self):
        pixels = tl.time_to_pixels(8_000, 4)
        assert pixels == pytest.approx(8.0)
        assert tl.pixels_to_time(pixels, 4) == pytest.approx(8_000)


class TestActiveClip:

    def test_find_active_clip_for_time(self):
        lanes = [CameraLane(lane=1, clips=[make_clip("a", 1, 5_000, 10_000)])]
        info = tl.find_active_clip_for_time(lanes, 1, 7_000)
        assert info.clip.id == "a"
        assert info.clip_time_ms == 2_000

        gap = tl.find_active_clip_for_time(lanes, 1, 1_000)
        assert gap.is_in_gap and gap.next_clip_start_ms == 5_000

        missing = tl.find_active_clip_for_time(lanes, 3, 1_000)
        assert missing.clip is None and missing.next_clip_start_ms is None

    def test_find_lane_for_video(self):
        lanes = [CameraLane(lane=2, clips=[make_clip("a", 2, 0, 1_000)])]
        assert tl.find_lane_for_video(lanes, "video-a") == 2
        assert tl.find_lane_for_video(lanes, "video-z") is None


@pytest.fixture
def game_timeline():
    return GameTimeline(
        game_id="g1",
        total_duration_ms=100_000,
        lanes=[
            CameraLane(lane=1, clips=[make_clip("a", 1, 0, 40_000), make_clip("b", 1, 60_000, 40_000)]),
            CameraLane(lane=2, clips=[make_clip("c", 2, 20_000, 30_000, start_offset=3_000)]),
        ],
    )


class TestPlayback:

    def test_active_clip_reports_source_time(self, game_timeline):
        info = playback.get_active_clip_for_lane(game_timeline.lanes[1], 25_000)
        assert info.clip.id == "c"
        assert info.clip_time_ms == 8_000

    def test_active_clips_for_all_lanes(self, game_timeline):
        active = playback.get_active_clips_for_all_lanes(game_timeline, 45_000)
        assert active[1].is_in_gap
        assert active[1].next_clip_start_ms == 60_000
        assert active[2].clip.id == "c"

    def test_clip_time_round_trip(self, game_timeline):
        clip = game_timeline.lanes[1].clips[0]
        assert playback.to_timeline_time(clip, playback.to_clip_time(clip, 33_000)) == 33_000

    def test_next_boundary(self, game_timeline):
        assert playback.get_next_clip_boundary(game_timeline, 10_000) == 20_000
        assert playback.get_next_clip_boundary(game_timeline, 45_000) == 50_000
        assert playback.get_next_clip_boundary(game_timeline, 100_000) is None

    def test_previous_and_resume(self, game_timeline):
        lane = game_timeline.lanes[0]
        assert playback.is_in_gap(lane, 50_000)
        assert playback.get_previous_clip_before_time(lane, 50_000).id == "a"
        assert playback.get_resume_time(lane, 50_000) == 60_000
        assert playback.get_resume_time(lane, 70_000) is None

    def test_preload_window(self, game_timeline):
        preload = playback.get_clips_to_preload(game_timeline, 15_000, window_ms=10_000)
        assert [c.id for c in preload] == ["c"]
        assert playback.get_clips_to_preload(game_timeline, 0, window_ms=5_000) == []

    def test_boundaries_sorted(self, game_timeline):
        times = [b.time for b in playback.get_all_clip_boundaries(game_timeline)]
        assert times == sorted(times)
        assert len(times) == 6

    def test_find_gaps_in_lane(self, game_timeline):
        gaps = playback.find_gaps_in_lane(game_timeline.lanes[1], 100_000)
        assert [(g.start, g.end) for g in gaps] == [(0, 20_000), (50_000, 100_000)]


class TestPlacement:

    def test_adjacent_clips_do_not_overlap(self, game_timeline):
        lane = game_timeline.lanes[0]
        assert playback.can_place_clip(lane, 40_000, 20_000)
        assert not playback.can_place_clip(lane, 39_999, 20_000)

    def test_excluded_clip_is_ignored(self, game_timeline):
        lane = game_timeline.lanes[0]
        assert playback.can_place_clip(lane, 10_000, 30_000, exclude_clip_id="a")

    def test_closest_valid_position_prefers_target(self, game_timeline):
        assert playback.find_closest_valid_position(game_timeline.lanes[0], 40_000, 10_000) == 40_000

    def test_closest_valid_position_after_clip(self, game_timeline):
        assert playback.find_closest_valid_position(game_timeline.lanes[0], 30_000, 15_000) == 40_000

    def test_closest_valid_position_falls_back_to_end(self, game_timeline):
        assert playback.find_closest_valid_position(game_timeline.lanes[0], 10_000, 50_000) == 100_000

    def test_sync_offset(self):
        assert playback.calculate_sync_offset(12_000, 9_500) == 2_500


# =============================================================================
# Stored timeline
# =============================================================================

@pytest.fixture
def game(fake_db, team):
    return fake_db.seed("games", team_id=team["id"], name="Week 1", is_opponent_game=False)


@pytest.fixture
def videos(fake_db, team, game):
    return [
        fake_db.seed("videos", team_id=team["id"], game_id=game["id"], name="Sideline", camera_order=1,
                     camera_label="Sideline", duration_seconds=60),
        fake_db.seed("videos", team_id=team["id"], game_id=game["id"], name="End Zone", camera_order=2,
                     duration_seconds=30),
    ]


class TestStoredTimeline:

    def test_created_from_game_film(self, fake_db, team, game, videos):
        timeline = timeline_service.get_or_create_timeline(game["id"], team["id"])

        assert timeline.video_group_id
        assert [lane.lane for lane in timeline.lanes] == [1, 2]
        assert timeline.lanes[0].label == "Sideline"
        assert timeline.lanes[1].label == "End Zone"
        assert timeline.total_duration_ms == 60_000
        assert len(fake_db.rows("video_groups")) == 1

    def test_second_load_reuses_group(self, fake_db, team, game, videos):
        first = timeline_service.get_or_create_timeline(game["id"], team["id"])
        second = timeline_service.get_or_create_timeline(game["id"], team["id"])
        assert first.video_group_id == second.video_group_id
        assert len(fake_db.rows("video_groups")) == 1

    def test_empty_game(self, fake_db, team, game):
        timeline = timeline_service.get_or_create_timeline(game["id"], team["id"])
        assert timeline.lanes == []
        assert timeline.total_duration_ms == 0

    def test_add_clip_rejects_overlap(self, fake_db, team, game, videos):
        extra = fake_db.seed("videos", team_id=team["id"], game_id=game["id"], name="Extra", duration_seconds=20)
        timeline_service.get_or_create_timeline(game["id"], team["id"])

        with pytest.raises(InvalidRequestError):
            timeline_service.add_clip(team["id"], game["id"], extra["id"], 1, 30_000)

        timeline = timeline_service.add_clip(team["id"], game["id"], extra["id"], 1, 60_000)
        assert [c.lane_position_ms for c in timeline.lanes[0].clips] == [0, 60_000]
        assert timeline.total_duration_ms == 80_000

    def test_add_clip_respects_camera_limit(self, fake_db, team, game, videos):
        fake_db.tables["subscriptions"][0]["tier"] = "basic"
        timeline_service.get_or_create_timeline(game["id"], team["id"])
        extra = fake_db.seed("videos", team_id=team["id"], game_id=game["id"], name="Extra", duration_seconds=20)

        with pytest.raises(LimitExceededError):
            timeline_service.add_clip(team["id"], game["id"], extra["id"], 3, 0)

        timeline = timeline_service.add_clip(team["id"], game["id"], extra["id"], 1, 60_000)
        assert [lane.lane for lane in timeline.lanes] == [1]

    def test_new_timeline_seeds_only_allowed_cameras(self, fake_db, team, game, videos):
        fake_db.tables["subscriptions"][0]["tier"] = "basic"

        timeline = timeline_service.get_or_create_timeline(game["id"], team["id"])

        assert [lane.lane for lane in timeline.lanes] == [1]
        assert [c.video_id for c in timeline.lanes[0].clips] == [videos[0]["id"]]
        assert len(fake_db.rows("video_group_members")) == 1

    def test_move_and_trim(self, fake_db, team, game, videos):
        timeline = timeline_service.get_or_create_timeline(game["id"], team["id"])
        clip = timeline.lanes[1].clips[0]

        moved = timeline_service.move_clip(team["id"], game["id"], clip.id, 5_000)
        assert moved.lanes[1].clips[0].lane_position_ms == 5_000

        trimmed = timeline_service.trim_clip(team["id"], game["id"], clip.id, 2_000, 12_000)
        assert trimmed.lanes[1].clips[0].duration_ms == 10_000
        assert trimmed.lanes[1].clips[0].start_offset_ms == 2_000

    def test_trim_end_must_follow_start(self, fake_db, team, game, videos):
        timeline = timeline_service.get_or_create_timeline(game["id"], team["id"])
        clip = timeline.lanes[0].clips[0]
        with pytest.raises(InvalidRequestError):
            timeline_service.trim_clip(team["id"], game["id"], clip.id, 5_000, 5_000)

    def test_remove_clip_and_unknown_clip(self, fake_db, team, game, videos):
        timeline = timeline_service.get_or_create_timeline(game["id"], team["id"])
        clip = timeline.lanes[1].clips[0]

        after = timeline_service.remove_clip(team["id"], game["id"], clip.id)
        assert [lane.lane for lane in after.lanes] == [1]

        with pytest.raises(NotFoundError):
            timeline_service.remove_clip(team["id"], game["id"], clip.id)

    def test_lane_label(self, fake_db, team, game, videos):
        timeline_service.get_or_create_timeline(game["id"], team["id"])
        updated = timeline_service.update_lane_label(team["id"], game["id"], 2, "Press Box")
        assert updated.lanes[1].label == "Press Box"

        with pytest.raises(NotFoundError):
            timeline_service.update_lane_label(team["id"], game["id"], 4, "Drone")


class TestTimelineRoutes:

    def test_get_timeline(self, client, team, game, videos):
        response = client.get(f"/api/teams/{team['id']}/games/{game['id']}/timeline")
        assert response.status_code == 200
        assert len(response.json()["lanes"]) == 2

    def test_camera_selections(self, client, team, game, videos):
        response = client.get(
            f"/api/teams/{team['id']}/games/{game['id']}/camera-selections",
            params={"time_ms": 45_000, "preferred_lane": 2},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["selection"]["is_in_gap"] is True
        assert body["selection"]["lane_number"] == 2
        assert body["cameras"][0]["seek_time_seconds"] == pytest.approx(45.0)

    def test_lane_out_of_range(self, client, team, game):
        response = client.put(
            f"/api/teams/{team['id']}/games/{game['id']}/timeline/lanes/9/label",
            json={"label": "Drone"},
        )
        assert response.status_code == 422
