"""
Play analytics computed from tagged play_instances.

A play counts as successful when it gains a first down, or when it gains
enough of the distance for its down: 40% on 1st, 60% on 2nd, all of it on
3rd and 4th.
"""

import logging
from collections import Counter, defaultdict
from typing import Optional

from coachhub.db import database as db

logger = logging.getLogger(__name__)

SUCCESS_THRESHOLDS = {1: 0.4, 2: 0.6, 3: 1.0, 4: 1.0}
RED_ZONE_YARD_LINE = 20
MIN_PLAY_ATTEMPTS = 3
TOP_PLAYS = 5
PASS_PLAY_TYPES = {"pass", "play_action", "screen", "rpo"}


def is_successful_play(play: dict) -> bool:
    if play.get("resulted_in_first_down"):
        return True
    down = play.get("down")
    distance = play.get("distance")
    yards = play.get("yards_gained")
    if not down or distance is None or yards is None:
        return False
    return yards >= distance * SUCCESS_THRESHOLDS.get(down, 1.0)


def _is_touchdown(play: dict) -> bool:
    return "touchdown" in (play.get("result") or "").lower()


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def _fetch_plays(team_id: str, is_opponent_play: bool, game_id: Optional[str] = None) -> list[dict]:
    client = db.require_client()
    query = (
        client.table("play_instances")
        .select("*")
        .eq("team_id", str(team_id))
        .eq("is_opponent_play", is_opponent_play)
    )
    if game_id:
        query = query.eq("game_id", str(game_id))
    return query.execute().data or []


def _summarize(plays: list[dict]) -> dict:
    yards = sum(p.get("yards_gained") or 0 for p in plays)
    successes = sum(1 for p in plays if is_successful_play(p))
    return {
        "plays": len(plays),
        "yards": yards,
        "yards_per_play": round(yards / len(plays), 1) if plays else 0.0,
        "success_rate": _rate(successes, len(plays)),
    }


def team_analytics(team_id: str, game_id: Optional[str] = None) -> dict:
    plays = _fetch_plays(team_id, False, game_id)

    overall = _summarize(plays)
    overall["first_downs"] = sum(1 for p in plays if p.get("resulted_in_first_down"))
    overall["turnovers"] = sum(1 for p in plays if p.get("is_turnover"))

    by_down = {}
    for down in (1, 2, 3, 4):
        down_plays = [p for p in plays if p.get("down") == down]
        stats = _summarize(down_plays)
        if down == 3:
            conversions = sum(1 for p in down_plays if p.get("resulted_in_first_down"))
            stats["conversions"] = conversions
            stats["conversion_rate"] = _rate(conversions, len(down_plays))
        by_down[str(down)] = stats

    red_zone_plays = [p for p in plays if p.get("yard_line") is not None and p["yard_line"] <= RED_ZONE_YARD_LINE]
    touchdowns = sum(1 for p in red_zone_plays if _is_touchdown(p))
    red_zone = {
        "attempts": len(red_zone_plays),
        "touchdowns": touchdowns,
        "touchdown_rate": _rate(touchdowns, len(red_zone_plays)),
    }

    names = {p["play_code"]: p.get("play_name") for p in db.list_playbook(team_id, include_archived=True)}
    grouped: dict[str, list[dict]] = defaultdict(list)
    for play in plays:
        if play.get("play_code"):
            grouped[play["play_code"]].append(play)

    play_stats = []
    for code, code_plays in grouped.items():
        if len(code_plays) < MIN_PLAY_ATTEMPTS:
            continue
        stats = _summarize(code_plays)
        play_stats.append({"play_code": code, "play_name": names.get(code) or code, **stats})

    ranked = sorted(play_stats, key=lambda s: s["success_rate"], reverse=True)

    return {
        "game_id": str(game_id) if game_id else None,
        "overall": overall,
        "by_down": by_down,
        "red_zone": red_zone,
        "plays": play_stats,
        "top_plays": ranked[:TOP_PLAYS],
        "bottom_plays": sorted(play_stats, key=lambda s: s["success_rate"])[:TOP_PLAYS],
    }


def player_stats(team_id: str, player_id: str) -> dict:
    plays = _fetch_plays(team_id, False)
    player_id = str(player_id)

    carries = [p for p in plays if str(p.get("ball_carrier_id")) == player_id]
    rush_yards = sum(p.get("yards_gained") or 0 for p in carries)

    throws = [p for p in plays if str(p.get("qb_id")) == player_id and p.get("play_type") in PASS_PLAY_TYPES]
    completions = [p for p in throws if _is_completion(p)]
    interceptions = [p for p in throws if _is_interception(p)]

    targets = [p for p in plays if str(p.get("target_id")) == player_id]
    receptions = [p for p in targets if _is_completion(p)]

    involved = {p["id"]: p for p in carries + throws + targets}.values()
    yards_by_down = Counter()
    for play in involved:
        if play.get("down"):
            yards_by_down[str(play["down"])] += play.get("yards_gained") or 0

    return {
        "player_id": player_id,
        "rushing": {
            "carries": len(carries),
            "yards": rush_yards,
            "yards_per_carry": round(rush_yards / len(carries), 1) if carries else 0.0,
            "touchdowns": sum(1 for p in carries if _is_touchdown(p)),
        },
        "passing": {
            "attempts": len(throws),
            "completions": len(completions),
            "completion_pct": _rate(len(completions), len(throws)),
            "yards": sum(p.get("yards_gained") or 0 for p in completions),
            "touchdowns": sum(1 for p in completions if _is_touchdown(p)),
            "interceptions": len(interceptions),
        },
        "receiving": {
            "targets": len(targets),
            "receptions": len(receptions),
            "yards": sum(p.get("yards_gained") or 0 for p in receptions),
            "touchdowns": sum(1 for p in receptions if _is_touchdown(p)),
        },
        "yards_by_down": dict(yards_by_down),
    }


def _is_completion(play: dict) -> bool:
    result = (play.get("result") or "").lower()
    if "incomplete" in result:
        return False
    return "complete" in result or (_is_touchdown(play) and bool(play.get("target_id")))


def _is_interception(play: dict) -> bool:
    return "interception" in (play.get("result") or "").lower() or bool(play.get("is_interception"))


def opponent_tendencies(team_id: str, opponent: str) -> dict:
    """Run/pass split and favourite formations from tagged opponent film."""
    client = db.require_client()
    games = (
        client.table("games")
        .select("id")
        .eq("team_id", str(team_id))
        .eq("opponent", opponent)
        .execute()
    ).data or []
    game_ids = [g["id"] for g in games]
    if not game_ids:
        return {"opponent": opponent, "total_plays": 0, "run_pct": 0.0, "pass_pct": 0.0, "by_down": {}, "top_formations": []}

    plays = (
        client.table("play_instances")
        .select("*")
        .eq("team_id", str(team_id))
        .eq("is_opponent_play", True)
        .in_("game_id", game_ids)
        .execute()
    ).data or []

    def split(subset: list[dict]) -> dict:
        runs = sum(1 for p in subset if p.get("play_type") == "run")
        passes = sum(1 for p in subset if p.get("play_type") in PASS_PLAY_TYPES)
        return {"plays": len(subset), "run_pct": _rate(runs, len(subset)), "pass_pct": _rate(passes, len(subset))}

    overall = split(plays)
    formations = Counter(p["formation"] for p in plays if p.get("formation"))

    return {
        "opponent": opponent,
        "total_plays": overall["plays"],
        "run_pct": overall["run_pct"],
        "pass_pct": overall["pass_pct"],
        "by_down": {str(d): split([p for p in plays if p.get("down") == d]) for d in (1, 2, 3, 4)},
        "top_formations": [{"formation": f, "count": n} for f, n in formations.most_common(TOP_PLAYS)],
    }
