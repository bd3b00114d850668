"""Tagged play instances and the team playbook."""

import logging
from typing import Optional

from coachhub.core.errors import InvalidRequestError, NotFoundError
from coachhub.db import database as db
from coachhub.models.schemas import PlaybookPlayCreate, PlayInstanceCreate, PlayInstanceUpdate

logger = logging.getLogger(__name__)


def _check_timestamps(start: Optional[float], end: Optional[float]) -> None:
    if start is not None and start < 0:
        raise InvalidRequestError("Play start cannot be negative")
    if start is not None and end is not None and end <= start:
        raise InvalidRequestError("Play end must be after play start")


def create_play(team_id: str, user_id: str, data: PlayInstanceCreate) -> dict:
    _check_timestamps(data.timestamp_start, data.timestamp_end)
    video = db.require_team_video(team_id, str(data.video_id))

    row = db.to_row(data)
    row["game_id"] = video.get("game_id")
    row["tagged_by"] = str(user_id)
    return db.create_play_instance(team_id, row)


def update_play(team_id: str, play_id: str, data: PlayInstanceUpdate) -> dict:
    current = db.get_play_instance(team_id, play_id)
    if not current:
        raise NotFoundError("Play not found")

    row = db.to_row(data, exclude_unset=True)
    start = row.get("timestamp_start", current.get("timestamp_start"))
    end = row.get("timestamp_end", current.get("timestamp_end"))
    _check_timestamps(start, end)
    return db.update_play_instance(team_id, play_id, row)


def create_playbook_play(team_id: str, data: PlaybookPlayCreate) -> dict:
    if db.get_playbook_play(team_id, data.play_code):
        raise InvalidRequestError(f"Play code {data.play_code} already exists in the playbook")
    return db.create_playbook_play(team_id, db.to_row(data))
