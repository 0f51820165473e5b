"""Routing keys and the messages exchanged between game processes."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

ARMY_MOVES_PREFIX = "army_moves"
WAR_RECOGNITIONS_PREFIX = "war"
WAR_QUEUE = "war"
PAUSE_KEY = "pause"
GAME_LOG_SLUG = "game_logs"


def routing_key(prefix: str, username: str) -> str:
    return f"{prefix}.{username}"


def wildcard(prefix: str) -> str:
    """Binding key matching exactly one segment after the prefix."""
    return f"{prefix}.*"


class PerilModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlayingState(PerilModel):
    is_paused: bool


class GameLog(PerilModel):
    current_time: datetime
    message: str
    username: str
