"""
Sandstorm Tracker - Event Models
Typed events produced by the line classifier
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple

BOT_ID = 'INVALID'


class EventKind(str, Enum):
    """Kinds of events recognised in the server log"""
    KILL = 'kill'
    FRIENDLY_FIRE = 'friendly_fire'
    SUICIDE = 'suicide'
    JOIN = 'join'
    LEAVE = 'leave'
    ROUND_START = 'round_start'
    ROUND_END = 'round_end'
    GAME_OVER = 'game_over'
    MAP_LOAD = 'map_load'
    DIFFICULTY_CHANGE = 'difficulty_change'
    MAP_VOTE = 'map_vote'
    CHAT_COMMAND = 'chat_command'
    RCON_COMMAND = 'rcon_command'
    FALL_DAMAGE = 'fall_damage'
    OBJECTIVE_DESTROYED = 'objective_destroyed'
    OBJECTIVE_CAPTURED = 'objective_captured'
    LOG_OPEN = 'log_open'


@dataclass(frozen=True)
class Killer:
    """One player descriptor from a kill or objective line"""
    name: str
    player_id: str
    team: int

    @property
    def is_bot(self) -> bool:
        return not self.player_id or self.player_id == BOT_ID


@dataclass(frozen=True)
class KillPayload:
    killers: Tuple[Killer, ...]
    victim_name: str
    victim_id: str
    victim_team: int
    weapon: str
    raw_weapon: str

    @property
    def primary(self) -> Killer:
        return self.killers[0]

    @property
    def assists(self) -> Tuple[Killer, ...]:
        return self.killers[1:]

    @property
    def is_pvp(self) -> bool:
        return bool(self.victim_id) and self.victim_id != BOT_ID


@dataclass(frozen=True)
class JoinPayload:
    player_name: Optional[str] = None
    player_id: Optional[str] = None


@dataclass(frozen=True)
class LeavePayload:
    player_name: Optional[str] = None
    player_id: Optional[str] = None
    reason: str = 'disconnect'


@dataclass(frozen=True)
class RoundStartPayload:
    round_number: int


@dataclass(frozen=True)
class RoundEndPayload:
    winning_team: int
    win_reason: str
    round_number: Optional[int] = None


@dataclass(frozen=True)
class GameOverPayload:
    source: str = 'gameplay'


@dataclass(frozen=True)
class MapLoadPayload:
    map_name: str
    scenario: str
    max_players: int
    lighting: str
    game_mode: str
    player_team: Optional[str] = None
    hostname: Optional[str] = None


@dataclass(frozen=True)
class DifficultyPayload:
    difficulty: float


@dataclass(frozen=True)
class MapVotePayload:
    vote_kind: str


@dataclass(frozen=True)
class ChatCommandPayload:
    player_name: str
    player_id: str
    command: str
    args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RconCommandPayload:
    client: str
    command: str


@dataclass(frozen=True)
class FallDamagePayload:
    damage: float


@dataclass(frozen=True)
class ObjectivePayload:
    objective: int
    for_team: int
    from_team: int
    players: Tuple[Killer, ...] = ()


@dataclass(frozen=True)
class LogOpenPayload:
    opened_at: datetime


@dataclass(frozen=True)
class Event:
    """A classified log line"""
    kind: EventKind
    timestamp: datetime
    server_id: str
    raw_line: str
    payload: Any = field(default=None)
