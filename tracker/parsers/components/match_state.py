"""
Sandstorm Tracker - Match State Machine
Per-server session, match and tally state driven by parsed events.
Transitions are synchronous and return the writes they imply.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set

from tracker.models.events import Event, EventKind, KillPayload, MapLoadPayload
from tracker.models.operations import WriteOp
from tracker.parsers.components.player_lifecycle import (
    PlayerIdentity, PlayerLifecycleManager, PlayerSession, Promotion,
)

logger = logging.getLogger(__name__)

KILL_FIELDS = {
    EventKind.KILL: 'kills',
    EventKind.FRIENDLY_FIRE: 'team_kills',
    EventKind.SUICIDE: 'suicides',
}


@dataclass
class PlayerTally:
    """Per-match counters for one player"""
    kills: int = 0
    assists: int = 0
    deaths: int = 0
    team_kills: int = 0
    suicides: int = 0
    objectives_captured: int = 0
    objectives_destroyed: int = 0
    weapons: Dict[str, int] = field(default_factory=dict)

    @property
    def kdr(self) -> float:
        if self.deaths:
            return self.kills / self.deaths
        return float(self.kills)

    def to_fields(self) -> Dict[str, int]:
        return {
            'kills': self.kills,
            'assists': self.assists,
            'deaths': self.deaths,
            'team_kills': self.team_kills,
            'suicides': self.suicides,
            'objectives_captured': self.objectives_captured,
            'objectives_destroyed': self.objectives_destroyed,
        }

    def merge(self, other: 'PlayerTally'):
        for name, value in other.to_fields().items():
            setattr(self, name, getattr(self, name) + value)
        for weapon, kills in other.weapons.items():
            self.weapons[weapon] = self.weapons.get(weapon, 0) + kills


@dataclass
class ActiveMatch:
    server_id: str
    match_id: str
    start_time: datetime
    map_name: str
    scenario: Optional[str] = None
    game_mode: Optional[str] = None
    maps: List[str] = field(default_factory=list)
    participants: Set[str] = field(default_factory=set)
    present: Set[str] = field(default_factory=set)
    difficulty: Optional[float] = None


@dataclass
class ActivityClock:
    """Wall-clock time of the last line seen for a server"""
    server_id: str
    last_activity: Optional[datetime] = None

    def touch(self, now: Optional[datetime] = None):
        self.last_activity = now or datetime.now(timezone.utc)


class ServerState:
    """Everything the tracker knows about one server"""

    def __init__(self, server_id: str, display_name: Optional[str] = None):
        self.server_id = server_id
        self.display_name = display_name or server_id
        self.lifecycle = PlayerLifecycleManager(server_id)
        self.activity = ActivityClock(server_id)
        self.active_match: Optional[ActiveMatch] = None
        self.current_map: Optional[MapLoadPayload] = None
        self.round_number = 1
        self.tallies: Dict[str, PlayerTally] = {}
        self.hostname: Optional[str] = None
        self.last_event_time: Optional[datetime] = None
        self.kills_since_map_load = 0

    def tally_for(self, player_key: str) -> PlayerTally:
        if player_key not in self.tallies:
            self.tallies[player_key] = PlayerTally()
        return self.tallies[player_key]

    def has_open_sessions(self) -> bool:
        return bool(self.lifecycle.sessions)

    def has_open_activity(self) -> bool:
        return bool(self.lifecycle.sessions) or self.active_match is not None

    def reset(self):
        """Clear in-memory session and match state"""
        self.lifecycle.clear()
        self.active_match = None
        self.round_number = 1
        self.kills_since_map_load = 0


class StateRegistry:
    """Holds one ServerState per configured server"""

    def __init__(self, targets: Iterable = ()):
        self._states: Dict[str, ServerState] = {}
        for target in targets:
            self.register(target.server_id, target.display_name)

    def register(self, server_id: str, display_name: Optional[str] = None) -> ServerState:
        if server_id not in self._states:
            self._states[server_id] = ServerState(server_id, display_name)
        return self._states[server_id]

    def get(self, server_id: str) -> Optional[ServerState]:
        return self._states.get(server_id)

    def __contains__(self, server_id: str) -> bool:
        return server_id in self._states

    def __iter__(self) -> Iterator[ServerState]:
        return iter(list(self._states.values()))

    def __len__(self) -> int:
        return len(self._states)


class MatchStateMachine:
    """Applies events to server state and returns the writes they imply"""

    def __init__(self, registry: StateRegistry):
        self.registry = registry
        self._handlers: Dict[EventKind, Callable[[ServerState, Event], List[WriteOp]]] = {
            EventKind.JOIN: self._on_join,
            EventKind.LEAVE: self._on_leave,
            EventKind.KILL: self._on_kill,
            EventKind.FRIENDLY_FIRE: self._on_kill,
            EventKind.SUICIDE: self._on_kill,
            EventKind.ROUND_START: self._on_round_start,
            EventKind.ROUND_END: self._on_round_end,
            EventKind.GAME_OVER: self._on_game_over,
            EventKind.MAP_LOAD: self._on_map_load,
            EventKind.DIFFICULTY_CHANGE: self._on_difficulty,
            EventKind.OBJECTIVE_CAPTURED: self._on_objective,
            EventKind.OBJECTIVE_DESTROYED: self._on_objective,
            EventKind.CHAT_COMMAND: self._on_chat_command,
            EventKind.LOG_OPEN: self._on_log_open,
        }

    def apply(self, event: Event) -> List[WriteOp]:
        """Apply one event and return the resulting writes"""
        state = self.registry.get(event.server_id)
        if state is None:
            logger.warning(f"⚠️ Event for unknown server {event.server_id}: {event.kind.value}")
            return []

        handler = self._handlers.get(event.kind)
        ops = handler(state, event) if handler else []
        if state.last_event_time is None or event.timestamp > state.last_event_time:
            state.last_event_time = event.timestamp
        return ops

    def crash(self, state: ServerState, at: Optional[datetime] = None) -> List[WriteOp]:
        """Abort the match and force-close every session"""
        at = at or datetime.now(timezone.utc)
        logger.warning(f"🔥 Closing state for {state.display_name} after crash at {at.isoformat()}")
        return self.close_all(state, at, 'aborted', 'crash')

    def shutdown(self, state: ServerState, at: Optional[datetime] = None) -> List[WriteOp]:
        """Complete the match and close every session on graceful shutdown"""
        at = at or datetime.now(timezone.utc)
        return self.close_all(state, at, 'completed', 'shutdown')

    def close_all(self, state: ServerState, at: datetime, status: str, reason: str) -> List[WriteOp]:
        ops = []
        if state.active_match:
            ops.extend(self._end_match(state, at, status, reason))
        for session in state.lifecycle.open_sessions():
            ops.extend(self._close_session(state, session, at, reason))
        state.reset()
        return ops

    # Transitions

    def _on_join(self, state: ServerState, event: Event) -> List[WriteOp]:
        payload = event.payload
        lifecycle = state.lifecycle

        if payload.player_name is None:
            player_id = payload.player_id
            if player_id in lifecycle.sessions:
                return []
            if player_id in lifecycle.id_to_name:
                name = lifecycle.id_to_name[player_id]
                return self._open_session(state, lifecycle.identify(name, player_id, event.timestamp),
                                          name, event.timestamp)
            promotion = lifecycle.promote_latest_provisional(player_id)
            return self._promotion_ops(state, promotion) if promotion else []

        name = payload.player_name
        player_id = payload.player_id
        if not player_id and name not in lifecycle.name_to_id:
            player_id = lifecycle.take_pending_id()
        identity = lifecycle.identify(name, player_id, event.timestamp)
        return self._open_session(state, identity, name, event.timestamp)

    def _on_leave(self, state: ServerState, event: Event) -> List[WriteOp]:
        payload = event.payload
        session = None
        if payload.player_id:
            session = state.lifecycle.sessions.get(payload.player_id)
        if session is None and payload.player_name:
            session = state.lifecycle.find_session_by_name(payload.player_name)
        if session is None:
            logger.warning(f"⚠️ Leave with no open session on {state.display_name}: "
                           f"{payload.player_name or payload.player_id}")
            return []
        return self._close_session(state, session, event.timestamp, payload.reason)

    def _on_kill(self, state: ServerState, event: Event) -> List[WriteOp]:
        payload: KillPayload = event.payload
        ts = event.timestamp
        ops: List[WriteOp] = []

        if state.active_match is None:
            logger.info(f"Kill before any match on {state.display_name}, starting one implicitly")
            ops.extend(self._start_match(state, ts, state.current_map, implicit=True))
        match = state.active_match

        victim_identity = None
        if payload.is_pvp:
            ops.extend(self._promote_if_needed(state, payload.victim_name, payload.victim_id))
            victim_identity = state.lifecycle.identify(payload.victim_name, payload.victim_id, ts)
        victim_key = victim_identity.key if victim_identity else f"bot:{payload.victim_name}"

        for index, killer in enumerate(payload.killers):
            if killer.is_bot:
                continue
            ops.extend(self._promote_if_needed(state, killer.name, killer.player_id))
            identity = state.lifecycle.identify(killer.name, killer.player_id, ts)
            credit = 'kill' if index == 0 else 'assist'
            stat = KILL_FIELDS[event.kind] if index == 0 else 'assists'

            ops.append(self._player_op(state, identity, killer.name, ts))
            ops.append(WriteOp(
                collection='kill_events',
                key={
                    'server_id': state.server_id,
                    'timestamp': ts,
                    'killer_key': identity.key,
                    'victim_key': victim_key,
                    'weapon': payload.weapon,
                    'credit': credit,
                },
                set_on_insert={
                    'kind': event.kind.value,
                    'killer_name': killer.name,
                    'killer_team': killer.team,
                    'victim_name': payload.victim_name,
                    'victim_team': payload.victim_team,
                    'raw_weapon': payload.raw_weapon,
                    'is_pvp': payload.is_pvp,
                    'match_id': match.match_id,
                    'map_name': match.map_name,
                    'round': state.round_number,
                },
            ))
            ops.append(self._weapon_op(state, identity.key, killer.name, payload.weapon, stat))

            tally = state.tally_for(identity.key)
            setattr(tally, stat, getattr(tally, stat) + 1)
            if stat == 'kills':
                tally.weapons[payload.weapon] = tally.weapons.get(payload.weapon, 0) + 1

        if victim_identity is not None and event.kind != EventKind.SUICIDE:
            ops.append(self._player_op(state, victim_identity, payload.victim_name, ts))
            ops.append(self._weapon_op(state, victim_identity.key, payload.victim_name, payload.weapon, 'deaths'))
            state.tally_for(victim_identity.key).deaths += 1

        state.kills_since_map_load += 1
        return ops

    def _on_round_start(self, state: ServerState, event: Event) -> List[WriteOp]:
        state.round_number = event.payload.round_number
        return []

    def _on_round_end(self, state: ServerState, event: Event) -> List[WriteOp]:
        payload = event.payload
        finished = payload.round_number if payload.round_number is not None else state.round_number
        state.round_number = finished + 1
        if state.active_match is None:
            return []
        return [WriteOp(
            collection='matches',
            key=self._match_key(state.active_match),
            push_fields={'rounds': {
                'round': finished,
                'winning_team': payload.winning_team,
                'win_reason': payload.win_reason,
                'ended_at': event.timestamp,
            }},
        )]

    def _on_game_over(self, state: ServerState, event: Event) -> List[WriteOp]:
        if state.active_match is None:
            logger.debug(f"Game over with no active match on {state.display_name}")
            return []
        return self._end_match(state, event.timestamp, 'completed', 'game_over')

    def _on_map_load(self, state: ServerState, event: Event) -> List[WriteOp]:
        payload: MapLoadPayload = event.payload
        ops: List[WriteOp] = []

        if payload.hostname and payload.hostname != state.hostname:
            state.hostname = payload.hostname
            ops.append(WriteOp(
                collection='servers',
                key={'server_id': state.server_id},
                set_fields={'display_name': state.display_name, 'hostname': payload.hostname},
            ))

        # The startup command line and the first LoadMap describe the same map
        repeated = (
            state.active_match is not None
            and state.current_map is not None
            and state.current_map.map_name == payload.map_name
            and state.current_map.scenario == payload.scenario
            and state.kills_since_map_load == 0
            and state.round_number == 1
        )

        state.current_map = payload
        state.round_number = 1
        state.kills_since_map_load = 0
        if repeated:
            return ops

        if state.active_match is None:
            ops.extend(self._start_match(state, event.timestamp, payload))
            return ops

        match = state.active_match
        match.maps.append(payload.map_name)
        match.map_name = payload.map_name
        match.scenario = payload.scenario
        match.game_mode = payload.game_mode
        logger.info(f"Map {payload.map_name} added to match {match.match_id}")
        ops.append(WriteOp(
            collection='matches',
            key=self._match_key(match),
            set_fields={'map_name': payload.map_name, 'scenario': payload.scenario,
                        'game_mode': payload.game_mode},
            push_fields={'maps': payload.map_name},
        ))
        return ops

    def _on_difficulty(self, state: ServerState, event: Event) -> List[WriteOp]:
        match = state.active_match
        if match is None:
            return []
        match.difficulty = event.payload.difficulty
        return [WriteOp(
            collection='matches',
            key=self._match_key(match),
            set_fields={'difficulty': match.difficulty},
        )]

    def _on_objective(self, state: ServerState, event: Event) -> List[WriteOp]:
        payload = event.payload
        stat = 'objectives_captured' if event.kind == EventKind.OBJECTIVE_CAPTURED else 'objectives_destroyed'
        ops: List[WriteOp] = []
        for player in payload.players:
            if player.is_bot:
                continue
            ops.extend(self._promote_if_needed(state, player.name, player.player_id))
            identity = state.lifecycle.identify(player.name, player.player_id, event.timestamp)
            tally = state.tally_for(identity.key)
            setattr(tally, stat, getattr(tally, stat) + 1)
            op = self._player_op(state, identity, player.name, event.timestamp)
            op.inc_fields[stat] = 1
            ops.append(op)
        return ops

    def _on_chat_command(self, state: ServerState, event: Event) -> List[WriteOp]:
        payload = event.payload
        return self._promote_if_needed(state, payload.player_name, payload.player_id)

    def _on_log_open(self, state: ServerState, event: Event) -> List[WriteOp]:
        ops: List[WriteOp] = []
        if state.has_open_activity():
            closed_at = state.last_event_time or event.timestamp
            logger.warning(f"⚠️ {state.display_name} restarted with state still open, "
                           f"closing it at {closed_at.isoformat()}")
            ops.extend(self.close_all(state, closed_at, 'aborted', 'log_restart'))
        ops.append(WriteOp(
            collection='log_files',
            key={'server_id': state.server_id, 'opened_at': event.payload.opened_at},
            set_on_insert={'display_name': state.display_name},
        ))
        return ops

    # Helpers

    def _open_session(self, state: ServerState, identity: PlayerIdentity,
                      name: str, ts: datetime) -> List[WriteOp]:
        match = state.active_match
        session = state.lifecycle.open_session(identity, name, ts, match.match_id if match else None)
        if session is None:
            return []

        logger.info(f"Player joined {state.display_name}: {name}")
        ops = [
            self._player_op(state, identity, name, ts),
            WriteOp(
                collection='player_sessions',
                key=self._session_key(state, session),
                set_fields={'player_name': name, 'status': 'open', 'match_id': session.current_match_id},
            ),
        ]
        if match is not None:
            match.participants.add(identity.key)
            match.present.add(identity.key)
            ops.append(self._participant_join_op(state, match, session, ts))
        return ops

    def _close_session(self, state: ServerState, session: PlayerSession,
                       ts: datetime, reason: str) -> List[WriteOp]:
        state.lifecycle.close_session(session.player_key)
        duration = max(0.0, (ts - session.join_time).total_seconds())
        logger.info(f"Player left {state.display_name}: {session.player_name} "
                    f"after {duration:.0f}s ({reason})")

        ops = [
            WriteOp(
                collection='player_sessions',
                key=self._session_key(state, session),
                set_fields={
                    'status': 'closed',
                    'leave_time': ts,
                    'duration_seconds': duration,
                    'close_reason': reason,
                },
            ),
            WriteOp(
                collection='players',
                key={'server_id': state.server_id, 'player_key': session.player_key},
                set_fields={'player_name': session.player_name, 'last_seen': ts},
                inc_fields={'total_playtime_seconds': duration},
            ),
        ]

        match = state.active_match
        if match is not None and session.player_key in match.present:
            ops.append(self._participant_final_op(state, match, session.player_key, ts))
            match.present.discard(session.player_key)
        return ops

    def _start_match(self, state: ServerState, ts: datetime,
                     map_payload: Optional[MapLoadPayload], implicit: bool = False) -> List[WriteOp]:
        map_name = map_payload.map_name if map_payload else 'Unknown'
        match = ActiveMatch(
            server_id=state.server_id,
            match_id=f"{state.server_id}:{ts.isoformat()}",
            start_time=ts,
            map_name=map_name,
            scenario=map_payload.scenario if map_payload else None,
            game_mode=map_payload.game_mode if map_payload else None,
            maps=[map_name],
        )
        state.active_match = match
        state.tallies = {}
        logger.info(f"✅ Match started on {state.display_name}: {match.match_id} ({map_name})")

        ops = [WriteOp(
            collection='matches',
            key=self._match_key(match),
            set_fields={
                'status': 'active',
                'map_name': map_name,
                'scenario': match.scenario,
                'game_mode': match.game_mode,
                'maps': list(match.maps),
            },
            set_on_insert={'start_time': ts, 'implicit': implicit},
        )]

        for session in state.lifecycle.open_sessions():
            session.current_match_id = match.match_id
            match.participants.add(session.player_key)
            match.present.add(session.player_key)
            ops.append(self._participant_join_op(state, match, session, ts))
        return ops

    def _end_match(self, state: ServerState, ts: datetime, status: str, reason: str) -> List[WriteOp]:
        match = state.active_match
        ops = [self._participant_final_op(state, match, key, ts) for key in sorted(match.present)]
        ops.append(WriteOp(
            collection='matches',
            key=self._match_key(match),
            set_fields={
                'status': status,
                'end_time': ts,
                'end_reason': reason,
                'participant_count': len(match.participants),
            },
        ))
        for session in state.lifecycle.open_sessions():
            session.current_match_id = None
        state.active_match = None
        logger.info(f"🏁 Match {match.match_id} on {state.display_name} {status} ({reason}), "
                    f"{len(match.participants)} participants")
        return ops

    def _promote_if_needed(self, state: ServerState, name: str, player_id: str) -> List[WriteOp]:
        if not name or not player_id or player_id in state.lifecycle.sessions:
            return []
        if f"name:{name}" not in state.lifecycle.sessions:
            return []
        promotion = state.lifecycle.promote(name, player_id)
        return self._promotion_ops(state, promotion) if promotion else []

    def _promotion_ops(self, state: ServerState, promotion: Promotion) -> List[WriteOp]:
        session = promotion.session
        new_key = session.player_key
        ops = [
            WriteOp(
                collection='player_sessions',
                key={'server_id': state.server_id, 'player_key': promotion.old_key,
                     'join_time': session.join_time},
                set_fields={'player_key': new_key},
                upsert=False,
            ),
            self._player_op(state, session.identity, session.player_name, session.join_time),
        ]

        if promotion.old_key in state.tallies:
            state.tally_for(new_key).merge(state.tallies.pop(promotion.old_key))

        match = state.active_match
        if match is not None and promotion.old_key in match.participants:
            match.participants.discard(promotion.old_key)
            match.participants.add(new_key)
            if promotion.old_key in match.present:
                match.present.discard(promotion.old_key)
                match.present.add(new_key)
            ops.append(WriteOp(
                collection='match_participants',
                key={'match_id': match.match_id, 'player_key': promotion.old_key},
                set_fields={'player_key': new_key},
                upsert=False,
            ))
        return ops

    def _player_op(self, state: ServerState, identity: PlayerIdentity, name: str, ts: datetime) -> WriteOp:
        return WriteOp(
            collection='players',
            key={'server_id': state.server_id, 'player_key': identity.key},
            set_fields={'player_name': name, 'last_seen': ts, 'is_provisional': not identity.is_known},
            set_on_insert={'first_seen': ts},
        )

    def _weapon_op(self, state: ServerState, player_key: str, name: str, weapon: str, stat: str) -> WriteOp:
        return WriteOp(
            collection='weapon_stats',
            key={'server_id': state.server_id, 'player_key': player_key, 'weapon': weapon},
            set_fields={'player_name': name},
            inc_fields={stat: 1},
        )

    def _participant_join_op(self, state: ServerState, match: ActiveMatch,
                             session: PlayerSession, ts: datetime) -> WriteOp:
        return WriteOp(
            collection='match_participants',
            key={'match_id': match.match_id, 'player_key': session.player_key},
            set_fields={'server_id': state.server_id, 'player_name': session.player_name},
            set_on_insert={'joined_at': ts},
        )

    def _participant_final_op(self, state: ServerState, match: ActiveMatch,
                              player_key: str, ts: datetime) -> WriteOp:
        fields = state.tally_for(player_key).to_fields()
        fields['left_at'] = ts
        return WriteOp(
            collection='match_participants',
            key={'match_id': match.match_id, 'player_key': player_key},
            set_fields=fields,
        )

    @staticmethod
    def _match_key(match: ActiveMatch) -> Dict[str, str]:
        return {'server_id': match.server_id, 'match_id': match.match_id}

    @staticmethod
    def _session_key(state: ServerState, session: PlayerSession) -> Dict:
        return {'server_id': state.server_id, 'player_key': session.player_key,
                'join_time': session.join_time}
