"""
Sandstorm Tracker - Event Parser
Classifies raw Insurgency: Sandstorm log lines into typed events
"""

import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from tracker.models.events import (
    ChatCommandPayload, DifficultyPayload, Event, EventKind, FallDamagePayload,
    GameOverPayload, JoinPayload, Killer, KillPayload, LeavePayload, LogOpenPayload,
    MapLoadPayload, MapVotePayload, ObjectivePayload, RconCommandPayload,
    RoundEndPayload, RoundStartPayload,
)
from tracker.parsers.components.timestamps import parse_log_timestamp
from tracker.parsers.components.weapons import normalize_weapon_name
from tracker.utils.exceptions import TimestampParseError

logger = logging.getLogger(__name__)

LINE_PREFIX = re.compile(r'^\[(\d{4}\.[^\]]*)\](?:\[\s*\d+\])?(.*)$')
DESCRIPTOR = re.compile(r'^(.+?)\[([^,\]]*), team (\d+)\]$')
SHORT_DESCRIPTOR = re.compile(r'^(.+?)\[([^\]]+)\]$')
OBJECTIVE_PLAYER_SPLIT = re.compile(r'(?<=\])\s*(?:,|\+)\s*')
GAME_MODES = ('Checkpoint', 'Push', 'Skirmish', 'Firefight', 'Frontline', 'Domination', 'Ambush', 'Outpost', 'Survival')


class EventParser:
    """Line classifier. parse_line never raises."""

    def __init__(self):
        self.patterns = self._compile_log_patterns()
        self.header_patterns = self._compile_header_patterns()
        self._log_open_times: Dict[str, datetime] = {}

    def _compile_log_patterns(self) -> Dict[str, re.Pattern]:
        """Patterns applied to the message after the timestamp and frame counter"""
        return {
            # Objective lines come first, their player lists look like kill descriptors
            'objective_destroyed': re.compile(r'LogGameplayEvents: Display: Objective (\d+) owned by team (\d+) was destroyed for team (\d+) by (.+)\.$'),
            'objective_captured': re.compile(r'LogGameplayEvents: Display: Objective (\d+) was captured for team (\d+) from team (\d+) by (.+)\.$'),
            'kill': re.compile(r'LogGameplayEvents: Display: (.+?) killed ([^\[]+)\[([^,\]]*), team (\d+)\] with (.+)$'),
            'join': re.compile(r'LogNet: Join succeeded: (.+)$'),
            'register': re.compile(r'LogEOSAntiCheat: Display: ServerRegisterClient: Client: \((\d+)\) Result: \(EOS_Success\)'),
            'unregister': re.compile(r'LogEOSAntiCheat: Display: ServerUnregisterClient: UserId \((\d+)\), Result: \(EOS_Success\)'),
            'rcon_farewell': re.compile(r'LogRcon: .*<< say See you later, (.+)!$'),
            'rcon': re.compile(r'LogRcon: ([^<]+)<< (.+)$'),
            'round_start': re.compile(r'LogGameplayEvents: Display: (?:Pre-)?[Rr]ound (\d+) started'),
            'round_end': re.compile(r'Log(?:GameMode|GameplayEvents): Display: Round (?:(\d+) )?O\s*ver: Team (\d+) won \(win reason: ([^)]+)\)'),
            'game_over': re.compile(r'LogGameplayEvents: Display: Game over'),
            'match_ended': re.compile(r'LogSession: Display: AINSGameSession::HandleMatchHasEnded'),
            'map_load': re.compile(r'LogLoad: LoadMap: /Game/Maps/([^/]+)/[^?]+\?(.*)$'),
            'command_line': re.compile(r'LogInit: Command Line:\s+(\w+)\?(\S*).*?-Hostname="([^"]+)"'),
            'difficulty': re.compile(r'LogAI: Warning: AI difficulty set to ([0-9.]+)'),
            'map_vote': re.compile(r'LogMapVoteManager: Display: (.*?)\s*Vote Options:'),
            'chat_command': re.compile(r'LogChat: Display: ([^(]+)\((\d+)\) Global Chat: (!.+)$'),
            'fall_damage': re.compile(r'LogSoldier: Applying ([0-9.]+) fall damage'),
        }

    def _compile_header_patterns(self) -> Dict[str, re.Pattern]:
        """Patterns for header lines written before the engine clock starts"""
        return {
            'log_open': re.compile(r'Log file open,\s+(\d{2})/(\d{2})/(\d{2})\s+(\d{2}):(\d{2}):(\d{2})'),
        }

    def parse_line(self, line: str, server_id: str) -> Optional[Event]:
        """Classify one raw line, returning None for anything not recognised"""
        try:
            line = line.strip()
            if not line:
                return None

            prefix = LINE_PREFIX.match(line)
            if not prefix:
                return self._parse_header_line(line, server_id)

            try:
                timestamp = parse_log_timestamp(prefix.group(1))
            except TimestampParseError as e:
                logger.warning(f"⚠️ Skipping line with bad timestamp ({e}): {line}")
                return None

            return self._classify(prefix.group(2), timestamp, server_id, line)

        except Exception as e:
            logger.error(f"Error parsing log line: {e} | {line!r}")
            return None

    def parse_lines(self, lines: List[str], server_id: str) -> List[Event]:
        """Classify a batch of lines, keeping only recognised events"""
        events = []
        for line in lines:
            event = self.parse_line(line, server_id)
            if event is not None:
                events.append(event)
        return events

    def _parse_header_line(self, line: str, server_id: str) -> Optional[Event]:
        match = self.header_patterns['log_open'].search(line)
        if match:
            month, day, year, hour, minute, second = (int(g) for g in match.groups())
            try:
                opened_at = datetime(2000 + year, month, day, hour, minute, second, tzinfo=timezone.utc)
            except ValueError:
                logger.warning(f"⚠️ Invalid log open header: {line}")
                return None
            self._log_open_times[server_id] = opened_at
            return Event(EventKind.LOG_OPEN, opened_at, server_id, line, LogOpenPayload(opened_at))

        match = self.patterns['command_line'].search(line)
        if match:
            opened_at = self._log_open_times.get(server_id)
            if opened_at is None:
                logger.debug(f"Command line header before log open on {server_id}, skipping")
                return None
            return self._build_command_line(match, opened_at, server_id, line)

        return None

    def _classify(self, message: str, timestamp: datetime, server_id: str, line: str) -> Optional[Event]:
        p = self.patterns

        for kind, key in ((EventKind.OBJECTIVE_DESTROYED, 'objective_destroyed'),
                          (EventKind.OBJECTIVE_CAPTURED, 'objective_captured')):
            match = p[key].search(message)
            if match:
                payload = ObjectivePayload(
                    objective=int(match.group(1)),
                    for_team=int(match.group(3)) if kind == EventKind.OBJECTIVE_DESTROYED else int(match.group(2)),
                    from_team=int(match.group(2)) if kind == EventKind.OBJECTIVE_DESTROYED else int(match.group(3)),
                    players=tuple(parse_objective_players(match.group(4))),
                )
                return Event(kind, timestamp, server_id, line, payload)

        match = p['kill'].search(message)
        if match:
            return self._build_kill(match, timestamp, server_id, line)

        match = p['join'].search(message)
        if match:
            name = match.group(1).strip()
            if not name:
                return None
            return Event(EventKind.JOIN, timestamp, server_id, line, JoinPayload(player_name=name))

        match = p['register'].search(message)
        if match:
            return Event(EventKind.JOIN, timestamp, server_id, line, JoinPayload(player_id=match.group(1)))

        match = p['unregister'].search(message)
        if match:
            return Event(EventKind.LEAVE, timestamp, server_id, line,
                         LeavePayload(player_id=match.group(1), reason='disconnect'))

        match = p['rcon_farewell'].search(message)
        if match:
            return Event(EventKind.LEAVE, timestamp, server_id, line,
                         LeavePayload(player_name=match.group(1).strip(), reason='rcon'))

        match = p['round_start'].search(message)
        if match:
            return Event(EventKind.ROUND_START, timestamp, server_id, line,
                         RoundStartPayload(int(match.group(1))))

        match = p['round_end'].search(message)
        if match:
            round_number = int(match.group(1)) if match.group(1) else None
            return Event(EventKind.ROUND_END, timestamp, server_id, line,
                         RoundEndPayload(int(match.group(2)), match.group(3).strip(), round_number))

        if p['game_over'].search(message):
            return Event(EventKind.GAME_OVER, timestamp, server_id, line, GameOverPayload('gameplay'))
        if p['match_ended'].search(message):
            return Event(EventKind.GAME_OVER, timestamp, server_id, line, GameOverPayload('session'))

        match = p['map_load'].search(message)
        if match:
            return self._build_map_load(match.group(1), match.group(2), timestamp, server_id, line)

        match = p['command_line'].search(message)
        if match:
            return self._build_command_line(match, timestamp, server_id, line)

        match = p['difficulty'].search(message)
        if match:
            try:
                difficulty = float(match.group(1))
            except ValueError:
                return None
            return Event(EventKind.DIFFICULTY_CHANGE, timestamp, server_id, line, DifficultyPayload(difficulty))

        match = p['map_vote'].search(message)
        if match:
            return Event(EventKind.MAP_VOTE, timestamp, server_id, line,
                         MapVotePayload(match.group(1).strip() or 'Unknown'))

        match = p['chat_command'].search(message)
        if match:
            tokens = match.group(3).split()
            payload = ChatCommandPayload(
                player_name=match.group(1).strip(),
                player_id=match.group(2),
                command=tokens[0].lower(),
                args=tuple(tokens[1:]),
            )
            return Event(EventKind.CHAT_COMMAND, timestamp, server_id, line, payload)

        match = p['rcon'].search(message)
        if match:
            return Event(EventKind.RCON_COMMAND, timestamp, server_id, line,
                         RconCommandPayload(match.group(1).strip(), match.group(2).strip()))

        match = p['fall_damage'].search(message)
        if match:
            try:
                damage = float(match.group(1))
            except ValueError:
                return None
            return Event(EventKind.FALL_DAMAGE, timestamp, server_id, line, FallDamagePayload(damage))

        return None

    def _build_kill(self, match: re.Match, timestamp: datetime, server_id: str, line: str) -> Optional[Event]:
        killer_section = match.group(1).strip()
        if killer_section == '?':
            logger.debug(f"Kill with no killer on {server_id}, skipping")
            return None

        killers = parse_killers(killer_section)
        if not killers:
            logger.warning(f"⚠️ No valid killers in kill line: {line}")
            return None

        victim_name = match.group(2).strip()
        victim_id = match.group(3).strip()
        victim_team = int(match.group(4))
        raw_weapon = match.group(5).strip()

        payload = KillPayload(
            killers=tuple(killers),
            victim_name=victim_name,
            victim_id=victim_id,
            victim_team=victim_team,
            weapon=normalize_weapon_name(raw_weapon),
            raw_weapon=raw_weapon,
        )
        return Event(classify_kill(payload), timestamp, server_id, line, payload)

    def _build_map_load(self, map_name: str, query: str, timestamp: datetime,
                        server_id: str, line: str, hostname: Optional[str] = None,
                        game: Optional[str] = None) -> Optional[Event]:
        params = parse_query(query)
        scenario_raw = params.get('Scenario')
        max_players = params.get('MaxPlayers')
        lighting = params.get('Lighting')
        if not scenario_raw or not max_players or not lighting or not max_players.isdigit():
            logger.debug(f"Partial map load line on {server_id}: {line}")
            return None

        game_mode = game_mode_for(game) if game else 'Unknown'
        if game_mode == 'Unknown':
            game_mode = game_mode_for(scenario_raw)

        payload = MapLoadPayload(
            map_name=map_name,
            scenario=clean_scenario(scenario_raw),
            max_players=int(max_players),
            lighting=lighting,
            game_mode=game_mode,
            player_team=team_for_scenario(scenario_raw),
            hostname=hostname,
        )
        return Event(EventKind.MAP_LOAD, timestamp, server_id, line, payload)

    def _build_command_line(self, match: re.Match, timestamp: datetime,
                            server_id: str, line: str) -> Optional[Event]:
        params = parse_query(match.group(2))
        return self._build_map_load(match.group(1), match.group(2), timestamp, server_id, line,
                                    hostname=match.group(3), game=params.get('Game'))


def parse_killers(section: str) -> List[Killer]:
    """Split a killer section on ' + ', dropping malformed descriptors"""
    killers = []
    for part in section.split(' + '):
        match = DESCRIPTOR.match(part.strip())
        if not match:
            logger.debug(f"Dropping malformed killer descriptor: {part!r}")
            continue
        killers.append(Killer(match.group(1).strip(), match.group(2).strip(), int(match.group(3))))
    return killers


def parse_objective_players(section: str) -> List[Killer]:
    """Objective lines list players as Name[id, team T] or Name[id]"""
    players = []
    for part in OBJECTIVE_PLAYER_SPLIT.split(section.strip()):
        part = part.strip()
        match = DESCRIPTOR.match(part)
        if match:
            players.append(Killer(match.group(1).strip(), match.group(2).strip(), int(match.group(3))))
            continue
        match = SHORT_DESCRIPTOR.match(part)
        if match:
            players.append(Killer(match.group(1).strip(), match.group(2).strip(), -1))
    return players


def classify_kill(payload: KillPayload) -> EventKind:
    primary = payload.primary
    if (len(payload.killers) == 1 and primary.player_id == payload.victim_id
            and primary.name == payload.victim_name):
        return EventKind.SUICIDE
    if len(payload.killers) == 1 and primary.team == payload.victim_team:
        return EventKind.FRIENDLY_FIRE
    return EventKind.KILL


def parse_query(query: str) -> Dict[str, str]:
    params = {}
    for part in query.split('?'):
        key, sep, value = part.partition('=')
        if sep and key:
            params[key] = value.split('&')[0]
    return params


def clean_scenario(scenario: str) -> str:
    return scenario.replace('Scenario_', '').replace('_', ' ').strip()


def team_for_scenario(scenario: str) -> Optional[str]:
    if '_Security' in scenario:
        return 'Security'
    if '_Insurgents' in scenario:
        return 'Insurgents'
    return None


def game_mode_for(scenario: str) -> str:
    for mode in GAME_MODES:
        if mode.lower() in scenario.lower():
            return mode
    return 'Unknown'
