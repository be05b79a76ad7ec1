"""
Player Lifecycle Manager
Handles player identity resolution and session tracking for one server
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, List, Optional, Union

from tracker.models.events import BOT_ID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnownIdentity:
    """Player identified by the platform id from the log"""
    external_id: str

    @property
    def key(self) -> str:
        return self.external_id

    @property
    def is_known(self) -> bool:
        return True


@dataclass(frozen=True)
class ProvisionalIdentity:
    """Player seen by name only, waiting for an id"""
    name: str
    first_seen_at: datetime

    @property
    def key(self) -> str:
        return f"name:{self.name}"

    @property
    def is_known(self) -> bool:
        return False

    def promote(self, external_id: str) -> KnownIdentity:
        return KnownIdentity(external_id)


PlayerIdentity = Union[KnownIdentity, ProvisionalIdentity]


@dataclass
class PlayerSession:
    server_id: str
    identity: PlayerIdentity
    player_name: str
    join_time: datetime
    current_match_id: Optional[str] = None

    @property
    def player_key(self) -> str:
        return self.identity.key


@dataclass
class Promotion:
    """A session re-keyed from a provisional to a known identity"""
    old_key: str
    session: PlayerSession


class PlayerLifecycleManager:
    """Manages player identities and open sessions for a single server"""

    def __init__(self, server_id: str):
        self.server_id = server_id
        self.sessions: Dict[str, PlayerSession] = {}
        self.name_to_id: Dict[str, str] = {}
        self.id_to_name: Dict[str, str] = {}
        self.first_seen: Dict[str, datetime] = {}
        self.pending_ids: Deque[str] = deque(maxlen=16)

    def identify(self, name: Optional[str], player_id: Optional[str], timestamp: datetime) -> PlayerIdentity:
        """Resolve a player to a known or provisional identity"""
        if player_id and player_id != BOT_ID:
            if name:
                self.name_to_id[name] = player_id
                self.id_to_name[player_id] = name
            return KnownIdentity(player_id)

        if name in self.name_to_id:
            return KnownIdentity(self.name_to_id[name])

        first_seen = self.first_seen.setdefault(name, timestamp)
        return ProvisionalIdentity(name, first_seen)

    def open_session(self, identity: PlayerIdentity, player_name: str, timestamp: datetime,
                     match_id: Optional[str] = None) -> Optional[PlayerSession]:
        """Open a session, returning None when one is already open"""
        if identity.key in self.sessions:
            logger.debug(f"Duplicate join for {player_name} on {self.server_id}")
            return None

        session = PlayerSession(self.server_id, identity, player_name, timestamp, match_id)
        self.sessions[identity.key] = session
        logger.debug(f"Session opened: {identity.key} -> '{player_name}'")
        return session

    def close_session(self, player_key: str) -> Optional[PlayerSession]:
        return self.sessions.pop(player_key, None)

    def find_session_by_name(self, name: str) -> Optional[PlayerSession]:
        for session in self.sessions.values():
            if session.player_name == name:
                return session
        return None

    def promote(self, name: str, external_id: str) -> Optional[Promotion]:
        """Re-key an open provisional session once its id is observed"""
        provisional_key = f"name:{name}"
        session = self.sessions.get(provisional_key)
        if session is None or external_id in self.sessions:
            return None

        del self.sessions[provisional_key]
        session.identity = session.identity.promote(external_id)
        self.sessions[external_id] = session
        self.name_to_id[name] = external_id
        self.id_to_name[external_id] = name
        self.first_seen.pop(name, None)
        logger.info(f"Promoted provisional player '{name}' to {external_id}")
        return Promotion(provisional_key, session)

    def promote_latest_provisional(self, external_id: str) -> Optional[Promotion]:
        """Attach an id-only registration to the newest name-only session"""
        if external_id in self.sessions:
            return None

        provisional = [s for s in self.sessions.values() if not s.identity.is_known]
        if not provisional:
            self.pending_ids.append(external_id)
            return None

        latest = max(provisional, key=lambda s: s.join_time)
        return self.promote(latest.player_name, external_id)

    def take_pending_id(self) -> Optional[str]:
        return self.pending_ids.popleft() if self.pending_ids else None

    def open_sessions(self) -> List[PlayerSession]:
        return list(self.sessions.values())

    def clear(self):
        """Drop all open sessions"""
        cleared = len(self.sessions)
        self.sessions.clear()
        self.pending_ids.clear()
        if cleared:
            logger.debug(f"Cleared {cleared} sessions on {self.server_id}")
