"""
Sandstorm Tracker - Chat Commands
Answers in-game !commands from the current match tallies
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from tracker.models.events import ChatCommandPayload, Event
from tracker.parsers.components.match_state import PlayerTally, ServerState, StateRegistry
from tracker.parsers.components.player_lifecycle import PlayerIdentity

logger = logging.getLogger(__name__)


class ChatCommandHandler:
    """Default chat command extension point"""

    def __init__(self, registry: StateRegistry):
        self.registry = registry
        self.commands: Dict[str, Callable[[ServerState, PlayerIdentity, ChatCommandPayload, datetime], str]] = {
            '!kdr': self._handle_kdr,
            '!stats': self._handle_stats,
            '!top': self._handle_top,
            '!guns': self._handle_guns,
            '!weapons': self._handle_guns,
        }

    def __call__(self, event: Event, identity: PlayerIdentity) -> Optional[str]:
        return self.handle(event, identity)

    def handle(self, event: Event, identity: PlayerIdentity) -> Optional[str]:
        """Return the reply for a chat command, or None when unsupported"""
        payload: ChatCommandPayload = event.payload
        state = self.registry.get(event.server_id)
        if state is None:
            return None

        handler = self.commands.get(payload.command)
        if handler is None:
            logger.debug(f"Unsupported chat command: {payload.command}")
            return None
        return handler(state, identity, payload, event.timestamp)

    def _tally(self, state: ServerState, identity: PlayerIdentity) -> PlayerTally:
        return state.tallies.get(identity.key, PlayerTally())

    def _handle_kdr(self, state, identity, payload, ts) -> str:
        tally = self._tally(state, identity)
        return (f"{payload.player_name}: {tally.kills} kills, {tally.deaths} deaths, "
                f"K/D: {tally.kdr:.2f}")

    def _handle_stats(self, state, identity, payload, ts) -> str:
        tally = self._tally(state, identity)
        seconds = 0
        session = state.lifecycle.sessions.get(identity.key)
        if session is not None:
            seconds = max(0, int((ts - session.join_time).total_seconds()))
        return (f"{payload.player_name}: {tally.kills} kills, {tally.assists} assists, "
                f"{tally.deaths} deaths, Objectives: {tally.objectives_captured + tally.objectives_destroyed}, "
                f"Time: {seconds // 3600}h{(seconds % 3600) // 60}m")

    def _handle_top(self, state, identity, payload, ts) -> str:
        ranked = sorted(
            ((key, tally) for key, tally in state.tallies.items() if tally.kills),
            key=lambda item: item[1].kills,
            reverse=True,
        )[:3]
        if not ranked:
            return "No stats available yet!"

        entries = []
        for position, (key, tally) in enumerate(ranked, start=1):
            name = state.lifecycle.id_to_name.get(key) or key.replace('name:', '', 1)
            entries.append(f"#{position}: {name} ({tally.kills} kills)")
        return "Top 3 Players: " + ", ".join(entries)

    def _handle_guns(self, state, identity, payload, ts) -> str:
        weapons = self._tally(state, identity).weapons
        if not weapons:
            return f"{payload.player_name}: No weapon stats available yet!"

        ranked = sorted(weapons.items(), key=lambda item: item[1], reverse=True)[:3]
        listing = ", ".join(f"#{i}: {name} ({kills})" for i, (name, kills) in enumerate(ranked, start=1))
        return f"{payload.player_name}'s Top Weapons: {listing}"
