"""
Sandstorm Tracker - Unified Log Parser
Ingestion pipeline: tail each server log, classify lines, drive the state
machine and hand the resulting writes to the database gateway
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from tracker.config import ServerWatchTarget
from tracker.models.events import Event, EventKind
from tracker.models.operations import WriteOp
from tracker.parsers.components.match_state import MatchStateMachine, ServerState, StateRegistry
from tracker.parsers.components.player_lifecycle import PlayerIdentity
from tracker.parsers.event_parser import EventParser
from tracker.utils.channel_router import ChannelRouter
from tracker.utils.exceptions import WatchException
from tracker.utils.tail_state_manager import TailStateManager
from tracker.utils.task_pool import TaskPool
from tracker.watchers.directory_watcher import DirectoryWatcher
from tracker.watchers.file_tailer import FileTailer

logger = logging.getLogger(__name__)

MAX_ERROR_COUNT = 5

CommandHandler = Callable[[Event, PlayerIdentity], Optional[str]]


class EventNotifier:
    """Turns handled events into one human readable line each"""

    def __init__(self, router: Optional[ChannelRouter], targets: Dict[str, ServerWatchTarget]):
        self.router = router
        self.targets = targets

    def format(self, event: Event) -> Optional[str]:
        """Describe an event, or None when it is not worth announcing"""
        payload = event.payload
        kind = event.kind

        if kind == EventKind.KILL:
            if not payload.is_pvp and payload.primary.is_bot:
                return None
            line = f"💀 {payload.primary.name} killed {payload.victim_name} with {payload.weapon}"
            assists = [k.name for k in payload.assists if not k.is_bot]
            if assists:
                line += f" (assisted by {', '.join(assists)})"
            return line
        if kind == EventKind.FRIENDLY_FIRE:
            return f"⚠️ {payload.primary.name} team-killed {payload.victim_name} with {payload.weapon}"
        if kind == EventKind.SUICIDE:
            return f"☠️ {payload.victim_name} killed themselves ({payload.weapon})"
        if kind == EventKind.JOIN:
            if payload.player_name is None:
                return None
            return f"➡️ {payload.player_name} joined"
        if kind == EventKind.LEAVE:
            return f"⬅️ {payload.player_name or payload.player_id} left"
        if kind == EventKind.MAP_LOAD:
            return f"🗺️ Map loaded: {payload.map_name} ({payload.game_mode})"
        if kind == EventKind.ROUND_END:
            return f"🏳️ Round over: team {payload.winning_team} won ({payload.win_reason})"
        if kind == EventKind.GAME_OVER:
            return "🏁 Game over"
        if kind == EventKind.CHAT_COMMAND:
            return f"💬 {payload.player_name} used {payload.command}"
        return None

    async def notify(self, event: Event) -> bool:
        text = self.format(event)
        if text is None:
            return False
        await self.send(event.server_id, text)
        return True

    async def send(self, server_id: str, text: str) -> bool:
        """Log the line and deliver it to the server's channel when one is configured"""
        target = self.targets.get(server_id)
        display_name = target.display_name if target else server_id
        logger.info(f"[{display_name}] {text}")
        if self.router is None or target is None:
            return False
        return await self.router.send_line(target, f"[{display_name}] {text}")


class UnifiedLogParser:
    """Per-server tailing, classification and state updates"""

    def __init__(self, bot, targets: List[ServerWatchTarget],
                 registry: Optional[StateRegistry] = None,
                 state_machine: Optional[MatchStateMachine] = None,
                 db_manager=None,
                 task_pool: Optional[TaskPool] = None,
                 command_handler: Optional[CommandHandler] = None,
                 notifier: Optional[EventNotifier] = None,
                 debounce_seconds: float = 0.1):
        self.bot = bot
        self.targets: Dict[str, ServerWatchTarget] = {t.server_id: t for t in targets if t.enabled}
        self.registry = registry or StateRegistry(self.targets.values())
        self.state_machine = state_machine or MatchStateMachine(self.registry)
        self.db_manager = db_manager
        self.task_pool = task_pool or TaskPool()
        self.command_handler = command_handler
        self.notifier = notifier or EventNotifier(None, self.targets)
        self.debounce_seconds = debounce_seconds

        self.event_parser = EventParser()
        self.tail_state = TailStateManager(db_manager) if db_manager is not None else None
        self.tailers: Dict[str, FileTailer] = {}
        self.error_counts: Dict[str, int] = {}
        self.unhealthy: Set[str] = set()
        self.watcher: Optional[DirectoryWatcher] = None

    # Health

    def is_healthy(self, server_id: str) -> bool:
        return server_id not in self.unhealthy

    def mark_unhealthy(self, server_id: str, reason: str):
        if server_id not in self.unhealthy:
            logger.error(f"❌ {server_id} marked unhealthy: {reason}")
        self.unhealthy.add(server_id)

    def _record_error(self, server_id: str, error: Exception):
        count = self.error_counts.get(server_id, 0) + 1
        self.error_counts[server_id] = count
        logger.warning(f"⚠️ Read error {count}/{MAX_ERROR_COUNT} for {server_id}: {error}")
        if count >= MAX_ERROR_COUNT:
            self.mark_unhealthy(server_id, f"{count} consecutive read errors")

    def _record_success(self, server_id: str):
        self.error_counts[server_id] = 0
        if server_id in self.unhealthy:
            self.unhealthy.discard(server_id)
            logger.info(f"✅ {server_id} is healthy again")

    # Startup

    async def load_cursors(self):
        """Restore stored cursors and close state a previous run left open"""
        now = datetime.now(timezone.utc)
        for server_id, target in self.targets.items():
            if self.db_manager is not None:
                await self.db_manager.abort_orphaned_state(server_id, now)
                await self.db_manager.apply_operation(WriteOp(
                    collection='servers',
                    key={'server_id': server_id},
                    set_fields={'display_name': target.display_name, 'log_path': target.log_path},
                ))
            if self.tail_state is not None:
                cursor = await self.tail_state.load_cursor(server_id, target.log_path)
            else:
                cursor = None
            self.tailers[server_id] = FileTailer(target.log_path, cursor)

    async def start_watching(self, use_polling: bool = False):
        """Start the directory watcher and catch up on anything written while stopped"""
        self.watcher = DirectoryWatcher(
            list(self.targets.values()),
            on_change=self.on_file_changed,
            use_polling=use_polling,
            is_healthy=self.is_healthy,
            on_unhealthy=self.mark_unhealthy,
        )
        await self.watcher.start()
        for target in self.targets.values():
            self.on_file_changed(target)

    # Passes

    def on_file_changed(self, target: ServerWatchTarget) -> bool:
        """Watcher callback, runs on the event loop"""
        return self.task_pool.debounce(
            target.server_id,
            lambda: self.process_server(target),
            self.debounce_seconds,
        )

    async def process_server(self, target: ServerWatchTarget) -> int:
        """Read and handle new lines for one server, returning the event count"""
        tailer = self.tailers.get(target.server_id)
        if tailer is None:
            tailer = FileTailer(target.log_path)
            self.tailers[target.server_id] = tailer

        try:
            lines = await tailer.read_new_lines()
        except WatchException as e:
            self._record_error(target.server_id, e)
            return 0

        if not lines:
            return 0

        events = await self.process_lines(target, lines)
        if events:
            self._record_success(target.server_id)
        return len(events)

    async def process_lines(self, target: ServerWatchTarget, lines: List[str]) -> List[Event]:
        """Classify lines, apply them in order and persist the resulting writes"""
        state = self.registry.get(target.server_id)
        if state is None:
            state = self.registry.register(target.server_id, target.display_name)
        state.activity.touch()

        handled: List[Event] = []
        ops: List[WriteOp] = []
        replies: List[str] = []
        for line in lines:
            try:
                event = self.event_parser.parse_line(line, target.server_id)
                if event is None:
                    continue
                ops.extend(self.state_machine.apply(event))
                handled.append(event)
                if event.kind == EventKind.CHAT_COMMAND:
                    reply = self._answer_command(state, event)
                    if reply:
                        replies.append(reply)
            except Exception as e:
                logger.error(f"Failed to handle line on {target.server_id}: {e} | {line[:200]}")

        if ops and self.db_manager is not None:
            applied = await self.db_manager.apply_operations(ops)
            if applied < len(ops):
                logger.warning(f"⚠️ {len(ops) - applied} of {len(ops)} writes failed for {target.server_id}")
            # The offset is stored with the writes it produced
            await self._save_cursor(target.server_id)

        for event in handled:
            await self.notifier.notify(event)
        for reply in replies:
            await self.notifier.send(target.server_id, f"↩️ {reply}")

        logger.debug(f"{target.server_id}: {len(lines)} lines, {len(handled)} events, {len(ops)} writes")
        return handled

    async def _save_cursor(self, server_id: str) -> bool:
        tailer = self.tailers.get(server_id)
        if self.tail_state is None or tailer is None:
            return False
        return await self.tail_state.save_cursor(server_id, tailer.cursor)

    def _answer_command(self, state: ServerState, event: Event) -> Optional[str]:
        if self.command_handler is None:
            return None
        payload = event.payload
        identity = state.lifecycle.identify(payload.player_name, payload.player_id, event.timestamp)
        return self.command_handler(event, identity)

    # Scheduled jobs

    async def retry_unhealthy(self) -> int:
        """Run a pass for every unhealthy target"""
        retried = 0
        for server_id in sorted(self.unhealthy):
            target = self.targets.get(server_id)
            if target is None:
                continue
            if self.watcher is not None:
                await self.watcher.ensure_watched(target)
            await self.task_pool.run_with_lock(lambda: self.process_server(target), server_id)
            retried += 1
        return retried

    async def flush_cursors(self, force: bool = False) -> int:
        """Persist every tail cursor"""
        if self.tail_state is None:
            return 0
        saved = 0
        for server_id, tailer in self.tailers.items():
            if await self.tail_state.save_cursor(server_id, tailer.cursor, force=force):
                saved += 1
        return saved

    async def shutdown_servers(self, at: Optional[datetime] = None) -> int:
        """Close every open match and session as part of a graceful stop"""
        at = at or datetime.now(timezone.utc)
        closed = 0
        for state in self.registry:
            async with self.task_pool.get_task_lock(state.server_id):
                if not state.has_open_activity():
                    continue
                ops = self.state_machine.shutdown(state, at)
                if self.db_manager is not None:
                    await self.db_manager.apply_operations(ops)
                closed += 1
        if closed:
            logger.info(f"🔄 Closed open state on {closed} servers")
        return closed

    async def stop(self, grace: float = 10.0):
        """Stop watching, drain in-flight passes and persist final state"""
        if self.watcher is not None:
            self.watcher.stop()
        await self.task_pool.shutdown(timeout=grace)
        await self.shutdown_servers()
        await self.flush_cursors(force=True)
