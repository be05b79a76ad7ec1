"""
Sandstorm Tracker - Crash Monitor
Periodic inactivity scan that closes state for servers whose log went quiet
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from tracker.parsers.components.match_state import MatchStateMachine, ServerState, StateRegistry
from tracker.utils.task_pool import TaskPool

logger = logging.getLogger(__name__)

DEFAULT_INACTIVITY_THRESHOLD = 10.0


class CrashMonitor:
    """Declares a crash when a server with open sessions stops writing"""

    def __init__(self, registry: StateRegistry, state_machine: MatchStateMachine,
                 db_manager, task_pool: TaskPool, notifier=None,
                 inactivity_threshold: float = DEFAULT_INACTIVITY_THRESHOLD,
                 clock: Optional[Callable[[], datetime]] = None):
        self.registry = registry
        self.state_machine = state_machine
        self.db_manager = db_manager
        self.task_pool = task_pool
        self.notifier = notifier
        self.inactivity_threshold = inactivity_threshold
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def is_inactive(self, state: ServerState, now: datetime) -> bool:
        last_activity = state.activity.last_activity
        if last_activity is None or not state.has_open_sessions():
            return False
        return (now - last_activity).total_seconds() > self.inactivity_threshold

    async def check_servers(self) -> List[str]:
        """Scan every server once, returning the ids declared crashed"""
        crashed = []
        for state in self.registry:
            if not self.is_inactive(state, self.clock()):
                continue

            async with self.task_pool.get_task_lock(state.server_id):
                # A pass may have delivered lines while we waited for the lock
                now = self.clock()
                if not self.is_inactive(state, now):
                    continue

                silent_for = (now - state.activity.last_activity).total_seconds()
                logger.warning(f"🔥 {state.display_name} silent for {silent_for:.0f}s with open sessions, "
                               f"treating as a crash")
                ops = self.state_machine.crash(state, now)
                if self.db_manager is not None:
                    applied = await self.db_manager.apply_operations(ops)
                    logger.info(f"Crash closure for {state.server_id}: {applied}/{len(ops)} writes applied")
                crashed.append(state.server_id)

            if self.notifier is not None:
                await self.notifier.send(state.server_id, f"🔥 {state.display_name} appears to have crashed")
        return crashed


def register_crash_monitor(scheduler, monitor: CrashMonitor, interval: float):
    """Schedule the periodic crash scan"""
    scheduler.add_job(
        monitor.check_servers,
        'interval',
        seconds=interval,
        id='crash_monitor',
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    logger.info(f"🛡️ Crash monitor scheduled every {interval:.0f}s "
                f"(threshold {monitor.inactivity_threshold:.0f}s)")
