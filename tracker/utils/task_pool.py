"""
Task Pool for Per-Server Serialisation
Per-key locks, debounced passes and tracking of in-flight work for shutdown
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class TaskTimer:
    """Context manager for tracking task execution time"""

    def __init__(self, label: str):
        self.label = label
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        logger.debug(f"🚀 Starting task: {self.label}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time:
            duration = time.time() - self.start_time
            if exc_type:
                logger.error(f"❌ Task {self.label} failed after {duration:.2f}s: {exc_val}")
            else:
                logger.debug(f"✅ Task {self.label} completed in {duration:.2f}s")


@dataclass
class _DebouncedPass:
    task: Optional[asyncio.Task] = None
    running: bool = False
    dirty: bool = False


class TaskPool:
    """Serialises work per key and collapses bursts of triggers"""

    def __init__(self):
        self._task_locks: Dict[str, asyncio.Lock] = {}
        self._debounced: Dict[str, _DebouncedPass] = {}
        self._closing = False

    def get_task_lock(self, lock_key: str) -> asyncio.Lock:
        """Get or create a lock for task deduplication"""
        if lock_key not in self._task_locks:
            self._task_locks[lock_key] = asyncio.Lock()
        return self._task_locks[lock_key]

    async def run_with_lock(self, func: Callable[[], Awaitable], lock_key: str):
        """Run a coroutine function while holding the key's lock"""
        async with self.get_task_lock(lock_key):
            with TaskTimer(lock_key):
                return await func()

    def debounce(self, key: str, func: Callable[[], Awaitable], delay: float) -> bool:
        """Schedule func after delay unless a pass for key is already pending.

        A trigger arriving while the pass runs marks it dirty, which buys
        exactly one follow-up pass. Returns True when a new pass was scheduled.
        """
        if self._closing:
            return False

        entry = self._debounced.get(key)
        if entry is not None:
            if entry.running:
                entry.dirty = True
            return False

        entry = _DebouncedPass()
        self._debounced[key] = entry
        entry.task = asyncio.ensure_future(self._run_debounced(key, entry, func, delay))
        return True

    async def _run_debounced(self, key: str, entry: _DebouncedPass,
                             func: Callable[[], Awaitable], delay: float):
        try:
            while True:
                await asyncio.sleep(delay)
                entry.running = True
                entry.dirty = False
                try:
                    await self.run_with_lock(func, key)
                except Exception as e:
                    logger.error(f"Debounced pass for {key} failed: {e}")
                finally:
                    entry.running = False
                if not entry.dirty or self._closing:
                    break
        finally:
            self._debounced.pop(key, None)

    def pending(self) -> int:
        return len(self._debounced)

    async def shutdown(self, timeout: float = 10.0):
        """Stop accepting triggers and wait for in-flight passes"""
        self._closing = True
        tasks = [entry.task for entry in self._debounced.values() if entry.task and not entry.task.done()]
        if not tasks:
            return

        logger.info(f"🔄 Waiting for {len(tasks)} in-flight passes...")
        done, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            logger.warning("⚠️ Cancelling pass that did not finish within shutdown timeout")
            task.cancel()
        logger.info("✅ TaskPool shutdown completed")
