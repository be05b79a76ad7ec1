"""
Sandstorm Tracker - Directory Watcher
One watchdog schedule per log directory, routing file events to server targets
"""

import asyncio
import logging
import os
from typing import Callable, Dict, List, Optional, Set, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from tracker.config import ServerWatchTarget

logger = logging.getLogger(__name__)

MAX_WATCH_RETRIES = 5
BASE_RETRY_DELAY = 0.5
MAX_RETRY_DELAY = 30.0


def retry_delay(attempt: int, base: float = BASE_RETRY_DELAY, cap: float = MAX_RETRY_DELAY) -> float:
    """Backoff before retry number attempt (1-based)"""
    return min(cap, base * 2 ** (attempt - 1))


def is_ignored_file(file_name: str) -> bool:
    lowered = file_name.lower()
    return 'backup' in lowered or lowered.endswith('.tmp') or lowered.endswith('~')


class LogDirectoryEventHandler(FileSystemEventHandler):
    """Forwards modifications in one directory to the watcher"""

    def __init__(self, watcher: 'DirectoryWatcher', directory: str):
        super().__init__()
        self.watcher = watcher
        self.directory = directory

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher.dispatch(event.src_path)

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher.dispatch(event.src_path)

    def on_moved(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher.dispatch(event.dest_path)


class DirectoryWatcher:
    """Watches every configured log directory and resolves events to targets"""

    def __init__(self, targets: List[ServerWatchTarget],
                 on_change: Callable[[ServerWatchTarget], None],
                 use_polling: bool = False,
                 is_healthy: Optional[Callable[[str], bool]] = None,
                 on_unhealthy: Optional[Callable[[str, str], None]] = None,
                 observer_factory: Optional[Callable[[], object]] = None,
                 max_retries: int = MAX_WATCH_RETRIES):
        self.on_change = on_change
        self.is_healthy = is_healthy or (lambda server_id: True)
        self.on_unhealthy = on_unhealthy
        self.max_retries = max_retries
        self.observer_factory = observer_factory or (PollingObserver if use_polling else Observer)
        self.observer = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None

        self._targets: Dict[Tuple[str, str], ServerWatchTarget] = {}
        self._directories: Dict[str, List[ServerWatchTarget]] = {}
        for target in targets:
            if not target.enabled:
                continue
            directory = self._normalize(target.log_directory)
            self._targets[(directory, target.log_file_name)] = target
            self._directories.setdefault(directory, []).append(target)

        self.watched: Set[str] = set()

    @staticmethod
    def _normalize(directory: str) -> str:
        return os.path.normcase(os.path.abspath(directory))

    @property
    def directories(self) -> List[str]:
        return list(self._directories)

    def resolve(self, path: str) -> Optional[ServerWatchTarget]:
        """Map a changed path to its target by exact file name"""
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        file_name = os.path.basename(path)
        if not file_name or is_ignored_file(file_name):
            return None
        directory = self._normalize(os.path.dirname(path))
        return self._targets.get((directory, file_name))

    def dispatch(self, path: str):
        """Called on the observer thread; hands matched events to the loop"""
        target = self.resolve(path)
        if target is None:
            return
        if not self.is_healthy(target.server_id):
            logger.debug(f"Skipping event for unhealthy server {target.server_id}")
            return
        if self.loop is None or self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.on_change, target)

    async def start(self):
        """Start the observer and schedule every directory"""
        self.loop = asyncio.get_running_loop()
        self.observer = self.observer_factory()
        self.observer.start()
        logger.info(f"Watching {len(self._directories)} log directories "
                    f"({type(self.observer).__name__})")

        results = await asyncio.gather(
            *(self._watch_with_retry(directory) for directory in self._directories),
            return_exceptions=True,
        )
        for directory, result in zip(self._directories, results):
            if isinstance(result, Exception):
                logger.error(f"❌ Watch setup for {directory} failed: {result}")

    async def _watch_with_retry(self, directory: str) -> bool:
        for attempt in range(1, self.max_retries + 1):
            try:
                handler = LogDirectoryEventHandler(self, directory)
                self.observer.schedule(handler, directory, recursive=False)
                self.watched.add(directory)
                logger.info(f"✅ Watching {directory}")
                return True
            except OSError as e:
                if attempt == self.max_retries:
                    break
                delay = retry_delay(attempt)
                logger.warning(f"⚠️ Watch on {directory} failed (attempt {attempt}/{self.max_retries}): "
                               f"{e}, retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

        logger.error(f"❌ Giving up on watching {directory} after {self.max_retries} attempts")
        for target in self._directories[directory]:
            if self.on_unhealthy:
                self.on_unhealthy(target.server_id, f"watch on {directory} failed")
        return False

    async def ensure_watched(self, target: ServerWatchTarget) -> bool:
        """Re-establish the watch on a target's directory if it was lost"""
        directory = self._normalize(target.log_directory)
        if directory in self.watched or self.observer is None:
            return True
        return await self._watch_with_retry(directory)

    def stop(self):
        if self.observer is not None:
            self.observer.stop()
            self.observer.join(timeout=5.0)
            self.observer = None
            logger.info("Directory watcher stopped")
