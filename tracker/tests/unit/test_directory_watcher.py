"""
Unit Tests for the Directory Watcher
"""

import asyncio
import os
import threading
from unittest.mock import AsyncMock

import pytest
from watchdog.observers.polling import PollingObserver

from tracker.config import ServerWatchTarget
from tracker.watchers.directory_watcher import DirectoryWatcher, is_ignored_file, retry_delay


class FakeObserver:
    """Observer double that can fail a number of schedule attempts"""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.scheduled = []
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def schedule(self, handler, path, recursive=False):
        if self.failures:
            self.failures -= 1
            raise OSError("inotify watch limit reached")
        self.scheduled.append(path)

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


class TestHelpers:
    """Test backoff and file filtering"""

    @pytest.mark.parametrize('attempt, expected', [(1, 0.5), (2, 1.0), (3, 2.0), (4, 4.0), (10, 30.0)])
    def test_retry_delay(self, attempt, expected):
        assert retry_delay(attempt) == expected

    @pytest.mark.parametrize('name, ignored', [
        ('Insurgency.log', False),
        ('Insurgency-backup-2025.10.04-13.46.20.log', True),
        ('Insurgency.log.tmp', True),
        ('Insurgency.log~', True),
    ])
    def test_is_ignored_file(self, name, ignored):
        assert is_ignored_file(name) is ignored


class TestResolve:
    """Test mapping file events to targets"""

    def test_exact_file_name(self, target, log_dir):
        watcher = DirectoryWatcher([target], lambda t: None)
        assert watcher.resolve(os.path.join(str(log_dir), 'Insurgency.log')) == target

    def test_other_files_are_ignored(self, target, log_dir):
        watcher = DirectoryWatcher([target], lambda t: None)
        assert watcher.resolve(os.path.join(str(log_dir), 'Other.log')) is None
        assert watcher.resolve(os.path.join(str(log_dir), 'Insurgency-backup.log')) is None
        assert watcher.resolve(os.path.join(str(log_dir), 'sub', 'Insurgency.log')) is None

    def test_bytes_paths(self, target, log_dir):
        watcher = DirectoryWatcher([target], lambda t: None)
        path = os.fsencode(os.path.join(str(log_dir), 'Insurgency.log'))
        assert watcher.resolve(path) == target

    def test_shared_directory(self, log_dir):
        """Test two servers logging into the same directory"""
        first = ServerWatchTarget('one', 'One', str(log_dir), 'one.log')
        second = ServerWatchTarget('two', 'Two', str(log_dir), 'two.log')
        watcher = DirectoryWatcher([first, second], lambda t: None)

        assert len(watcher.directories) == 1
        assert watcher.resolve(os.path.join(str(log_dir), 'two.log')) == second

    def test_disabled_targets_are_not_watched(self, log_dir):
        disabled = ServerWatchTarget('off', 'Off', str(log_dir), 'off.log', enabled=False)
        watcher = DirectoryWatcher([disabled], lambda t: None)
        assert watcher.directories == []

    def test_polling_observer(self, target):
        watcher = DirectoryWatcher([target], lambda t: None, use_polling=True)
        assert watcher.observer_factory is PollingObserver


class TestWatching:
    """Test observer scheduling and event dispatch"""

    async def test_start_schedules_each_directory(self, target, log_dir):
        observer = FakeObserver()
        watcher = DirectoryWatcher([target], lambda t: None, observer_factory=lambda: observer)
        await watcher.start()

        assert observer.started
        assert len(observer.scheduled) == 1
        watcher.stop()
        assert observer.stopped

    async def test_dispatch_from_observer_thread(self, target, log_dir):
        """Test that events from another thread reach the loop"""
        seen = []
        watcher = DirectoryWatcher([target], seen.append, observer_factory=FakeObserver)
        await watcher.start()

        path = os.path.join(str(log_dir), 'Insurgency.log')
        thread = threading.Thread(target=watcher.dispatch, args=(path,))
        thread.start()
        thread.join()
        for _ in range(10):
            if seen:
                break
            await asyncio.sleep(0.01)

        assert seen == [target]

    async def test_unhealthy_target_is_skipped(self, target, log_dir):
        seen = []
        watcher = DirectoryWatcher([target], seen.append, is_healthy=lambda server_id: False,
                                   observer_factory=FakeObserver)
        await watcher.start()

        watcher.dispatch(os.path.join(str(log_dir), 'Insurgency.log'))
        await asyncio.sleep(0.01)
        assert seen == []

    async def test_watch_retries_with_backoff(self, target, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr('tracker.watchers.directory_watcher.asyncio.sleep', sleep)
        observer = FakeObserver(failures=2)
        watcher = DirectoryWatcher([target], lambda t: None, observer_factory=lambda: observer)

        await watcher.start()

        assert len(observer.scheduled) == 1
        assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0]

    async def test_exhausted_retries_mark_targets_unhealthy(self, target, monkeypatch):
        """Test that a directory that cannot be watched reports its targets"""
        monkeypatch.setattr('tracker.watchers.directory_watcher.asyncio.sleep', AsyncMock())
        unhealthy = []
        watcher = DirectoryWatcher([target], lambda t: None,
                                   on_unhealthy=lambda server_id, reason: unhealthy.append(server_id),
                                   observer_factory=lambda: FakeObserver(failures=99),
                                   max_retries=3)
        await watcher.start()

        assert unhealthy == [target.server_id]
        assert watcher.watched == set()

    async def test_ensure_watched_retries_lost_directory(self, target, monkeypatch):
        monkeypatch.setattr('tracker.watchers.directory_watcher.asyncio.sleep', AsyncMock())
        observer = FakeObserver(failures=3)
        watcher = DirectoryWatcher([target], lambda t: None, observer_factory=lambda: observer,
                                   on_unhealthy=lambda server_id, reason: None, max_retries=3)
        await watcher.start()
        assert watcher.watched == set()

        assert await watcher.ensure_watched(target) is True
        assert len(watcher.watched) == 1
