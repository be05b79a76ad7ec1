"""
Unit Tests for the Task Pool
"""

import asyncio

from tracker.utils.task_pool import TaskPool


class TestDebounce:
    """Test collapsing bursts of file notifications"""

    async def test_burst_collapses_into_one_pass(self):
        pool = TaskPool()
        runs = []

        async def work():
            runs.append(1)

        scheduled = [pool.debounce('main', work, 0.01) for _ in range(5)]
        assert scheduled == [True, False, False, False, False]

        await asyncio.sleep(0.05)
        assert runs == [1]
        assert pool.pending() == 0

    async def test_trigger_during_run_buys_one_follow_up(self):
        """Test that triggers arriving mid-pass cause exactly one more pass"""
        pool = TaskPool()
        started = asyncio.Event()
        release = asyncio.Event()
        runs = []

        async def work():
            runs.append(1)
            if len(runs) == 1:
                started.set()
                await release.wait()

        pool.debounce('main', work, 0)
        await started.wait()
        for _ in range(3):
            assert pool.debounce('main', work, 0) is False
        release.set()

        await asyncio.sleep(0.05)
        assert len(runs) == 2
        assert pool.pending() == 0

    async def test_keys_are_independent(self):
        pool = TaskPool()
        runs = []

        async def work_for(key):
            runs.append(key)

        assert pool.debounce('a', lambda: work_for('a'), 0)
        assert pool.debounce('b', lambda: work_for('b'), 0)
        await asyncio.sleep(0.02)
        assert sorted(runs) == ['a', 'b']

    async def test_failed_pass_is_logged_not_raised(self):
        pool = TaskPool()

        async def broken():
            raise RuntimeError("boom")

        pool.debounce('main', broken, 0)
        await asyncio.sleep(0.02)
        assert pool.pending() == 0


class TestLocks:
    """Test per-key serialisation and shutdown"""

    async def test_same_key_shares_lock(self):
        pool = TaskPool()
        assert pool.get_task_lock('main') is pool.get_task_lock('main')
        assert pool.get_task_lock('main') is not pool.get_task_lock('other')

    async def test_run_with_lock_returns_result(self):
        pool = TaskPool()

        async def work():
            return 42

        assert await pool.run_with_lock(work, 'main') == 42

    async def test_shutdown_waits_for_pending_passes(self):
        pool = TaskPool()
        runs = []

        async def work():
            await asyncio.sleep(0.01)
            runs.append(1)

        pool.debounce('main', work, 0.01)
        await pool.shutdown(timeout=1.0)

        assert runs == [1]
        assert pool.debounce('main', work, 0.01) is False
