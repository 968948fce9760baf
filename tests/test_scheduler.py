import asyncio

import pytest

from task_sync.scheduler import run_sync_scheduler
from task_sync.sync_engine import SyncResult


class CountingEngine:
    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    def sync(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("storage unavailable")
        return SyncResult()


def _run_briefly(engine, seconds):
    async def scenario():
        task = asyncio.create_task(run_sync_scheduler(engine, interval_seconds=0.5))
        await asyncio.sleep(seconds)
        assert not task.done()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())


class TestScheduler:
    def test_runs_immediately_then_waits_for_interval(self):
        engine = CountingEngine()
        _run_briefly(engine, 0.2)
        assert engine.calls == 1

    def test_failed_pass_does_not_stop_the_loop(self, caplog):
        engine = CountingEngine(fail=True)
        _run_briefly(engine, 0.7)
        assert engine.calls == 2
        assert "Scheduled sync pass failed" in caplog.text
