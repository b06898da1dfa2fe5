"""Unit tests for the scheduled trigger"""

import asyncio
import logging

import pytest

from podcast_digest.scheduler import PipelineScheduler, RunLock


class BlockingProcessor:
    """Processor whose full run waits until released"""

    def __init__(self):
        self.release = asyncio.Event()
        self.runs = 0

    async def run_full_pipeline(self):
        self.runs += 1
        await self.release.wait()
        return 7, []


class TestPipelineScheduler:
    """Test the busy guard"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_overlapping_trigger_is_skipped(self, caplog):
        processor = BlockingProcessor()
        scheduler = PipelineScheduler(processor)

        first = asyncio.create_task(scheduler.run_scheduled())
        await asyncio.sleep(0)
        assert scheduler.is_running

        with caplog.at_level(logging.WARNING, logger="podcast_digest.scheduler"):
            skipped = await scheduler.run_scheduled()

        assert skipped is None
        assert "still running" in caplog.text

        processor.release.set()
        assert await first == (7, [])
        assert processor.runs == 1
        assert not scheduler.is_running
        assert scheduler.status()['last_run_status'] == 'completed'

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_clears_busy_flag(self):
        class FailingProcessor:
            async def run_full_pipeline(self):
                raise RuntimeError("database locked")

        scheduler = PipelineScheduler(FailingProcessor())

        with pytest.raises(RuntimeError):
            await scheduler.run_scheduled()

        assert not scheduler.is_running
        assert scheduler.last_run_status == 'failed: database locked'
        assert scheduler.status()['last_run_time'] is not None


class TestRunLock:
    """Test the lock file shared between scheduler processes"""

    @pytest.mark.unit
    def test_second_holder_is_refused(self, temp_dir):
        first = RunLock(temp_dir / "scheduled_run.lock")
        second = RunLock(temp_dir / "scheduled_run.lock")

        assert first.acquire()
        assert not second.acquire()
        assert "PID:" in (temp_dir / "scheduled_run.lock").read_text()

        first.release()
        assert second.acquire()
        second.release()
        assert not second.held

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_schedulers_sharing_a_lock_do_not_overlap(self, temp_dir, caplog):
        lock_path = temp_dir / "scheduled_run.lock"
        processor = BlockingProcessor()
        busy = PipelineScheduler(processor, lock_path=lock_path)
        other = PipelineScheduler(processor, lock_path=lock_path)

        first = asyncio.create_task(busy.run_scheduled())
        await asyncio.sleep(0)

        with caplog.at_level(logging.WARNING, logger="podcast_digest.scheduler"):
            assert await other.run_scheduled() is None
        assert "another process" in caplog.text

        processor.release.set()
        await first
        assert processor.runs == 1
        assert not busy.lock.held

        # Lock is free again once the first run ends
        assert await other.run_scheduled() == (7, [])
        assert processor.runs == 2
