"""
BackgroundWorkerPool 단위 테스트
"""

import asyncio

import pytest

from notebook_rag.application.workers import BackgroundWorkerPool, JobStatus


class TestBackgroundWorkerPool:
    @pytest.mark.asyncio
    async def test_runs_submitted_jobs(self):
        pool = BackgroundWorkerPool("test", workers=2)
        results = []

        async def work(value, scale=1):
            results.append(value * scale)

        pool.start()
        try:
            assert pool.submit("double", work, 2, scale=2) is True
            assert pool.submit("triple", work, 3, scale=3) is True
            await pool.join()
        finally:
            await pool.stop()

        assert sorted(results) == [4, 9]
        stats = pool.get_stats()
        assert stats["submitted"] == 2
        assert stats["completed"] == 2
        assert stats["failed"] == 0

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_worker(self):
        pool = BackgroundWorkerPool("test", workers=1)
        done = []

        async def fail():
            raise ValueError("boom")

        async def succeed():
            done.append(True)

        pool.start()
        try:
            pool.submit("fail", fail)
            pool.submit("succeed", succeed)
            await pool.join()
        finally:
            await pool.stop()

        assert done == [True]
        assert pool.get_stats()["failed"] == 1
        failed = [job for job in pool._jobs.values() if job.name == "fail"][0]
        assert failed.status == JobStatus.FAILED
        assert failed.error_message == "ValueError: boom"

    @pytest.mark.asyncio
    async def test_full_queue_rejects(self):
        """큐가 가득 차면 호출자를 막지 않고 False 반환"""
        pool = BackgroundWorkerPool("test", workers=1, queue_size=1)

        async def noop():
            return None

        assert pool.submit("first", noop) is True
        assert pool.submit("second", noop) is False
        assert pool.get_stats()["rejected"] == 1
        assert pool.get_stats()["queued"] == 1

    @pytest.mark.asyncio
    async def test_job_lookup(self):
        pool = BackgroundWorkerPool("test", workers=1)

        async def noop():
            return None

        pool.start()
        try:
            pool.submit("noop", noop)
            await pool.join()
        finally:
            await pool.stop()

        job = next(iter(pool._jobs.values()))
        assert pool.get_job(job.id) is job
        assert job.status == JobStatus.COMPLETED
        assert job.to_dict()["status"] == "completed"
        assert job.to_dict()["completed_at"] is not None
        assert pool.get_job("missing") is None

    @pytest.mark.asyncio
    async def test_stop_cancels_workers(self):
        pool = BackgroundWorkerPool("test", workers=2)
        pool.start()
        assert pool.running is True

        await pool.stop()

        assert pool.running is False
        await pool.stop()

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self):
        pool = BackgroundWorkerPool("test", workers=1)
        pool.start()
        tasks = list(pool._tasks)
        pool.start()
        try:
            assert pool._tasks == tasks
        finally:
            await pool.stop()

    @pytest.mark.asyncio
    async def test_long_job_runs_off_caller_path(self):
        pool = BackgroundWorkerPool("test", workers=1)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow():
            started.set()
            await release.wait()

        pool.start()
        try:
            pool.submit("slow", slow)
            await asyncio.wait_for(started.wait(), timeout=1.0)
            job = next(iter(pool._jobs.values()))
            assert job.status == JobStatus.RUNNING
            release.set()
            await pool.join()
        finally:
            await pool.stop()
