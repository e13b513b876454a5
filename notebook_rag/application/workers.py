"""
Background Worker Pool
======================
요청 처리 경로와 분리된 asyncio 기반 백그라운드 작업 풀

문서 수집, 메모리 추출, 대화 압축 확인 같은 느린 외부 호출을 실행합니다.

- 크기 제한 큐: 가득 차면 submit이 False를 반환하고 작업을 버림 (호출자를 막지 않음)
- 워커는 작업 실패를 로그로 남기고 다음 작업을 계속 처리
- 최근 작업 상태는 조회용으로 일정 개수만 보관

Usage:
    pool = BackgroundWorkerPool("memory", workers=2, queue_size=100)
    pool.start()

    pool.submit("extract_memories", memory_service.extract_and_save, session_id, msg, answer)

    await pool.join()   # 큐 비우기 (테스트)
    await pool.stop()
"""

import asyncio
import logging
import traceback
import uuid
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# 상태 조회용으로 보관하는 최근 작업 수
JOB_HISTORY_SIZE = 200


class JobStatus(str, Enum):
    """작업 상태"""

    PENDING = "pending"  # 대기 중
    RUNNING = "running"  # 실행 중
    COMPLETED = "completed"  # 완료
    FAILED = "failed"  # 실패


@dataclass
class Job:
    name: str
    func: Callable[..., Awaitable[Any]] = field(repr=False)
    args: tuple = field(default=(), repr=False)
    kwargs: dict = field(default_factory=dict, repr=False)
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    status: JobStatus = JobStatus.PENDING
    error_message: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class BackgroundWorkerPool:
    """고정 크기 워커 + 크기 제한 큐"""

    def __init__(self, name: str = "background", workers: int = 2, queue_size: int = 100):
        """
        Args:
            name: 로그/통계용 풀 이름
            workers: 동시 실행 워커 수
            queue_size: 대기 큐 최대 크기
        """
        self.name = name
        self.workers = workers
        self.queue_size = queue_size

        self._queue: asyncio.Queue[Job] | None = None
        self._tasks: list[asyncio.Task] = []
        self._jobs: OrderedDict[str, Job] = OrderedDict()
        self._submitted = 0
        self._completed = 0
        self._failed = 0
        self._rejected = 0

    @property
    def queue(self) -> asyncio.Queue[Job]:
        # 이벤트 루프 안에서 처음 사용할 때 생성
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.queue_size)
        return self._queue

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """워커 시작 (실행 중인 이벤트 루프 필요)"""
        if self.running:
            logger.warning(f"Worker pool '{self.name}' already running")
            return

        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"{self.name}-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"Worker pool '{self.name}' started with {self.workers} workers")

    def submit(self, name: str, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> bool:
        """
        작업 제출 (논블로킹)

        Returns:
            큐가 가득 차서 거부되면 False
        """
        job = Job(name=name, func=func, args=args, kwargs=kwargs)
        try:
            self.queue.put_nowait(job)
        except asyncio.QueueFull:
            self._rejected += 1
            logger.warning(f"Worker pool '{self.name}' queue full, dropping job: {name}")
            return False

        self._submitted += 1
        self._remember(job)
        logger.debug(f"Submitted job {job.id} ({name}) to '{self.name}'")
        return True

    def _remember(self, job: Job) -> None:
        self._jobs[job.id] = job
        while len(self._jobs) > JOB_HISTORY_SIZE:
            self._jobs.popitem(last=False)

    async def _worker_loop(self, worker_id: int) -> None:
        queue = self.queue
        while True:
            job = await queue.get()
            try:
                await self._run(job)
            finally:
                queue.task_done()

    async def _run(self, job: Job) -> None:
        job.status = JobStatus.RUNNING
        job.started_at = datetime.now()
        try:
            await job.func(*job.args, **job.kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error_message = f"{type(e).__name__}: {e}"
            self._failed += 1
            logger.error(
                f"Job failed: {job.id} ({job.name}) - {job.error_message}\n{traceback.format_exc()}"
            )
        else:
            job.status = JobStatus.COMPLETED
            self._completed += 1
            logger.debug(f"Job completed: {job.id} ({job.name})")
        finally:
            job.completed_at = datetime.now()

    async def join(self) -> None:
        """대기 중인 모든 작업이 끝날 때까지 대기"""
        await self.queue.join()

    async def stop(self) -> None:
        """워커 중지 (대기 중인 작업은 버려짐)"""
        if not self._tasks:
            return
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(f"Worker pool '{self.name}' stopped")

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def get_stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "workers": self.workers,
            "running": self.running,
            "queued": self._queue.qsize() if self._queue is not None else 0,
            "queue_size": self.queue_size,
            "submitted": self._submitted,
            "completed": self._completed,
            "failed": self._failed,
            "rejected": self._rejected,
        }
