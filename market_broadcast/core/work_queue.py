"""
Work Queue with named, concurrency-limited lanes.

Each lane owns an asyncio queue and a fixed number of worker tasks. A lane
with concurrency 1 never runs two jobs at the same time, which is how the
broadcast pipeline guarantees that a new cycle does not start while the
previous one is still executing.

Jobs may be enqueued with a delay. A delayed job is held by a loop timer and
only becomes visible to the lane workers once the delay has elapsed.

Failed jobs are retried up to the lane's max_attempts and then moved to the
lane's dead letter list.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from loguru import logger


JobHandler = Callable[[Any], Awaitable[Any]]


class QueueLaneError(Exception):
    """Raised when a lane is unknown or registered twice."""
    pass


@dataclass
class QueuedJob:
    """
    One unit of work travelling through a lane.

    Attributes:
        lane (str): Lane the job runs on
        payload (Any): Handler argument (e.g. a BroadcastTarget)
        delay_seconds (float): Delay requested at enqueue time
        attempts (int): Number of times the handler has been invoked
        enqueued_at (datetime): When the job was enqueued
    """

    lane: str
    payload: Any
    delay_seconds: float = 0.0
    attempts: int = 0
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_error: Optional[str] = None


class Lane:
    """Runtime state of a single named lane."""

    def __init__(
        self,
        name: str,
        handler: JobHandler,
        concurrency: int,
        max_attempts: int,
        retry_delay: float
    ):
        self.name = name
        self.handler = handler
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

        self.queue: Optional[asyncio.Queue] = None
        self.workers: List[asyncio.Task] = []
        self.dead_letters: List[QueuedJob] = []

        self.pending = 0  # delayed + queued + running
        self.processed = 0
        self.failed = 0
        self.idle = asyncio.Event()
        self.idle.set()

    def track(self) -> None:
        self.pending += 1
        self.idle.clear()

    def release(self) -> None:
        self.pending -= 1
        if self.pending <= 0:
            self.pending = 0
            self.idle.set()

    def stats(self) -> Dict[str, int]:
        return {
            "pending": self.pending,
            "processed": self.processed,
            "failed": self.failed,
            "dead_letters": len(self.dead_letters),
        }


class WorkQueue:
    """
    In-process delayed job queue organised in concurrency-limited lanes.

    Examples:
        >>> queue = WorkQueue()
        >>> queue.register_lane("broadcasts", handle_broadcast, concurrency=1)
        >>> await queue.start()
        >>> queue.enqueue("broadcasts", target, delay=5.0)
        >>> await queue.stop()
    """

    def __init__(self):
        self._lanes: Dict[str, Lane] = {}
        self._timers: Set[asyncio.TimerHandle] = set()
        self._running = False

    def register_lane(
        self,
        name: str,
        handler: JobHandler,
        concurrency: int = 1,
        max_attempts: int = 1,
        retry_delay: float = 0.0
    ) -> None:
        """
        Register a lane and the coroutine function that handles its jobs.

        Args:
            name (str): Lane name (e.g. 'broadcasts')
            handler (Callable): Coroutine function called with each job payload
            concurrency (int): Number of jobs the lane may run at once
            max_attempts (int): Handler invocations before a job is dead-lettered
            retry_delay (float): Seconds to wait before retrying a failed job

        Raises:
            QueueLaneError: If the lane already exists
            ValueError: If concurrency or max_attempts are not positive
        """
        if name in self._lanes:
            raise QueueLaneError(f"Lane '{name}' is already registered")
        if concurrency < 1:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")

        lane = Lane(name, handler, concurrency, max_attempts, retry_delay)
        self._lanes[name] = lane

        if self._running:
            self._start_lane(lane)

        logger.debug(
            f"Registered lane '{name}' (concurrency={concurrency}, "
            f"max_attempts={max_attempts})"
        )

    def enqueue(self, lane: str, payload: Any, delay: float = 0.0) -> Optional[QueuedJob]:
        """
        Enqueue a job on a lane, optionally after a delay.

        Jobs enqueued after stop() are dropped, so a job that re-enqueues its
        own successor during shutdown ends the chain quietly.

        Args:
            lane (str): Target lane name
            payload (Any): Argument passed to the lane handler
            delay (float): Seconds before the job becomes runnable

        Returns:
            QueuedJob or None if the queue is not running

        Raises:
            QueueLaneError: If the lane is not registered
        """
        target = self._get_lane(lane)

        if not self._running:
            logger.debug(f"Work queue not running, dropping job for lane '{lane}'")
            return None

        job = QueuedJob(lane=lane, payload=payload, delay_seconds=max(0.0, delay))
        target.track()
        self._schedule(target, job, job.delay_seconds)
        return job

    def _schedule(self, lane: Lane, job: QueuedJob, delay: float) -> None:
        if delay <= 0:
            lane.queue.put_nowait(job)
            return

        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def release() -> None:
            self._timers.discard(handle)
            lane.queue.put_nowait(job)

        handle = loop.call_later(delay, release)
        self._timers.add(handle)

    async def start(self) -> None:
        """Create lane queues and start their worker tasks."""
        if self._running:
            return

        self._running = True
        for lane in self._lanes.values():
            self._start_lane(lane)

        logger.info(f"Work queue started with {len(self._lanes)} lane(s)")

    def _start_lane(self, lane: Lane) -> None:
        lane.queue = asyncio.Queue()
        lane.workers = [
            asyncio.create_task(self._work(lane), name=f"lane:{lane.name}:{slot}")
            for slot in range(lane.concurrency)
        ]

    async def _work(self, lane: Lane) -> None:
        """Worker loop: run one job at a time from the lane queue."""
        while True:
            job = await lane.queue.get()
            try:
                await self._execute(lane, job)
            finally:
                lane.queue.task_done()

    async def _execute(self, lane: Lane, job: QueuedJob) -> None:
        job.attempts += 1
        try:
            await lane.handler(job.payload)
            lane.processed += 1
            lane.release()
        except Exception as e:
            job.last_error = str(e)
            lane.failed += 1

            if job.attempts < lane.max_attempts and self._running:
                logger.warning(
                    f"Job on lane '{lane.name}' failed "
                    f"(attempt {job.attempts}/{lane.max_attempts}): {e}. "
                    f"Retrying in {lane.retry_delay}s"
                )
                self._schedule(lane, job, lane.retry_delay)
                return

            logger.bind(lane=lane.name, payload=repr(job.payload)).error(
                f"Job on lane '{lane.name}' failed after {job.attempts} attempt(s): {e}"
            )
            lane.dead_letters.append(job)
            lane.release()

    async def join(self, lane: str) -> None:
        """Wait until a lane has no delayed, queued or running jobs."""
        await self._get_lane(lane).idle.wait()

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Stop all lanes.

        Delayed and not-yet-started jobs are dropped. Jobs already running are
        given up to ``timeout`` seconds to finish before their workers are
        cancelled.
        """
        if not self._running:
            return

        self._running = False

        dropped = len(self._timers)
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()

        for lane in self._lanes.values():
            while not lane.queue.empty():
                lane.queue.get_nowait()
                lane.queue.task_done()
                dropped += 1

        for lane in self._lanes.values():
            try:
                await asyncio.wait_for(lane.queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Lane '{lane.name}' did not finish running jobs within {timeout}s"
                )

        for lane in self._lanes.values():
            for worker in lane.workers:
                worker.cancel()
            await asyncio.gather(*lane.workers, return_exceptions=True)
            lane.workers = []
            lane.pending = 0
            lane.idle.set()

        logger.info(f"Work queue stopped ({dropped} pending job(s) dropped)")

    def _get_lane(self, name: str) -> Lane:
        try:
            return self._lanes[name]
        except KeyError:
            raise QueueLaneError(f"Unknown lane '{name}'") from None

    def stats(self, lane: str) -> Dict[str, int]:
        """Processed, failed, pending and dead-lettered counts of a lane."""
        return self._get_lane(lane).stats()

    def dead_letters(self, lane: str) -> List[QueuedJob]:
        """Jobs that exhausted their attempts on a lane."""
        return list(self._get_lane(lane).dead_letters)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def lanes(self) -> List[str]:
        return list(self._lanes)
