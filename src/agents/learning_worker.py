# Understood/src/agents/learning_worker.py
# @ai-rules:
# 1. [Pattern]: Bounded asyncio.Queue + fixed worker pool. enqueue() NEVER blocks the reply path.
# 2. [Gotcha]: A full queue drops the job with a warning (backpressure). The next feedback re-triggers learning.
# 3. [Gotcha]: Duplicate channel ids already queued are coalesced; one run reads all pending evidence anyway.
# 4. [Constraint]: Worker loops catch and log every job failure. A failed run never kills the worker.
"""Background worker pool that runs the Learning Agent off the hot path."""
from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .learning import LearningAgent

logger = logging.getLogger(__name__)

LEARNING_QUEUE_SIZE = int(os.getenv("LEARNING_QUEUE_SIZE", "100"))
LEARNING_WORKERS = int(os.getenv("LEARNING_WORKERS", "2"))


class LearningWorker:
    """Fire-and-forget learning runs with bounded backlog."""

    def __init__(
        self,
        agent: "LearningAgent",
        queue_size: int = LEARNING_QUEUE_SIZE,
        workers: int = LEARNING_WORKERS,
    ):
        self.agent = agent
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._pending: set[str] = set()
        self._workers = workers
        self._tasks: list[asyncio.Task] = []
        self.dropped = 0
        self.failed = 0
        self.completed = 0

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def enqueue(self, channel_id: str) -> bool:
        """Queue a learning run for a channel. Returns False if it was dropped or coalesced."""
        if channel_id in self._pending:
            logger.debug(f"Learning already queued for {channel_id}")
            return False
        try:
            self._queue.put_nowait(channel_id)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Learning queue full ({self._queue.maxsize}), dropping run for {channel_id}")
            return False
        self._pending.add(channel_id)
        return True

    async def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"learning-worker-{i}")
            for i in range(self._workers)
        ]
        logger.info(f"Learning worker started ({self._workers} workers, queue={self._queue.maxsize})")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Learning worker stopped")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait until every queued run has finished (tests, graceful shutdown)."""
        await asyncio.wait_for(self._queue.join(), timeout=timeout)

    async def _worker_loop(self, worker_id: int) -> None:
        while True:
            channel_id = await self._queue.get()
            self._pending.discard(channel_id)
            try:
                await self.agent.run(channel_id)
                self.completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error(f"Learning run failed for {channel_id} (worker {worker_id}): {e}", exc_info=True)
            finally:
                self._queue.task_done()
