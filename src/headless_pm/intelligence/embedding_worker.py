"""Background embedding worker for Headless PM.

Keeps the vector index eventually consistent with entity writes. Request
handlers call ``queue_job(kind, entity_id)`` after a successful commit;
a single consumer task takes jobs in arrival order, renders the entity
text, calls the provider and writes the vector into the index.

Queue semantics:
- The queue is a bounded FIFO; when full, the oldest job is dropped and
  counted.
- A job waits out a debounce window before it runs. Jobs for the same
  (kind, id) queued meanwhile coalesce into it.
- Provider failures are retried with backoff (0.25 s, 1 s, 4 s); after
  the last retry the job is dropped and logged.
- A job for an entity that no longer exists removes its index entry.

Worker failures are logged and counted; they never reach the request
that queued the job.

Example usage:
    >>> worker = EmbeddingWorker(service, index, session_factory)
    >>> worker.start()
    >>> worker.queue_job(EntityKind.task, 42)
    True
    >>> await worker.shutdown(timeout=5.0)
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from headless_pm.database.models.embedding import EntityKind
from headless_pm.errors import HeadlessPMError, ProviderUnavailableError
from headless_pm.intelligence.embeddings import EmbeddingService
from headless_pm.intelligence.index import EmbeddingIndex

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

DEFAULT_RETRY_DELAYS = (0.25, 1.0, 4.0)


@dataclass
class EmbeddingJob:
    """A request to recompute the vector of one entity.

    Attributes:
        kind: Entity kind.
        entity_id: Entity id.
        queued_at: Monotonic time the job entered the queue.
    """

    kind: EntityKind
    entity_id: int
    queued_at: float

    @property
    def key(self) -> tuple[EntityKind, int]:
        return (self.kind, self.entity_id)


class EmbeddingWorker:
    """Single-consumer embedding job queue.

    Attributes:
        embedding_service: Service producing normalised vectors
        index: Vector index written by the worker
        session_factory: Callable producing sessions for reading entities
        capacity: Maximum queued jobs
        debounce_seconds: Coalescing window per job
        retry_delays: Backoff before each retry of a failed provider call
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        index: EmbeddingIndex,
        session_factory: SessionFactory,
        capacity: int = 1024,
        debounce_seconds: float = 0.25,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
    ) -> None:
        self.embedding_service = embedding_service
        self.index = index
        self.session_factory = session_factory
        self.capacity = capacity
        self.debounce_seconds = debounce_seconds
        self.retry_delays = tuple(retry_delays)

        self._queue: deque[EmbeddingJob] = deque(maxlen=capacity)
        self._pending: set[tuple[EntityKind, int]] = set()
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._closing = False

        self.processed = 0
        self.failed = 0
        self.dropped = 0
        self.coalesced = 0
        self.removed = 0

        logger.info(
            "embedding_worker_initialized",
            capacity=capacity,
            debounce_seconds=debounce_seconds,
        )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the consumer task on the running event loop."""
        if self.is_running:
            return
        self._closing = False
        self._wakeup = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="embedding-worker")
        logger.info("embedding_worker_started")

    def queue_job(self, kind: EntityKind | str, entity_id: int) -> bool:
        """Queue a (re)computation for one entity without blocking.

        Args:
            kind: Entity kind.
            entity_id: Entity id.

        Returns:
            False if the worker is shutting down and the job was refused.
        """
        kind = EntityKind(kind)
        if self._closing:
            logger.warning("embedding_job_refused", entity_type=kind.value, entity_id=entity_id)
            return False

        key = (kind, entity_id)
        if key in self._pending:
            self.coalesced += 1
            return True

        if len(self._queue) == self.capacity:
            oldest = self._queue.popleft()
            self._pending.discard(oldest.key)
            self.dropped += 1
            logger.warning(
                "embedding_job_dropped",
                entity_type=oldest.kind.value,
                entity_id=oldest.entity_id,
                reason="queue_full",
            )

        self._queue.append(EmbeddingJob(kind, entity_id, time.monotonic()))
        self._pending.add(key)
        self._wakeup.set()
        return True

    def stats(self) -> dict[str, int | bool]:
        """Counters describing the worker's activity."""
        return {
            "running": self.is_running,
            "queued": len(self._queue),
            "processed": self.processed,
            "failed": self.failed,
            "dropped": self.dropped,
            "coalesced": self.coalesced,
            "removed": self.removed,
        }

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Stop accepting jobs and drain the queue.

        Queued jobs run without waiting out their debounce window. Jobs
        still queued when ``timeout`` expires are dropped.
        """
        self._closing = True
        self._wakeup.set()
        if self._task is None:
            return

        logger.info("embedding_worker_stop_requested", queued=len(self._queue))
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            abandoned = len(self._queue)
            self.dropped += abandoned
            self._queue.clear()
            self._pending.clear()
            logger.warning("embedding_worker_drain_timeout", abandoned=abandoned, timeout=timeout)
        finally:
            self._task = None
            logger.info("embedding_worker_stopped", **self.stats())

    async def _run(self) -> None:
        while True:
            if not self._queue:
                if self._closing:
                    return
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            job = self._queue[0]
            if not self._closing:
                delay = job.queued_at + self.debounce_seconds - time.monotonic()
                if delay > 0:
                    # Re-check the head afterwards: an overflow may have dropped it
                    await asyncio.sleep(delay)
                    continue

            self._queue.popleft()
            self._pending.discard(job.key)
            try:
                await self.process_job(job)
            except Exception as e:
                self.failed += 1
                logger.error(
                    "embedding_worker_cycle_error",
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def process_job(self, job: EmbeddingJob) -> None:
        """Recompute and store the vector for one job.

        Never raises; failures are logged and counted.
        """
        log = logger.bind(entity_type=job.kind.value, entity_id=job.entity_id)
        try:
            async with self.session_factory() as session:
                document = await self.embedding_service.build_document(session, job.kind, job.entity_id)

            if document is None:
                if await self.index.remove(job.kind, job.entity_id):
                    self.removed += 1
                log.debug("embedding_job_entity_missing")
                return

            vector = await self._embed_with_retry(document.text, log)
            if vector is None:
                self.failed += 1
                return

            await self.index.index_entity(
                job.kind,
                job.entity_id,
                vector,
                model=self.embedding_service.model_name,
                project_id=document.project_id,
                content_hash=document.content_hash,
            )
            self.processed += 1
            log.debug("embedding_job_completed", dimension=len(vector))
        except (HeadlessPMError, SQLAlchemyError, OSError) as e:
            self.failed += 1
            log.error("embedding_job_failed", error=str(e), error_type=type(e).__name__)

    async def _embed_with_retry(self, text: str, log: Any) -> np.ndarray | None:
        delays = iter(self.retry_delays)
        attempt = 1
        while True:
            try:
                return await self.embedding_service.generate(text)
            except ProviderUnavailableError as e:
                delay = next(delays, None)
                if delay is None:
                    log.error("embedding_job_dropped", reason="provider_unavailable", attempts=attempt, error=str(e))
                    return None
                log.warning("embedding_provider_retry", attempt=attempt, backoff_seconds=delay, error=str(e))
                attempt += 1
                await asyncio.sleep(delay)
