"""Unit tests for the background embedding worker.

The embedding service and index are mocked; sessions come from a no-op
async context manager because the mocked service never touches them.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from headless_pm.database.models.embedding import EntityKind
from headless_pm.errors import ProviderUnavailableError, StorageError
from headless_pm.intelligence.embedding_worker import EmbeddingJob, EmbeddingWorker
from headless_pm.intelligence.embeddings import EmbeddingDocument

VECTOR = np.array([0.6, 0.8], dtype=np.float32)


@asynccontextmanager
async def fake_session() -> AsyncIterator[MagicMock]:
    yield MagicMock()


@pytest.fixture
def service() -> MagicMock:
    mock = MagicMock()
    mock.model_name = "local-hash"
    mock.build_document = AsyncMock(
        side_effect=lambda session, kind, entity_id: EmbeddingDocument(
            kind, entity_id, 1, f"{kind.value} {entity_id}"
        )
    )
    mock.generate = AsyncMock(return_value=VECTOR)
    return mock


@pytest.fixture
def index() -> AsyncMock:
    mock = AsyncMock()
    mock.remove.return_value = True
    return mock


def make_worker(service: MagicMock, index: AsyncMock, **kwargs) -> EmbeddingWorker:
    kwargs.setdefault("debounce_seconds", 0.0)
    kwargs.setdefault("retry_delays", (0.0, 0.0, 0.0))
    return EmbeddingWorker(service, index, fake_session, **kwargs)


class TestQueueing:
    """Queue bookkeeping without a running consumer."""

    def test_coalesces_pending_jobs(self, service: MagicMock, index: AsyncMock) -> None:
        worker = make_worker(service, index)
        for _ in range(5):
            assert worker.queue_job(EntityKind.task, 1) is True
        stats = worker.stats()
        assert stats["queued"] == 1
        assert stats["coalesced"] == 4

    def test_accepts_kind_as_string(self, service: MagicMock, index: AsyncMock) -> None:
        worker = make_worker(service, index)
        worker.queue_job("project", 3)
        worker.queue_job(EntityKind.project, 3)
        assert worker.stats()["queued"] == 1

    def test_overflow_drops_oldest(self, service: MagicMock, index: AsyncMock) -> None:
        worker = make_worker(service, index, capacity=2)
        worker.queue_job(EntityKind.task, 1)
        worker.queue_job(EntityKind.task, 2)
        worker.queue_job(EntityKind.task, 3)

        assert worker.dropped == 1
        assert [job.entity_id for job in worker._queue] == [2, 3]
        # The dropped job no longer coalesces, so it can be queued again
        worker.queue_job(EntityKind.task, 1)
        assert [job.entity_id for job in worker._queue] == [3, 1]
        assert worker.dropped == 2

    @pytest.mark.asyncio
    async def test_refuses_jobs_after_shutdown(self, service: MagicMock, index: AsyncMock) -> None:
        worker = make_worker(service, index)
        await worker.shutdown(timeout=1.0)
        assert worker.queue_job(EntityKind.task, 1) is False


class TestProcessJob:
    """Handling of a single job."""

    @pytest.mark.asyncio
    async def test_indexes_vector(self, service: MagicMock, index: AsyncMock) -> None:
        worker = make_worker(service, index)
        await worker.process_job(EmbeddingJob(EntityKind.task, 7, 0.0))

        index.index_entity.assert_awaited_once()
        args, kwargs = index.index_entity.call_args
        assert args[:2] == (EntityKind.task, 7)
        assert kwargs["model"] == "local-hash"
        assert kwargs["project_id"] == 1
        assert worker.processed == 1

    @pytest.mark.asyncio
    async def test_missing_entity_removes_index_entry(
        self, service: MagicMock, index: AsyncMock
    ) -> None:
        service.build_document.side_effect = None
        service.build_document.return_value = None
        worker = make_worker(service, index)

        await worker.process_job(EmbeddingJob(EntityKind.task, 7, 0.0))

        index.remove.assert_awaited_once_with(EntityKind.task, 7)
        service.generate.assert_not_awaited()
        assert worker.removed == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, service: MagicMock, index: AsyncMock) -> None:
        service.generate.side_effect = [
            ProviderUnavailableError("down"),
            ProviderUnavailableError("down"),
            VECTOR,
        ]
        worker = make_worker(service, index)

        await worker.process_job(EmbeddingJob(EntityKind.task, 7, 0.0))

        assert service.generate.await_count == 3
        assert worker.processed == 1
        assert worker.failed == 0

    @pytest.mark.asyncio
    async def test_drops_after_last_retry(self, service: MagicMock, index: AsyncMock) -> None:
        service.generate.side_effect = ProviderUnavailableError("down")
        worker = make_worker(service, index)

        await worker.process_job(EmbeddingJob(EntityKind.task, 7, 0.0))

        # Initial attempt plus one per retry delay
        assert service.generate.await_count == 4
        index.index_entity.assert_not_awaited()
        assert worker.failed == 1

    @pytest.mark.asyncio
    async def test_storage_failure_counted(self, service: MagicMock, index: AsyncMock) -> None:
        index.index_entity.side_effect = StorageError("disk full")
        worker = make_worker(service, index)

        await worker.process_job(EmbeddingJob(EntityKind.task, 7, 0.0))

        assert worker.failed == 1
        assert worker.processed == 0


class TestLifecycle:
    """Start, drain and stop."""

    @pytest.mark.asyncio
    async def test_shutdown_drains_queue(self, service: MagicMock, index: AsyncMock) -> None:
        worker = make_worker(service, index, debounce_seconds=30.0)
        worker.start()
        assert worker.is_running is True
        for entity_id in (1, 2, 3):
            worker.queue_job(EntityKind.task, entity_id)
        worker.queue_job(EntityKind.task, 1)

        # The 30 s debounce is skipped while draining
        await worker.shutdown(timeout=5.0)

        assert worker.is_running is False
        assert worker.processed == 3
        assert worker.coalesced == 1
        processed_ids = [call.args[1] for call in index.index_entity.call_args_list]
        assert processed_ids == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, service: MagicMock, index: AsyncMock) -> None:
        worker = make_worker(service, index)
        worker.start()
        task = worker._task
        worker.start()
        assert worker._task is task
        await worker.shutdown(timeout=1.0)

    @pytest.mark.asyncio
    async def test_stats_shape(self, service: MagicMock, index: AsyncMock) -> None:
        worker = make_worker(service, index)
        assert set(worker.stats()) == {
            "running",
            "queued",
            "processed",
            "failed",
            "dropped",
            "coalesced",
            "removed",
        }
