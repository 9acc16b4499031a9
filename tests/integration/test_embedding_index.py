"""Integration tests for the persistent vector index and the embedding worker."""

from __future__ import annotations

import numpy as np
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from headless_pm.database.models.embedding import EntityKind
from headless_pm.database.queries.comment import add_comment
from headless_pm.database.queries.project import create_project
from headless_pm.database.queries.task import create_task, delete_task
from headless_pm.intelligence.embedding_worker import EmbeddingWorker
from headless_pm.intelligence.embeddings import EmbeddingService
from headless_pm.intelligence.index import EmbeddingIndex, bytes_to_vector, vector_to_bytes


@pytest.fixture
def index(session_factory: async_sessionmaker[AsyncSession]) -> EmbeddingIndex:
    return EmbeddingIndex(session_factory)


def test_vector_bytes_are_float32() -> None:
    blob = vector_to_bytes([1.0, -0.5, 0.25])
    assert len(blob) == 12
    np.testing.assert_array_equal(bytes_to_vector(blob), np.array([1.0, -0.5, 0.25], dtype="<f4"))


class TestEmbeddingIndex:
    """Upsert, removal and cosine ranking."""

    @pytest.mark.asyncio
    async def test_upsert_replaces(self, index: EmbeddingIndex) -> None:
        await index.index_entity(EntityKind.task, 1, [1.0, 0.0], model="m")
        await index.index_entity(EntityKind.task, 1, [0.0, 1.0], model="m")
        np.testing.assert_allclose(await index.get_vector(EntityKind.task, 1), [0.0, 1.0])

    @pytest.mark.asyncio
    async def test_remove(self, index: EmbeddingIndex) -> None:
        await index.index_entity(EntityKind.task, 1, [1.0, 0.0], model="m")
        assert await index.remove(EntityKind.task, 1) is True
        assert await index.remove(EntityKind.task, 1) is False
        assert await index.get_vector(EntityKind.task, 1) is None

    @pytest.mark.asyncio
    async def test_search_ranking(self, index: EmbeddingIndex) -> None:
        await index.index_entity(EntityKind.task, 1, [1.0, 0.0, 0.0], model="m", project_id=1)
        await index.index_entity(EntityKind.task, 2, [0.6, 0.8, 0.0], model="m", project_id=1)
        await index.index_entity(EntityKind.task, 3, [-1.0, 0.0, 0.0], model="m", project_id=2)
        await index.index_entity(EntityKind.task, 4, [1.0, 0.0, 0.0], model="m", project_id=2)
        await index.index_entity(EntityKind.project, 1, [1.0, 0.0, 0.0], model="m")

        hits = await index.search(EntityKind.task, [2.0, 0.0, 0.0], limit=10)
        assert [h.entity_id for h in hits] == [1, 4, 2, 3]
        assert hits[0].score == pytest.approx(1.0)
        assert hits[2].score == pytest.approx(0.6)
        assert hits[3].score == pytest.approx(-1.0)
        assert all(h.kind == EntityKind.task for h in hits)

        scoped = await index.search(EntityKind.task, [1.0, 0.0, 0.0], project_id=2)
        assert [h.entity_id for h in scoped] == [4, 3]

        assert len(await index.search(EntityKind.task, [1.0, 0.0, 0.0], limit=2)) == 2

    @pytest.mark.asyncio
    async def test_dimension_mismatch_skipped(self, index: EmbeddingIndex) -> None:
        await index.index_entity(EntityKind.task, 1, [1.0, 0.0], model="old")
        await index.index_entity(EntityKind.task, 2, [1.0, 0.0, 0.0], model="new")
        hits = await index.search(EntityKind.task, [1.0, 0.0, 0.0])
        assert [h.entity_id for h in hits] == [2]

    @pytest.mark.asyncio
    async def test_zero_vector_scores_zero(self, index: EmbeddingIndex) -> None:
        await index.index_entity(EntityKind.task, 1, [0.0, 0.0], model="m")
        [hit] = await index.search(EntityKind.task, [1.0, 0.0])
        assert hit.score == 0.0

    @pytest.mark.asyncio
    async def test_empty(self, index: EmbeddingIndex) -> None:
        assert await index.search(EntityKind.project, [1.0, 0.0]) == []


class TestWorkerEndToEnd:
    """The real worker writing through to SQLite."""

    @pytest.mark.asyncio
    async def test_task_is_indexed(
        self,
        db_session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        embedding_service: EmbeddingService,
        index: EmbeddingIndex,
    ) -> None:
        project = await create_project(db_session, name="Apollo")
        task = await create_task(db_session, project.id, "Fix login", description="OAuth flow")
        await add_comment(db_session, task.id, "Happens on Safari")

        worker = EmbeddingWorker(
            embedding_service, index, session_factory, debounce_seconds=0, retry_delays=(0,)
        )
        worker.start()
        worker.queue_job(EntityKind.task, task.id)
        worker.queue_job("project", project.id)
        await worker.shutdown(timeout=5)

        assert worker.processed == 2
        expected = await embedding_service.generate("Fix login\nOAuth flow\nHappens on Safari")
        np.testing.assert_allclose(await index.get_vector(EntityKind.task, task.id), expected, atol=1e-6)

        [hit] = await index.search(EntityKind.project, await embedding_service.generate("Apollo\nFix login"))
        assert hit.entity_id == project.id
        assert hit.score == pytest.approx(1.0, abs=1e-5)

    @pytest.mark.asyncio
    async def test_deleted_task_is_removed(
        self,
        db_session: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        embedding_service: EmbeddingService,
        index: EmbeddingIndex,
    ) -> None:
        project = await create_project(db_session, name="Apollo")
        task_id = (await create_task(db_session, project.id, "Short lived")).id
        await index.index_entity(EntityKind.task, task_id, [1.0, 0.0], model="m")
        await delete_task(db_session, task_id)
        # Deleting the task already purges its row; re-seed to exercise the worker path
        await index.index_entity(EntityKind.task, task_id, [1.0, 0.0], model="m")

        worker = EmbeddingWorker(embedding_service, index, session_factory, debounce_seconds=0)
        worker.start()
        worker.queue_job(EntityKind.task, task_id)
        await worker.shutdown(timeout=5)

        assert worker.removed == 1
        assert await index.get_vector(EntityKind.task, task_id) is None
