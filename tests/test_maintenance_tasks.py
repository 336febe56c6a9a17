"""Tests for Celery maintenance tasks."""

from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from aivis.analysis.types import BrandMention, Citation, CitationType, TestRecord
from aivis.core.exceptions import StorageUnavailableError
from aivis.services.storage import MetricsStorage
from aivis.tasks.celery_app import celery_app
from aivis.tasks.maintenance_tasks import (
    _reaggregate_async,
    _reprocess_citations_async,
    reaggregate_metrics_task,
    reprocess_citations_task,
)


async def _seed(db: AsyncSession) -> None:
    storage = MetricsStorage(db)
    await storage.prompt_tests.save(
        TestRecord(
            user_id="u1",
            prompt_id="p1",
            llm_provider="openai",
            tested_at=datetime(2026, 3, 1),
            brand_mentions=[
                BrandMention(
                    brand_name="Netflix",
                    mentioned=True,
                    mention_count=1,
                    citations=[Citation(url="https://netflix.com", type=CitationType.EARNED)],
                )
            ],
        )
    )
    await storage.commit()


class TestBeatSchedule:
    def test_daily_reprocess_scheduled(self):
        entry = celery_app.conf.beat_schedule["reprocess-citations-daily"]
        assert entry["task"] == "reprocess_citations"


class TestAsyncHelpers:
    @pytest.mark.asyncio
    async def test_reprocess(self, db: AsyncSession, session_factory):
        await _seed(db)
        engine = AsyncMock()
        with patch("aivis.db.postgres.make_session_factory", return_value=(session_factory, engine)):
            data = await _reprocess_citations_async()
        engine.dispose.assert_awaited_once()
        assert data["processed"] == 1
        assert data["updated"] == 1
        assert data["after"]["brand"]["count"] == 1

    @pytest.mark.asyncio
    async def test_reaggregate(self, db: AsyncSession, session_factory):
        await _seed(db)
        engine = AsyncMock()
        with patch("aivis.db.postgres.make_session_factory", return_value=(session_factory, engine)):
            data = await _reaggregate_async("u1", ["Netflix"])
        engine.dispose.assert_awaited_once()
        assert data["records"] == 1
        assert data["saved"] == 4
        assert "overall" not in data

    @pytest.mark.asyncio
    async def test_engine_disposed_when_storage_unavailable(self, session_factory):
        engine = AsyncMock()
        with (
            patch("aivis.db.postgres.make_session_factory", return_value=(session_factory, engine)),
            patch(
                "aivis.services.reaggregation_service.reprocess_all",
                AsyncMock(side_effect=StorageUnavailableError("refused")),
            ),
        ):
            with pytest.raises(StorageUnavailableError):
                await _reprocess_citations_async()
        engine.dispose.assert_awaited_once()


class TestTasks:
    def test_reprocess_ok(self):
        with patch(
            "aivis.tasks.maintenance_tasks._reprocess_citations_async",
            AsyncMock(return_value={"processed": 2, "updated": 1}),
        ):
            result = reprocess_citations_task()
        assert result == {"status": "ok", "processed": 2, "updated": 1}

    def test_reprocess_storage_unavailable(self):
        with patch(
            "aivis.tasks.maintenance_tasks._reprocess_citations_async",
            AsyncMock(side_effect=StorageUnavailableError("refused")),
        ):
            result = reprocess_citations_task()
        assert result["status"] == "error"
        assert "refused" in result["error"]

    def test_reaggregate_ok(self):
        with patch(
            "aivis.tasks.maintenance_tasks._reaggregate_async",
            AsyncMock(return_value={"user_id": "u1", "saved": 4}),
        ) as run:
            result = reaggregate_metrics_task("u1")
        run.assert_awaited_once_with("u1", None)
        assert result["status"] == "ok"
        assert result["saved"] == 4

    def test_reaggregate_storage_unavailable(self):
        with patch(
            "aivis.tasks.maintenance_tasks._reaggregate_async",
            AsyncMock(side_effect=StorageUnavailableError("refused")),
        ):
            result = reaggregate_metrics_task("u1")
        assert result["status"] == "error"
