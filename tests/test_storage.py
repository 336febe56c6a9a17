"""Tests for the document-style storage layer."""

from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from aivis.analysis.types import AggregatedMetric, BrandAggregate, BrandMention, Citation, Scope, TestRecord, TestStatus
from aivis.core.exceptions import StorageUnavailableError
from aivis.models.aggregated_metric import AggregatedMetricRow
from aivis.models.prompt_test import PromptTest
from aivis.services.storage import MetricsStorage, record_from_row


def _record(prompt_id: str = "p1", user_id: str = "u1", status: TestStatus = TestStatus.COMPLETED) -> TestRecord:
    return TestRecord(
        user_id=user_id,
        prompt_id=prompt_id,
        llm_provider="openai",
        topic="cards",
        status=status,
        tested_at=datetime(2026, 3, 1),
        brand_mentions=[
            BrandMention(brand_name="X", mentioned=True, mention_count=1, citations=[Citation(url="https://x.com")])
        ],
    )


def _metric(user_id: str = "u1", scope: Scope = Scope.OVERALL, scope_value: str = "all", prompts: int = 1):
    return AggregatedMetric(
        user_id=user_id,
        scope=scope,
        scope_value=scope_value,
        total_prompts=prompts,
        total_responses=prompts,
        total_brands=1,
        brand_metrics=[BrandAggregate(brand_name="X", visibility_score=100.0)],
        prompt_test_ids=[1],
    )


class TestPromptTestRepository:
    @pytest.mark.asyncio
    async def test_save_assigns_id_and_round_trips(self, storage: MetricsStorage):
        saved = await storage.prompt_tests.save(_record())
        await storage.commit()
        assert saved.id is not None

        loaded = await storage.prompt_tests.find_one(id=saved.id)
        assert loaded.prompt_id == "p1"
        assert loaded.status == TestStatus.COMPLETED
        assert loaded.brand_mentions[0].citations[0].url == "https://x.com"

    @pytest.mark.asyncio
    async def test_save_updates_existing(self, storage: MetricsStorage):
        saved = await storage.prompt_tests.save(_record())
        saved.brand_mentions[0].mention_count = 4
        await storage.prompt_tests.save(saved)
        await storage.commit()

        all_rows = await storage.prompt_tests.find_all()
        assert len(all_rows) == 1
        assert all_rows[0].brand_mentions[0].mention_count == 4

    @pytest.mark.asyncio
    async def test_filters(self, storage: MetricsStorage):
        await storage.prompt_tests.save(_record("p1", "u1"))
        await storage.prompt_tests.save(_record("p2", "u1", TestStatus.FAILED))
        await storage.prompt_tests.save(_record("p3", "u2"))
        await storage.commit()

        assert len(await storage.prompt_tests.find_all(user_id="u1")) == 2
        assert len(await storage.prompt_tests.find_all(user_id="u1", status=TestStatus.COMPLETED)) == 1
        assert len(await storage.prompt_tests.find_all(prompt_id=["p1", "p3"])) == 2
        # None filters are ignored
        assert len(await storage.prompt_tests.find_all(user_id=None)) == 3

    @pytest.mark.asyncio
    async def test_find_one_missing(self, storage: MetricsStorage):
        assert await storage.prompt_tests.find_one(user_id="nobody") is None

    @pytest.mark.asyncio
    async def test_update_and_delete_many(self, storage: MetricsStorage):
        await storage.prompt_tests.save(_record("p1"))
        await storage.prompt_tests.save(_record("p2"))
        await storage.commit()

        assert await storage.prompt_tests.update_many({"status": "failed"}, prompt_id="p1") == 1
        assert await storage.prompt_tests.delete_many(prompt_id="p2") == 1
        await storage.commit()

        storage.session.expire_all()
        remaining = await storage.prompt_tests.find_all()
        assert [r.status for r in remaining] == [TestStatus.FAILED]


class TestMalformedRows:
    @pytest.mark.asyncio
    async def test_missing_brand_metrics_defaults(self, storage: MetricsStorage):
        storage.session.add(PromptTest(user_id="u1", prompt_id="p1", llm_provider="gemini", brand_metrics=None))
        await storage.commit()
        record = await storage.prompt_tests.find_one()
        assert record.brand_mentions == []

    def test_partial_brand_document(self):
        row = PromptTest(
            id=7,
            user_id="u1",
            prompt_id="p1",
            llm_provider="claude",
            status="completed",
            brand_metrics=[{"brand_name": "X", "mentioned": True, "citations": [{"url": "https://x.com"}]}],
        )
        record = record_from_row(row)
        mention = record.brand_mentions[0]
        assert mention.mention_count == 1
        assert mention.citation_metrics.total_citations == 0
        assert mention.citations[0].type is None

    @pytest.mark.asyncio
    async def test_unreadable_row_skipped(self, storage: MetricsStorage):
        await storage.aggregated_metrics.replace(_metric())
        storage.session.add(AggregatedMetricRow(user_id="u1", scope="weekly", scope_value="w1", brand_metrics=[7]))
        await storage.commit()

        rows = await storage.aggregated_metrics.find_all(user_id="u1")
        assert [(m.scope, m.scope_value) for m in rows] == [(Scope.OVERALL, "all")]

    @pytest.mark.asyncio
    async def test_brand_metrics_object_defaults(self, storage: MetricsStorage):
        storage.session.add(PromptTest(user_id="u1", prompt_id="p1", llm_provider="gemini", brand_metrics={"X": 1}))
        await storage.commit()
        records = await storage.prompt_tests.find_all()
        assert len(records) == 1
        assert records[0].brand_mentions == []


class TestAggregatedMetricRepository:
    @pytest.mark.asyncio
    async def test_replace_is_an_upsert(self, storage: MetricsStorage):
        await storage.aggregated_metrics.replace(_metric(prompts=1))
        await storage.aggregated_metrics.replace(_metric(prompts=5))
        await storage.commit()

        rows = await storage.aggregated_metrics.find_all(user_id="u1")
        assert len(rows) == 1
        assert rows[0].total_prompts == 5
        assert rows[0].brand("X").visibility_score == 100.0

    @pytest.mark.asyncio
    async def test_scope_filter(self, storage: MetricsStorage):
        await storage.aggregated_metrics.replace(_metric())
        await storage.aggregated_metrics.replace(_metric(scope=Scope.PLATFORM, scope_value="openai"))
        await storage.commit()

        platform = await storage.aggregated_metrics.find_all(user_id="u1", scope=Scope.PLATFORM)
        assert [m.scope_value for m in platform] == ["openai"]
        one = await storage.aggregated_metrics.find_one(user_id="u1", scope="overall", scope_value="all")
        assert one.scope == Scope.OVERALL

    @pytest.mark.asyncio
    async def test_save_in_place(self, storage: MetricsStorage):
        metric = await storage.aggregated_metrics.replace(_metric())
        metric.brand_metrics[0].total_citations = 9
        await storage.aggregated_metrics.save(metric)
        await storage.commit()

        loaded = await storage.aggregated_metrics.find_one(id=metric.id)
        assert loaded.brand("X").total_citations == 9

    @pytest.mark.asyncio
    async def test_delete_many_by_user(self, storage: MetricsStorage):
        await storage.aggregated_metrics.replace(_metric(user_id="u1"))
        await storage.aggregated_metrics.replace(_metric(user_id="u2"))
        assert await storage.aggregated_metrics.delete_many(user_id="u1") == 1
        await storage.commit()
        assert [m.user_id for m in await storage.aggregated_metrics.find_all()] == ["u2"]


class TestConnectivity:
    @pytest.mark.asyncio
    async def test_operational_error_translated(self, storage: MetricsStorage):
        failing = AsyncMock(side_effect=OperationalError("SELECT 1", {}, ConnectionRefusedError("refused")))
        with patch.object(storage.session, "execute", failing):
            with pytest.raises(StorageUnavailableError):
                await storage.prompt_tests.find_all()

    @pytest.mark.asyncio
    async def test_os_error_translated(self, storage: MetricsStorage):
        with patch.object(storage.session, "execute", AsyncMock(side_effect=ConnectionRefusedError("refused"))):
            with pytest.raises(StorageUnavailableError):
                await storage.aggregated_metrics.find_one(user_id="u1")
