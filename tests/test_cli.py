"""Tests for the aivis command-line entry point."""

from unittest.mock import AsyncMock, patch

import pytest

from typer.testing import CliRunner

from aivis.analysis.types import AggregatedMetric, BrandAggregate
from aivis.cli import _run_reaggregate, _run_reprocess, _run_verify, app
from aivis.core.exceptions import StorageUnavailableError
from aivis.services.reaggregation_service import (
    CitationCounts,
    ReaggregationResult,
    ReprocessSummary,
    VerificationReport,
    Violation,
)

runner = CliRunner()


def _summary() -> ReprocessSummary:
    return ReprocessSummary(
        processed=3,
        updated=2,
        citations_processed=4,
        citations_changed=3,
        before=CitationCounts(0, 4, 0),
        after=CitationCounts(2, 1, 1),
    )


def _violation() -> Violation:
    return Violation("overall", "all", "X", "visibility_bound", "visibility=150.0")


class TestClassifyCommand:
    def test_brand(self):
        result = runner.invoke(app, ["classify", "https://www.netflix.com/in", "Netflix"])
        assert result.exit_code == 0
        assert "brand" in result.output

    def test_trailing_punctuation(self):
        result = runner.invoke(app, ["classify", "https://www.hdfcbank.com/personal/cards).", "HDFC Bank Freedom"])
        assert result.exit_code == 0
        assert "brand" in result.output

    def test_json(self):
        result = runner.invoke(app, ["classify", "https://twitter.com/netflix", "Netflix", "--json"])
        assert result.exit_code == 0
        assert '"type": "social"' in result.output


class TestReprocessCommand:
    def test_success(self):
        with patch("aivis.cli._run_reprocess", AsyncMock(return_value=_summary())) as run:
            result = runner.invoke(app, ["reprocess-citations", "u1"])
        assert result.exit_code == 0
        run.assert_awaited_once_with("u1", False)
        assert "Prompt tests updated" in result.output

    def test_all_users_with_fix_urls(self):
        with patch("aivis.cli._run_reprocess", AsyncMock(return_value=_summary())) as run:
            result = runner.invoke(app, ["reprocess-citations", "--fix-urls"])
        assert result.exit_code == 0
        run.assert_awaited_once_with(None, True)

    def test_json_output(self):
        with patch("aivis.cli._run_reprocess", AsyncMock(return_value=_summary())):
            result = runner.invoke(app, ["reprocess-citations", "--json"])
        assert result.exit_code == 0
        assert '"updated": 2' in result.output

    def test_storage_unavailable_exits_1(self):
        with patch("aivis.cli._run_reprocess", AsyncMock(side_effect=StorageUnavailableError("refused"))):
            result = runner.invoke(app, ["reprocess-citations"])
        assert result.exit_code == 1
        assert "Storage unavailable" in result.output


class TestReaggregateCommand:
    def test_success(self):
        metric = AggregatedMetric(user_id="u1", total_prompts=2, brand_metrics=[BrandAggregate(brand_name="X")])
        outcome = ReaggregationResult(user_id="u1", records=6, total_prompts=2, metrics=[metric])
        with patch("aivis.cli._run_reaggregate", AsyncMock(return_value=outcome)) as run:
            result = runner.invoke(app, ["reaggregate", "u1", "--brands", "X, Y"])
        assert result.exit_code == 0
        run.assert_awaited_once_with("u1", ("X", "Y"))
        assert "User u1" in result.output

    def test_no_data(self):
        with patch("aivis.cli._run_reaggregate", AsyncMock(return_value=None)):
            result = runner.invoke(app, ["reaggregate"])
        assert result.exit_code == 0
        assert "No prompt tests found" in result.output

    def test_violations_exit_2(self):
        outcome = ReaggregationResult(
            user_id="u1",
            metrics=[AggregatedMetric(user_id="u1")],
            verification=VerificationReport(metrics_checked=1, brands_checked=1, violations=[_violation()]),
        )
        with patch("aivis.cli._run_reaggregate", AsyncMock(return_value=outcome)):
            result = runner.invoke(app, ["reaggregate", "u1"])
        assert result.exit_code == 2

    def test_storage_unavailable_exits_1(self):
        with patch("aivis.cli._run_reaggregate", AsyncMock(side_effect=StorageUnavailableError("refused"))):
            result = runner.invoke(app, ["reaggregate", "u1"])
        assert result.exit_code == 1


class TestVerifyCommand:
    def test_ok(self):
        report = VerificationReport(metrics_checked=5, brands_checked=10)
        with patch("aivis.cli._run_verify", AsyncMock(return_value=report)):
            result = runner.invoke(app, ["verify"])
        assert result.exit_code == 0
        assert "All invariants hold" in result.output

    def test_violations_exit_2(self):
        report = VerificationReport(metrics_checked=1, brands_checked=1, violations=[_violation()])
        with patch("aivis.cli._run_verify", AsyncMock(return_value=report)):
            result = runner.invoke(app, ["verify", "u1", "--json"])
        assert result.exit_code == 2
        assert '"visibility_bound"' in result.output


class TestRunnersDisposeEngine:
    @pytest.mark.asyncio
    async def test_reprocess(self, session_factory):
        engine = AsyncMock()
        with patch("aivis.cli.make_session_factory", return_value=(session_factory, engine)):
            summary = await _run_reprocess(None, False)
        assert summary.processed == 0
        engine.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reaggregate_without_data(self, session_factory):
        engine = AsyncMock()
        with patch("aivis.cli.make_session_factory", return_value=(session_factory, engine)):
            assert await _run_reaggregate(None, ()) is None
        engine.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_verify_failure_still_disposes(self, session_factory):
        engine = AsyncMock()
        with (
            patch("aivis.cli.make_session_factory", return_value=(session_factory, engine)),
            patch("aivis.cli.verify_aggregates", AsyncMock(side_effect=StorageUnavailableError("refused"))),
        ):
            with pytest.raises(StorageUnavailableError):
                await _run_verify(None)
        engine.dispose.assert_awaited_once()


class TestServeCommand:
    def test_runs_api_app(self):
        with patch("aivis.cli.uvicorn.run") as run:
            result = runner.invoke(app, ["serve", "--port", "9000"])
        assert result.exit_code == 0
        args, kwargs = run.call_args
        assert args == ("aivis.main:app",)
        assert kwargs["port"] == 9000
        assert kwargs["reload"] is False
