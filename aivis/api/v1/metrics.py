"""Aggregated metrics API: read aggregates, trigger re-aggregation and citation repair."""

import logging

from fastapi import APIRouter, Depends, Query

from aivis.analysis.citation_classifier import ClassificationRules
from aivis.analysis.types import AggregatedMetric, Scope
from aivis.core.dependencies import get_rules, get_storage
from aivis.core.exceptions import NotFoundError
from aivis.schemas.metrics import (
    AggregatedMetricList,
    AggregatedMetricResponse,
    ReaggregateRequest,
    ReaggregateResponse,
    ReprocessResponse,
    VerificationResponse,
)
from aivis.services.reaggregation_service import reaggregate, reprocess_all, verify_aggregates
from aivis.services.storage import MetricsStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/metrics", tags=["metrics"])


def _to_response(metric: AggregatedMetric) -> AggregatedMetricResponse:
    return AggregatedMetricResponse(
        id=metric.id,
        user_id=metric.user_id,
        scope=metric.scope.value,
        scope_value=metric.scope_value,
        date_from=metric.date_from,
        date_to=metric.date_to,
        total_prompts=metric.total_prompts,
        total_responses=metric.total_responses,
        total_brands=metric.total_brands,
        brand_metrics=[b.to_dict() for b in metric.brand_metrics],
        prompt_test_ids=metric.prompt_test_ids,
        last_calculated=metric.last_calculated,
    )


@router.get("", response_model=AggregatedMetricList)
async def list_metrics(
    user_id: str = Query(..., min_length=1, max_length=64),
    scope: Scope | None = Query(None),
    storage: MetricsStorage = Depends(get_storage),
):
    """All stored aggregates of a user, optionally limited to one scope."""
    metrics = await storage.aggregated_metrics.find_all(user_id=user_id, scope=scope)
    return AggregatedMetricList(user_id=user_id, metrics=[_to_response(m) for m in metrics])


@router.get("/verify", response_model=VerificationResponse)
async def verify_metrics(
    user_id: str | None = Query(None, max_length=64),
    storage: MetricsStorage = Depends(get_storage),
):
    report = await verify_aggregates(storage, user_id=user_id)
    return report.to_dict()


@router.get("/{scope}/{scope_value}", response_model=AggregatedMetricResponse)
async def get_metric(
    scope: Scope,
    scope_value: str,
    user_id: str = Query(..., min_length=1, max_length=64),
    storage: MetricsStorage = Depends(get_storage),
):
    metric = await storage.aggregated_metrics.find_one(user_id=user_id, scope=scope, scope_value=scope_value)
    if metric is None:
        raise NotFoundError(f"No {scope.value} aggregate '{scope_value}' for user {user_id}")
    return _to_response(metric)


@router.post("/reaggregate", response_model=ReaggregateResponse)
async def reaggregate_metrics(
    body: ReaggregateRequest,
    storage: MetricsStorage = Depends(get_storage),
    rules: ClassificationRules = Depends(get_rules),
):
    """Recompute every scope for a user and replace the stored aggregates."""
    result = await reaggregate(
        storage,
        user_id=body.user_id,
        tracked_brands=tuple(body.tracked_brands),
        rules=rules,
        window_start=body.date_from,
        window_end=body.date_to,
    )
    logger.info("Re-aggregated %d scopes for user %s via API", len(result.metrics), body.user_id)
    return result.to_dict()


@router.post("/citations/reprocess", response_model=ReprocessResponse)
async def reprocess_citations(
    user_id: str | None = Query(None, max_length=64),
    fix_urls: bool = Query(False),
    storage: MetricsStorage = Depends(get_storage),
    rules: ClassificationRules = Depends(get_rules),
):
    """Reclassify stored citations and patch aggregate citation totals."""
    summary = await reprocess_all(storage, user_id=user_id, rules=rules, fix_urls=fix_urls)
    return summary.to_dict()
