"""Reaggregation orchestrator: citation repair, full re-aggregation, verification.

Two speeds:
  - reprocess_all(): reclassify citations in stored prompt tests and patch only
    the citation totals of stored aggregates. Cheap; safe to run often.
  - reaggregate(): recompute every scope for a user from completed prompt tests
    and replace the stored aggregates wholesale.

Every pass is idempotent. Per-item failures are collected into the summary;
only StorageUnavailableError aborts a pass.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from aivis.analysis.citation_classifier import (
    DEFAULT_RULES,
    ClassificationRules,
    citation_breakdown,
    reclassify_mention,
)
from aivis.analysis.metrics_aggregator import assign_rank, aggregate_all_scopes, compute_citation_share
from aivis.analysis.types import AggregatedMetric, CitationMetrics, Scope, TestRecord, TestStatus
from aivis.services.storage import MetricsStorage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class CitationCounts:
    brand: int = 0
    earned: int = 0
    social: int = 0

    def add(self, metrics: CitationMetrics) -> None:
        self.brand += metrics.brand_citations
        self.earned += metrics.earned_citations
        self.social += metrics.social_citations

    def to_dict(self) -> dict:
        return citation_breakdown(self.brand, self.earned, self.social)


@dataclass
class RecordOutcome:
    """Outcome of one unit of work (a prompt test or an aggregate document)."""

    record_id: int | None
    kind: str = "prompt_test"  # prompt_test | aggregated_metric
    changed: bool = False
    saved: bool = False
    citations_processed: int = 0
    citations_changed: int = 0
    mentions_changed: int = 0
    urls_cleaned: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ReprocessSummary:
    processed: int = 0
    updated: int = 0
    citations_processed: int = 0
    citations_changed: int = 0
    brand_mentions_changed: int = 0
    urls_cleaned: int = 0
    aggregates_updated: int = 0
    errors: int = 0
    failures: list[RecordOutcome] = field(default_factory=list)
    before: CitationCounts = field(default_factory=CitationCounts)
    after: CitationCounts = field(default_factory=CitationCounts)

    def record_failure(self, outcome: RecordOutcome) -> None:
        self.errors += 1
        self.failures.append(outcome)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "citations_processed": self.citations_processed,
            "citations_changed": self.citations_changed,
            "brand_mentions_changed": self.brand_mentions_changed,
            "urls_cleaned": self.urls_cleaned,
            "aggregates_updated": self.aggregates_updated,
            "errors": self.errors,
            "failures": [{"id": f.record_id, "kind": f.kind, "error": f.error} for f in self.failures],
            "before": self.before.to_dict(),
            "after": self.after.to_dict(),
        }


@dataclass
class Violation:
    scope: str
    scope_value: str
    brand_name: str
    check: str  # visibility_bound | appearances_bound | sentiment_closure | citation_sum
    detail: str


@dataclass
class VerificationReport:
    metrics_checked: int = 0
    brands_checked: int = 0
    violations: list[Violation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "metrics_checked": self.metrics_checked,
            "brands_checked": self.brands_checked,
            "violations": [v.__dict__ for v in self.violations],
        }


@dataclass
class ReaggregationResult:
    user_id: str
    records: int = 0
    total_prompts: int = 0
    platforms: int = 0
    topics: int = 0
    personas: int = 0
    replaced: int = 0  # previous aggregate documents removed
    metrics: list[AggregatedMetric] = field(default_factory=list)
    verification: VerificationReport = field(default_factory=VerificationReport)

    def to_dict(self) -> dict:
        overall = next((m for m in self.metrics if m.scope == Scope.OVERALL), None)
        return {
            "user_id": self.user_id,
            "records": self.records,
            "total_prompts": self.total_prompts,
            "platforms": self.platforms,
            "topics": self.topics,
            "personas": self.personas,
            "replaced": self.replaced,
            "saved": len(self.metrics),
            "overall": [b.to_dict() for b in overall.brand_metrics] if overall else [],
            "verification": self.verification.to_dict(),
        }


# ---------------------------------------------------------------------------
# Pure functions
# ---------------------------------------------------------------------------


def reprocess_record(
    record: TestRecord,
    rules: ClassificationRules = DEFAULT_RULES,
    fix_urls: bool = False,
) -> tuple[TestRecord, RecordOutcome, CitationCounts, CitationCounts]:
    """Reclassify every citation of a record.

    Returns (corrected record, outcome, stored type counts, new type counts).
    """
    outcome = RecordOutcome(record_id=record.id)
    before = CitationCounts()
    after = CitationCounts()
    mentions = []

    for mention in record.brand_mentions:
        result = reclassify_mention(mention, rules, fix_urls=fix_urls)
        mentions.append(result.mention)
        before.add(result.before or CitationMetrics())
        after.add(result.mention.citation_metrics)

        outcome.citations_processed += len(mention.citations)
        outcome.citations_changed += result.types_changed
        outcome.urls_cleaned += result.urls_cleaned
        if result.changed:
            outcome.mentions_changed += 1
            if result.metrics_changed:
                logger.debug(
                    "%s citations on test %s: %s -> %s",
                    mention.brand_name,
                    record.id,
                    mention.citation_metrics.to_dict(),
                    result.mention.citation_metrics.to_dict(),
                )

    outcome.changed = outcome.mentions_changed > 0
    corrected = replace(record, brand_mentions=mentions)
    return corrected, outcome, before, after


def patch_citation_totals(metric: AggregatedMetric, records: list[TestRecord]) -> bool:
    """Re-sum each brand aggregate's citation totals from (corrected) records.

    Only citation fields change; visibility, position and sentiment are left as
    stored. Returns True if anything changed.
    """
    before = [b.to_dict() for b in metric.brand_metrics]

    for brand in metric.brand_metrics:
        totals = CitationCounts()
        for record in records:
            for mention in record.brand_mentions:
                if mention.brand_name == brand.brand_name and mention.mentioned:
                    totals.add(mention.citation_metrics)
        brand.brand_citations_total = totals.brand
        brand.earned_citations_total = totals.earned
        brand.social_citations_total = totals.social
        brand.total_citations = totals.brand + totals.earned + totals.social

    compute_citation_share(metric.brand_metrics)
    assign_rank(metric.brand_metrics, lambda b: b.citation_share, "citation_share_rank")

    return [b.to_dict() for b in metric.brand_metrics] != before


def verify_metric(metric: AggregatedMetric) -> list[Violation]:
    """Check the bounds and closure invariants of one aggregate."""
    violations: list[Violation] = []
    scope = metric.scope.value

    for b in metric.brand_metrics:
        if not 0 <= b.visibility_score <= 100:
            violations.append(
                Violation(scope, metric.scope_value, b.brand_name, "visibility_bound", f"visibility={b.visibility_score}")
            )
        if b.total_appearances > metric.total_prompts:
            violations.append(
                Violation(
                    scope,
                    metric.scope_value,
                    b.brand_name,
                    "appearances_bound",
                    f"appearances={b.total_appearances} > prompts={metric.total_prompts}",
                )
            )
        sentiment_total = sum(b.sentiment_breakdown.values())
        if sentiment_total != b.total_mentions:
            violations.append(
                Violation(
                    scope,
                    metric.scope_value,
                    b.brand_name,
                    "sentiment_closure",
                    f"breakdown={sentiment_total} != mentions={b.total_mentions}",
                )
            )
        citation_sum = b.brand_citations_total + b.earned_citations_total + b.social_citations_total
        if citation_sum != b.total_citations:
            violations.append(
                Violation(
                    scope,
                    metric.scope_value,
                    b.brand_name,
                    "citation_sum",
                    f"brand+earned+social={citation_sum} != total={b.total_citations}",
                )
            )

    return violations


def _as_utc(value: datetime) -> datetime:
    """Naive timestamps are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _within_window(record: TestRecord, window_start: datetime | None, window_end: datetime | None) -> bool:
    if record.tested_at is None:
        return window_start is None and window_end is None
    tested = _as_utc(record.tested_at)
    if window_start is not None and tested < _as_utc(window_start):
        return False
    if window_end is not None and tested > _as_utc(window_end):
        return False
    return True


# ---------------------------------------------------------------------------
# Storage-bound passes
# ---------------------------------------------------------------------------


async def resolve_user_id(storage: MetricsStorage, user_id: str | None) -> str | None:
    """Use the given user id, or fall back to the owner of the first stored prompt test."""
    if user_id:
        return user_id
    first = await storage.prompt_tests.find_one()
    if first is None:
        return None
    logger.info("Auto-detected user id: %s", first.user_id)
    return first.user_id


async def _patch_aggregates(
    storage: MetricsStorage,
    records: list[TestRecord],
    user_id: str | None,
    summary: ReprocessSummary,
) -> None:
    by_id = {r.id: r for r in records if r.id is not None}
    metrics = await storage.aggregated_metrics.find_all(user_id=user_id)

    for metric in metrics:
        if metric.prompt_test_ids:
            scoped = [by_id[i] for i in metric.prompt_test_ids if i in by_id]
        else:
            scoped = [r for r in records if r.user_id == metric.user_id]

        if not patch_citation_totals(metric, scoped):
            continue

        outcome = RecordOutcome(record_id=metric.id, kind="aggregated_metric", changed=True)
        try:
            await storage.aggregated_metrics.save(metric)
            outcome.saved = True
            summary.aggregates_updated += 1
        except SQLAlchemyError as exc:
            outcome.error = str(exc)
            logger.error("Failed to save aggregate %s (%s=%s): %s", metric.id, metric.scope.value, metric.scope_value, exc)
            summary.record_failure(outcome)


async def reprocess_all(
    storage: MetricsStorage,
    *,
    user_id: str | None = None,
    rules: ClassificationRules = DEFAULT_RULES,
    fix_urls: bool = False,
) -> ReprocessSummary:
    """Reclassify every stored citation, then patch aggregate citation totals."""
    summary = ReprocessSummary()
    records = await storage.prompt_tests.find_all(user_id=user_id)
    logger.info("Reprocessing citations of %d prompt tests", len(records))

    current: list[TestRecord] = []
    for record in records:
        corrected, outcome, before, after = reprocess_record(record, rules, fix_urls)
        summary.processed += 1
        summary.citations_processed += outcome.citations_processed
        summary.before.brand += before.brand
        summary.before.earned += before.earned
        summary.before.social += before.social

        if not outcome.changed:
            current.append(record)
            summary.after.brand += after.brand
            summary.after.earned += after.earned
            summary.after.social += after.social
            continue

        try:
            await storage.prompt_tests.save(corrected)
        except SQLAlchemyError as exc:
            outcome.error = str(exc)
            logger.error("Failed to save prompt test %s: %s", record.id, exc)
            summary.record_failure(outcome)
            # Stored state is unchanged
            current.append(record)
            summary.after.brand += before.brand
            summary.after.earned += before.earned
            summary.after.social += before.social
            continue

        outcome.saved = True
        current.append(corrected)
        summary.updated += 1
        summary.citations_changed += outcome.citations_changed
        summary.brand_mentions_changed += outcome.mentions_changed
        summary.urls_cleaned += outcome.urls_cleaned
        summary.after.brand += after.brand
        summary.after.earned += after.earned
        summary.after.social += after.social

    await _patch_aggregates(storage, current, user_id, summary)
    await storage.commit()

    logger.info(
        "Reprocess complete: processed=%d updated=%d citations_changed=%d aggregates_updated=%d errors=%d",
        summary.processed,
        summary.updated,
        summary.citations_changed,
        summary.aggregates_updated,
        summary.errors,
    )
    return summary


async def reaggregate(
    storage: MetricsStorage,
    *,
    user_id: str,
    tracked_brands: tuple[str, ...] = (),
    rules: ClassificationRules = DEFAULT_RULES,
    window_start: datetime | None = None,
    window_end: datetime | None = None,
) -> ReaggregationResult:
    """Full recompute of every scope for a user; replaces stored aggregates wholesale."""
    records = await storage.prompt_tests.find_all(user_id=user_id, status=TestStatus.COMPLETED)
    records = [r for r in records if _within_window(r, window_start, window_end)]

    if not records:
        logger.warning("No completed prompt tests for user %s; storing an empty aggregate", user_id)
    else:
        logger.info(
            "Re-aggregating %d tests (%d unique prompts) for user %s",
            len(records),
            len({r.prompt_id for r in records}),
            user_id,
        )

    metrics = aggregate_all_scopes(
        records,
        window_start,
        window_end,
        user_id=user_id,
        tracked_brands=tracked_brands,
        rules=rules,
    )

    result = ReaggregationResult(
        user_id=user_id,
        records=len(records),
        total_prompts=metrics[0].total_prompts,
        platforms=sum(1 for m in metrics if m.scope == Scope.PLATFORM),
        topics=sum(1 for m in metrics if m.scope == Scope.TOPIC),
        personas=sum(1 for m in metrics if m.scope == Scope.PERSONA),
    )

    # Scopes that no longer have tests must not survive the run
    result.replaced = await storage.aggregated_metrics.delete_many(user_id=user_id)
    for metric in metrics:
        await storage.aggregated_metrics.replace(metric)
    await storage.commit()

    result.metrics = metrics
    result.verification = _verify(metrics)
    for v in result.verification.violations:
        logger.warning("Invariant violated in %s=%s for %s: %s", v.scope, v.scope_value, v.brand_name, v.detail)
    return result


def _verify(metrics: list[AggregatedMetric]) -> VerificationReport:
    report = VerificationReport()
    for metric in metrics:
        report.metrics_checked += 1
        report.brands_checked += len(metric.brand_metrics)
        report.violations.extend(verify_metric(metric))
    return report


async def verify_aggregates(storage: MetricsStorage, *, user_id: str | None = None) -> VerificationReport:
    """Check the stored aggregates of a user (or all users) against their invariants."""
    metrics = await storage.aggregated_metrics.find_all(user_id=user_id)
    report = _verify(metrics)
    logger.info(
        "Verified %d aggregates / %d brand rows: %d violations",
        report.metrics_checked,
        report.brands_checked,
        len(report.violations),
    )
    return report
