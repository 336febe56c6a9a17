"""Metrics Aggregator.

Pure-function computation of per-brand visibility metrics for one scope:

  - Visibility Score   = distinct prompts where the brand appears / distinct prompts × 100
  - Share of Voice     = brand mentions / mentions of all brands × 100
  - Depth of Mention   = brand mentions / responses × 100
  - Average Position   = mean first-mention position (lower is better)
  - Citation Share     = brand citations / citations of all brands × 100
  - Sentiment          = mean score + breakdown of mentions by label

No DB dependency; persistence is the orchestrator's job.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from aivis.analysis.citation_classifier import DEFAULT_RULES, ClassificationRules, reclassify_mention
from aivis.analysis.types import (
    AggregatedMetric,
    BrandAggregate,
    Scope,
    Sentiment,
    TestRecord,
)

logger = logging.getLogger(__name__)

UNKNOWN_SCOPE_VALUE = "Unknown"
OVERALL_SCOPE_VALUE = "all"


# ---------------------------------------------------------------------------
# Per-brand accumulator
# ---------------------------------------------------------------------------


@dataclass
class _BrandAccumulator:
    brand_name: str
    prompt_ids: set[str] = field(default_factory=set)
    total_mentions: int = 0
    positions: list[int] = field(default_factory=list)
    sentiment_scores: list[float] = field(default_factory=list)
    sentiment_counts: dict[str, int] = field(default_factory=lambda: {s.value: 0 for s in Sentiment})
    brand_citations: int = 0
    earned_citations: int = 0
    social_citations: int = 0
    count_1st: int = 0
    count_2nd: int = 0
    count_3rd: int = 0


def brand_slug(brand_name: str) -> str:
    return re.sub(r"\s+", "-", brand_name.strip().lower())


def _mean(values: Sequence[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def _pct(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100.0, 2)


# ---------------------------------------------------------------------------
# Pure functions: accumulation
# ---------------------------------------------------------------------------


def _accumulate(
    records: Sequence[TestRecord],
    tracked_brands: Iterable[str],
    rules: ClassificationRules,
) -> list[_BrandAccumulator]:
    """Collect raw per-brand counts. Brand order: tracked brands, then first appearance."""
    accumulators: dict[str, _BrandAccumulator] = {}
    for name in tracked_brands:
        if name and name not in accumulators:
            accumulators[name] = _BrandAccumulator(brand_name=name)

    for record in records:
        for mention in record.brand_mentions:
            if not mention.brand_name:
                continue
            acc = accumulators.setdefault(mention.brand_name, _BrandAccumulator(brand_name=mention.brand_name))
            if not mention.mentioned:
                continue

            # Same prompt on several platforms is one appearance
            if record.prompt_id:
                acc.prompt_ids.add(record.prompt_id)
            acc.total_mentions += mention.mention_count

            if mention.first_position is not None:
                acc.positions.append(mention.first_position)
            acc.sentiment_scores.append(mention.sentiment_score)
            acc.sentiment_counts[mention.sentiment.value] += mention.mention_count

            if mention.rank_position == 1:
                acc.count_1st += 1
            elif mention.rank_position == 2:
                acc.count_2nd += 1
            elif mention.rank_position == 3:
                acc.count_3rd += 1

            # Stored citation_metrics are never trusted
            metrics = reclassify_mention(mention, rules).mention.citation_metrics
            acc.brand_citations += metrics.brand_citations
            acc.earned_citations += metrics.earned_citations
            acc.social_citations += metrics.social_citations

    return list(accumulators.values())


def _to_brand_aggregate(acc: _BrandAccumulator, total_prompts: int, total_responses: int) -> BrandAggregate:
    appearances = len(acc.prompt_ids)
    breakdown = dict(acc.sentiment_counts)
    total_labelled = sum(breakdown.values())

    return BrandAggregate(
        brand_id=brand_slug(acc.brand_name),
        brand_name=acc.brand_name,
        visibility_score=_pct(appearances, total_prompts),
        total_appearances=appearances,
        total_mentions=acc.total_mentions,
        avg_position=_mean(acc.positions),
        depth_of_mention=_pct(acc.total_mentions, total_responses),
        brand_citations_total=acc.brand_citations,
        earned_citations_total=acc.earned_citations,
        social_citations_total=acc.social_citations,
        total_citations=acc.brand_citations + acc.earned_citations + acc.social_citations,
        sentiment_score=_mean(acc.sentiment_scores),
        sentiment_breakdown=breakdown,
        sentiment_share=_pct(breakdown[Sentiment.POSITIVE.value], total_labelled),
        count_1st=acc.count_1st,
        count_2nd=acc.count_2nd,
        count_3rd=acc.count_3rd,
    )


# ---------------------------------------------------------------------------
# Pure functions: shares & ranks
# ---------------------------------------------------------------------------


def compute_share_of_voice(brands: list[BrandAggregate]) -> None:
    total = sum(b.total_mentions for b in brands)
    for b in brands:
        b.share_of_voice = _pct(b.total_mentions, total)


def compute_citation_share(brands: list[BrandAggregate]) -> None:
    total = sum(b.total_citations for b in brands)
    for b in brands:
        b.citation_share = _pct(b.total_citations, total)


def assign_rank(
    brands: list[BrandAggregate],
    key: Callable[[BrandAggregate], float],
    rank_attr: str,
    higher_is_better: bool = True,
) -> None:
    """Assign 1-based ranks by ``key``. Ties keep input order (stable sort)."""
    ordered = sorted(brands, key=key, reverse=higher_is_better)
    for index, brand in enumerate(ordered, start=1):
        setattr(brand, rank_attr, index)


def _position_sort_key(brand: BrandAggregate) -> tuple[int, float]:
    # Never-positioned brands (avg 0) rank after every positioned brand
    return (1, 0.0) if brand.avg_position <= 0 else (0, brand.avg_position)


def assign_ranks(brands: list[BrandAggregate]) -> None:
    """Compute shares and ranks for every metric across the brands of one scope."""
    compute_share_of_voice(brands)
    compute_citation_share(brands)

    assign_rank(brands, lambda b: b.visibility_score, "visibility_rank")
    assign_rank(brands, lambda b: b.total_mentions, "mention_rank")
    assign_rank(brands, lambda b: b.share_of_voice, "share_of_voice_rank")
    assign_rank(brands, lambda b: b.depth_of_mention, "depth_rank")
    assign_rank(brands, lambda b: b.citation_share, "citation_share_rank")
    assign_rank(brands, _position_sort_key, "avg_position_rank", higher_is_better=False)
    assign_rank(brands, lambda b: b.count_1st, "rank_1st")
    assign_rank(brands, lambda b: b.count_2nd, "rank_2nd")
    assign_rank(brands, lambda b: b.count_3rd, "rank_3rd")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def compute_brand_metrics(
    records: Sequence[TestRecord],
    tracked_brands: Iterable[str] = (),
    rules: ClassificationRules = DEFAULT_RULES,
) -> list[BrandAggregate]:
    """Ranked BrandAggregate list for a set of records."""
    total_prompts = len({r.prompt_id for r in records if r.prompt_id})
    total_responses = len(records)

    brands = [
        _to_brand_aggregate(acc, total_prompts, total_responses)
        for acc in _accumulate(records, tracked_brands, rules)
    ]
    assign_ranks(brands)
    return brands


def aggregate(
    records: Sequence[TestRecord],
    scope: Scope | str = Scope.OVERALL,
    scope_value: str = OVERALL_SCOPE_VALUE,
    window_start: datetime | None = None,
    window_end: datetime | None = None,
    *,
    user_id: str = "",
    tracked_brands: Iterable[str] = (),
    rules: ClassificationRules = DEFAULT_RULES,
) -> AggregatedMetric:
    """Aggregate a set of test records into one AggregatedMetric.

    An empty record set yields a zeroed metric: "no data" is a valid state.
    """
    scope = Scope(scope)
    brand_metrics = compute_brand_metrics(records, tracked_brands, rules)

    tested = [r.tested_at for r in records if r.tested_at is not None]
    date_from = window_start or (min(tested) if tested else None)
    date_to = window_end or (max(tested) if tested else None)

    metric = AggregatedMetric(
        user_id=user_id,
        scope=scope,
        scope_value=scope_value,
        date_from=date_from,
        date_to=date_to,
        total_prompts=len({r.prompt_id for r in records if r.prompt_id}),
        total_responses=len(records),
        total_brands=len(brand_metrics),
        brand_metrics=brand_metrics,
        prompt_test_ids=[r.id for r in records if r.id is not None],
        last_calculated=datetime.now(timezone.utc),
    )

    logger.debug(
        "Aggregated %s=%s: prompts=%d, responses=%d, brands=%d",
        scope.value,
        scope_value,
        metric.total_prompts,
        metric.total_responses,
        metric.total_brands,
    )
    return metric


def group_records(records: Sequence[TestRecord], scope: Scope) -> dict[str, list[TestRecord]]:
    """Split records by platform, topic or persona, keeping first-seen group order."""
    groups: dict[str, list[TestRecord]] = defaultdict(list)
    for r in records:
        if scope == Scope.PLATFORM:
            key = r.llm_provider or UNKNOWN_SCOPE_VALUE
        elif scope == Scope.TOPIC:
            key = r.topic or UNKNOWN_SCOPE_VALUE
        elif scope == Scope.PERSONA:
            key = r.persona or UNKNOWN_SCOPE_VALUE
        else:
            key = OVERALL_SCOPE_VALUE
        groups[key].append(r)
    return dict(groups)


def aggregate_all_scopes(
    records: Sequence[TestRecord],
    window_start: datetime | None = None,
    window_end: datetime | None = None,
    *,
    user_id: str = "",
    tracked_brands: Iterable[str] = (),
    rules: ClassificationRules = DEFAULT_RULES,
) -> list[AggregatedMetric]:
    """Overall metric followed by one metric per platform, topic and persona."""
    tracked = tuple(tracked_brands)
    metrics = [
        aggregate(
            records,
            Scope.OVERALL,
            OVERALL_SCOPE_VALUE,
            window_start,
            window_end,
            user_id=user_id,
            tracked_brands=tracked,
            rules=rules,
        )
    ]

    for scope in (Scope.PLATFORM, Scope.TOPIC, Scope.PERSONA):
        for scope_value, group in group_records(records, scope).items():
            metrics.append(
                aggregate(
                    group,
                    scope,
                    scope_value,
                    window_start,
                    window_end,
                    user_id=user_id,
                    tracked_brands=tracked,
                    rules=rules,
                )
            )

    return metrics
