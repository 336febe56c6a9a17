"""Core types and DTOs for citation classification and metrics aggregation.

Stored documents are converted into these types by the ``from_dict``
constructors, which default and normalize missing or malformed fields so
the aggregation code can rely on complete records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class CitationType(str, Enum):
    """Origin of a cited URL relative to the brand that owns the mention."""

    BRAND = "brand"  # The brand's own domain
    SOCIAL = "social"  # Social platform
    EARNED = "earned"  # Independent third-party source


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    MIXED = "mixed"


class Scope(str, Enum):
    """Aggregation granularity."""

    OVERALL = "overall"
    PLATFORM = "platform"
    TOPIC = "topic"
    PERSONA = "persona"


class TestStatus(str, Enum):
    __test__ = False  # not a pytest class

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Coercion helpers (storage boundary)
# ---------------------------------------------------------------------------


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _as_enum(enum_cls: type[Enum], value: Any, default: Enum | None) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Test record side
# ---------------------------------------------------------------------------


@dataclass
class Citation:
    """A URL referenced in an LLM response. ``type`` is derived from url + brand."""

    url: str = ""
    type: CitationType | None = None  # None = never classified / unknown stored value
    context: str = ""

    @classmethod
    def from_dict(cls, data: dict | str | None) -> Citation:
        if isinstance(data, str):
            return cls(url=data)
        if not isinstance(data, dict):
            data = {}
        return cls(
            url=str(data.get("url") or ""),
            type=_as_enum(CitationType, data.get("type"), None),
            context=str(data.get("context") or ""),
        )

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "type": self.type.value if self.type else None,
            "context": self.context,
        }


@dataclass
class CitationMetrics:
    brand_citations: int = 0
    earned_citations: int = 0
    social_citations: int = 0
    total_citations: int = 0

    @classmethod
    def from_dict(cls, data: dict | None) -> CitationMetrics:
        if not isinstance(data, dict):
            data = {}
        return cls(
            brand_citations=max(_as_int(data.get("brand_citations")), 0),
            earned_citations=max(_as_int(data.get("earned_citations")), 0),
            social_citations=max(_as_int(data.get("social_citations")), 0),
            total_citations=max(_as_int(data.get("total_citations")), 0),
        )

    @classmethod
    def from_citations(cls, citations: list[Citation]) -> CitationMetrics:
        """Count citation types. Only valid after every citation has been classified."""
        brand = sum(1 for c in citations if c.type == CitationType.BRAND)
        earned = sum(1 for c in citations if c.type == CitationType.EARNED)
        social = sum(1 for c in citations if c.type == CitationType.SOCIAL)
        return cls(
            brand_citations=brand,
            earned_citations=earned,
            social_citations=social,
            total_citations=brand + earned + social,
        )

    def count(self, citation_type: CitationType) -> int:
        return {
            CitationType.BRAND: self.brand_citations,
            CitationType.EARNED: self.earned_citations,
            CitationType.SOCIAL: self.social_citations,
        }[citation_type]

    def to_dict(self) -> dict:
        return {
            "brand_citations": self.brand_citations,
            "earned_citations": self.earned_citations,
            "social_citations": self.social_citations,
            "total_citations": self.total_citations,
        }


@dataclass
class BrandMention:
    """One brand's presence in one test record."""

    brand_name: str = ""
    mentioned: bool = False
    first_position: int | None = None  # 1-based sentence of first mention
    mention_count: int = 0
    sentiment: Sentiment = Sentiment.NEUTRAL
    sentiment_score: float = 0.0  # -1.0 .. +1.0
    rank_position: int | None = None  # rank among brands in the response (1 = first)
    citations: list[Citation] = field(default_factory=list)
    citation_metrics: CitationMetrics = field(default_factory=CitationMetrics)

    @classmethod
    def from_dict(cls, data: dict | None) -> BrandMention:
        if not isinstance(data, dict):
            data = {}
        mentioned = bool(data.get("mentioned", False))
        mention_count = max(_as_int(data.get("mention_count")), 0)
        if mentioned and mention_count == 0:
            # A mentioned brand was mentioned at least once
            mention_count = 1

        first_position = data.get("first_position")
        first_position = _as_int(first_position) if first_position is not None else None
        if first_position is not None and first_position < 1:
            first_position = None

        rank_position = data.get("rank_position")
        rank_position = _as_int(rank_position) if rank_position is not None else None
        if rank_position is not None and rank_position < 1:
            rank_position = None

        score = min(max(_as_float(data.get("sentiment_score")), -1.0), 1.0)

        return cls(
            brand_name=str(data.get("brand_name") or ""),
            mentioned=mentioned,
            first_position=first_position,
            mention_count=mention_count,
            sentiment=_as_enum(Sentiment, data.get("sentiment"), Sentiment.NEUTRAL),
            sentiment_score=score,
            rank_position=rank_position,
            citations=[Citation.from_dict(c) for c in _as_list(data.get("citations")) if isinstance(c, (dict, str))],
            citation_metrics=CitationMetrics.from_dict(data.get("citation_metrics")),
        )

    def to_dict(self) -> dict:
        return {
            "brand_name": self.brand_name,
            "mentioned": self.mentioned,
            "first_position": self.first_position,
            "mention_count": self.mention_count,
            "sentiment": self.sentiment.value,
            "sentiment_score": self.sentiment_score,
            "rank_position": self.rank_position,
            "citations": [c.to_dict() for c in self.citations],
            "citation_metrics": self.citation_metrics.to_dict(),
        }


@dataclass
class TestRecord:
    """One prompt executed against one LLM platform."""

    __test__ = False  # not a pytest class

    id: int | None = None
    user_id: str = ""
    prompt_id: str = ""
    llm_provider: str = ""
    topic: str | None = None
    persona: str | None = None
    prompt_text: str | None = None
    status: TestStatus = TestStatus.COMPLETED
    tested_at: datetime | None = None
    brand_mentions: list[BrandMention] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> TestRecord:
        return cls(
            id=data.get("id"),
            user_id=str(data.get("user_id") or ""),
            prompt_id=str(data.get("prompt_id") or ""),
            llm_provider=str(data.get("llm_provider") or ""),
            topic=data.get("topic") or None,
            persona=data.get("persona") or None,
            prompt_text=data.get("prompt_text"),
            status=_as_enum(TestStatus, data.get("status"), TestStatus.PENDING),
            tested_at=data.get("tested_at"),
            brand_mentions=[
                BrandMention.from_dict(bm) for bm in _as_list(data.get("brand_metrics")) if isinstance(bm, dict)
            ],
        )

    def brand_metrics_dicts(self) -> list[dict]:
        return [bm.to_dict() for bm in self.brand_mentions]


# ---------------------------------------------------------------------------
# Aggregate side
# ---------------------------------------------------------------------------


def _empty_sentiment_breakdown() -> dict[str, int]:
    return {s.value: 0 for s in Sentiment}


@dataclass
class BrandAggregate:
    """Per-brand rollup inside one AggregatedMetric."""

    brand_id: str = ""
    brand_name: str = ""

    visibility_score: float = 0.0
    visibility_rank: int = 0
    total_appearances: int = 0  # distinct prompts with at least one mention

    total_mentions: int = 0
    mention_rank: int = 0

    share_of_voice: float = 0.0
    share_of_voice_rank: int = 0

    avg_position: float = 0.0  # 0 = never positioned
    avg_position_rank: int = 0

    depth_of_mention: float = 0.0
    depth_rank: int = 0

    citation_share: float = 0.0
    citation_share_rank: int = 0
    brand_citations_total: int = 0
    earned_citations_total: int = 0
    social_citations_total: int = 0
    total_citations: int = 0

    sentiment_score: float = 0.0
    sentiment_breakdown: dict[str, int] = field(default_factory=_empty_sentiment_breakdown)
    sentiment_share: float = 0.0

    count_1st: int = 0
    count_2nd: int = 0
    count_3rd: int = 0
    rank_1st: int = 0
    rank_2nd: int = 0
    rank_3rd: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> BrandAggregate:
        known = cls.__dataclass_fields__
        values = {k: v for k, v in data.items() if k in known}
        breakdown = _empty_sentiment_breakdown()
        stored = data.get("sentiment_breakdown")
        if isinstance(stored, dict):
            breakdown.update({k: _as_int(v) for k, v in stored.items() if k in breakdown})
        values["sentiment_breakdown"] = breakdown
        return cls(**values)

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass
class AggregatedMetric:
    """Rollup of a set of test records for one (scope, scope_value)."""

    user_id: str = ""
    scope: Scope = Scope.OVERALL
    scope_value: str = "all"
    date_from: datetime | None = None
    date_to: datetime | None = None
    total_prompts: int = 0
    total_responses: int = 0
    total_brands: int = 0
    brand_metrics: list[BrandAggregate] = field(default_factory=list)
    prompt_test_ids: list[int] = field(default_factory=list)
    last_calculated: datetime | None = None
    id: int | None = None

    def brand(self, brand_name: str) -> BrandAggregate | None:
        for b in self.brand_metrics:
            if b.brand_name == brand_name:
                return b
        return None
