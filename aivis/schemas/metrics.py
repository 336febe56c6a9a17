"""Pydantic response models for aggregated metrics & citation maintenance."""

from datetime import datetime

from pydantic import BaseModel, Field


class SentimentBreakdown(BaseModel):
    positive: int = 0
    neutral: int = 0
    negative: int = 0
    mixed: int = 0


class BrandAggregateResponse(BaseModel):
    """Stored brand rollup, served as stored. Bounds are checked by /metrics/verify."""

    brand_id: str
    brand_name: str

    visibility_score: float = Field(description="% of distinct prompts mentioning the brand")
    visibility_rank: int
    total_appearances: int

    total_mentions: int
    mention_rank: int

    share_of_voice: float
    share_of_voice_rank: int

    avg_position: float = Field(description="Mean first-mention position; 0 = never positioned")
    avg_position_rank: int

    depth_of_mention: float
    depth_rank: int

    citation_share: float
    citation_share_rank: int
    brand_citations_total: int
    earned_citations_total: int
    social_citations_total: int
    total_citations: int

    sentiment_score: float
    sentiment_breakdown: SentimentBreakdown
    sentiment_share: float

    count_1st: int = 0
    count_2nd: int = 0
    count_3rd: int = 0
    rank_1st: int = 0
    rank_2nd: int = 0
    rank_3rd: int = 0


class AggregatedMetricResponse(BaseModel):
    id: int | None = None
    user_id: str
    scope: str = Field(pattern=r"^(overall|platform|topic|persona)$")
    scope_value: str
    date_from: datetime | None = None
    date_to: datetime | None = None
    total_prompts: int
    total_responses: int
    total_brands: int
    brand_metrics: list[BrandAggregateResponse]
    prompt_test_ids: list[int] = []
    last_calculated: datetime | None = None


class AggregatedMetricList(BaseModel):
    user_id: str
    metrics: list[AggregatedMetricResponse]


class CitationTypeCount(BaseModel):
    count: int = Field(ge=0)
    percent: float = Field(ge=0, le=100)


class CitationBreakdownResponse(BaseModel):
    brand: CitationTypeCount
    earned: CitationTypeCount
    social: CitationTypeCount


class RecordFailure(BaseModel):
    id: int | None
    kind: str
    error: str | None


class ReprocessResponse(BaseModel):
    processed: int = Field(ge=0)
    updated: int = Field(ge=0)
    citations_processed: int = Field(ge=0)
    citations_changed: int = Field(ge=0)
    brand_mentions_changed: int = Field(ge=0)
    urls_cleaned: int = Field(ge=0)
    aggregates_updated: int = Field(ge=0)
    errors: int = Field(ge=0)
    failures: list[RecordFailure]
    before: CitationBreakdownResponse
    after: CitationBreakdownResponse


class ViolationResponse(BaseModel):
    scope: str
    scope_value: str
    brand_name: str
    check: str
    detail: str


class VerificationResponse(BaseModel):
    ok: bool
    metrics_checked: int = Field(ge=0)
    brands_checked: int = Field(ge=0)
    violations: list[ViolationResponse]


class ReaggregateRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    tracked_brands: list[str] = []  # tracked brands listed first, reported even with zero mentions
    date_from: datetime | None = None
    date_to: datetime | None = None


class ReaggregateResponse(BaseModel):
    user_id: str
    records: int = Field(ge=0)
    total_prompts: int = Field(ge=0)
    platforms: int = Field(ge=0)
    topics: int = Field(ge=0)
    personas: int = Field(ge=0)
    replaced: int = Field(ge=0)
    saved: int = Field(ge=0)
    overall: list[BrandAggregateResponse]
    verification: VerificationResponse


class ClassifyResponse(BaseModel):
    url: str
    brand_name: str
    hostname: str
    type: str = Field(pattern=r"^(brand|social|earned)$")
