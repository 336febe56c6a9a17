from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from aivis.db.base import Base, JSONDocument


class AggregatedMetricRow(Base):
    """Per-scope rollup of prompt tests. Replaced wholesale on every aggregation run."""

    __tablename__ = "aggregated_metrics"
    __table_args__ = (UniqueConstraint("user_id", "scope", "scope_value", name="uq_aggregated_metric_scope"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    scope: Mapped[str] = mapped_column(String(20), nullable=False)  # overall | platform | topic | persona
    scope_value: Mapped[str] = mapped_column(String(255), nullable=False, default="all")

    date_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    date_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    total_prompts: Mapped[int] = mapped_column(Integer, default=0)
    total_responses: Mapped[int] = mapped_column(Integer, default=0)
    total_brands: Mapped[int] = mapped_column(Integer, default=0)

    brand_metrics: Mapped[list | None] = mapped_column(JSONDocument, nullable=True)  # [BrandAggregate.to_dict()]
    prompt_test_ids: Mapped[list | None] = mapped_column(JSONDocument, nullable=True)  # [prompt_tests.id]

    last_calculated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
