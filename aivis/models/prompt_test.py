from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aivis.db.base import Base, JSONDocument


class PromptTest(Base):
    """Result of executing a single prompt against a single LLM platform."""

    __tablename__ = "prompt_tests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    prompt_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    prompt_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    llm_provider: Mapped[str] = mapped_column(String(20), nullable=False)  # openai | gemini | claude | perplexity
    topic: Mapped[str | None] = mapped_column(String(255), nullable=True)
    persona: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default="completed"
    )  # pending | processing | completed | failed

    # Embedded per-brand documents:
    # [{"brand_name", "mentioned", "first_position", "mention_count", "sentiment",
    #   "sentiment_score", "rank_position", "citations": [{"url", "type", "context"}],
    #   "citation_metrics": {"brand_citations", "earned_citations", "social_citations", "total_citations"}}]
    brand_metrics: Mapped[list | None] = mapped_column(JSONDocument, nullable=True)

    tested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
