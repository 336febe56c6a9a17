"""Storage layer: document-style repositories over an async SQLAlchemy session.

Rows are converted to typed records at this boundary (see analysis.types),
so callers never see raw JSON documents. Repositories flush; the caller
owns the transaction and commits.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from aivis.analysis.types import AggregatedMetric, BrandAggregate, Scope, TestRecord
from aivis.core.exceptions import StorageUnavailableError
from aivis.models.aggregated_metric import AggregatedMetricRow
from aivis.models.prompt_test import PromptTest

logger = logging.getLogger(__name__)

_CONNECTIVITY_ERRORS = (OperationalError, InterfaceError, ConnectionError, OSError)


@contextmanager
def _storage_errors() -> Iterator[None]:
    """Translate driver connectivity failures into StorageUnavailableError."""
    try:
        yield
    except _CONNECTIVITY_ERRORS as exc:
        logger.error("Data store unreachable: %s", exc)
        raise StorageUnavailableError(str(exc)) from exc


def _where(model: type, filters: dict[str, Any]) -> list:
    """Equality / IN clauses for non-None filters."""
    clauses = []
    for name, value in filters.items():
        if value is None:
            continue
        column = getattr(model, name)
        if isinstance(value, (list, tuple, set, frozenset)):
            clauses.append(column.in_([v.value if isinstance(v, Enum) else v for v in value]))
        else:
            clauses.append(column == (value.value if isinstance(value, Enum) else value))
    return clauses


# ---------------------------------------------------------------------------
# Row <-> DTO conversion
# ---------------------------------------------------------------------------


def record_from_row(row: PromptTest) -> TestRecord:
    return TestRecord.from_dict(
        {
            "id": row.id,
            "user_id": row.user_id,
            "prompt_id": row.prompt_id,
            "llm_provider": row.llm_provider,
            "topic": row.topic,
            "persona": row.persona,
            "prompt_text": row.prompt_text,
            "status": row.status,
            "tested_at": row.tested_at,
            "brand_metrics": row.brand_metrics,
        }
    )


def _convert_rows(rows: list, convert: Callable[[Any], Any]) -> list:
    """Convert rows to DTOs, skipping (and logging) rows whose documents cannot be read."""
    converted = []
    for row in rows:
        try:
            converted.append(convert(row))
        except (TypeError, ValueError, AttributeError, KeyError) as exc:
            logger.warning("Skipping unreadable %s row %s: %s", row.__tablename__, row.id, exc)
    return converted


def _apply_record(row: PromptTest, record: TestRecord) -> None:
    row.user_id = record.user_id
    row.prompt_id = record.prompt_id
    row.llm_provider = record.llm_provider
    row.topic = record.topic
    row.persona = record.persona
    row.prompt_text = record.prompt_text
    row.status = record.status.value
    if record.tested_at is not None:
        row.tested_at = record.tested_at
    # New list object so the JSON column is flagged dirty
    row.brand_metrics = record.brand_metrics_dicts()


def metric_from_row(row: AggregatedMetricRow) -> AggregatedMetric:
    return AggregatedMetric(
        id=row.id,
        user_id=row.user_id,
        scope=Scope(row.scope),
        scope_value=row.scope_value,
        date_from=row.date_from,
        date_to=row.date_to,
        total_prompts=row.total_prompts or 0,
        total_responses=row.total_responses or 0,
        total_brands=row.total_brands or 0,
        brand_metrics=[BrandAggregate.from_dict(b) for b in row.brand_metrics or [] if isinstance(b, dict)],
        prompt_test_ids=list(row.prompt_test_ids or []),
        last_calculated=row.last_calculated,
    )


def _apply_metric(row: AggregatedMetricRow, metric: AggregatedMetric) -> None:
    row.user_id = metric.user_id
    row.scope = metric.scope.value
    row.scope_value = metric.scope_value
    row.date_from = metric.date_from
    row.date_to = metric.date_to
    row.total_prompts = metric.total_prompts
    row.total_responses = metric.total_responses
    row.total_brands = metric.total_brands
    row.brand_metrics = [b.to_dict() for b in metric.brand_metrics]
    row.prompt_test_ids = list(metric.prompt_test_ids)
    row.last_calculated = metric.last_calculated or datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class PromptTestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_all(self, **filters: Any) -> list[TestRecord]:
        stmt = select(PromptTest).where(*_where(PromptTest, filters)).order_by(PromptTest.id)
        with _storage_errors():
            result = await self.session.execute(stmt)
        return _convert_rows(result.scalars().all(), record_from_row)

    async def find_one(self, **filters: Any) -> TestRecord | None:
        stmt = select(PromptTest).where(*_where(PromptTest, filters)).order_by(PromptTest.id).limit(1)
        with _storage_errors():
            result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return record_from_row(row) if row else None

    async def save(self, record: TestRecord) -> TestRecord:
        """Insert or update a record inside its own SAVEPOINT."""
        with _storage_errors():
            async with self.session.begin_nested():
                row = await self.session.get(PromptTest, record.id) if record.id is not None else None
                if row is None:
                    row = PromptTest()
                    self.session.add(row)
                _apply_record(row, record)
                await self.session.flush()
        record.id = row.id
        return record

    async def update_many(self, values: dict[str, Any], **filters: Any) -> int:
        stmt = update(PromptTest).where(*_where(PromptTest, filters)).values(**values)
        with _storage_errors():
            result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0

    async def delete_many(self, **filters: Any) -> int:
        stmt = delete(PromptTest).where(*_where(PromptTest, filters))
        with _storage_errors():
            result = await self.session.execute(stmt)
        return result.rowcount or 0


class AggregatedMetricRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_all(self, **filters: Any) -> list[AggregatedMetric]:
        stmt = (
            select(AggregatedMetricRow)
            .where(*_where(AggregatedMetricRow, filters))
            .order_by(AggregatedMetricRow.id)
        )
        with _storage_errors():
            result = await self.session.execute(stmt)
        return _convert_rows(result.scalars().all(), metric_from_row)

    async def find_one(self, **filters: Any) -> AggregatedMetric | None:
        stmt = (
            select(AggregatedMetricRow)
            .where(*_where(AggregatedMetricRow, filters))
            .order_by(AggregatedMetricRow.id)
            .limit(1)
        )
        with _storage_errors():
            result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return metric_from_row(row) if row else None

    async def save(self, metric: AggregatedMetric) -> AggregatedMetric:
        """Update an existing document in place (by id) or insert a new one."""
        with _storage_errors():
            async with self.session.begin_nested():
                row = await self.session.get(AggregatedMetricRow, metric.id) if metric.id is not None else None
                if row is None:
                    row = AggregatedMetricRow()
                    self.session.add(row)
                _apply_metric(row, metric)
                await self.session.flush()
        metric.id = row.id
        return metric

    async def replace(self, metric: AggregatedMetric) -> AggregatedMetric:
        """Wholesale replacement of the (user_id, scope, scope_value) document."""
        with _storage_errors():
            async with self.session.begin_nested():
                await self.session.execute(
                    delete(AggregatedMetricRow).where(
                        *_where(
                            AggregatedMetricRow,
                            {"user_id": metric.user_id, "scope": metric.scope, "scope_value": metric.scope_value},
                        )
                    )
                )
                row = AggregatedMetricRow()
                _apply_metric(row, metric)
                self.session.add(row)
                await self.session.flush()
        metric.id = row.id
        return metric

    async def update_many(self, values: dict[str, Any], **filters: Any) -> int:
        stmt = update(AggregatedMetricRow).where(*_where(AggregatedMetricRow, filters)).values(**values)
        with _storage_errors():
            result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0

    async def delete_many(self, **filters: Any) -> int:
        stmt = delete(AggregatedMetricRow).where(*_where(AggregatedMetricRow, filters))
        with _storage_errors():
            result = await self.session.execute(stmt)
        return result.rowcount or 0


class MetricsStorage:
    """Both collections over one session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.prompt_tests = PromptTestRepository(session)
        self.aggregated_metrics = AggregatedMetricRepository(session)

    async def commit(self) -> None:
        with _storage_errors():
            await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
