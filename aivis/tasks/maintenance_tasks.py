"""Celery tasks for metrics maintenance."""

import asyncio
import logging

from aivis.core.exceptions import StorageUnavailableError
from aivis.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run an async coroutine from sync Celery task context.

    Creates a fresh event loop each time; the module-level SQLAlchemy engine
    may be bound to a different loop.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _reprocess_citations_async(user_id: str | None = None) -> dict:
    from aivis.analysis.citation_classifier import ClassificationRules
    from aivis.core.config import settings
    from aivis.db.postgres import make_session_factory
    from aivis.services.reaggregation_service import reprocess_all
    from aivis.services.storage import MetricsStorage

    session_factory, engine = make_session_factory()
    try:
        async with session_factory() as db:
            summary = await reprocess_all(
                MetricsStorage(db),
                user_id=user_id,
                rules=ClassificationRules.from_settings(settings),
            )
            return summary.to_dict()
    finally:
        await engine.dispose()


async def _reaggregate_async(user_id: str, tracked_brands: list[str] | None = None) -> dict:
    from aivis.analysis.citation_classifier import ClassificationRules
    from aivis.core.config import settings
    from aivis.db.postgres import make_session_factory
    from aivis.services.reaggregation_service import reaggregate
    from aivis.services.storage import MetricsStorage

    session_factory, engine = make_session_factory()
    try:
        async with session_factory() as db:
            result = await reaggregate(
                MetricsStorage(db),
                user_id=user_id,
                tracked_brands=tuple(tracked_brands or ()),
                rules=ClassificationRules.from_settings(settings),
            )
    finally:
        await engine.dispose()
    data = result.to_dict()
    # Brand rows are large; the task result only needs the counts
    data.pop("overall", None)
    return data


@celery_app.task(name="reprocess_citations")
def reprocess_citations_task(user_id: str | None = None):
    """Reclassify stored citations and patch aggregate citation totals.

    Runs daily at REPROCESS_HOUR UTC via Celery Beat.
    """
    logger.info("Reprocessing citations (user=%s)...", user_id or "all")
    try:
        summary = _run_async(_reprocess_citations_async(user_id))
    except StorageUnavailableError as exc:
        logger.error("Citation reprocess aborted: %s", exc)
        return {"status": "error", "error": str(exc)}
    return {"status": "ok", **summary}


@celery_app.task(name="reaggregate_metrics")
def reaggregate_metrics_task(user_id: str, tracked_brands: list[str] | None = None):
    """Full re-aggregation of every scope for one user."""
    logger.info("Re-aggregating metrics for user %s...", user_id)
    try:
        result = _run_async(_reaggregate_async(user_id, tracked_brands))
    except StorageUnavailableError as exc:
        logger.error("Re-aggregation for user %s aborted: %s", user_id, exc)
        return {"status": "error", "error": str(exc)}
    return {"status": "ok", **result}
