from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from aivis.analysis.citation_classifier import ClassificationRules
from aivis.core.config import settings
from aivis.db.postgres import get_db
from aivis.services.storage import MetricsStorage


async def get_storage(db: AsyncSession = Depends(get_db)) -> MetricsStorage:
    return MetricsStorage(db)


def get_rules() -> ClassificationRules:
    """Classification rules from the current settings."""
    return ClassificationRules.from_settings(settings)
