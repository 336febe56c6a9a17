"""Citation classification API: ad-hoc lookup of a single URL."""

from fastapi import APIRouter, Depends, Query

from aivis.analysis.citation_classifier import ClassificationRules, classify_citation, clean_url, extract_hostname
from aivis.core.dependencies import get_rules
from aivis.schemas.metrics import ClassifyResponse

router = APIRouter(prefix="/citations", tags=["citations"])


@router.get("/classify", response_model=ClassifyResponse)
async def classify(
    url: str = Query(..., max_length=2048),
    brand: str = Query(..., min_length=1, max_length=255),
    rules: ClassificationRules = Depends(get_rules),
):
    return ClassifyResponse(
        url=url,
        brand_name=brand,
        hostname=extract_hostname(clean_url(url)),
        type=classify_citation(url, brand, rules).value,
    )
