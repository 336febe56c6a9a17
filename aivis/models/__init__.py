from aivis.models.aggregated_metric import AggregatedMetricRow
from aivis.models.prompt_test import PromptTest

__all__ = [
    "AggregatedMetricRow",
    "PromptTest",
]
