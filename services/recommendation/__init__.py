from services.recommendation.recommendation_engine import (
    RecommendationEngine,
    SCORING_VERSION,
    SCORING_WEIGHTS,
    filter_tools_by_capabilities,
)
from services.recommendation.prompt_analysis import analyze_prompt

__all__ = [
    "RecommendationEngine",
    "SCORING_VERSION",
    "SCORING_WEIGHTS",
    "filter_tools_by_capabilities",
    "analyze_prompt",
]
