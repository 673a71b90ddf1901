from services.features.feature_store import FeatureStore, merge_generation
from services.features.behavior_predictor import BehaviorPredictor
from services.features.text_features import (
    EMBEDDING_DIMENSIONS,
    calculate_prompt_complexity,
    calculate_trend,
    clamp01,
    extract_keywords,
)

__all__ = [
    "FeatureStore",
    "merge_generation",
    "BehaviorPredictor",
    "EMBEDDING_DIMENSIONS",
    "calculate_prompt_complexity",
    "calculate_trend",
    "clamp01",
    "extract_keywords",
]
