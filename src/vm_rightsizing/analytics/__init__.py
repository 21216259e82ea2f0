from .size_catalog import SizeCatalog
from .classification_engine import ClassificationEngine, ClassificationThresholds, FleetAnalysis
from .ai_recommender import (
    AIRecommendationPayload,
    AIRecommender,
    AugmentationResult,
    GenerativeModel,
    build_fallback_recommendation,
    build_fallback_summary,
    parse_recommendation_payload,
)

__all__ = [
    "SizeCatalog",
    "ClassificationEngine",
    "ClassificationThresholds",
    "FleetAnalysis",
    "AIRecommendationPayload",
    "AIRecommender",
    "AugmentationResult",
    "GenerativeModel",
    "build_fallback_recommendation",
    "build_fallback_summary",
    "parse_recommendation_payload",
]
