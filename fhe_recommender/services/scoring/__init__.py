"""
Recommendation scoring package.

Provides the pure scoring engine that turns a content item and its visible
score into relevance metrics.
"""

from .service import RecommendationStats, ScoreSource, ScoringService, score_item, scoring_service

__all__ = [
    "RecommendationStats",
    "ScoreSource",
    "ScoringService",
    "score_item",
    "scoring_service",
]
