"""
Recommendation scoring - maps a content item plus whatever score this client
can see into five user-facing relevance metrics.

Pure and deterministic: no I/O, no state. All outputs are integers in
[0, 100]. Rounding is round-half-up (``floor(x + 0.5)``), matching the
browser client's ``Math.round``.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from enum import StrEnum

from fhe_recommender.models.domain.content_domain import ContentItem

SECONDS_PER_DAY = 60 * 60 * 24


class ScoreSource(StrEnum):
    VERIFIED = "verified"
    LOCAL = "local"
    ESTIMATED_DEFAULT = "estimated_default"


@dataclass(slots=True, frozen=True)
class RecommendationStats:
    match_score: int
    relevance: int
    popularity: int
    freshness: int
    diversity: int
    score_source: ScoreSource

    @property
    def is_estimate(self) -> bool:
        """True when the neutral placeholder score was used; not a real signal."""
        return self.score_source is ScoreSource.ESTIMATED_DEFAULT

    def as_dict(self) -> dict[str, int]:
        return {
            "match_score": self.match_score,
            "relevance": self.relevance,
            "popularity": self.popularity,
            "freshness": self.freshness,
            "diversity": self.diversity,
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class ScoringService:
    DEFAULT_SCORE = 50
    FRESHNESS_WINDOW_DAYS = 30
    MIN_TIME_FACTOR = 0.3
    MAX_TIME_FACTOR = 1.0
    SCORE_WEIGHT = 0.7
    VIEWS_WEIGHT = 0.3
    RELEVANCE_DAMPING = 0.8
    POPULARITY_SCALE = 20
    DIVERSITY_WEIGHT = 0.6
    DIVERSITY_BASE = 40

    def effective_score(
        self, item: ContentItem, local_value: int | None
    ) -> tuple[int, ScoreSource]:
        """Verified score first, then the local cleartext, then the placeholder."""
        if item.is_verified and item.verified_score is not None:
            return item.verified_score, ScoreSource.VERIFIED
        if local_value is not None:
            return local_value, ScoreSource.LOCAL
        return self.DEFAULT_SCORE, ScoreSource.ESTIMATED_DEFAULT

    def time_factor(self, created_at: float, now: float) -> float:
        """
        Linear decay over the freshness window, floored at MIN_TIME_FACTOR.

        Items exactly FRESHNESS_WINDOW_DAYS old sit on the floor; items
        dated in the future count as brand new.
        """
        age_days = (now - created_at) / SECONDS_PER_DAY
        return clamp(
            1 - age_days / self.FRESHNESS_WINDOW_DAYS,
            self.MIN_TIME_FACTOR,
            self.MAX_TIME_FACTOR,
        )

    def score(
        self, item: ContentItem, local_value: int | None = None, now: float | None = None
    ) -> RecommendationStats:
        if now is None:
            now = time.time()

        score, source = self.effective_score(item, local_value)
        views = item.public_views
        time_factor = self.time_factor(item.created_at, now)

        match_score = round_half_up(score * time_factor)
        # views are not normalised, so relevance saturates at 100 for large
        # view counts; kept as-is.
        relevance = round_half_up(
            (score * self.SCORE_WEIGHT + views * self.VIEWS_WEIGHT) * self.RELEVANCE_DAMPING
        )
        popularity = round_half_up(math.log(views + 1) * self.POPULARITY_SCALE)
        freshness = round_half_up(time_factor * 100)
        diversity = round_half_up(
            (100 - abs(score - self.DEFAULT_SCORE)) * self.DIVERSITY_WEIGHT + self.DIVERSITY_BASE
        )

        return RecommendationStats(
            match_score=_bounded(match_score),
            relevance=_bounded(relevance),
            popularity=_bounded(popularity),
            freshness=_bounded(freshness),
            diversity=_bounded(diversity),
            score_source=source,
        )


def _bounded(value: int) -> int:
    return int(clamp(value, 0, 100))


scoring_service = ScoringService()


def score_item(
    item: ContentItem, local_value: int | None = None, now: float | None = None
) -> RecommendationStats:
    return scoring_service.score(item, local_value, now)
