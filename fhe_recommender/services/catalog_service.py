"""
Catalog summary statistics shown above the content listing.
"""

import time
from collections.abc import Sequence
from dataclasses import dataclass

from fhe_recommender.models.domain.content_domain import ContentItem

RECENT_WINDOW_SECONDS = 60 * 60 * 24 * 7


@dataclass(slots=True, frozen=True)
class CatalogSummary:
    total: int
    verified: int
    average_views: float
    recent: int
    categories: int


def summarize_catalog(items: Sequence[ContentItem], now: float | None = None) -> CatalogSummary:
    """Totals, verified count, mean views, items from the last 7 days, distinct categories."""
    if now is None:
        now = time.time()
    total = len(items)
    return CatalogSummary(
        total=total,
        verified=sum(1 for item in items if item.is_verified),
        average_views=(sum(item.public_views for item in items) / total) if total else 0.0,
        recent=sum(1 for item in items if now - item.created_at < RECENT_WINDOW_SECONDS),
        categories=len({item.category for item in items}),
    )
