"""
Confidential content recommender client core.

Keeps each content item's interest score under FHE, tracks how far its
cleartext has been revealed (unresolved, locally decrypted, verified
on-chain), and scores items for recommendation.
"""

from .main import build_session, recommender_session  # noqa: F401
from .models.domain.content_domain import Category, ContentItem, CreateContentRequest  # noqa: F401
from .services.session_orchestrator import SessionOrchestrator  # noqa: F401
