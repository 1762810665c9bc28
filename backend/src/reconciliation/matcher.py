"""Candidate matcher scoring storefront orders against a provider order.

Pipeline:
1. Load storefront orders created within ±MATCH_WINDOW_DAYS of the provider order,
   the MATCH_CANDIDATE_POOL_LIMIT closest in time
2. Score each pair (amount, name, date) via MatchScorer
3. Rank by score DESC, then smaller time gap, then lower storefront id
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from models.provider_order import ProviderOrder
from models.storefront_order import StorefrontOrder
from observability.metrics import candidate_score_histogram
from .errors import TransientStoreError
from .ports import MatcherPort, MatchCandidate
from .scorer import MatchScorer, time_gap

logger = logging.getLogger(__name__)


def rank_key(candidate: MatchCandidate):
    """Deterministic ordering: best score, closest in time, lowest id."""
    return (-candidate.score, candidate.time_gap_seconds, candidate.storefront_order_id)


class CandidateMatcher(MatcherPort):
    """Scores storefront orders in the time window around a provider order.

    The window only bounds the search space; a candidate near its edge still
    competes on amount and name.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        """Initialize matcher.

        Args:
            db: Database session
            settings: Matching policy (defaults to application settings)
        """
        self.db = db
        self.settings = settings or get_settings()
        self.scorer = MatchScorer(self.settings)

    def match(self, provider_order: ProviderOrder) -> List[MatchCandidate]:
        """Rank storefront orders as candidates for a provider order.

        Args:
            provider_order: Provider order to match

        Returns:
            Candidates ordered best first (empty if nothing is in the window)

        Raises:
            TransientStoreError: If the candidate pool cannot be loaded
        """
        pool = self._candidate_pool(provider_order)

        candidates = []
        for storefront_order in pool:
            scored = self.scorer.calculate_confidence(provider_order, storefront_order)
            candidates.append(
                MatchCandidate(
                    storefront_order_id=storefront_order.id,
                    score=scored["confidence"],
                    reasons=scored["reasons"],
                    time_gap_seconds=scored["time_gap_seconds"],
                    features=scored["features"],
                    order=storefront_order.to_summary(),
                )
            )

        candidates.sort(key=rank_key)

        if candidates:
            candidate_score_histogram.observe(candidates[0].score)
        logger.debug(
            f"Provider order {provider_order.id}: {len(candidates)} candidates in window"
            + (f", top={candidates[0].storefront_order_id} ({candidates[0].score:.3f})" if candidates else "")
        )
        return candidates

    def suggest(self, provider_order: ProviderOrder) -> List[MatchCandidate]:
        """Top candidates worth showing to an operator."""
        return [
            c for c in self.match(provider_order)
            if c.score >= self.settings.SUGGESTION_MIN_SCORE
        ][: self.settings.SUGGESTION_LIMIT]

    def _candidate_pool(self, provider_order: ProviderOrder) -> List[StorefrontOrder]:
        """Storefront orders in the window, the closest in time when the pool is capped.

        Each half-window is read walking away from the provider order, so the
        cap drops the orders furthest from it.
        """
        window = timedelta(days=self.settings.MATCH_WINDOW_DAYS)
        limit = self.settings.MATCH_CANDIDATE_POOL_LIMIT
        created_at = provider_order.created_at

        before = (
            select(StorefrontOrder)
            .where(
                StorefrontOrder.created_at >= created_at - window,
                StorefrontOrder.created_at < created_at,
            )
            .order_by(StorefrontOrder.created_at.desc(), StorefrontOrder.id)
            .limit(limit)
        )
        after = (
            select(StorefrontOrder)
            .where(
                StorefrontOrder.created_at >= created_at,
                StorefrontOrder.created_at <= created_at + window,
            )
            .order_by(StorefrontOrder.created_at, StorefrontOrder.id)
            .limit(limit)
        )
        try:
            pool = list(self.db.execute(before).scalars().all())
            pool.extend(self.db.execute(after).scalars().all())
        except OperationalError as e:
            raise TransientStoreError(
                f"Failed to load storefront candidates for provider order {provider_order.id}",
                details={"provider_order_id": provider_order.id},
            ) from e

        pool.sort(key=lambda order: (time_gap(provider_order.created_at, order.created_at), order.id))
        return pool[:limit]
