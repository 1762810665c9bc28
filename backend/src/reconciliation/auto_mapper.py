"""Batch auto-mapping of unlinked provider orders.

For every provider order without an active link (classified orders carry one):
1. Score storefront candidates (CandidateMatcher)
2. Auto-link if top >= AUTO_LINK_THRESHOLD and gap to #2 >= AUTO_LINK_MARGIN,
   archiving any pending proposals the order still has
3. Otherwise propose a pending_verification link if top >= REVIEW_THRESHOLD
4. Otherwise leave the order unlinked

Each provider order is committed on its own. A failure rolls back that order
only and is reported in the summary; the batch keeps going. Re-running is
safe: the single-active-link guard and the pending-pair check make a second
run over unchanged data a no-op.
"""

import logging
import time
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import Settings, get_settings
from models.order_link import OrderLink, LinkStatus, LinkType, OrderClassification
from models.provider_order import ProviderOrder
from observability.metrics import (
    auto_map_runs_total,
    auto_map_orders_total,
    auto_map_duration_seconds,
)
from .errors import ReconciliationError
from .lifecycle import LinkLifecycleManager
from .matcher import CandidateMatcher
from .ports import (
    AutoMapDetail,
    AutoMapOrderError,
    AutoMapResult,
    DecisionOutcome,
    MatchCandidate,
    MatchDecision,
    MatcherPort,
)
from .repository import OrderLinkRepository

logger = logging.getLogger(__name__)


def decide(
    candidates: List[MatchCandidate],
    auto_link_threshold: float,
    auto_link_margin: float,
    review_threshold: float,
) -> MatchDecision:
    """Apply the threshold and margin rule to a ranked candidate list.

    Args:
        candidates: Candidates ordered best first
        auto_link_threshold: Minimum top score for an automatic active link
        auto_link_margin: Minimum lead of #1 over #2 for an automatic active link
        review_threshold: Minimum top score for a pending_verification link

    Returns:
        MatchDecision naming the outcome and the chosen candidate
    """
    if not candidates:
        return MatchDecision(DecisionOutcome.NO_MATCH, None, "No storefront orders in the matching window")

    top = candidates[0]
    second = candidates[1] if len(candidates) > 1 else None
    margin = round(top.score - second.score, 6) if second else None

    if top.score >= auto_link_threshold:
        if margin is None or margin >= auto_link_margin:
            return MatchDecision(
                DecisionOutcome.AUTO_LINK,
                top,
                f"Auto-linked with {top.score:.1%} confidence"
                + (f" (lead {margin:.1%})" if margin is not None else " (single candidate)"),
                margin,
            )
        reason = (
            f"Top candidate score {top.score:.1%} meets threshold, but gap to #2 "
            f"({margin:.1%}) is below minimum ({auto_link_margin:.1%})"
        )
    else:
        reason = f"Top candidate score {top.score:.1%} below auto-link threshold {auto_link_threshold:.1%}"

    if top.score >= review_threshold:
        return MatchDecision(DecisionOutcome.REVIEW, top, reason, margin)

    return MatchDecision(
        DecisionOutcome.NO_MATCH,
        None,
        f"Top candidate score {top.score:.1%} below review threshold {review_threshold:.1%}",
        margin,
    )


class AutoMapper:
    """Drives the matcher and lifecycle manager over the unlinked backlog."""

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        matcher: Optional[MatcherPort] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.matcher = matcher or CandidateMatcher(db, self.settings)
        self.repository = OrderLinkRepository(db)
        self.lifecycle = LinkLifecycleManager(db, self.repository)

    def decide(self, candidates: List[MatchCandidate]) -> MatchDecision:
        return decide(
            candidates,
            auto_link_threshold=self.settings.AUTO_LINK_THRESHOLD,
            auto_link_margin=self.settings.AUTO_LINK_MARGIN,
            review_threshold=self.settings.REVIEW_THRESHOLD,
        )

    def unlinked_provider_order_ids(self, limit: Optional[int] = None) -> List[int]:
        """Provider orders without an active link, oldest first."""
        active = select(OrderLink.provider_order_id).where(OrderLink.link_status == LinkStatus.ACTIVE)
        query = (
            select(ProviderOrder.id)
            .where(ProviderOrder.id.not_in(active))
            .order_by(ProviderOrder.created_at, ProviderOrder.id)
        )
        if limit is not None:
            query = query.limit(limit)
        return list(self.db.execute(query).scalars().all())

    def run(
        self,
        max_orders: Optional[int] = None,
        time_budget_seconds: Optional[float] = None,
    ) -> AutoMapResult:
        """Process the unlinked backlog.

        Args:
            max_orders: Stop after this many provider orders (default from settings)
            time_budget_seconds: Stop starting new orders after this long (default from settings)

        Returns:
            AutoMapResult with per-outcome counts and per-order errors
        """
        if max_orders is None:
            max_orders = self.settings.AUTO_MAP_MAX_ORDERS
        if time_budget_seconds is None:
            time_budget_seconds = self.settings.AUTO_MAP_TIME_BUDGET_SECONDS

        started = time.monotonic()
        result = AutoMapResult()

        try:
            report = self.lifecycle.verify_links()
            self.db.commit()
            result.broken_links_detected = report.broken
        except (ReconciliationError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error(f"Integrity sweep before auto-mapping failed: {e}", exc_info=True)

        fetch_limit = max_orders + 1 if max_orders is not None else None
        order_ids = self.unlinked_provider_order_ids(limit=fetch_limit)
        if max_orders is not None and len(order_ids) > max_orders:
            order_ids = order_ids[:max_orders]
            result.stopped_early = True

        logger.info(f"Auto-mapping {len(order_ids)} unlinked provider orders")

        for index, provider_order_id in enumerate(order_ids):
            if time_budget_seconds is not None and time.monotonic() - started >= time_budget_seconds:
                result.stopped_early = True
                logger.info(
                    f"Auto-mapping time budget of {time_budget_seconds}s exhausted "
                    f"after {index} orders"
                )
                break

            result.processed += 1
            try:
                detail = self._map_one(provider_order_id)
                self.db.commit()
            except (ReconciliationError, SQLAlchemyError) as e:
                self.db.rollback()
                message = e.message if isinstance(e, ReconciliationError) else f"Database error: {e}"
                logger.warning(
                    f"Auto-mapping failed for provider order {provider_order_id}: {message}",
                    extra={"provider_order_id": provider_order_id, "error_type": type(e).__name__},
                )
                result.errors.append(AutoMapOrderError(provider_order_id=provider_order_id, message=message))
                result.details.append(
                    AutoMapDetail(provider_order_id=provider_order_id, outcome="error", reason=message)
                )
                auto_map_orders_total.labels(outcome="error").inc()
                continue

            result.details.append(detail)
            auto_map_orders_total.labels(outcome=detail.outcome).inc()
            if detail.outcome == "linked":
                result.successful_mappings += 1
            elif detail.outcome == "pending_review":
                result.pending_review_created += 1
            else:
                result.left_unlinked += 1

        elapsed = time.monotonic() - started
        auto_map_duration_seconds.observe(elapsed)
        auto_map_runs_total.labels(stopped_early=str(result.stopped_early).lower()).inc()
        logger.info(
            f"Auto-mapping finished in {elapsed:.2f}s: {result.successful_mappings} linked, "
            f"{result.pending_review_created} pending review, {result.left_unlinked} unlinked, "
            f"{len(result.errors)} errors"
        )
        return result

    def _archive_superseded_pending(self, active_link: OrderLink) -> None:
        """Retire pending proposals left behind once a provider order is auto-linked."""
        for link in self.repository.links_for_provider_order(active_link.provider_order_id):
            if link.id != active_link.id and link.link_status == LinkStatus.PENDING_VERIFICATION:
                self.lifecycle.remove_link(link.id)

    def _map_one(self, provider_order_id: int) -> AutoMapDetail:
        provider_order = self.repository.require_provider_order(provider_order_id)
        candidates = self.matcher.match(provider_order)
        decision = self.decide(candidates)

        if decision.outcome == DecisionOutcome.NO_MATCH:
            return AutoMapDetail(
                provider_order_id=provider_order_id,
                outcome="left_unlinked",
                score=candidates[0].score if candidates else None,
                reason=decision.reason,
            )

        candidate = decision.candidate
        if decision.outcome == DecisionOutcome.REVIEW:
            existing = self.repository.find_pending_link(provider_order_id, candidate.storefront_order_id)
            if existing is not None:
                return AutoMapDetail(
                    provider_order_id=provider_order_id,
                    outcome="left_unlinked",
                    storefront_order_id=candidate.storefront_order_id,
                    score=candidate.score,
                    reason=f"Already awaiting verification (link {existing.id})",
                )
            status = LinkStatus.PENDING_VERIFICATION
        else:
            status = LinkStatus.ACTIVE

        link = self.lifecycle.create_link(
            provider_order_id=provider_order_id,
            storefront_order_id=candidate.storefront_order_id,
            classification=OrderClassification.NORMAL,
            link_type=LinkType.AUTOMATIC,
            notes=decision.reason,
            initial_status=status,
            confidence=candidate.score,
            match_details={
                "reasons": candidate.reasons,
                "features": candidate.features,
                "margin": decision.margin,
            },
        )
        if status == LinkStatus.ACTIVE:
            self._archive_superseded_pending(link)
        return AutoMapDetail(
            provider_order_id=provider_order_id,
            outcome="linked" if status == LinkStatus.ACTIVE else "pending_review",
            storefront_order_id=candidate.storefront_order_id,
            score=candidate.score,
            reason=decision.reason,
        )
