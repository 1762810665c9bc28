"""Reconciliation service facade.

One method per API operation. Each write operation is one transaction: the
facade commits on success and rolls back when a ReconciliationError (or any
other exception) escapes. The auto-mapper manages its own per-order commits.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from config import Settings, get_settings
from models.order_link import OrderLink, LinkStatus, LinkType, OrderClassification
from .auto_mapper import AutoMapper
from .classifier import classify_order
from .errors import LinkValidationError
from .lifecycle import UNSET, IntegrityReport, LinkLifecycleManager
from .matcher import CandidateMatcher
from .ports import AutoMapResult, MatchCandidate
from .reporting import MappingStats, compute_stats
from .repository import OrderLinkRepository
from . import search

logger = logging.getLogger(__name__)

OPERATOR_LINK_TYPES = frozenset({LinkType.MANUAL_SYSTEM, LinkType.MANUAL_USER_OVERRIDE})


class OrderReconciliationService:
    """Entry point for HTTP handlers and scripts."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.repository = OrderLinkRepository(db)
        self.lifecycle = LinkLifecycleManager(db, self.repository)

    def create_order_mapping(
        self,
        provider_order_id: int,
        storefront_order_id: Optional[int] = None,
        classification: OrderClassification = OrderClassification.NORMAL,
        link_type: LinkType = LinkType.MANUAL_SYSTEM,
        notes: Optional[str] = None,
        linked_by: Optional[str] = None,
    ) -> OrderLink:
        """Create an operator link, or classify a corrective/gift order.

        link_type is manual_system or manual_user_override; automatic links
        are only created by the auto-mapper.

        Raises:
            NotFoundError: Provider or storefront order does not exist
            LinkValidationError: Classification and storefront id disagree, or
                link_type is automatic
            ConflictError: Provider order already has an active link
        """
        if link_type not in OPERATOR_LINK_TYPES:
            raise LinkValidationError(
                f"Operators cannot create {link_type.value} links",
                details={"rule": "operator_link_type", "link_type": link_type.value},
            )
        if classification != OrderClassification.NORMAL and storefront_order_id is None:
            return self._write(
                lambda: classify_order(
                    self.db,
                    provider_order_id,
                    classification,
                    notes=notes,
                    linked_by=linked_by,
                    link_type=link_type,
                )
            )
        return self._write(
            lambda: self.lifecycle.create_link(
                provider_order_id=provider_order_id,
                storefront_order_id=storefront_order_id,
                classification=classification,
                link_type=link_type,
                notes=notes,
                linked_by=linked_by,
            )
        )

    def update_link(
        self,
        link_id: UUID,
        new_storefront_order_id=UNSET,
        notes=UNSET,
        linked_by: Optional[str] = None,
    ) -> OrderLink:
        return self._write(
            lambda: self.lifecycle.correct_link(
                link_id,
                new_storefront_order_id=new_storefront_order_id,
                notes=notes,
                linked_by=linked_by,
            )
        )

    def confirm_link(self, link_id: UUID, linked_by: Optional[str] = None) -> OrderLink:
        return self._write(lambda: self.lifecycle.confirm_link(link_id, linked_by=linked_by))

    def remove_link(self, link_id: UUID, linked_by: Optional[str] = None) -> OrderLink:
        return self._write(lambda: self.lifecycle.remove_link(link_id, linked_by=linked_by))

    def get_link_status(self, storefront_order_id: int) -> dict:
        """Links referencing a storefront order, with the active one singled out.

        Vanished provider orders found on the way are recorded as broken.
        """
        links = self._write(lambda: search.links_for_storefront_order(self.db, storefront_order_id))
        active = next((link for link in links if link.link_status == LinkStatus.ACTIVE), None)

        entries = []
        for link in links:
            entry = link.to_dict()
            provider_order = self.repository.get_provider_order(link.provider_order_id)
            entry["provider_order"] = provider_order.to_summary() if provider_order else None
            entries.append(entry)

        return {
            "storefront_order_id": storefront_order_id,
            "is_linked": active is not None,
            "active_link_id": str(active.id) if active else None,
            "links": entries,
        }

    def get_order_mappings(self, filters: Optional[search.LinkFilters] = None) -> dict:
        """Filtered links plus the mapping snapshot they were listed against.

        Returns:
            {"links": [...], "total": int, "stats": MappingStats}
        """
        result = search.list_order_links(self.db, filters)
        result["stats"] = self.get_stats()
        return result

    def get_stats(self) -> MappingStats:
        return compute_stats(self.db)

    def auto_map_orders(
        self,
        max_orders: Optional[int] = None,
        time_budget_seconds: Optional[float] = None,
    ) -> AutoMapResult:
        return AutoMapper(self.db, self.settings).run(
            max_orders=max_orders,
            time_budget_seconds=time_budget_seconds,
        )

    def verify_links(self, link_ids: Optional[List[UUID]] = None) -> IntegrityReport:
        return self._write(lambda: self.lifecycle.verify_links(link_ids))

    def get_unmapped_provider_orders(self, limit: int = 50, offset: int = 0) -> dict:
        return search.list_unmapped_provider_orders(self.db, limit=limit, offset=offset, settings=self.settings)

    def search_provider_orders(self, term: Optional[str], limit: int = 50, offset: int = 0) -> List[dict]:
        return search.search_provider_orders(self.db, term, limit=limit, offset=offset)

    def get_candidates(self, provider_order_id: int) -> List[MatchCandidate]:
        provider_order = self.repository.require_provider_order(provider_order_id)
        return CandidateMatcher(self.db, self.settings).match(provider_order)

    def _write(self, operation):
        try:
            result = operation()
            self.db.commit()
            return result
        except Exception:
            self.db.rollback()
            raise
