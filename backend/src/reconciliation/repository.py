"""Order link persistence.

The single-active-link rule is enforced by the partial unique index
uq_order_link_active_provider. Writes that can produce an active link are
flushed immediately so a concurrent winner surfaces here as IntegrityError,
which is turned into ConflictError. The pre-check only exists to give the
caller the id of the link that is in the way.
"""

import logging
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from models.order_link import OrderLink, LinkStatus
from models.provider_order import ProviderOrder
from models.storefront_order import StorefrontOrder
from observability.metrics import link_conflicts_total
from .errors import ConflictError, LinkValidationError, NotFoundError, TransientStoreError
from .status import LIVE_STATUSES

logger = logging.getLogger(__name__)


class OrderLinkRepository:
    """Data access for order links and the read-only order tables."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Order store (read-only)
    # ------------------------------------------------------------------

    def get_provider_order(self, provider_order_id: int) -> Optional[ProviderOrder]:
        return self._read(lambda: self.db.get(ProviderOrder, provider_order_id))

    def get_storefront_order(self, storefront_order_id: int) -> Optional[StorefrontOrder]:
        return self._read(lambda: self.db.get(StorefrontOrder, storefront_order_id))

    def require_provider_order(self, provider_order_id: int) -> ProviderOrder:
        order = self.get_provider_order(provider_order_id)
        if order is None:
            raise NotFoundError(
                f"Provider order {provider_order_id} not found",
                details={"provider_order_id": provider_order_id},
            )
        return order

    def require_storefront_order(self, storefront_order_id: int) -> StorefrontOrder:
        order = self.get_storefront_order(storefront_order_id)
        if order is None:
            raise NotFoundError(
                f"Storefront order {storefront_order_id} not found",
                details={"storefront_order_id": storefront_order_id},
            )
        return order

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def get_link(self, link_id: UUID) -> OrderLink:
        link = self._read(lambda: self.db.get(OrderLink, link_id))
        if link is None:
            raise NotFoundError(f"Order link {link_id} not found", details={"link_id": str(link_id)})
        return link

    def find_active_link(self, provider_order_id: int) -> Optional[OrderLink]:
        query = select(OrderLink).where(
            OrderLink.provider_order_id == provider_order_id,
            OrderLink.link_status == LinkStatus.ACTIVE,
        )
        return self._read(lambda: self.db.execute(query).scalars().first())

    def find_pending_link(self, provider_order_id: int, storefront_order_id: int) -> Optional[OrderLink]:
        query = select(OrderLink).where(
            OrderLink.provider_order_id == provider_order_id,
            OrderLink.storefront_order_id == storefront_order_id,
            OrderLink.link_status == LinkStatus.PENDING_VERIFICATION,
        )
        return self._read(lambda: self.db.execute(query).scalars().first())

    def links_for_provider_order(self, provider_order_id: int) -> List[OrderLink]:
        query = (
            select(OrderLink)
            .where(OrderLink.provider_order_id == provider_order_id)
            .order_by(OrderLink.created_at, OrderLink.id)
        )
        return self._read(lambda: list(self.db.execute(query).scalars().all()))

    def links_for_storefront_order(self, storefront_order_id: int) -> List[OrderLink]:
        query = (
            select(OrderLink)
            .where(OrderLink.storefront_order_id == storefront_order_id)
            .order_by(OrderLink.created_at, OrderLink.id)
        )
        return self._read(lambda: list(self.db.execute(query).scalars().all()))

    def live_links(self, link_ids: Optional[Iterable[UUID]] = None) -> List[OrderLink]:
        """Links still asserting a correspondence (active or pending)."""
        query = select(OrderLink).where(OrderLink.link_status.in_(list(LIVE_STATUSES)))
        if link_ids is not None:
            query = query.where(OrderLink.id.in_(list(link_ids)))
        return self._read(lambda: list(self.db.execute(query.order_by(OrderLink.created_at)).scalars().all()))

    def insert_link(self, link: OrderLink) -> OrderLink:
        """Insert a link, refusing a second active link for the provider order.

        Raises:
            ConflictError: If an active link already exists for the provider order
            TransientStoreError: On retryable database failures
        """
        if link.link_status == LinkStatus.ACTIVE:
            self._ensure_no_other_active(link)

        self.db.add(link)
        self._flush_guarded(link)
        return link

    def save_activation(self, link: OrderLink) -> OrderLink:
        """Flush a link that has just become active through the same guard."""
        self._ensure_no_other_active(link)
        self._flush_guarded(link)
        return link

    def flush(self) -> None:
        try:
            self.db.flush()
        except OperationalError as e:
            self.db.rollback()
            raise TransientStoreError("Database temporarily unavailable while saving order link") from e

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_no_other_active(self, link: OrderLink) -> None:
        existing = self.find_active_link(link.provider_order_id)
        if existing is not None and existing.id != link.id:
            link_conflicts_total.inc()
            raise ConflictError(
                f"Provider order {link.provider_order_id} already has an active link",
                details={
                    "provider_order_id": link.provider_order_id,
                    "existing_link_id": str(existing.id),
                    "existing_storefront_order_id": existing.storefront_order_id,
                },
            )

    def _flush_guarded(self, link: OrderLink) -> None:
        provider_order_id = link.provider_order_id
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            winner = self.find_active_link(provider_order_id)
            if winner is not None:
                link_conflicts_total.inc()
                logger.info(
                    f"Lost race for active link on provider order {provider_order_id} "
                    f"(winner {winner.id})"
                )
                raise ConflictError(
                    f"Provider order {provider_order_id} already has an active link",
                    details={
                        "provider_order_id": provider_order_id,
                        "existing_link_id": str(winner.id),
                        "existing_storefront_order_id": winner.storefront_order_id,
                    },
                ) from e
            raise LinkValidationError(
                f"Order link for provider order {provider_order_id} violates a table constraint",
                details={"provider_order_id": provider_order_id, "constraint": str(e.orig)},
            ) from e
        except OperationalError as e:
            self.db.rollback()
            raise TransientStoreError(
                f"Database temporarily unavailable while saving link for provider order {provider_order_id}",
                details={"provider_order_id": provider_order_id},
            ) from e

    def _read(self, fn):
        try:
            return fn()
        except OperationalError as e:
            raise TransientStoreError("Database temporarily unavailable while reading order links") from e
