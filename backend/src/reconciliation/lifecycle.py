"""Order link lifecycle management.

Owns every status change of an OrderLink: creation, correction,
confirmation, archival and breakage detection. All transitions go through
reconciliation.status.validate_transition; writes that produce an active link
go through the repository's single-active-link guard.

The manager only flushes. Committing is left to the caller (service facade
or auto-mapper) so a batch can commit per provider order.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from models.order_link import OrderLink, LinkStatus, LinkType, OrderClassification
from observability.metrics import links_created_total, link_transitions_total
from .errors import ExternalInconsistencyError, LinkValidationError
from .repository import OrderLinkRepository
from .status import BROKEN_STATUSES, StateTransitionError, validate_transition

logger = logging.getLogger(__name__)

UNSET = object()


@dataclass
class IntegrityReport:
    """Result of a breakage sweep."""
    checked: int = 0
    broken_provider_deleted: int = 0
    broken_storefront_deleted: int = 0

    @property
    def broken(self) -> int:
        return self.broken_provider_deleted + self.broken_storefront_deleted


def log_extra(link: OrderLink) -> dict:
    """Identifiers attached to lifecycle log records."""
    return {
        "link_id": str(link.id),
        "provider_order_id": link.provider_order_id,
        "storefront_order_id": link.storefront_order_id,
        "link_status": link.link_status.value,
    }


def check_classification(classification: OrderClassification, storefront_order_id: Optional[int]) -> None:
    """Enforce the classification/storefront pairing.

    Raises:
        LinkValidationError: corrective/gift with a storefront order, or a
            normal link without one
    """
    if classification != OrderClassification.NORMAL and storefront_order_id is not None:
        raise LinkValidationError(
            f"A {classification.value} order has no storefront counterpart; "
            f"storefront_order_id must be empty",
            details={
                "rule": "classified_without_storefront",
                "classification": classification.value,
                "storefront_order_id": storefront_order_id,
            },
        )
    if classification == OrderClassification.NORMAL and storefront_order_id is None:
        raise LinkValidationError(
            "A normal link requires a storefront_order_id",
            details={"rule": "normal_requires_storefront", "classification": classification.value},
        )


class LinkLifecycleManager:
    """Creates and transitions order links."""

    def __init__(self, db: Session, repository: Optional[OrderLinkRepository] = None):
        self.db = db
        self.repository = repository or OrderLinkRepository(db)

    def create_link(
        self,
        provider_order_id: int,
        storefront_order_id: Optional[int],
        classification: OrderClassification = OrderClassification.NORMAL,
        link_type: LinkType = LinkType.MANUAL_SYSTEM,
        notes: Optional[str] = None,
        linked_by: Optional[str] = None,
        initial_status: LinkStatus = LinkStatus.ACTIVE,
        confidence: Optional[float] = None,
        match_details: Optional[dict] = None,
    ) -> OrderLink:
        """Create a new link for a provider order.

        Corrective and gift links skip verification and start active. Only
        automatic links may start in pending_verification. Earlier links of
        the same provider order are left as they are.

        Raises:
            NotFoundError: Provider or storefront order does not exist
            LinkValidationError: Classification or initial status invalid
            ConflictError: Provider order already has an active link
        """
        self.repository.require_provider_order(provider_order_id)
        check_classification(classification, storefront_order_id)
        if storefront_order_id is not None:
            self.repository.require_storefront_order(storefront_order_id)

        if classification != OrderClassification.NORMAL:
            initial_status = LinkStatus.ACTIVE
        if initial_status == LinkStatus.PENDING_VERIFICATION and link_type != LinkType.AUTOMATIC:
            raise LinkValidationError(
                "Only automatic links can await verification; operator links start active",
                details={"rule": "manual_links_start_active", "link_type": link_type.value},
            )
        self._transition(None, initial_status)

        now = datetime.now(timezone.utc)
        link = OrderLink(
            provider_order_id=provider_order_id,
            storefront_order_id=storefront_order_id,
            classification=classification,
            link_type=link_type,
            link_status=initial_status,
            linked_by=None if link_type == LinkType.AUTOMATIC else linked_by,
            notes=notes,
            confidence=confidence,
            match_details=match_details,
            link_timestamp=now,
            created_at=now,
            updated_at=now,
        )
        self.repository.insert_link(link)

        links_created_total.labels(
            link_type=link_type.value,
            link_status=initial_status.value,
            classification=classification.value,
        ).inc()
        logger.info(
            f"Created {initial_status.value} {link_type.value} link {link.id}: "
            f"provider {provider_order_id} -> storefront {storefront_order_id} "
            f"({classification.value})",
            extra=log_extra(link),
        )
        return link

    def correct_link(
        self,
        link_id: UUID,
        new_storefront_order_id=UNSET,
        notes=UNSET,
        linked_by: Optional[str] = None,
    ) -> OrderLink:
        """Reassign a link's storefront order and/or update its notes.

        A target change re-activates the link (pending and broken links
        included) as an operator override; the provider order must still
        exist. A notes-only update leaves status and target untouched.

        Raises:
            NotFoundError: Unknown link, vanished provider order or unknown
                storefront order
            LinkValidationError: Link is archived or classified
            ConflictError: Another active link exists for the provider order
        """
        link = self.repository.get_link(link_id)

        if new_storefront_order_id is not UNSET:
            if link.classification != OrderClassification.NORMAL:
                raise LinkValidationError(
                    f"Link {link_id} is classified as {link.classification.value}; "
                    f"it cannot point at a storefront order",
                    details={"rule": "classified_without_storefront", "link_id": str(link_id)},
                )
            check_classification(link.classification, new_storefront_order_id)
            self.repository.require_provider_order(link.provider_order_id)
            self.repository.require_storefront_order(new_storefront_order_id)

            previous_status = link.link_status
            if previous_status != LinkStatus.ACTIVE:
                self._transition(previous_status, LinkStatus.ACTIVE, link_id=link_id)

            link.storefront_order_id = new_storefront_order_id
            link.link_status = LinkStatus.ACTIVE
            link.link_type = LinkType.MANUAL_USER_OVERRIDE
            link.linked_by = linked_by
            link.link_timestamp = datetime.now(timezone.utc)
            if notes is not UNSET:
                link.notes = notes
            self.repository.save_activation(link)

            if previous_status != LinkStatus.ACTIVE:
                link_transitions_total.labels(
                    from_status=previous_status.value, to_status=LinkStatus.ACTIVE.value
                ).inc()
            logger.info(
                f"Corrected link {link_id}: provider {link.provider_order_id} -> "
                f"storefront {new_storefront_order_id} ({previous_status.value} -> active)",
                extra=log_extra(link),
            )
        elif notes is not UNSET:
            link.notes = notes
            self.repository.flush()

        return link

    def confirm_link(self, link_id: UUID, linked_by: Optional[str] = None) -> OrderLink:
        """Operator confirms a pending automatic link.

        Confirming an already active link is a no-op.

        Raises:
            NotFoundError: Unknown link
            LinkValidationError: Link is archived or broken
            ConflictError: Another active link exists for the provider order
        """
        link = self.repository.get_link(link_id)
        if link.link_status == LinkStatus.ACTIVE:
            return link

        self._transition(link.link_status, LinkStatus.ACTIVE, link_id=link_id)
        if link.link_status in BROKEN_STATUSES:
            raise LinkValidationError(
                f"Link {link_id} is {link.link_status.value}; correct its target instead of confirming",
                details={"rule": "broken_needs_correction", "link_id": str(link_id)},
            )

        link.link_status = LinkStatus.ACTIVE
        link.linked_by = linked_by
        link.link_timestamp = datetime.now(timezone.utc)
        self.repository.save_activation(link)

        link_transitions_total.labels(
            from_status=LinkStatus.PENDING_VERIFICATION.value, to_status=LinkStatus.ACTIVE.value
        ).inc()
        logger.info(f"Confirmed link {link_id} for provider order {link.provider_order_id}", extra=log_extra(link))
        return link

    def remove_link(self, link_id: UUID, linked_by: Optional[str] = None) -> OrderLink:
        """Archive a link, broken links included. Removing an archived link is a no-op.

        Raises:
            NotFoundError: Unknown link
        """
        link = self.repository.get_link(link_id)
        if link.link_status == LinkStatus.ARCHIVED:
            logger.debug(f"Link {link_id} already archived")
            return link

        previous_status = link.link_status
        self._transition(previous_status, LinkStatus.ARCHIVED, link_id=link_id)

        now = datetime.now(timezone.utc)
        archive_note = f"Archived by {linked_by or 'system'} at {now.isoformat()}"
        link.notes = f"{link.notes}\n{archive_note}" if link.notes else archive_note
        link.link_status = LinkStatus.ARCHIVED
        if linked_by:
            link.linked_by = linked_by
        self.repository.flush()

        link_transitions_total.labels(
            from_status=previous_status.value, to_status=LinkStatus.ARCHIVED.value
        ).inc()
        logger.info(
            f"Archived link {link_id} for provider order {link.provider_order_id} (was {previous_status.value})",
            extra=log_extra(link),
        )
        return link

    def verify_links(self, link_ids: Optional[Iterable[UUID]] = None) -> IntegrityReport:
        """Mark live links whose orders vanished from the order store as broken."""
        report = IntegrityReport()
        for link in self.repository.live_links(link_ids):
            report.checked += 1
            try:
                self.resolve_link_orders(link)
            except ExternalInconsistencyError as e:
                new_status = self.mark_broken(link, e)
                if new_status == LinkStatus.BROKEN_PROVIDER_DELETED:
                    report.broken_provider_deleted += 1
                else:
                    report.broken_storefront_deleted += 1
        if report.broken:
            self.repository.flush()
            logger.warning(
                f"Integrity sweep: {report.broken} of {report.checked} live links broken "
                f"({report.broken_provider_deleted} provider, "
                f"{report.broken_storefront_deleted} storefront)"
            )
        return report

    def resolve_link_orders(self, link: OrderLink):
        """Load both orders referenced by a link.

        Raises:
            ExternalInconsistencyError: A referenced order no longer exists
        """
        provider_order = self.repository.get_provider_order(link.provider_order_id)
        if provider_order is None:
            raise ExternalInconsistencyError(
                f"Provider order {link.provider_order_id} referenced by link {link.id} no longer exists",
                missing="provider",
            )
        storefront_order = None
        if link.storefront_order_id is not None:
            storefront_order = self.repository.get_storefront_order(link.storefront_order_id)
            if storefront_order is None:
                raise ExternalInconsistencyError(
                    f"Storefront order {link.storefront_order_id} referenced by link {link.id} no longer exists",
                    missing="storefront",
                )
        return provider_order, storefront_order

    def mark_broken(self, link: OrderLink, error: ExternalInconsistencyError) -> LinkStatus:
        """Convert a detected inconsistency into the matching broken_* status."""
        new_status = (
            LinkStatus.BROKEN_PROVIDER_DELETED
            if error.missing == "provider"
            else LinkStatus.BROKEN_STOREFRONT_DELETED
        )
        previous_status = link.link_status
        self._transition(previous_status, new_status, link_id=link.id)
        link.link_status = new_status

        link_transitions_total.labels(
            from_status=previous_status.value, to_status=new_status.value
        ).inc()
        logger.warning(f"Link {link.id} marked {new_status.value}: {error.message}", extra=log_extra(link))
        return new_status

    def _transition(self, current: Optional[LinkStatus], new: LinkStatus, link_id=None) -> None:
        try:
            validate_transition(current, new)
        except StateTransitionError as e:
            raise LinkValidationError(
                str(e),
                details={
                    "rule": "link_status_transition",
                    "link_id": str(link_id) if link_id else None,
                    "from_status": current.value if current else None,
                    "to_status": new.value,
                },
            ) from e
