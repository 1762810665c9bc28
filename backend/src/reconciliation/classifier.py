"""Classification of provider orders that have no storefront counterpart.

A corrective (reprint/replacement) or gift order is recorded as an active
link with a null storefront order. That link keeps the order out of the
unlinked queue and counts it as mapped.
"""

from typing import Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from models.order_link import OrderLink, LinkStatus, LinkType, OrderClassification
from .errors import LinkValidationError
from .lifecycle import LinkLifecycleManager

CLASSIFIED = (OrderClassification.CORRECTIVE, OrderClassification.GIFT)


def classify_order(
    db: Session,
    provider_order_id: int,
    classification: OrderClassification,
    notes: Optional[str] = None,
    linked_by: Optional[str] = None,
    link_type: LinkType = LinkType.MANUAL_SYSTEM,
) -> OrderLink:
    """Mark a provider order as deliberately unlinked.

    Raises:
        LinkValidationError: classification is normal
        NotFoundError: provider order does not exist
        ConflictError: provider order already has an active link
    """
    if classification not in CLASSIFIED:
        raise LinkValidationError(
            "Only corrective or gift orders can be classified without a storefront order",
            details={"rule": "classification_required", "classification": classification.value},
        )
    return LinkLifecycleManager(db).create_link(
        provider_order_id=provider_order_id,
        storefront_order_id=None,
        classification=classification,
        link_type=link_type,
        notes=notes,
        linked_by=linked_by,
    )


def classified_provider_order_ids():
    """Subquery of provider orders carrying an active corrective/gift link."""
    return select(OrderLink.provider_order_id).where(
        OrderLink.link_status == LinkStatus.ACTIVE,
        OrderLink.classification.in_(CLASSIFIED),
    )


def is_classified(db: Session, provider_order_id: int) -> bool:
    query = classified_provider_order_ids().where(OrderLink.provider_order_id == provider_order_id)
    return db.execute(query.limit(1)).first() is not None


def classification_counts(db: Session) -> Dict[OrderClassification, int]:
    """Active links per classification."""
    rows = db.execute(
        select(OrderLink.classification, func.count(OrderLink.id))
        .where(OrderLink.link_status == LinkStatus.ACTIVE)
        .group_by(OrderLink.classification)
    ).all()
    counts = {classification: 0 for classification in OrderClassification}
    for classification, count in rows:
        counts[OrderClassification(classification)] = count
    return counts
