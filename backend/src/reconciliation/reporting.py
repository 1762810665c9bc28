"""Mapping coverage statistics.

Derived from the link table on every call; nothing is cached or counted
incrementally, so the numbers always agree with what the listings show.
"""

import logging
from dataclasses import dataclass, asdict

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from models.order_link import OrderLink, LinkStatus, OrderClassification
from models.provider_order import ProviderOrder
from .classifier import classification_counts
from .status import BROKEN_STATUSES

logger = logging.getLogger(__name__)


@dataclass
class MappingStats:
    """Coverage snapshot.

    mapped_orders counts provider orders with an active link, classified
    (corrective/gift) orders included. mapped + unmapped == total.
    """
    total_provider_orders: int
    mapped_orders: int
    unmapped_orders: int
    mapping_percentage: float
    normal_orders: int
    corrective_orders: int
    gift_orders: int
    pending_review_orders: int
    broken_links: int

    def to_dict(self) -> dict:
        return asdict(self)


def mapping_percentage(mapped: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(100.0 * mapped / total, 2)


def compute_stats(db: Session) -> MappingStats:
    """Compute coverage statistics over the current link table."""
    total = db.execute(select(func.count(ProviderOrder.id))).scalar_one()

    # Inner join keeps links to vanished provider orders out of the mapped count
    mapped = db.execute(
        select(func.count(func.distinct(OrderLink.provider_order_id)))
        .join(ProviderOrder, ProviderOrder.id == OrderLink.provider_order_id)
        .where(OrderLink.link_status == LinkStatus.ACTIVE)
    ).scalar_one()

    pending = db.execute(
        select(func.count(func.distinct(OrderLink.provider_order_id)))
        .where(OrderLink.link_status == LinkStatus.PENDING_VERIFICATION)
    ).scalar_one()

    broken = db.execute(
        select(func.count(OrderLink.id)).where(OrderLink.link_status.in_(list(BROKEN_STATUSES)))
    ).scalar_one()

    counts = classification_counts(db)

    stats = MappingStats(
        total_provider_orders=total,
        mapped_orders=mapped,
        unmapped_orders=total - mapped,
        mapping_percentage=mapping_percentage(mapped, total),
        normal_orders=counts[OrderClassification.NORMAL],
        corrective_orders=counts[OrderClassification.CORRECTIVE],
        gift_orders=counts[OrderClassification.GIFT],
        pending_review_orders=pending,
        broken_links=broken,
    )
    logger.debug(f"Mapping stats: {stats.mapped_orders}/{stats.total_provider_orders} mapped")
    return stats
