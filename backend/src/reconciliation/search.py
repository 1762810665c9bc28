"""Read-side listings and search over orders and links.

All functions here are reads, except links_for_storefront_order which records
breakage it stumbles upon (the caller commits).
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from config import Settings, get_settings
from models.order_link import OrderLink, LinkStatus, OrderClassification
from models.provider_order import ProviderOrder, ProviderOrderItem
from models.storefront_order import StorefrontOrder
from .errors import ExternalInconsistencyError
from .lifecycle import LinkLifecycleManager
from .matcher import CandidateMatcher
from .status import LIVE_STATUSES

logger = logging.getLogger(__name__)


@dataclass
class LinkFilters:
    """Filters for the link listing.

    mapped_status: "mapped" selects active links, "unmapped" every other status.
    date_from/date_to bound the link creation date; date_to covers the whole day.
    """
    classification: Optional[OrderClassification] = None
    mapped_status: Optional[str] = None
    link_status: Optional[LinkStatus] = None
    search_query: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: int = 50
    offset: int = 0


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _item_counts():
    return (
        select(
            ProviderOrderItem.provider_order_id.label("provider_order_id"),
            func.count(ProviderOrderItem.id).label("item_count"),
        )
        .group_by(ProviderOrderItem.provider_order_id)
        .subquery()
    )


def _active_provider_order_ids():
    return select(OrderLink.provider_order_id).where(OrderLink.link_status == LinkStatus.ACTIVE)


def search_provider_orders(
    db: Session,
    term: Optional[str],
    limit: int = 50,
    offset: int = 0,
) -> List[dict]:
    """Find provider orders by external id or recipient name.

    Matching is a case-insensitive substring match; a numeric term also
    matches the internal id exactly. A blank term lists everything.

    Returns:
        Order summaries, newest first, each with item_count
    """
    counts = _item_counts()
    query = (
        select(ProviderOrder, func.coalesce(counts.c.item_count, 0))
        .outerjoin(counts, counts.c.provider_order_id == ProviderOrder.id)
    )

    term = (term or "").strip()
    if term:
        pattern = _like_pattern(term)
        conditions = [
            ProviderOrder.external_id.ilike(pattern, escape="\\"),
            ProviderOrder.recipient_name.ilike(pattern, escape="\\"),
        ]
        if term.isdigit():
            conditions.append(ProviderOrder.id == int(term))
        query = query.where(or_(*conditions))

    query = query.order_by(ProviderOrder.created_at.desc(), ProviderOrder.id.desc()).limit(limit).offset(offset)

    results = []
    for order, item_count in db.execute(query).all():
        summary = order.to_summary()
        summary["item_count"] = item_count
        results.append(summary)

    logger.debug(f"Provider order search '{term}': {len(results)} results")
    return results


def list_unmapped_provider_orders(
    db: Session,
    limit: int = 50,
    offset: int = 0,
    settings: Optional[Settings] = None,
    matcher: Optional[CandidateMatcher] = None,
) -> dict:
    """Provider orders without an active link, newest first.

    Orders with only a pending_verification link are still unmapped. Each
    entry carries the matcher's suggestions and its pending link ids.

    Returns:
        {"orders": [...], "total": int}
    """
    matcher = matcher or CandidateMatcher(db, settings or get_settings())
    unmapped = ProviderOrder.id.not_in(_active_provider_order_ids())

    total = db.execute(select(func.count(ProviderOrder.id)).where(unmapped)).scalar_one()

    counts = _item_counts()
    rows = db.execute(
        select(ProviderOrder, func.coalesce(counts.c.item_count, 0))
        .outerjoin(counts, counts.c.provider_order_id == ProviderOrder.id)
        .where(unmapped)
        .order_by(ProviderOrder.created_at.desc(), ProviderOrder.id.desc())
        .limit(limit)
        .offset(offset)
    ).all()

    order_ids = [order.id for order, _ in rows]
    pending = {}
    if order_ids:
        for link in db.execute(
            select(OrderLink).where(
                OrderLink.provider_order_id.in_(order_ids),
                OrderLink.link_status == LinkStatus.PENDING_VERIFICATION,
            )
        ).scalars():
            pending.setdefault(link.provider_order_id, []).append(str(link.id))

    orders = []
    for order, item_count in rows:
        summary = order.to_summary()
        summary["item_count"] = item_count
        summary["pending_link_ids"] = pending.get(order.id, [])
        summary["suggestions"] = [c.to_dict() for c in matcher.suggest(order)]
        orders.append(summary)

    return {"orders": orders, "total": total}


def list_order_links(db: Session, filters: Optional[LinkFilters] = None) -> dict:
    """Links joined with their order summaries, newest first.

    Returns:
        {"links": [...], "total": int}
    """
    filters = filters or LinkFilters()

    conditions = []
    if filters.classification is not None:
        conditions.append(OrderLink.classification == filters.classification)
    if filters.mapped_status == "mapped":
        conditions.append(OrderLink.link_status == LinkStatus.ACTIVE)
    elif filters.mapped_status == "unmapped":
        conditions.append(OrderLink.link_status != LinkStatus.ACTIVE)
    if filters.link_status is not None:
        conditions.append(OrderLink.link_status == filters.link_status)
    if filters.search_query and filters.search_query.strip():
        pattern = _like_pattern(filters.search_query.strip())
        conditions.append(
            or_(
                ProviderOrder.external_id.ilike(pattern, escape="\\"),
                ProviderOrder.recipient_name.ilike(pattern, escape="\\"),
                StorefrontOrder.order_number.ilike(pattern, escape="\\"),
                StorefrontOrder.customer_name.ilike(pattern, escape="\\"),
            )
        )
    if filters.date_from is not None:
        conditions.append(OrderLink.created_at >= _start_of_day(filters.date_from))
    if filters.date_to is not None:
        conditions.append(OrderLink.created_at < _start_of_day(filters.date_to + timedelta(days=1)))

    base = (
        select(OrderLink, ProviderOrder, StorefrontOrder)
        .outerjoin(ProviderOrder, ProviderOrder.id == OrderLink.provider_order_id)
        .outerjoin(StorefrontOrder, StorefrontOrder.id == OrderLink.storefront_order_id)
        .where(*conditions)
    )

    total = db.execute(select(func.count()).select_from(base.subquery())).scalar_one()

    rows = db.execute(
        base.order_by(OrderLink.created_at.desc(), OrderLink.id.desc())
        .limit(filters.limit)
        .offset(filters.offset)
    ).all()

    links = []
    for link, provider_order, storefront_order in rows:
        entry = link.to_dict()
        entry["provider_order"] = provider_order.to_summary() if provider_order else None
        entry["storefront_order"] = storefront_order.to_summary() if storefront_order else None
        links.append(entry)

    return {"links": links, "total": total}


def links_for_storefront_order(db: Session, storefront_order_id: int) -> List[OrderLink]:
    """All links referencing a storefront order, any status, oldest first.

    A live link whose provider order has vanished is marked broken before it
    is returned.
    """
    lifecycle = LinkLifecycleManager(db)
    links = lifecycle.repository.links_for_storefront_order(storefront_order_id)

    changed = False
    for link in links:
        if link.link_status not in LIVE_STATUSES:
            continue
        try:
            lifecycle.resolve_link_orders(link)
        except ExternalInconsistencyError as e:
            lifecycle.mark_broken(link, e)
            changed = True
    if changed:
        lifecycle.repository.flush()

    return links
