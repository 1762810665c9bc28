"""Order reconciliation API endpoints.

Reconciliation errors are not caught here: they propagate to the
ReconciliationError handler registered in main.py, which renders them with
their code and HTTP status.
"""

import logging
from dataclasses import asdict
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Response, status
from sqlalchemy.orm import Session

from database import get_db
from models.order_link import LinkStatus, OrderClassification
from .lifecycle import UNSET
from .schemas import (
    AutoMapRequest,
    AutoMapResponse,
    CandidateListResponse,
    CreateOrderLinkRequest,
    LinkStatusResponse,
    MappingStatsSchema,
    OrderLinkListResponse,
    OrderLinkSchema,
    ProviderOrderSearchResponse,
    UnmappedProviderOrderListResponse,
    UpdateOrderLinkRequest,
    VerifyLinksRequest,
    VerifyLinksResponse,
)
from .search import LinkFilters
from .service import OrderReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/order-links", tags=["order-links"])
provider_orders_router = APIRouter(prefix="/api/v1/provider-orders", tags=["provider-orders"])


def get_operator_id(x_operator_id: Optional[str] = Header(None)) -> Optional[str]:
    """Operator identity recorded as linked_by.

    Authentication happens upstream; the header value is taken verbatim.
    """
    if x_operator_id is None:
        return None
    return x_operator_id.strip() or None


def get_service(db: Session = Depends(get_db)) -> OrderReconciliationService:
    return OrderReconciliationService(db)


@router.post("", response_model=OrderLinkSchema, status_code=status.HTTP_201_CREATED)
def create_order_link(
    request: CreateOrderLinkRequest,
    service: OrderReconciliationService = Depends(get_service),
    operator_id: Optional[str] = Depends(get_operator_id),
):
    """Link a provider order to a storefront order, or classify it.

    Corrective and gift orders are sent without storefront_order_id.

    Returns:
        The new active link

    Raises:
        404: Provider or storefront order not found
        409: Provider order already has an active link
        422: Classification and storefront order disagree, or link_type is automatic
    """
    link = service.create_order_mapping(
        provider_order_id=request.provider_order_id,
        storefront_order_id=request.storefront_order_id,
        classification=request.classification,
        link_type=request.link_type,
        notes=request.notes,
        linked_by=operator_id,
    )
    return OrderLinkSchema.model_validate(link)


@router.get("", response_model=OrderLinkListResponse)
def list_order_links(
    classification: Optional[OrderClassification] = Query(None, description="Filter by classification"),
    mapped_status: Optional[str] = Query(
        None, pattern="^(mapped|unmapped)$", description="mapped = active links, unmapped = any other status"
    ),
    link_status: Optional[LinkStatus] = Query(None, description="Filter by link status"),
    search_query: Optional[str] = Query(None, description="Provider external id, recipient, order number or customer"),
    date_from: Optional[date] = Query(None, description="Links created on or after this day"),
    date_to: Optional[date] = Query(None, description="Links created on or before this day"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: OrderReconciliationService = Depends(get_service),
):
    """List links with their order summaries, newest first, plus mapping stats."""
    filters = LinkFilters(
        classification=classification,
        mapped_status=mapped_status,
        link_status=link_status,
        search_query=search_query,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    result = service.get_order_mappings(filters)
    return OrderLinkListResponse(
        items=result["links"],
        total=result["total"],
        limit=limit,
        offset=offset,
        stats=MappingStatsSchema(**result["stats"].to_dict()),
    )


@router.get("/stats", response_model=MappingStatsSchema)
def get_mapping_stats(service: OrderReconciliationService = Depends(get_service)):
    """Mapping coverage, derived from the current links."""
    return MappingStatsSchema(**service.get_stats().to_dict())


@router.get("/storefront/{storefront_order_id}", response_model=LinkStatusResponse)
def get_link_status(
    storefront_order_id: int,
    service: OrderReconciliationService = Depends(get_service),
):
    """Links referencing a storefront order (any status)."""
    return LinkStatusResponse(**service.get_link_status(storefront_order_id))


@router.post("/auto-map", response_model=AutoMapResponse)
def auto_map_orders(
    request: Optional[AutoMapRequest] = None,
    service: OrderReconciliationService = Depends(get_service),
):
    """Run one auto-mapping batch over provider orders without an active link."""
    request = request or AutoMapRequest()
    result = service.auto_map_orders(
        max_orders=request.max_orders,
        time_budget_seconds=request.time_budget_seconds,
    )
    return AutoMapResponse(**asdict(result))


@router.post("/verify", response_model=VerifyLinksResponse)
def verify_links(
    request: Optional[VerifyLinksRequest] = None,
    service: OrderReconciliationService = Depends(get_service),
):
    """Mark live links whose orders have vanished as broken."""
    link_ids = request.link_ids if request else None
    report = service.verify_links(link_ids)
    return VerifyLinksResponse(
        checked=report.checked,
        broken_provider_deleted=report.broken_provider_deleted,
        broken_storefront_deleted=report.broken_storefront_deleted,
    )


@router.patch("/{link_id}", response_model=OrderLinkSchema)
def update_order_link(
    link_id: UUID,
    request: UpdateOrderLinkRequest,
    service: OrderReconciliationService = Depends(get_service),
    operator_id: Optional[str] = Depends(get_operator_id),
):
    """Correct a link's storefront order and/or notes.

    Changing the storefront order re-activates the link as an operator
    override. Only fields present in the body are applied.
    """
    fields = request.model_fields_set
    link = service.update_link(
        link_id,
        new_storefront_order_id=request.storefront_order_id if "storefront_order_id" in fields else UNSET,
        notes=request.notes if "notes" in fields else UNSET,
        linked_by=operator_id,
    )
    return OrderLinkSchema.model_validate(link)


@router.post("/{link_id}/confirm", response_model=OrderLinkSchema)
def confirm_order_link(
    link_id: UUID,
    service: OrderReconciliationService = Depends(get_service),
    operator_id: Optional[str] = Depends(get_operator_id),
):
    """Confirm a link awaiting verification."""
    link = service.confirm_link(link_id, linked_by=operator_id)
    return OrderLinkSchema.model_validate(link)


@router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_order_link(
    link_id: UUID,
    service: OrderReconciliationService = Depends(get_service),
    operator_id: Optional[str] = Depends(get_operator_id),
):
    """Archive a link. Archiving an archived link succeeds without change."""
    service.remove_link(link_id, linked_by=operator_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@provider_orders_router.get("/unmapped", response_model=UnmappedProviderOrderListResponse)
def list_unmapped_provider_orders(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: OrderReconciliationService = Depends(get_service),
):
    """Provider orders without an active link, with suggested storefront orders."""
    result = service.get_unmapped_provider_orders(limit=limit, offset=offset)
    return UnmappedProviderOrderListResponse(items=result["orders"], total=result["total"], limit=limit, offset=offset)


@provider_orders_router.get("/search", response_model=ProviderOrderSearchResponse)
def search_provider_orders(
    q: str = Query("", description="External id, recipient name or internal id"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: OrderReconciliationService = Depends(get_service),
):
    """Search provider orders, newest first."""
    items = service.search_provider_orders(q, limit=limit, offset=offset)
    return ProviderOrderSearchResponse(items=items, query=q, limit=limit, offset=offset)


@provider_orders_router.get("/{provider_order_id}/candidates", response_model=CandidateListResponse)
def get_candidates(
    provider_order_id: int,
    service: OrderReconciliationService = Depends(get_service),
):
    """All storefront candidates in the matching window, best first."""
    candidates = service.get_candidates(provider_order_id)
    return CandidateListResponse(
        provider_order_id=provider_order_id,
        candidates=[c.to_dict() for c in candidates],
    )
