"""Pydantic schemas for reconciliation endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from models.order_link import LinkStatus, LinkType, OrderClassification


class CreateOrderLinkRequest(BaseModel):
    """Request to link a provider order, or classify it as corrective/gift."""
    provider_order_id: int
    storefront_order_id: Optional[int] = None
    classification: OrderClassification = OrderClassification.NORMAL
    link_type: LinkType = Field(
        LinkType.MANUAL_SYSTEM,
        description="manual_system or manual_user_override; automatic is rejected",
    )
    notes: Optional[str] = Field(None, max_length=2000)


class UpdateOrderLinkRequest(BaseModel):
    """Correction of a link's target and/or notes.

    Only fields present in the request body are applied.
    """
    storefront_order_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=2000)


class OrderSummarySchema(BaseModel):
    """Compact order representation embedded in link listings."""
    model_config = ConfigDict(extra="allow")

    id: int
    total_amount: Optional[float] = None
    currency: Optional[str] = None
    created_at: Optional[datetime] = None


class OrderLinkSchema(BaseModel):
    """Order link as returned by the API."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    provider_order_id: int
    storefront_order_id: Optional[int]
    link_type: LinkType
    link_status: LinkStatus
    classification: OrderClassification
    confidence: Optional[float] = None
    match_details: Optional[Dict[str, Any]] = None
    linked_by: Optional[str] = None
    notes: Optional[str] = None
    link_timestamp: datetime
    created_at: datetime
    updated_at: datetime


class OrderLinkDetailSchema(OrderLinkSchema):
    """Order link with the summaries of both referenced orders."""
    provider_order: Optional[OrderSummarySchema] = None
    storefront_order: Optional[OrderSummarySchema] = None


class LinkStatusResponse(BaseModel):
    """Links referencing one storefront order."""
    storefront_order_id: int
    is_linked: bool
    active_link_id: Optional[UUID]
    links: List[OrderLinkDetailSchema]


class MappingStatsSchema(BaseModel):
    """Mapping coverage statistics."""
    total_provider_orders: int
    mapped_orders: int
    unmapped_orders: int
    mapping_percentage: float = Field(ge=0.0, le=100.0)
    normal_orders: int
    corrective_orders: int
    gift_orders: int
    pending_review_orders: int
    broken_links: int


class OrderLinkListResponse(BaseModel):
    """Filtered, paginated link listing with the current mapping snapshot."""
    items: List[OrderLinkDetailSchema]
    total: int
    limit: int
    offset: int
    stats: MappingStatsSchema


class MatchCandidateSchema(BaseModel):
    """Storefront order candidate with its score breakdown."""
    storefront_order_id: int
    score: float = Field(ge=0.0, le=1.0)
    reasons: List[str]
    time_gap_seconds: float
    features: Dict[str, float]
    order: Dict[str, Any]


class CandidateListResponse(BaseModel):
    provider_order_id: int
    candidates: List[MatchCandidateSchema]


class ProviderOrderSchema(BaseModel):
    """Provider order search result."""
    id: int
    external_id: Optional[str] = None
    recipient_name: Optional[str] = None
    total_amount: Optional[float] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    item_count: int = 0


class UnmappedProviderOrderSchema(ProviderOrderSchema):
    """Provider order without an active link, with suggested counterparts."""
    pending_link_ids: List[UUID] = []
    suggestions: List[MatchCandidateSchema] = []


class UnmappedProviderOrderListResponse(BaseModel):
    items: List[UnmappedProviderOrderSchema]
    total: int
    limit: int
    offset: int


class ProviderOrderSearchResponse(BaseModel):
    items: List[ProviderOrderSchema]
    query: str
    limit: int
    offset: int


class AutoMapRequest(BaseModel):
    """Bounds for an auto-mapping batch (defaults from settings)."""
    max_orders: Optional[int] = Field(None, ge=1)
    time_budget_seconds: Optional[float] = Field(None, gt=0)


class AutoMapErrorSchema(BaseModel):
    provider_order_id: int
    message: str


class AutoMapDetailSchema(BaseModel):
    provider_order_id: int
    outcome: str
    storefront_order_id: Optional[int] = None
    score: Optional[float] = None
    reason: Optional[str] = None


class AutoMapResponse(BaseModel):
    """Summary of an auto-mapping batch."""
    successful_mappings: int
    pending_review_created: int
    left_unlinked: int
    errors: List[AutoMapErrorSchema]
    processed: int
    stopped_early: bool
    broken_links_detected: int
    details: List[AutoMapDetailSchema]


class VerifyLinksRequest(BaseModel):
    """Restrict the breakage sweep to specific links (all live links when omitted)."""
    link_ids: Optional[List[UUID]] = None


class VerifyLinksResponse(BaseModel):
    checked: int
    broken_provider_deleted: int
    broken_storefront_deleted: int
