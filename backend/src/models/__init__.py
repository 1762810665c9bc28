"""SQLAlchemy models for the order reconciliation backend"""

from .base import Base, PortableJSONB
from .provider_order import ProviderOrder, ProviderOrderItem
from .storefront_order import StorefrontOrder
from .order_link import OrderLink, LinkType, LinkStatus, OrderClassification

__all__ = [
    "Base",
    "PortableJSONB",
    "ProviderOrder",
    "ProviderOrderItem",
    "StorefrontOrder",
    "OrderLink",
    "LinkType",
    "LinkStatus",
    "OrderClassification",
]
