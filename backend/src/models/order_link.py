"""Order link model for provider ↔ storefront reconciliation.

An OrderLink asserts that a provider order corresponds to a storefront order,
or that it deliberately has no storefront counterpart (corrective reprint,
promotional gift). Links are never deleted; superseded links stay behind as
archived history.
"""

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, Text, Float, DateTime, Enum as SQLEnum, Index, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.sql import text

from .base import Base, PortableBigInt, PortableJSONB, utcnow


class LinkType(str, Enum):
    """How a link came into existence."""
    AUTOMATIC = "automatic"
    MANUAL_SYSTEM = "manual_system"
    MANUAL_USER_OVERRIDE = "manual_user_override"


class LinkStatus(str, Enum):
    """Link lifecycle state. See reconciliation.status for transitions."""
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    ARCHIVED = "archived"
    BROKEN_PROVIDER_DELETED = "broken_provider_deleted"
    BROKEN_STOREFRONT_DELETED = "broken_storefront_deleted"


class OrderClassification(str, Enum):
    """Whether a provider order is expected to have a storefront counterpart."""
    NORMAL = "normal"
    CORRECTIVE = "corrective"
    GIFT = "gift"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class OrderLink(Base):
    """Reconciliation record between a provider order and a storefront order.

    Invariants:
    - At most one ACTIVE link per provider_order_id (partial unique index)
    - classification != normal implies storefront_order_id IS NULL

    The order ids are plain columns without foreign keys: the order tables are
    rewritten by the sync jobs, and a vanished order is detected and recorded
    as a broken_* status instead of blocking the sync.
    """
    __tablename__ = "order_link"
    __table_args__ = (
        Index(
            "uq_order_link_active_provider",
            "provider_order_id",
            unique=True,
            postgresql_where=text("link_status = 'active'"),
            sqlite_where=text("link_status = 'active'"),
        ),
        Index("ix_order_link_provider_order", "provider_order_id"),
        Index("ix_order_link_storefront_order", "storefront_order_id"),
        Index("ix_order_link_status", "link_status"),
        Index("ix_order_link_created_at", "created_at"),
        CheckConstraint(
            "classification = 'normal' OR storefront_order_id IS NULL",
            name="ck_order_link_classified_without_storefront",
        ),
    )

    id = Column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)

    provider_order_id = Column(PortableBigInt, nullable=False)
    storefront_order_id = Column(
        PortableBigInt,
        nullable=True,
        comment="NULL for corrective/gift orders and for links whose target was cleared"
    )

    link_type = Column(
        SQLEnum(
            LinkType,
            name="order_link_type",
            native_enum=False,
            values_callable=_enum_values,
            length=32,
        ),
        nullable=False,
    )
    link_status = Column(
        SQLEnum(
            LinkStatus,
            name="order_link_status",
            native_enum=False,
            values_callable=_enum_values,
            length=32,
        ),
        nullable=False,
        comment="pending_verification | active → archived | broken_*"
    )
    classification = Column(
        SQLEnum(
            OrderClassification,
            name="order_classification",
            native_enum=False,
            values_callable=_enum_values,
            length=32,
        ),
        nullable=False,
        default=OrderClassification.NORMAL,
    )

    confidence = Column(Float, nullable=True, comment="Matcher score behind an automatic link")
    match_details = Column(
        PortableJSONB,
        nullable=True,
        comment="Matcher reasons and sub-scores at link time"
    )

    linked_by = Column(Text, nullable=True, comment="Operator identity; NULL for automatic links")
    notes = Column(Text, nullable=True)

    link_timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_classified(self) -> bool:
        return self.classification != OrderClassification.NORMAL

    def to_dict(self):
        """Convert order link to dictionary representation"""
        return {
            "id": str(self.id),
            "provider_order_id": self.provider_order_id,
            "storefront_order_id": self.storefront_order_id,
            "link_type": self.link_type.value,
            "link_status": self.link_status.value,
            "classification": self.classification.value,
            "confidence": self.confidence,
            "match_details": self.match_details,
            "linked_by": self.linked_by,
            "notes": self.notes,
            "link_timestamp": self.link_timestamp.isoformat() if self.link_timestamp else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return (
            f"<OrderLink(id={self.id}, provider={self.provider_order_id}, "
            f"storefront={self.storefront_order_id}, status={self.link_status})>"
        )
