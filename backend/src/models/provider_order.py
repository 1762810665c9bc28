"""Provider (print-on-demand) order models.

Rows are written by the external provider sync job. The reconciliation engine
only reads them.
"""

from sqlalchemy import Column, Text, Numeric, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from .base import Base, PortableBigInt


class ProviderOrder(Base):
    """Order recorded by the print-fulfillment provider.

    id is the engine-local numeric key; external_id is the provider's own
    order number and may be missing for orders created by hand in the
    provider dashboard (reprints, gifts).
    """
    __tablename__ = "provider_order"
    __table_args__ = (
        Index("ix_provider_order_created_at", "created_at"),
        Index("ix_provider_order_external_id", "external_id"),
    )

    id = Column(PortableBigInt, primary_key=True, autoincrement=False)
    external_id = Column(Text, nullable=True, comment="Provider's order number")
    recipient_name = Column(Text, nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(Text, nullable=False, default="USD")
    status = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, comment="Creation time at the provider")

    items = relationship(
        "ProviderOrderItem",
        back_populates="order",
        order_by="ProviderOrderItem.id",
        cascade="all, delete-orphan",
    )

    def to_summary(self):
        """Compact representation used in link listings"""
        return {
            "id": self.id,
            "external_id": self.external_id,
            "recipient_name": self.recipient_name,
            "total_amount": float(self.total_amount) if self.total_amount is not None else None,
            "currency": self.currency,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ProviderOrderItem(Base):
    """Line item of a provider order."""
    __tablename__ = "provider_order_item"

    id = Column(PortableBigInt, primary_key=True, autoincrement=True)
    provider_order_id = Column(
        PortableBigInt,
        ForeignKey("provider_order.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(Text, nullable=False)
    variant = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(12, 2), nullable=True)

    order = relationship("ProviderOrder", back_populates="items")
