"""Storefront order model.

Rows are written by the external storefront sync job. The reconciliation
engine only reads them.
"""

from sqlalchemy import Column, Text, Numeric, DateTime, Index

from .base import Base, PortableBigInt


class StorefrontOrder(Base):
    """Order recorded by the commerce/checkout system."""
    __tablename__ = "storefront_order"
    __table_args__ = (
        Index("ix_storefront_order_created_at", "created_at"),
        Index("ix_storefront_order_number", "order_number"),
    )

    id = Column(PortableBigInt, primary_key=True, autoincrement=False)
    order_number = Column(Text, nullable=True, comment="Human-facing order number, e.g. #1042")
    customer_name = Column(Text, nullable=True)
    customer_email = Column(Text, nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(Text, nullable=False, default="USD")
    created_at = Column(DateTime(timezone=True), nullable=False)
    payment_status = Column(Text, nullable=True)
    fulfillment_status = Column(Text, nullable=True)

    def to_summary(self):
        """Compact representation used in link listings"""
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "total_amount": float(self.total_amount) if self.total_amount is not None else None,
            "currency": self.currency,
            "payment_status": self.payment_status,
            "fulfillment_status": self.fulfillment_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
