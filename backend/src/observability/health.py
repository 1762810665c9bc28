"""Health checks for the reconciliation service.

The database is the only infrastructure dependency. Link integrity is
reported as a second component: broken links degrade health without making
the service unhealthy, since they are an operator task, not an outage.
"""

import logging
import time
from enum import Enum
from typing import Dict, Optional
from dataclasses import dataclass

from sqlalchemy import select, func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.order_link import OrderLink, LinkStatus

logger = logging.getLogger(__name__)

_BROKEN = (LinkStatus.BROKEN_PROVIDER_DELETED, LinkStatus.BROKEN_STOREFRONT_DELETED)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class ComponentHealth:
    """Health status for a single component."""
    status: HealthStatus
    message: Optional[str] = None
    latency_ms: Optional[float] = None


def check_database_health(db: Session) -> ComponentHealth:
    try:
        start = time.monotonic()
        db.execute(text("SELECT 1"))
        latency_ms = (time.monotonic() - start) * 1000
        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Database connection OK",
            latency_ms=round(latency_ms, 2),
        )
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return ComponentHealth(status=HealthStatus.UNHEALTHY, message=f"Database error: {e}")


def check_link_integrity(db: Session) -> ComponentHealth:
    """Report links left broken by vanished orders."""
    try:
        broken = db.execute(
            select(func.count(OrderLink.id)).where(OrderLink.link_status.in_(_BROKEN))
        ).scalar_one()
    except SQLAlchemyError as e:
        logger.error(f"Link integrity check failed: {e}", exc_info=True)
        return ComponentHealth(status=HealthStatus.UNHEALTHY, message=f"Database error: {e}")

    if broken:
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            message=f"{broken} broken links awaiting correction",
        )
    return ComponentHealth(status=HealthStatus.HEALTHY, message="No broken links")


def get_overall_health(components: Dict[str, ComponentHealth]) -> HealthStatus:
    if all(c.status == HealthStatus.HEALTHY for c in components.values()):
        return HealthStatus.HEALTHY

    if any(c.status == HealthStatus.UNHEALTHY for c in components.values()):
        return HealthStatus.UNHEALTHY

    return HealthStatus.DEGRADED
