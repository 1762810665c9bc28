"""Order reconciliation engine.

Links provider (print-on-demand) orders to storefront orders:
- Candidate scoring on amount, recipient name and order date
- Link lifecycle with a single active link per provider order
- Corrective/gift classification for orders without a storefront counterpart
- Batch auto-mapping, coverage statistics and search
"""

from .errors import (
    ReconciliationError,
    NotFoundError,
    ConflictError,
    LinkValidationError,
    ExternalInconsistencyError,
    TransientStoreError,
)
from .ports import MatcherPort, MatchCandidate, MatchDecision, DecisionOutcome, AutoMapResult
from .scorer import MatchScorer
from .matcher import CandidateMatcher
from .lifecycle import LinkLifecycleManager
from .auto_mapper import AutoMapper
from .reporting import MappingStats, compute_stats
from .service import OrderReconciliationService
from .router import router as order_links_router
from .router import provider_orders_router

__all__ = [
    "ReconciliationError",
    "NotFoundError",
    "ConflictError",
    "LinkValidationError",
    "ExternalInconsistencyError",
    "TransientStoreError",
    "MatcherPort",
    "MatchCandidate",
    "MatchDecision",
    "DecisionOutcome",
    "AutoMapResult",
    "MatchScorer",
    "CandidateMatcher",
    "LinkLifecycleManager",
    "AutoMapper",
    "MappingStats",
    "compute_stats",
    "OrderReconciliationService",
    "order_links_router",
    "provider_orders_router",
]
