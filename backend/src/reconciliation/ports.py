"""Reconciliation ports and result types.

The matcher is behind MatcherPort so the auto-mapper and the suggestion
listings can be exercised with a stubbed candidate source.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from models.provider_order import ProviderOrder


@dataclass
class MatchCandidate:
    """Single storefront order candidate for a provider order.

    Attributes:
        storefront_order_id: Candidate storefront order id
        score: Combined confidence (0.0-1.0)
        reasons: Human-readable reasons that contributed materially
        time_gap_seconds: Absolute gap between the two creation timestamps
        features: Sub-scores (amount, name, date) for debugging and UI
        order: Storefront order summary for display
    """
    storefront_order_id: int
    score: float
    reasons: List[str]
    time_gap_seconds: float
    features: dict = field(default_factory=dict)
    order: dict = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "storefront_order_id": self.storefront_order_id,
            "score": self.score,
            "reasons": list(self.reasons),
            "time_gap_seconds": self.time_gap_seconds,
            "features": dict(self.features),
            "order": dict(self.order),
        }


class DecisionOutcome(str, Enum):
    """What the auto-mapper does with a provider order."""
    AUTO_LINK = "auto_link"
    REVIEW = "review"
    NO_MATCH = "no_match"


@dataclass
class MatchDecision:
    """Outcome of the threshold/margin rule for one provider order."""
    outcome: DecisionOutcome
    candidate: Optional[MatchCandidate]
    reason: str
    margin: Optional[float] = None


@dataclass
class AutoMapOrderError:
    """Failure recorded for a single provider order during a batch."""
    provider_order_id: int
    message: str


@dataclass
class AutoMapDetail:
    """Per-order trace of a batch run."""
    provider_order_id: int
    outcome: str  # linked | pending_review | left_unlinked | error
    storefront_order_id: Optional[int] = None
    score: Optional[float] = None
    reason: Optional[str] = None


@dataclass
class AutoMapResult:
    """Summary returned by AutoMapper.run()."""
    successful_mappings: int = 0
    pending_review_created: int = 0
    left_unlinked: int = 0
    errors: List[AutoMapOrderError] = field(default_factory=list)
    processed: int = 0
    stopped_early: bool = False
    broken_links_detected: int = 0
    details: List[AutoMapDetail] = field(default_factory=list)


class MatcherPort(ABC):
    """Port interface for candidate matching strategies."""

    @abstractmethod
    def match(self, provider_order: ProviderOrder) -> List[MatchCandidate]:
        """Score storefront orders against a provider order.

        Returns:
            Candidates ordered best first; empty list when nothing is in range
        """
        pass
