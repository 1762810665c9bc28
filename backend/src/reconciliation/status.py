"""OrderLink status state machine.

State Flow:
    (new) → ACTIVE | PENDING_VERIFICATION
    PENDING_VERIFICATION → ACTIVE | ARCHIVED | BROKEN_*
    ACTIVE → ARCHIVED | BROKEN_*
    BROKEN_* → ACTIVE (operator correction only) | ARCHIVED

Terminal States: ARCHIVED
"""

from typing import List, Optional

from models.order_link import LinkStatus, LinkType, OrderClassification

__all__ = [
    "LinkStatus",
    "LinkType",
    "OrderClassification",
    "INITIAL_STATUSES",
    "LIVE_STATUSES",
    "BROKEN_STATUSES",
    "ALLOWED_TRANSITIONS",
    "StateTransitionError",
    "validate_transition",
    "can_transition",
    "get_allowed_transitions",
]

INITIAL_STATUSES = frozenset({LinkStatus.ACTIVE, LinkStatus.PENDING_VERIFICATION})

# Links that still assert a correspondence and must be checked for breakage
LIVE_STATUSES = frozenset({LinkStatus.ACTIVE, LinkStatus.PENDING_VERIFICATION})

BROKEN_STATUSES = frozenset({
    LinkStatus.BROKEN_PROVIDER_DELETED,
    LinkStatus.BROKEN_STOREFRONT_DELETED,
})

ALLOWED_TRANSITIONS = {
    LinkStatus.PENDING_VERIFICATION: [
        LinkStatus.ACTIVE,
        LinkStatus.ARCHIVED,
        LinkStatus.BROKEN_PROVIDER_DELETED,
        LinkStatus.BROKEN_STOREFRONT_DELETED,
    ],
    LinkStatus.ACTIVE: [
        LinkStatus.ARCHIVED,
        LinkStatus.BROKEN_PROVIDER_DELETED,
        LinkStatus.BROKEN_STOREFRONT_DELETED,
    ],
    LinkStatus.BROKEN_PROVIDER_DELETED: [LinkStatus.ACTIVE, LinkStatus.ARCHIVED],
    LinkStatus.BROKEN_STOREFRONT_DELETED: [LinkStatus.ACTIVE, LinkStatus.ARCHIVED],
    LinkStatus.ARCHIVED: [],  # Terminal state
}


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""
    pass


def validate_transition(
    current_status: Optional[LinkStatus],
    new_status: LinkStatus
) -> None:
    """Validate that a state transition is allowed.

    A current_status of None means the link is being created.

    Raises:
        StateTransitionError: If transition is not allowed
    """
    allowed = get_allowed_transitions(current_status)
    if new_status not in allowed:
        current = current_status.value if current_status else "(new)"
        raise StateTransitionError(
            f"Invalid transition: {current} -> {new_status.value}. "
            f"Allowed transitions from {current}: "
            f"{[s.value for s in allowed]}"
        )


def can_transition(
    current_status: Optional[LinkStatus],
    new_status: LinkStatus
) -> bool:
    """Check if a state transition is allowed without raising exception."""
    return new_status in get_allowed_transitions(current_status)


def get_allowed_transitions(status: Optional[LinkStatus]) -> List[LinkStatus]:
    """Get list of allowed transitions from a given status (None = creation)."""
    if status is None:
        return [LinkStatus.ACTIVE, LinkStatus.PENDING_VERIFICATION]
    return ALLOWED_TRANSITIONS.get(status, [])
