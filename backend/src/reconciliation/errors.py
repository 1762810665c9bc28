"""Error taxonomy for the reconciliation engine.

Every error is scoped to a single order or a single request. The HTTP layer
renders them with their code and status; the auto-mapper records them per
order and keeps going.
"""

from typing import Any, Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""

    code = "reconciliation_error"
    http_status = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class NotFoundError(ReconciliationError):
    """Referenced link, provider order or storefront order does not exist."""

    code = "not_found"
    http_status = 404


class ConflictError(ReconciliationError):
    """A second active link was requested for an already linked provider order."""

    code = "conflict"
    http_status = 409


class LinkValidationError(ReconciliationError):
    """Request violates a link invariant or an allowed transition."""

    code = "validation_error"
    http_status = 422


class ExternalInconsistencyError(ReconciliationError):
    """A linked order vanished from the order store.

    Never surfaced to callers: the lifecycle manager converts it into a
    broken_* status.
    """

    code = "external_inconsistency"
    http_status = 409

    def __init__(self, message: str, missing: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, details)
        self.missing = missing  # "provider" | "storefront"


class TransientStoreError(ReconciliationError):
    """Retryable persistence failure (lost connection, lock timeout)."""

    code = "transient_store_error"
    http_status = 503
