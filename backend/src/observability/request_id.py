"""Per-request correlation context.

Holds the request ID and the calling operator's identity in context
variables so every log line of a request can be correlated, including lines
written deep inside the reconciliation engine.
"""

import uuid
from contextvars import ContextVar
from typing import Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
operator_id_var: ContextVar[Optional[str]] = ContextVar("operator_id", default=None)


def generate_request_id() -> str:
    return str(uuid.uuid4())


def get_request_id() -> str:
    """Current request ID, or "no-request-id" outside a request (batch scripts)."""
    return request_id_var.get() or "no-request-id"


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_operator_id() -> Optional[str]:
    return operator_id_var.get()


def set_operator_id(operator_id: Optional[str]) -> None:
    operator_id_var.set(operator_id)
