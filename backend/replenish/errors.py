# Overview: Domain error taxonomy shared by services, routes and the remote ledger client.

"""
Replenishment Error Taxonomy (authoritative)

Every failure raised by the order/inventory/ledger core is one of these.
None of them is fatal: the unit of work that raised has already been rolled
back, so Request, InventoryItem and the ledger are in their pre-call state.

- Caller errors (do not retry): InvalidTransition, NonPositiveAmount,
  MissingReason, NotFound
- Resource guards (retrying will not help until something else changes):
  InsufficientBudget, InsufficientStock
- Transient (safe to retry from a fresh read): ConcurrentModification,
  StorageFailure
"""

from __future__ import annotations


class OrderError(ValueError):
    """Base class; carries a stable machine-readable code and an HTTP status."""

    code = "OrderError"
    http_status = 400
    retryable = False

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code}


class InvalidTransition(OrderError):
    code = "InvalidTransition"

    def __init__(self, message: str, *, current: str | None = None, requested: str | None = None):
        super().__init__(message)
        self.current = current
        self.requested = requested

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["current_status"] = self.current
        data["requested"] = self.requested
        return data


class InsufficientBudget(OrderError):
    code = "InsufficientBudget"

    def __init__(self, message: str, *, available_cents: int | None = None, requested_cents: int | None = None):
        super().__init__(message)
        self.available_cents = available_cents
        self.requested_cents = requested_cents


class InsufficientStock(OrderError):
    code = "InsufficientStock"

    def __init__(self, message: str, *, on_hand: int | None = None, requested_delta: int | None = None):
        super().__init__(message)
        self.on_hand = on_hand
        self.requested_delta = requested_delta


class NonPositiveAmount(OrderError):
    code = "NonPositiveAmount"


class MissingReason(OrderError):
    """A required actor or reason string is empty."""

    code = "MissingReason"


class NotFound(OrderError):
    code = "NotFound"
    http_status = 404


class ConcurrentModification(OrderError):
    code = "ConcurrentModification"
    http_status = 409
    retryable = True


class StorageFailure(OrderError):
    code = "StorageFailure"
    http_status = 503
    retryable = True


ERRORS_BY_CODE: dict[str, type[OrderError]] = {
    cls.code: cls
    for cls in (
        InvalidTransition,
        InsufficientBudget,
        InsufficientStock,
        NonPositiveAmount,
        MissingReason,
        NotFound,
        ConcurrentModification,
        StorageFailure,
    )
}


def error_from_payload(payload: dict, default: type[OrderError] = StorageFailure) -> OrderError:
    """Rebuild a domain error from an `{"error", "code"}` JSON body."""
    cls = ERRORS_BY_CODE.get(str(payload.get("code") or ""), default)
    return cls(str(payload.get("error") or "ledger service error"))
