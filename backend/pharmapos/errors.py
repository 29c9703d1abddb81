# Overview: Domain error taxonomy shared by services and translated to HTTP by the app factory.

"""
Domain errors.

Services raise these; the error handler registered in create_app() rolls back
the session and renders them as the standard error envelope. Each class
carries the HTTP status it maps to and a stable machine-readable code.
"""
from __future__ import annotations


class DomainError(Exception):
    """Base class for expected, user-facing failures."""
    status_code = 400
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(DomainError):
    """400-level input problem."""
    status_code = 400
    code = "VALIDATION_ERROR"


class InsufficientStock(DomainError):
    """Requested quantity exceeds what the store can give away."""
    status_code = 400
    code = "INSUFFICIENT_STOCK"

    def __init__(self, *, product_id: int, store_id: int, available: int, requested: int, message: str | None = None):
        self.product_id = product_id
        self.store_id = store_id
        self.available = available
        self.requested = requested
        self.shortfall = max(0, requested - available)
        super().__init__(
            message or (
                f"Insufficient stock for product {product_id} in store {store_id}. "
                f"Available: {available}, requested: {requested}"
            ),
            details={
                "productId": product_id,
                "storeId": store_id,
                "available": available,
                "requested": requested,
                "shortfall": self.shortfall,
            },
        )


class NoOpenCashSession(DomainError):
    status_code = 400
    code = "NO_OPEN_CASH_SESSION"


class NoShipmentMovements(DomainError):
    status_code = 400
    code = "NO_SHIPMENT_MOVEMENTS"


class Forbidden(DomainError):
    """Role or store-ownership mismatch."""
    status_code = 403
    code = "FORBIDDEN"


class FeatureDisabled(Forbidden):
    """The tenant's license does not include the requested feature."""
    code = "FEATURE_DISABLED"


class NotFound(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidStateTransition(DomainError):
    """Operation attempted from the wrong lifecycle state."""
    status_code = 409
    code = "INVALID_STATE_TRANSITION"

    def __init__(self, entity: str, entity_id, current: str, action: str):
        super().__init__(
            f"Cannot {action} {entity} {entity_id} in {current} status",
            details={"entity": entity, "id": entity_id, "status": current, "action": action},
        )


class LedgerInvariantError(DomainError):
    """Lot quantity no longer matches its movement log."""
    status_code = 500
    code = "LEDGER_INVARIANT_VIOLATION"


class AuthenticationError(DomainError):
    """Missing, invalid or expired bearer token."""
    status_code = 401
    code = "UNAUTHENTICATED"


class ConcurrentModification(DomainError):
    """The entity changed between the unlocked read and the locked reload."""
    status_code = 409
    code = "CONCURRENT_MODIFICATION"
