"""
Error taxonomy for the order service.

Every error carries a stable machine-readable `code`, the HTTP status the
API layer answers with, and a `context` dict with enough detail for the
caller to act (which product ran out, which status blocked the call...).
"""
from typing import Any, Optional


class OrderServiceError(Exception):
    """Base class for all expected order service failures."""

    code: str = "order_service_error"
    http_status: int = 500

    def __init__(self, detail: str, **context: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.code, "detail": self.detail}
        if self.context:
            body["context"] = self.context
        return body


# ============================================
# VALIDATION (caller's fault)
# ============================================

class ValidationFailed(OrderServiceError):
    code = "validation_failed"
    http_status = 422


# ============================================
# NOT FOUND
# ============================================

class NotFound(OrderServiceError):
    code = "not_found"
    http_status = 404


class OrderNotFound(NotFound):
    code = "order_not_found"

    def __init__(self, reference: str) -> None:
        super().__init__(f"Order {reference} not found", order=reference)


# ============================================
# ACCESS
# ============================================

class AccessDenied(OrderServiceError):
    code = "access_denied"
    http_status = 403


# ============================================
# CONFLICT (state precondition violated)
# ============================================

class Conflict(OrderServiceError):
    code = "conflict"
    http_status = 409


class ProductUnavailable(Conflict):
    code = "product_unavailable"

    def __init__(self, product_id: str, reason: str = "not available") -> None:
        super().__init__(f"Product {product_id} is {reason}", product_id=product_id)


class InsufficientStock(Conflict):
    code = "insufficient_stock"

    def __init__(
        self,
        product_id: str,
        requested: int,
        available: int,
        product_name: Optional[str] = None,
        variant: Optional[str] = None,
    ) -> None:
        label = product_name or product_id
        if variant:
            label = f"{label} ({variant})"
        super().__init__(
            f"Not enough stock for {label}: requested {requested}, available {available}",
            product_id=product_id,
            variant=variant,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class AlreadyConfirmed(Conflict):
    code = "already_confirmed"

    def __init__(self, order_number: str) -> None:
        super().__init__(f"Payment for order {order_number} is already confirmed", order_number=order_number)


class AlreadyCancelled(Conflict):
    code = "already_cancelled"

    def __init__(self, order_number: str) -> None:
        super().__init__(f"Order {order_number} is already cancelled", order_number=order_number)


class NotEligibleForExtension(Conflict):
    code = "not_eligible_for_extension"

    def __init__(self, order_number: str, status: str) -> None:
        super().__init__(
            f"Order {order_number} is {status}; only unpaid orders can be extended",
            order_number=order_number,
            status=status,
        )


class InvalidStatusTransition(Conflict):
    code = "invalid_status_transition"

    def __init__(self, order_number: str, current: str, requested: str, hint: str = "") -> None:
        message = f"Order {order_number} cannot move from {current} to {requested}"
        if hint:
            message = f"{message}: {hint}"
        super().__init__(message, order_number=order_number, current=current, requested=requested)


# ============================================
# INTERNAL (persistence / transport)
# ============================================

class InternalError(OrderServiceError):
    code = "internal_error"
    http_status = 500


class PersistenceError(InternalError):
    code = "persistence_error"


class InventoryContention(InternalError):
    code = "inventory_contention"
    http_status = 503

    def __init__(self, product_id: str, attempts: int) -> None:
        super().__init__(
            f"Inventory for product {product_id} kept changing; gave up after {attempts} attempts",
            product_id=product_id,
            attempts=attempts,
        )


class OperationTimeout(InternalError):
    code = "operation_timeout"
    http_status = 503
