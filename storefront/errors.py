"""Exceptions raised by the cart and order services."""

from typing import Any, Dict, Iterable, List, Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    http_status = 400
    code = "storefront_error"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class ValidationError(StorefrontError, ValueError):
    """Raised when input is malformed or missing."""

    code = "validation_error"

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        self.details = details or []
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.details:
            data["details"] = self.details
        return data


class PricingMismatch(ValidationError):
    """Raised when a submitted price breakdown disagrees with server prices."""

    code = "pricing_mismatch"

    def __init__(self, field: str, submitted, expected):
        self.field = field
        self.submitted = submitted
        self.expected = expected
        super().__init__(
            f"Submitted {field} {submitted} does not match expected {expected}",
            details=[{"field": field, "submitted": str(submitted), "expected": str(expected)}],
        )


class EmptyCart(ValidationError):
    """Raised when checkout finds no lines to order."""

    code = "empty_cart"

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class NotFound(StorefrontError):
    """Raised when a referenced cart, line or order does not exist."""

    http_status = 404
    code = "not_found"

    def __init__(self, kind: str, ref: Optional[str] = None):
        self.kind = kind
        self.ref = ref
        msg = f"{kind} not found"
        if ref:
            msg = f"{kind} not found: {ref}"
        super().__init__(msg)


class ProductUnavailable(StorefrontError):
    """Raised when a product is unknown or not in a purchasable status."""

    http_status = 409
    code = "product_unavailable"

    def __init__(self, product_id: str, status: Optional[str] = None):
        self.product_id = product_id
        self.status = status
        msg = f"Product {product_id} is not available"
        if status:
            msg = f"{msg} (status: {status})"
        super().__init__(msg)


class InsufficientStock(StorefrontError):
    """Raised when the requested quantity exceeds current stock."""

    http_status = 409
    code = "insufficient_stock"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(product_id=self.product_id, requested=self.requested, available=self.available)
        return data


class InvalidTransition(StorefrontError):
    """Raised when a status change is not an allowed edge."""

    http_status = 409
    code = "invalid_transition"

    def __init__(self, current: str, target: str, allowed: Iterable[str]):
        self.current = current
        self.target = target
        self.allowed = sorted(allowed)
        allowed_txt = ", ".join(self.allowed) if self.allowed else "none"
        super().__init__(
            f'Cannot change status from "{current}" to "{target}". Allowed transitions: {allowed_txt}'
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["allowed"] = self.allowed
        return data


class NoOpTransition(StorefrontError):
    """Raised when the target status equals the current one."""

    http_status = 409
    code = "noop_transition"

    def __init__(self, status: str):
        self.status = status
        super().__init__(f'Order status is already "{status}"')


class PersistenceError(StorefrontError):
    """Raised when a transaction is aborted by the storage layer."""

    http_status = 500
    code = "persistence_error"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(f"Storage failure: {message}")
