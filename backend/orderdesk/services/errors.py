# Overview: Domain error taxonomy shared by every engine service.

"""
Order engine errors.

Every error carries a stable `code`, a human message and a `details` dict
rich enough for the caller to render an itemized message (which SKU is short
and by how much, which installment was already paid, ...). Routes turn them
into {"error", "code", "details"} with `http_status`.

Only ConcurrencyConflict is ever retried, and only by run_with_retry.
"""

from __future__ import annotations


class OrderEngineError(Exception):
    """Base class for lifecycle, stock and receivables errors."""

    code = "ORDER_ENGINE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class InvalidTransition(OrderEngineError):
    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, message: str, *, current_status: str | None = None, action: str | None = None, **extra):
        details = {"current_status": current_status, "action": action}
        details.update(extra)
        super().__init__(message, details)


class InsufficientStock(OrderEngineError):
    """
    One or more products cannot cover the requested quantity.

    details["items"] is a list of
    {product_id, sku, name, available, requested, shortfall}.
    """
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, items: list[dict]):
        skus = ", ".join(str(i.get("sku") or i.get("product_id")) for i in items)
        super().__init__(f"Insufficient stock for: {skus}", {"items": items})

    @property
    def items(self) -> list[dict]:
        return self.details["items"]


class OrderNotEditable(OrderEngineError):
    code = "ORDER_NOT_EDITABLE"
    http_status = 409


class InvalidPaymentType(OrderEngineError):
    code = "INVALID_PAYMENT_TYPE"
    http_status = 422


class NoInstallmentSpec(OrderEngineError):
    code = "NO_INSTALLMENT_SPEC"
    http_status = 422


class InvalidInstallmentSpec(OrderEngineError):
    code = "INVALID_INSTALLMENT_SPEC"
    http_status = 422


class ConcurrencyConflict(OrderEngineError):
    code = "CONCURRENCY_CONFLICT"
    http_status = 503


class PartiallySettled(OrderEngineError):
    code = "PARTIALLY_SETTLED"
    http_status = 409


class NotFoundError(OrderEngineError):
    code = "NOT_FOUND"
    http_status = 404


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"


class ProductNotFound(NotFoundError):
    code = "PRODUCT_NOT_FOUND"


class PaymentTypeNotFound(NotFoundError):
    code = "PAYMENT_TYPE_NOT_FOUND"


class InstallmentNotFound(NotFoundError):
    code = "INSTALLMENT_NOT_FOUND"


class PaymentNotFound(NotFoundError):
    code = "PAYMENT_NOT_FOUND"
