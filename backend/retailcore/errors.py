# Overview: Typed error taxonomy shared by services and routes.

"""
Domain errors for the checkout engine.

Every error carries the HTTP status it maps to and a stable machine code.
Routes catch DomainError and return ``jsonify(e.to_dict()), e.status_code``.

SECURITY: gateway and internal failures expose a generic public message.
The original message is kept on the exception for logging only.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for errors that are safe to map onto an HTTP response."""

    status_code = 400
    code = "domain_error"
    public_message: str | None = None

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {
            "error": self.code,
            "message": self.public_message or self.message,
        }
        if self.details and self.public_message is None:
            body["details"] = self.details
        return body


# -- Request context --

class TenantIdentifierMissing(DomainError):
    status_code = 400
    code = "tenant_identifier_missing"


class TenantNotFound(DomainError):
    status_code = 404
    code = "tenant_not_found"


# -- Authorization --

class Unauthenticated(DomainError):
    status_code = 401
    code = "unauthenticated"


class Forbidden(DomainError):
    status_code = 403
    code = "forbidden"


class LocationAccessDenied(DomainError):
    status_code = 403
    code = "location_access_denied"


# -- Domain validation --

class ValidationError(DomainError):
    """400-level input problem."""
    status_code = 400
    code = "validation_error"


class LocationNotFound(DomainError):
    status_code = 404
    code = "location_not_found"


class CustomerNotFound(DomainError):
    status_code = 404
    code = "customer_not_found"


class ProductNotFound(DomainError):
    status_code = 404
    code = "product_not_found"


class OrderNotFound(DomainError):
    status_code = 404
    code = "order_not_found"


class InsufficientStock(DomainError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(
        self,
        message: str,
        *,
        product_id: int,
        location_id: int,
        requested: int,
        available: int,
        product_name: str | None = None,
    ):
        details = {
            "product_id": product_id,
            "location_id": location_id,
            "requested_quantity": requested,
            "available_quantity": available,
        }
        if product_name is not None:
            details["product_name"] = product_name
        super().__init__(message, details=details)
        self.product_id = product_id
        self.location_id = location_id
        self.requested = requested
        self.available = available


# -- Payment lifecycle --

class PaymentNotCompleted(DomainError):
    status_code = 400
    code = "payment_not_completed"


class NotRefundable(DomainError):
    status_code = 400
    code = "not_refundable"


class GatewayError(DomainError):
    """Transport or validation failure at the payment gateway. Retryable by the caller."""
    status_code = 502
    code = "gateway_error"
    public_message = "Payment provider request failed"


class IrreconcilableCapture(DomainError):
    """Funds were captured by the gateway but no local order could be committed."""
    status_code = 500
    code = "irreconcilable_capture"
    public_message = "Payment was received but the order could not be recorded; it has been flagged for review"
