# Overview: Flask API routes for checkout, card confirmation, refunds and order lookup.

"""
Checkout API Routes

DESIGN:
- POST /api/checkout: cash/digital commit immediately (201); card returns a
  payment intent (202) and nothing is persisted until confirm
- POST /api/checkout/intent: standalone intent for an amount
- POST /api/checkout/confirm: commit the order for a succeeded intent
  (201 first time, 200 on replay)
- POST /api/checkout/refund/<order_id>: gateway refund, no restock
- GET  /api/checkout/orders[/<order_id>]

SECURITY:
- X-Tenant-ID resolves the tenant; Bearer session must belong to it
- manage_transactions capability, plus location access for the order's location
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_auth, require_capability, require_tenant
from ..errors import DomainError
from ..permissions import Capability
from ..services import checkout_service, payment_service
from ..validation import (
    parse_checkout_request,
    parse_currency,
    parse_money_cents,
    parse_optional_int,
    parse_refund_reason,
    require_json_object,
)


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


# =============================================================================
# CHECKOUT
# =============================================================================

@checkout_bp.post("")
@require_tenant
@require_auth
@require_capability(Capability.MANAGE_TRANSACTIONS)
def checkout_route():
    """
    Check out a cart.

    Request body:
    {
        "location_id": 1,
        "customer_id": 7,  (optional)
        "items": [{"product_id": 3, "quantity": 2}],
        "payment_method": "cash" | "card" | "digital",
        "discount_amount": "2.00"  (optional, currency units)
    }

    Returns:
        201: {"order": {...}} (cash / digital)
        202: {"payment_required": true, "intent_id", "client_secret", ...} (card)
        400/403/404/409: typed error
        502: payment provider failure
    """
    try:
        checkout_request = parse_checkout_request(request.get_json(silent=True))
        result = checkout_service.checkout(g.tenant_scope, g.actor, checkout_request)

        if result.payment_required:
            return jsonify({
                "payment_required": True,
                "intent_id": result.intent.id,
                "client_secret": result.intent.client_secret,
                "amount_cents": result.draft.total_cents,
                "currency": result.intent.currency or result.draft.currency.lower(),
            }), 202

        return jsonify({"order": result.order.to_dict()}), 201

    except DomainError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Checkout failed")


@checkout_bp.post("/intent")
@require_tenant
@require_auth
@require_capability(Capability.MANAGE_TRANSACTIONS)
def create_intent_route():
    """
    Open a payment intent.

    Request body: {"amount": "12.50", "currency": "usd"}
    Optional header: Idempotency-Key

    Returns:
        200: {"intent_id", "client_secret"}
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        amount_cents = parse_money_cents("amount", data.get("amount"))
        currency = parse_currency(data.get("currency"), default=current_app.config["DEFAULT_CURRENCY"])

        intent = payment_service.create_intent(
            g.tenant_scope,
            amount_cents,
            currency,
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        return jsonify({"intent_id": intent.id, "client_secret": intent.client_secret}), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to create payment intent")


@checkout_bp.post("/confirm")
@require_tenant
@require_auth
@require_capability(Capability.MANAGE_TRANSACTIONS)
def confirm_route():
    """
    Commit the order for a succeeded payment intent.

    Request body: {"intent_id", "location_id", "customer_id"?, "items", "discount_amount"?}

    Returns:
        201: {"order": {...}} on first commit
        200: {"order": {...}} when the intent already has an order
        400: payment_not_completed
        500: irreconcilable_capture (funds captured, order not recorded; queued for review)
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        checkout_request = parse_checkout_request({**data, "payment_method": "card"})
        order, created = payment_service.confirm_and_commit(
            g.tenant_scope,
            g.actor,
            data.get("intent_id"),
            checkout_request,
        )
        return jsonify({"order": order.to_dict()}), 201 if created else 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to confirm payment")


@checkout_bp.post("/refund/<int:order_id>")
@require_tenant
@require_auth
@require_capability(Capability.MANAGE_TRANSACTIONS)
def refund_route(order_id: int):
    """
    Refund a card order.

    Request body: {"amount": "5.00"?, "reason": "requested_by_customer"}
    Omitting amount refunds the full total.

    Returns:
        200: {"refund": {...}, "order": {...}}
        400: not_refundable / validation_error
        404: order_not_found
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        amount_cents = None
        if data.get("amount") not in (None, ""):
            amount_cents = parse_money_cents("amount", data.get("amount"))
        reason = parse_refund_reason(data.get("reason"))

        result = payment_service.refund(g.tenant_scope, g.actor, order_id, amount_cents, reason)
        return jsonify({
            "refund": {
                "id": result.refund_id,
                "status": result.status,
                "amount_cents": result.amount_cents,
            },
            "order": result.order.to_dict(),
        }), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to process refund")


# =============================================================================
# ORDERS
# =============================================================================

@checkout_bp.get("/orders")
@require_tenant
@require_auth
@require_capability(Capability.MANAGE_TRANSACTIONS)
def list_orders_route():
    """
    List orders, newest first.

    Query params: location_id, customer_id, status, page (default 1), per_page (default 20, max 100)
    """
    try:
        result = checkout_service.list_orders(
            g.tenant_scope,
            g.actor,
            location_id=parse_optional_int("location_id", request.args.get("location_id"), minimum=1),
            customer_id=parse_optional_int("customer_id", request.args.get("customer_id"), minimum=1),
            status=request.args.get("status") or None,
            page=parse_optional_int("page", request.args.get("page"), minimum=1) or 1,
            per_page=parse_optional_int("per_page", request.args.get("per_page"), minimum=1) or 20,
        )
        return jsonify(result), 200

    except DomainError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to list orders")


@checkout_bp.get("/orders/<int:order_id>")
@require_tenant
@require_auth
@require_capability(Capability.MANAGE_TRANSACTIONS)
def get_order_route(order_id: int):
    try:
        order = checkout_service.get_order(g.tenant_scope, g.actor, order_id)
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return error_response(e)
    except Exception:
        return _internal_error("Failed to load order")
