# Overview: Inbound payment gateway webhooks.

"""
Payment webhook endpoint.

SECURITY: the raw body is verified against the Stripe-Signature header
before anything is trusted. Bad signature or malformed payload -> 400 and
no state change.

Once verified, the response is always 200 {"received": true}, even when
processing fails (logged), so the gateway stops redelivering an event we
cannot apply. Reconciliation itself is idempotent, so redeliveries that do
arrive are harmless.
"""

import stripe
from flask import Blueprint, current_app, jsonify, request

from ..services import payment_service
from ..services.payment_gateway import get_gateway


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/payments")
def payment_webhook_route():
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")

    try:
        event = get_gateway().construct_event(payload, sig_header)
    except ValueError as e:
        current_app.logger.warning("Webhook rejected: invalid payload (%s)", e)
        return jsonify({"error": "invalid_payload", "message": "Invalid payload"}), 400
    except stripe.SignatureVerificationError:
        current_app.logger.warning("Webhook rejected: signature verification failed")
        return jsonify({"error": "invalid_signature", "message": "Invalid signature"}), 400

    try:
        outcome = payment_service.reconcile_webhook(event)
        current_app.logger.info("Webhook %s (%s): %s", event.get("id"), event.get("type"), outcome)
    except Exception:
        current_app.logger.exception("Webhook processing failed for event %s", event.get("id"))

    return jsonify({"received": True}), 200
