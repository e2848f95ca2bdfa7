# Overview: Stripe adapter; the only module that talks to the payment gateway.

"""
Payment gateway adapter (Stripe).

WHY: Keeps the SDK at one seam. The payment coordinator sees plain
GatewayIntent/GatewayRefund values and GatewayError, never stripe objects.

TIMEOUTS: every call goes through a StripeClient built with an explicit
HTTP timeout and network retry count (PAYMENT_GATEWAY_TIMEOUT,
PAYMENT_GATEWAY_MAX_RETRIES). Mutating calls carry idempotency keys so the
SDK's own retries cannot double-charge or double-refund.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

import stripe
from flask import current_app

from ..errors import GatewayError


@dataclass(frozen=True)
class GatewayIntent:
    id: str
    status: str
    amount: int
    currency: str
    client_secret: str | None = None
    charge_id: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayRefund:
    id: str
    status: str
    amount: int


def _plain(obj) -> dict:
    """Return a stripe object as a plain dict (StripeObject is not a dict on newer SDKs)."""
    if obj is None:
        return {}
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


def _charge_id_from_intent(intent: dict) -> str | None:
    latest = intent.get("latest_charge")
    if isinstance(latest, str):
        return latest
    if latest is not None:
        return _plain(latest).get("id")
    # Older API versions list charges on the intent.
    charges = _plain(intent.get("charges"))
    data = charges.get("data") or []
    if data:
        return _plain(data[0]).get("id")
    return None


def _to_intent(intent) -> GatewayIntent:
    intent = _plain(intent)
    return GatewayIntent(
        id=intent["id"],
        status=intent["status"],
        amount=int(intent.get("amount") or 0),
        currency=intent.get("currency") or "",
        client_secret=intent.get("client_secret"),
        charge_id=_charge_id_from_intent(intent),
        metadata=dict(_plain(intent.get("metadata"))),
    )


def _to_refund(refund) -> GatewayRefund:
    refund = _plain(refund)
    return GatewayRefund(id=refund["id"], status=refund["status"], amount=int(refund.get("amount") or 0))


class StripeGateway:
    """
    Thin wrapper over stripe.StripeClient.

    Every stripe.StripeError becomes GatewayError (HTTP 502, retryable by
    the caller). construct_event raises ValueError or
    stripe.SignatureVerificationError for untrusted payloads.
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        *,
        timeout: float = 10.0,
        max_retries: int = 2,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = None

    @property
    def client(self) -> stripe.StripeClient:
        if self._client is None:
            if not self.api_key:
                raise GatewayError("Payment gateway is not configured (STRIPE_SECRET_KEY missing)")
            self._client = stripe.StripeClient(
                self.api_key,
                http_client=stripe.new_default_http_client(timeout=self.timeout),
                max_network_retries=self.max_retries,
            )
        return self._client

    # -- Intents --

    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        *,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayIntent:
        params = {
            "amount": amount_cents,
            "currency": currency,
            "metadata": metadata or {},
            "automatic_payment_methods": {"enabled": True},
        }
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        try:
            intent = self.client.payment_intents.create(params=params, options=options)
        except stripe.StripeError as e:
            current_app.logger.error("Stripe create intent failed: %s", e.user_message or str(e))
            raise GatewayError(f"Failed to create payment intent: {e}") from e
        return _to_intent(intent)

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        try:
            intent = self.client.payment_intents.retrieve(intent_id)
        except stripe.StripeError as e:
            current_app.logger.error("Stripe retrieve intent %s failed: %s", intent_id, e.user_message or str(e))
            raise GatewayError(f"Failed to retrieve payment intent: {e}") from e
        return _to_intent(intent)

    # -- Refunds --

    def refund(
        self,
        charge_id: str,
        *,
        amount_cents: int | None = None,
        reason: str = "requested_by_customer",
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> GatewayRefund:
        params = {"charge": charge_id, "reason": reason, "metadata": metadata or {}}
        if amount_cents is not None:
            params["amount"] = amount_cents
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        try:
            refund = self.client.refunds.create(params=params, options=options)
        except stripe.StripeError as e:
            current_app.logger.error("Stripe refund for charge %s failed: %s", charge_id, e.user_message or str(e))
            raise GatewayError(f"Failed to process refund: {e}") from e
        return _to_refund(refund)

    # -- Webhooks --

    def construct_event(self, payload: bytes | str, sig_header: str | None) -> dict:
        """
        Verify the Stripe-Signature header and return the event as a plain dict.

        Raises ValueError (malformed payload or missing secret) or
        stripe.SignatureVerificationError (bad signature).
        """
        if not self.webhook_secret:
            raise ValueError("Webhook secret is not configured")
        if not sig_header:
            raise stripe.SignatureVerificationError("Missing Stripe-Signature header", sig_header, payload)
        stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        return json.loads(payload)


def init_gateway(app) -> StripeGateway:
    gateway = StripeGateway(
        api_key=app.config.get("STRIPE_SECRET_KEY", ""),
        webhook_secret=app.config.get("STRIPE_WEBHOOK_SECRET", ""),
        timeout=app.config.get("PAYMENT_GATEWAY_TIMEOUT", 10.0),
        max_retries=app.config.get("PAYMENT_GATEWAY_MAX_RETRIES", 2),
    )
    app.extensions["payment_gateway"] = gateway
    return gateway


def get_gateway() -> StripeGateway:
    return current_app.extensions["payment_gateway"]
