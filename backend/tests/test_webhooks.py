# Overview: Pytest coverage for payment webhook verification and reconciliation.

"""
Webhook Reconciliation Tests

Covers:
- Signature verification (bad / missing signature -> 400, no state change)
- Exactly-once processing per gateway event id
- Forward-only transitions (failed never downgrades succeeded)
- Succeeded intent without an order -> UnreconciledCapture, resolved by a later confirm
- charge.refunded completes a pending refund
"""

from retailcore.models import Order, PaymentEvent, UnreconciledCapture
from retailcore.services import payment_service

from conftest import actor_for, card_request, post_webhook, sign_webhook, webhook_event


def _intent_obj(intent_id, tenant, amount=1000, status="succeeded"):
    return {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "amount_received": amount if status == "succeeded" else 0,
        "currency": "usd",
        "status": status,
        "latest_charge": f"ch_for_{intent_id}",
        "metadata": {"tenant_id": str(tenant.id)},
    }


class TestSignature:

    def test_bad_signature_rejected(self, client, db_session, tenant_a):
        payload = webhook_event("evt_bad", "payment_intent.succeeded", _intent_obj("pi_x", tenant_a))
        response = post_webhook(client, payload, secret="whsec_wrong")

        assert response.status_code == 400
        assert response.json['error'] == 'invalid_signature'
        assert db_session.query(PaymentEvent).count() == 0
        assert db_session.query(UnreconciledCapture).count() == 0

    def test_missing_signature_rejected(self, client, db_session, tenant_a):
        payload = webhook_event("evt_nosig", "payment_intent.succeeded", _intent_obj("pi_x", tenant_a))
        response = client.post('/api/webhooks/payments', data=payload, headers={'Content-Type': 'application/json'})

        assert response.status_code == 400
        assert db_session.query(PaymentEvent).count() == 0

    def test_tampered_payload_rejected(self, client, db_session, tenant_a):
        payload = webhook_event("evt_t", "payment_intent.succeeded", _intent_obj("pi_x", tenant_a))
        header = sign_webhook(payload)
        tampered = payload.replace('"amount": 1000', '"amount": 1')

        response = client.post(
            '/api/webhooks/payments',
            data=tampered,
            headers={'Stripe-Signature': header, 'Content-Type': 'application/json'},
        )
        assert response.status_code == 400


class TestReconciliation:

    def test_duplicate_delivery_processed_once(self, client, db_session, tenant_a, card_order):
        payload = webhook_event("evt_dup", "payment_intent.succeeded", _intent_obj(card_order.payment_intent_id, tenant_a))

        first = post_webhook(client, payload)
        second = post_webhook(client, payload)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json == {'received': True}
        assert db_session.query(PaymentEvent).filter_by(gateway_event_id="evt_dup").count() == 1

    def test_reconcile_returns_duplicate(self, db_session, tenant_a, card_order):
        event = {
            "id": "evt_twice",
            "type": "payment_intent.succeeded",
            "data": {"object": _intent_obj(card_order.payment_intent_id, tenant_a)},
        }
        assert payment_service.reconcile_webhook(event) == payment_service.OUTCOME_NOOP
        assert payment_service.reconcile_webhook(event) == payment_service.OUTCOME_DUPLICATE

    def test_failed_after_succeeded_is_ignored(self, client, db_session, tenant_a, card_order):
        payload = webhook_event(
            "evt_fail",
            "payment_intent.payment_failed",
            _intent_obj(card_order.payment_intent_id, tenant_a, status="requires_payment_method"),
        )
        response = post_webhook(client, payload)

        assert response.status_code == 200
        db_session.refresh(card_order)
        assert card_order.status == "completed"
        assert card_order.payment_status == "succeeded"
        event = db_session.query(PaymentEvent).filter_by(gateway_event_id="evt_fail").one()
        assert event.outcome == payment_service.OUTCOME_NOOP

    def test_success_without_order_is_queued(self, client, db_session, tenant_a):
        payload = webhook_event("evt_orphan", "payment_intent.succeeded", _intent_obj("pi_orphan", tenant_a, amount=4200))
        response = post_webhook(client, payload)

        assert response.status_code == 200
        capture = db_session.query(UnreconciledCapture).one()
        assert capture.tenant_id == tenant_a.id
        assert capture.payment_intent_id == "pi_orphan"
        assert capture.detected_via == "webhook"
        assert capture.amount_cents == 4200
        event = db_session.query(PaymentEvent).filter_by(gateway_event_id="evt_orphan").one()
        assert event.outcome == payment_service.OUTCOME_UNMATCHED

    def test_early_webhook_resolved_by_confirm(
        self, client, db_session, scope_a, tenant_a, cashier_a, product_a, location_a, paid_intent
    ):
        payload = webhook_event("evt_early", "payment_intent.succeeded", _intent_obj(paid_intent, tenant_a))
        post_webhook(client, payload)
        assert payment_service.list_unreconciled(scope_a)[0].payment_intent_id == paid_intent

        order, created = payment_service.confirm_and_commit(
            scope_a, actor_for(cashier_a), paid_intent, card_request(location_a, (product_a.id, 2)),
        )

        assert created is True
        assert order.payment_intent_id == paid_intent
        assert payment_service.list_unreconciled(scope_a) == []

    def test_capture_queued_alongside_commit_is_not_open_work(self, client, db_session, scope_a, tenant_a, card_order):
        # Left behind when a success webhook races the confirm.
        db_session.add(UnreconciledCapture(
            tenant_id=tenant_a.id,
            payment_intent_id=card_order.payment_intent_id,
            amount_cents=1000,
            detected_via="webhook",
            reason="Succeeded intent has no committed order",
            status="open",
        ))
        db_session.commit()

        assert payment_service.list_unreconciled(scope_a) == []
        assert len(payment_service.list_unreconciled(scope_a, status=None)) == 1
        body = client.get('/api/health').json
        assert body['checks']['database']['details']['open_unreconciled_captures'] == 0

    def test_unknown_tenant_ignored(self, client, db_session):
        obj = {"id": "pi_nowhere", "object": "payment_intent", "status": "succeeded", "metadata": {}}
        response = post_webhook(client, webhook_event("evt_nowhere", "payment_intent.succeeded", obj))

        assert response.status_code == 200
        assert db_session.query(PaymentEvent).count() == 0
        assert db_session.query(UnreconciledCapture).count() == 0

    def test_dispute_is_recorded_but_ignored(self, client, db_session, tenant_a, card_order):
        obj = {"id": "dp_1", "object": "dispute", "payment_intent": card_order.payment_intent_id, "amount": 1000}
        response = post_webhook(client, webhook_event("evt_dispute", "charge.dispute.created", obj))

        assert response.status_code == 200
        event = db_session.query(PaymentEvent).filter_by(gateway_event_id="evt_dispute").one()
        assert event.outcome == payment_service.OUTCOME_IGNORED
        assert event.order_id == card_order.id
        db_session.refresh(card_order)
        assert card_order.status == "completed"


class TestRefundWebhook:

    def test_charge_refunded_completes_pending_refund(self, client, db_session, scope_a, gateway, cashier_a, card_order):
        gateway.refund_status = "pending"
        payment_service.refund(scope_a, actor_for(cashier_a), card_order.id)

        obj = {
            "id": card_order.charge_id,
            "object": "charge",
            "payment_intent": card_order.payment_intent_id,
            "refunded": True,
            "amount_refunded": 1000,
        }
        response = post_webhook(client, webhook_event("evt_refund", "charge.refunded", obj))

        assert response.status_code == 200
        order = db_session.get(Order, card_order.id)
        db_session.refresh(order)
        assert order.status == "refunded"
        assert order.payment_status == "succeeded"

    def test_refund_outside_checkout(self, client, db_session, card_order):
        obj = {
            "id": card_order.charge_id,
            "object": "charge",
            "payment_intent": card_order.payment_intent_id,
            "refunded": True,
            "amount_refunded": 1000,
        }
        post_webhook(client, webhook_event("evt_dash_refund", "charge.refunded", obj))

        db_session.refresh(card_order)
        assert card_order.status == "refunded"
        assert card_order.refunded_cents == 1000
