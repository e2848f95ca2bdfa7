# Overview: Payment coordinator; intent creation, confirm-and-commit, webhook reconciliation, refunds.

"""
Payment Coordinator

WHY: The card path is a distributed transaction between the gateway (funds)
and our database (order + inventory). This module owns the order's payment
state machine and the bridge between the two.

STATE MACHINE (per order):
    cash / digital:  NoPayment -> completed
    card:            IntentCreated -> IntentSucceeded -> OrderCommitted (completed)
                     -> RefundRequested (refund_pending) -> refunded
                     IntentFailed -> failed (terminal)

DESIGN PRINCIPLES:
- Forward only: a failed event never downgrades a succeeded payment, and
  nothing overwrites a refund state.
- Exactly once: webhook deliveries are de-duplicated by gateway event id
  (PaymentEvent.gateway_event_id is unique); confirm is de-duplicated by
  intent id (Order.payment_intent_id is unique per tenant).
- Captured funds are never silently dropped: if the local commit fails after
  the gateway reports success, an UnreconciledCapture row is stored and a
  critical log line is emitted. A later webhook for an intent with no order
  lands in the same queue.
- Refunds are financial reversals only. Inventory is not restocked.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import exists
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import (
    DomainError,
    Forbidden,
    IrreconcilableCapture,
    NotRefundable,
    OrderNotFound,
    PaymentNotCompleted,
    ValidationError,
)
from ..extensions import db
from ..models import Order, PaymentEvent, Tenant, UnreconciledCapture
from ..permissions import Capability
from ..time_utils import utcnow
from .access_service import Actor, authorize
from .concurrency import atomic, rollback_or_escalate
from .order_service import CheckoutRequest, assemble_order
from .payment_gateway import GatewayIntent, get_gateway
from .tenant_service import TenantScope


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_REFUNDED = "refunded"
STATUS_REFUND_PENDING = "refund_pending"

REFUND_STATES = (STATUS_REFUNDED, STATUS_REFUND_PENDING)


# =============================================================================
# GATEWAY STATUS / EVENT TYPES (CONSTANTS)
# =============================================================================

INTENT_SUCCEEDED = "succeeded"
PAYMENT_SUCCEEDED = "succeeded"
PAYMENT_FAILED = "failed"

EVENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_INTENT_FAILED = "payment_intent.payment_failed"
EVENT_CHARGE_REFUNDED = "charge.refunded"
EVENT_DISPUTE_CREATED = "charge.dispute.created"

# PaymentEvent outcomes
OUTCOME_APPLIED = "applied"
OUTCOME_NOOP = "noop"
OUTCOME_UNMATCHED = "unmatched"
OUTCOME_IGNORED = "ignored"
OUTCOME_DUPLICATE = "duplicate"


@dataclass(frozen=True)
class RefundResult:
    order: Order
    refund_id: str
    status: str
    amount_cents: int


def _log_payment_event(
    scope: TenantScope,
    *,
    event_type: str,
    outcome: str,
    order: Order | None = None,
    payment_intent_id: str | None = None,
    gateway_event_id: str | None = None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> PaymentEvent:
    """Append to the payment audit trail. Caller owns the transaction."""
    event = PaymentEvent(
        tenant_id=scope.tenant_id,
        order_id=order.id if order is not None else None,
        gateway_event_id=gateway_event_id,
        event_type=event_type,
        payment_intent_id=payment_intent_id,
        outcome=outcome,
        note=note[:255] if note else None,
        actor_user_id=actor_user_id,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    return event


def find_order_by_intent(scope: TenantScope, intent_id: str, *, lock: bool = False) -> Order | None:
    q = scope.query(Order).filter(Order.payment_intent_id == intent_id)
    if lock:
        q = q.with_for_update()
    return q.first()


# =============================================================================
# INTENTS
# =============================================================================

def create_intent(
    scope: TenantScope,
    amount_cents: int,
    currency: str,
    *,
    idempotency_key: str | None = None,
    metadata: dict | None = None,
) -> GatewayIntent:
    """
    Open a payment intent for amount_cents. Purely delegatory: nothing is
    persisted locally. tenant_id is stamped into the intent metadata so the
    confirm and webhook paths can re-establish the tenant.

    Raises ValidationError for a non-positive amount, GatewayError on
    transport or validation failure at the gateway.
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("Amount must be a positive number of cents", details={"amount_cents": amount_cents})

    intent_metadata = dict(metadata or {})
    intent_metadata["tenant_id"] = str(scope.tenant_id)

    intent = get_gateway().create_intent(
        amount_cents,
        currency.lower(),
        metadata=intent_metadata,
        idempotency_key=idempotency_key,
    )
    current_app.logger.info(
        "Created payment intent %s for tenant %s (%s %s)",
        intent.id, scope.tenant_id, amount_cents, currency.lower(),
    )
    return intent


def _intent_tenant_matches(scope: TenantScope, intent: GatewayIntent) -> bool:
    return str(intent.metadata.get("tenant_id", "")) == str(scope.tenant_id)


# =============================================================================
# CONFIRM AND COMMIT
# =============================================================================

def _record_unreconciled_capture(
    scope: TenantScope,
    *,
    intent_id: str,
    charge_id: str | None,
    amount_cents: int | None,
    currency: str | None,
    detected_via: str,
    reason: str,
) -> UnreconciledCapture | None:
    """
    Insert the open review row for a captured intent. Caller owns the transaction.
    Returns None if the intent is already queued.
    """
    existing = scope.query(UnreconciledCapture).filter(
        UnreconciledCapture.payment_intent_id == intent_id,
    ).first()
    if existing is not None:
        if existing.status != "open":
            existing.status = "open"
            existing.resolved_at = None
            existing.reason = reason
        return None

    capture = UnreconciledCapture(
        tenant_id=scope.tenant_id,
        payment_intent_id=intent_id,
        charge_id=charge_id,
        amount_cents=amount_cents,
        currency=currency,
        detected_via=detected_via,
        reason=reason,
        status="open",
        created_at=utcnow(),
    )
    db.session.add(capture)
    return capture


def _flag_capture_after_failure(scope: TenantScope, intent: GatewayIntent, exc: Exception) -> None:
    """
    Funds are held by the gateway and no order exists. Alert and queue
    for manual review. Never masks the original failure.
    """
    current_app.logger.critical(
        "IRRECONCILABLE CAPTURE: intent %s (tenant %s, %s %s) succeeded at the gateway "
        "but the order could not be committed: %s",
        intent.id, scope.tenant_id, intent.amount, intent.currency, exc,
    )

    def _op():
        _record_unreconciled_capture(
            scope,
            intent_id=intent.id,
            charge_id=intent.charge_id,
            amount_cents=intent.amount,
            currency=intent.currency,
            detected_via="confirm",
            reason=f"{exc.__class__.__name__}: {exc}",
        )

    try:
        atomic(_op, context="record_unreconciled_capture")
    except SQLAlchemyError:
        current_app.logger.critical(
            "Failed to queue unreconciled capture for intent %s; review gateway records manually",
            intent.id, exc_info=True,
        )


def confirm_and_commit(
    scope: TenantScope,
    actor: Actor | None,
    intent_id: str,
    request: CheckoutRequest,
) -> tuple[Order, bool]:
    """
    Commit the order for a succeeded intent. Returns (order, created).

    IDEMPOTENT: if an order already exists for intent_id it is returned with
    created=False and inventory is not touched, including when two confirms
    race (the loser hits the unique constraint and reads the winner's order).
    A replayed order is only returned to an actor allowed at its location.

    Raises:
        PaymentNotCompleted: intent status is not succeeded (no mutation)
        Forbidden: intent was created for another tenant (reason tenant_mismatch)
        LocationAccessDenied: the existing order belongs to a location the
        actor is not assigned to
        GatewayError: the intent could not be retrieved
        IrreconcilableCapture: commit failed after capture for a non-domain reason
        DomainError subclasses (e.g. InsufficientStock) after capture, once the
        capture has been queued for review
    """
    from .checkout_service import commit_order

    if not intent_id or not isinstance(intent_id, str):
        raise ValidationError("intent_id is required")

    authorize(scope, actor, Capability.MANAGE_TRANSACTIONS, request.location_id)

    existing = find_order_by_intent(scope, intent_id)
    if existing is not None:
        authorize(scope, actor, Capability.MANAGE_TRANSACTIONS, existing.location_id)
        current_app.logger.info("Confirm replay for intent %s returns order %s", intent_id, existing.id)
        return existing, False

    intent = get_gateway().retrieve_intent(intent_id)

    if not _intent_tenant_matches(scope, intent):
        raise Forbidden(
            "Payment intent does not belong to this tenant",
            details={"reason": "tenant_mismatch", "intent_id": intent_id},
        )

    if intent.status != INTENT_SUCCEEDED:
        raise PaymentNotCompleted(
            "Payment not completed",
            details={"intent_id": intent_id, "status": intent.status},
        )

    try:
        draft = assemble_order(
            scope,
            request.location_id,
            request.items,
            request.discount_cents,
            "card",
            customer_id=request.customer_id,
        )
        if draft.total_cents != intent.amount:
            current_app.logger.warning(
                "Intent %s amount %s differs from order total %s (tenant %s)",
                intent_id, intent.amount, draft.total_cents, scope.tenant_id,
            )
        order = commit_order(
            scope,
            actor,
            draft,
            payment_intent_id=intent.id,
            charge_id=intent.charge_id,
            payment_status=PAYMENT_SUCCEEDED,
        )
    except IntegrityError as exc:
        rollback_or_escalate("confirm_and_commit")
        winner = find_order_by_intent(scope, intent_id)
        if winner is not None:
            authorize(scope, actor, Capability.MANAGE_TRANSACTIONS, winner.location_id)
            current_app.logger.info("Concurrent confirm for intent %s; returning order %s", intent_id, winner.id)
            return winner, False
        _flag_capture_after_failure(scope, intent, exc)
        raise IrreconcilableCapture("Order could not be committed after payment capture") from exc
    except DomainError as exc:
        _flag_capture_after_failure(scope, intent, exc)
        raise
    except Exception as exc:
        _flag_capture_after_failure(scope, intent, exc)
        raise IrreconcilableCapture("Order could not be committed after payment capture") from exc

    return order, True


# =============================================================================
# WEBHOOK RECONCILIATION
# =============================================================================

def _event_scope(intent_id: str | None, metadata: dict | None) -> TenantScope | None:
    """
    Re-establish the tenant for a gateway event.

    Prefers the tenant_id stamped into intent metadata. Falls back to the
    order holding the intent (the only tenant-less lookup in the engine;
    intent ids are globally unique at the gateway).
    """
    raw = (metadata or {}).get("tenant_id")
    if raw is not None and str(raw).isdigit():
        tenant = db.session.get(Tenant, int(raw))
        if tenant is not None:
            return TenantScope(tenant_id=tenant.id)

    if intent_id:
        order = db.session.query(Order).filter(Order.payment_intent_id == intent_id).first()
        if order is not None:
            return TenantScope(tenant_id=order.tenant_id)
    return None


def _apply_intent_succeeded(scope: TenantScope, order: Order | None, obj: dict) -> tuple[str, str | None]:
    if order is None:
        queued = _record_unreconciled_capture(
            scope,
            intent_id=obj["id"],
            charge_id=obj.get("latest_charge") if isinstance(obj.get("latest_charge"), str) else None,
            amount_cents=obj.get("amount_received") or obj.get("amount"),
            currency=obj.get("currency"),
            detected_via="webhook",
            reason="Succeeded intent has no committed order",
        )
        current_app.logger.warning(
            "Webhook: succeeded intent %s has no order (tenant %s); queued for review",
            obj["id"], scope.tenant_id,
        )
        return OUTCOME_UNMATCHED, "queued" if queued is not None else "already queued"

    if order.status in REFUND_STATES:
        return OUTCOME_NOOP, f"order is {order.status}"

    if order.payment_status == PAYMENT_SUCCEEDED and order.status == STATUS_COMPLETED:
        return OUTCOME_NOOP, "already succeeded"

    order.payment_status = PAYMENT_SUCCEEDED
    order.status = STATUS_COMPLETED
    if not order.charge_id and isinstance(obj.get("latest_charge"), str):
        order.charge_id = obj["latest_charge"]
    return OUTCOME_APPLIED, None


def _apply_intent_failed(scope: TenantScope, order: Order | None, obj: dict) -> tuple[str, str | None]:
    if order is None:
        current_app.logger.info("Webhook: failed intent %s has no order (tenant %s)", obj["id"], scope.tenant_id)
        return OUTCOME_UNMATCHED, None

    if order.status in REFUND_STATES or order.payment_status == PAYMENT_SUCCEEDED:
        current_app.logger.warning(
            "Webhook: ignoring payment_failed for order %s; payment already %s",
            order.id, order.payment_status,
        )
        return OUTCOME_NOOP, "payment already succeeded"

    if order.payment_status == PAYMENT_FAILED and order.status == STATUS_FAILED:
        return OUTCOME_NOOP, "already failed"

    order.payment_status = PAYMENT_FAILED
    order.status = STATUS_FAILED
    return OUTCOME_APPLIED, None


def _apply_charge_refunded(scope: TenantScope, order: Order | None, obj: dict) -> tuple[str, str | None]:
    if order is None:
        return OUTCOME_UNMATCHED, None

    if order.status == STATUS_REFUND_PENDING:
        order.status = STATUS_REFUNDED
        order.payment_status = PAYMENT_SUCCEEDED
        return OUTCOME_APPLIED, None

    if order.status == STATUS_COMPLETED and obj.get("refunded"):
        # Full refund issued outside this service (e.g. gateway dashboard).
        order.status = STATUS_REFUNDED
        order.payment_status = PAYMENT_SUCCEEDED
        order.refunded_cents = int(obj.get("amount_refunded") or order.total_cents)
        return OUTCOME_APPLIED, "refunded outside checkout"

    return OUTCOME_NOOP, None


def reconcile_webhook(event: dict) -> str:
    """
    Apply one verified gateway event. Returns the outcome string.

    Idempotent twice over: a redelivered event id is skipped, and every
    transition compares current state before writing.
    """
    event_id = event.get("id")
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}

    if event_id and db.session.query(PaymentEvent.id).filter_by(gateway_event_id=event_id).first():
        current_app.logger.info("Webhook %s (%s) already processed", event_id, event_type)
        return OUTCOME_DUPLICATE

    if event_type.startswith("payment_intent."):
        intent_id = obj.get("id")
    else:
        intent_id = obj.get("payment_intent")
    scope = _event_scope(intent_id, obj.get("metadata"))

    if scope is None:
        current_app.logger.warning(
            "Webhook %s (%s) for intent %s matches no tenant; ignored",
            event_id, event_type, intent_id,
        )
        return OUTCOME_IGNORED

    handlers = {
        EVENT_INTENT_SUCCEEDED: _apply_intent_succeeded,
        EVENT_INTENT_FAILED: _apply_intent_failed,
        EVENT_CHARGE_REFUNDED: _apply_charge_refunded,
    }
    handler = handlers.get(event_type)

    def _op():
        order = find_order_by_intent(scope, intent_id, lock=True) if intent_id else None
        if handler is None:
            if event_type == EVENT_DISPUTE_CREATED:
                current_app.logger.warning(
                    "Dispute created for intent %s (order %s)",
                    intent_id, order.id if order else None,
                )
            else:
                current_app.logger.info("Unhandled webhook event type: %s", event_type)
            outcome, note = OUTCOME_IGNORED, None
        else:
            outcome, note = handler(scope, order, obj)

        _log_payment_event(
            scope,
            event_type=event_type,
            outcome=outcome,
            order=order,
            payment_intent_id=intent_id,
            gateway_event_id=event_id,
            note=note,
        )
        return outcome, order

    try:
        outcome, order = atomic(_op, context="reconcile_webhook")
    except IntegrityError:
        # Concurrent delivery of the same event id won the insert.
        current_app.logger.info("Webhook %s (%s) processed concurrently", event_id, event_type)
        return OUTCOME_DUPLICATE

    if outcome == OUTCOME_APPLIED:
        current_app.logger.info(
            "Webhook %s applied to order %s: status=%s payment_status=%s",
            event_type, order.id, order.status, order.payment_status,
        )
    return outcome


# =============================================================================
# REFUNDS
# =============================================================================

def refund(
    scope: TenantScope,
    actor: Actor | None,
    order_id: int,
    amount_cents: int | None = None,
    reason: str = "requested_by_customer",
) -> RefundResult:
    """
    Refund a card order through the gateway.

    Requires payment_status == succeeded, a charge reference and an order
    that is not already refunded. status becomes refunded when the gateway
    reports success, refund_pending otherwise; payment_status takes the
    gateway's refund status. Inventory is NOT restocked.

    Raises OrderNotFound, NotRefundable, ValidationError, GatewayError.
    """
    authorize(scope, actor, Capability.MANAGE_TRANSACTIONS)

    order = scope.get(Order, order_id)
    if order is None:
        raise OrderNotFound("Transaction not found", details={"order_id": order_id})

    authorize(scope, actor, Capability.MANAGE_TRANSACTIONS, order.location_id)

    if order.payment_status != PAYMENT_SUCCEEDED or not order.charge_id or order.status in REFUND_STATES:
        raise NotRefundable(
            "Transaction cannot be refunded",
            details={"status": order.status, "payment_status": order.payment_status},
        )

    if amount_cents is None:
        amount_cents = order.total_cents
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("Refund amount must be positive", details={"amount_cents": amount_cents})
    if amount_cents > order.total_cents:
        raise ValidationError(
            "Refund amount exceeds transaction total",
            details={"amount_cents": amount_cents, "total_cents": order.total_cents},
        )

    gateway_refund = get_gateway().refund(
        order.charge_id,
        amount_cents=amount_cents,
        reason=reason,
        metadata={"tenant_id": str(scope.tenant_id), "order_id": str(order.id)},
        idempotency_key=f"refund-{scope.tenant_id}-{order.id}-{amount_cents}",
    )

    def _op():
        locked = scope.get(Order, order_id, lock=True)
        if locked.status not in REFUND_STATES:
            locked.status = STATUS_REFUNDED if gateway_refund.status == "succeeded" else STATUS_REFUND_PENDING
            locked.payment_status = gateway_refund.status
            locked.refund_id = gateway_refund.id
            locked.refunded_cents = gateway_refund.amount or amount_cents
            _log_payment_event(
                scope,
                event_type="refund.created",
                outcome=OUTCOME_APPLIED,
                order=locked,
                payment_intent_id=locked.payment_intent_id,
                note=f"{reason}: {gateway_refund.id} ({gateway_refund.status})",
                actor_user_id=actor.user_id if actor else None,
            )
        return locked

    order = atomic(_op, context="refund")
    current_app.logger.info(
        "Refund %s for order %s: %s cents, status=%s",
        gateway_refund.id, order.id, amount_cents, order.status,
    )
    return RefundResult(
        order=order,
        refund_id=gateway_refund.id,
        status=gateway_refund.status,
        amount_cents=gateway_refund.amount or amount_cents,
    )


# =============================================================================
# OPERATOR QUEUE
# =============================================================================

def capture_has_order():
    """
    Correlated EXISTS: an order now holds the capture's intent.

    A success webhook racing a confirm can queue a capture after the
    confirm's own resolve step ran; such rows are not open work.
    """
    return exists().where(
        Order.tenant_id == UnreconciledCapture.tenant_id,
        Order.payment_intent_id == UnreconciledCapture.payment_intent_id,
    )


def list_unreconciled(scope: TenantScope, status: str | None = "open") -> list[UnreconciledCapture]:
    q = scope.query(UnreconciledCapture)
    if status:
        q = q.filter(UnreconciledCapture.status == status)
    if status == "open":
        q = q.filter(~capture_has_order())
    return q.order_by(UnreconciledCapture.created_at.asc(), UnreconciledCapture.id.asc()).all()


def resolve_unreconciled(scope: TenantScope, capture_id: int, note: str | None = None) -> UnreconciledCapture:
    def _op():
        capture = scope.get(UnreconciledCapture, capture_id, lock=True)
        if capture is None:
            raise ValidationError("Unreconciled capture not found", details={"id": capture_id})
        if capture.status != "resolved":
            capture.status = "resolved"
            capture.resolved_at = utcnow()
            if note:
                capture.reason = f"{capture.reason or ''}\nResolved: {note}".strip()
        return capture

    return atomic(_op, context="resolve_unreconciled")
