# Overview: Checkout orchestrator; sequences gate, assembly, ledger and payment into one unit.

"""
Checkout Orchestrator

SEQUENCE (cash / digital):
    authorize -> assemble_order -> BEGIN (write)
        insert Order(status=completed)
        for each line: inventory_service.reserve_and_decrement(commit=False)
        insert OrderLines
    COMMIT

SEQUENCE (card):
    authorize -> assemble_order -> payment_service.create_intent(total)
    Nothing is persisted; the client pays and calls confirm, which re-runs
    assembly and commit_order for the succeeded intent.

ATOMICITY: every decrement and the order rows share one database
transaction. A failing line rolls the transaction back, which restores
every decrement made before it. A rollback that fails is logged critical
and re-raised.

GAP: "digital" is committed exactly like cash; no gateway is involved.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..errors import OrderNotFound
from ..models import Order, OrderLine, UnreconciledCapture
from ..permissions import Capability, role_grants
from ..time_utils import utcnow
from . import inventory_service
from .access_service import Actor, assigned_location_ids, authorize
from .concurrency import atomic
from .order_service import CheckoutRequest, OrderDraft, assemble_order
from .payment_gateway import GatewayIntent
from .tenant_service import TenantScope


@dataclass(frozen=True)
class CheckoutResult:
    """Either a committed order (cash/digital) or an intent awaiting payment (card)."""
    draft: OrderDraft
    order: Order | None = None
    intent: GatewayIntent | None = None

    @property
    def payment_required(self) -> bool:
        return self.intent is not None


def commit_order(
    scope: TenantScope,
    actor: Actor | None,
    draft: OrderDraft,
    *,
    payment_intent_id: str | None = None,
    charge_id: str | None = None,
    payment_status: str | None = None,
) -> Order:
    """
    Persist an assembled draft and decrement inventory as one transaction.

    Raises InsufficientStock if any line's guarded decrement fails; nothing
    is persisted in that case. For card orders, an open UnreconciledCapture
    for the same intent (webhook arrived first) is resolved in the same
    transaction.
    """
    from .payment_service import OUTCOME_APPLIED, STATUS_COMPLETED, _log_payment_event

    def _op():
        order = Order(
            tenant_id=scope.tenant_id,
            location_id=draft.location_id,
            customer_id=draft.customer_id,
            created_by_user_id=actor.user_id if actor else None,
            subtotal_cents=draft.subtotal_cents,
            discount_cents=draft.discount_cents,
            tax_cents=draft.tax_cents,
            total_cents=draft.total_cents,
            currency=draft.currency,
            payment_method=draft.payment_method,
            status=STATUS_COMPLETED,
            payment_intent_id=payment_intent_id,
            charge_id=charge_id,
            payment_status=payment_status,
        )
        db.session.add(order)
        db.session.flush()

        for line in draft.lines:
            inventory_service.reserve_and_decrement(
                scope,
                line.product_id,
                draft.location_id,
                line.quantity,
                order_id=order.id,
                actor_user_id=actor.user_id if actor else None,
                commit=False,
            )
            db.session.add(OrderLine(
                tenant_id=scope.tenant_id,
                order_id=order.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
            ))

        if payment_intent_id:
            _log_payment_event(
                scope,
                event_type="order.committed",
                outcome=OUTCOME_APPLIED,
                order=order,
                payment_intent_id=payment_intent_id,
                actor_user_id=actor.user_id if actor else None,
            )
            queued = scope.query(UnreconciledCapture).filter(
                UnreconciledCapture.payment_intent_id == payment_intent_id,
                UnreconciledCapture.status == "open",
            ).first()
            if queued is not None:
                queued.status = "resolved"
                queued.resolved_at = utcnow()
                queued.reason = f"{queued.reason or ''}\nResolved: order {order.id} committed".strip()

        db.session.flush()
        return order

    order = atomic(_op, context="commit_order")
    current_app.logger.info(
        "Committed order %s (tenant %s, location %s, %s, total %s cents)",
        order.id, scope.tenant_id, order.location_id, order.payment_method, order.total_cents,
    )
    return order


def checkout(scope: TenantScope, actor: Actor | None, request: CheckoutRequest) -> CheckoutResult:
    """
    Entry point for POST /api/checkout.

    Raises Unauthenticated/Forbidden/LocationAccessDenied before any work,
    then the assembler's validation errors, InsufficientStock, or
    GatewayError (card intent creation).
    """
    from .payment_service import create_intent

    authorize(scope, actor, Capability.MANAGE_TRANSACTIONS, request.location_id)

    draft = assemble_order(
        scope,
        request.location_id,
        request.items,
        request.discount_cents,
        request.payment_method,
        customer_id=request.customer_id,
    )

    if draft.payment_method == "card":
        intent = create_intent(
            scope,
            draft.total_cents,
            draft.currency,
            metadata={"location_id": str(draft.location_id)},
        )
        return CheckoutResult(draft=draft, intent=intent)

    order = commit_order(scope, actor, draft)
    return CheckoutResult(draft=draft, order=order)


def get_order(scope: TenantScope, actor: Actor | None, order_id: int) -> Order:
    authorize(scope, actor, Capability.MANAGE_TRANSACTIONS)
    order = scope.get(Order, order_id)
    if order is None:
        raise OrderNotFound("Transaction not found", details={"order_id": order_id})
    authorize(scope, actor, Capability.MANAGE_TRANSACTIONS, order.location_id)
    return order


def list_orders(
    scope: TenantScope,
    actor: Actor | None,
    *,
    location_id: int | None = None,
    customer_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    """
    Paginated order listing, newest first.

    Actors without blanket location access only see orders of their
    assigned locations.
    """
    authorize(scope, actor, Capability.MANAGE_TRANSACTIONS, location_id)

    base_query = scope.query(Order)
    if location_id is not None:
        base_query = base_query.filter(Order.location_id == location_id)
    elif not role_grants(actor.role, Capability.ACCESS_ALL_LOCATIONS):
        allowed = assigned_location_ids(scope, actor.user_id)
        base_query = base_query.filter(Order.location_id.in_(allowed or [-1]))
    if customer_id is not None:
        base_query = base_query.filter(Order.customer_id == customer_id)
    if status:
        base_query = base_query.filter(Order.status == status)

    per_page = min(max(per_page or 20, 1), 100)
    page = max(page or 1, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    orders = (
        base_query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    return {
        "items": [o.to_dict() for o in orders],
        "count": len(orders),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
