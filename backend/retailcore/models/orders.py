from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

class Order(db.Model):
    """
    Committed sale (a.k.a. transaction).

    WHY: Immutable once committed except for status/payment_status, which
    only the payment coordinator moves (webhook reconciliation and refunds).

    STATUS: pending, completed, failed, refunded, refund_pending
    PAYMENT STATUS: None (cash/digital), succeeded, failed, or a gateway
    refund status string (e.g. "pending").

    Card orders carry payment_intent_id, unique per tenant, which makes
    confirm retries idempotent at the database level.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "payment_intent_id", name="uq_orders_tenant_payment_intent"),
        db.Index("ix_orders_tenant_location_created", "tenant_id", "location_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    payment_method = db.Column(db.String(16), nullable=False)  # cash, card, digital
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # External payment references (card only)
    payment_intent_id = db.Column(db.String(255), nullable=True, index=True)
    charge_id = db.Column(db.String(255), nullable=True)
    payment_status = db.Column(db.String(32), nullable=True)

    refund_id = db.Column(db.String(255), nullable=True)
    refunded_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    location = db.relationship("Location")
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} tenant_id={self.tenant_id} status={self.status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "location_id": self.location_id,
            "customer_id": self.customer_id,
            "created_by_user_id": self.created_by_user_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "status": self.status,
            "payment_intent_id": self.payment_intent_id,
            "charge_id": self.charge_id,
            "payment_status": self.payment_status,
            "refund_id": self.refund_id,
            "refunded_cents": self.refunded_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data

class OrderLine(db.Model):
    """Line item snapshot. unit_price_cents is frozen at commit time."""
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("lines", lazy=True, order_by="OrderLine.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
        }

class PaymentEvent(db.Model):
    """
    Append-only ledger of payment lifecycle events.

    WHY: Audit trail for confirmations, refunds and webhook deliveries.
    gateway_event_id is unique: a redelivered webhook finds its own row
    and is skipped (exactly-once reconciliation).

    OUTCOMES: applied, noop, unmatched, ignored
    """
    __tablename__ = "payment_events"
    __table_args__ = (
        db.UniqueConstraint("gateway_event_id", name="uq_payment_events_gateway_event"),
        db.Index("ix_payment_events_tenant_intent", "tenant_id", "payment_intent_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    gateway_event_id = db.Column(db.String(255), nullable=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    payment_intent_id = db.Column(db.String(255), nullable=True)
    outcome = db.Column(db.String(16), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    order = db.relationship("Order", backref=db.backref("payment_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_id": self.order_id,
            "gateway_event_id": self.gateway_event_id,
            "event_type": self.event_type,
            "payment_intent_id": self.payment_intent_id,
            "outcome": self.outcome,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }

class UnreconciledCapture(db.Model):
    """
    Operator review queue: the gateway captured funds but no order exists.

    Raised by confirm_and_commit when the local commit fails after the
    intent succeeded, and by webhook reconciliation when a success event
    arrives for an intent with no order. One open row per intent.
    """
    __tablename__ = "unreconciled_captures"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "payment_intent_id", name="uq_unreconciled_captures_intent"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    payment_intent_id = db.Column(db.String(255), nullable=False)
    charge_id = db.Column(db.String(255), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=True)
    currency = db.Column(db.String(3), nullable=True)

    detected_via = db.Column(db.String(16), nullable=False)  # confirm, webhook
    reason = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="open", index=True)  # open, resolved

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "payment_intent_id": self.payment_intent_id,
            "charge_id": self.charge_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "detected_via": self.detected_via,
            "reason": self.reason,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
        }
