from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

class InventoryRecord(db.Model):
    """
    Ledger row: stock on hand for one (tenant, product, location).

    INVARIANTS:
    - quantity >= 0 (enforced by the guarded decrement and a CHECK constraint)
    - Created lazily on first stock assignment for a pair.
    - Written only by services/inventory_service.py.
    - Never deleted while referenced by history; zero the quantity instead.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "product_id", "location_id", name="uq_inventory_tenant_product_location"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_records_quantity_nonnegative"),
        db.Index("ix_inventory_tenant_location", "tenant_id", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    reorder_point = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    location = db.relationship("Location")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord product_id={self.product_id} location_id={self.location_id} "
            f"quantity={self.quantity}>"
        )

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.reorder_point

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "min_stock": self.min_stock,
            "reorder_point": self.reorder_point,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }

class StockMovement(db.Model):
    """
    Append-only journal of quantity changes.

    WHY: Makes "sum of decrements == sum of sold quantities" auditable.
    Written in the same DB transaction as the change it records, so a
    rolled-back checkout leaves no movement behind.

    REASONS: SALE, RESTOCK, LEVEL_SET, TRANSFER_OUT, TRANSFER_IN
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_key", "tenant_id", "product_id", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    reason = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    reference = db.Column(db.String(64), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "reason": self.reason,
            "quantity_delta": self.quantity_delta,
            "quantity_after": self.quantity_after,
            "order_id": self.order_id,
            "reference": self.reference,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
