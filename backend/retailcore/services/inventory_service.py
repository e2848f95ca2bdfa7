# Overview: Inventory ledger; the only writer of per (tenant, product, location) quantities.

"""
Inventory Ledger Invariants (authoritative)

Storage:
- One InventoryRecord per (tenant, product, location), created lazily on the
  first stock assignment. Absence of a record means quantity 0.
- quantity >= 0 at all times. The guarded decrement refuses to cross zero
  and a CHECK constraint backs it at the database.

Concurrency:
- reserve_and_decrement is a single guarded UPDATE
  (SET quantity = quantity - n WHERE key AND quantity >= n). The database
  serializes writers on the row, so the second of two concurrent
  decrements sees the first one's effect. No read-then-write.
- On SQLite the write transaction is opened with BEGIN IMMEDIATE.
- version_id is bumped on every change so ORM writers (upsert_levels)
  detect lost updates with StaleDataError and retry.

Audit:
- Every quantity change appends a StockMovement in the same DB transaction.
- Writers take commit=False when they are part of a larger unit of work
  (checkout); the caller owns the transaction boundary then.
"""

from __future__ import annotations

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStock, LocationNotFound, ProductNotFound, ValidationError
from ..extensions import db
from ..models import InventoryRecord, Location, Product, StockMovement
from ..time_utils import utcnow
from .concurrency import atomic, begin_write, lock_for_update
from .tenant_service import TenantScope


# Movement reasons
SALE = "SALE"
RESTOCK = "RESTOCK"
LEVEL_SET = "LEVEL_SET"
TRANSFER_OUT = "TRANSFER_OUT"
TRANSFER_IN = "TRANSFER_IN"


def _require_positive_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive integer", details={"amount": amount})
    return amount


def _require_non_negative(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer", details={name: value})
    return value


def _require_product(scope: TenantScope, product_id: int) -> Product:
    product = scope.get(Product, product_id)
    if product is None:
        raise ProductNotFound("Product not found", details={"product_id": product_id})
    return product


def _require_location(scope: TenantScope, location_id: int) -> Location:
    location = scope.get(Location, location_id)
    if location is None:
        raise LocationNotFound("Location not found", details={"location_id": location_id})
    return location


def _key_filter(scope: TenantScope, product_id: int, location_id: int):
    return (
        InventoryRecord.tenant_id == scope.tenant_id,
        InventoryRecord.product_id == product_id,
        InventoryRecord.location_id == location_id,
    )


def _record_movement(
    scope: TenantScope,
    product_id: int,
    location_id: int,
    *,
    reason: str,
    delta: int,
    quantity_after: int,
    order_id: int | None = None,
    reference: str | None = None,
    actor_user_id: int | None = None,
) -> StockMovement:
    movement = StockMovement(
        tenant_id=scope.tenant_id,
        product_id=product_id,
        location_id=location_id,
        reason=reason,
        quantity_delta=delta,
        quantity_after=quantity_after,
        order_id=order_id,
        reference=reference,
        actor_user_id=actor_user_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    return movement


def _run(func, *, commit: bool, context: str):
    if commit:
        return atomic(func, context=context)
    begin_write()
    return func()


# =============================================================================
# Reads
# =============================================================================

def get_quantity(scope: TenantScope, product_id: int, location_id: int) -> int:
    """Quantity on hand; a missing record reads as 0."""
    value = (
        db.session.query(InventoryRecord.quantity)
        .filter(*_key_filter(scope, product_id, location_id))
        .scalar()
    )
    return int(value or 0)


def get_record(scope: TenantScope, product_id: int, location_id: int) -> InventoryRecord | None:
    return scope.query(InventoryRecord).filter(
        InventoryRecord.product_id == product_id,
        InventoryRecord.location_id == location_id,
    ).first()


def list_low_stock(scope: TenantScope, location_id: int | None = None) -> list[InventoryRecord]:
    """Records at or below their reorder point, lowest quantity first."""
    q = scope.query(InventoryRecord).filter(InventoryRecord.quantity <= InventoryRecord.reorder_point)
    if location_id is not None:
        q = q.filter(InventoryRecord.location_id == location_id)
    return q.order_by(InventoryRecord.quantity.asc(), InventoryRecord.id.asc()).all()


def list_movements(
    scope: TenantScope,
    product_id: int | None = None,
    location_id: int | None = None,
    *,
    limit: int = 100,
) -> list[StockMovement]:
    q = scope.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if location_id is not None:
        q = q.filter(StockMovement.location_id == location_id)
    return q.order_by(StockMovement.id.desc()).limit(limit).all()


# =============================================================================
# Writes
# =============================================================================

def _decrement(
    scope: TenantScope,
    product_id: int,
    location_id: int,
    amount: int,
    *,
    reason: str,
    order_id: int | None,
    reference: str | None,
    actor_user_id: int | None,
) -> int:
    stmt = (
        update(InventoryRecord)
        .where(*_key_filter(scope, product_id, location_id), InventoryRecord.quantity >= amount)
        .values(
            quantity=InventoryRecord.quantity - amount,
            version_id=InventoryRecord.version_id + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)

    if result.rowcount == 0:
        available = get_quantity(scope, product_id, location_id)
        product = scope.get(Product, product_id)
        raise InsufficientStock(
            "Insufficient stock",
            product_id=product_id,
            location_id=location_id,
            requested=amount,
            available=available,
            product_name=product.name if product else None,
        )

    new_quantity = get_quantity(scope, product_id, location_id)
    _record_movement(
        scope, product_id, location_id,
        reason=reason,
        delta=-amount,
        quantity_after=new_quantity,
        order_id=order_id,
        reference=reference,
        actor_user_id=actor_user_id,
    )
    return new_quantity


def _increment(
    scope: TenantScope,
    product_id: int,
    location_id: int,
    amount: int,
    *,
    reason: str,
    order_id: int | None,
    reference: str | None,
    actor_user_id: int | None,
) -> int:
    stmt = (
        update(InventoryRecord)
        .where(*_key_filter(scope, product_id, location_id))
        .values(
            quantity=InventoryRecord.quantity + amount,
            version_id=InventoryRecord.version_id + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session="fetch")
    )
    if db.session.execute(stmt).rowcount == 0:
        _require_product(scope, product_id)
        _require_location(scope, location_id)
        try:
            with db.session.begin_nested():
                db.session.add(InventoryRecord(
                    tenant_id=scope.tenant_id,
                    product_id=product_id,
                    location_id=location_id,
                    quantity=amount,
                ))
        except IntegrityError:
            # Lost the lazy-create race; the row exists now.
            db.session.execute(stmt)

    new_quantity = get_quantity(scope, product_id, location_id)
    _record_movement(
        scope, product_id, location_id,
        reason=reason,
        delta=amount,
        quantity_after=new_quantity,
        order_id=order_id,
        reference=reference,
        actor_user_id=actor_user_id,
    )
    return new_quantity


def reserve_and_decrement(
    scope: TenantScope,
    product_id: int,
    location_id: int,
    amount: int,
    *,
    order_id: int | None = None,
    reference: str | None = None,
    actor_user_id: int | None = None,
    commit: bool = True,
) -> int:
    """
    Atomically check quantity >= amount and subtract it. Returns the new quantity.

    Raises InsufficientStock (requested vs. available) when the guard fails;
    nothing is decremented in that case.
    """
    amount = _require_positive_amount(amount)

    def _op():
        return _decrement(
            scope, product_id, location_id, amount,
            reason=SALE,
            order_id=order_id,
            reference=reference,
            actor_user_id=actor_user_id,
        )

    return _run(_op, commit=commit, context="reserve_and_decrement")


def increment(
    scope: TenantScope,
    product_id: int,
    location_id: int,
    amount: int,
    *,
    reason: str = RESTOCK,
    order_id: int | None = None,
    reference: str | None = None,
    actor_user_id: int | None = None,
    commit: bool = True,
) -> int:
    """
    Add stock. Always succeeds for a product and location of this tenant;
    creates the record on first use. Returns the new quantity.
    """
    amount = _require_positive_amount(amount)

    def _op():
        return _increment(
            scope, product_id, location_id, amount,
            reason=reason,
            order_id=order_id,
            reference=reference,
            actor_user_id=actor_user_id,
        )

    return _run(_op, commit=commit, context="increment")


def upsert_levels(
    scope: TenantScope,
    product_id: int,
    location_id: int,
    *,
    quantity: int,
    min_stock: int = 0,
    reorder_point: int = 0,
    actor_user_id: int | None = None,
) -> InventoryRecord:
    """
    Administrative set of quantity and thresholds (not used by checkout).

    The row is locked (SELECT ... FOR UPDATE) and written through the ORM,
    so a concurrent change surfaces as StaleDataError and the whole
    operation is retried.
    """
    quantity = _require_non_negative("quantity", quantity)
    min_stock = _require_non_negative("min_stock", min_stock)
    reorder_point = _require_non_negative("reorder_point", reorder_point)

    def _op():
        _require_product(scope, product_id)
        _require_location(scope, location_id)

        record = lock_for_update(
            scope.query(InventoryRecord).filter(
                InventoryRecord.product_id == product_id,
                InventoryRecord.location_id == location_id,
            )
        ).first()

        previous = 0
        if record is None:
            record = InventoryRecord(
                tenant_id=scope.tenant_id,
                product_id=product_id,
                location_id=location_id,
            )
            db.session.add(record)
        else:
            previous = record.quantity

        record.quantity = quantity
        record.min_stock = min_stock
        record.reorder_point = reorder_point
        db.session.flush()

        if quantity != previous:
            _record_movement(
                scope, product_id, location_id,
                reason=LEVEL_SET,
                delta=quantity - previous,
                quantity_after=quantity,
                actor_user_id=actor_user_id,
            )
        return record

    return atomic(_op, context="upsert_levels")


def transfer(
    scope: TenantScope,
    product_id: int,
    from_location_id: int,
    to_location_id: int,
    quantity: int,
    *,
    reference: str | None = None,
    actor_user_id: int | None = None,
) -> tuple[int, int]:
    """
    Move stock between two locations of the same tenant in one transaction.

    Returns (from_quantity, to_quantity) after the move. InsufficientStock at
    the source leaves both locations untouched.
    """
    quantity = _require_positive_amount(quantity)
    if from_location_id == to_location_id:
        raise ValidationError("Source and destination locations must differ")

    def _op():
        _require_product(scope, product_id)
        _require_location(scope, from_location_id)
        _require_location(scope, to_location_id)

        from_qty = _decrement(
            scope, product_id, from_location_id, quantity,
            reason=TRANSFER_OUT,
            order_id=None,
            reference=reference,
            actor_user_id=actor_user_id,
        )
        to_qty = _increment(
            scope, product_id, to_location_id, quantity,
            reason=TRANSFER_IN,
            order_id=None,
            reference=reference,
            actor_user_id=actor_user_id,
        )
        return from_qty, to_qty

    return atomic(_op, context="transfer")


def total_sold(scope: TenantScope, product_id: int, location_id: int) -> int:
    """Units removed by sales for a key, from the movement journal."""
    value = (
        db.session.query(func.coalesce(func.sum(StockMovement.quantity_delta), 0))
        .filter(
            StockMovement.tenant_id == scope.tenant_id,
            StockMovement.product_id == product_id,
            StockMovement.location_id == location_id,
            StockMovement.reason == SALE,
        )
        .scalar()
    )
    return -int(value or 0)
