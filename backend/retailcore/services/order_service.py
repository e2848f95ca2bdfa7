# Overview: Order assembler; validates a cart and prices it into an unpersisted draft.

"""
Order Assembler

Pure read-and-compute step: resolves products and the location within the
tenant, picks each line's effective unit price, pre-checks availability and
computes totals. Nothing is written, so it is safe to call repeatedly (the
card path runs it once at checkout and again at confirmation).

PRICING:
- per-location override (Product.location_prices) wins if present
- otherwise base price x Location.pricing_multiplier, rounded half-up to the cent

TOTALS (cents):
- subtotal = sum(unit_price x quantity)
- tax = 0 (placeholder; Location.tax_rate is not applied)
- total = max(0, subtotal - discount)

The availability check here is advisory. The ledger's guarded decrement is
the final authority at commit time.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from ..errors import (
    CustomerNotFound,
    InsufficientStock,
    LocationNotFound,
    ProductNotFound,
    ValidationError,
)
from ..models import Customer, Location, Product
from . import inventory_service
from .tenant_service import TenantScope


PAYMENT_METHODS = ("cash", "card", "digital")


@dataclass(frozen=True)
class CartItem:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class CheckoutRequest:
    """Validated checkout body. Amounts are integer cents."""
    location_id: int
    items: tuple[CartItem, ...]
    payment_method: str
    discount_cents: int = 0
    customer_id: int | None = None


@dataclass(frozen=True)
class DraftLine:
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int
    line_total_cents: int


@dataclass(frozen=True)
class OrderDraft:
    tenant_id: int
    location_id: int
    customer_id: int | None
    payment_method: str
    currency: str
    lines: tuple[DraftLine, ...]
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int


def effective_unit_price_cents(product: Product, location: Location) -> int:
    override = product.location_price_cents(location.id)
    if override is not None:
        return override
    multiplier = Decimal(str(location.pricing_multiplier if location.pricing_multiplier is not None else "1.00"))
    price = (Decimal(product.price_cents) * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(price)


def _validate_items(items) -> None:
    if not items:
        raise ValidationError("At least one item is required")
    for item in items:
        quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(
                "Quantity must be a positive integer",
                details={"product_id": item.product_id, "quantity": quantity},
            )


def assemble_order(
    scope: TenantScope,
    location_id: int,
    items,
    discount_cents: int,
    payment_method: str,
    customer_id: int | None = None,
) -> OrderDraft:
    """
    Validate and price a cart.

    Raises:
        ValidationError: empty cart, bad quantity, bad payment method, negative discount
        LocationNotFound / CustomerNotFound / ProductNotFound: not in this tenant (or inactive)
        InsufficientStock: on-hand quantity below the requested total for a product
    """
    _validate_items(items)

    if payment_method not in PAYMENT_METHODS:
        raise ValidationError("Invalid payment method", details={"payment_method": payment_method})

    if isinstance(discount_cents, bool) or not isinstance(discount_cents, int) or discount_cents < 0:
        raise ValidationError("Discount must be a non-negative amount", details={"discount_cents": discount_cents})

    location = scope.get(Location, location_id)
    if location is None or not location.is_active:
        raise LocationNotFound("Location not found", details={"location_id": location_id})

    if customer_id is not None and scope.get(Customer, customer_id) is None:
        raise CustomerNotFound("Customer not found", details={"customer_id": customer_id})

    products: dict[int, Product] = {}
    lines: list[DraftLine] = []
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            product = scope.get(Product, item.product_id)
            if product is None or not product.is_active:
                raise ProductNotFound("Product not found", details={"product_id": item.product_id})
            products[product.id] = product

        unit = effective_unit_price_cents(product, location)
        lines.append(DraftLine(
            product_id=product.id,
            product_name=product.name,
            quantity=item.quantity,
            unit_price_cents=unit,
            line_total_cents=unit * item.quantity,
        ))

    # Availability pre-check, aggregated so repeated lines of one product add up.
    requested: dict[int, int] = OrderedDict()
    for line in lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    for product_id, quantity in requested.items():
        available = inventory_service.get_quantity(scope, product_id, location.id)
        if available < quantity:
            product = products[product_id]
            raise InsufficientStock(
                f"Insufficient stock for {product.name}",
                product_id=product_id,
                location_id=location.id,
                requested=quantity,
                available=available,
                product_name=product.name,
            )

    subtotal = sum(line.line_total_cents for line in lines)
    tax = 0
    total = max(0, subtotal - discount_cents + tax)

    return OrderDraft(
        tenant_id=scope.tenant_id,
        location_id=location.id,
        customer_id=customer_id,
        payment_method=payment_method,
        currency=(location.currency or "USD").upper(),
        lines=tuple(lines),
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        tax_cents=tax,
        total_cents=total,
    )
