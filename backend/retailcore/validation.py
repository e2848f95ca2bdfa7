from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import ValidationError
from .services.order_service import CartItem, CheckoutRequest, PAYMENT_METHODS


# Maximum amount: $9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def parse_int(name: str, value: Any, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion: ints and digit strings only.
    Floats, booleans and scientific notation are rejected.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{name} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be >= {minimum}", details={name: result})
    return result


def parse_optional_int(name: str, value: Any, *, minimum: int | None = None) -> int | None:
    if value is None or value == "":
        return None
    return parse_int(name, value, minimum=minimum)


def parse_money_cents(name: str, value: Any, *, default: int | None = None) -> int:
    """
    Decimal currency amount ("12.50", 12.5, 12) -> integer cents, half-up.

    Must be finite and non-negative.
    """
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{name} is required")
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{name} must be a finite number")
    if amount < 0:
        raise ValidationError(f"{name} must be non-negative", details={name: str(value)})

    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{name} exceeds the maximum allowed amount")
    return cents


def parse_currency(value: Any, *, default: str) -> str:
    if value is None or value == "":
        return default.lower()
    if not isinstance(value, str) or len(value.strip()) != 3 or not value.strip().isalpha():
        raise ValidationError("currency must be a 3-letter ISO 4217 code")
    return value.strip().lower()


def parse_items(value: Any) -> tuple[CartItem, ...]:
    if not isinstance(value, list) or not value:
        raise ValidationError("At least one item is required")

    items = []
    for index, raw in enumerate(value):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = parse_int(f"items[{index}].product_id", raw.get("product_id"), minimum=1)
        quantity = parse_int(f"items[{index}].quantity", raw.get("quantity"), minimum=1)
        items.append(CartItem(product_id=product_id, quantity=quantity))
    return tuple(items)


def parse_checkout_request(payload: Any) -> CheckoutRequest:
    """
    Checkout / confirm body:
        {location_id, customer_id?, items:[{product_id, quantity}],
         payment_method, discount_amount?}
    """
    data = require_json_object(payload)

    if data.get("location_id") is None:
        raise ValidationError("location_id is required")
    location_id = parse_int("location_id", data.get("location_id"), minimum=1)
    customer_id = parse_optional_int("customer_id", data.get("customer_id"), minimum=1)
    items = parse_items(data.get("items"))
    discount_cents = parse_money_cents("discount_amount", data.get("discount_amount"), default=0)

    payment_method = data.get("payment_method")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            "payment_method must be one of: " + ", ".join(PAYMENT_METHODS),
            details={"payment_method": payment_method},
        )

    return CheckoutRequest(
        location_id=location_id,
        items=items,
        payment_method=payment_method,
        discount_cents=discount_cents,
        customer_id=customer_id,
    )


def parse_refund_reason(value: Any) -> str:
    if value is None or value == "":
        return "requested_by_customer"
    if value not in REFUND_REASONS:
        raise ValidationError(
            "reason must be one of: " + ", ".join(REFUND_REASONS),
            details={"reason": value},
        )
    return value
