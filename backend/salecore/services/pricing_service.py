"""
Pricing Service

WHY: Line and cart totals are computed from server-held product data only.
Client-sent unit prices and tax hints are carried for diagnostics but never
used in any total.

MONEY: integer cents. Tax rates are basis points (1000 = 10%); tax is
rounded half-up to the cent and charged on the line after its discount.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import InvalidItem, ValidationError


BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: int
    unit_price_cents: int
    sub_total_cents: int
    discount_cents: int
    tax_amount_cents: int


@dataclass
class PricedCart:
    sub_total_cents: int = 0
    tax_total_cents: int = 0
    line_discount_total_cents: int = 0
    lines: list[PricedLine] = field(default_factory=list)


def round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half away from zero."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    sign = -1 if numerator < 0 else 1
    return sign * ((abs(numerator) * 2 + denominator) // (2 * denominator))


def calculate_line_tax(taxable_cents: int, tax_rate_bps: int) -> int:
    if tax_rate_bps <= 0 or taxable_cents <= 0:
        return 0
    return round_half_up(taxable_cents * tax_rate_bps, BPS_DENOMINATOR)


def price_items(cart_items, products: dict) -> PricedCart:
    """
    Price a cart against loaded products.

    cart_items: sequence of objects with product_id, quantity, discount_cents.
    products: {product_id: Product}.
    """
    if not cart_items:
        raise ValidationError("Cart is empty")

    cart = PricedCart()
    for index, item in enumerate(cart_items):
        product = products.get(item.product_id)
        if product is None:
            raise InvalidItem(f"Product {item.product_id} not found", details={"line": index})
        if not product.is_active:
            raise InvalidItem(f"Product {product.sku} is inactive", details={"line": index, "product_id": product.id})

        quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidItem("Quantity must be a positive integer", details={"line": index, "product_id": product.id})
        if product.price_cents is None or product.price_cents < 0:
            raise InvalidItem(f"Product {product.sku} has no valid price", details={"line": index, "product_id": product.id})

        sub_total = quantity * product.price_cents
        discount = item.discount_cents or 0
        if discount < 0 or discount > sub_total:
            raise InvalidItem(
                "Line discount must be between 0 and the line sub total",
                details={"line": index, "product_id": product.id, "discount_cents": discount},
            )

        tax = calculate_line_tax(sub_total - discount, product.tax_rate_bps or 0)

        cart.lines.append(PricedLine(
            product_id=product.id,
            quantity=quantity,
            unit_price_cents=product.price_cents,
            sub_total_cents=sub_total,
            discount_cents=discount,
            tax_amount_cents=tax,
        ))
        cart.sub_total_cents += sub_total
        cart.tax_total_cents += tax
        cart.line_discount_total_cents += discount

    return cart
