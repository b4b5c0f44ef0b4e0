"""
Request-shape normalization for the HTTP boundary.

Registers send sale payloads in a few shapes:
- flat: {"items": [...], "payment_method": "cash", ...}
- nested: {"sale": {...}, "items": [...]} or {"saleData": {...}, "items": [...], "userId": 7}
- camelCase or snake_case keys, at any level

Everything here reduces those to the engine's SaleRequest. All money fields
are integer cents.
"""

from __future__ import annotations

import re
from typing import Any

from .errors import ValidationError
from .services.payment_service import TenderSplit
from .services.return_service import ReturnLine
from .services.sales_service import CartLine, SaleRequest


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")

# Accepted spellings -> canonical field
_SALE_ALIASES = {
    "amount_paid": "amount_paid_cents",
    "discount": "discount_cents",
    "discount_total": "discount_cents",
    "discount_total_cents": "discount_cents",
    "split_payments": "payments",
    "user_id": "cashier_id",
}
_ITEM_ALIASES = {
    "id": "product_id",
    "discount": "discount_cents",
    "price": "client_price_cents",
    "unit_price": "client_price_cents",
    "unit_price_cents": "client_price_cents",
    "client_price": "client_price_cents",
    "tax": "tax_hint_cents",
    "tax_hint": "tax_hint_cents",
    "tax_amount": "tax_hint_cents",
    "tax_amount_cents": "tax_hint_cents",
}
_PAYMENT_ALIASES = {
    "amount": "amount_cents",
    "payment_method": "method",
    "reference": "reference_id",
}


def to_snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def _normalize_keys(data: dict, aliases: dict[str, str]) -> dict:
    normalized = {}
    for key, value in data.items():
        snake = to_snake(key)
        normalized[aliases.get(snake, snake)] = value
    return normalized


def coerce_int(value: Any, field: str, *, required: bool = False, default: int | None = None) -> int | None:
    """
    Strict integer coercion.

    Accepts ints and plain digit strings; rejects bools, floats, decimals
    and scientific notation.
    """
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_cart_line(raw: Any, index: int) -> CartLine:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")
    data = _normalize_keys(raw, _ITEM_ALIASES)
    return CartLine(
        product_id=coerce_int(data.get("product_id"), f"items[{index}].product_id", required=True),
        quantity=coerce_int(data.get("quantity"), f"items[{index}].quantity", required=True),
        discount_cents=coerce_int(data.get("discount_cents"), f"items[{index}].discount_cents", default=0),
        client_price_cents=coerce_int(data.get("client_price_cents"), f"items[{index}].client_price_cents"),
        tax_hint_cents=coerce_int(data.get("tax_hint_cents"), f"items[{index}].tax_hint_cents"),
    )


def parse_tender(raw: Any, index: int) -> TenderSplit:
    if not isinstance(raw, dict):
        raise ValidationError(f"payments[{index}] must be an object")
    data = _normalize_keys(raw, _PAYMENT_ALIASES)
    method = _optional_str(data.get("method"))
    if method is None:
        raise ValidationError(f"payments[{index}].method is required")
    return TenderSplit(
        method=method.lower(),
        amount_cents=coerce_int(data.get("amount_cents"), f"payments[{index}].amount_cents", required=True),
        reference_id=_optional_str(data.get("reference_id")),
    )


def parse_sale_request(payload: Any, cashier_id: int | None = None) -> SaleRequest:
    """
    Build a SaleRequest from any accepted body shape.

    `cashier_id` comes from the authenticated request; a body-supplied
    user id is only used when the header did not carry one.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    top = _normalize_keys(payload, _SALE_ALIASES)
    nested = top.get("sale") or top.get("sale_data")
    if nested is not None:
        if not isinstance(nested, dict):
            raise ValidationError("sale must be an object")
        data = _normalize_keys(nested, _SALE_ALIASES)
        for key in ("items", "payments", "cashier_id"):
            if key not in data and key in top:
                data[key] = top[key]
    else:
        data = top

    items = data.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    payments = data.get("payments") or []
    if not isinstance(payments, list):
        raise ValidationError("payments must be a list")

    cashier = cashier_id or coerce_int(data.get("cashier_id"), "cashier_id")
    if not cashier:
        raise ValidationError("Cashier ID is required")

    method = _optional_str(data.get("payment_method"))
    return SaleRequest(
        cashier_id=cashier,
        items=[parse_cart_line(raw, i) for i, raw in enumerate(items)],
        payment_method=method.lower() if method else None,
        amount_paid_cents=coerce_int(data.get("amount_paid_cents"), "amount_paid_cents"),
        payments=[parse_tender(raw, i) for i, raw in enumerate(payments)],
        customer_id=coerce_int(data.get("customer_id"), "customer_id"),
        promo_code=_optional_str(data.get("promo_code")),
        approval_code=_optional_str(data.get("approval_code")),
        manager_id=coerce_int(data.get("manager_id"), "manager_id"),
        discount_cents=coerce_int(data.get("discount_cents"), "discount_cents", default=0),
        note=_optional_str(data.get("note")),
    )


def parse_return_lines(raw_lines: Any) -> list[ReturnLine]:
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("items must be a non-empty list")
    lines = []
    for index, raw in enumerate(raw_lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        data = _normalize_keys(raw, {})
        lines.append(ReturnLine(
            sale_item_id=coerce_int(data.get("sale_item_id"), f"items[{index}].sale_item_id", required=True),
            quantity=coerce_int(data.get("quantity"), f"items[{index}].quantity", required=True),
        ))
    return lines
