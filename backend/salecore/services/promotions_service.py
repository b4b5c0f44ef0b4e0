from __future__ import annotations

from datetime import date

from ..errors import DiscountLimitExceeded, InvalidPromotion, ValidationError
from ..models import Promotion
from ..models.promotions import PROMO_FIXED, PROMO_PERCENTAGE
from .pricing_service import BPS_DENOMINATOR


def evaluate_promotion(repo, code: str | None, sub_total_cents: int, today: date) -> Promotion | None:
    """Look up a promo code and check it applies to this cart; None when no code was given."""
    if not code:
        return None

    promo = repo.promotion_by_code(code)
    if promo is None:
        raise InvalidPromotion(f"Promotion {code!r} not found", details={"promo_code": code})
    if not promo.is_active:
        raise InvalidPromotion(f"Promotion {code!r} is not active", details={"promo_code": code})
    if promo.start_date and today < promo.start_date:
        raise InvalidPromotion(f"Promotion {code!r} has not started", details={"promo_code": code})
    if promo.end_date and today > promo.end_date:
        raise InvalidPromotion(f"Promotion {code!r} has expired", details={"promo_code": code})
    if sub_total_cents < (promo.min_order_cents or 0):
        raise InvalidPromotion(
            f"Promotion {code!r} needs a minimum order of {promo.min_order_cents} cents",
            details={"promo_code": code, "min_order_cents": promo.min_order_cents},
        )
    return promo


def calculate_promo_discount(promo: Promotion | None, sub_total_cents: int) -> int:
    if promo is None:
        return 0
    if promo.promo_type == PROMO_PERCENTAGE:
        discount = sub_total_cents * promo.value // BPS_DENOMINATOR
    elif promo.promo_type == PROMO_FIXED:
        discount = promo.value
    else:
        raise InvalidPromotion(f"Unknown promotion type {promo.promo_type!r}")
    return max(0, min(discount, sub_total_cents))


def check_discount_limit(
    sub_total_cents: int,
    line_discount_cents: int,
    manual_discount_cents: int,
    *,
    threshold_percent: int,
    approval_code: str | None = None,
    manager_id: int | None = None,
) -> None:
    """
    Manager gate on discretionary discounts.

    Line discounts plus the manual order discount, as a share of sub_total,
    may not exceed threshold_percent unless an approval code or manager id
    accompanies the request. Promo-code discounts are not counted.
    """
    if manual_discount_cents < 0:
        raise ValidationError("Discount cannot be negative")

    combined = line_discount_cents + manual_discount_cents
    if combined == 0:
        return
    if approval_code or manager_id:
        return

    # combined / sub_total * 100 > threshold, kept in integers
    if sub_total_cents <= 0 or combined * 100 > threshold_percent * sub_total_cents:
        raise DiscountLimitExceeded(
            f"Discount above {threshold_percent}% requires manager approval",
            details={
                "discount_cents": combined,
                "sub_total_cents": sub_total_cents,
                "threshold_percent": threshold_percent,
            },
        )
