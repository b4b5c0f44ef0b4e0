# Overview: Tender normalization for the sale engine; no database writes.

"""
Payment Normalization

WHY: A sale is paid either with one tender ({payment_method, amount_paid})
or with a list of tender splits. The orchestrator only ever sees one
normalized PaymentSummary, whatever shape the request had.

RULES:
- Split amounts are positive cents; split methods are cash, card or
  bank_transfer.
- Two or more distinct split methods force payment_method = split, and
  amount_paid becomes the sum of the splits.
- A loyalty tender cannot be combined with splits. It needs an attached
  customer holding at least ceil(amount_paid) points (one point per whole
  currency unit).
- Completed sales are fully paid. Only cash produces change, and never more
  change than the cash tendered.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import InsufficientLoyaltyPoints, ValidationError


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_SPLIT = "split"
METHOD_LOYALTY = "loyalty"

TENDER_METHODS = (METHOD_CASH, METHOD_CARD, METHOD_BANK_TRANSFER)
SALE_PAYMENT_METHODS = TENDER_METHODS + (METHOD_SPLIT, METHOD_LOYALTY)

CENTS_PER_UNIT = 100


@dataclass(frozen=True)
class TenderSplit:
    method: str
    amount_cents: int
    reference_id: str | None = None


@dataclass
class PaymentSummary:
    method: str
    amount_paid_cents: int
    change_cents: int = 0
    payments: list[TenderSplit] = field(default_factory=list)
    loyalty_points_redeemed: int = 0

    @property
    def cash_tendered_cents(self) -> int:
        return sum(p.amount_cents for p in self.payments if p.method == METHOD_CASH)


def points_needed_for_amount(amount_cents: int) -> int:
    """Points required to pay `amount_cents`: ceil of the amount in currency units."""
    return -(-amount_cents // CENTS_PER_UNIT)


def _validate_splits(splits) -> list[TenderSplit]:
    validated = []
    for index, split in enumerate(splits):
        if split.method not in TENDER_METHODS:
            raise ValidationError(
                f"Invalid tender method: {split.method}. Must be one of {list(TENDER_METHODS)}",
                details={"payment": index},
            )
        amount = split.amount_cents
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Tender amount must be positive", details={"payment": index})
        validated.append(split)
    return validated


def calculate_change(summary: PaymentSummary, grand_total_cents: int) -> int:
    """
    Change owed on a normalized tender.

    Raises ValidationError when the sale is underpaid or when a non-cash
    tender exceeds the amount due.
    """
    paid = summary.amount_paid_cents
    if paid < grand_total_cents:
        raise ValidationError(
            "Amount paid is less than the amount due",
            details={"amount_paid_cents": paid, "grand_total_cents": grand_total_cents},
        )

    change = paid - grand_total_cents
    if change == 0:
        return 0

    if summary.method == METHOD_CASH:
        return change
    if summary.method == METHOD_SPLIT and change <= summary.cash_tendered_cents:
        return change
    raise ValidationError(
        "Non-cash tender cannot exceed the amount due",
        details={"amount_paid_cents": paid, "grand_total_cents": grand_total_cents},
    )


def normalize_payments(
    method: str | None,
    amount_paid_cents: int | None,
    splits,
    *,
    grand_total_cents: int,
    customer=None,
) -> PaymentSummary:
    """Reduce a single tender or a list of splits to one PaymentSummary, change included."""
    splits = list(splits or [])

    if splits:
        if method == METHOD_LOYALTY:
            raise ValidationError("Loyalty points cannot be combined with other tenders")
        tenders = _validate_splits(splits)
        methods = {t.method for t in tenders}
        summary = PaymentSummary(
            method=METHOD_SPLIT if len(methods) > 1 else tenders[0].method,
            amount_paid_cents=sum(t.amount_cents for t in tenders),
            payments=tenders,
        )

    elif method == METHOD_SPLIT:
        raise ValidationError("Split payment requires at least one tender")

    elif method == METHOD_LOYALTY:
        amount = grand_total_cents if amount_paid_cents is None else amount_paid_cents
        if customer is None:
            raise ValidationError("Loyalty payment requires a customer")
        needed = points_needed_for_amount(amount)
        if (customer.loyalty_points or 0) < needed:
            raise InsufficientLoyaltyPoints(
                "Customer does not have enough loyalty points",
                details={
                    "customer_id": customer.id,
                    "points_needed": needed,
                    "points_available": customer.loyalty_points or 0,
                },
            )
        summary = PaymentSummary(
            method=METHOD_LOYALTY,
            amount_paid_cents=amount,
            loyalty_points_redeemed=needed,
        )

    elif method in TENDER_METHODS:
        amount = grand_total_cents if amount_paid_cents is None else amount_paid_cents
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError("Amount paid is invalid")
        summary = PaymentSummary(method=method, amount_paid_cents=amount)
        if amount > 0:
            summary.payments.append(TenderSplit(method=method, amount_cents=amount))

    else:
        raise ValidationError(
            f"Invalid payment method: {method}. Must be one of {list(SALE_PAYMENT_METHODS)}"
        )

    summary.change_cents = calculate_change(summary, grand_total_cents)
    return summary
