# Overview: Pytest coverage for tender normalization and change rules.

from types import SimpleNamespace

import pytest

from salecore.errors import InsufficientLoyaltyPoints, ValidationError
from salecore.services.payment_service import (
    METHOD_CARD,
    METHOD_CASH,
    METHOD_LOYALTY,
    METHOD_SPLIT,
    TenderSplit,
    normalize_payments,
    points_needed_for_amount,
)


class TestSingleTender:
    def test_cash_with_change(self):
        summary = normalize_payments(METHOD_CASH, 3000, [], grand_total_cents=2200)

        assert summary.method == METHOD_CASH
        assert summary.change_cents == 800
        assert [(p.method, p.amount_cents) for p in summary.payments] == [(METHOD_CASH, 3000)]

    def test_amount_defaults_to_grand_total(self):
        summary = normalize_payments(METHOD_CARD, None, [], grand_total_cents=2200)
        assert summary.amount_paid_cents == 2200
        assert summary.change_cents == 0

    def test_underpayment(self):
        with pytest.raises(ValidationError):
            normalize_payments(METHOD_CASH, 2000, [], grand_total_cents=2200)

    def test_card_overpayment(self):
        with pytest.raises(ValidationError):
            normalize_payments(METHOD_CARD, 2500, [], grand_total_cents=2200)

    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            normalize_payments("cheque", 2200, [], grand_total_cents=2200)

    def test_split_without_tenders(self):
        with pytest.raises(ValidationError):
            normalize_payments(METHOD_SPLIT, 2200, [], grand_total_cents=2200)


class TestSplitTender:
    def test_distinct_methods_force_split(self):
        splits = [TenderSplit(METHOD_CASH, 1000), TenderSplit(METHOD_CARD, 1200, "TERM-77")]
        summary = normalize_payments(METHOD_CASH, 1, splits, grand_total_cents=2200)

        assert summary.method == METHOD_SPLIT
        assert summary.amount_paid_cents == 2200
        assert summary.change_cents == 0
        assert summary.payments[1].reference_id == "TERM-77"

    def test_same_method_stays_single(self):
        splits = [TenderSplit(METHOD_CARD, 1000), TenderSplit(METHOD_CARD, 1200)]
        summary = normalize_payments(None, None, splits, grand_total_cents=2200)
        assert summary.method == METHOD_CARD

    def test_change_comes_from_cash_part(self):
        splits = [TenderSplit(METHOD_CASH, 1500), TenderSplit(METHOD_CARD, 1200)]
        summary = normalize_payments(None, None, splits, grand_total_cents=2200)
        assert summary.change_cents == 500

    def test_change_larger_than_cash_part(self):
        splits = [TenderSplit(METHOD_CASH, 100), TenderSplit(METHOD_CARD, 2500)]
        with pytest.raises(ValidationError):
            normalize_payments(None, None, splits, grand_total_cents=2200)

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_split(self, amount):
        with pytest.raises(ValidationError):
            normalize_payments(None, None, [TenderSplit(METHOD_CASH, amount)], grand_total_cents=0)

    def test_loyalty_cannot_be_a_split(self):
        with pytest.raises(ValidationError):
            normalize_payments(None, None, [TenderSplit(METHOD_LOYALTY, 2200)], grand_total_cents=2200)

    def test_loyalty_cannot_combine_with_splits(self):
        with pytest.raises(ValidationError):
            normalize_payments(METHOD_LOYALTY, None, [TenderSplit(METHOD_CASH, 2200)], grand_total_cents=2200)


class TestLoyaltyTender:
    def test_points_round_up_to_whole_units(self):
        assert points_needed_for_amount(2200) == 22
        assert points_needed_for_amount(2201) == 23

    def test_redeems_points_without_tender_rows(self):
        customer = SimpleNamespace(id=1, loyalty_points=50)
        summary = normalize_payments(METHOD_LOYALTY, None, [], grand_total_cents=2200, customer=customer)

        assert summary.method == METHOD_LOYALTY
        assert summary.loyalty_points_redeemed == 22
        assert summary.payments == []

    def test_requires_customer(self):
        with pytest.raises(ValidationError):
            normalize_payments(METHOD_LOYALTY, None, [], grand_total_cents=2200)

    def test_insufficient_points(self):
        customer = SimpleNamespace(id=1, loyalty_points=10)
        with pytest.raises(InsufficientLoyaltyPoints) as exc:
            normalize_payments(METHOD_LOYALTY, None, [], grand_total_cents=2200, customer=customer)
        assert exc.value.details["points_needed"] == 22
