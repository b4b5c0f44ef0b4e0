# Overview: Pytest coverage for promo codes and the manager discount gate.

from datetime import date
from types import SimpleNamespace

import pytest

from salecore.errors import DiscountLimitExceeded, InvalidPromotion, ValidationError
from salecore.models.promotions import PROMO_FIXED, PROMO_PERCENTAGE
from salecore.services.promotions_service import (
    calculate_promo_discount,
    check_discount_limit,
    evaluate_promotion,
)


TODAY = date(2026, 10, 18)


class TestEvaluatePromotion:
    def test_no_code_means_no_promotion(self, repo):
        assert evaluate_promotion(repo, None, 5000, TODAY) is None
        assert evaluate_promotion(repo, "", 5000, TODAY) is None

    def test_valid_code(self, repo, make_promotion):
        make_promotion(code="SPRING", start_date=date(2026, 10, 1), end_date=date(2026, 10, 31))
        promo = evaluate_promotion(repo, "SPRING", 5000, TODAY)
        assert promo.code == "SPRING"

    def test_unknown_code(self, repo):
        with pytest.raises(InvalidPromotion):
            evaluate_promotion(repo, "NOPE", 5000, TODAY)

    def test_inactive_code(self, repo, make_promotion):
        make_promotion(code="OFF", is_active=False)
        with pytest.raises(InvalidPromotion):
            evaluate_promotion(repo, "OFF", 5000, TODAY)

    def test_outside_date_window(self, repo, make_promotion):
        make_promotion(code="LATER", start_date=date(2026, 11, 1))
        make_promotion(code="OVER", end_date=date(2026, 10, 17))

        with pytest.raises(InvalidPromotion):
            evaluate_promotion(repo, "LATER", 5000, TODAY)
        with pytest.raises(InvalidPromotion):
            evaluate_promotion(repo, "OVER", 5000, TODAY)

    def test_end_date_is_inclusive(self, repo, make_promotion):
        make_promotion(code="LASTDAY", end_date=TODAY)
        assert evaluate_promotion(repo, "LASTDAY", 5000, TODAY) is not None

    def test_minimum_order(self, repo, make_promotion):
        make_promotion(code="BIG", min_order_cents=10000)
        with pytest.raises(InvalidPromotion) as exc:
            evaluate_promotion(repo, "BIG", 9999, TODAY)
        assert exc.value.details["min_order_cents"] == 10000


class TestPromoDiscount:
    def test_percentage_in_basis_points(self):
        promo = SimpleNamespace(promo_type=PROMO_PERCENTAGE, value=1000)
        assert calculate_promo_discount(promo, 2500) == 250

    def test_fixed_is_capped_at_sub_total(self):
        promo = SimpleNamespace(promo_type=PROMO_FIXED, value=5000)
        assert calculate_promo_discount(promo, 2000) == 2000

    def test_none(self):
        assert calculate_promo_discount(None, 2000) == 0


class TestDiscountLimit:
    def test_at_threshold_is_allowed(self):
        check_discount_limit(1000, 100, 0, threshold_percent=10)

    def test_above_threshold_requires_approval(self):
        with pytest.raises(DiscountLimitExceeded) as exc:
            check_discount_limit(1000, 100, 50, threshold_percent=10)
        assert exc.value.http_status == 403
        assert exc.value.details["discount_cents"] == 150

    def test_approval_code_lifts_the_gate(self):
        check_discount_limit(1000, 100, 400, threshold_percent=10, approval_code="MGR-1234")

    def test_manager_id_lifts_the_gate(self):
        check_discount_limit(1000, 0, 900, threshold_percent=10, manager_id=9)

    def test_negative_manual_discount(self):
        with pytest.raises(ValidationError):
            check_discount_limit(1000, 0, -1, threshold_percent=10)

    def test_discount_on_empty_sub_total(self):
        with pytest.raises(DiscountLimitExceeded):
            check_discount_limit(0, 0, 1, threshold_percent=10)
