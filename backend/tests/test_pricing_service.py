# Overview: Pytest coverage for server-side line pricing and tax rounding.

from types import SimpleNamespace

import pytest

from salecore.errors import InvalidItem, ValidationError
from salecore.services.pricing_service import calculate_line_tax, price_items, round_half_up
from salecore.services.sales_service import CartLine


def _product(pid=1, price_cents=1000, tax_rate_bps=1000, is_active=True):
    return SimpleNamespace(
        id=pid, sku=f"SKU-{pid}", price_cents=price_cents, tax_rate_bps=tax_rate_bps, is_active=is_active
    )


class TestRounding:
    @pytest.mark.parametrize("numerator,expected", [(4, 0), (5, 1), (15, 2), (25, 3), (-15, -2)])
    def test_round_half_up_tenths(self, numerator, expected):
        assert round_half_up(numerator, 10) == expected

    def test_line_tax_rounds_half_cent_up(self):
        # 1005 * 10% = 100.5
        assert calculate_line_tax(1005, 1000) == 101

    def test_line_tax_rounds_down_below_half(self):
        # 999 * 8.25% = 82.4175
        assert calculate_line_tax(999, 825) == 82

    def test_zero_rate_is_untaxed(self):
        assert calculate_line_tax(5000, 0) == 0


class TestPriceItems:
    def test_prices_from_product_not_client(self):
        """Client price hints never reach the totals."""
        line = CartLine(product_id=1, quantity=2, client_price_cents=1, tax_hint_cents=0)
        cart = price_items([line], {1: _product()})

        assert cart.sub_total_cents == 2000
        assert cart.tax_total_cents == 200
        assert cart.lines[0].unit_price_cents == 1000

    def test_tax_charged_after_line_discount(self):
        line = CartLine(product_id=1, quantity=1, discount_cents=100)
        cart = price_items([line], {1: _product()})

        assert cart.lines[0].tax_amount_cents == 90
        assert cart.line_discount_total_cents == 100

    def test_multiple_lines_accumulate(self):
        products = {1: _product(1, 1000, 1000), 2: _product(2, 250, 0)}
        cart = price_items([CartLine(1, 1), CartLine(2, 4)], products)

        assert cart.sub_total_cents == 2000
        assert cart.tax_total_cents == 100
        assert len(cart.lines) == 2

    def test_empty_cart_rejected(self):
        with pytest.raises(ValidationError):
            price_items([], {})

    def test_unknown_product(self):
        with pytest.raises(InvalidItem) as exc:
            price_items([CartLine(product_id=99, quantity=1)], {})
        assert exc.value.details["line"] == 0

    def test_inactive_product(self):
        with pytest.raises(InvalidItem):
            price_items([CartLine(product_id=1, quantity=1)], {1: _product(is_active=False)})

    @pytest.mark.parametrize("quantity", [0, -1, True])
    def test_bad_quantity(self, quantity):
        with pytest.raises(InvalidItem):
            price_items([CartLine(product_id=1, quantity=quantity)], {1: _product()})

    def test_negative_price(self):
        with pytest.raises(InvalidItem):
            price_items([CartLine(product_id=1, quantity=1)], {1: _product(price_cents=-5)})

    @pytest.mark.parametrize("discount", [-1, 1001])
    def test_line_discount_out_of_range(self, discount):
        with pytest.raises(InvalidItem):
            price_items([CartLine(product_id=1, quantity=1, discount_cents=discount)], {1: _product()})
