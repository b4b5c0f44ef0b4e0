# Overview: Pytest coverage for full refunds and partial return requests.

import pytest

from salecore.errors import AlreadyRefunded, NotFound, PersistenceError, ValidationError
from salecore.models import Customer, Product, ProductBatch, ReturnRequest, Sale, SaleItem, StockMovement
from salecore.models.inventory import MOVEMENT_RETURN
from salecore.models.returns import RETURN_STATUS_COMPLETED, RETURN_STATUS_PENDING, RETURN_STATUS_REJECTED
from salecore.models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_REFUNDED
from salecore.services import return_service
from salecore.services.repository import Repository
from salecore.services.return_service import ReturnLine
from salecore.services.sales_service import CartLine, SaleOrchestrator, SaleRequest


CASHIER = 1


@pytest.fixture
def sell(repo, open_shift):
    def _sell(*lines, **kwargs):
        request = SaleRequest(cashier_id=CASHIER, items=list(lines), payment_method="cash", **kwargs)
        return SaleOrchestrator(repo).create_sale(request)
    return _sell


class FailingReturnMovementRepository(Repository):
    """Fails the second return movement insert."""

    def __init__(self, session):
        super().__init__(session)
        self.return_movements = 0

    def insert(self, obj):
        if isinstance(obj, StockMovement) and obj.type == MOVEMENT_RETURN:
            self.return_movements += 1
            if self.return_movements == 2:
                raise PersistenceError("Failed to insert StockMovement: OperationalError")
        return super().insert(obj)


@pytest.fixture
def two_line_sale(db_session, sell, make_product):
    products = [make_product(lots=[5]), make_product(lots=[5])]
    sale = sell(CartLine(products[0].id, 2), CartLine(products[1].id, 3)).sale
    return sale, products


def _assert_as_sold(db_session, repo, sale, products):
    db_session.expire_all()
    assert repo.read_value(Sale, sale.id, "status") == SALE_STATUS_COMPLETED
    assert repo.read_value(Sale, sale.id, "refunded_at") is None
    assert [repo.read_value(Product, p.id, "stock_quantity") for p in products] == [3, 2]
    assert [_lots(db_session, p.id) for p in products] == [[3], [2]]
    assert [i.returned_quantity for i in repo.sale_items(sale.id)] == [0, 0]
    assert db_session.query(StockMovement).filter_by(type=MOVEMENT_RETURN).count() == 0


def _lots(db_session, product_id):
    db_session.expire_all()
    return [
        b.quantity_remaining
        for b in db_session.query(ProductBatch).filter_by(product_id=product_id).order_by(ProductBatch.id)
    ]


class TestRefundSale:
    def test_refund_restores_lots_and_flips_status(self, db_session, repo, sell, make_product):
        product = make_product(lots=[5, 3])
        sale = sell(CartLine(product.id, 6)).sale

        result = return_service.refund_sale(repo, sale.id, CASHIER)

        assert result.sale.status == SALE_STATUS_REFUNDED
        assert result.sale.refunded_at is not None
        assert _lots(db_session, product.id) == [5, 3]
        assert repo.read_value(Product, product.id, "stock_quantity") == 8
        assert sum(m.quantity_change for m in result.movements) == 6

    def test_second_refund_is_rejected(self, db_session, repo, sell, make_product):
        product = make_product(lots=[5])
        sale = sell(CartLine(product.id, 2)).sale
        return_service.refund_sale(repo, sale.id, CASHIER)

        with pytest.raises(AlreadyRefunded):
            return_service.refund_sale(repo, sale.id, CASHIER)
        assert repo.read_value(Product, product.id, "stock_quantity") == 5

    def test_refund_reverses_loyalty(self, repo, sell, make_product, make_customer):
        product = make_product(price_cents=1000, tax_rate_bps=1000, lots=[10])
        customer = make_customer()
        sale = sell(CartLine(product.id, 2), customer_id=customer.id).sale
        assert repo.read_value(Customer, customer.id, "loyalty_points") == 2

        result = return_service.refund_sale(repo, sale.id, CASHIER)

        assert result.warnings == []
        assert repo.read_value(Customer, customer.id, "loyalty_points") == 0

    def test_refund_skips_units_already_returned(self, repo, sell, make_product):
        product = make_product(lots=[10])
        sale = sell(CartLine(product.id, 4)).sale
        item = repo.sale_items(sale.id)[0]
        ret = return_service.create_return(repo, sale.id, [ReturnLine(item.id, 1)], CASHIER)
        return_service.complete_return(repo, ret.id, CASHIER)

        result = return_service.refund_sale(repo, sale.id, CASHIER)

        assert sum(m.quantity_change for m in result.movements) == 3
        assert repo.read_value(Product, product.id, "stock_quantity") == 10

    def test_failure_mid_refund_restores_sold_state(self, db_session, two_line_sale):
        sale, products = two_line_sale
        repo = FailingReturnMovementRepository(db_session)

        with pytest.raises(PersistenceError) as exc:
            return_service.refund_sale(repo, sale.id, CASHIER)

        assert exc.value.rollback_errors == []
        _assert_as_sold(db_session, repo, sale, products)

        # nothing left half-done, so a clean retry succeeds
        result = return_service.refund_sale(Repository(db_session), sale.id, CASHIER)
        assert result.sale.status == SALE_STATUS_REFUNDED

    def test_unknown_sale(self, repo):
        with pytest.raises(NotFound):
            return_service.refund_sale(repo, 999, CASHIER)

    def test_actor_required(self, repo, sell, make_product):
        product = make_product(lots=[5])
        sale = sell(CartLine(product.id, 1)).sale
        with pytest.raises(ValidationError):
            return_service.refund_sale(repo, sale.id, None)


class TestReturnRequests:
    def test_refund_amount_is_share_of_net_line(self, repo, sell, make_product):
        product = make_product(price_cents=1000, tax_rate_bps=1000, lots=[10])
        sale = sell(CartLine(product.id, 2)).sale
        item = repo.sale_items(sale.id)[0]

        ret = return_service.create_return(repo, sale.id, [ReturnLine(item.id, 1)], CASHIER, reason="Damaged")

        assert ret.status == RETURN_STATUS_PENDING
        # (2000 + 200 tax) / 2
        assert ret.refund_amount_cents == 1100
        # nothing restocked yet
        assert repo.read_value(Product, product.id, "stock_quantity") == 8

    def test_complete_partial_then_rest(self, db_session, repo, sell, make_product):
        product = make_product(lots=[10])
        sale = sell(CartLine(product.id, 2)).sale
        item = repo.sale_items(sale.id)[0]

        first = return_service.create_return(repo, sale.id, [ReturnLine(item.id, 1)], CASHIER)
        completed, movements = return_service.complete_return(repo, first.id, CASHIER)

        assert completed.status == RETURN_STATUS_COMPLETED
        assert completed.completed_at is not None
        assert [m.quantity_change for m in movements] == [1]
        assert repo.read_value(SaleItem, item.id, "returned_quantity") == 1
        assert repo.read_value(Sale, sale.id, "status") == SALE_STATUS_COMPLETED

        second = return_service.create_return(repo, sale.id, [ReturnLine(item.id, 1)], CASHIER)
        return_service.complete_return(repo, second.id, CASHIER)

        assert repo.read_value(Sale, sale.id, "status") == SALE_STATUS_REFUNDED
        assert repo.read_value(Product, product.id, "stock_quantity") == 10

    def test_pending_returns_reserve_units(self, repo, sell, make_product):
        product = make_product(lots=[10])
        sale = sell(CartLine(product.id, 2)).sale
        item = repo.sale_items(sale.id)[0]

        return_service.create_return(repo, sale.id, [ReturnLine(item.id, 2)], CASHIER)
        with pytest.raises(ValidationError) as exc:
            return_service.create_return(repo, sale.id, [ReturnLine(item.id, 1)], CASHIER)
        assert exc.value.details["available"] == 0

    def test_reject_releases_units(self, repo, sell, make_product):
        product = make_product(lots=[10])
        sale = sell(CartLine(product.id, 2)).sale
        item = repo.sale_items(sale.id)[0]
        ret = return_service.create_return(repo, sale.id, [ReturnLine(item.id, 2)], CASHIER)

        rejected = return_service.reject_return(repo, ret.id, CASHIER, reason="No receipt")

        assert rejected.status == RETURN_STATUS_REJECTED
        assert rejected.reason == "No receipt"
        assert repo.read_value(Product, product.id, "stock_quantity") == 8
        again = return_service.create_return(repo, sale.id, [ReturnLine(item.id, 2)], CASHIER)
        assert again.status == RETURN_STATUS_PENDING

    def test_failure_mid_completion_leaves_return_pending(self, db_session, repo, two_line_sale):
        sale, products = two_line_sale
        items = repo.sale_items(sale.id)
        ret = return_service.create_return(
            repo, sale.id, [ReturnLine(items[0].id, 2), ReturnLine(items[1].id, 3)], CASHIER
        )

        with pytest.raises(PersistenceError):
            return_service.complete_return(FailingReturnMovementRepository(db_session), ret.id, CASHIER)

        _assert_as_sold(db_session, repo, sale, products)
        assert repo.read_value(ReturnRequest, ret.id, "status") == RETURN_STATUS_PENDING

    def test_promo_discount_is_not_refunded(self, repo, sell, make_product, make_promotion):
        product = make_product(price_cents=1000, lots=[10])
        make_promotion(code="SAVE10", value=1000)
        sale = sell(CartLine(product.id, 2), promo_code="SAVE10").sale
        assert sale.grand_total_cents == 1800
        item = repo.sale_items(sale.id)[0]

        ret = return_service.create_return(repo, sale.id, [ReturnLine(item.id, 2)], CASHIER)

        assert ret.refund_amount_cents == 1800

    def test_order_discount_spread_across_lines(self, repo, sell, make_product, make_promotion):
        cheap = make_product(price_cents=1000, lots=[10])
        dear = make_product(price_cents=3000, lots=[10])
        make_promotion(code="SAVE10", value=1000)
        sale = sell(CartLine(cheap.id, 1), CartLine(dear.id, 1), promo_code="SAVE10").sale
        cheap_item, dear_item = repo.sale_items(sale.id)

        first = return_service.create_return(repo, sale.id, [ReturnLine(cheap_item.id, 1)], CASHIER)
        second = return_service.create_return(repo, sale.id, [ReturnLine(dear_item.id, 1)], CASHIER)

        assert (first.refund_amount_cents, second.refund_amount_cents) == (900, 2700)
        assert first.refund_amount_cents + second.refund_amount_cents == sale.grand_total_cents

    def test_unit_by_unit_returns_add_up_to_line_total(self, repo, sell, make_product):
        product = make_product(price_cents=1000, tax_rate_bps=825, lots=[10])
        sale = sell(CartLine(product.id, 3)).sale
        item = repo.sale_items(sale.id)[0]

        refunds = [
            return_service.create_return(repo, sale.id, [ReturnLine(item.id, 1)], CASHIER).refund_amount_cents
            for _ in range(3)
        ]

        # 3000 + 248 tax
        assert sum(refunds) == sale.grand_total_cents == 3248
        assert max(refunds) - min(refunds) <= 1

    def test_completed_return_cannot_be_completed_again(self, repo, sell, make_product):
        product = make_product(lots=[10])
        sale = sell(CartLine(product.id, 1)).sale
        item = repo.sale_items(sale.id)[0]
        ret = return_service.create_return(repo, sale.id, [ReturnLine(item.id, 1)], CASHIER)
        return_service.complete_return(repo, ret.id, CASHIER)

        with pytest.raises(ValidationError):
            return_service.complete_return(repo, ret.id, CASHIER)

    @pytest.mark.parametrize("quantity", [0, -1, 3])
    def test_invalid_quantities(self, repo, sell, make_product, quantity):
        product = make_product(lots=[10])
        sale = sell(CartLine(product.id, 2)).sale
        item = repo.sale_items(sale.id)[0]

        with pytest.raises(ValidationError):
            return_service.create_return(repo, sale.id, [ReturnLine(item.id, quantity)], CASHIER)

    def test_item_from_another_sale(self, repo, sell, make_product):
        product = make_product(lots=[10])
        first = sell(CartLine(product.id, 1)).sale
        second = sell(CartLine(product.id, 1)).sale
        foreign = repo.sale_items(second.id)[0]

        with pytest.raises(ValidationError):
            return_service.create_return(repo, first.id, [ReturnLine(foreign.id, 1)], CASHIER)

    def test_refunded_sale_takes_no_returns(self, repo, sell, make_product):
        product = make_product(lots=[10])
        sale = sell(CartLine(product.id, 1)).sale
        item = repo.sale_items(sale.id)[0]
        return_service.refund_sale(repo, sale.id, CASHIER)

        with pytest.raises(AlreadyRefunded):
            return_service.create_return(repo, sale.id, [ReturnLine(item.id, 1)], CASHIER)
