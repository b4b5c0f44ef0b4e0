# Overview: Pytest coverage for FIFO lot allocation, stock restoration and reconciliation.

from datetime import date, datetime

import pytest

from salecore.errors import ExpiredBatch, InsufficientStock
from salecore.models import Product, ProductBatch, StockMovement
from salecore.models.inventory import MOVEMENT_RETURN, MOVEMENT_SALE
from salecore.services.inventory_service import (
    execute_plan,
    plan_allocation,
    reconcile_stock,
    restore_stock,
)
from salecore.services.pricing_service import PricedLine
from salecore.services.saga import CompensationLog


NOW = datetime(2026, 10, 18, 12, 0, 0)


def _line(product, quantity):
    return PricedLine(
        product_id=product.id,
        quantity=quantity,
        unit_price_cents=product.price_cents,
        sub_total_cents=product.price_cents * quantity,
        discount_cents=0,
        tax_amount_cents=0,
    )


def _remaining(db_session, product_id):
    db_session.expire_all()
    batches = (
        db_session.query(ProductBatch)
        .filter_by(product_id=product_id)
        .order_by(ProductBatch.created_at, ProductBatch.id)
        .all()
    )
    return [b.quantity_remaining for b in batches]


class TestPlanAllocation:
    def test_fifo_takes_oldest_lot_first(self, repo, make_product):
        product = make_product(lots=[5, 3])
        plan = plan_allocation(repo, [_line(product, 6)], NOW)

        allocation = plan.for_product(product.id)
        assert [(d.quantity, d.previous_remaining) for d in allocation.deductions] == [(5, 5), (1, 3)]

    def test_newer_lot_untouched_until_oldest_is_empty(self, repo, make_product):
        product = make_product(lots=[5, 10])
        plan = plan_allocation(repo, [_line(product, 8)], NOW)

        deductions = plan.for_product(product.id).deductions
        assert [d.quantity for d in deductions] == [5, 3]

        plan = plan_allocation(repo, [_line(product, 4)], NOW)
        assert [d.quantity for d in plan.for_product(product.id).deductions] == [4]

    def test_same_product_on_two_lines_is_combined(self, repo, make_product):
        product = make_product(lots=[5, 3])
        plan = plan_allocation(repo, [_line(product, 2), _line(product, 4)], NOW)
        assert plan.for_product(product.id).quantity == 6

    def test_expired_lot_blocks_allocation(self, repo, make_product):
        product = make_product(lots=[(5, date(2026, 10, 1)), 3])
        with pytest.raises(ExpiredBatch) as exc:
            plan_allocation(repo, [_line(product, 2)], NOW)
        assert exc.value.details["product_id"] == product.id

    def test_lot_expiring_today_is_still_sellable(self, repo, make_product):
        product = make_product(lots=[(5, NOW.date())])
        plan = plan_allocation(repo, [_line(product, 2)], NOW)
        assert plan.for_product(product.id).deductions[0].quantity == 2

    def test_lots_run_out(self, repo, make_product):
        product = make_product(lots=[2, 1])
        with pytest.raises(InsufficientStock) as exc:
            plan_allocation(repo, [_line(product, 4)], NOW)
        assert exc.value.details["available"] == 3

    def test_product_without_lots_uses_counter(self, repo, make_product):
        product = make_product(stock=4)
        plan = plan_allocation(repo, [_line(product, 3)], NOW)
        assert plan.for_product(product.id).deductions == []

        with pytest.raises(InsufficientStock):
            plan_allocation(repo, [_line(product, 5)], NOW)


class TestExecutePlan:
    def test_commits_lots_counter_and_movements(self, db_session, repo, make_product):
        product = make_product(lots=[5, 3])
        plan = plan_allocation(repo, [_line(product, 6)], NOW)
        log = CompensationLog(repo)

        execute_plan(repo, plan, sale_id=42, actor_id=1, log=log)

        assert _remaining(db_session, product.id) == [0, 2]
        assert repo.read_value(Product, product.id, "stock_quantity") == 2
        movements = db_session.query(StockMovement).filter_by(reference_id="42").order_by(StockMovement.id).all()
        assert [(m.type, m.quantity_change) for m in movements] == [(MOVEMENT_SALE, -5), (MOVEMENT_SALE, -1)]
        # counter, then lot + movement per lot
        assert len(log) == 5

    def test_unwind_restores_everything(self, db_session, repo, make_product):
        product = make_product(lots=[5, 3])
        plan = plan_allocation(repo, [_line(product, 6)], NOW)
        log = CompensationLog(repo)
        execute_plan(repo, plan, sale_id=42, actor_id=1, log=log)

        assert log.unwind("test") == []

        assert _remaining(db_session, product.id) == [5, 3]
        assert repo.read_value(Product, product.id, "stock_quantity") == 8
        assert db_session.query(StockMovement).count() == 0

    def test_counter_only_product_gets_one_movement(self, db_session, repo, make_product):
        product = make_product(stock=4)
        plan = plan_allocation(repo, [_line(product, 3)], NOW)
        execute_plan(repo, plan, sale_id=7, actor_id=1, log=CompensationLog(repo))

        assert repo.read_value(Product, product.id, "stock_quantity") == 1
        movement = db_session.query(StockMovement).one()
        assert movement.batch_id is None
        assert movement.quantity_change == -3


class TestRestoreStock:
    def test_refills_last_consumed_lot_first(self, db_session, repo, make_product):
        product = make_product(lots=[5, 3])
        plan = plan_allocation(repo, [_line(product, 6)], NOW)
        execute_plan(repo, plan, sale_id=42, actor_id=1, log=CompensationLog(repo))

        movements = restore_stock(
            repo, sale_id=42, product_id=product.id, quantity=2, actor_id=1,
            remarks="Return", log=CompensationLog(repo),
        )

        # one unit back to the second lot, one to the first
        assert _remaining(db_session, product.id) == [1, 3]
        assert repo.read_value(Product, product.id, "stock_quantity") == 4
        assert all(m.type == MOVEMENT_RETURN for m in movements)
        assert sum(m.quantity_change for m in movements) == 2

    def test_counter_only_product(self, db_session, repo, make_product):
        product = make_product(stock=4)
        plan = plan_allocation(repo, [_line(product, 3)], NOW)
        execute_plan(repo, plan, sale_id=7, actor_id=1, log=CompensationLog(repo))

        movements = restore_stock(
            repo, sale_id=7, product_id=product.id, quantity=3, actor_id=1,
            remarks="Refund", log=CompensationLog(repo),
        )

        assert repo.read_value(Product, product.id, "stock_quantity") == 4
        assert len(movements) == 1
        assert movements[0].batch_id is None


class TestReconcile:
    def test_reports_and_fixes_drift(self, repo, make_product):
        drifted = make_product(lots=[5], stock=7)
        make_product(lots=[2])

        report = reconcile_stock(repo)
        assert [(e["product_id"], e["batch_total"], e["fixed"]) for e in report] == [(drifted.id, 5, False)]

        report = reconcile_stock(repo, fix=True)
        assert report[0]["fixed"] is True
        assert repo.read_value(Product, drifted.id, "stock_quantity") == 5
        assert reconcile_stock(repo) == []
