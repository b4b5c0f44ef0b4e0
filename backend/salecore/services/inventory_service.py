# Overview: FIFO lot allocation and the stock mutations that commit it.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select

from ..errors import ExpiredBatch, InsufficientStock, InventoryConflict
from ..models import Product, ProductBatch, StockMovement
from ..models.inventory import MOVEMENT_RETURN, MOVEMENT_SALE
from salecore.time_utils import is_expired, utcnow
from .saga import DeleteMovement, RestoreBatchQuantity, RestoreProductStock
"""
Inventory Invariants (authoritative)

Lots:
- Batches are consumed oldest first; FIFO key is (created_at, id).
- A batch whose expiry_date is before today is never allocated.
- quantity_remaining only changes through compare-and-swap against the value
  observed when the allocation was planned. A lost race aborts the sale.

Counters:
- Product.stock_quantity is decremented with a guarded CAS (never below 0)
  before any batch is touched.
- Products that have never carried a batch are sold from stock_quantity alone.

Audit:
- Every committed deduction or restoration writes one StockMovement row.
- Each mutation pushes its undo step onto the caller's compensation log as
  soon as it has committed.
"""


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchDeduction:
    batch_id: int
    quantity: int
    previous_remaining: int


@dataclass
class ProductAllocation:
    product_id: int
    quantity: int
    deductions: list[BatchDeduction] = field(default_factory=list)


@dataclass
class AllocationPlan:
    allocations: list[ProductAllocation] = field(default_factory=list)

    def __iter__(self):
        return iter(self.allocations)

    def for_product(self, product_id: int) -> ProductAllocation | None:
        for allocation in self.allocations:
            if allocation.product_id == product_id:
                return allocation
        return None


def _required_quantities(lines) -> dict[int, int]:
    required: dict[int, int] = {}
    for line in lines:
        required[line.product_id] = required.get(line.product_id, 0) + line.quantity
    return required


def plan_allocation(repo, lines, now: datetime | None = None) -> AllocationPlan:
    """
    Decide which lots each product's quantity comes from. Reads only.

    Raises ExpiredBatch when the FIFO walk reaches an expired lot before the
    requirement is met, InsufficientStock when the lots run out.
    """
    now = now or utcnow()
    plan = AllocationPlan()

    for product_id, quantity in _required_quantities(lines).items():
        allocation = ProductAllocation(product_id=product_id, quantity=quantity)

        if not repo.has_batches(product_id):
            on_hand = repo.read_value(Product, product_id, "stock_quantity") or 0
            if on_hand < quantity:
                raise InsufficientStock(
                    f"Insufficient stock for product {product_id}",
                    details={"product_id": product_id, "requested": quantity, "available": on_hand},
                )
            plan.allocations.append(allocation)
            continue

        needed = quantity
        for batch in repo.available_batches(product_id):
            if needed <= 0:
                break
            if is_expired(batch.expiry_date, now):
                raise ExpiredBatch(
                    f"Batch {batch.batch_number or batch.id} of product {product_id} is expired",
                    details={
                        "product_id": product_id,
                        "batch_id": batch.id,
                        "expiry_date": batch.expiry_date.isoformat(),
                    },
                )
            take = min(needed, batch.quantity_remaining)
            allocation.deductions.append(BatchDeduction(
                batch_id=batch.id,
                quantity=take,
                previous_remaining=batch.quantity_remaining,
            ))
            needed -= take

        if needed > 0:
            raise InsufficientStock(
                f"Insufficient stock for product {product_id}",
                details={"product_id": product_id, "requested": quantity, "available": quantity - needed},
            )
        plan.allocations.append(allocation)

    return plan


def execute_plan(repo, plan: AllocationPlan, *, sale_id: int, actor_id: int | None, log) -> None:
    """
    Commit an allocation plan, pushing an undo step after every mutation.

    Order per product: guarded stock decrement, then one CAS per lot, then
    one sale movement per lot.
    """
    reference = str(sale_id)

    for allocation in plan:
        if repo.adjust(Product, allocation.product_id, "stock_quantity", -allocation.quantity, floor=0) is None:
            raise InsufficientStock(
                f"Insufficient stock for product {allocation.product_id}",
                details={"product_id": allocation.product_id, "requested": allocation.quantity},
            )
        log.push(RestoreProductStock(allocation.product_id, allocation.quantity))

        if not allocation.deductions:
            movement = repo.insert(StockMovement(
                product_id=allocation.product_id,
                type=MOVEMENT_SALE,
                quantity_change=-allocation.quantity,
                reference_id=reference,
                remarks=f"Sale {sale_id}",
                created_by=actor_id,
            ))
            log.push(DeleteMovement(movement.id))
            continue

        for deduction in allocation.deductions:
            swapped = repo.try_update(
                ProductBatch,
                deduction.batch_id,
                "quantity_remaining",
                deduction.previous_remaining,
                deduction.previous_remaining - deduction.quantity,
            )
            if not swapped:
                raise InventoryConflict(
                    f"Batch {deduction.batch_id} changed while the sale was in progress",
                    details={"product_id": allocation.product_id, "batch_id": deduction.batch_id},
                )
            log.push(RestoreBatchQuantity(deduction.batch_id, deduction.quantity))

            movement = repo.insert(StockMovement(
                product_id=allocation.product_id,
                batch_id=deduction.batch_id,
                type=MOVEMENT_SALE,
                quantity_change=-deduction.quantity,
                reference_id=reference,
                remarks=f"Sale {sale_id}",
                created_by=actor_id,
            ))
            log.push(DeleteMovement(movement.id))


def returnable_batches(repo, sale_id: int, product_id: int) -> list[tuple[int, int]]:
    """
    Lots a sale took this product from, with how much can still go back.

    Returns [(batch_id, quantity)] in reverse consumption order: the lot
    consumed last is refilled first.
    """
    order: list[int] = []
    outstanding: dict[int, int] = {}
    for movement in repo.sale_movements(sale_id, product_id):
        if movement.batch_id is None:
            continue
        if movement.batch_id not in outstanding:
            order.append(movement.batch_id)
            outstanding[movement.batch_id] = 0
        # sale movements are negative, return movements positive
        outstanding[movement.batch_id] -= movement.quantity_change

    return [(batch_id, outstanding[batch_id]) for batch_id in reversed(order) if outstanding[batch_id] > 0]


def restore_stock(
    repo,
    *,
    sale_id: int,
    product_id: int,
    quantity: int,
    actor_id: int | None,
    remarks: str,
    log,
) -> list[StockMovement]:
    """Put `quantity` units sold on `sale_id` back on the shelf; returns the return movements."""
    reference = str(sale_id)
    movements: list[StockMovement] = []

    repo.adjust(Product, product_id, "stock_quantity", quantity)
    log.push(RestoreProductStock(product_id, -quantity))

    left = quantity
    for batch_id, returnable in returnable_batches(repo, sale_id, product_id):
        if left <= 0:
            break
        portion = min(left, returnable)
        repo.adjust(ProductBatch, batch_id, "quantity_remaining", portion)
        log.push(RestoreBatchQuantity(batch_id, -portion))

        movement = repo.insert(StockMovement(
            product_id=product_id,
            batch_id=batch_id,
            type=MOVEMENT_RETURN,
            quantity_change=portion,
            reference_id=reference,
            remarks=remarks,
            created_by=actor_id,
        ))
        log.push(DeleteMovement(movement.id))
        movements.append(movement)
        left -= portion

    if left > 0:
        # Not lot-tracked when sold; only the product counter moves.
        movement = repo.insert(StockMovement(
            product_id=product_id,
            type=MOVEMENT_RETURN,
            quantity_change=left,
            reference_id=reference,
            remarks=remarks,
            created_by=actor_id,
        ))
        log.push(DeleteMovement(movement.id))
        movements.append(movement)

    return movements


def reconcile_stock(repo, *, fix: bool = False) -> list[dict]:
    """
    Compare Product.stock_quantity with the sum of its lots.

    Only lot-tracked products are checked. With fix=True each drifted
    counter is swapped to the lot total, unless it moved meanwhile.
    """
    totals = repo.session.execute(
        select(ProductBatch.product_id, func.sum(ProductBatch.quantity_remaining))
        .group_by(ProductBatch.product_id)
    ).all()

    drifted = []
    for product_id, batch_total in totals:
        product = repo.get(Product, product_id)
        batch_total = int(batch_total or 0)
        if product is None or product.stock_quantity == batch_total:
            continue

        entry = {
            "product_id": product_id,
            "sku": product.sku,
            "stock_quantity": product.stock_quantity,
            "batch_total": batch_total,
            "fixed": False,
        }
        if fix:
            entry["fixed"] = repo.try_update(
                Product, product_id, "stock_quantity", product.stock_quantity, batch_total
            )
            if not entry["fixed"]:
                logger.warning("Stock of product %s moved during reconcile; skipped", product_id)
        drifted.append(entry)

    return drifted
