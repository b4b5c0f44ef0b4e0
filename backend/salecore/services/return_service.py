"""
Return Processing Service

WHY: Goods come back either all at once (full refund of a sale) or a few
units at a time (return requests). Both put stock back on the shelf with
the same machinery the sale used to take it: guarded counter updates, lot
restoration and one movement row per change, each write committed on its
own and undone in reverse order if a later one fails.

LIFECYCLE (return requests):
1. create_return - pending, quantities reserved against the sale
2. complete_return - pending -> completed, stock restored
   reject_return - pending -> rejected, no stock effects

Sales move completed -> refunded on a full refund, or once every unit has
come back through completed returns. Refunding twice is an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..errors import AlreadyRefunded, InventoryConflict, ValidationError
from ..models import ReturnRequest, ReturnRequestItem, Sale, SaleItem, StockMovement
from ..models.returns import RETURN_STATUS_COMPLETED, RETURN_STATUS_PENDING, RETURN_STATUS_REJECTED
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_REFUNDED
from salecore.time_utils import utcnow
from .audit_service import append_audit_event
from .inventory_service import restore_stock
from .loyalty_service import reverse_sale_points
from .pricing_service import round_half_up
from .saga import CompensationLog, RestoreReturnedQuantity, RevertStatus


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReturnLine:
    sale_item_id: int
    quantity: int


@dataclass
class RefundResult:
    sale: Sale
    movements: list[StockMovement]
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "movements": [m.to_dict() for m in self.movements],
            "warnings": list(self.warnings),
        }


def _require_refundable(repo, sale_id: int) -> Sale:
    sale = repo.require(Sale, sale_id, "Sale")
    if sale.status == SALE_STATUS_REFUNDED:
        raise AlreadyRefunded(f"Sale {sale.receipt_number} is already refunded", details={"sale_id": sale_id})
    if sale.status != SALE_STATUS_COMPLETED:
        raise ValidationError(
            f"Only completed sales can be refunded (sale is {sale.status})",
            details={"sale_id": sale_id, "status": sale.status},
        )
    return sale


def _flip_sale_to_refunded(repo, sale: Sale, log: CompensationLog) -> None:
    swapped = repo.try_update(
        Sale, sale.id, "status", SALE_STATUS_COMPLETED, SALE_STATUS_REFUNDED, refunded_at=utcnow()
    )
    if not swapped:
        if repo.read_value(Sale, sale.id, "status") == SALE_STATUS_REFUNDED:
            raise AlreadyRefunded(f"Sale {sale.receipt_number} is already refunded", details={"sale_id": sale.id})
        raise ValidationError("Sale status changed during the refund", details={"sale_id": sale.id})
    log.push(RevertStatus(Sale, sale.id, SALE_STATUS_REFUNDED, SALE_STATUS_COMPLETED, "refunded_at"))


def _claim_returned_units(repo, item: SaleItem, quantity: int, log: CompensationLog) -> None:
    """Advance returned_quantity by `quantity` with a compare-and-swap."""
    previous = item.returned_quantity
    new = previous + quantity
    if new > item.quantity:
        raise ValidationError(
            f"Cannot return {quantity} more of sale item {item.id}",
            details={"sale_item_id": item.id, "sold": item.quantity, "returned": previous},
        )
    if not repo.try_update(SaleItem, item.id, "returned_quantity", previous, new):
        raise InventoryConflict(
            f"Sale item {item.id} was returned concurrently",
            details={"sale_item_id": item.id},
        )
    log.push(RestoreReturnedQuantity(item.id, previous, new))


# =============================================================================
# FULL REFUND
# =============================================================================

def refund_sale(repo, sale_id: int, actor_id: int) -> RefundResult:
    """
    Refund every unit of a completed sale not already returned.

    The status flip comes first so that a concurrent second refund fails
    before any stock moves.
    """
    if not actor_id:
        raise ValidationError("Cashier ID is required")

    sale = _require_refundable(repo, sale_id)
    log = CompensationLog(repo)
    movements: list[StockMovement] = []

    _flip_sale_to_refunded(repo, sale, log)
    try:
        for item in repo.sale_items(sale_id):
            outstanding = item.quantity - item.returned_quantity
            if outstanding <= 0:
                continue
            _claim_returned_units(repo, item, outstanding, log)
            movements.extend(restore_stock(
                repo,
                sale_id=sale_id,
                product_id=item.product_id,
                quantity=outstanding,
                actor_id=actor_id,
                remarks=f"Refund of sale {sale.receipt_number}",
                log=log,
            ))
    except BaseException as exc:
        failure = log.abort(exc, sale_id=sale_id)
        if failure is exc:
            raise
        raise failure from exc

    warnings: list[str] = []
    if sale.customer_id:
        try:
            reverse_sale_points(repo, customer_id=sale.customer_id, sale_id=sale_id, actor_id=actor_id)
        except Exception as exc:
            logger.warning("Loyalty points for refunded sale %s were not reversed: %s", sale_id, exc)
            warnings.append(f"Loyalty points were not reversed: {exc}")

    append_audit_event(
        repo,
        event_type="sale.refunded",
        entity_type="sale",
        entity_id=sale_id,
        actor_id=actor_id,
        note=f"Sale {sale.receipt_number} refunded",
        payload={"grand_total_cents": sale.grand_total_cents, "movements": len(movements)},
    )
    return RefundResult(sale=repo.require(Sale, sale_id, "Sale"), movements=movements, warnings=warnings)


# =============================================================================
# PARTIAL RETURNS
# =============================================================================

def _line_net(item: SaleItem) -> int:
    return item.sub_total_cents - item.discount_cents + item.tax_amount_cents


def allocate_order_discount(sale: Sale, items: list[SaleItem]) -> dict[int, int]:
    """
    Spread the order-level discount (manual and promo) over the sale lines
    in proportion to their net amounts. The last line takes the remainder
    so the shares add up exactly.
    """
    order_discount = sale.discount_total_cents - sum(item.discount_cents for item in items)
    total_net = sum(_line_net(item) for item in items)
    shares = {item.id: 0 for item in items}
    if order_discount <= 0 or total_net <= 0:
        return shares

    remaining = order_discount
    for item in items[:-1]:
        share = min(round_half_up(order_discount * _line_net(item), total_net), remaining)
        shares[item.id] = share
        remaining -= share
    shares[items[-1].id] = remaining
    return shares


def calculate_refund_cents(item: SaleItem, quantity: int, *, order_discount_share: int = 0,
                           already_claimed: int = 0) -> int:
    """
    Refund for `quantity` more units of a line, given `already_claimed`
    units returned or pending.

    Computed as the difference of cumulative shares so that returning a
    line piece by piece adds up to exactly what was paid for it.
    """
    payable = max(_line_net(item) - order_discount_share, 0)
    before = round_half_up(payable * already_claimed, item.quantity)
    after = round_half_up(payable * (already_claimed + quantity), item.quantity)
    return after - before


def create_return(repo, sale_id: int, lines, actor_id: int, reason: str | None = None) -> ReturnRequest:
    """Open a pending return for some units of a completed sale."""
    if not actor_id:
        raise ValidationError("Cashier ID is required")
    if not lines:
        raise ValidationError("Return requires at least one item")

    sale = _require_refundable(repo, sale_id)
    sale_items = repo.sale_items(sale_id)
    items = {item.id: item for item in sale_items}
    discount_shares = allocate_order_discount(sale, sale_items)
    pending = repo.pending_return_quantities(sale_id)

    requested: dict[int, int] = {}
    for index, line in enumerate(lines):
        quantity = line.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Return quantity must be a positive integer", details={"line": index})
        if line.sale_item_id not in items:
            raise ValidationError(
                f"Sale item {line.sale_item_id} does not belong to sale {sale_id}",
                details={"line": index},
            )
        requested[line.sale_item_id] = requested.get(line.sale_item_id, 0) + quantity

    rows = []
    refund_total = 0
    for sale_item_id, quantity in requested.items():
        item = items[sale_item_id]
        claimed = item.returned_quantity + pending.get(sale_item_id, 0)
        available = item.quantity - claimed
        if quantity > available:
            raise ValidationError(
                f"Only {available} units of sale item {sale_item_id} can be returned",
                details={"sale_item_id": sale_item_id, "requested": quantity, "available": available},
            )
        refund = calculate_refund_cents(
            item, quantity, order_discount_share=discount_shares[sale_item_id], already_claimed=claimed
        )
        refund_total += refund
        rows.append((item, quantity, refund))

    # Never promise back more than the sale took in.
    refundable = max(sale.grand_total_cents - repo.return_refund_total(sale_id), 0)
    if refund_total > refundable:
        logger.warning(
            "Return refund for sale %s capped from %s to %s cents", sale_id, refund_total, refundable
        )
        excess = refund_total - refundable
        capped = []
        for item, quantity, refund in reversed(rows):
            cut = min(refund, excess)
            excess -= cut
            capped.append((item, quantity, refund - cut))
        rows = list(reversed(capped))
        refund_total = refundable

    log = CompensationLog(repo)
    return_request = repo.insert(ReturnRequest(
        sale_id=sale_id,
        status=RETURN_STATUS_PENDING,
        refund_amount_cents=refund_total,
        reason=reason,
        created_by=actor_id,
    ))
    log.push(RevertStatus(ReturnRequest, return_request.id, RETURN_STATUS_PENDING, RETURN_STATUS_REJECTED))

    try:
        repo.insert_all([
            ReturnRequestItem(
                return_id=return_request.id,
                sale_item_id=item.id,
                product_id=item.product_id,
                quantity=quantity,
                refund_cents=refund,
            )
            for item, quantity, refund in rows
        ])
    except BaseException as exc:
        failure = log.abort(exc, return_id=return_request.id)
        if failure is exc:
            raise
        raise failure from exc

    return return_request


def _require_pending(repo, return_id: int) -> ReturnRequest:
    return_request = repo.require(ReturnRequest, return_id, "Return")
    if return_request.status != RETURN_STATUS_PENDING:
        raise ValidationError(
            f"Return {return_id} is already {return_request.status}",
            details={"return_id": return_id, "status": return_request.status},
        )
    return return_request


def complete_return(repo, return_id: int, actor_id: int) -> tuple[ReturnRequest, list[StockMovement]]:
    """
    Restock a pending return and finalize it.

    Marks the sale refunded once every unit of every line has come back.
    """
    if not actor_id:
        raise ValidationError("Cashier ID is required")

    return_request = _require_pending(repo, return_id)
    sale = _require_refundable(repo, return_request.sale_id)
    log = CompensationLog(repo)
    movements: list[StockMovement] = []

    if not repo.try_update(
        ReturnRequest, return_id, "status", RETURN_STATUS_PENDING, RETURN_STATUS_COMPLETED, completed_at=utcnow()
    ):
        raise ValidationError(f"Return {return_id} was processed concurrently", details={"return_id": return_id})
    log.push(RevertStatus(ReturnRequest, return_id, RETURN_STATUS_COMPLETED, RETURN_STATUS_PENDING, "completed_at"))

    try:
        for line in repo.return_items(return_id):
            item = repo.require(SaleItem, line.sale_item_id, "Sale item")
            _claim_returned_units(repo, item, line.quantity, log)
            movements.extend(restore_stock(
                repo,
                sale_id=sale.id,
                product_id=line.product_id,
                quantity=line.quantity,
                actor_id=actor_id,
                remarks=f"Return {return_id} of sale {sale.receipt_number}",
                log=log,
            ))

        if all(item.returned_quantity >= item.quantity for item in repo.sale_items(sale.id)):
            _flip_sale_to_refunded(repo, sale, log)
    except BaseException as exc:
        failure = log.abort(exc, return_id=return_id)
        if failure is exc:
            raise
        raise failure from exc

    append_audit_event(
        repo,
        event_type="return.completed",
        entity_type="return",
        entity_id=return_id,
        actor_id=actor_id,
        payload={"sale_id": sale.id, "refund_amount_cents": return_request.refund_amount_cents},
    )
    return repo.require(ReturnRequest, return_id, "Return"), movements


def reject_return(repo, return_id: int, actor_id: int, reason: str | None = None) -> ReturnRequest:
    if not actor_id:
        raise ValidationError("Cashier ID is required")

    return_request = _require_pending(repo, return_id)
    extra = {"completed_at": utcnow()}
    if reason:
        extra["reason"] = reason
    if not repo.try_update(ReturnRequest, return_id, "status", RETURN_STATUS_PENDING, RETURN_STATUS_REJECTED, **extra):
        raise ValidationError(f"Return {return_id} was processed concurrently", details={"return_id": return_id})
    return repo.require(ReturnRequest, return_request.id, "Return")
