# Overview: Compensation log for multi-step operations that cannot share one transaction.

"""
Saga compensation log

Every mutating step pushes a typed undo descriptor as soon as its mutation
has committed. On failure, `unwind` pops descriptors last-in first-out and
applies each one. A failing undo step does not stop the unwind: its error is
collected and returned so the caller can attach it to the reported error.

Restorations are expressed as compensating deltas applied with the shared
compare-and-swap counter update, so they land on the pre-mutation value when
nothing else touched the row, and stay correct when something did.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import PersistenceError, SaleError
from ..models import Product, ProductBatch, Sale, SaleItem, StockMovement
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_VOIDED
from salecore.time_utils import utcnow


logger = logging.getLogger(__name__)


class UndoStep:
    def apply(self, repo, reason: str) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class RestoreProductStock(UndoStep):
    product_id: int
    delta: int

    def apply(self, repo, reason):
        if repo.adjust(Product, self.product_id, "stock_quantity", self.delta, floor=0) is None:
            raise RuntimeError("stock would go negative")

    def describe(self):
        return f"Product {self.product_id} stock ({self.delta:+d})"


@dataclass(frozen=True)
class RestoreBatchQuantity(UndoStep):
    batch_id: int
    delta: int

    def apply(self, repo, reason):
        if repo.adjust(ProductBatch, self.batch_id, "quantity_remaining", self.delta, floor=0) is None:
            raise RuntimeError("batch remaining would go negative")

    def describe(self):
        return f"Batch {self.batch_id} remaining ({self.delta:+d})"


@dataclass(frozen=True)
class DeleteMovement(UndoStep):
    movement_id: int

    def apply(self, repo, reason):
        if not repo.delete(StockMovement, self.movement_id):
            raise RuntimeError("movement row is missing")

    def describe(self):
        return f"Stock movement {self.movement_id}"


@dataclass(frozen=True)
class RestoreReturnedQuantity(UndoStep):
    sale_item_id: int
    previous: int
    current: int

    def apply(self, repo, reason):
        if not repo.try_update(SaleItem, self.sale_item_id, "returned_quantity", self.current, self.previous):
            raise RuntimeError("returned_quantity changed concurrently")

    def describe(self):
        return f"Sale item {self.sale_item_id} returned quantity"


@dataclass(frozen=True)
class RevertStatus(UndoStep):
    """Swap a status column back, clearing the timestamp the forward step set."""
    model: type
    pk: int
    current: str
    previous: str
    timestamp_column: str | None = None

    def apply(self, repo, reason):
        extra = {self.timestamp_column: None} if self.timestamp_column else {}
        if not repo.try_update(self.model, self.pk, "status", self.current, self.previous, **extra):
            raise RuntimeError(f"status is no longer {self.current!r}")

    def describe(self):
        return f"{self.model.__name__} {self.pk} status"


@dataclass(frozen=True)
class VoidSale(UndoStep):
    """Terminal compensation for a persisted header: mark voided, never delete."""
    sale_id: int
    from_status: str = SALE_STATUS_COMPLETED

    def apply(self, repo, reason):
        swapped = repo.try_update(
            Sale,
            self.sale_id,
            "status",
            self.from_status,
            SALE_STATUS_VOIDED,
            note=f"Voided by compensation: {reason}"[:1000],
            voided_at=utcnow(),
        )
        if not swapped:
            raise RuntimeError(f"sale is no longer {self.from_status!r}")

    def describe(self):
        return f"Sale header {self.sale_id}"


class CompensationLog:
    def __init__(self, repo):
        self.repo = repo
        self._steps: list[UndoStep] = []
        self.rollback_errors: list[str] = []

    def push(self, step: UndoStep) -> None:
        self._steps.append(step)

    def __len__(self) -> int:
        return len(self._steps)

    def unwind(self, reason: str) -> list[str]:
        """Apply every recorded undo step in reverse order; return the failures."""
        errors: list[str] = []
        while self._steps:
            step = self._steps.pop()
            try:
                step.apply(self.repo, reason)
            except Exception as exc:
                logger.error("Compensation step failed: %s: %s", step.describe(), exc)
                errors.append(f"{step.describe()}: {exc}")
        self.rollback_errors.extend(errors)
        return errors

    def abort(self, exc: BaseException, **details) -> BaseException:
        """
        Unwind after `exc` and return the error the caller should raise.

        - SaleError: returned annotated with the rollback failures
        - other Exception: wrapped in PersistenceError
        - KeyboardInterrupt and other interrupts: returned unchanged
        """
        reason = str(exc) or exc.__class__.__name__
        errors = self.unwind(reason)

        if isinstance(exc, SaleError):
            failure = exc
        elif isinstance(exc, Exception):
            failure = PersistenceError(f"Operation aborted: {reason}")
        else:
            if errors:
                logger.error("Interrupted; rollback issues: %s", "; ".join(errors))
            return exc

        for key, value in details.items():
            failure.details.setdefault(key, value)
        failure.add_rollback_errors(errors)
        return failure


__all__ = [
    "CompensationLog",
    "UndoStep",
    "RestoreProductStock",
    "RestoreBatchQuantity",
    "DeleteMovement",
    "RestoreReturnedQuantity",
    "RevertStatus",
    "VoidSale",
]
