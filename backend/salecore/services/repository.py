# Overview: Persistence gateway for the sale engine; every write commits on its own.

"""
Repository

WHY: The sale engine runs without a multi-table transaction. Each mutation
is its own committed unit of work, exactly like calls against a remote data
store, and consistency comes from ordering, compare-and-swap and explicit
compensation. Funnelling every write through this class keeps that contract
in one place and lets tests inject failures deterministically.

LIFETIME: one Repository per request (see `for_app`). It wraps the
request-scoped SQLAlchemy session; it holds no other state.

ERRORS: SQLAlchemy errors are rolled back and re-raised as PersistenceError.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import NotFound, PersistenceError
from ..extensions import db
from ..models import (
    Product,
    ProductBatch,
    Promotion,
    ReturnRequest,
    ReturnRequestItem,
    Sale,
    SaleItem,
    SalePayment,
    ShiftSession,
    StockMovement,
)
from ..models.inventory import MOVEMENT_RETURN, MOVEMENT_SALE
from ..models.returns import RETURN_STATUS_COMPLETED, RETURN_STATUS_PENDING
from ..models.sales import SALE_STATUS_DRAFT
from ..models.shifts import SHIFT_STATUS_OPEN
from .concurrency import build_cas_statement, cas_adjust, primary_key_column


class Repository:
    def __init__(self, session, *, cas_attempts: int = 25):
        self.session = session
        self.cas_attempts = cas_attempts

    @classmethod
    def for_app(cls, app=None) -> "Repository":
        app = app or current_app
        return cls(db.session, cas_attempts=app.config.get("CAS_MAX_ATTEMPTS", 25))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, model, pk):
        try:
            return self.session.get(model, pk)
        except SQLAlchemyError as exc:
            self._fail(exc, f"Failed to load {model.__name__} {pk}")

    def require(self, model, pk, label: str | None = None):
        obj = self.get(model, pk)
        if obj is None:
            raise NotFound(f"{label or model.__name__} {pk} not found")
        return obj

    def read_value(self, model, pk, column: str):
        """Fresh scalar read that bypasses the identity map."""
        stmt = select(getattr(model, column)).where(primary_key_column(model) == pk)
        try:
            return self.session.execute(stmt).scalar()
        except SQLAlchemyError as exc:
            self._fail(exc, f"Failed to read {model.__name__}.{column}")

    def products_by_id(self, product_ids) -> dict[int, Product]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        rows = self._all(select(Product).where(Product.id.in_(ids)))
        return {product.id: product for product in rows}

    def open_shifts(self, user_id: int) -> list[ShiftSession]:
        return self._all(
            select(ShiftSession)
            .where(ShiftSession.user_id == user_id, ShiftSession.status == SHIFT_STATUS_OPEN)
            .order_by(ShiftSession.start_time.desc(), ShiftSession.id.desc())
        )

    def available_batches(self, product_id: int) -> list[ProductBatch]:
        """Batches with stock left, oldest first (FIFO)."""
        return self._all(
            select(ProductBatch)
            .where(ProductBatch.product_id == product_id, ProductBatch.quantity_remaining > 0)
            .order_by(ProductBatch.created_at.asc(), ProductBatch.id.asc())
        )

    def has_batches(self, product_id: int) -> bool:
        stmt = select(ProductBatch.id).where(ProductBatch.product_id == product_id).limit(1)
        try:
            return self.session.execute(stmt).first() is not None
        except SQLAlchemyError as exc:
            self._fail(exc, "Failed to inspect product batches")

    def promotion_by_code(self, code: str) -> Promotion | None:
        rows = self._all(select(Promotion).where(Promotion.code == code))
        return rows[0] if rows else None

    def sale_items(self, sale_id: int) -> list[SaleItem]:
        return self._all(select(SaleItem).where(SaleItem.sale_id == sale_id).order_by(SaleItem.id))

    def sale_payments(self, sale_id: int) -> list[SalePayment]:
        return self._all(select(SalePayment).where(SalePayment.sale_id == sale_id).order_by(SalePayment.id))

    def sale_movements(self, sale_id: int, product_id: int) -> list[StockMovement]:
        """Sale and return movements recorded against a sale for one product, oldest first."""
        return self._all(
            select(StockMovement)
            .where(
                StockMovement.reference_id == str(sale_id),
                StockMovement.product_id == product_id,
                StockMovement.type.in_([MOVEMENT_SALE, MOVEMENT_RETURN]),
            )
            .order_by(StockMovement.id.asc())
        )

    def pending_return_quantities(self, sale_id: int) -> dict[int, int]:
        """Units per sale item already claimed by pending return requests."""
        stmt = (
            select(ReturnRequestItem.sale_item_id, func.sum(ReturnRequestItem.quantity))
            .join(ReturnRequest, ReturnRequest.id == ReturnRequestItem.return_id)
            .where(ReturnRequest.sale_id == sale_id, ReturnRequest.status == RETURN_STATUS_PENDING)
            .group_by(ReturnRequestItem.sale_item_id)
        )
        try:
            return {sale_item_id: int(qty) for sale_item_id, qty in self.session.execute(stmt).all()}
        except SQLAlchemyError as exc:
            self._fail(exc, "Failed to load pending returns")

    def return_refund_total(self, sale_id: int) -> int:
        """Refund cents already promised against a sale by pending and completed returns."""
        stmt = select(func.coalesce(func.sum(ReturnRequest.refund_amount_cents), 0)).where(
            ReturnRequest.sale_id == sale_id,
            ReturnRequest.status.in_([RETURN_STATUS_PENDING, RETURN_STATUS_COMPLETED]),
        )
        try:
            return int(self.session.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            self._fail(exc, "Failed to load return totals")

    def return_items(self, return_id: int) -> list[ReturnRequestItem]:
        return self._all(
            select(ReturnRequestItem).where(ReturnRequestItem.return_id == return_id).order_by(ReturnRequestItem.id)
        )

    def drafts(self) -> list[Sale]:
        return self._all(
            select(Sale).where(Sale.status == SALE_STATUS_DRAFT).order_by(Sale.created_at.desc(), Sale.id.desc())
        )

    # ------------------------------------------------------------------
    # Writes (each one commits)
    # ------------------------------------------------------------------

    def insert(self, obj):
        self.session.add(obj)
        self._commit(f"Failed to insert {type(obj).__name__}")
        return obj

    def insert_all(self, objs: list) -> list:
        if not objs:
            return []
        self.session.add_all(objs)
        self._commit(f"Failed to insert {type(objs[0]).__name__} rows")
        return objs

    def insert_if_absent(self, obj) -> bool:
        """Insert, returning False instead of failing when the key already exists."""
        self.session.add(obj)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            return False
        except SQLAlchemyError as exc:
            self._fail(exc, f"Failed to insert {type(obj).__name__}")
        return True

    def save(self, obj, **fields):
        """Set plain fields on a loaded row and commit."""
        for key, value in fields.items():
            setattr(obj, key, value)
        self._commit(f"Failed to update {type(obj).__name__}")
        return obj

    def delete(self, model, pk) -> bool:
        obj = self.get(model, pk)
        if obj is None:
            return False
        self.session.delete(obj)
        self._commit(f"Failed to delete {model.__name__} {pk}")
        return True

    def try_update(self, model, pk, column: str, expected, new, **extra_values) -> bool:
        """
        Compare-and-swap on a single column.

        Returns True when the stored value still equaled `expected` and was
        replaced by `new`; False when another writer got there first.
        """
        stmt = build_cas_statement(model, pk, column, expected, new, **extra_values)
        try:
            result = self.session.execute(stmt)
            self.session.commit()
        except SQLAlchemyError as exc:
            self._fail(exc, f"Failed to update {model.__name__}.{column}")
        # commit() expired loaded instances, so they reload the swapped value.
        return result.rowcount == 1

    def adjust(self, model, pk, column: str, delta: int, *, floor: int | None = None):
        """
        Atomically add `delta` to a counter column.

        With `floor`, refuses (returns None) instead of dropping below it.
        Returns (previous, new) on success.
        """
        def _read():
            value = self.read_value(model, pk, column)
            if value is None:
                raise NotFound(f"{model.__name__} {pk} not found")
            return value

        return cas_adjust(
            _read,
            lambda expected, new: self.try_update(model, pk, column, expected, new),
            delta,
            floor=floor,
            attempts=self.cas_attempts,
        )

    def commit(self, message: str = "Commit failed") -> None:
        """Commit changes made directly on mapped instances."""
        self._commit(message)

    # ------------------------------------------------------------------

    def _all(self, stmt) -> list:
        try:
            return list(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            self._fail(exc, "Query failed")

    def _commit(self, message: str) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self._fail(exc, message)

    def _fail(self, exc: SQLAlchemyError, message: str):
        self.session.rollback()
        raise PersistenceError(f"{message}: {exc.__class__.__name__}", details={"cause": str(exc)}) from exc
