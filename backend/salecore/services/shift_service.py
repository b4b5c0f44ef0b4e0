# Overview: Shift guard and end-of-shift cash reconciliation.

"""
Shift Service

WHY: A cashier can only ring up sales inside an open shift, and closing the
shift reconciles the drawer: expected cash is the opening float plus cash
taken through sales plus pay-ins, minus pay-outs and safe drops.

CASH SALES:
- completed sales paid with `cash`: their grand total
- completed `split` sales: only their cash tender rows, less change given
Card, bank transfer and loyalty tenders never reach the drawer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func

from ..errors import NoOpenShift, ValidationError
from ..models import CashTransaction, Sale, SalePayment, ShiftSession
from ..models.sales import SALE_STATUS_COMPLETED
from ..models.shifts import (
    CASH_DROP,
    CASH_PAY_IN,
    CASH_PAY_OUT,
    SHIFT_STATUS_CLOSED,
    SHIFT_STATUS_OPEN,
)
from salecore.time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import run_with_retry
from .payment_service import METHOD_CASH, METHOD_SPLIT


logger = logging.getLogger(__name__)

CASH_TRANSACTION_TYPES = (CASH_PAY_IN, CASH_PAY_OUT, CASH_DROP)


@dataclass(frozen=True)
class CashTransactionTotals:
    pay_ins: int = 0
    pay_outs: int = 0
    drops: int = 0

    @property
    def net(self) -> int:
        return self.pay_ins - (self.pay_outs + self.drops)


def require_open_shift(repo, cashier_id: int) -> int:
    """
    Return the id of the cashier's open shift.

    Raises NoOpenShift when there is none. Duplicate open shifts are not
    prevented by the data layer; when they exist the most recently started
    one wins and a warning is logged.
    """
    if not cashier_id:
        raise NoOpenShift("Cashier ID is required to find an open shift")

    shifts = repo.open_shifts(cashier_id)
    if not shifts:
        raise NoOpenShift(
            f"Cashier {cashier_id} has no open shift",
            details={"cashier_id": cashier_id},
        )
    if len(shifts) > 1:
        logger.warning(
            "Cashier %s has %d open shifts; using shift %s",
            cashier_id, len(shifts), shifts[0].id,
        )
    return shifts[0].id


def open_shift(repo, user_id: int, starting_cash_cents: int, now: datetime | None = None) -> ShiftSession:
    if not user_id:
        raise ValidationError("User ID is required")
    _require_amount(starting_cash_cents, "Starting cash")

    if repo.open_shifts(user_id):
        raise ValidationError("You already have an open shift", details={"user_id": user_id})

    return repo.insert(ShiftSession(
        user_id=user_id,
        status=SHIFT_STATUS_OPEN,
        start_time=now or utcnow(),
        starting_cash_cents=starting_cash_cents,
        cash_sales_cents=0,
        expected_cash_cents=starting_cash_cents,
    ))


def add_cash_transaction(repo, shift_id: int, amount_cents: int, type: str, reason: str | None) -> CashTransaction:
    """Record a pay-in, pay-out or safe drop against an open shift."""
    _require_amount(amount_cents, "Transaction amount")
    if type not in CASH_TRANSACTION_TYPES:
        raise ValidationError(f"Transaction type must be one of {', '.join(CASH_TRANSACTION_TYPES)}")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Transaction reason is required")

    shift = repo.require(ShiftSession, shift_id, "Shift")
    if shift.status != SHIFT_STATUS_OPEN:
        raise ValidationError("Shift is already closed")

    return repo.insert(CashTransaction(
        shift_id=shift_id,
        amount_cents=amount_cents,
        type=type,
        reason=reason,
        created_at=utcnow(),
    ))


def calculate_cash_sales(repo, user_id: int, start: datetime, end: datetime | None = None) -> int:
    session = repo.session

    single = session.query(func.coalesce(func.sum(Sale.grand_total_cents), 0)).filter(
        Sale.cashier_id == user_id,
        Sale.payment_method == METHOD_CASH,
        Sale.status == SALE_STATUS_COMPLETED,
        Sale.created_at > start,
    )
    split = session.query(func.coalesce(func.sum(SalePayment.amount_cents), 0)).join(
        Sale, Sale.id == SalePayment.sale_id
    ).filter(
        SalePayment.method == METHOD_CASH,
        Sale.cashier_id == user_id,
        Sale.payment_method == METHOD_SPLIT,
        Sale.status == SALE_STATUS_COMPLETED,
        Sale.created_at > start,
    )
    split_change = session.query(func.coalesce(func.sum(Sale.change_given_cents), 0)).filter(
        Sale.cashier_id == user_id,
        Sale.payment_method == METHOD_SPLIT,
        Sale.status == SALE_STATUS_COMPLETED,
        Sale.created_at > start,
    )
    if end is not None:
        single = single.filter(Sale.created_at <= end)
        split = split.filter(Sale.created_at <= end)
        split_change = split_change.filter(Sale.created_at <= end)

    return (
        int(single.scalar() or 0)
        + int(split.scalar() or 0)
        - int(split_change.scalar() or 0)
    )


def calculate_cash_transactions(repo, shift_id: int, end: datetime | None = None) -> CashTransactionTotals:
    q = repo.session.query(
        CashTransaction.type, func.coalesce(func.sum(CashTransaction.amount_cents), 0)
    ).filter(CashTransaction.shift_id == shift_id)
    if end is not None:
        q = q.filter(CashTransaction.created_at <= end)

    totals = dict(q.group_by(CashTransaction.type).all())
    return CashTransactionTotals(
        pay_ins=int(totals.get(CASH_PAY_IN, 0)),
        pay_outs=int(totals.get(CASH_PAY_OUT, 0)),
        drops=int(totals.get(CASH_DROP, 0)),
    )


def get_shift_status(repo, user_id: int) -> dict:
    """Live drawer snapshot for the user's open shift."""
    shift = repo.require(ShiftSession, require_open_shift(repo, user_id), "Shift")
    snapshot = utcnow()

    cash_sales = calculate_cash_sales(repo, shift.user_id, shift.start_time, snapshot)
    transactions = calculate_cash_transactions(repo, shift.id, snapshot)

    return {
        "shift_id": shift.id,
        "start_time": shift.start_time,
        "starting_cash_cents": shift.starting_cash_cents,
        "current_sales_cash_cents": cash_sales,
        "current_transactions_net_cents": transactions.net,
        "expected_drawer_balance_cents": shift.starting_cash_cents + cash_sales + transactions.net,
    }


def close_shift(repo, shift_id: int, ending_cash_cents: int, notes: str | None = None) -> ShiftSession:
    """
    Close a shift and record the drawer difference.

    expected = starting + cash sales + (pay-ins - pay-outs - drops)
    difference = counted - expected (negative means the drawer is short)
    """
    _require_amount(ending_cash_cents, "Ending cash")

    def _op():
        shift = repo.require(ShiftSession, shift_id, "Shift")
        if shift.status != SHIFT_STATUS_OPEN:
            raise ValidationError("Shift is already closed")

        end_time = utcnow()
        cash_sales = calculate_cash_sales(repo, shift.user_id, shift.start_time, end_time)
        transactions = calculate_cash_transactions(repo, shift.id, end_time)
        expected = shift.starting_cash_cents + cash_sales + transactions.net

        shift.end_time = end_time
        shift.ending_cash_cents = ending_cash_cents
        shift.cash_sales_cents = cash_sales
        shift.expected_cash_cents = expected
        shift.difference_cents = ending_cash_cents - expected
        shift.status = SHIFT_STATUS_CLOSED
        if notes is not None:
            shift.notes = notes

        # version_id guards against two terminals closing the same shift
        repo.commit("Failed to close shift")
        return shift

    shift = run_with_retry(_op, session=repo.session)

    append_audit_event(
        repo,
        event_type="shift.closed",
        entity_type="shift",
        entity_id=shift.id,
        actor_id=shift.user_id,
        payload={
            "expected_cash_cents": shift.expected_cash_cents,
            "ending_cash_cents": shift.ending_cash_cents,
            "difference_cents": shift.difference_cents,
        },
    )
    return shift


def _require_amount(value, label: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} is invalid")
    if value < 0:
        raise ValidationError(f"{label} cannot be negative")
