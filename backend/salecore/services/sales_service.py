"""
Sales Service - saga-coordinated sale creation

WHY: A sale touches the header, its lines and tenders, product counters,
inventory lots, the receipt sequence and the customer's loyalty balance.
None of that shares one database transaction here: every write commits on
its own. The orchestrator sequences the writes so that everything that can
fail is checked before the first write, and records an undo step after each
write so that a failure part-way through leaves the sale `voided` with its
stock effects reversed.

STATES:
    init -> validated -> header_persisted -> items_and_payments_persisted
         -> stock_committed -> loyalty_applied -> done
    (after header_persisted) -> compensating -> voided

Loyalty is applied after stock is committed and is best effort: a failure
there is reported as a warning on an otherwise successful sale.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from ..errors import SaleError, ValidationError
from ..models import Customer, Sale, SaleItem, SalePayment
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_DRAFT
from salecore.time_utils import utcnow
from .audit_service import append_audit_event
from .document_service import next_receipt_number
from .inventory_service import execute_plan, plan_allocation
from .loyalty_service import apply_sale_points, points_for_total
from .payment_service import METHOD_CASH, SALE_PAYMENT_METHODS, TenderSplit, normalize_payments
from .pricing_service import price_items
from .promotions_service import calculate_promo_discount, check_discount_limit, evaluate_promotion
from .saga import CompensationLog, VoidSale
from .shift_service import require_open_shift


logger = logging.getLogger(__name__)


class SaleState(str, enum.Enum):
    INIT = "init"
    VALIDATED = "validated"
    HEADER_PERSISTED = "header_persisted"
    ITEMS_AND_PAYMENTS_PERSISTED = "items_and_payments_persisted"
    STOCK_COMMITTED = "stock_committed"
    LOYALTY_APPLIED = "loyalty_applied"
    DONE = "done"
    COMPENSATING = "compensating"
    VOIDED = "voided"


@dataclass(frozen=True)
class CartLine:
    """
    One cart entry as sent by the register.

    client_price_cents and tax_hint_cents are what the register displayed;
    they are kept for diagnostics and never used in totals.
    """
    product_id: int
    quantity: int
    discount_cents: int = 0
    client_price_cents: int | None = None
    tax_hint_cents: int | None = None


@dataclass
class SaleRequest:
    cashier_id: int
    items: list[CartLine]
    payment_method: str | None = None
    amount_paid_cents: int | None = None
    payments: list[TenderSplit] = field(default_factory=list)
    customer_id: int | None = None
    promo_code: str | None = None
    approval_code: str | None = None
    manager_id: int | None = None
    discount_cents: int = 0
    note: str | None = None


@dataclass
class SaleResult:
    sale: Sale
    items: list[SaleItem]
    payments: list[SalePayment]
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "items": [item.to_dict() for item in self.items],
            "payments": [payment.to_dict() for payment in self.payments],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class EngineSettings:
    receipt_prefix: str = "INV"
    discount_threshold_percent: int = 10
    loyalty_units_per_point: int = 10

    @classmethod
    def from_config(cls, config) -> "EngineSettings":
        return cls(
            receipt_prefix=config.get("RECEIPT_PREFIX", "INV"),
            discount_threshold_percent=int(config.get("DISCOUNT_APPROVAL_THRESHOLD_PERCENT", 10)),
            loyalty_units_per_point=int(config.get("LOYALTY_CURRENCY_UNITS_PER_POINT", 10)),
        )


@dataclass
class _Totals:
    sub_total_cents: int
    tax_total_cents: int
    discount_total_cents: int

    @property
    def grand_total_cents(self) -> int:
        return self.sub_total_cents + self.tax_total_cents - self.discount_total_cents


class SaleOrchestrator:
    def __init__(self, repo, settings: EngineSettings | None = None, clock: Callable[[], datetime] = utcnow):
        self.repo = repo
        self.settings = settings or EngineSettings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Completed sales
    # ------------------------------------------------------------------

    def create_sale(self, request: SaleRequest) -> SaleResult:
        """
        Validate, persist and commit one sale.

        Every check that can reject the sale runs before the header is
        written. From the header on, each committed write registers its undo
        step; any failure unwinds them and voids the header.
        """
        repo = self.repo
        state = SaleState.INIT

        shift_id = require_open_shift(repo, request.cashier_id)
        now = self.clock()

        products = repo.products_by_id(line.product_id for line in request.items)
        priced = price_items(request.items, products)
        customer = self._load_customer(request.customer_id)

        promo = evaluate_promotion(repo, request.promo_code, priced.sub_total_cents, now.date())
        check_discount_limit(
            priced.sub_total_cents,
            priced.line_discount_total_cents,
            request.discount_cents or 0,
            threshold_percent=self.settings.discount_threshold_percent,
            approval_code=request.approval_code,
            manager_id=request.manager_id,
        )
        totals = self._totals(priced, request.discount_cents or 0, calculate_promo_discount(promo, priced.sub_total_cents))

        payment = normalize_payments(
            request.payment_method,
            request.amount_paid_cents,
            request.payments,
            grand_total_cents=totals.grand_total_cents,
            customer=customer,
        )
        plan = plan_allocation(repo, priced.lines, now)
        state = SaleState.VALIDATED

        receipt_number = next_receipt_number(repo, prefix=self.settings.receipt_prefix, now=now)
        points_earned = 0
        if customer is not None:
            points_earned = points_for_total(totals.grand_total_cents, self.settings.loyalty_units_per_point)

        log = CompensationLog(repo)
        sale = None
        try:
            sale = repo.insert(Sale(
                receipt_number=receipt_number,
                cashier_id=request.cashier_id,
                customer_id=customer.id if customer else None,
                shift_id=shift_id,
                sub_total_cents=totals.sub_total_cents,
                tax_total_cents=totals.tax_total_cents,
                discount_total_cents=totals.discount_total_cents,
                grand_total_cents=totals.grand_total_cents,
                payment_method=payment.method,
                amount_paid_cents=payment.amount_paid_cents,
                change_given_cents=payment.change_cents,
                promo_code=promo.code if promo else None,
                loyalty_points_earned=points_earned,
                loyalty_points_redeemed=payment.loyalty_points_redeemed,
                status=SALE_STATUS_COMPLETED,
                note=request.note,
                created_at=now,
            ))
            state = SaleState.HEADER_PERSISTED
            log.push(VoidSale(sale.id))

            items = repo.insert_all([self._item_row(sale.id, line) for line in priced.lines])
            payments = repo.insert_all([
                SalePayment(
                    sale_id=sale.id,
                    amount_cents=tender.amount_cents,
                    method=tender.method,
                    reference_id=tender.reference_id,
                )
                for tender in payment.payments
            ])
            state = SaleState.ITEMS_AND_PAYMENTS_PERSISTED

            execute_plan(repo, plan, sale_id=sale.id, actor_id=request.cashier_id, log=log)
            state = SaleState.STOCK_COMMITTED
        except BaseException as exc:
            if sale is None:
                raise
            failure = self._compensate(sale.id, request.cashier_id, log, state, exc)
            if failure is exc:
                raise
            raise failure from exc

        warnings: list[str] = []
        if customer is not None:
            try:
                apply_sale_points(
                    repo,
                    customer_id=customer.id,
                    sale_id=sale.id,
                    grand_total_cents=totals.grand_total_cents,
                    points_redeemed=payment.loyalty_points_redeemed,
                    actor_id=request.cashier_id,
                    units_per_point=self.settings.loyalty_units_per_point,
                )
            except Exception as exc:
                logger.warning("Loyalty points for sale %s were not applied: %s", sale.id, exc)
                warnings.append(f"Loyalty points were not applied: {exc}")
            state = SaleState.LOYALTY_APPLIED

        append_audit_event(
            repo,
            event_type="sale.completed",
            entity_type="sale",
            entity_id=sale.id,
            actor_id=request.cashier_id,
            note=f"Sale {sale.receipt_number} completed",
            payload={"grand_total_cents": sale.grand_total_cents, "payment_method": sale.payment_method},
            occurred_at=now,
        )
        state = SaleState.DONE
        logger.info("Sale %s (%s) completed, state=%s", sale.id, sale.receipt_number, state.value)
        return SaleResult(sale=sale, items=items, payments=payments, warnings=warnings)

    def _compensate(self, sale_id: int, actor_id: int, log: CompensationLog, state: SaleState, exc: BaseException):
        """Unwind the log; return the error to raise in place of `exc`."""
        logger.warning(
            "Sale %s failed at %s (%s); %s %d steps",
            sale_id, state.value, exc, SaleState.COMPENSATING.value, len(log),
        )

        failure = log.abort(exc, sale_id=sale_id, failed_state=state.value)
        logger.info("Sale %s is now %s", sale_id, SaleState.VOIDED.value)

        append_audit_event(
            self.repo,
            event_type="sale.voided",
            entity_type="sale",
            entity_id=sale_id,
            actor_id=actor_id,
            note=str(exc) or exc.__class__.__name__,
            payload={"failed_state": state.value, "rollback_errors": log.rollback_errors},
        )
        return failure

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def save_draft(self, request: SaleRequest) -> SaleResult:
        """Park a priced cart. No shift, stock, payment or loyalty effects."""
        repo = self.repo
        if not request.cashier_id:
            raise ValidationError("Cashier ID is required")

        products = repo.products_by_id(line.product_id for line in request.items)
        priced = price_items(request.items, products)
        customer = self._load_customer(request.customer_id)

        manual_discount = request.discount_cents or 0
        if manual_discount < 0:
            raise ValidationError("Discount cannot be negative")
        totals = self._totals(priced, manual_discount, 0)

        method = request.payment_method if request.payment_method in SALE_PAYMENT_METHODS else METHOD_CASH
        amount_paid = request.amount_paid_cents or 0
        now = self.clock()

        log = CompensationLog(repo)
        sale = repo.insert(Sale(
            receipt_number=next_receipt_number(repo, prefix=self.settings.receipt_prefix, now=now),
            cashier_id=request.cashier_id,
            customer_id=customer.id if customer else None,
            sub_total_cents=totals.sub_total_cents,
            tax_total_cents=totals.tax_total_cents,
            discount_total_cents=totals.discount_total_cents,
            grand_total_cents=totals.grand_total_cents,
            payment_method=method,
            amount_paid_cents=amount_paid,
            change_given_cents=max(amount_paid - totals.grand_total_cents, 0),
            promo_code=request.promo_code,
            status=SALE_STATUS_DRAFT,
            note=request.note,
            created_at=now,
        ))
        log.push(VoidSale(sale.id, from_status=SALE_STATUS_DRAFT))

        try:
            items = repo.insert_all([self._item_row(sale.id, line) for line in priced.lines])
        except SaleError as exc:
            exc.add_rollback_errors(log.unwind(str(exc)))
            raise

        return SaleResult(sale=sale, items=items, payments=[])

    def list_drafts(self) -> list[Sale]:
        return self.repo.drafts()

    def get_sale(self, sale_id: int) -> SaleResult:
        sale = self.repo.require(Sale, sale_id, "Sale")
        return SaleResult(
            sale=sale,
            items=self.repo.sale_items(sale_id),
            payments=self.repo.sale_payments(sale_id),
        )

    # ------------------------------------------------------------------

    def _load_customer(self, customer_id: int | None) -> Customer | None:
        if not customer_id:
            return None
        customer = self.repo.require(Customer, customer_id, "Customer")
        if not customer.is_active:
            raise ValidationError(f"Customer {customer_id} is inactive")
        return customer

    @staticmethod
    def _totals(priced, manual_discount_cents: int, promo_discount_cents: int) -> _Totals:
        discount = priced.line_discount_total_cents + manual_discount_cents + promo_discount_cents
        return _Totals(
            sub_total_cents=priced.sub_total_cents,
            tax_total_cents=priced.tax_total_cents,
            discount_total_cents=min(discount, priced.sub_total_cents),
        )

    @staticmethod
    def _item_row(sale_id: int, line) -> SaleItem:
        return SaleItem(
            sale_id=sale_id,
            product_id=line.product_id,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            sub_total_cents=line.sub_total_cents,
            discount_cents=line.discount_cents,
            tax_amount_cents=line.tax_amount_cents,
            returned_quantity=0,
        )
