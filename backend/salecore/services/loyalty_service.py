from __future__ import annotations

import logging

from sqlalchemy import func, select

from ..errors import InsufficientLoyaltyPoints
from ..models import Customer, LoyaltyLog
from .payment_service import CENTS_PER_UNIT


logger = logging.getLogger(__name__)


def points_for_total(grand_total_cents: int, units_per_point: int = 10) -> int:
    """One point per `units_per_point` whole currency units, rounded down."""
    if grand_total_cents <= 0:
        return 0
    return grand_total_cents // (units_per_point * CENTS_PER_UNIT)


def apply_sale_points(
    repo,
    *,
    customer_id: int,
    sale_id: int,
    grand_total_cents: int,
    points_redeemed: int = 0,
    actor_id: int | None = None,
    units_per_point: int = 10,
) -> int:
    """
    Credit earned points (net of any redemption) to the customer.

    Returns the points earned. Raises when the counter update fails; the
    sale orchestrator downgrades that to a warning.
    """
    earned = points_for_total(grand_total_cents, units_per_point)
    delta = earned - points_redeemed
    if delta == 0 and points_redeemed == 0:
        return earned

    if delta:
        if repo.adjust(Customer, customer_id, "loyalty_points", delta, floor=0) is None:
            raise InsufficientLoyaltyPoints(
                f"Customer {customer_id} no longer has {points_redeemed} points to redeem",
                details={"customer_id": customer_id, "points_change": delta},
            )

    if points_redeemed:
        reason = f"Sale {sale_id}: earned {earned}, redeemed {points_redeemed}"
    else:
        reason = f"Sale {sale_id}: earned {earned}"
    repo.insert(LoyaltyLog(
        customer_id=customer_id,
        points_change=delta,
        reason=reason,
        reference_id=str(sale_id),
        created_by=actor_id,
    ))
    return earned


def reverse_sale_points(repo, *, customer_id: int, sale_id: int, actor_id: int | None = None) -> int:
    """
    Undo every point change recorded against a sale.

    Returns the applied change (0 when nothing was outstanding).
    """
    net = repo.session.execute(
        select(func.coalesce(func.sum(LoyaltyLog.points_change), 0)).where(
            LoyaltyLog.customer_id == customer_id,
            LoyaltyLog.reference_id == str(sale_id),
        )
    ).scalar() or 0
    if net == 0:
        return 0

    if repo.adjust(Customer, customer_id, "loyalty_points", -net, floor=0) is None:
        raise InsufficientLoyaltyPoints(
            f"Customer {customer_id} already spent the points earned on sale {sale_id}",
            details={"customer_id": customer_id, "points_change": -net},
        )
    repo.insert(LoyaltyLog(
        customer_id=customer_id,
        points_change=-net,
        reason=f"Refund of sale {sale_id}",
        reference_id=str(sale_id),
        created_by=actor_id,
    ))
    logger.info("Reversed %+d loyalty points for customer %s (sale %s)", -net, customer_id, sale_id)
    return -net
