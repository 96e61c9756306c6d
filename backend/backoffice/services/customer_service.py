# Overview: Service-layer operations for customer loyalty.

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR

from flask import current_app

from ..extensions import db
from ..models import Customer
from ..validation import CustomerNotFound
from .concurrency import lock_for_update


def loyalty_rate() -> Decimal:
    return Decimal(str(current_app.config.get("LOYALTY_POINTS_RATE", "0.01")))


def loyalty_points_for(total_amount_cents: int, rate: Decimal | None = None) -> int:
    """
    Points earned for a sale: floor(total in currency units * rate).

    A 200.00 sale at the default 1% rate earns 2 points.
    """
    if rate is None:
        rate = loyalty_rate()
    if total_amount_cents <= 0 or rate <= 0:
        return 0
    points = Decimal(total_amount_cents) / 100 * rate
    return int(points.to_integral_value(rounding=ROUND_FLOOR))


def get_customer(customer_id: int, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise CustomerNotFound(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def credit_loyalty_points(customer: Customer, total_amount_cents: int) -> int:
    """Add the points earned by a sale to the customer. Does not commit."""
    earned = loyalty_points_for(total_amount_cents)
    if earned > 0:
        customer.loyalty_points = (customer.loyalty_points or 0) + earned
    return earned
