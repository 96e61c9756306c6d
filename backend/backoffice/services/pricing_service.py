# Overview: Pure pricing computations for products; no database access.

"""
Pricing Invariants (authoritative)

- profit_margin is the share of the SALE price that is profit, in percent:
      calculated_sale_price = cost_price / (1 - profit_margin / 100)
  so cost 70.00 at 30% sells at 100.00.
- Margins outside 0 <= margin < 100 are rejected (the formula is undefined at 100).
- Prices are integer cents; the calculated price is rounded half-up to the cent.
- Effective sale price = manual price while is_using_manual_price is set
  (and a manual price exists), otherwise the calculated price.
- Functions here only read a product's pricing fields and, for the
  mutators, write the product's own pricing fields. Persisting is the
  caller's job.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from ..validation import InvalidMargin, InvalidPrice, MAX_PRICE_CENTS, coerce_decimal

PRICE_SOURCE_MANUAL = "manual"
PRICE_SOURCE_CALCULATED = "calculated"

_HUNDRED = Decimal(100)
_MARGIN_SCALE = Decimal("0.01")


def validate_margin(margin) -> Decimal:
    """
    Normalize a margin to a two-place Decimal (the stored scale), raising
    InvalidMargin outside [0, 100) after rounding: 99.999 rounds to 100.00
    and is rejected.
    """
    try:
        value = coerce_decimal(margin, "profit_margin")
    except ValueError:
        raise InvalidMargin("profit_margin must be a number", details={"profit_margin": str(margin)})
    if 0 <= value < _HUNDRED:
        value = value.quantize(_MARGIN_SCALE, rounding=ROUND_HALF_UP)
    if value < 0 or value >= _HUNDRED:
        raise InvalidMargin(
            "profit_margin must be >= 0 and < 100",
            details={"profit_margin": str(value)},
        )
    return value


def validate_price_cents(price_cents, field: str = "price_cents") -> int:
    if isinstance(price_cents, bool) or not isinstance(price_cents, int):
        raise InvalidPrice(f"{field} must be an integer number of cents")
    if price_cents < 0:
        raise InvalidPrice(f"{field} must be >= 0", details={field: price_cents})
    if price_cents > MAX_PRICE_CENTS:
        raise InvalidPrice(f"{field} cannot exceed {MAX_PRICE_CENTS}", details={field: price_cents})
    return price_cents


def recompute_calculated_price(cost_price_cents: int, margin) -> int:
    """Cost-plus-margin price in cents, rounded half-up."""
    margin = validate_margin(margin)
    cost = validate_price_cents(cost_price_cents, "cost_price_cents")
    price = int((Decimal(cost) / (1 - margin / _HUNDRED)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    if price > MAX_PRICE_CENTS:
        raise InvalidPrice(
            f"calculated sale price cannot exceed {MAX_PRICE_CENTS}",
            details={"cost_price_cents": cost, "profit_margin": str(margin)},
        )
    return price


def price_source(product) -> str:
    if product.is_using_manual_price and product.manual_sale_price_cents is not None:
        return PRICE_SOURCE_MANUAL
    return PRICE_SOURCE_CALCULATED


def compute_sale_price(product) -> int:
    """Effective sale price in cents."""
    if price_source(product) == PRICE_SOURCE_MANUAL:
        return product.manual_sale_price_cents
    return product.calculated_sale_price_cents or 0


def profit_per_unit(product) -> int:
    return compute_sale_price(product) - (product.cost_price_cents or 0)


def profit_margin_percentage(product) -> float:
    sale_price = compute_sale_price(product)
    if sale_price <= 0:
        return 0.0
    cost = product.cost_price_cents or 0
    return float((Decimal(sale_price) - Decimal(cost)) / Decimal(sale_price) * _HUNDRED)


def total_profit_value(product) -> int:
    return profit_per_unit(product) * (product.stock or 0)


def apply_pricing(product, *, cost_price_cents: int | None = None, profit_margin=None) -> int:
    """
    Assign new pricing inputs and refresh the calculated price.

    Both inputs are validated before anything is assigned.
    Returns the new calculated price.
    """
    cost = product.cost_price_cents if cost_price_cents is None else cost_price_cents
    margin = product.profit_margin if profit_margin is None else profit_margin

    calculated = recompute_calculated_price(cost, margin)

    product.cost_price_cents = cost
    product.profit_margin = validate_margin(margin)
    product.calculated_sale_price_cents = calculated
    return calculated


def set_manual_price(product, price_cents: int) -> None:
    price_cents = validate_price_cents(price_cents, "price_cents")
    product.manual_sale_price_cents = price_cents
    product.is_using_manual_price = True


def revert_to_calculated_price(product) -> None:
    product.manual_sale_price_cents = None
    product.is_using_manual_price = False
    product.calculated_sale_price_cents = recompute_calculated_price(
        product.cost_price_cents or 0, product.profit_margin
    )


def pricing_summary(product) -> dict:
    """Derived pricing fields for API responses."""
    return {
        "sale_price_cents": compute_sale_price(product),
        "price_source": price_source(product),
        "profit_per_unit_cents": profit_per_unit(product),
        "profit_margin_percentage": round(profit_margin_percentage(product), 2),
        "total_profit_value_cents": total_profit_value(product),
    }


def margin_analysis(
    products: Iterable,
    *,
    top_n: int = 10,
    low_margin_threshold: float = 20,
) -> dict:
    """
    Aggregate profitability over a set of products.

    - Inventory value is valued at the effective sale price, cost value at cost.
    - Low-margin products: margin below the threshold, lowest margin first.
    - Most profitable: highest total profit value first, ties by id ascending.
    """
    products = list(products)
    analysis = {
        "total_products": len(products),
        "total_inventory_value_cents": 0,
        "total_cost_value_cents": 0,
        "total_profit_value_cents": 0,
        "average_margin": 0.0,
        "products_with_low_margin": [],
        "most_profitable_products": [],
    }
    if not products:
        return analysis

    margin_sum = 0.0
    low_margin = []
    ranked = []

    for product in products:
        sale_price = compute_sale_price(product)
        stock = product.stock or 0
        cost = product.cost_price_cents or 0
        margin = profit_margin_percentage(product)
        unit_profit = sale_price - cost
        profit_value = unit_profit * stock

        analysis["total_inventory_value_cents"] += sale_price * stock
        analysis["total_cost_value_cents"] += cost * stock
        analysis["total_profit_value_cents"] += profit_value
        margin_sum += margin

        if margin < low_margin_threshold:
            low_margin.append({
                "id": product.id,
                "name": product.name,
                "margin": round(margin, 2),
                "sale_price_cents": sale_price,
                "cost_price_cents": cost,
                "profit_per_unit_cents": unit_profit,
                "_sort": margin,
            })

        ranked.append({
            "id": product.id,
            "name": product.name,
            "profit_per_unit_cents": unit_profit,
            "total_profit_value_cents": profit_value,
            "margin_percentage": round(margin, 2),
            "stock": stock,
        })

    low_margin.sort(key=lambda row: (row["_sort"], row["id"]))
    for row in low_margin:
        del row["_sort"]

    ranked.sort(key=lambda row: (-row["total_profit_value_cents"], row["id"]))

    analysis["average_margin"] = round(margin_sum / len(products), 2)
    analysis["products_with_low_margin"] = low_margin
    analysis["most_profitable_products"] = ranked[:top_n]
    return analysis
