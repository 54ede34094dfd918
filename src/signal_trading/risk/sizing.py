"""Risk-based position sizing."""

from __future__ import annotations

import math
from decimal import ROUND_FLOOR, Decimal, localcontext

from signal_trading.errors import InsufficientRiskBudgetError
from signal_trading.utils.exchange_filters import floor_quantity


def size_position(
    balance: float,
    entry_price: float,
    stop_price: float,
    risk_fraction: float,
    *,
    size_step: float = 0.001,
    min_size: float = 0.001,
) -> float:
    """Size a position so that a stop-out loses at most balance * risk_fraction.

    Leverage is not applied here; pass an already leveraged balance if needed.
    The result is floored to size_step, so the budget is never exceeded.
    """
    values = (balance, entry_price, stop_price, risk_fraction)
    if not all(math.isfinite(v) for v in values):
        raise InsufficientRiskBudgetError("non_finite_input")
    if balance <= 0 or risk_fraction <= 0:
        raise InsufficientRiskBudgetError(
            f"no_risk_budget: balance={balance} risk_fraction={risk_fraction}"
        )

    per_unit_risk = abs(Decimal(str(entry_price)) - Decimal(str(stop_price)))
    if per_unit_risk == 0:
        raise InsufficientRiskBudgetError("zero_stop_distance")

    with localcontext() as ctx:
        # inexact quotients round toward zero before the lot floor
        ctx.rounding = ROUND_FLOOR
        risk_budget = Decimal(str(balance)) * Decimal(str(risk_fraction))
        qty = floor_quantity(risk_budget / per_unit_risk, size_step)
    if qty < Decimal(str(min_size)):
        raise InsufficientRiskBudgetError(
            f"size_below_minimum: {qty} < {min_size} "
            f"(budget={risk_budget}, per_unit_risk={per_unit_risk})"
        )
    return float(qty)


def risk_amount(size: float, entry_price: float, stop_price: float) -> float:
    """Loss incurred if the stop is hit at exactly stop_price."""
    return abs(size) * abs(entry_price - stop_price)
