"""Price tick and lot step helpers."""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal


def _dec(value: float) -> Decimal:
    # str() keeps the shortest repr, so 0.1 stays 0.1 rather than its binary expansion
    return Decimal(str(value))


def round_price(price: float, tick_size: float) -> float:
    """Round price to the nearest exchange tick."""
    if tick_size <= 0:
        raise ValueError("tick_size_must_be_positive")
    tick = _dec(tick_size)
    ticks = (_dec(price) / tick).to_integral_value(rounding=ROUND_HALF_UP)
    return float(ticks * tick)


def floor_quantity(qty: Decimal, step_size: float) -> Decimal:
    """Round quantity down to the lot step."""
    if step_size <= 0:
        raise ValueError("step_size_must_be_positive")
    step = _dec(step_size)
    return (qty / step).to_integral_value(rounding=ROUND_FLOOR) * step


def is_multiple_of(price: float, level: float) -> bool:
    """True when price sits exactly on a multiple of level."""
    if level <= 0:
        return False
    return _dec(price) % _dec(level) == 0


def format_decimal(value: float) -> str:
    """Fixed-point string without exponent, as exchanges expect."""
    text = format(_dec(value), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
