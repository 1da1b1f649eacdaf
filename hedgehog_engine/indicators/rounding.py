"""
Price and quantity rounding against exchange filters.

Arithmetic is done in Decimal so that values such as 4310.025 land on the
expected tick instead of drifting with binary float noise. Inputs are first
snapped to a millionth of the increment; any residue below that is float
error, not intent. Tolerances scale with the increment or bound they are
checked against, so tiny-tick instruments validate as well as large ones.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, localcontext

_NOISE_DIGITS = 6
_REL_TOLERANCE = 1e-9
_PRECISION = 60
_FLOAT_EPS = 1e-12


def _dec(value: float, increment: Decimal) -> Decimal:
    noise = increment.scaleb(-_NOISE_DIGITS)
    return Decimal(repr(float(value))).quantize(noise, rounding=ROUND_HALF_UP)


def _round(value: float, increment: float, rounding: str) -> float:
    if increment <= 0:
        return float(value)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        inc = Decimal(repr(float(increment)))
        units = (_dec(value, inc) / inc).to_integral_value(rounding=rounding)
        return float((units * inc).quantize(inc))


def _off_grid(value: float, rounded: float, increment: float) -> bool:
    tolerance = max(abs(increment) * 10**-_NOISE_DIGITS, abs(value) * _FLOAT_EPS)
    return abs(value - rounded) > tolerance


def _below(value: float, bound: float) -> bool:
    return value < bound - abs(bound) * _REL_TOLERANCE


def _above(value: float, bound: float) -> bool:
    return value > bound + abs(bound) * _REL_TOLERANCE


def round_to_tick(price: float, tick_size: float) -> float:
    """Round a price to the nearest tick (half up)."""
    return _round(price, tick_size, ROUND_HALF_UP)


def round_to_step(quantity: float, step_size: float) -> float:
    """Round a quantity down to the step size."""
    return _round(quantity, step_size, ROUND_FLOOR)


def validate_notional(price: float, quantity: float, min_notional: float) -> bool:
    """Check the order value meets the exchange minimum."""
    return not _below(price * quantity, min_notional)


def quantity_for_notional(price: float, notional: float, step_size: float) -> float:
    """
    Quantity worth `notional` at `price`, rounded down to the step size.

    Returns 0.0 for a non-positive price.
    """
    if price <= 0:
        return 0.0
    return round_to_step(notional / price, step_size)


def validate_order(
    price: float,
    quantity: float,
    tick_size: float,
    step_size: float,
    min_notional: float,
    min_qty: float = 0.0,
    max_qty: float | None = None,
    max_notional: float | None = None,
) -> tuple[bool, list[str]]:
    """
    Validate a limit order against exchange filters.

    Returns:
        (valid, errors) where errors lists every violated filter
    """
    errors: list[str] = []

    if price <= 0:
        errors.append(f"Price {price} must be positive")
    elif _off_grid(price, round_to_tick(price, tick_size), tick_size):
        errors.append(f"Price {price} is not a multiple of tick size {tick_size}")

    if quantity <= 0:
        errors.append(f"Quantity {quantity} must be positive")
    elif _off_grid(quantity, round_to_step(quantity, step_size), step_size):
        errors.append(f"Quantity {quantity} is not a multiple of step size {step_size}")

    if _below(quantity, min_qty):
        errors.append(f"Quantity {quantity} below minimum {min_qty}")
    if max_qty is not None and _above(quantity, max_qty):
        errors.append(f"Quantity {quantity} above maximum {max_qty}")

    notional = price * quantity
    if not validate_notional(price, quantity, min_notional):
        errors.append(f"Notional {notional:.8f} below minimum {min_notional}")
    if max_notional is not None and _above(notional, max_notional):
        errors.append(f"Notional {notional:.8f} above maximum {max_notional}")

    return len(errors) == 0, errors
