"""
Values -- Exact decimal numeric core for money and quantities.

Responsibility:
    Provides the only sanctioned arithmetic for amounts, quantities and
    percentages in the engine.  Every operation runs under a private
    ``decimal.Context`` so results never depend on the caller's
    thread-local decimal settings.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every engine and by the snapshot value objects.

Invariants enforced:
    - No binary floating point: ``to_decimal`` rejects ``float`` (and
      ``bool``, NaN, infinities) at the boundary.
    - Intermediate amounts are quantized to ``INTERNAL_SCALE`` places;
      ``round_half_up`` to ``DISPLAY_SCALE`` is applied at the output
      boundary only, so rounding error does not compound across steps.
    - Money never goes negative: ``clamp_non_negative`` floors at zero.

Failure modes:
    - InvalidInputError on non-decimal inputs, division by zero, or a
      percentage outside [0, 100].
"""

from __future__ import annotations

from decimal import (
    ROUND_HALF_UP,
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
)
from typing import Any

from pricing_kernel.exceptions import InvalidInputError

INTERNAL_SCALE = 4
DISPLAY_SCALE = 2

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

_CONTEXT = Context(
    prec=38,
    rounding=ROUND_HALF_UP,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)

_EXPONENTS: dict[int, Decimal] = {}


def _exponent(places: int) -> Decimal:
    exp = _EXPONENTS.get(places)
    if exp is None:
        exp = Decimal(1).scaleb(-places)
        _EXPONENTS[places] = exp
    return exp


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """
    Coerce a boundary value to Decimal.

    Accepts Decimal, int and numeric strings.  Floats are rejected outright:
    once a binary float exists the error is already baked in.
    """
    if isinstance(value, bool):
        raise InvalidInputError(field, "boolean is not a number", value)
    if isinstance(value, float):
        raise InvalidInputError(field, "float is not allowed, use Decimal or str", value)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value.strip() if isinstance(value, str) else value)
        except InvalidOperation as e:
            raise InvalidInputError(field, "not a decimal number", value) from e
    else:
        raise InvalidInputError(field, f"unsupported type {type(value).__name__}", value)

    if not result.is_finite():
        raise InvalidInputError(field, "must be finite", value)
    return result


def optional_decimal(value: Any, field: str) -> Decimal | None:
    """``to_decimal`` that passes ``None`` through."""
    if value is None:
        return None
    return to_decimal(value, field)


def add(a: Decimal, b: Decimal) -> Decimal:
    return _CONTEXT.add(a, b)


def sub(a: Decimal, b: Decimal) -> Decimal:
    return _CONTEXT.subtract(a, b)


def mul(a: Decimal, b: Decimal) -> Decimal:
    return _CONTEXT.multiply(a, b)


def div(a: Decimal, b: Decimal) -> Decimal:
    if b == ZERO:
        raise InvalidInputError("divisor", "division by zero", b)
    return _CONTEXT.divide(a, b)


def total(values: Any) -> Decimal:
    """Exact sum of an iterable of Decimals (zero when empty)."""
    result = ZERO
    for value in values:
        result = _CONTEXT.add(result, value)
    return result


def quantize(value: Decimal, places: int = INTERNAL_SCALE) -> Decimal:
    """Quantize to ``places`` fractional digits, half-up."""
    return value.quantize(_exponent(places), rounding=ROUND_HALF_UP, context=_CONTEXT)


def round_half_up(value: Decimal, places: int = DISPLAY_SCALE) -> Decimal:
    """
    Round for output.

    Only called at the output boundary.  Engine steps use ``quantize`` at
    the internal scale instead.
    """
    return quantize(value, places)


def percent_of(amount: Decimal, pct: Decimal) -> Decimal:
    """``amount * pct / 100`` without intermediate rounding."""
    return _CONTEXT.divide(_CONTEXT.multiply(amount, pct), HUNDRED)


def clamp_non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO


def ensure_non_negative(value: Any, field: str) -> Decimal:
    result = to_decimal(value, field)
    if result < ZERO:
        raise InvalidInputError(field, "must not be negative", result)
    return result


def ensure_positive(value: Any, field: str) -> Decimal:
    result = to_decimal(value, field)
    if result <= ZERO:
        raise InvalidInputError(field, "must be greater than zero", result)
    return result


def ensure_percentage(value: Any, field: str) -> Decimal:
    """Percentages are expressed 0-100 (10 means 10%)."""
    result = to_decimal(value, field)
    if result < ZERO or result > HUNDRED:
        raise InvalidInputError(field, "percentage must be within [0, 100]", result)
    return result


def id_sort_key(identifier: Any) -> tuple[int, Any]:
    """Deterministic ordering key for ids: ints numerically, then strings."""
    if isinstance(identifier, int) and not isinstance(identifier, bool):
        return (0, identifier)
    return (1, str(identifier))
