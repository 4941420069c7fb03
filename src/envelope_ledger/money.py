# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Fixed-precision currency helpers.

Amounts are ``Decimal`` values quantized to the cent. Every comparison that
decides whether an operation is allowed goes through :func:`to_cents` so that
threshold checks compare integers, never binary floats.

User-facing strings may use either ``.`` or ``,`` as decimal separator::

    >>> parse_amount("12,50")
    Decimal('12.50')
    >>> parse_amount("1.234,56")
    Decimal('1234.56')
"""

from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Iterable, Union

from pydantic import BeforeValidator, PlainSerializer

from envelope_ledger.errors import LedgerValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

AmountInput = Union[Decimal, int, float, str]

_NUMBER_PATTERN = re.compile(r"^[+-]?\d+(\.\d+)?$")
_STRIPPED_CHARACTERS = (" ", "\u00a0", "\u202f", "€", "$", "£")


def quantize(value: Decimal) -> Decimal:
    """Round a Decimal to the nearest cent, halves away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _parse_text(text: str, field: str) -> Decimal:
    cleaned = text.strip()
    for character in _STRIPPED_CHARACTERS:
        cleaned = cleaned.replace(character, "")
    if not cleaned:
        raise LedgerValidationError(f"{field} is empty.", field=field)

    if "," in cleaned and "." in cleaned:
        # The right-most separator is the decimal one, the other groups thousands.
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    else:
        cleaned = cleaned.replace(",", ".")

    match = _NUMBER_PATTERN.match(cleaned)
    if not match:
        raise LedgerValidationError(f"{field} {text!r} is not a valid amount.", field=field)
    if match.group(1) is not None and len(match.group(1)) > 3:
        # Typed amounts are never rounded; "1,234" is ambiguous and "12.345" is sub-cent.
        raise LedgerValidationError(f"{field} {text!r} has more than two decimals.", field=field)
    try:
        return Decimal(cleaned)
    except InvalidOperation as exc:
        raise LedgerValidationError(f"{field} {text!r} is not a valid amount.", field=field) from exc


def parse_amount(value: AmountInput, field: str = "amount") -> Decimal:
    """
    Normalise a caller-supplied amount to a cent-quantized Decimal.

    Raises LedgerValidationError for malformed strings, strings with more
    than two decimals, booleans, NaN and infinities. Nothing is ever
    silently coerced to zero. Numeric inputs are rounded half-up to the cent.
    """
    if isinstance(value, bool):
        raise LedgerValidationError(f"{field} must be a number, got a boolean.", field=field)
    if isinstance(value, Decimal):
        candidate = value
    elif isinstance(value, int):
        candidate = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise LedgerValidationError(f"{field} must be finite, got {value!r}.", field=field)
        candidate = Decimal(repr(value))
    elif isinstance(value, str):
        candidate = _parse_text(value, field)
    else:
        raise LedgerValidationError(
            f"{field} must be a number or numeric string, got {type(value).__name__}.",
            field=field,
        )

    if not candidate.is_finite():
        raise LedgerValidationError(f"{field} must be finite, got {value!r}.", field=field)
    return quantize(candidate)


def require_positive(value: AmountInput, field: str = "amount") -> Decimal:
    """Parse ``value`` and reject anything that is not strictly positive at cent precision."""
    amount = parse_amount(value, field)
    if to_cents(amount) <= 0:
        raise LedgerValidationError(f"{field} must be positive, got {amount}.", field=field)
    return amount


def to_cents(value: AmountInput) -> int:
    """Integer number of cents, i.e. ``round(value * 100)``."""
    amount = value if isinstance(value, Decimal) else parse_amount(value)
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return quantize(Decimal(cents) / 100)


def exceeds(amount: Decimal, bound: Decimal) -> bool:
    """True when ``amount`` is strictly greater than ``bound`` at cent granularity."""
    return to_cents(amount) > to_cents(bound)


def within_tolerance(left: Decimal, right: Decimal, tolerance: Decimal) -> bool:
    return abs(to_cents(left) - to_cents(right)) <= to_cents(tolerance)


def total(amounts: Iterable[Decimal]) -> Decimal:
    return from_cents(sum(to_cents(amount) for amount in amounts))


def percent_of(part: Decimal, whole: Decimal) -> Decimal | None:
    """``part / whole`` as a percentage with two decimals; None when ``whole`` is zero."""
    if to_cents(whole) == 0:
        return None
    return quantize(Decimal(to_cents(part)) * 100 / Decimal(to_cents(whole)))


def format_amount(value: Decimal, currency_symbol: str = "€") -> str:
    return f"{currency_symbol}{quantize(value):.2f}"


Money = Annotated[
    Decimal,
    BeforeValidator(lambda value: parse_amount(value)),
    PlainSerializer(lambda value: str(value), return_type=str, when_used="json"),
]
"""Pydantic field type for cent-quantized amounts."""
