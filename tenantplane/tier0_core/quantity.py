"""
tenantplane.tier0_core.quantity
────────────────────────────────
Resource quantities as they appear in quota hard/used maps: "10", "500m",
"1Gi", "2k", "1e3". Values are parsed to exact decimals so summing and
comparing usage across namespaces never loses precision.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Iterable

from tenantplane.tier0_core.errors import ValidationError

ZERO = "0"

_BINARY_SUFFIXES: dict[str, int] = {
    "Ki": 1024,
    "Mi": 1024 ** 2,
    "Gi": 1024 ** 3,
    "Ti": 1024 ** 4,
    "Pi": 1024 ** 5,
    "Ei": 1024 ** 6,
}

_DECIMAL_SUFFIXES: dict[str, Decimal] = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "": Decimal(1),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
}

_QUANTITY_RE = re.compile(
    r"^(?P<number>[+-]?(?:\d+(?:\.\d*)?|\.\d+))"
    r"(?P<suffix>Ki|Mi|Gi|Ti|Pi|Ei|[numkMGTPE]|[eE][+-]?\d+)?$"
)


def is_binary(quantity: str) -> bool:
    """True when the quantity is written with a binary (power of two) suffix."""
    match = _QUANTITY_RE.match(quantity.strip())
    return bool(match and match.group("suffix") in _BINARY_SUFFIXES)


def parse_quantity(quantity: str | int | Decimal) -> Decimal:
    """Parse a quantity string to an exact Decimal."""
    if isinstance(quantity, Decimal):
        return quantity
    if isinstance(quantity, int):
        return Decimal(quantity)

    match = _QUANTITY_RE.match(str(quantity).strip())
    if match is None:
        raise ValidationError(
            user_message=f"Invalid resource quantity {quantity!r}.",
            fields={"quantity": str(quantity)},
        )
    try:
        number = Decimal(match.group("number"))
    except InvalidOperation as exc:
        raise ValidationError(user_message=f"Invalid resource quantity {quantity!r}.") from exc

    suffix = match.group("suffix") or ""
    if suffix in _BINARY_SUFFIXES:
        return number * _BINARY_SUFFIXES[suffix]
    if suffix in _DECIMAL_SUFFIXES:
        return number * _DECIMAL_SUFFIXES[suffix]
    return number.scaleb(int(suffix[1:]))


def format_quantity(value: Decimal, binary: bool = False) -> str:
    """
    Render a Decimal in canonical quantity form: the largest suffix that keeps
    an integral mantissa, milli/micro/nano for fractions.
    """
    if value == 0:
        return ZERO

    if value == value.to_integral_value():
        integral = int(value)
        if binary:
            for suffix, factor in reversed(_BINARY_SUFFIXES.items()):
                if integral % factor == 0:
                    return f"{integral // factor}{suffix}"
        for suffix in ("E", "P", "T", "G", "M", "k"):
            factor = int(_DECIMAL_SUFFIXES[suffix])
            if integral % factor == 0:
                return f"{integral // factor}{suffix}"
        return str(integral)

    for suffix in ("m", "u", "n"):
        scaled = value / _DECIMAL_SUFFIXES[suffix]
        if scaled == scaled.to_integral_value():
            return f"{int(scaled)}{suffix}"
    return format(value.normalize(), "f")


def sum_quantities(quantities: Iterable[str]) -> str:
    """Sum quantity strings; binary formatting is kept when every operand used it."""
    items = [q for q in quantities if q is not None]
    total = sum((parse_quantity(q) for q in items), Decimal(0))
    binary = bool(items) and all(is_binary(q) for q in items)
    return format_quantity(total, binary=binary)


def compare_quantities(left: str | Decimal, right: str | Decimal) -> int:
    """Three-way comparison: -1 if left < right, 0 if equal, 1 if greater."""
    a, b = parse_quantity(left), parse_quantity(right)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


__all__ = [
    "ZERO", "is_binary", "parse_quantity", "format_quantity",
    "sum_quantities", "compare_quantities",
]
