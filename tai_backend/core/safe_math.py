# tai_backend/core/safe_math.py
"""
Overflow-checked arithmetic on 64-bit second counts.

Python ints never wrap, so the range is enforced explicitly: any result
outside [-2**63, 2**63 - 1] raises ArithmeticOverflow instead of producing
an instant no 64-bit consumer could represent.
"""
from __future__ import annotations

from typing import Final

from tai_backend.core.errors import ArithmeticOverflow

__all__ = [
    "I64_MIN", "I64_MAX",
    "check_i64", "safe_add", "safe_subtract",
    "safe_increment", "safe_decrement", "safe_negate",
]

I64_MIN: Final[int] = -(2 ** 63)
I64_MAX: Final[int] = 2 ** 63 - 1


def check_i64(value: int, what: str = "value") -> int:
    if not (I64_MIN <= value <= I64_MAX):
        raise ArithmeticOverflow(f"{what} {value} outside signed 64-bit range")
    return value


def safe_add(a: int, b: int) -> int:
    return check_i64(a + b, f"{a} + {b} =")


def safe_subtract(a: int, b: int) -> int:
    return check_i64(a - b, f"{a} - {b} =")


def safe_increment(a: int) -> int:
    return safe_add(a, 1)


def safe_decrement(a: int) -> int:
    return safe_subtract(a, 1)


def safe_negate(a: int) -> int:
    return check_i64(-a, f"-({a}) =")
