from __future__ import annotations

import math
import re

_NON_DIGITS = re.compile(r"\D")


def phone_digits(v: str | None) -> str:
    return _NON_DIGITS.sub("", v or "")


def is_finite_number(v) -> bool:
    try:
        return math.isfinite(float(v))
    except (TypeError, ValueError):
        return False


def _finite(v: float) -> float:
    if not is_finite_number(v):
        raise ValueError(f"Ожидалось конечное число, получено: {v!r}")
    return float(v)


def clamp_quantity(v: float) -> int:
    return max(1, int(_finite(v)))


def clamp_discount(v: float) -> float:
    return min(100.0, max(0.0, _finite(v)))


def clamp_price(v: float) -> float:
    return max(0.0, _finite(v))
