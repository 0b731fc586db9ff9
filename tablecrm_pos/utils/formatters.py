from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from tablecrm_pos.config import settings
from tablecrm_pos.models import to_float

CURRENCY_SIGNS = {"RUB": "₽", "USD": "$", "EUR": "€"}
NBSP = "\u00a0"


def money(v: Any, currency: str | None = None) -> str:
    value = to_float(v)
    if value is None:
        return "нет цены"
    code = currency or settings.currency
    # как ru-RU: неразрывный пробел между разрядами, без копеек, 0.5 вверх
    rounded = int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    amount = f"{rounded:,}".replace(",", NBSP)
    return f"{amount}{NBSP}{CURRENCY_SIGNS.get(code, code)}"
