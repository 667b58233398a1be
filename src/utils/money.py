from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any


def format_eur(value: Any, digits: int = 2) -> str:
    """
    Italian-locale EUR formatter.

    - numeric -> "1.234,56 €" / "-45,50 €"
    - anything that is not a finite number -> "0,00 €"
    """
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except ArithmeticError:
        d = Decimal("0")
    if not d.is_finite():
        d = Decimal("0")

    digits = max(0, int(digits))
    q = Decimal(1) if digits == 0 else Decimal("1").scaleb(-digits)
    d = d.quantize(q, rounding=ROUND_HALF_UP)
    if d.is_zero():
        d = abs(d)

    sign = "-" if d < 0 else ""
    d_abs = -d if d < 0 else d
    # Format with US separators, then swap them for the it-IT convention.
    us = f"{d_abs:,.{digits}f}"
    it = us.replace(",", "\x00").replace(".", ",").replace("\x00", ".")
    return f"{sign}{it} €"
