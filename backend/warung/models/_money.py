from __future__ import annotations

from decimal import Decimal

CENTS = Decimal("0.01")


def money_str(value) -> str | None:
    """Render a stored amount as a 2-place decimal string."""
    if value is None:
        return None
    return str(Decimal(value).quantize(CENTS))
