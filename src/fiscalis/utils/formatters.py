from __future__ import annotations

from decimal import Decimal


def format_eur(value: str | Decimal) -> str:
    """Format an amount as X XXX,XX € (French grouping)."""
    d = Decimal(value)
    formatted = f"{d:,.2f}".replace(",", " ").replace(".", ",")
    return f"{formatted} €"


def format_percent(ratio: Decimal | float) -> str:
    """Format a ratio (0.9009) as 90,1 %."""
    pct = Decimal(str(ratio)) * 100
    return f"{pct:.1f} %".replace(".", ",")
