"""Human-readable USD amounts for snapshot messages."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_THOUSAND = Decimal(1_000)
_MILLION = Decimal(1_000_000)
_BILLION = Decimal(1_000_000_000)


def _fixed(value: Decimal, places: int) -> str:
    quantum = Decimal(1).scaleb(-places)
    return f"{value.quantize(quantum, rounding=ROUND_HALF_UP):.{places}f}"


def format_usd(value: Decimal | float | int | None) -> str:
    """Format a USD amount.

    Sub-cent prices keep enough decimals to stay visible; large amounts
    use K/M/B suffixes.

    >>> format_usd(Decimal("1234.5"))
    '$1.23K'
    >>> format_usd(Decimal("0.0000005"))
    '$0.000000500000'
    """
    if value is None:
        return "$0.00"
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    if amount <= 0:
        return "$0.00"
    if amount < Decimal("0.000001"):
        return f"${_fixed(amount, 12)}"
    if amount < Decimal("0.01"):
        return f"${_fixed(amount, 8)}"
    if amount >= _BILLION:
        return f"${_fixed(amount / _BILLION, 2)}B"
    if amount >= _MILLION:
        return f"${_fixed(amount / _MILLION, 2)}M"
    if amount >= _THOUSAND:
        return f"${_fixed(amount / _THOUSAND, 2)}K"
    return f"${_fixed(amount, 2)}"
