"""Fixed-point conversions and address helpers shared across modules."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

WEI_PER_TOKEN = 10**18
TOKEN_SCALE = Decimal(WEI_PER_TOKEN)
# Prices and the ETH/USD oracle are emitted scaled by 1e8.
PRICE_SCALE = Decimal(10**8)
USD_CENTS = Decimal("0.01")

ZERO_ADDRESS = "0x" + "0" * 40
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class InvalidAddressError(ValueError):
    """Raised for a malformed or zero contract/wallet address."""


def is_valid_address(address: str | None) -> bool:
    return bool(address) and _ADDRESS_RE.match(address or "") is not None and address.lower() != ZERO_ADDRESS


def normalize_address(address: str) -> str:
    """Validate an address and return it lower-cased.

    Raises:
        InvalidAddressError: If the address is malformed or the zero address.
    """
    if not isinstance(address, str) or not is_valid_address(address.strip()):
        raise InvalidAddressError(f"invalid address: {address!r}")
    return address.strip().lower()


def from_wei(value: int) -> Decimal:
    return Decimal(value) / TOKEN_SCALE


def from_price_units(value: int) -> Decimal:
    return Decimal(value) / PRICE_SCALE


def round_usd(value: Decimal) -> Decimal:
    return value.quantize(USD_CENTS, rounding=ROUND_HALF_UP)


def as_utc(ts: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)
