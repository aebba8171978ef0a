"""FIL unit conversion and per-provider cost estimates.

All money is integer attoFIL internally. FIL amounts coming from callers
are converted through Decimal so ``1.1`` never turns into a binary float
approximation.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext

from ..archive.piece import padded_piece_size
from ..core import defaults
from ..core.exceptions import MalformedInput
from .models import StorageProvider


def fil_to_atto(amount: Decimal | int | float | str) -> int:
    """Convert FIL to attoFIL, exactly. Fractions below one attoFIL are rejected."""
    with localcontext() as ctx:
        ctx.prec = 60
        try:
            value = Decimal(str(amount)) * defaults.ATTO_PER_FIL
        except InvalidOperation as e:
            raise MalformedInput(f"Not a FIL amount: {amount!r}") from e
    if not value.is_finite():
        raise MalformedInput(f"Not a FIL amount: {amount!r}")
    if value < 0:
        raise MalformedInput(f"Negative FIL amount: {amount}")
    if value != value.to_integral_value():
        raise MalformedInput(f"FIL amount {amount} has more than 18 decimal places")
    return int(value)


def atto_to_fil(atto: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 60
        return Decimal(int(atto)) / defaults.ATTO_PER_FIL


def format_fil(atto: int) -> str:
    """Human-readable FIL amount without trailing zeros."""
    text = format(atto_to_fil(atto).normalize(), "f")
    return f"{text} FIL"


def price_per_epoch(provider: StorageProvider, padded_size: int, verified: bool = False) -> int:
    """Price of one padded piece per epoch, rounded up to a whole attoFIL."""
    price = provider.price_for(verified)
    if price is None:
        raise MalformedInput(f"Provider {provider.provider_id} does not offer {'verified' if verified else 'regular'} deals")
    return -(-price * padded_size // defaults.GIB)


def estimate_cost(
    size_bytes: int,
    duration_epochs: int,
    provider: StorageProvider,
    verified: bool = False,
) -> int:
    """Total attoFIL to store ``size_bytes`` with ``provider`` for ``duration_epochs``."""
    padded = padded_piece_size(size_bytes)
    return price_per_epoch(provider, padded, verified) * duration_epochs
