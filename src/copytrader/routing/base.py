"""Quote data model and the slippage bound."""

import time
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal, localcontext
from typing import Optional

from copytrader.errors import InvalidSlippage

HUNDRED = Decimal(100)


@dataclass
class Quote:
    """Router quote for a single-hop swap.

    Amounts are in smallest units of the path's first and last token.
    """

    chain: str
    path: list[str]
    amount_in: int
    expected_out: int
    minimum_out: int
    slippage: Decimal  # percent
    native_price: Decimal  # native units per whole token
    reference_usd_price: Optional[Decimal] = None  # USD per whole token
    timestamp: float = field(default_factory=time.time)

    @property
    def token_in(self) -> str:
        return self.path[0]

    @property
    def token_out(self) -> str:
        return self.path[-1]

    @property
    def has_usd_reference(self) -> bool:
        return self.reference_usd_price is not None


def validate_slippage(slippage) -> Decimal:
    """Coerce slippage to Decimal and check it is within [0, 100)."""
    try:
        value = Decimal(str(slippage))
    except ArithmeticError as e:
        raise InvalidSlippage(f"Slippage is not a number: {slippage!r}") from e
    if not value.is_finite() or value < 0 or value >= HUNDRED:
        raise InvalidSlippage(f"Slippage must be within [0, 100), got {slippage}", slippage=str(slippage))
    return value


def minimum_output(expected: int, slippage) -> int:
    """Lowest acceptable output: floor(expected * (1 - slippage / 100)).

    Args:
        expected: Expected output in smallest units
        slippage: Tolerance in percent, 0 <= slippage < 100

    Raises:
        InvalidSlippage: If slippage is out of range
    """
    tolerance = validate_slippage(slippage)
    if expected <= 0:
        return 0
    with localcontext() as ctx:
        ctx.prec = 80
        bound = Decimal(expected) * (HUNDRED - tolerance) / HUNDRED
        return int(bound.to_integral_value(rounding=ROUND_DOWN))
