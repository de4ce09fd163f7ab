"""
Fixed-point amount conversions and slippage representations.

Human amounts are converted with ``decimal.Decimal`` so a value such as 1.5 SOL
becomes exactly 1_500_000_000 lamports instead of whatever float scaling yields.
"""
import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, ROUND_FLOOR
from typing import Union

from .constants import SOL_DECIMALS
from .errors import InvalidParameter

Number = Union[int, float, str, Decimal]

BPS_DENOMINATOR = 10_000


def _to_decimal(amount: Number) -> Decimal:
    if isinstance(amount, float) and not math.isfinite(amount):
        raise InvalidParameter(f"Amount must be finite, got {amount}")
    try:
        # str() keeps the shortest float repr (0.1 -> "0.1", not 0.1000000000000000055...)
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise InvalidParameter(f"Invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise InvalidParameter(f"Amount must be finite, got {amount}")
    return value


def to_base_units(amount: Number, decimals: int) -> int:
    """
    Convert a human amount to integer base units, rounding half up.
    
    Args:
        amount: Human-readable amount (e.g. 1.5 SOL)
        decimals: Decimal count of the asset (9 for SOL)
    
    Returns:
        Amount in base units
    
    Raises:
        InvalidParameter: If the amount is negative, non-finite or decimals is invalid
    """
    if decimals < 0 or decimals > 255:
        raise InvalidParameter(f"Invalid decimal count: {decimals}")
    value = _to_decimal(amount)
    if value < 0:
        raise InvalidParameter(f"Amount must be non-negative, got {amount}")
    scaled = value.scaleb(decimals)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_base_units(units: int, decimals: int) -> Decimal:
    """Convert integer base units back to a human amount."""
    if decimals < 0 or decimals > 255:
        raise InvalidParameter(f"Invalid decimal count: {decimals}")
    return Decimal(int(units)).scaleb(-decimals)


def _clamp_fraction(slippage: float) -> float:
    if slippage is None or not math.isfinite(slippage):
        return 0.0
    return max(0.0, min(1.0, float(slippage)))


def slippage_to_bps(slippage: float) -> int:
    """Fraction in [0,1] -> basis points in [0,10000]. Out-of-range input is clamped."""
    bps = int(Decimal(str(_clamp_fraction(slippage) * BPS_DENOMINATOR)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return max(0, min(BPS_DENOMINATOR, bps))


def slippage_to_percent(slippage: float) -> float:
    """Fraction in [0,1] -> percent in [0,100] rounded to two decimal places."""
    pct = Decimal(str(_clamp_fraction(slippage) * 100))
    return float(pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def slippage_to_whole_percent(slippage: float) -> int:
    """Fraction in [0,1] -> whole percent in [1,100] (venues that reject a zero tolerance)."""
    pct = int(Decimal(str(_clamp_fraction(slippage) * 100)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return max(1, min(100, pct))


def apply_slippage_down(amount: int, slippage_bps: int) -> int:
    """Lower bound of ``amount`` after ``slippage_bps`` of tolerance, floored."""
    slippage_bps = max(0, min(BPS_DENOMINATOR, int(slippage_bps)))
    return (int(amount) * (BPS_DENOMINATOR - slippage_bps)) // BPS_DENOMINATOR


def apply_slippage_fraction_down(amount: int, slippage: float) -> int:
    """Lower bound of ``amount`` for a fractional tolerance, floored."""
    factor = Decimal(1) - Decimal(str(_clamp_fraction(slippage)))
    return int((Decimal(int(amount)) * factor).to_integral_value(rounding=ROUND_FLOOR))


def sol_to_lamports(amount_sol: Number) -> int:
    return to_base_units(amount_sol, SOL_DECIMALS)
