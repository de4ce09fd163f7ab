"""
Integer swap math shared by the venue adapters.

Concentrated-liquidity prices are Q64.64 square roots (``S = sqrt(price) * 2^64``)
where price is token B per token A. Swapping A in moves the price down, B in moves
it up. All results are floored in the pool's favour; quotes are estimates bounded
by slippage, not exact replays of the on-chain program.
"""
from decimal import Decimal, localcontext
from typing import List, Sequence, Tuple

from ..errors import QuoteComputationFailed

Q64 = 1 << 64
FEE_DENOMINATOR = 1_000_000_000
MAX_FEE_NUMERATOR = 500_000_000
BASIS_POINT_MAX = 10_000

MIN_TICK = -443636
MAX_TICK = 443636
TICK_BASE = Decimal("1.0001")

FEE_SCHEDULER_LINEAR = 0
FEE_SCHEDULER_EXPONENTIAL = 1


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def constant_product_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """x*y=k output for ``amount_in`` (already net of fees)."""
    if reserve_in <= 0 or reserve_out <= 0:
        raise QuoteComputationFailed("Pool has no liquidity")
    return (amount_in * reserve_out) // (reserve_in + amount_in)


def trade_fee(amount: int, numerator: int, denominator: int) -> int:
    """Fee charged on ``amount`` at ``numerator/denominator``, rounded up."""
    if denominator <= 0 or numerator <= 0:
        return 0
    return _ceil_div(amount * numerator, denominator)


def get_delta_a(sqrt_lower: int, sqrt_upper: int, liquidity: int, round_up: bool = False) -> int:
    """Amount of token A between two sqrt prices: ``L * (upper - lower) * 2^64 / (lower * upper)``."""
    numerator = liquidity * (sqrt_upper - sqrt_lower) * Q64
    denominator = sqrt_lower * sqrt_upper
    if denominator == 0:
        raise QuoteComputationFailed("Zero sqrt price")
    return _ceil_div(numerator, denominator) if round_up else numerator // denominator


def get_delta_b(sqrt_lower: int, sqrt_upper: int, liquidity: int, round_up: bool = False) -> int:
    """Amount of token B between two sqrt prices: ``L * (upper - lower) / 2^64``."""
    product = liquidity * (sqrt_upper - sqrt_lower)
    return _ceil_div(product, Q64) if round_up else product // Q64


def get_next_sqrt_price_from_input(sqrt_price: int, liquidity: int, amount_in: int, a_to_b: bool) -> int:
    """
    Sqrt price after adding ``amount_in`` within a single liquidity range.
    
    A in:  S' = L * S * 2^64 / (L * 2^64 + amount * S)   (rounded up)
    B in:  S' = S + amount * 2^64 / L                     (rounded down)
    """
    if liquidity <= 0:
        raise QuoteComputationFailed("Pool has no active liquidity")
    if amount_in == 0:
        return sqrt_price
    if a_to_b:
        numerator = liquidity * sqrt_price * Q64
        denominator = liquidity * Q64 + amount_in * sqrt_price
        return _ceil_div(numerator, denominator)
    return sqrt_price + (amount_in * Q64) // liquidity


def swap_within_range(
    sqrt_price: int,
    sqrt_limit: int,
    liquidity: int,
    amount_in: int,
    a_to_b: bool
) -> Tuple[int, int, int]:
    """
    Swap inside one range bounded by ``sqrt_limit``.
    
    Returns:
        (amount consumed, amount out, next sqrt price)
    """
    if liquidity <= 0:
        return 0, 0, sqrt_limit
    if a_to_b:
        max_in = get_delta_a(sqrt_limit, sqrt_price, liquidity, round_up=True)
        if amount_in >= max_in:
            return max_in, get_delta_b(sqrt_limit, sqrt_price, liquidity), sqrt_limit
        next_price = get_next_sqrt_price_from_input(sqrt_price, liquidity, amount_in, True)
        return amount_in, get_delta_b(next_price, sqrt_price, liquidity), next_price
    max_in = get_delta_b(sqrt_price, sqrt_limit, liquidity, round_up=True)
    if amount_in >= max_in:
        return max_in, get_delta_a(sqrt_price, sqrt_limit, liquidity), sqrt_limit
    next_price = get_next_sqrt_price_from_input(sqrt_price, liquidity, amount_in, False)
    return amount_in, get_delta_a(sqrt_price, next_price, liquidity), next_price


def swap_across_ranges(
    ranges: Sequence[Tuple[int, int, int]],
    sqrt_price: int,
    amount_in: int,
    a_to_b: bool
) -> Tuple[int, int]:
    """
    Walk ascending ``(sqrt_lower, sqrt_upper, liquidity)`` ranges from the current price.
    
    Args:
        ranges: Contiguous liquidity ranges sorted by price
        sqrt_price: Current Q64.64 sqrt price
        amount_in: Input amount net of fees
        a_to_b: True when token A is the input
    
    Returns:
        (amount out, next sqrt price)
    
    Raises:
        QuoteComputationFailed: If the ranges cannot absorb the whole input
    """
    remaining = amount_in
    total_out = 0
    current = sqrt_price
    ordered: List[Tuple[int, int, int]] = sorted(ranges, key=lambda r: r[0], reverse=a_to_b)
    
    for lower, upper, liquidity in ordered:
        if remaining == 0:
            break
        if a_to_b:
            if current <= lower or lower >= upper:
                continue
            start = min(current, upper)
            consumed, out, current = swap_within_range(start, lower, liquidity, remaining, True)
        else:
            if current >= upper or lower >= upper:
                continue
            start = max(current, lower)
            consumed, out, current = swap_within_range(start, upper, liquidity, remaining, False)
        remaining -= consumed
        total_out += out
    
    if remaining > 0:
        raise QuoteComputationFailed(f"Insufficient liquidity: {remaining} of {amount_in} unfilled")
    return total_out, current


def sqrt_price_at_tick(tick: int) -> int:
    """
    Q64.64 sqrt price at a tick: ``sqrt(1.0001 ** tick) * 2^64``, floored.
    
    Raises:
        QuoteComputationFailed: If the tick is outside the supported range
    """
    if tick < MIN_TICK or tick > MAX_TICK:
        raise QuoteComputationFailed(f"Tick {tick} outside [{MIN_TICK}, {MAX_TICK}]")
    with localcontext() as ctx:
        ctx.prec = 60
        return int((TICK_BASE ** tick).sqrt() * Q64)


def swap_across_ticks(
    sqrt_price: int,
    liquidity: int,
    amount_in: int,
    a_to_b: bool,
    crossings: Sequence[Tuple[int, int]],
    sqrt_bound: int
) -> Tuple[int, int]:
    """
    Walk initialized ticks from the current price, adjusting liquidity at each crossing.
    
    Args:
        sqrt_price: Current Q64.64 sqrt price
        liquidity: Liquidity active at the current price
        amount_in: Input amount net of fees
        a_to_b: True when token A is the input (price moves down)
        crossings: ``(sqrt_price_at_tick, liquidity_net)`` in swap order
        sqrt_bound: Furthest price the loaded tick data covers
    
    Returns:
        (amount out, next sqrt price)
    
    Raises:
        QuoteComputationFailed: If the input cannot be absorbed before ``sqrt_bound``
    """
    remaining = amount_in
    total_out = 0
    current = sqrt_price
    active = liquidity
    
    for target, liquidity_net in list(crossings) + [(sqrt_bound, None)]:
        if remaining == 0:
            break
        target = min(target, current) if a_to_b else max(target, current)
        if active > 0:
            consumed, out, current = swap_within_range(current, target, active, remaining, a_to_b)
            remaining -= consumed
            total_out += out
        else:
            current = target
        if current != target or liquidity_net is None:
            break
        # Moving down through a tick removes its net liquidity, moving up adds it
        active = active - liquidity_net if a_to_b else active + liquidity_net
        if active < 0:
            raise QuoteComputationFailed(f"Negative liquidity after crossing sqrt price {target}")
    
    if remaining > 0:
        raise QuoteComputationFailed(f"Insufficient liquidity: {remaining} of {amount_in} unfilled")
    return total_out, current


def scheduled_fee_numerator(
    cliff_fee_numerator: int,
    number_of_period: int,
    period_frequency: int,
    reduction_factor: int,
    mode: int,
    activation_point: int,
    current_point: int
) -> int:
    """
    Base fee under a decaying fee schedule.
    
    The fee starts at the cliff numerator when the pool activates and decays every
    ``period_frequency`` points, for at most ``number_of_period`` periods. Linear mode
    subtracts ``reduction_factor`` per period, exponential mode multiplies by
    ``1 - reduction_factor / 10000`` per period.
    
    Raises:
        QuoteComputationFailed: If the pool has not activated yet
    """
    if current_point < activation_point:
        raise QuoteComputationFailed(
            f"Pool not active yet (activation point {activation_point}, current {current_point})"
        )
    if period_frequency <= 0:
        periods = 0
    else:
        periods = min(number_of_period, (current_point - activation_point) // period_frequency)
    
    if mode == FEE_SCHEDULER_EXPONENTIAL:
        fee = cliff_fee_numerator
        for _ in range(periods):
            fee = fee * (BASIS_POINT_MAX - reduction_factor) // BASIS_POINT_MAX
    else:
        fee = cliff_fee_numerator - periods * reduction_factor
    return max(0, min(MAX_FEE_NUMERATOR, fee))
