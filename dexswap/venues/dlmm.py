"""
Meteora DLMM: liquidity held in discrete price bins, swaps walk bins away from the active one.

The listing endpoint returns every pair, so the listing is cached venue-wide. When
the listing has no match, the pair is looked up by its derived address and finally
by a full scan of the program's pair accounts.
"""
import logging
import struct
from dataclasses import dataclass, replace
from decimal import Decimal, localcontext
from typing import Dict, List, Optional, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..amounts import apply_slippage_down, slippage_to_bps
from ..constants import METEORA_DLMM_PROGRAM_ID, Venue
from ..errors import QuoteComputationFailed
from ..instructions import anchor_data
from ..ledger import ACTIVATION_BY_SLOT, ACTIVATION_BY_TIMESTAMP, to_pubkey
from ..listing_cache import VENUE_WIDE_KEY, PoolRecord
from ..pool_resolver import FallbackStrategy, ResolvedPool
from ..utils import get_terminal_colors
from .base import SwapContext, SwapQuote, VenueAdapter, token_program_from_flag
from .curve_math import BASIS_POINT_MAX, FEE_DENOMINATOR, Q64

logger = logging.getLogger(__name__)
colors = get_terminal_colors()

EVENT_AUTHORITY, _ = Pubkey.find_program_address([b"__event_authority"], METEORA_DLMM_PROGRAM_ID)
# Base key of customizable permissionless pairs
ILM_BASE_KEY = Pubkey.from_string("MFGQxwAmB91SwuYX36okv2Qmdc9aMuHTwWGUrp4AtB1")

# LbPair layout
LB_PAIR_SIZE = 904
BASE_FACTOR = 8
FILTER_PERIOD = 10
DECAY_PERIOD = 12
REDUCTION_FACTOR = 14
VARIABLE_FEE_CONTROL = 16
MAX_VOLATILITY_ACCUMULATOR = 20
MIN_BIN_ID = 24
BASE_FEE_POWER_FACTOR = 34
VOLATILITY_ACCUMULATOR = 40
VOLATILITY_REFERENCE = 44
INDEX_REFERENCE = 48
LAST_UPDATE_TIMESTAMP = 56
ACTIVE_ID = 76
BIN_STEP = 80
STATUS = 82
ACTIVATION_TYPE = 86
TOKEN_X_MINT = 88
TOKEN_Y_MINT = 120
RESERVE_X = 152
RESERVE_Y = 184
ORACLE = 552
ACTIVATION_POINT = 816
TOKEN_X_PROGRAM_FLAG = 880
TOKEN_Y_PROGRAM_FLAG = 881

# BinArray layout
MAX_BIN_PER_ARRAY = 70
BIN_ARRAY_BINS = 56
BIN_SIZE = 144
BIN_ARRAYS_PER_SWAP = 3

MAX_FEE_RATE = 100_000_000
VARIABLE_FEE_SCALE = 100_000_000_000


def _pubkey_at(data: bytes, offset: int) -> Pubkey:
    return Pubkey.from_bytes(data[offset:offset + 32])


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def bin_array_index(bin_id: int) -> int:
    """Index of the bin array holding ``bin_id`` (floor division, also for negative ids)."""
    return bin_id // MAX_BIN_PER_ARRAY


def derive_bin_array(lb_pair: Pubkey, index: int) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [b"bin_array", bytes(lb_pair), struct.pack('<q', index)],
        METEORA_DLMM_PROGRAM_ID
    )
    return address


def derive_permissionless_pair(first_mint: Pubkey, second_mint: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [bytes(ILM_BASE_KEY), bytes(first_mint), bytes(second_mint)],
        METEORA_DLMM_PROGRAM_ID
    )
    return address


def bin_price_q64(bin_id: int, bin_step: int) -> int:
    """Price of a bin, ``(1 + bin_step / 10000) ^ bin_id``, as Q64.64."""
    with localcontext() as ctx:
        ctx.prec = 60
        price = (Decimal(1) + Decimal(bin_step) / Decimal(10_000)) ** bin_id
        return int(price * Q64)


@dataclass
class LbPairState:
    address: Pubkey
    token_x_mint: Pubkey
    token_y_mint: Pubkey
    reserve_x: Pubkey
    reserve_y: Pubkey
    oracle: Pubkey
    token_x_program: Pubkey
    token_y_program: Pubkey
    active_id: int
    bin_step: int
    min_bin_id: int
    max_bin_id: int
    status: int
    activation_type: int
    activation_point: int
    base_factor: int
    base_fee_power_factor: int
    variable_fee_control: int
    volatility_accumulator: int
    filter_period: int = 0
    decay_period: int = 0
    reduction_factor: int = 0
    max_volatility_accumulator: int = 0
    volatility_reference: int = 0
    index_reference: int = 0
    last_update_timestamp: int = 0
    
    def update_references(self, current_timestamp: int):
        """Refresh the volatility reference at the start of a swap (decays with time since the last swap)."""
        elapsed = current_timestamp - self.last_update_timestamp
        if elapsed < self.filter_period:
            return
        self.index_reference = self.active_id
        if elapsed < self.decay_period:
            self.volatility_reference = self.volatility_accumulator * self.reduction_factor // BASIS_POINT_MAX
        else:
            self.volatility_reference = 0
    
    def update_volatility_accumulator(self, bin_id: int):
        """Volatility grows with the distance between ``bin_id`` and the reference bin."""
        delta = abs(self.index_reference - bin_id)
        self.volatility_accumulator = min(
            self.volatility_reference + delta * BASIS_POINT_MAX,
            self.max_volatility_accumulator
        )
    
    def total_fee_rate(self) -> int:
        """Base plus variable fee rate in 1e9 precision, capped at 10%."""
        base = self.base_factor * self.bin_step * 10 * (10 ** self.base_fee_power_factor)
        variable = 0
        if self.variable_fee_control > 0:
            square = (self.volatility_accumulator * self.bin_step) ** 2
            variable = _ceil_div(self.variable_fee_control * square, VARIABLE_FEE_SCALE)
        return min(MAX_FEE_RATE, base + variable)


@dataclass
class BinAmounts:
    amount_x: int
    amount_y: int
    price: int


def decode_lb_pair(address: Pubkey, data: bytes) -> LbPairState:
    if len(data) < LB_PAIR_SIZE:
        raise QuoteComputationFailed(f"DLMM pair {address} malformed ({len(data)} bytes)")
    (base_factor,) = struct.unpack_from('<H', data, BASE_FACTOR)
    (variable_fee_control,) = struct.unpack_from('<I', data, VARIABLE_FEE_CONTROL)
    min_bin_id, max_bin_id = struct.unpack_from('<ii', data, MIN_BIN_ID)
    filter_period, decay_period, reduction_factor = struct.unpack_from('<HHH', data, FILTER_PERIOD)
    (max_volatility_accumulator,) = struct.unpack_from('<I', data, MAX_VOLATILITY_ACCUMULATOR)
    volatility_accumulator, volatility_reference, index_reference = struct.unpack_from('<IIi', data, VOLATILITY_ACCUMULATOR)
    (last_update_timestamp,) = struct.unpack_from('<q', data, LAST_UPDATE_TIMESTAMP)
    (active_id,) = struct.unpack_from('<i', data, ACTIVE_ID)
    (bin_step,) = struct.unpack_from('<H', data, BIN_STEP)
    (activation_point,) = struct.unpack_from('<Q', data, ACTIVATION_POINT)
    return LbPairState(
        address=address,
        token_x_mint=_pubkey_at(data, TOKEN_X_MINT),
        token_y_mint=_pubkey_at(data, TOKEN_Y_MINT),
        reserve_x=_pubkey_at(data, RESERVE_X),
        reserve_y=_pubkey_at(data, RESERVE_Y),
        oracle=_pubkey_at(data, ORACLE),
        token_x_program=token_program_from_flag(data[TOKEN_X_PROGRAM_FLAG]),
        token_y_program=token_program_from_flag(data[TOKEN_Y_PROGRAM_FLAG]),
        active_id=active_id,
        bin_step=bin_step,
        min_bin_id=min_bin_id,
        max_bin_id=max_bin_id,
        status=data[STATUS],
        activation_type=data[ACTIVATION_TYPE],
        activation_point=activation_point,
        base_factor=base_factor,
        base_fee_power_factor=data[BASE_FEE_POWER_FACTOR],
        variable_fee_control=variable_fee_control,
        volatility_accumulator=volatility_accumulator,
        filter_period=filter_period,
        decay_period=decay_period,
        reduction_factor=reduction_factor,
        max_volatility_accumulator=max_volatility_accumulator,
        volatility_reference=volatility_reference,
        index_reference=index_reference,
        last_update_timestamp=last_update_timestamp,
    )


def decode_bins(index: int, data: bytes) -> Dict[int, BinAmounts]:
    """Bins of one bin array keyed by bin id."""
    bins: Dict[int, BinAmounts] = {}
    first_id = index * MAX_BIN_PER_ARRAY
    for i in range(MAX_BIN_PER_ARRAY):
        offset = BIN_ARRAY_BINS + i * BIN_SIZE
        if offset + 32 > len(data):
            break
        amount_x, amount_y = struct.unpack_from('<QQ', data, offset)
        price = int.from_bytes(data[offset + 16:offset + 32], 'little')
        bins[first_id + i] = BinAmounts(amount_x=amount_x, amount_y=amount_y, price=price)
    return bins


def swap_through_bins(
    pair: LbPairState,
    bins: Dict[int, BinAmounts],
    amount_in: int,
    swap_for_y: bool,
    current_timestamp: Optional[int] = None
) -> Tuple[int, int, List[int]]:
    """
    Walk bins from the active id until ``amount_in`` is absorbed.
    
    X in (``swap_for_y``) drains Y from the active bin downwards; Y in drains X upwards.
    The fee is charged on the input of every bin touched.
    
    Args:
        pair: Decoded pair state (not modified)
        bins: Loaded bins keyed by bin id
        amount_in: Input amount in base units
        swap_for_y: True when token X is the input
        current_timestamp: Unix time of the swap. When given, the volatility
            accumulator is refreshed and re-accumulated for every bin crossed;
            otherwise the stored accumulator prices every bin.
    
    Returns:
        (amount out, total fee, bin array indexes touched in order)
    
    Raises:
        QuoteComputationFailed: If the loaded bins cannot absorb the input
    """
    fees = replace(pair)
    if current_timestamp is not None:
        fees.update_references(current_timestamp)
    fee_rate = fees.total_fee_rate()
    remaining = amount_in
    total_out = 0
    total_fee = 0
    touched: List[int] = []
    bin_id = pair.active_id
    step = -1 if swap_for_y else 1
    
    while remaining > 0 and pair.min_bin_id <= bin_id <= pair.max_bin_id and bin_id in bins:
        array_index = bin_array_index(bin_id)
        if not touched or touched[-1] != array_index:
            touched.append(array_index)
        current = bins[bin_id]
        price = current.price or bin_price_q64(bin_id, pair.bin_step)
        available = current.amount_y if swap_for_y else current.amount_x
        if available > 0 and price > 0:
            if current_timestamp is not None:
                fees.update_volatility_accumulator(bin_id)
                fee_rate = fees.total_fee_rate()
            if swap_for_y:
                max_in = _ceil_div(available * Q64, price)
            else:
                max_in = _ceil_div(available * price, Q64)
            max_fee = _ceil_div(max_in * fee_rate, FEE_DENOMINATOR - fee_rate)
            if remaining >= max_in + max_fee:
                remaining -= max_in + max_fee
                total_out += available
                total_fee += max_fee
            else:
                fee = _ceil_div(remaining * fee_rate, FEE_DENOMINATOR)
                net = remaining - fee
                out = (net * price) // Q64 if swap_for_y else (net * Q64) // price
                total_out += min(out, available)
                total_fee += fee
                remaining = 0
        bin_id += step
    
    if remaining > 0:
        raise QuoteComputationFailed(
            f"Insufficient DLMM liquidity in loaded bin arrays: {remaining} of {amount_in} unfilled"
        )
    return total_out, total_fee, touched


class MeteoraDlmmAdapter(VenueAdapter):
    """Meteora DLMM pairs (slippage in basis points, exact-out sells)."""
    
    venue = Venue.METEORA_DLMM
    
    def listing_key(self, target_mint: str, quote_mint: str) -> str:
        return VENUE_WIDE_KEY
    
    async def fetch_listings(self, target_mint: str, quote_mint: str) -> List[PoolRecord]:
        return await self.api.fetch_dlmm_pairs()
    
    def fallback_strategies(self) -> List[FallbackStrategy]:
        return [self.find_permissionless_pair, self.scan_pairs]
    
    async def find_permissionless_pair(self, target_mint: str, quote_mint: str) -> Optional[str]:
        """Derived address of a permissionless pair, tried in both mint orders."""
        target, quote = to_pubkey(target_mint), to_pubkey(quote_mint)
        for first, second in ((target, quote), (quote, target)):
            candidate = derive_permissionless_pair(first, second)
            if await self.ledger.fetch_account_state(candidate) is not None:
                return str(candidate)
        return None
    
    async def scan_pairs(self, target_mint: str, quote_mint: str) -> Optional[str]:
        """Last resort: scan every DLMM pair account for the mint pair."""
        try:
            accounts = await self.ledger.scan_program_accounts(METEORA_DLMM_PROGRAM_ID, data_size=LB_PAIR_SIZE)
        except Exception as e:
            logger.warning(f"{colors['RED']}DLMM pair scan failed: {e}{colors['RESET']}")
            return None
        wanted = {target_mint, quote_mint}
        for address, data in accounts:
            if len(data) < TOKEN_Y_MINT + 32:
                continue
            mints = {str(_pubkey_at(data, TOKEN_X_MINT)), str(_pubkey_at(data, TOKEN_Y_MINT))}
            if mints == wanted:
                return address
        return None
    
    async def load_pool_state(self, pool: ResolvedPool) -> LbPairState:
        address = to_pubkey(pool.pool_address)
        data = await self.ledger.fetch_account_state(address)
        if data is None:
            raise QuoteComputationFailed(f"DLMM pair {address} not found")
        return decode_lb_pair(address, data)
    
    async def load_bins(self, pair: LbPairState, swap_for_y: bool) -> Dict[int, BinAmounts]:
        """Fetch the active bin array and the next ones in swap direction."""
        start = bin_array_index(pair.active_id)
        step = -1 if swap_for_y else 1
        indexes = [start + step * i for i in range(BIN_ARRAYS_PER_SWAP)]
        arrays = await self.ledger.fetch_multiple_account_states(
            [derive_bin_array(pair.address, index) for index in indexes]
        )
        bins: Dict[int, BinAmounts] = {}
        for index, data in zip(indexes, arrays):
            if data is None:
                continue
            bins.update(decode_bins(index, data))
        return bins
    
    async def compute_quote(self, state: LbPairState, ctx: SwapContext) -> SwapQuote:
        swap_for_y = self.check_pool_mints(ctx, state.token_x_mint, state.token_y_mint)
        if state.status != 0:
            raise QuoteComputationFailed(f"DLMM pair {state.address} is disabled")
        current_point = await self.ledger.fetch_current_slot_or_timestamp(state.activation_type)
        if current_point < state.activation_point:
            raise QuoteComputationFailed(
                f"DLMM pair {state.address} not active yet (activation point {state.activation_point})"
            )
        
        if state.activation_type == ACTIVATION_BY_SLOT:
            now = await self.ledger.fetch_current_slot_or_timestamp(ACTIVATION_BY_TIMESTAMP)
        else:
            now = current_point
        
        bins = await self.load_bins(state, swap_for_y)
        out, fee, touched = swap_through_bins(state, bins, ctx.amount_in, swap_for_y, current_timestamp=now)
        # Remember which arrays the swap needs as remaining accounts
        ctx.pool.venue_metadata['bin_array_indexes'] = touched
        
        bps = slippage_to_bps(ctx.slippage)
        if ctx.is_buy:
            return SwapQuote(
                amount_in=ctx.amount_in,
                expected_amount_out=out,
                slippage_applied=bps,
                minimum_amount_out=apply_slippage_down(out, bps),
                fee_amount=fee,
            )
        # Sells ask for exactly the quoted output and never spend more than the caller's input
        return SwapQuote(
            amount_in=ctx.amount_in,
            expected_amount_out=out,
            slippage_applied=bps,
            maximum_amount_in=ctx.amount_in,
            fee_amount=fee,
            exact_out=True,
        )
    
    async def build_swap_instructions(self, state: LbPairState, ctx: SwapContext, quote: SwapQuote) -> List[Instruction]:
        swap_for_y = ctx.mint_in == state.token_x_mint
        program_in = state.token_x_program if swap_for_y else state.token_y_program
        program_out = state.token_y_program if swap_for_y else state.token_x_program
        indexes = ctx.pool.venue_metadata.get('bin_array_indexes') or [bin_array_index(state.active_id)]
        
        accounts = [
            AccountMeta(state.address, is_signer=False, is_writable=True),
            AccountMeta(METEORA_DLMM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(state.reserve_x, is_signer=False, is_writable=True),
            AccountMeta(state.reserve_y, is_signer=False, is_writable=True),
            AccountMeta(self.user_token_account(ctx, ctx.mint_in, program_in), is_signer=False, is_writable=True),
            AccountMeta(self.user_token_account(ctx, ctx.mint_out, program_out), is_signer=False, is_writable=True),
            AccountMeta(state.token_x_mint, is_signer=False, is_writable=False),
            AccountMeta(state.token_y_mint, is_signer=False, is_writable=False),
            AccountMeta(state.oracle, is_signer=False, is_writable=True),
            AccountMeta(METEORA_DLMM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(ctx.payer, is_signer=True, is_writable=False),
            AccountMeta(state.token_x_program, is_signer=False, is_writable=False),
            AccountMeta(state.token_y_program, is_signer=False, is_writable=False),
            AccountMeta(EVENT_AUTHORITY, is_signer=False, is_writable=False),
            AccountMeta(METEORA_DLMM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        accounts.extend(
            AccountMeta(derive_bin_array(state.address, index), is_signer=False, is_writable=True)
            for index in indexes
        )
        
        if quote.exact_out:
            data = anchor_data("swap_exact_out", quote.maximum_amount_in, quote.expected_amount_out)
        else:
            data = anchor_data("swap", quote.amount_in, quote.minimum_amount_out)
        return [Instruction(program_id=METEORA_DLMM_PROGRAM_ID, data=data, accounts=accounts)]
    
    async def output_token_program(self, state: LbPairState, ctx: SwapContext) -> Pubkey:
        return state.token_y_program if ctx.mint_out == state.token_y_mint else state.token_x_program
