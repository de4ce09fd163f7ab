"""
Raydium concentrated-liquidity pools (CLMM).

Quotes walk the initialized ticks in the current tick array and the next two in
swap direction, the same arrays the swap instruction passes to the program.
"""
import logging
import struct
from dataclasses import dataclass
from typing import Dict, List, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..amounts import apply_slippage_fraction_down
from ..constants import RAYDIUM_CLMM_PROGRAM_ID, TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID, Venue
from ..errors import QuoteComputationFailed
from ..instructions import anchor_discriminator
from ..ledger import to_pubkey
from ..listing_cache import PoolRecord
from ..pool_resolver import ResolvedPool
from .base import SwapContext, SwapQuote, VenueAdapter
from .curve_math import MAX_TICK, MIN_TICK, sqrt_price_at_tick, swap_across_ticks, trade_fee

logger = logging.getLogger(__name__)

MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")

# PoolState layout
POOL_AMM_CONFIG = 9
POOL_TOKEN_MINT_0 = 73
POOL_TOKEN_MINT_1 = 105
POOL_TOKEN_VAULT_0 = 137
POOL_TOKEN_VAULT_1 = 169
POOL_OBSERVATION = 201
POOL_MINT_DECIMALS_0 = 233
POOL_MINT_DECIMALS_1 = 234
POOL_TICK_SPACING = 235
POOL_LIQUIDITY = 237
POOL_SQRT_PRICE = 253
POOL_TICK_CURRENT = 269
POOL_MIN_SIZE = 273

# AmmConfig layout
CONFIG_TRADE_FEE_RATE = 47
FEE_RATE_DENOMINATOR = 1_000_000

TICK_ARRAY_SIZE = 60
TICK_ARRAYS_PER_SWAP = 3

# TickArrayState layout: discriminator, pool id, start_tick_index i32, then 60 packed TickStates
TICK_ARRAY_START_INDEX = 40
TICK_ARRAY_TICKS = 44
# TickState: tick i32, liquidity_net i128, liquidity_gross u128, fee and reward growths, padding
TICK_STATE_SIZE = 168
TICK_LIQUIDITY_NET = 4
TICK_LIQUIDITY_GROSS = 20
TICK_ARRAY_MIN_SIZE = TICK_ARRAY_TICKS + TICK_ARRAY_SIZE * TICK_STATE_SIZE


def _u128(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 16], 'little')


def _pubkey_at(data: bytes, offset: int) -> Pubkey:
    return Pubkey.from_bytes(data[offset:offset + 32])


def tick_array_start_index(tick: int, tick_spacing: int) -> int:
    ticks_per_array = tick_spacing * TICK_ARRAY_SIZE
    return (tick // ticks_per_array) * ticks_per_array


def derive_tick_array(pool: Pubkey, start_index: int) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [b"tick_array", bytes(pool), struct.pack('>i', start_index)],
        RAYDIUM_CLMM_PROGRAM_ID
    )
    return address


def derive_bitmap_extension(pool: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [b"pool_tick_array_bitmap_extension", bytes(pool)],
        RAYDIUM_CLMM_PROGRAM_ID
    )
    return address


def decode_tick_array(data: bytes) -> Dict[int, int]:
    """
    Initialized ticks of one tick array.
    
    Returns:
        Mapping of tick index to signed ``liquidity_net`` for ticks with non-zero gross liquidity
    """
    if len(data) < TICK_ARRAY_MIN_SIZE:
        raise QuoteComputationFailed(f"Tick array too short: {len(data)} bytes")
    ticks: Dict[int, int] = {}
    for slot in range(TICK_ARRAY_SIZE):
        base = TICK_ARRAY_TICKS + slot * TICK_STATE_SIZE
        if _u128(data, base + TICK_LIQUIDITY_GROSS) == 0:
            continue
        (tick,) = struct.unpack_from('<i', data, base)
        net = int.from_bytes(data[base + TICK_LIQUIDITY_NET:base + TICK_LIQUIDITY_NET + 16], 'little', signed=True)
        ticks[tick] = net
    return ticks


@dataclass
class ClmmPoolState:
    address: Pubkey
    amm_config: Pubkey
    token_mint_0: Pubkey
    token_mint_1: Pubkey
    token_vault_0: Pubkey
    token_vault_1: Pubkey
    observation: Pubkey
    decimals_0: int
    decimals_1: int
    tick_spacing: int
    liquidity: int
    sqrt_price_x64: int
    tick_current: int
    trade_fee_rate: int


class RaydiumClmmAdapter(VenueAdapter):
    """Raydium CLMM pools (slippage as a fraction)."""
    
    venue = Venue.RAYDIUM_CLMM
    
    async def fetch_listings(self, target_mint: str, quote_mint: str) -> List[PoolRecord]:
        return await self.api.fetch_raydium_clmm_pools(target_mint, quote_mint)
    
    async def load_pool_state(self, pool: ResolvedPool) -> ClmmPoolState:
        address = to_pubkey(pool.pool_address)
        data = await self.ledger.fetch_account_state(address)
        if data is None or len(data) < POOL_MIN_SIZE:
            raise QuoteComputationFailed(f"Raydium CLMM pool {address} not found or malformed")
        amm_config = _pubkey_at(data, POOL_AMM_CONFIG)
        config_data = await self.ledger.fetch_account_state(amm_config)
        if config_data is None or len(config_data) < CONFIG_TRADE_FEE_RATE + 4:
            raise QuoteComputationFailed(f"Raydium AMM config {amm_config} not found")
        (trade_fee_rate,) = struct.unpack_from('<I', config_data, CONFIG_TRADE_FEE_RATE)
        (tick_spacing,) = struct.unpack_from('<H', data, POOL_TICK_SPACING)
        (tick_current,) = struct.unpack_from('<i', data, POOL_TICK_CURRENT)
        return ClmmPoolState(
            address=address,
            amm_config=amm_config,
            token_mint_0=_pubkey_at(data, POOL_TOKEN_MINT_0),
            token_mint_1=_pubkey_at(data, POOL_TOKEN_MINT_1),
            token_vault_0=_pubkey_at(data, POOL_TOKEN_VAULT_0),
            token_vault_1=_pubkey_at(data, POOL_TOKEN_VAULT_1),
            observation=_pubkey_at(data, POOL_OBSERVATION),
            decimals_0=data[POOL_MINT_DECIMALS_0],
            decimals_1=data[POOL_MINT_DECIMALS_1],
            tick_spacing=tick_spacing,
            liquidity=_u128(data, POOL_LIQUIDITY),
            sqrt_price_x64=_u128(data, POOL_SQRT_PRICE),
            tick_current=tick_current,
            trade_fee_rate=trade_fee_rate,
        )
    
    async def input_decimals(self, state: ClmmPoolState, pool: ResolvedPool) -> int:
        return state.decimals_0 if str(state.token_mint_0) == pool.asset_mint_in else state.decimals_1
    
    async def compute_quote(self, state: ClmmPoolState, ctx: SwapContext) -> SwapQuote:
        zero_for_one = self.check_pool_mints(ctx, state.token_mint_0, state.token_mint_1)
        ticks = await self.load_ticks(state, zero_for_one)
        crossings = self.crossings(state, ticks, zero_for_one)
        if state.liquidity <= 0 and not crossings:
            raise QuoteComputationFailed(f"Raydium CLMM pool {state.address} has no active liquidity")
        
        fee = trade_fee(ctx.amount_in, state.trade_fee_rate, FEE_RATE_DENOMINATOR)
        out, _ = swap_across_ticks(
            state.sqrt_price_x64,
            state.liquidity,
            ctx.amount_in - fee,
            zero_for_one,
            crossings,
            sqrt_price_at_tick(self.walk_bound(state, zero_for_one)),
        )
        slippage = max(0.0, min(1.0, float(ctx.slippage)))
        return SwapQuote(
            amount_in=ctx.amount_in,
            expected_amount_out=out,
            slippage_applied=slippage,
            minimum_amount_out=apply_slippage_fraction_down(out, slippage),
            fee_amount=fee,
        )
    
    def tick_array_starts(self, state: ClmmPoolState, zero_for_one: bool) -> List[int]:
        """Start indexes of the current tick array and the next ones in swap direction."""
        start = tick_array_start_index(state.tick_current, state.tick_spacing)
        step = state.tick_spacing * TICK_ARRAY_SIZE * (-1 if zero_for_one else 1)
        return [start + step * i for i in range(TICK_ARRAYS_PER_SWAP)]
    
    def tick_arrays(self, state: ClmmPoolState, zero_for_one: bool) -> List[Pubkey]:
        return [derive_tick_array(state.address, start) for start in self.tick_array_starts(state, zero_for_one)]
    
    def walk_bound(self, state: ClmmPoolState, zero_for_one: bool) -> int:
        """Furthest tick the loaded tick arrays cover in swap direction."""
        last = self.tick_array_starts(state, zero_for_one)[-1]
        if zero_for_one:
            return max(MIN_TICK, last)
        return min(MAX_TICK, last + state.tick_spacing * TICK_ARRAY_SIZE)
    
    async def load_ticks(self, state: ClmmPoolState, zero_for_one: bool) -> Dict[int, int]:
        """Initialized ticks across the swap's tick arrays. Missing arrays hold no liquidity."""
        arrays = await self.ledger.fetch_multiple_account_states(self.tick_arrays(state, zero_for_one))
        ticks: Dict[int, int] = {}
        for data in arrays:
            if data is not None:
                ticks.update(decode_tick_array(data))
        logger.debug(f"Raydium CLMM pool {state.address}: {len(ticks)} initialized ticks loaded")
        return ticks
    
    @staticmethod
    def crossings(state: ClmmPoolState, ticks: Dict[int, int], zero_for_one: bool) -> List[Tuple[int, int]]:
        """``(sqrt price, liquidity_net)`` for each tick the swap could cross, in swap order."""
        if zero_for_one:
            ahead = sorted((t for t in ticks if t <= state.tick_current), reverse=True)
        else:
            ahead = sorted(t for t in ticks if t > state.tick_current)
        return [(sqrt_price_at_tick(t), ticks[t]) for t in ahead if MIN_TICK <= t <= MAX_TICK]
    
    async def build_swap_instructions(self, state: ClmmPoolState, ctx: SwapContext, quote: SwapQuote) -> List[Instruction]:
        zero_for_one = ctx.mint_in == state.token_mint_0
        input_vault, output_vault = (
            (state.token_vault_0, state.token_vault_1) if zero_for_one else (state.token_vault_1, state.token_vault_0)
        )
        program_in = await self.token_program_for(ctx.mint_in)
        program_out = await self.token_program_for(ctx.mint_out)
        accounts = [
            AccountMeta(ctx.payer, is_signer=True, is_writable=False),
            AccountMeta(state.amm_config, is_signer=False, is_writable=False),
            AccountMeta(state.address, is_signer=False, is_writable=True),
            AccountMeta(self.user_token_account(ctx, ctx.mint_in, program_in), is_signer=False, is_writable=True),
            AccountMeta(self.user_token_account(ctx, ctx.mint_out, program_out), is_signer=False, is_writable=True),
            AccountMeta(input_vault, is_signer=False, is_writable=True),
            AccountMeta(output_vault, is_signer=False, is_writable=True),
            AccountMeta(state.observation, is_signer=False, is_writable=True),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_2022_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(MEMO_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(ctx.mint_in, is_signer=False, is_writable=False),
            AccountMeta(ctx.mint_out, is_signer=False, is_writable=False),
            AccountMeta(derive_bitmap_extension(state.address), is_signer=False, is_writable=True),
        ]
        accounts.extend(
            AccountMeta(tick_array, is_signer=False, is_writable=True)
            for tick_array in self.tick_arrays(state, zero_for_one)
        )
        # swap_v2(amount, other_amount_threshold, sqrt_price_limit_x64 = 0 (no limit), is_base_input)
        data = (
            anchor_discriminator("swap_v2")
            + struct.pack('<QQ', quote.amount_in, quote.minimum_amount_out)
            + (0).to_bytes(16, 'little')
            + struct.pack('<?', True)
        )
        return [Instruction(program_id=RAYDIUM_CLMM_PROGRAM_ID, data=data, accounts=accounts)]
