"""
Meteora DAMM v2 (cp-amm): single-range concentrated liquidity with a scheduled base fee.
"""
import asyncio
import logging
import struct
from dataclasses import dataclass
from typing import List

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..amounts import apply_slippage_fraction_down, slippage_to_percent
from ..constants import METEORA_DAMM_V2_PROGRAM_ID, Venue
from ..errors import QuoteComputationFailed
from ..instructions import anchor_data
from ..ledger import to_pubkey
from ..listing_cache import PoolRecord
from ..pool_resolver import ResolvedPool
from .base import SwapContext, SwapQuote, VenueAdapter, token_program_from_flag
from .curve_math import FEE_DENOMINATOR, scheduled_fee_numerator, swap_across_ranges, trade_fee

logger = logging.getLogger(__name__)

POOL_AUTHORITY = Pubkey.from_string("HLnpSz9h2S4hiLQ43rnSD9XkcUThA7B8hQMKmDaiTLcC")
EVENT_AUTHORITY, _ = Pubkey.find_program_address([b"__event_authority"], METEORA_DAMM_V2_PROGRAM_ID)

# Pool account layout (after the 8-byte discriminator); base fee is the head of pool_fees
BASE_FEE_CLIFF_NUMERATOR = 8
BASE_FEE_SCHEDULER_MODE = 16
BASE_FEE_NUMBER_OF_PERIOD = 22
BASE_FEE_PERIOD_FREQUENCY = 24
BASE_FEE_REDUCTION_FACTOR = 32
TOKEN_A_MINT = 168
TOKEN_B_MINT = 200
TOKEN_A_VAULT = 232
TOKEN_B_VAULT = 264
LIQUIDITY = 360
SQRT_MIN_PRICE = 424
SQRT_MAX_PRICE = 440
SQRT_PRICE = 456
ACTIVATION_POINT = 472
ACTIVATION_TYPE = 480
POOL_STATUS = 481
TOKEN_A_FLAG = 482
TOKEN_B_FLAG = 483
COLLECT_FEE_MODE = 484
POOL_MIN_SIZE = 486

# collect_fee_mode: 0 = fees in both tokens (taken from output), 1 = fees only in token B
COLLECT_FEE_ONLY_B = 1


def _u128(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 16], 'little')


@dataclass
class DammV2PoolState:
    address: Pubkey
    token_a_mint: Pubkey
    token_b_mint: Pubkey
    token_a_vault: Pubkey
    token_b_vault: Pubkey
    token_a_program: Pubkey
    token_b_program: Pubkey
    liquidity: int
    sqrt_price: int
    sqrt_min_price: int
    sqrt_max_price: int
    activation_point: int
    activation_type: int
    pool_status: int
    collect_fee_mode: int
    cliff_fee_numerator: int
    fee_scheduler_mode: int
    number_of_period: int
    period_frequency: int
    reduction_factor: int


def decode_pool(address: Pubkey, data: bytes) -> DammV2PoolState:
    if len(data) < POOL_MIN_SIZE:
        raise QuoteComputationFailed(f"DAMM v2 pool {address} malformed ({len(data)} bytes)")
    (cliff,) = struct.unpack_from('<Q', data, BASE_FEE_CLIFF_NUMERATOR)
    (number_of_period,) = struct.unpack_from('<H', data, BASE_FEE_NUMBER_OF_PERIOD)
    period_frequency, reduction_factor = struct.unpack_from('<QQ', data, BASE_FEE_PERIOD_FREQUENCY)
    (activation_point,) = struct.unpack_from('<Q', data, ACTIVATION_POINT)
    return DammV2PoolState(
        address=address,
        token_a_mint=Pubkey.from_bytes(data[TOKEN_A_MINT:TOKEN_A_MINT + 32]),
        token_b_mint=Pubkey.from_bytes(data[TOKEN_B_MINT:TOKEN_B_MINT + 32]),
        token_a_vault=Pubkey.from_bytes(data[TOKEN_A_VAULT:TOKEN_A_VAULT + 32]),
        token_b_vault=Pubkey.from_bytes(data[TOKEN_B_VAULT:TOKEN_B_VAULT + 32]),
        token_a_program=token_program_from_flag(data[TOKEN_A_FLAG]),
        token_b_program=token_program_from_flag(data[TOKEN_B_FLAG]),
        liquidity=_u128(data, LIQUIDITY),
        sqrt_price=_u128(data, SQRT_PRICE),
        sqrt_min_price=_u128(data, SQRT_MIN_PRICE),
        sqrt_max_price=_u128(data, SQRT_MAX_PRICE),
        activation_point=activation_point,
        activation_type=data[ACTIVATION_TYPE],
        pool_status=data[POOL_STATUS],
        collect_fee_mode=data[COLLECT_FEE_MODE],
        cliff_fee_numerator=cliff,
        fee_scheduler_mode=data[BASE_FEE_SCHEDULER_MODE],
        number_of_period=number_of_period,
        period_frequency=period_frequency,
        reduction_factor=reduction_factor,
    )


class MeteoraDammV2Adapter(VenueAdapter):
    """Meteora DAMM v2 pools (percent slippage with two decimals)."""
    
    venue = Venue.METEORA_DAMM_V2
    
    async def fetch_listings(self, target_mint: str, quote_mint: str) -> List[PoolRecord]:
        return await self.api.fetch_damm_v2_pools(target_mint, quote_mint)
    
    async def load_pool_state(self, pool: ResolvedPool) -> DammV2PoolState:
        address = to_pubkey(pool.pool_address)
        data = await self.ledger.fetch_account_state(address)
        if data is None:
            raise QuoteComputationFailed(f"DAMM v2 pool {address} not found")
        return decode_pool(address, data)
    
    async def input_decimals(self, state: DammV2PoolState, pool: ResolvedPool) -> int:
        decimals_a, decimals_b = await asyncio.gather(
            self.ledger.fetch_mint_decimals(state.token_a_mint),
            self.ledger.fetch_mint_decimals(state.token_b_mint),
        )
        return decimals_a if str(state.token_a_mint) == pool.asset_mint_in else decimals_b
    
    async def compute_quote(self, state: DammV2PoolState, ctx: SwapContext) -> SwapQuote:
        a_to_b = self.check_pool_mints(ctx, state.token_a_mint, state.token_b_mint)
        if state.pool_status != 0:
            raise QuoteComputationFailed(f"DAMM v2 pool {state.address} trading is disabled")
        
        current_point = await self.ledger.fetch_current_slot_or_timestamp(state.activation_type)
        fee_numerator = scheduled_fee_numerator(
            state.cliff_fee_numerator,
            state.number_of_period,
            state.period_frequency,
            state.reduction_factor,
            state.fee_scheduler_mode,
            state.activation_point,
            current_point,
        )
        
        # Only-B mode charges the fee on the input when B is the input, otherwise on the output
        fee_on_input = state.collect_fee_mode == COLLECT_FEE_ONLY_B and not a_to_b
        fee = 0
        amount_in = ctx.amount_in
        if fee_on_input:
            fee = trade_fee(amount_in, fee_numerator, FEE_DENOMINATOR)
            amount_in -= fee
        
        gross_out, _ = swap_across_ranges(
            [(state.sqrt_min_price, state.sqrt_max_price, state.liquidity)],
            state.sqrt_price,
            amount_in,
            a_to_b,
        )
        out = gross_out
        if not fee_on_input:
            fee = trade_fee(gross_out, fee_numerator, FEE_DENOMINATOR)
            out = gross_out - fee
        
        percent = slippage_to_percent(ctx.slippage)
        return SwapQuote(
            amount_in=ctx.amount_in,
            expected_amount_out=out,
            slippage_applied=percent,
            minimum_amount_out=apply_slippage_fraction_down(out, percent / 100),
            fee_amount=fee,
        )
    
    async def build_swap_instructions(self, state: DammV2PoolState, ctx: SwapContext, quote: SwapQuote) -> List[Instruction]:
        a_to_b = ctx.mint_in == state.token_a_mint
        program_in = state.token_a_program if a_to_b else state.token_b_program
        program_out = state.token_b_program if a_to_b else state.token_a_program
        accounts = [
            AccountMeta(POOL_AUTHORITY, is_signer=False, is_writable=False),
            AccountMeta(state.address, is_signer=False, is_writable=True),
            AccountMeta(self.user_token_account(ctx, ctx.mint_in, program_in), is_signer=False, is_writable=True),
            AccountMeta(self.user_token_account(ctx, ctx.mint_out, program_out), is_signer=False, is_writable=True),
            AccountMeta(state.token_a_vault, is_signer=False, is_writable=True),
            AccountMeta(state.token_b_vault, is_signer=False, is_writable=True),
            AccountMeta(state.token_a_mint, is_signer=False, is_writable=False),
            AccountMeta(state.token_b_mint, is_signer=False, is_writable=False),
            AccountMeta(ctx.payer, is_signer=True, is_writable=False),
            AccountMeta(state.token_a_program, is_signer=False, is_writable=False),
            AccountMeta(state.token_b_program, is_signer=False, is_writable=False),
            # No referral account: the program id stands in for the empty optional
            AccountMeta(METEORA_DAMM_V2_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(EVENT_AUTHORITY, is_signer=False, is_writable=False),
            AccountMeta(METEORA_DAMM_V2_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = anchor_data("swap", quote.amount_in, quote.minimum_amount_out)
        return [Instruction(program_id=METEORA_DAMM_V2_PROGRAM_ID, data=data, accounts=accounts)]
    
    async def output_token_program(self, state: DammV2PoolState, ctx: SwapContext) -> Pubkey:
        return state.token_b_program if ctx.mint_out == state.token_b_mint else state.token_a_program
