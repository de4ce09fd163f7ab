"""
Meteora Dynamic Bonding Curve: a virtual concentrated-liquidity curve per base mint.

Pools are found on-chain (program-account scan on the base mint); the pool's config
account supplies the quote mint, fee schedule and curve.
"""
import logging
import struct
from dataclasses import dataclass
from typing import List, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..amounts import apply_slippage_down, slippage_to_bps
from ..constants import METEORA_DBC_PROGRAM_ID, Venue
from ..errors import QuoteComputationFailed
from ..instructions import anchor_account_discriminator, anchor_data
from ..ledger import to_pubkey
from ..listing_cache import PoolRecord
from ..pool_resolver import ResolvedPool
from .base import SwapContext, SwapQuote, VenueAdapter, token_program_from_flag
from .curve_math import FEE_DENOMINATOR, scheduled_fee_numerator, swap_across_ranges, trade_fee

logger = logging.getLogger(__name__)

POOL_AUTHORITY = Pubkey.from_string("FhVo3mqL8PW5pH5U2CN4XE33DokiyZnUwuGpH2hmHLuM")
EVENT_AUTHORITY, _ = Pubkey.find_program_address([b"__event_authority"], METEORA_DBC_PROGRAM_ID)
VIRTUAL_POOL_DISCRIMINATOR = anchor_account_discriminator("VirtualPool")

# VirtualPool layout
POOL_CONFIG = 72
POOL_BASE_MINT = 136
POOL_BASE_VAULT = 168
POOL_QUOTE_VAULT = 200
POOL_BASE_RESERVE = 232
POOL_QUOTE_RESERVE = 240
POOL_SQRT_PRICE = 280
POOL_ACTIVATION_POINT = 296
POOL_BASE_TOKEN_FLAG = 304
POOL_IS_MIGRATED = 305
POOL_MIN_SIZE = 306

# PoolConfig layout
CONFIG_QUOTE_MINT = 8
CONFIG_CLIFF_FEE_NUMERATOR = 104
CONFIG_PERIOD_FREQUENCY = 112
CONFIG_REDUCTION_FACTOR = 120
CONFIG_NUMBER_OF_PERIOD = 128
CONFIG_BASE_FEE_MODE = 130
CONFIG_COLLECT_FEE_MODE = 232
CONFIG_ACTIVATION_TYPE = 234
CONFIG_QUOTE_TOKEN_FLAG = 238
CONFIG_SQRT_START_PRICE = 432
CONFIG_CURVE = 448
CURVE_POINTS = 20
CURVE_POINT_SIZE = 32
CONFIG_MIN_SIZE = CONFIG_CURVE + CURVE_POINTS * CURVE_POINT_SIZE

# collect_fee_mode: 0 = fee in quote token, 1 = fee in output token
COLLECT_FEE_QUOTE_TOKEN = 0


def _u128(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 16], 'little')


def _pubkey_at(data: bytes, offset: int) -> Pubkey:
    return Pubkey.from_bytes(data[offset:offset + 32])


@dataclass
class DbcConfigState:
    address: Pubkey
    quote_mint: Pubkey
    quote_token_program: Pubkey
    collect_fee_mode: int
    activation_type: int
    cliff_fee_numerator: int
    number_of_period: int
    period_frequency: int
    reduction_factor: int
    base_fee_mode: int
    curve: List[Tuple[int, int, int]]


@dataclass
class DbcPoolState:
    address: Pubkey
    config: DbcConfigState
    base_mint: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    base_token_program: Pubkey
    base_reserve: int
    quote_reserve: int
    sqrt_price: int
    activation_point: int
    is_migrated: bool


def decode_curve(data: bytes) -> List[Tuple[int, int, int]]:
    """Config curve as contiguous ``(sqrt_lower, sqrt_upper, liquidity)`` ranges."""
    ranges: List[Tuple[int, int, int]] = []
    lower = _u128(data, CONFIG_SQRT_START_PRICE)
    for i in range(CURVE_POINTS):
        offset = CONFIG_CURVE + i * CURVE_POINT_SIZE
        upper = _u128(data, offset)
        if upper == 0:
            break
        ranges.append((lower, upper, _u128(data, offset + 16)))
        lower = upper
    return ranges


def decode_config(address: Pubkey, data: bytes) -> DbcConfigState:
    if len(data) < CONFIG_MIN_SIZE:
        raise QuoteComputationFailed(f"DBC config {address} malformed ({len(data)} bytes)")
    cliff, period_frequency, reduction_factor = struct.unpack_from('<QQQ', data, CONFIG_CLIFF_FEE_NUMERATOR)
    (number_of_period,) = struct.unpack_from('<H', data, CONFIG_NUMBER_OF_PERIOD)
    return DbcConfigState(
        address=address,
        quote_mint=_pubkey_at(data, CONFIG_QUOTE_MINT),
        quote_token_program=token_program_from_flag(data[CONFIG_QUOTE_TOKEN_FLAG]),
        collect_fee_mode=data[CONFIG_COLLECT_FEE_MODE],
        activation_type=data[CONFIG_ACTIVATION_TYPE],
        cliff_fee_numerator=cliff,
        number_of_period=number_of_period,
        period_frequency=period_frequency,
        reduction_factor=reduction_factor,
        base_fee_mode=data[CONFIG_BASE_FEE_MODE],
        curve=decode_curve(data),
    )


class MeteoraDbcAdapter(VenueAdapter):
    """Meteora bonding-curve pools (slippage in basis points)."""
    
    venue = Venue.METEORA_DBC
    
    async def fetch_listings(self, target_mint: str, quote_mint: str) -> List[PoolRecord]:
        """Scan the DBC program for virtual pools whose base mint is ``target_mint``."""
        accounts = await self.ledger.scan_program_accounts(
            METEORA_DBC_PROGRAM_ID,
            memcmp=[(0, VIRTUAL_POOL_DISCRIMINATOR), (POOL_BASE_MINT, bytes(to_pubkey(target_mint)))]
        )
        pools = [(address, data) for address, data in accounts if len(data) >= POOL_MIN_SIZE]
        if not pools:
            return []
        configs = await self.ledger.fetch_multiple_account_states(
            [_pubkey_at(data, POOL_CONFIG) for _, data in pools]
        )
        
        records: List[PoolRecord] = []
        for (address, data), config_data in zip(pools, configs):
            if config_data is None or len(config_data) < CONFIG_QUOTE_MINT + 32:
                logger.debug(f"DBC pool {address} has no readable config, skipping")
                continue
            base_reserve, quote_reserve = struct.unpack_from('<QQ', data, POOL_BASE_RESERVE)
            records.append(PoolRecord(
                pool_address=address,
                asset_mint_a=str(_pubkey_at(data, POOL_BASE_MINT)),
                asset_mint_b=str(_pubkey_at(config_data, CONFIG_QUOTE_MINT)),
                reserve_a=float(base_reserve),
                reserve_b=float(quote_reserve),
                liquidity_or_tvl=float(quote_reserve),
                metadata={'config': str(_pubkey_at(data, POOL_CONFIG)), 'is_migrated': bool(data[POOL_IS_MIGRATED])},
            ))
        logger.debug(f"DBC scan for {target_mint} found {len(records)} pools")
        return records
    
    async def load_pool_state(self, pool: ResolvedPool) -> DbcPoolState:
        address = to_pubkey(pool.pool_address)
        data = await self.ledger.fetch_account_state(address)
        if data is None or len(data) < POOL_MIN_SIZE:
            raise QuoteComputationFailed(f"DBC pool {address} not found or malformed")
        config_address = _pubkey_at(data, POOL_CONFIG)
        config_data = await self.ledger.fetch_account_state(config_address)
        if config_data is None:
            raise QuoteComputationFailed(f"DBC config {config_address} not found")
        base_reserve, quote_reserve = struct.unpack_from('<QQ', data, POOL_BASE_RESERVE)
        (activation_point,) = struct.unpack_from('<Q', data, POOL_ACTIVATION_POINT)
        return DbcPoolState(
            address=address,
            config=decode_config(config_address, config_data),
            base_mint=_pubkey_at(data, POOL_BASE_MINT),
            base_vault=_pubkey_at(data, POOL_BASE_VAULT),
            quote_vault=_pubkey_at(data, POOL_QUOTE_VAULT),
            base_token_program=token_program_from_flag(data[POOL_BASE_TOKEN_FLAG]),
            base_reserve=base_reserve,
            quote_reserve=quote_reserve,
            sqrt_price=_u128(data, POOL_SQRT_PRICE),
            activation_point=activation_point,
            is_migrated=bool(data[POOL_IS_MIGRATED]),
        )
    
    async def compute_quote(self, state: DbcPoolState, ctx: SwapContext) -> SwapQuote:
        base_in = self.check_pool_mints(ctx, state.base_mint, state.config.quote_mint)
        if state.is_migrated:
            raise QuoteComputationFailed(f"DBC pool {state.address} has migrated; trade on the destination pool")
        
        config = state.config
        current_point = await self.ledger.fetch_current_slot_or_timestamp(config.activation_type)
        fee_numerator = scheduled_fee_numerator(
            config.cliff_fee_numerator,
            config.number_of_period,
            config.period_frequency,
            config.reduction_factor,
            config.base_fee_mode,
            state.activation_point,
            current_point,
        )
        
        # Quote-token fee mode charges buys on the input side; everything else pays from the output
        fee_on_input = config.collect_fee_mode == COLLECT_FEE_QUOTE_TOKEN and not base_in
        fee = 0
        amount_in = ctx.amount_in
        if fee_on_input:
            fee = trade_fee(amount_in, fee_numerator, FEE_DENOMINATOR)
            amount_in -= fee
        
        if not config.curve:
            raise QuoteComputationFailed(f"DBC config {config.address} has an empty curve")
        gross_out, _ = swap_across_ranges(config.curve, state.sqrt_price, amount_in, base_in)
        if not base_in and gross_out > state.base_reserve:
            raise QuoteComputationFailed(f"DBC pool {state.address} base reserve exhausted")
        out = gross_out
        if not fee_on_input:
            fee = trade_fee(gross_out, fee_numerator, FEE_DENOMINATOR)
            out = gross_out - fee
        
        bps = slippage_to_bps(ctx.slippage)
        return SwapQuote(
            amount_in=ctx.amount_in,
            expected_amount_out=out,
            slippage_applied=bps,
            minimum_amount_out=apply_slippage_down(out, bps),
            fee_amount=fee,
        )
    
    async def build_swap_instructions(self, state: DbcPoolState, ctx: SwapContext, quote: SwapQuote) -> List[Instruction]:
        config = state.config
        base_in = ctx.mint_in == state.base_mint
        program_in = state.base_token_program if base_in else config.quote_token_program
        program_out = config.quote_token_program if base_in else state.base_token_program
        accounts = [
            AccountMeta(POOL_AUTHORITY, is_signer=False, is_writable=False),
            AccountMeta(config.address, is_signer=False, is_writable=False),
            AccountMeta(state.address, is_signer=False, is_writable=True),
            AccountMeta(self.user_token_account(ctx, ctx.mint_in, program_in), is_signer=False, is_writable=True),
            AccountMeta(self.user_token_account(ctx, ctx.mint_out, program_out), is_signer=False, is_writable=True),
            AccountMeta(state.base_vault, is_signer=False, is_writable=True),
            AccountMeta(state.quote_vault, is_signer=False, is_writable=True),
            AccountMeta(state.base_mint, is_signer=False, is_writable=False),
            AccountMeta(config.quote_mint, is_signer=False, is_writable=False),
            AccountMeta(ctx.payer, is_signer=True, is_writable=False),
            AccountMeta(state.base_token_program, is_signer=False, is_writable=False),
            AccountMeta(config.quote_token_program, is_signer=False, is_writable=False),
            AccountMeta(METEORA_DBC_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(EVENT_AUTHORITY, is_signer=False, is_writable=False),
            AccountMeta(METEORA_DBC_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = anchor_data("swap", quote.amount_in, quote.minimum_amount_out)
        return [Instruction(program_id=METEORA_DBC_PROGRAM_ID, data=data, accounts=accounts)]
    
    async def output_token_program(self, state: DbcPoolState, ctx: SwapContext) -> Pubkey:
        return state.base_token_program if ctx.mint_out == state.base_mint else state.config.quote_token_program
