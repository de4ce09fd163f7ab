"""
Meteora DAMM v1 (dynamic AMM): constant product over vault-backed reserves.
"""
import logging
import struct
from dataclasses import dataclass
from typing import List

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..amounts import slippage_to_whole_percent
from ..constants import METEORA_DAMM_V1_PROGRAM_ID, METEORA_VAULT_PROGRAM_ID, TOKEN_PROGRAM_ID, Venue
from ..errors import QuoteComputationFailed
from ..instructions import anchor_data
from ..ledger import read_mint_supply, read_token_amount, to_pubkey
from ..listing_cache import PoolRecord
from ..pool_resolver import ResolvedPool
from .base import SwapContext, SwapQuote, VenueAdapter
from .curve_math import constant_product_out, trade_fee

logger = logging.getLogger(__name__)

# Pool account (after the 8-byte discriminator)
POOL_LP_MINT = 8
POOL_TOKEN_A_MINT = 40
POOL_TOKEN_B_MINT = 72
POOL_A_VAULT = 104
POOL_B_VAULT = 136
POOL_A_VAULT_LP = 168
POOL_B_VAULT_LP = 200
POOL_ENABLED = 233
POOL_PROTOCOL_TOKEN_A_FEE = 234
POOL_PROTOCOL_TOKEN_B_FEE = 266
POOL_FEES = 330
POOL_MIN_SIZE = POOL_FEES + 32

# Vault account
VAULT_TOTAL_AMOUNT = 11
VAULT_TOKEN_VAULT = 19
VAULT_LP_MINT = 115
VAULT_MIN_SIZE = VAULT_LP_MINT + 32


def _pubkey_at(data: bytes, offset: int) -> Pubkey:
    return Pubkey.from_bytes(data[offset:offset + 32])


@dataclass
class VaultState:
    address: Pubkey
    total_amount: int
    token_vault: Pubkey
    lp_mint: Pubkey


@dataclass
class DammV1PoolState:
    address: Pubkey
    token_a_mint: Pubkey
    token_b_mint: Pubkey
    a_vault: VaultState
    b_vault: VaultState
    a_vault_lp: Pubkey
    b_vault_lp: Pubkey
    protocol_token_a_fee: Pubkey
    protocol_token_b_fee: Pubkey
    trade_fee_numerator: int
    trade_fee_denominator: int
    reserve_a: int
    reserve_b: int


def decode_vault(address: Pubkey, data: bytes) -> VaultState:
    if len(data) < VAULT_MIN_SIZE:
        raise QuoteComputationFailed(f"Vault account {address} too short ({len(data)} bytes)")
    (total_amount,) = struct.unpack_from('<Q', data, VAULT_TOTAL_AMOUNT)
    return VaultState(
        address=address,
        total_amount=total_amount,
        token_vault=_pubkey_at(data, VAULT_TOKEN_VAULT),
        lp_mint=_pubkey_at(data, VAULT_LP_MINT),
    )


def vault_share(total_amount: int, pool_lp_balance: int, lp_supply: int) -> int:
    """Pool's share of a vault: ``total_amount * pool_lp / lp_supply``."""
    if lp_supply == 0:
        return 0
    return total_amount * pool_lp_balance // lp_supply


class MeteoraDammV1Adapter(VenueAdapter):
    """Meteora dynamic AMM pools (constant product, whole-percent slippage)."""
    
    venue = Venue.METEORA_DAMM_V1
    
    async def fetch_listings(self, target_mint: str, quote_mint: str) -> List[PoolRecord]:
        return await self.api.fetch_damm_v1_pools(target_mint, quote_mint)
    
    async def load_pool_state(self, pool: ResolvedPool) -> DammV1PoolState:
        address = to_pubkey(pool.pool_address)
        data = await self.ledger.fetch_account_state(address)
        if data is None or len(data) < POOL_MIN_SIZE:
            raise QuoteComputationFailed(f"DAMM v1 pool {address} not found or malformed")
        if not data[POOL_ENABLED]:
            raise QuoteComputationFailed(f"DAMM v1 pool {address} is disabled")
        
        a_vault_key = _pubkey_at(data, POOL_A_VAULT)
        b_vault_key = _pubkey_at(data, POOL_B_VAULT)
        a_vault_lp = _pubkey_at(data, POOL_A_VAULT_LP)
        b_vault_lp = _pubkey_at(data, POOL_B_VAULT_LP)
        trade_fee_numerator, trade_fee_denominator = struct.unpack_from('<QQ', data, POOL_FEES)
        
        a_vault_data, b_vault_data, a_lp_data, b_lp_data = await self.ledger.fetch_multiple_account_states(
            [a_vault_key, b_vault_key, a_vault_lp, b_vault_lp]
        )
        if a_vault_data is None or b_vault_data is None:
            raise QuoteComputationFailed(f"DAMM v1 pool {address} vaults not found")
        a_vault = decode_vault(a_vault_key, a_vault_data)
        b_vault = decode_vault(b_vault_key, b_vault_data)
        
        a_lp_mint_data, b_lp_mint_data = await self.ledger.fetch_multiple_account_states(
            [a_vault.lp_mint, b_vault.lp_mint]
        )
        reserve_a = vault_share(a_vault.total_amount, read_token_amount(a_lp_data), read_mint_supply(a_lp_mint_data))
        reserve_b = vault_share(b_vault.total_amount, read_token_amount(b_lp_data), read_mint_supply(b_lp_mint_data))
        logger.debug(f"DAMM v1 pool {address}: reserve_a={reserve_a} reserve_b={reserve_b}")
        
        return DammV1PoolState(
            address=address,
            token_a_mint=_pubkey_at(data, POOL_TOKEN_A_MINT),
            token_b_mint=_pubkey_at(data, POOL_TOKEN_B_MINT),
            a_vault=a_vault,
            b_vault=b_vault,
            a_vault_lp=a_vault_lp,
            b_vault_lp=b_vault_lp,
            protocol_token_a_fee=_pubkey_at(data, POOL_PROTOCOL_TOKEN_A_FEE),
            protocol_token_b_fee=_pubkey_at(data, POOL_PROTOCOL_TOKEN_B_FEE),
            trade_fee_numerator=trade_fee_numerator,
            trade_fee_denominator=trade_fee_denominator,
            reserve_a=reserve_a,
            reserve_b=reserve_b,
        )
    
    async def compute_quote(self, state: DammV1PoolState, ctx: SwapContext) -> SwapQuote:
        a_to_b = self.check_pool_mints(ctx, state.token_a_mint, state.token_b_mint)
        reserve_in, reserve_out = (state.reserve_a, state.reserve_b) if a_to_b else (state.reserve_b, state.reserve_a)
        fee = trade_fee(ctx.amount_in, state.trade_fee_numerator, state.trade_fee_denominator)
        out = constant_product_out(ctx.amount_in - fee, reserve_in, reserve_out)
        percent = slippage_to_whole_percent(ctx.slippage)
        minimum_out = out * (100 - percent) // 100
        return SwapQuote(
            amount_in=ctx.amount_in,
            expected_amount_out=out,
            slippage_applied=percent,
            minimum_amount_out=minimum_out,
            fee_amount=fee,
        )
    
    async def build_swap_instructions(self, state: DammV1PoolState, ctx: SwapContext, quote: SwapQuote) -> List[Instruction]:
        a_to_b = ctx.mint_in == state.token_a_mint
        protocol_fee = state.protocol_token_a_fee if a_to_b else state.protocol_token_b_fee
        accounts = [
            AccountMeta(state.address, is_signer=False, is_writable=True),
            AccountMeta(self.user_token_account(ctx, ctx.mint_in), is_signer=False, is_writable=True),
            AccountMeta(self.user_token_account(ctx, ctx.mint_out), is_signer=False, is_writable=True),
            AccountMeta(state.a_vault.address, is_signer=False, is_writable=True),
            AccountMeta(state.b_vault.address, is_signer=False, is_writable=True),
            AccountMeta(state.a_vault.token_vault, is_signer=False, is_writable=True),
            AccountMeta(state.b_vault.token_vault, is_signer=False, is_writable=True),
            AccountMeta(state.a_vault.lp_mint, is_signer=False, is_writable=True),
            AccountMeta(state.b_vault.lp_mint, is_signer=False, is_writable=True),
            AccountMeta(state.a_vault_lp, is_signer=False, is_writable=True),
            AccountMeta(state.b_vault_lp, is_signer=False, is_writable=True),
            AccountMeta(protocol_fee, is_signer=False, is_writable=True),
            AccountMeta(ctx.payer, is_signer=True, is_writable=False),
            AccountMeta(METEORA_VAULT_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = anchor_data("swap", quote.amount_in, quote.minimum_amount_out)
        return [Instruction(program_id=METEORA_DAMM_V1_PROGRAM_ID, data=data, accounts=accounts)]
    
    async def output_token_program(self, state: DammV1PoolState, ctx: SwapContext) -> Pubkey:
        return TOKEN_PROGRAM_ID
