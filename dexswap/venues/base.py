"""
Venue adapter interface.

Every venue quotes a swap against freshly fetched on-chain state and emits the same
instruction shape: output ATA, WSOL wrap (buys), venue swap, WSOL close.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from ..amounts import to_base_units
from ..constants import SOL_DECIMALS, TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID, WSOL_MINT, SwapDirection, Venue
from ..errors import InvalidParameter, QuoteComputationFailed
from ..instructions import (
    close_wsol_instruction,
    create_associated_token_account_idempotent,
    get_associated_token_address,
    strip_compute_budget,
    wrap_sol_instructions,
)
from ..ledger import LedgerTransport, to_pubkey
from ..listing_cache import PoolRecord, pair_key
from ..pool_resolver import FallbackStrategy, PoolResolver, ResolvedPool
from ..utils import get_terminal_colors, short_address
from ..venue_api import VenueApiClient

logger = logging.getLogger(__name__)
colors = get_terminal_colors()


def token_program_from_flag(flag: int) -> Pubkey:
    """Pool-stored token program flag: 0 for SPL Token, 1 for Token-2022."""
    return TOKEN_2022_PROGRAM_ID if flag == 1 else TOKEN_PROGRAM_ID


@dataclass
class SwapQuote:
    """
    Venue quote for one swap.
    
    Exactly one of ``minimum_amount_out`` / ``maximum_amount_in`` is the bound the
    swap instruction enforces. ``slippage_applied`` is in the venue's own unit
    (bps, percent, whole percent or fraction).
    """
    amount_in: int
    expected_amount_out: int
    slippage_applied: Union[int, float]
    minimum_amount_out: Optional[int] = None
    maximum_amount_in: Optional[int] = None
    fee_amount: int = 0
    exact_out: bool = False


@dataclass
class VenueSwap:
    """Quote plus the venue instruction sequence (compute budget already stripped)."""
    pool: ResolvedPool
    direction: SwapDirection
    quote: SwapQuote
    instructions: List[Instruction] = field(default_factory=list)


@dataclass
class SwapContext:
    """Per-call inputs handed to a venue's quote and instruction hooks."""
    pool: ResolvedPool
    direction: SwapDirection
    payer: Pubkey
    mint_in: Pubkey
    mint_out: Pubkey
    amount_in: int
    slippage: float

    @property
    def is_buy(self) -> bool:
        return self.direction == SwapDirection.BUY


class VenueAdapter(ABC):
    """
    Uniform interface over one venue.
    
    Subclasses provide listing fetch, pool state decoding, quote math and the swap
    instruction; this base class handles amount conversion and instruction framing.
    """
    
    venue: Venue
    
    def __init__(self, ledger: LedgerTransport, api: Optional[VenueApiClient] = None):
        self.ledger = ledger
        self.api = api
    
    # ------------------------------------------------------------------ #
    # Pool discovery
    # ------------------------------------------------------------------ #
    def listing_key(self, target_mint: str, quote_mint: str) -> str:
        return pair_key(target_mint, quote_mint)
    
    @abstractmethod
    async def fetch_listings(self, target_mint: str, quote_mint: str) -> List[PoolRecord]:
        """Fetch the venue's listing for a pair (network or on-chain)."""
    
    def fallback_strategies(self) -> List[FallbackStrategy]:
        return []
    
    async def resolve_pool(self, resolver: PoolResolver, target_mint: str, quote_mint: str = WSOL_MINT) -> ResolvedPool:
        """Resolve the best pool for ``target_mint``/``quote_mint`` on this venue."""
        async def fetch() -> List[PoolRecord]:
            return await self.fetch_listings(target_mint, quote_mint)
        
        return await resolver.resolve_pool(
            self.venue,
            self.listing_key(target_mint, quote_mint),
            fetch,
            target_mint,
            quote_mint,
            self.fallback_strategies()
        )
    
    # ------------------------------------------------------------------ #
    # Quoting
    # ------------------------------------------------------------------ #
    async def quote_buy(self, pool: ResolvedPool, amount_native_in: float, slippage: float, payer: Pubkey) -> VenueSwap:
        """
        Quote and build a buy: ``amount_native_in`` SOL in, target token out.
        
        Args:
            pool: Resolved pool (oriented as a buy)
            amount_native_in: Native (SOL) amount to spend, human units
            slippage: Tolerance as a fraction in [0, 1]
            payer: Fee payer and token owner
        """
        return await self._quote(pool, SwapDirection.BUY, amount_native_in, slippage, payer)
    
    async def quote_sell(self, pool: ResolvedPool, amount_token_in: float, slippage: float, payer: Pubkey) -> VenueSwap:
        """Quote and build a sell: ``amount_token_in`` target tokens in, SOL out."""
        return await self._quote(pool, SwapDirection.SELL, amount_token_in, slippage, payer)
    
    async def _quote(
        self,
        pool: ResolvedPool,
        direction: SwapDirection,
        amount: float,
        slippage: float,
        payer: Pubkey
    ) -> VenueSwap:
        direction = SwapDirection(direction)
        # The quote side is WSOL whichever way the pool was oriented by the caller
        quote_mint = WSOL_MINT if WSOL_MINT in (pool.asset_mint_in, pool.asset_mint_out) else pool.asset_mint_in
        target = pool.asset_mint_out if pool.asset_mint_in == quote_mint else pool.asset_mint_in
        oriented = pool.for_direction(direction, target, quote_mint)
        
        state = await self.load_pool_state(oriented)
        if direction == SwapDirection.BUY:
            decimals = SOL_DECIMALS
        else:
            decimals = await self.input_decimals(state, oriented)
        amount_in = to_base_units(amount, decimals)
        if amount_in <= 0:
            raise InvalidParameter(f"Swap amount must be positive, got {amount}")
        
        ctx = SwapContext(
            pool=oriented,
            direction=direction,
            payer=payer,
            mint_in=to_pubkey(oriented.asset_mint_in),
            mint_out=to_pubkey(oriented.asset_mint_out),
            amount_in=amount_in,
            slippage=slippage,
        )
        quote = await self.compute_quote(state, ctx)
        logger.info(
            f"{colors['CYAN']}{self.venue.value}{colors['RESET']} {direction.value} quote: "
            f"in={colors['GREEN']}{quote.amount_in}{colors['RESET']} "
            f"expected_out={colors['GREEN']}{quote.expected_amount_out}{colors['RESET']} "
            f"bound={colors['YELLOW']}{quote.minimum_amount_out if quote.maximum_amount_in is None else quote.maximum_amount_in}{colors['RESET']} "
            f"pool={short_address(oriented.pool_address)}"
        )
        
        swap_instructions = await self.build_swap_instructions(state, ctx, quote)
        output_program = await self.output_token_program(state, ctx)
        instructions = self.frame_instructions(ctx, swap_instructions, output_program)
        return VenueSwap(pool=oriented, direction=direction, quote=quote, instructions=instructions)
    
    def frame_instructions(self, ctx: SwapContext, swap_instructions: List[Instruction], output_program: Pubkey) -> List[Instruction]:
        """Surround the venue swap with ATA creation, WSOL wrap and WSOL close."""
        instructions: List[Instruction] = [
            create_associated_token_account_idempotent(ctx.payer, ctx.payer, ctx.mint_out, output_program)
        ]
        if ctx.is_buy:
            instructions.extend(wrap_sol_instructions(ctx.payer, ctx.amount_in))
        instructions.extend(swap_instructions)
        instructions.append(close_wsol_instruction(ctx.payer))
        return strip_compute_budget(instructions)
    
    @staticmethod
    def check_pool_mints(ctx: SwapContext, mint_a: Pubkey, mint_b: Pubkey) -> bool:
        """Return True when the input mint is the pool's token A. Raises if the pool does not hold the pair."""
        if {ctx.mint_in, ctx.mint_out} != {mint_a, mint_b}:
            raise QuoteComputationFailed(
                f"Pool {ctx.pool.pool_address} holds {mint_a}/{mint_b}, not {ctx.mint_in}/{ctx.mint_out}"
            )
        return ctx.mint_in == mint_a
    
    def user_token_account(self, ctx: SwapContext, mint: Pubkey, token_program: Pubkey = TOKEN_PROGRAM_ID) -> Pubkey:
        return get_associated_token_address(ctx.payer, mint, token_program)
    
    async def token_program_for(self, mint: Pubkey) -> Pubkey:
        if str(mint) == WSOL_MINT:
            return TOKEN_PROGRAM_ID
        return await self.ledger.fetch_token_program(mint)
    
    async def output_token_program(self, state: Any, ctx: SwapContext) -> Pubkey:
        """Token program owning the output mint. Venues that store it in pool state override this."""
        return await self.token_program_for(ctx.mint_out)
    
    async def input_decimals(self, state: Any, pool: ResolvedPool) -> int:
        """Decimals of the sell-side input mint."""
        return await self.ledger.fetch_mint_decimals(pool.asset_mint_in)
    
    @abstractmethod
    async def load_pool_state(self, pool: ResolvedPool) -> Any:
        """Fetch and decode the pool's on-chain state (never cached)."""
    
    @abstractmethod
    async def compute_quote(self, state: Any, ctx: SwapContext) -> SwapQuote:
        """Venue quote math with the venue's slippage representation."""
    
    @abstractmethod
    async def build_swap_instructions(self, state: Any, ctx: SwapContext, quote: SwapQuote) -> List[Instruction]:
        """Venue swap instruction(s) for a computed quote."""
